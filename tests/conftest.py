import pathlib
import sys
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi.testclient import TestClient

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lms_api.main import create_app

JWT_SECRET = "jwt_test_secret_with_at_least_32_bytes"
INTERNAL_TOKEN = "internal_test_token"
DEFAULT_PERMISSIONS = ("reports:create", "reports:read")


def issue_token(
    *,
    subject: str,
    permissions: tuple[str, ...] = DEFAULT_PERMISSIONS,
    secret: str = JWT_SECRET,
    ttl_minutes: int = 30,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "permissions": list(permissions),
        "exp": int((now + timedelta(minutes=ttl_minutes)).timestamp()),
        "iat": int(now.timestamp()),
        "iss": "test-issuer",
        "aud": "test-audience",
    }
    return jwt.encode(payload, secret, algorithm="HS256")


class AuthenticatedClient:
    def __init__(
        self,
        client: TestClient,
        *,
        subject: str = "user_owner",
        permissions: tuple[str, ...] = DEFAULT_PERMISSIONS,
    ):
        self._client = client
        self.subject = subject
        self.permissions = permissions

    def as_user(self, subject: str, permissions: tuple[str, ...] = ()) -> "AuthenticatedClient":
        return AuthenticatedClient(self._client, subject=subject, permissions=permissions)

    def request(self, method: str, url: str, **kwargs):
        headers = dict(kwargs.pop("headers", {}) or {})
        if url.startswith("/api/v2/") and not url.startswith("/api/v2/internal/"):
            if "Authorization" not in headers:
                token = issue_token(subject=self.subject, permissions=self.permissions)
                headers["Authorization"] = f"Bearer {token}"
        return self._client.request(method, url, headers=headers, **kwargs)

    def __getattr__(self, name: str):
        return getattr(self._client, name)

    def get(self, url: str, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs):
        return self.request("POST", url, **kwargs)

    def put(self, url: str, **kwargs):
        return self.request("PUT", url, **kwargs)

    def delete(self, url: str, **kwargs):
        return self.request("DELETE", url, **kwargs)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_env(tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("LMS_STORE_BACKEND", "memory")
    monkeypatch.delenv("LMS_REQUIRE_TRUESTACK", raising=False)
    monkeypatch.delenv("REPORT_JOB_MAX_ATTEMPTS", raising=False)
    monkeypatch.delenv("AI_SCHEMA_DIR", raising=False)
    monkeypatch.setenv("REPORT_ARTIFACT_ROOT", str(tmp_path / "artifacts"))
    monkeypatch.setenv("JWT_SHARED_SECRET", JWT_SECRET)
    monkeypatch.setenv("JWT_ISSUER", "test-issuer")
    monkeypatch.setenv("JWT_AUDIENCE", "test-audience")
    monkeypatch.setenv("JWT_REQUIRED_CLAIMS", "sub,exp")
    monkeypatch.setenv("INTERNAL_API_TOKEN", INTERNAL_TOKEN)
    yield


@pytest.fixture
def app():
    return create_app()


@pytest.fixture
def client(app) -> AuthenticatedClient:
    return AuthenticatedClient(TestClient(app))


@pytest.fixture
def lms_store(app):
    return app.state.lms_store


@pytest.fixture
def internal_headers() -> dict[str, str]:
    return {"x-internal-token": INTERNAL_TOKEN}


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_client():
    def _make() -> AuthenticatedClient:
        return AuthenticatedClient(TestClient(create_app()))

    return _make
