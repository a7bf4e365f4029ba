from __future__ import annotations

from datetime import UTC, datetime, timedelta

import jwt
import pytest
from fastapi.testclient import TestClient

from lms_api.errors import UnauthorizedError
from lms_api.main import create_app
from lms_api.security import JwtSecurityConfig, parse_and_validate_bearer_token, redact_sensitive

SECRET = "jwt_test_secret_with_at_least_32_bytes"


def _token(*, ttl_minutes: int = 15, secret: str = SECRET, **overrides) -> str:
    now = datetime.now(UTC)
    claims: dict[str, object] = {
        "iss": "test-issuer",
        "aud": "test-audience",
        "sub": "user_owner",
        "permissions": ["reports:read"],
        "exp": int((now + timedelta(minutes=ttl_minutes)).timestamp()),
        "iat": int(now.timestamp()),
    }
    claims.update(overrides)
    claims = {k: v for k, v in claims.items() if v is not None}
    return jwt.encode(claims, secret, algorithm="HS256")


def _cfg() -> JwtSecurityConfig:
    return JwtSecurityConfig.from_env(
        {
            "JWT_SHARED_SECRET": SECRET,
            "JWT_ISSUER": "test-issuer",
            "JWT_AUDIENCE": "test-audience",
            "JWT_REQUIRED_CLAIMS": "sub,exp",
        }
    )


def test_valid_token_yields_actor_with_permissions():
    actor = parse_and_validate_bearer_token(authorization=f"Bearer {_token()}", cfg=_cfg())
    assert actor.subject == "user_owner"
    assert actor.permissions == frozenset({"reports:read"})


def test_space_delimited_permissions_claim_is_accepted():
    token = _token(permissions="reports:read reports:create")
    actor = parse_and_validate_bearer_token(authorization=f"Bearer {token}", cfg=_cfg())
    assert actor.has("reports:create")


@pytest.mark.parametrize(
    ("authorization", "message"),
    [
        (None, "missing Authorization bearer token"),
        ("Basic abc", "invalid Authorization header"),
        ("Bearer ", "empty bearer token"),
        ("Bearer a.b", "invalid token"),
    ],
)
def test_malformed_authorization_headers(authorization, message):
    with pytest.raises(UnauthorizedError) as exc_info:
        parse_and_validate_bearer_token(authorization=authorization, cfg=_cfg())
    assert exc_info.value.message == message
    assert exc_info.value.http_status == 401


@pytest.mark.parametrize(
    ("token_kwargs", "message"),
    [
        ({"ttl_minutes": -1}, "token expired"),
        ({"secret": "wrong_secret_value_for_tests_padded_to_32b"}, "invalid token signature"),
        ({"iss": "someone-else"}, "jwt issuer mismatch"),
        ({"aud": "other-api"}, "jwt audience mismatch"),
        ({"sub": None}, "missing required claim: sub"),
    ],
)
def test_token_claim_failures(token_kwargs, message):
    with pytest.raises(UnauthorizedError) as exc_info:
        parse_and_validate_bearer_token(authorization=f"Bearer {_token(**token_kwargs)}", cfg=_cfg())
    assert exc_info.value.message == message


def test_api_rejects_missing_token_with_envelope(client):
    resp = client.get("/api/v2/reports/jobs", headers={"Authorization": ""})
    assert resp.status_code == 401
    body = resp.json()
    assert body["success"] is False
    assert body["error"]["code"] == "AUTH_UNAUTHORIZED"
    assert resp.headers["x-trace-id"] == body["meta"]["trace_id"]


def test_auth_disabled_runs_requests_as_anonymous_admin(monkeypatch):
    for name in ("JWT_SHARED_SECRET", "JWT_ISSUER", "JWT_AUDIENCE"):
        monkeypatch.delenv(name)
    client = TestClient(create_app())
    resp = client.post("/api/v2/reports/jobs", json={"report_type": "enrollment-summary"})
    assert resp.status_code == 201
    job_id = resp.json()["data"]["id"]
    assert client.get(f"/api/v2/reports/jobs/{job_id}").json()["data"]["owner_id"] == "anonymous"


def test_redact_sensitive_masks_credentials():
    redacted = redact_sensitive({"Authorization": "Bearer abc", "x-internal-token": "t", "nested": [{"password": "p"}]})
    assert redacted == {
        "Authorization": "***REDACTED***",
        "x-internal-token": "***REDACTED***",
        "nested": [{"password": "***REDACTED***"}],
    }
