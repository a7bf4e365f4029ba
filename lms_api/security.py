from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import jwt

from lms_api.authorization import Actor
from lms_api.errors import UnauthorizedError


def _split_csv(raw: str) -> list[str]:
    return [x.strip() for x in raw.split(",") if x.strip()]


def redact_sensitive(value: object) -> object:
    sensitive_keys = {"authorization", "token", "secret", "password", "x-internal-token", "access_token"}
    if isinstance(value, dict):
        redacted: dict[str, object] = {}
        for key, item in value.items():
            if str(key).lower() in sensitive_keys:
                redacted[str(key)] = "***REDACTED***"
            else:
                redacted[str(key)] = redact_sensitive(item)
        return redacted
    if isinstance(value, list):
        return [redact_sensitive(x) for x in value]
    return value


@dataclass(frozen=True)
class JwtSecurityConfig:
    enabled: bool
    issuer: str
    audience: str
    shared_secret: str
    required_claims: list[str]
    permissions_claim: str
    internal_token: str

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "JwtSecurityConfig":
        env = os.environ if environ is None else environ
        issuer = env.get("JWT_ISSUER", "").strip()
        audience = env.get("JWT_AUDIENCE", "").strip()
        shared_secret = env.get("JWT_SHARED_SECRET", "").strip()
        return cls(
            enabled=bool(issuer or audience or shared_secret),
            issuer=issuer,
            audience=audience,
            shared_secret=shared_secret,
            required_claims=_split_csv(env.get("JWT_REQUIRED_CLAIMS", "sub,exp")),
            permissions_claim=env.get("JWT_PERMISSIONS_CLAIM", "permissions").strip() or "permissions",
            internal_token=env.get("INTERNAL_API_TOKEN", "").strip(),
        )


def _permissions_from_claim(raw: Any) -> frozenset[str]:
    if isinstance(raw, str):
        return frozenset(x for x in raw.replace(",", " ").split() if x)
    if isinstance(raw, (list, tuple)):
        return frozenset(str(x).strip() for x in raw if str(x).strip())
    return frozenset()


def parse_and_validate_bearer_token(*, authorization: str | None, cfg: JwtSecurityConfig) -> Actor:
    if not authorization:
        raise UnauthorizedError("missing Authorization bearer token")
    prefix = "Bearer "
    if not authorization.startswith(prefix):
        raise UnauthorizedError("invalid Authorization header")
    token = authorization[len(prefix) :].strip()
    if not token:
        raise UnauthorizedError("empty bearer token")
    if not cfg.shared_secret:
        raise UnauthorizedError("jwt shared secret not configured")

    options: dict[str, Any] = {"require": list(cfg.required_claims), "verify_aud": bool(cfg.audience)}
    try:
        claims = jwt.decode(
            token,
            cfg.shared_secret,
            algorithms=["HS256"],
            audience=cfg.audience or None,
            issuer=cfg.issuer or None,
            options=options,
        )
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("token expired") from None
    except jwt.ImmatureSignatureError:
        raise UnauthorizedError("token not yet valid") from None
    except jwt.InvalidIssuerError:
        raise UnauthorizedError("jwt issuer mismatch") from None
    except jwt.InvalidAudienceError:
        raise UnauthorizedError("jwt audience mismatch") from None
    except jwt.MissingRequiredClaimError as exc:
        raise UnauthorizedError(f"missing required claim: {exc.claim}") from None
    except jwt.InvalidSignatureError:
        raise UnauthorizedError("invalid token signature") from None
    except jwt.InvalidTokenError:
        raise UnauthorizedError("invalid token") from None

    subject = str(claims.get("sub") or "").strip()
    if not subject:
        raise UnauthorizedError("missing subject claim")
    return Actor(subject=subject, permissions=_permissions_from_claim(claims.get(cfg.permissions_claim)))
