from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from pydantic import BaseModel

from securedocs.core.config import get_settings
from securedocs.core.errors import UnauthorizedError


SCOPE_SESSION = "session"
SCOPE_OWNER_ELEVATED = "owner_elevated"
_ALLOWED_SCOPES = {SCOPE_SESSION, SCOPE_OWNER_ELEVATED}


class Caller(BaseModel):
    # Identity resolved from an optional bearer token; user_id None means anonymous.
    user_id: str | None = None
    email: str | None = None
    is_owner: bool = False
    scope: str | None = None

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None

    def is_owner_of(self, owner_id: str) -> bool:
        return self.user_id is not None and self.user_id == owner_id


ANONYMOUS = Caller()


def _issue(claims: dict[str, Any], ttl: timedelta) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = dict(claims)
    payload["iat"] = now
    payload["exp"] = now + ttl
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def issue_session_token(*, user_id: str, email: str | None = None) -> str:
    settings = get_settings()
    return _issue(
        {"sub": user_id, "email": email, "is_owner": False, "scope": SCOPE_SESSION},
        timedelta(hours=settings.session_token_ttl_hours),
    )


def issue_owner_token(*, user_id: str, email: str | None = None) -> str:
    # Elevated tokens live materially shorter than a normal session.
    settings = get_settings()
    return _issue(
        {"sub": user_id, "email": email, "is_owner": True, "scope": SCOPE_OWNER_ELEVATED},
        timedelta(minutes=settings.owner_token_ttl_minutes),
    )


def decode_token(token: str) -> Caller:
    settings = get_settings()
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise UnauthorizedError("Token expired", code="AUTH_TOKEN_EXPIRED") from exc
    except jwt.InvalidTokenError as exc:
        raise UnauthorizedError("Invalid token") from exc

    scope = claims.get("scope", SCOPE_SESSION)
    if scope not in _ALLOWED_SCOPES:
        raise UnauthorizedError("Invalid token scope")
    return Caller(
        user_id=str(claims["sub"]),
        email=claims.get("email"),
        is_owner=bool(claims.get("is_owner")) and scope == SCOPE_OWNER_ELEVATED,
        scope=scope,
    )
