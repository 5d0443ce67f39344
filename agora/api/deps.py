"""
agora.api.deps — FastAPI dependency injection
==============================================
"""

from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from typing import Annotated, Any

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine
from sqlalchemy.orm import Session

from agora.config import AgoraConfig, load_config
from agora.database.engine import create_db_engine
from agora.database.models import User, UserStatus
from agora.engine.rules import RuleBook, build_rulebook
from agora.services.punishment_service import check_user_restriction

_WEAK_SECRETS = frozenset({
    "agora-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"
TOKEN_TTL = timedelta(hours=12)


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> AgoraConfig:
    return load_config()


@lru_cache(maxsize=1)
def get_rules() -> RuleBook:
    return build_rulebook(get_config())


def ok(data: Any = None, message: str | None = None) -> dict[str, Any]:
    """Success envelope: ``{"success": true, "data": ..., "message": ...}``."""
    body: dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    return body


def fail(message: str, **extra: Any) -> dict[str, Any]:
    """Business-rule rejection envelope, returned with HTTP 200."""
    return {"success": False, "message": message, **extra}


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------
def create_access_token(user_id: int, username: str, role: str) -> str:
    payload = {
        "sub": str(user_id),
        "username": username,
        "role": role,
        "exp": datetime.now(UTC) + TOKEN_TTL,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def _decode_bearer(authorization: str | None) -> dict:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")


# ---------------------------------------------------------------------------
# Current user
# ---------------------------------------------------------------------------
def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
    engine: Engine = Depends(get_engine),
) -> User:
    """Validate the bearer JWT and load the user it names.  401 if invalid."""
    payload = _decode_bearer(authorization)
    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    with Session(engine) as session:
        user = session.get(User, user_id)
        if user is None:
            raise HTTPException(status.HTTP_401_UNAUTHORIZED, "User no longer exists")
        session.expunge(user)
        return user


def get_optional_user(
    authorization: Annotated[str | None, Header()] = None,
    engine: Engine = Depends(get_engine),
) -> User | None:
    """Like :func:`get_current_user`, but anonymous requests get ``None``."""
    if not authorization:
        return None
    return get_current_user(authorization, engine)


def get_current_admin(
    user: User = Depends(get_current_user),
    cfg: AgoraConfig = Depends(get_config),
) -> User:
    """Require an active user whose database role is an admin role."""
    if user.role not in cfg.admin_roles:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    if user.status != UserStatus.ACTIVE:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Admin account is restricted")
    return user


def _restriction_error(status_value: str, punishments: list[dict]) -> HTTPException:
    current = next((p for p in punishments if p["type"] != "warning"), None)
    return HTTPException(
        status.HTTP_403_FORBIDDEN,
        {
            "message": f"Your account is {status_value}",
            "code": f"USER_{status_value.upper()}",
            "punishment": current,
        },
    )


def require_not_banned(
    user: User = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
) -> User:
    """Block banned and suspended users.  Re-checks punishments, not the cache."""
    check = check_user_restriction(engine, user.id)
    if check.status in (UserStatus.BANNED, UserStatus.SUSPENDED):
        raise _restriction_error(check.status, check.punishments)
    user.status = check.status
    return user


def require_can_post(
    user: User = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
) -> User:
    """Block any restricted user (muted, suspended or banned) from writing content."""
    check = check_user_restriction(engine, user.id)
    if check.status != UserStatus.ACTIVE:
        raise _restriction_error(check.status, check.punishments)
    user.status = check.status
    return user
