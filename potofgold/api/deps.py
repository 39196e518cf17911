"""
potofgold.api.deps — FastAPI dependency injection
===================================================

Caller identity comes from a bearer JWT (HS256).  ``sub`` is the player
id; ``is_admin`` unlocks the review endpoints.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Header, Request
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from potofgold.database.engine import create_db_engine
from potofgold.engine.cache import ConfigCache
from potofgold.errors import PermissionDenied, Unauthenticated
from potofgold.services.event_queue import EventQueue

_WEAK_SECRETS = frozenset({
    "potofgold-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


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


def get_cache(request: Request) -> ConfigCache:
    return request.app.state.cache


def get_event_queue(request: Request) -> EventQueue | None:
    return getattr(request.app.state, "events", None)


def _decode(authorization: str | None) -> dict:
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthenticated("Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise Unauthenticated("Invalid token") from None
    if not payload.get("sub"):
        raise Unauthenticated("Token has no subject")
    return payload


def get_current_player(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate the JWT and return its payload.  Raises 401 if invalid."""
    return _decode(authorization)


def get_current_admin(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate the JWT and require ``is_admin``.  Raises 401/403."""
    payload = _decode(authorization)
    if not payload.get("is_admin"):
        raise PermissionDenied("Not admin")
    return payload
