"""
sundaypoints.api.deps — FastAPI dependency injection
=====================================================
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine
from sqlalchemy.orm import Session

from sundaypoints.config import PointsConfig, load_config
from sundaypoints.constants import ADMIN_ROLES, STAFF_ROLES
from sundaypoints.database.engine import create_db_engine

logger = logging.getLogger(__name__)

# Placeholders seen in portal deployment notes and .env templates
_PLACEHOLDER_SECRETS = frozenset({
    "sundaypoints",
    "sunday-school",
    "changeme",
    "change-me",
    "secret",
    "password",
    "jwt-secret",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def validate_jwt_secret(secret: str | None) -> str:
    """Return *secret* if it is fit to sign staff tokens, else raise RuntimeError."""
    if not secret:
        raise RuntimeError(
            "JWT_SECRET is not set; the points API cannot verify staff tokens. "
            "Add one to .env (see .env.example)."
        )
    if secret != secret.strip():
        raise RuntimeError("JWT_SECRET has surrounding whitespace; check the .env line.")
    if secret.lower() in _PLACEHOLDER_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is a known weak default ({secret!r}); "
            "every portal instance needs its own secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars, "
            f"need at least {_MIN_SECRET_LENGTH})."
        )
    return secret


JWT_SECRET: str = validate_jwt_secret(os.getenv("JWT_SECRET"))


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> PointsConfig:
    """Settings from config.yaml, or the built-in defaults when it is absent."""
    try:
        return load_config()
    except FileNotFoundError:
        logger.warning("No config.yaml found; using default API settings")
        return PointsConfig(portal_name="Sunday School Points", api_port=8000)


def get_session(engine: Annotated[Engine, Depends(get_engine)]):
    with Session(engine) as session:
        yield session


def _decode(authorization: str | None) -> dict:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    if not payload.get("sub"):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    return payload


def get_current_staff(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate JWT and return a staff payload (teacher or admin)."""
    payload = _decode(authorization)
    if payload.get("role") not in STAFF_ROLES:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not staff")
    return payload


def get_current_admin(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate JWT and return admin user payload. Raises 401 if invalid."""
    payload = _decode(authorization)
    if payload.get("role") not in ADMIN_ROLES:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return payload
