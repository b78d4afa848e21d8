"""
Authentication guard: bearer token -> active `User`.

Read-only; never touches `last_login` or any other column.
"""

from __future__ import annotations

import logging
from typing import Annotated

import jwt
from fastapi import Depends, Header
from sqlalchemy.orm import Session

from basira.db import get_db
from basira.errors import Unauthenticated
from basira.models import User
from basira.security import decode_access_token

logger = logging.getLogger(__name__)


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    if not authorization.lower().startswith("bearer "):
        return None
    return authorization.split(" ", 1)[1].strip() or None


def authenticate(db: Session, token: str | None) -> User:
    if not token:
        raise Unauthenticated("No token provided")
    try:
        payload = decode_access_token(token)
        user_id = int(payload.get("sub") or 0)
    except (jwt.InvalidTokenError, TypeError, ValueError) as e:
        logger.debug("Rejected token: %s", e)
        raise Unauthenticated("Invalid token")

    user = db.get(User, user_id) if user_id else None
    if user is None:
        raise Unauthenticated("User not found")
    if not user.is_active:
        raise Unauthenticated("Account is deactivated")
    return user


def authenticate_optional(db: Session, token: str | None) -> User | None:
    try:
        return authenticate(db, token)
    except Unauthenticated:
        return None


def get_current_user(
    db: Annotated[Session, Depends(get_db)],
    authorization: Annotated[str | None, Header()] = None,
) -> User:
    return authenticate(db, _bearer_token(authorization))


def get_optional_user(
    db: Annotated[Session, Depends(get_db)],
    authorization: Annotated[str | None, Header()] = None,
) -> User | None:
    return authenticate_optional(db, _bearer_token(authorization))
