from __future__ import annotations

import datetime as dt

import jwt
import bcrypt

from basira.config import bcrypt_rounds, jwt_exp_days, jwt_secret


def hash_password(password: str) -> str:
    # bcrypt stores algorithm + cost + salt in the resulting hash string.
    password_bytes = password.encode("utf-8")
    salt = bcrypt.gensalt(rounds=bcrypt_rounds())
    return bcrypt.hashpw(password_bytes, salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(
            password.encode("utf-8"),
            (password_hash or "").encode("utf-8"),
        )
    except ValueError:
        # Invalid hash format.
        return False


def create_access_token(*, user_id: int, expires_in: dt.timedelta | None = None) -> str:
    now = dt.datetime.now(dt.timezone.utc)
    exp = now + (expires_in if expires_in is not None else dt.timedelta(days=jwt_exp_days()))
    payload = {"sub": str(user_id), "iat": int(now.timestamp()), "exp": int(exp.timestamp())}
    return jwt.encode(payload, jwt_secret(), algorithm="HS256")


def decode_access_token(token: str) -> dict:
    """Raises `jwt.InvalidTokenError` (incl. expiry) for anything not issued by us."""
    return jwt.decode(token, jwt_secret(), algorithms=["HS256"], options={"require": ["sub", "exp"]})
