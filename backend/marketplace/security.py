from __future__ import annotations

import datetime as dt

import jwt

from marketplace.config import jwt_secret


def create_access_token(*, user_id: int, role: str, ttl_minutes: int = 60 * 24) -> str:
    # Issued by the auth service in production; kept here for scripts and tests.
    now = dt.datetime.now(dt.timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int((now + dt.timedelta(minutes=int(ttl_minutes))).timestamp()),
    }
    return jwt.encode(payload, jwt_secret(), algorithm="HS256")


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, jwt_secret(), algorithms=["HS256"])
