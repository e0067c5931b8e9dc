from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

import jwt

JWT_SECRET = os.getenv("DEVSERVER_JWT_SECRET", "dev-secret-change-me")
JWT_ALGORITHM = os.getenv("DEVSERVER_JWT_ALGORITHM", "HS256")
ACCESS_TTL_SECONDS = int(os.getenv("DEVSERVER_ACCESS_TTL_SECONDS", "1800"))
REFRESH_TTL_SECONDS = int(os.getenv("DEVSERVER_REFRESH_TTL_SECONDS", "604800"))

TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_REFRESH = "refresh"


class TokenError(Exception):
    pass


def create_token(
    *,
    user_id: str,
    token_type: str,
    expires_seconds: int,
    client_key: str | None = None,
) -> str:
    now = datetime.now(UTC)
    payload: dict[str, Any] = {
        "sub": user_id,
        "typ": token_type,
        "jti": uuid4().hex,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=expires_seconds)).timestamp()),
    }
    if client_key:
        payload["client_key"] = client_key
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str, *, expected_type: str) -> dict[str, Any]:
    try:
        decoded = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError as exc:
        raise TokenError("token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise TokenError("invalid token") from exc
    if not isinstance(decoded, dict) or decoded.get("typ") != expected_type:
        raise TokenError("invalid token type")
    return decoded
