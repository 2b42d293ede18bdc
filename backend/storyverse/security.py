from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import Any
import jwt
from storyverse.config import settings

JWT_ALG = "HS256"

def _make_token(sub: str, ttl_min: int, token_type: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": sub,
        "type": token_type,
        "iat": now.timestamp(),
        "exp": int((now + timedelta(minutes=ttl_min)).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALG)

def make_access_token(sub: str, ttl_min: int | None = None) -> str:
    return _make_token(sub, ttl_min or settings.access_ttl_min, "access")

def decode_token(token: str) -> dict[str, Any]:
    return jwt.decode(token, settings.jwt_secret, algorithms=[JWT_ALG])
