from __future__ import annotations

import jwt
from datetime import datetime, timedelta, timezone

ALGORITHM = "HS256"


def generate_token(user_id: str, secret: str, expire_minutes: float = 60) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "user_id": str(user_id),
        "iat": now,
        "exp": now + timedelta(minutes=expire_minutes),
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def decode_token(token: str, secret: str) -> dict | None:
    try:
        return jwt.decode(token, secret, algorithms=[ALGORITHM])
    except jwt.InvalidTokenError:
        return None


def validate_token(token: str, secret: str) -> str | None:
    claims = decode_token(token, secret)
    return claims.get("user_id") if claims else None
