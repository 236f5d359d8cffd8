from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from stockroom.core.config import settings


@dataclass(frozen=True)
class TokenClaims:
    user_id: uuid.UUID
    tenant_id: uuid.UUID


def create_access_token(
    *, user_id: uuid.UUID, tenant_id: uuid.UUID, expires_minutes: int | None = None
) -> str:
    expire_minutes = expires_minutes or settings.access_token_exp_minutes
    expire = datetime.now(UTC) + timedelta(minutes=expire_minutes)
    payload: dict[str, Any] = {"sub": str(user_id), "tid": str(tenant_id), "exp": expire}
    return jwt.encode(payload, settings.secret_key, algorithm="HS256")


def decode_access_token(token: str) -> TokenClaims | None:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=["HS256"])
    except JWTError:
        return None
    try:
        return TokenClaims(
            user_id=uuid.UUID(str(payload.get("sub"))),
            tenant_id=uuid.UUID(str(payload.get("tid"))),
        )
    except ValueError:
        return None
