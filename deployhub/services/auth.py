from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from deployhub.api.v1.deps import upsert_user
from deployhub.core.config import settings
from deployhub.db.session import get_db
from deployhub.models.user import USER_ID_MAX_LENGTH


bearer = HTTPBearer(auto_error=False)


@dataclass(slots=True)
class AuthUser:
    user_id: str
    email: str
    display_name: str
    roles: list[str]


def _decode_token(token: str) -> dict[str, Any]:
    kwargs: dict[str, Any] = {
        "algorithms": [settings.jwt_algorithm],
        "leeway": settings.jwt_exp_leeway_seconds,
    }

    if settings.jwt_audience:
        kwargs["audience"] = settings.jwt_audience
    else:
        kwargs["options"] = {"verify_aud": False}

    if settings.jwt_issuer:
        kwargs["issuer"] = settings.jwt_issuer

    try:
        payload = jwt.decode(token, settings.jwt_secret, **kwargs)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    return payload


def _parse_payload(payload: dict[str, Any]) -> AuthUser:
    user_id = str(payload.get("user_id") or payload.get("sub") or "").strip()
    if not user_id or len(user_id) > USER_ID_MAX_LENGTH:
        raise HTTPException(status_code=401, detail="Invalid user_id claim")

    email = str(payload.get("email") or "").strip().lower()
    display_name = str(payload.get("display_name") or payload.get("username") or payload.get("name") or email or user_id)
    roles = payload.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    if not isinstance(roles, list):
        roles = []

    return AuthUser(
        user_id=user_id,
        email=email,
        display_name=display_name,
        roles=[str(r).strip().lower() for r in roles],
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: AsyncSession = Depends(get_db),
) -> AuthUser:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing bearer token")

    user = _parse_payload(_decode_token(credentials.credentials))
    # Deployments reference users.id, so mirror the identity locally.
    await upsert_user(
        db,
        user_id=user.user_id,
        email=user.email,
        display_name=user.display_name,
        roles=user.roles,
    )
    return user
