from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from deployhub.models.user import User

logger = logging.getLogger(__name__)


async def upsert_user(
    db: AsyncSession,
    *,
    user_id: str,
    email: str,
    display_name: str,
    roles: list[str],
) -> User:
    clean_email = (email or "").strip().lower()
    clean_name = (display_name or "").strip() or clean_email or user_id
    clean_roles = [str(x).strip().lower() for x in roles if str(x).strip()]

    row = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if row is None:
        row = User(id=user_id, email=clean_email, display_name=clean_name, roles=clean_roles)
        db.add(row)
        logger.info("Registered user %s", user_id)
    else:
        if clean_email and row.email != clean_email:
            row.email = clean_email
        if row.display_name != clean_name:
            row.display_name = clean_name
        if clean_roles and row.roles != clean_roles:
            row.roles = clean_roles

    await db.commit()
    await db.refresh(row)
    return row
