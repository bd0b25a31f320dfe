from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from deployhub.core.errors import QuotaExceeded
from deployhub.models.deployment import Deployment
from deployhub.models.user import User
from deployhub.services.plans import resolve_deployment_limit


@dataclass(slots=True)
class QuotaStatus:
    current: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(self.limit - self.current, 0)


async def count_deployments(db: AsyncSession, user_id: str) -> int:
    return int(
        (
            await db.execute(select(func.count()).select_from(Deployment).where(Deployment.user_id == user_id))
        ).scalar_one()
    )


async def lock_owner(db: AsyncSession, user_id: str) -> None:
    """Serialize quota-checked creates for one owner.

    The row lock lives until the surrounding transaction ends. SQLite ignores
    FOR UPDATE, so there the check-then-insert race is still open.
    """
    await db.execute(select(User.id).where(User.id == user_id).with_for_update())


async def check_deployment_quota(db: AsyncSession, user_id: str, *, lock: bool = False) -> QuotaStatus:
    if lock:
        await lock_owner(db, user_id)

    current = await count_deployments(db, user_id)
    limit = await resolve_deployment_limit(db, user_id)
    if current >= limit:
        raise QuotaExceeded(limit)
    return QuotaStatus(current=current, limit=limit)
