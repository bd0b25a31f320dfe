from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from deployhub.core.config import settings
from deployhub.models.user import UserPlan

PLAN_DEPLOYMENT_LIMITS = {
    "free": 3,
    "pro": 100,
    "enterprise": 10000,
    "custom": 10000,
}


def _is_expired(plan: UserPlan, now: datetime) -> bool:
    if plan.expires_at is None:
        return False
    expires_at = plan.expires_at
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return now > expires_at


def deployment_limit_for_plan(plan: UserPlan | None, now: datetime | None = None) -> int:
    fallback = max(int(settings.default_deployment_limit or 0), 1)
    if plan is None:
        return fallback

    now = now or datetime.now(timezone.utc)
    if _is_expired(plan, now):
        # Expired plans fall back to free limits and drop any custom override.
        return PLAN_DEPLOYMENT_LIMITS["free"]

    if plan.maximum_deployments is not None and plan.maximum_deployments > 0:
        return int(plan.maximum_deployments)

    limit = PLAN_DEPLOYMENT_LIMITS.get(str(plan.plan_type or "").strip().lower())
    return limit if limit and limit > 0 else fallback


async def resolve_deployment_limit(db: AsyncSession, user_id: str) -> int:
    plan = (await db.execute(select(UserPlan).where(UserPlan.user_id == user_id))).scalar_one_or_none()
    return deployment_limit_for_plan(plan)
