from __future__ import annotations

from arq.connections import RedisSettings

from deployhub.core.config import settings
from deployhub.core.logging import configure_logging
from deployhub.db.session import SessionLocal
from deployhub.services.deployments import increment_usage


async def startup(ctx) -> None:
    configure_logging()


async def increment_usage_job(ctx, deploy_key: str) -> dict:
    async with SessionLocal() as db:
        await increment_usage(db, deploy_key)
    return {"deploy_key": deploy_key, "incremented": 1}


class WorkerSettings:
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    functions = [increment_usage_job]
    on_startup = startup
