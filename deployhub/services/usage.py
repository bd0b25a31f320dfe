from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from deployhub.core.config import settings
from deployhub.db.session import SessionLocal
from deployhub.services.deployments import increment_usage

logger = logging.getLogger(__name__)

USAGE_JOB_NAME = "increment_usage_job"


class UsageRecorder:
    """Fire-and-forget usage counting for the distribution path.

    ``record`` never waits on the database or the queue. In ``task`` mode the
    increment runs in a detached task on this event loop; in ``queue`` mode the
    detached task only enqueues an arq job and the worker applies it.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        *,
        mode: str | None = None,
        queue_factory: Callable[[], Awaitable[ArqRedis]] | None = None,
    ) -> None:
        self.session_factory = session_factory or SessionLocal
        self.mode = mode or settings.usage_counter_mode
        self._queue_factory = queue_factory or (lambda: create_pool(RedisSettings.from_dsn(settings.redis_url)))
        self._queue: ArqRedis | None = None
        self._tasks: set[asyncio.Task] = set()

    def record(self, deploy_key: str) -> None:
        task = asyncio.get_running_loop().create_task(self._apply(deploy_key))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _apply(self, deploy_key: str) -> None:
        try:
            if self.mode == "queue":
                await self._enqueue(deploy_key)
            else:
                async with self.session_factory() as db:
                    await increment_usage(db, deploy_key)
        except Exception:
            logger.warning("Failed to increment usage counter for %s", deploy_key, exc_info=True)

    async def _enqueue(self, deploy_key: str) -> None:
        if self._queue is None:
            self._queue = await self._queue_factory()
        await self._queue.enqueue_job(USAGE_JOB_NAME, deploy_key)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        if self._queue is not None:
            await self._queue.aclose()
            self._queue = None


usage_recorder = UsageRecorder()


def get_usage_recorder() -> UsageRecorder:
    return usage_recorder
