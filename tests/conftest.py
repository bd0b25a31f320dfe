from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "0")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("JWT_ISSUER", "")
os.environ.setdefault("JWT_AUDIENCE", "")
os.environ.setdefault("S3_PUBLIC_BASE_URL", "https://cdn.example.test")
os.environ.setdefault("USAGE_COUNTER_MODE", "task")

import uuid  # noqa: E402
from types import SimpleNamespace  # noqa: E402

import jwt  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from deployhub.core.errors import StorageFailure  # noqa: E402
from deployhub.db.base import Base  # noqa: E402
from deployhub.models import User, UserPlan  # noqa: E402
from deployhub.services.storage import ObjectNotFound  # noqa: E402
from deployhub.services.usage import UsageRecorder  # noqa: E402


class MemoryObjectStore:
    """Object store double; add an operation name to ``fail_on`` to make it fail."""

    def __init__(self, public_base_url: str = "https://cdn.example.test") -> None:
        self.public_base_url = public_base_url
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.fail_on: set[str] = set()
        self.calls: list[tuple[str, str]] = []

    async def put(self, path: str, data: bytes, content_type: str) -> None:
        self.calls.append(("put", path))
        if "put" in self.fail_on:
            raise StorageFailure(f"put failed for {path}")
        self.objects[path] = (bytes(data), content_type)

    async def get(self, path: str) -> bytes:
        self.calls.append(("get", path))
        if "get" in self.fail_on:
            raise StorageFailure(f"get failed for {path}")
        if path not in self.objects:
            raise ObjectNotFound(path)
        return self.objects[path][0]

    async def delete(self, path: str) -> None:
        self.calls.append(("delete", path))
        if "delete" in self.fail_on:
            raise StorageFailure(f"delete failed for {path}")
        self.objects.pop(path, None)

    def public_url(self, path: str) -> str:
        return f"{self.public_base_url}/{path}"


def make_token(user_id: str, **claims) -> str:
    payload = {"sub": user_id, "email": f"{user_id[:8]}@example.com", **claims}
    return jwt.encode(payload, "test-secret", algorithm="HS256")


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def store() -> MemoryObjectStore:
    return MemoryObjectStore()


@pytest.fixture
def recorder(session_factory) -> UsageRecorder:
    return UsageRecorder(session_factory, mode="task")


@pytest_asyncio.fixture
async def owner(db) -> SimpleNamespace:
    # Plain values so tests can keep using the id after a session rollback.
    user_id = str(uuid.uuid4())
    db.add(User(id=user_id, email="owner@example.com", display_name="Owner", roles=[]))
    await db.commit()
    return SimpleNamespace(id=user_id)


async def set_plan_limit(db: AsyncSession, user_id: str, limit: int) -> None:
    db.add(UserPlan(user_id=user_id, plan_type="free", maximum_deployments=limit))
    await db.commit()


@pytest_asyncio.fixture
async def client(session_factory, store, recorder):
    from deployhub.db.session import get_db
    from deployhub.main import app
    from deployhub.services.storage import get_object_store
    from deployhub.services.usage import get_usage_recorder

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_object_store] = lambda: store
    app.dependency_overrides[get_usage_recorder] = lambda: recorder

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as http:
        yield http

    await recorder.drain()
    app.dependency_overrides.clear()
