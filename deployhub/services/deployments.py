"""Deployment lifecycle across the metadata store and the object store.

Ordering rules:

* create/update write the blob first and the metadata row second, so a row
  never points at a blob that was not written. A metadata failure after a
  successful blob write leaves an orphan blob, which is tolerated.
* delete removes the blob first and the row second; a blob failure is logged
  and the row is removed anyway.
* database errors always propagate.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from deployhub.core.config import settings
from deployhub.core.errors import NotFound, StorageFailure, ValidationError
from deployhub.models.deployment import DEPLOYMENT_STATUSES, Deployment
from deployhub.services.keys import build_storage_path, generate_deploy_key
from deployhub.services.quota import check_deployment_quota
from deployhub.services.storage import S3ObjectStore

logger = logging.getLogger(__name__)

TEXT_CONTENT_TYPE = "text/plain"
MAX_PAGE_SIZE = 100


@dataclass(slots=True)
class StoredBlob:
    path: str
    size_bytes: int
    mime_type: str


@dataclass(slots=True)
class DeploymentContent:
    content: str
    available: bool


@dataclass(slots=True)
class DeploymentPage:
    items: list[Deployment] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


def clean_title(raw: str | None) -> str:
    title = str(raw or "").strip()
    if not title:
        raise ValidationError("Title is required")
    if len(title) > settings.max_title_length:
        raise ValidationError(f"Title must be under {settings.max_title_length} characters")
    return title


def encode_content(raw: str | None) -> bytes:
    if raw is None or raw == "":
        raise ValidationError("Content is required")
    return raw.encode("utf-8")


def _clean_status(raw: str) -> str:
    status = str(raw or "").strip().lower()
    if status not in DEPLOYMENT_STATUSES:
        raise ValidationError("Status must be 'active' or 'inactive'")
    return status


async def get_owned_deployment(db: AsyncSession, deployment_id: str, user_id: str) -> Deployment:
    # Missing and foreign deployments look the same to the caller.
    row = (
        await db.execute(
            select(Deployment).where(Deployment.id == deployment_id, Deployment.user_id == user_id)
        )
    ).scalar_one_or_none()
    if row is None:
        raise NotFound()
    return row


async def create_deployment(
    db: AsyncSession,
    store: S3ObjectStore,
    *,
    user_id: str,
    title: str | None,
    content: str | None,
) -> Deployment:
    clean = clean_title(title)
    data = encode_content(content)
    await check_deployment_quota(db, user_id, lock=True)

    deploy_key = generate_deploy_key()
    storage_path = build_storage_path(user_id, deploy_key)

    try:
        await store.put(storage_path, data, TEXT_CONTENT_TYPE)
    except StorageFailure:
        await db.rollback()
        logger.warning("Blob write failed for new deployment of user %s at %s", user_id, storage_path)
        raise

    row = Deployment(
        user_id=user_id,
        title=clean,
        deploy_key=deploy_key,
        storage_path=storage_path,
        size_bytes=len(data),
        mime_type=TEXT_CONTENT_TYPE,
        status="active",
        usage_counter=0,
    )
    return await _insert(db, row)


async def create_from_upload(
    db: AsyncSession,
    *,
    user_id: str,
    title: str | None,
    deploy_key: str,
    blob: StoredBlob,
) -> Deployment:
    """Persist metadata for a blob the ingestion layer already stored."""
    clean = clean_title(title)
    await check_deployment_quota(db, user_id, lock=True)

    row = Deployment(
        user_id=user_id,
        title=clean,
        deploy_key=deploy_key,
        storage_path=blob.path,
        size_bytes=int(blob.size_bytes or 0),
        mime_type=blob.mime_type or "application/octet-stream",
        status="active",
        usage_counter=0,
    )
    return await _insert(db, row)


async def _insert(db: AsyncSession, row: Deployment) -> Deployment:
    storage_path = row.storage_path
    db.add(row)
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        logger.error("Metadata insert failed; blob %s is now orphaned", storage_path)
        raise
    await db.refresh(row)
    logger.info("Created deployment %s (%s) for user %s", row.id, row.deploy_key, row.user_id)
    return row


async def read_content(store: S3ObjectStore, row: Deployment) -> DeploymentContent:
    try:
        data = await store.get(row.storage_path)
    except StorageFailure as exc:
        logger.warning("Failed to fetch content for deployment %s: %s", row.id, exc)
        return DeploymentContent(content="", available=False)
    return DeploymentContent(content=data.decode("utf-8", errors="replace"), available=True)


async def update_deployment(
    db: AsyncSession,
    store: S3ObjectStore,
    *,
    deployment_id: str,
    user_id: str,
    title: str | None = None,
    content: str | None = None,
    status: str | None = None,
) -> Deployment:
    row = await get_owned_deployment(db, deployment_id, user_id)

    clean = clean_title(title) if title is not None else None
    data = encode_content(content) if content is not None else None
    new_status = _clean_status(status) if status is not None else None

    if data is not None:
        # Same path, replaced in place; the key and path never change.
        await store.put(row.storage_path, data, TEXT_CONTENT_TYPE)
        row.size_bytes = len(data)
        row.mime_type = TEXT_CONTENT_TYPE
    if clean is not None:
        row.title = clean
    if new_status is not None:
        row.status = new_status

    if data is None and clean is None and new_status is None:
        return row

    await db.commit()
    await db.refresh(row)
    return row


async def delete_deployment(
    db: AsyncSession,
    store: S3ObjectStore,
    *,
    deployment_id: str,
    user_id: str,
) -> None:
    row = await get_owned_deployment(db, deployment_id, user_id)

    try:
        await store.delete(row.storage_path)
    except StorageFailure as exc:
        logger.warning("Blob delete failed for deployment %s (%s): %s", row.id, row.storage_path, exc)

    result = await db.execute(
        delete(Deployment).where(Deployment.id == row.id, Deployment.user_id == user_id)
    )
    await db.commit()
    if not result.rowcount:
        raise NotFound()
    logger.info("Deleted deployment %s for user %s", row.id, user_id)


async def list_deployments(
    db: AsyncSession,
    user_id: str,
    *,
    page: int = 1,
    limit: int = 20,
    search: str = "",
) -> DeploymentPage:
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or 20), 1), MAX_PAGE_SIZE)

    conditions = [Deployment.user_id == user_id]
    term = str(search or "").strip()
    if term:
        conditions.append(Deployment.title.icontains(term, autoescape=True))

    total = (
        await db.execute(select(func.count()).select_from(Deployment).where(*conditions))
    ).scalar_one()
    rows = (
        await db.execute(
            select(Deployment)
            .where(*conditions)
            .order_by(Deployment.created_at.desc(), Deployment.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
    ).scalars().all()
    return DeploymentPage(items=list(rows), total=int(total), page=page, limit=limit)


async def get_stats(db: AsyncSession, user_id: str) -> dict[str, int]:
    row = (
        await db.execute(
            select(
                func.count(Deployment.id),
                func.count(Deployment.id).filter(Deployment.status == "active"),
                func.coalesce(func.sum(Deployment.size_bytes), 0),
                func.coalesce(func.sum(Deployment.usage_counter), 0),
            ).where(Deployment.user_id == user_id)
        )
    ).one()
    return {
        "total_deployments": int(row[0] or 0),
        "active_deployments": int(row[1] or 0),
        "total_size": int(row[2] or 0),
        "usage_total": int(row[3] or 0),
    }


async def get_active_by_deploy_key(db: AsyncSession, deploy_key: str) -> Deployment | None:
    return (
        await db.execute(
            select(Deployment).where(Deployment.deploy_key == deploy_key, Deployment.status == "active")
        )
    ).scalar_one_or_none()


async def increment_usage(db: AsyncSession, deploy_key: str) -> None:
    # Single UPDATE so concurrent increments never lose counts; updated_at is
    # pinned so reads do not look like owner edits.
    await db.execute(
        update(Deployment)
        .where(Deployment.deploy_key == deploy_key)
        .values(usage_counter=Deployment.usage_counter + 1, updated_at=Deployment.updated_at)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
