from __future__ import annotations

from sqlalchemy import BigInteger, CheckConstraint, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from deployhub.db.base import Base
from deployhub.models.common import TimestampMixin, new_uuid

DEPLOYMENT_STATUSES = ("active", "inactive")


class Deployment(TimestampMixin, Base):
    __tablename__ = "deployments"
    __table_args__ = (
        CheckConstraint("status in ('active','inactive')", name="ck_deployments_status"),
        Index("ix_deployments_user_created", "user_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    deploy_key: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    storage_path: Mapped[str] = mapped_column(String(1024), unique=True, nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), default="text/plain", nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)
    usage_counter: Mapped[int] = mapped_column(BigInteger().with_variant(Integer(), "sqlite"), default=0, nullable=False)
