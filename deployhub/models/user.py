from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from deployhub.db.base import Base
from deployhub.models.common import JSONType, TimestampMixin

USER_ID_MAX_LENGTH = 255


class User(TimestampMixin, Base):
    __tablename__ = "users"

    # Subject claims from external identity providers are not always UUIDs.
    id: Mapped[str] = mapped_column(String(USER_ID_MAX_LENGTH), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), index=True, nullable=False, default="")
    display_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    roles: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)


class UserPlan(TimestampMixin, Base):
    __tablename__ = "user_plans"
    __table_args__ = (
        CheckConstraint("plan_type in ('free','pro','enterprise','custom')", name="ck_user_plans_plan_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), unique=True)
    plan_type: Mapped[str] = mapped_column(String(20), default="free", nullable=False)
    maximum_deployments: Mapped[int | None] = mapped_column(Integer, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
