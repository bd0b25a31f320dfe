from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class DeploymentCreateIn(BaseModel):
    title: str = Field(max_length=255)
    content: str


class DeploymentUpdateIn(BaseModel):
    title: str | None = Field(default=None, max_length=255)
    content: str | None = None
    status: Literal["active", "inactive"] | None = None


class DeploymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    deploy_key: str
    storage_path: str
    size_bytes: int
    mime_type: str
    status: str
    usage_counter: int
    created_at: datetime
    updated_at: datetime


class DeploymentDetailOut(DeploymentOut):
    content: str = ""
    content_available: bool = True


class DeploymentListOut(BaseModel):
    deployments: list[DeploymentOut]
    total: int
    page: int
    total_pages: int


class DeploymentStatsOut(BaseModel):
    total_deployments: int
    active_deployments: int
    total_size: int
    usage_total: int
