from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from deployhub.db.session import get_db
from deployhub.schemas.common import MessageResponse
from deployhub.schemas.deployment import (
    DeploymentCreateIn,
    DeploymentDetailOut,
    DeploymentListOut,
    DeploymentOut,
    DeploymentStatsOut,
    DeploymentUpdateIn,
)
from deployhub.services import deployments as deployments_service
from deployhub.services.auth import AuthUser, get_current_user
from deployhub.services.keys import generate_deploy_key
from deployhub.services.quota import check_deployment_quota
from deployhub.services.storage import S3ObjectStore, get_object_store
from deployhub.services.uploads import ingest_script_upload

router = APIRouter(prefix="/deployments", tags=["deployments"])


@router.get("/stats", response_model=DeploymentStatsOut)
async def get_deployment_stats(
    db: AsyncSession = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
) -> DeploymentStatsOut:
    stats = await deployments_service.get_stats(db, current_user.user_id)
    return DeploymentStatsOut(**stats)


@router.get("/me", response_model=DeploymentListOut)
async def list_my_deployments(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1),
    search: str = Query(default="", max_length=255),
    db: AsyncSession = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
) -> DeploymentListOut:
    result = await deployments_service.list_deployments(
        db,
        current_user.user_id,
        page=page,
        limit=limit,
        search=search,
    )
    return DeploymentListOut(
        deployments=[DeploymentOut.model_validate(row) for row in result.items],
        total=result.total,
        page=result.page,
        total_pages=result.total_pages,
    )


@router.post("", response_model=DeploymentOut, status_code=status.HTTP_201_CREATED)
async def create_deployment(
    payload: DeploymentCreateIn,
    db: AsyncSession = Depends(get_db),
    store: S3ObjectStore = Depends(get_object_store),
    current_user: AuthUser = Depends(get_current_user),
) -> DeploymentOut:
    row = await deployments_service.create_deployment(
        db,
        store,
        user_id=current_user.user_id,
        title=payload.title,
        content=payload.content,
    )
    return DeploymentOut.model_validate(row)


@router.post("/upload", response_model=DeploymentOut, status_code=status.HTTP_201_CREATED)
async def upload_deployment(
    file: UploadFile = File(...),
    title: str | None = Form(default=None, max_length=255),
    db: AsyncSession = Depends(get_db),
    store: S3ObjectStore = Depends(get_object_store),
    current_user: AuthUser = Depends(get_current_user),
) -> DeploymentOut:
    # Everything that can reject the request runs before the blob is written.
    clean = deployments_service.clean_title((title or "").strip() or file.filename)
    # Checked again under the owner lock before the insert.
    await check_deployment_quota(db, current_user.user_id)
    await db.rollback()

    deploy_key = generate_deploy_key()
    blob = await ingest_script_upload(store, user_id=current_user.user_id, deploy_key=deploy_key, file=file)
    row = await deployments_service.create_from_upload(
        db,
        user_id=current_user.user_id,
        title=clean,
        deploy_key=deploy_key,
        blob=blob,
    )
    return DeploymentOut.model_validate(row)


@router.get("/{deployment_id}", response_model=DeploymentDetailOut)
async def get_deployment(
    deployment_id: str,
    db: AsyncSession = Depends(get_db),
    store: S3ObjectStore = Depends(get_object_store),
    current_user: AuthUser = Depends(get_current_user),
) -> DeploymentDetailOut:
    row = await deployments_service.get_owned_deployment(db, deployment_id, current_user.user_id)
    content = await deployments_service.read_content(store, row)
    return DeploymentDetailOut(
        **DeploymentOut.model_validate(row).model_dump(),
        content=content.content,
        content_available=content.available,
    )


@router.put("/{deployment_id}", response_model=DeploymentOut)
async def update_deployment(
    deployment_id: str,
    payload: DeploymentUpdateIn,
    db: AsyncSession = Depends(get_db),
    store: S3ObjectStore = Depends(get_object_store),
    current_user: AuthUser = Depends(get_current_user),
) -> DeploymentOut:
    row = await deployments_service.update_deployment(
        db,
        store,
        deployment_id=deployment_id,
        user_id=current_user.user_id,
        title=payload.title,
        content=payload.content,
        status=payload.status,
    )
    return DeploymentOut.model_validate(row)


@router.delete("/{deployment_id}", response_model=MessageResponse)
async def delete_deployment(
    deployment_id: str,
    db: AsyncSession = Depends(get_db),
    store: S3ObjectStore = Depends(get_object_store),
    current_user: AuthUser = Depends(get_current_user),
) -> MessageResponse:
    await deployments_service.delete_deployment(
        db,
        store,
        deployment_id=deployment_id,
        user_id=current_user.user_id,
    )
    return MessageResponse(message="Deployment deleted")
