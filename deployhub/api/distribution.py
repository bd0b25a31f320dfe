from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from deployhub.core.config import settings
from deployhub.db.session import get_db
from deployhub.services.deployments import get_active_by_deploy_key
from deployhub.services.distribution import build_loader_url, is_browser_user_agent, render_protected_page
from deployhub.services.storage import S3ObjectStore, get_object_store
from deployhub.services.usage import UsageRecorder, get_usage_recorder

logger = logging.getLogger(__name__)

router = APIRouter(tags=["distribution"])


def _request_loader_url(request: Request, deploy_key: str) -> str:
    scheme = (request.headers.get("x-forwarded-proto") or request.url.scheme or "http").split(",")[0].strip()
    host = (request.headers.get("x-forwarded-host") or request.headers.get("host") or request.url.netloc).split(",")[0].strip()
    return build_loader_url(scheme=scheme, host=host, prefix=settings.distribution_prefix, deploy_key=deploy_key)


@router.get("/{deploy_key}", include_in_schema=False)
async def serve_deployment(
    deploy_key: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    store: S3ObjectStore = Depends(get_object_store),
    usage: UsageRecorder = Depends(get_usage_recorder),
) -> Response:
    try:
        row = await get_active_by_deploy_key(db, deploy_key)
        if row is None:
            return PlainTextResponse("Deployment not found or inactive.", status_code=404)

        if is_browser_user_agent(request.headers.get("user-agent")):
            page = render_protected_page(_request_loader_url(request, deploy_key), app_name=settings.app_name)
            return HTMLResponse(page, headers={"Cache-Control": "no-store"})

        usage.record(deploy_key)
        return RedirectResponse(store.public_url(row.storage_path), status_code=302)
    except Exception:
        logger.exception("Failed to serve deployment %s", deploy_key)
        return PlainTextResponse("Internal server error", status_code=500)
