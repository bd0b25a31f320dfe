from fastapi import APIRouter

from deployhub.api.v1.deployments import router as deployments_router

api_router = APIRouter()
api_router.include_router(deployments_router)
