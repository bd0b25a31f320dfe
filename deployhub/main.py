from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from deployhub.api.distribution import router as distribution_router
from deployhub.api.v1.router import api_router
from deployhub.core.config import settings
from deployhub.core.errors import register_error_handlers
from deployhub.core.logging import configure_logging
from deployhub.middleware.rate_limit import RedisRateLimitMiddleware
from deployhub.services.usage import usage_recorder


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await usage_recorder.close()


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(
        title=settings.app_name,
        default_response_class=ORJSONResponse,
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_origin_regex=settings.cors_origin_regex,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RedisRateLimitMiddleware)
    register_error_handlers(app)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    Instrumentator().instrument(app).expose(app)

    app.include_router(api_router, prefix=settings.api_prefix)
    # Registered last: the public route is a catch-all under its prefix.
    app.include_router(distribution_router, prefix=settings.distribution_prefix)
    return app


app = create_app()
