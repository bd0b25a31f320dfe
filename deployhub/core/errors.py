from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class DeploymentError(Exception):
    kind = "ServerError"
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_body(self) -> dict:
        return {"error": self.kind, "message": self.message}


class ValidationError(DeploymentError):
    kind = "ValidationError"
    status_code = 400
    default_message = "Invalid request"


class QuotaExceeded(DeploymentError):
    kind = "QuotaExceeded"
    status_code = 403

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(
            f"You have reached your deployment limit ({limit}). Upgrade your plan for more."
        )

    def to_body(self) -> dict:
        return {**super().to_body(), "limit": self.limit}


class NotFound(DeploymentError):
    kind = "NotFound"
    status_code = 404
    default_message = "Deployment not found"


class StorageFailure(DeploymentError):
    kind = "StorageFailure"
    status_code = 502
    default_message = "Object storage request failed"


class ServerError(DeploymentError):
    pass


async def _deployment_error_handler(request: Request, exc: DeploymentError) -> ORJSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.kind, request.method, request.url.path, exc, exc_info=exc)
        body = {"error": exc.kind, "message": exc.default_message}
    else:
        body = exc.to_body()
    return ORJSONResponse(status_code=exc.status_code, content=body)


async def _validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    details = [
        {"loc": [str(x) for x in err.get("loc", ())], "msg": str(err.get("msg", ""))}
        for err in exc.errors()
    ]
    return ORJSONResponse(
        status_code=400,
        content={"error": ValidationError.kind, "message": "Validation failed", "details": details},
    )


_HTTP_KINDS = {
    400: "ValidationError",
    401: "Unauthorized",
    403: "Forbidden",
    404: "NotFound",
    413: "ValidationError",
    429: "RateLimited",
}


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> ORJSONResponse:
    kind = _HTTP_KINDS.get(exc.status_code, "ServerError" if exc.status_code >= 500 else "Error")
    return ORJSONResponse(
        status_code=exc.status_code,
        content={"error": kind, "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def _unhandled_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return ORJSONResponse(
        status_code=500,
        content={"error": ServerError.kind, "message": ServerError.default_message},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DeploymentError, _deployment_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
