"""FastAPI application entrypoint."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from leadflow.api.v1.router import get_api_router
from leadflow.core.config import get_config
from leadflow.core.exceptions import (
    AuthenticationFailure,
    ConfigurationError,
    ExternalServiceFailure,
    LeadFlowError,
    LeadProcessingFailure,
    ReferenceFailure,
    ValidationFailure,
)
from leadflow.schemas.common import ErrorEnvelope

logger = logging.getLogger(__name__)

STATUS_CODES: tuple[tuple[type[LeadFlowError], int], ...] = (
    (ValidationFailure, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ReferenceFailure, status.HTTP_404_NOT_FOUND),
    (AuthenticationFailure, status.HTTP_401_UNAUTHORIZED),
    (LeadProcessingFailure, status.HTTP_409_CONFLICT),
    (ExternalServiceFailure, status.HTTP_502_BAD_GATEWAY),
    (ConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def status_code_for(exc: LeadFlowError) -> int:
    for kind, code in STATUS_CODES:
        if isinstance(exc, kind):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _error_code(exc: LeadFlowError) -> str:
    return getattr(exc, "code", None) or exc.__class__.__name__


async def handle_leadflow_error(request: Request, exc: LeadFlowError) -> JSONResponse:
    code = status_code_for(exc)
    level = logging.ERROR if code >= 500 else logging.WARNING
    logger.log(
        level,
        "api.request_failed",
        extra={"event": "api.request_failed", "path": request.url.path, "status_code": code, "error": exc.to_payload()},
    )
    envelope = ErrorEnvelope(error_code=_error_code(exc), detail=str(exc))
    return JSONResponse(status_code=code, content=envelope.model_dump())


def create_app() -> FastAPI:
    cfg = get_config()
    app = FastAPI(title=cfg.APP_NAME, version=cfg.APP_VERSION)
    app.include_router(get_api_router(cfg.API_PREFIX))
    app.add_exception_handler(LeadFlowError, handle_leadflow_error)

    @app.get("/")
    def root() -> dict:
        return {"service": cfg.APP_NAME, "version": cfg.APP_VERSION, "api_prefix": cfg.API_PREFIX}

    return app


# Expose ASGI app for `uvicorn leadflow.main:app`.
app = create_app()
