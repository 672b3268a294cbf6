"""
FastAPI application entry point for tenantguard.

Tenant context is attached to request.state by the authentication layer
deployed in front of this service.
"""

import os
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from tenantguard.access.errors import AccessEvaluationError
from tenantguard.api.routes import access, admin_quotas, health, quotas
from tenantguard.quotas.errors import QuotaEvaluationError

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title="tenantguard",
        description="Feature access control and usage-quota enforcement",
        version="0.1.0",
    )

    @app.exception_handler(AccessEvaluationError)
    async def access_evaluation_error_handler(request: Request, exc: AccessEvaluationError):
        logger.error("Unhandled access evaluation error", extra={"path": request.url.path})
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=exc.to_dict())

    @app.exception_handler(QuotaEvaluationError)
    async def quota_evaluation_error_handler(request: Request, exc: QuotaEvaluationError):
        logger.error("Unhandled quota evaluation error", extra={"path": request.url.path})
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=exc.to_dict())

    app.include_router(health.router)
    app.include_router(access.router)
    app.include_router(quotas.router)
    app.include_router(admin_quotas.router)
    return app


app = create_app()
