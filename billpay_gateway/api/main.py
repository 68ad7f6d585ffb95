"""FastAPI application factory"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from billpay_gateway.api.dependencies import get_request_id
from billpay_gateway.api.middleware import MetricsMiddleware, RequestIDMiddleware
from billpay_gateway.api.v1 import banks, workflows
from billpay_gateway.config import settings
from billpay_gateway.domain.exceptions import (
    DomainException,
    FinanceAPIError,
    InvalidSourceDataError,
    RecipientLookupError,
    SessionExpiredError,
    UnknownBillError,
    WorkflowNotFoundError,
    WorkflowStateError,
)
from billpay_gateway.infrastructure.observability.logging import setup_logging

# Setup structured logging
setup_logging(settings.log_level)

# Most specific first
ERROR_STATUS = (
    (SessionExpiredError, 401),
    (FinanceAPIError, 503),
    (WorkflowNotFoundError, 404),
    (UnknownBillError, 404),
    (WorkflowStateError, 409),
    (RecipientLookupError, 422),
    (InvalidSourceDataError, 422),
)


def status_for(exc: DomainException) -> int:
    for exc_type, status_code in ERROR_STATUS:
        if isinstance(exc, exc_type):
            return status_code
    return 500


async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    status_code = status_for(exc)
    request_id = get_request_id(request)
    if status_code >= 500:
        logging.error(f"Finance API error: {exc}", extra={"request_id": request_id, "path": request.url.path})
        detail = "Finance service unavailable" if isinstance(exc, FinanceAPIError) else "Internal server error"
    else:
        logging.warning(f"Request rejected: {exc}", extra={"request_id": request_id, "path": request.url.path})
        detail = str(exc)
    return JSONResponse(status_code=status_code, content={"detail": detail})


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Bill Payment Gateway",
        description="Pay-bills workflow orchestration over the finance backend",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(DomainException, domain_exception_handler)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(workflows.router, prefix="/v1", tags=["workflows"])
    app.include_router(banks.router, prefix="/v1", tags=["banks"])

    return app


app = create_app()
