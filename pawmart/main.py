"""
PawMart Orders API
FastAPI application: checkout, online payment reconciliation and order lifecycle
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from pawmart.api.deps import get_services, shutdown_services
from pawmart.api.v1 import api_v1_router
from pawmart.core.config import settings
from pawmart.core.exceptions import (
    PawMartException,
    pawmart_exception_handler,
    request_validation_exception_handler,
    unhandled_exception_handler,
)
from pawmart.core.logging_config import reset_request_id, set_request_id, setup_logging

logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Propagate X-Request-ID into the logging context and the response.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or f"req_{uuid.uuid4().hex[:16]}"
        request.state.request_id = request_id
        token = set_request_id(request_id)
        start_time = time.time()
        try:
            response = await call_next(request)
        finally:
            reset_request_id(token)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{time.time() - start_time:.4f}"
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Baseline security headers for API responses"""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager
    Handles startup and shutdown events
    """
    setup_logging()
    logger.info(f"Starting {settings.PROJECT_NAME} ({settings.ENVIRONMENT})...")

    services = get_services()
    storage = await services.store.health_check()
    if storage.get("healthy"):
        logger.info(f"Storage ready: {storage.get('storage')}")
    elif settings.ENVIRONMENT == "production":
        raise RuntimeError(f"Storage unavailable at startup: {storage}")
    else:
        logger.warning(f"Storage not reachable at startup (development mode): {storage}")

    yield

    logger.info(f"Shutting down {settings.PROJECT_NAME}...")
    await shutdown_services()


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Checkout, payment reconciliation and order lifecycle for the PawMart pet store",
    version=APP_VERSION,
    lifespan=lifespan,
)

# =============================================================================
# MIDDLEWARE CONFIGURATION
# =============================================================================

app.add_middleware(SecurityHeadersMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)

# Outermost, so every log line of the request carries the id
app.add_middleware(RequestIdMiddleware)

# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

app.add_exception_handler(PawMartException, pawmart_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# =============================================================================
# ROUTES
# =============================================================================

app.include_router(api_v1_router)


@app.get("/health", tags=["health"])
async def health_check():
    """Liveness probe; storage health lives under /api/v1/health"""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": APP_VERSION,
        "environment": settings.ENVIRONMENT,
    }

# =============================================================================
# APPLICATION STARTUP
# =============================================================================

if __name__ == "__main__":
    debug = settings.ENVIRONMENT == "development"
    uvicorn.run(
        "pawmart.main:app",
        host="0.0.0.0",
        port=8000,
        reload=debug,
        log_level="debug" if debug else "info",
        access_log=True
    )
