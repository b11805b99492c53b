"""
Main FastAPI application for the Catalyst Launch integration service.
"""
import time
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from app.api.v1.api import api_router
from app.core.config import settings
from app.core.database import init_db
from app.core.exceptions import (
    CatalystAppException,
    IntegrationNotFoundError,
    OAuthStateError,
    PermanentRequestError,
    ProviderNotFoundError,
    TokenRefreshError,
    UnauthorizedError,
    WebhookNotSupportedError,
    WebhookSignatureError,
)
from app.core.http_client import close_http_client
from app.core.logging_config import log_error, log_info, log_warning, setup_logging
from app.integrations.registry import get_registry
from app.middleware.request_logging import RequestLoggingMiddleware, request_id_ctx

setup_logging()

# First match wins; anything unlisted is a 500
EXCEPTION_STATUS_CODES = (
    ((IntegrationNotFoundError, ProviderNotFoundError), status.HTTP_404_NOT_FOUND),
    ((UnauthorizedError, WebhookSignatureError), status.HTTP_401_UNAUTHORIZED),
    (
        (OAuthStateError, TokenRefreshError, WebhookNotSupportedError, PermanentRequestError),
        status.HTTP_400_BAD_REQUEST,
    ),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Migrate, build the provider registry, and close the shared HTTP client on shutdown."""
    log_info("Starting up Catalyst Launch integration service...")
    try:
        init_db()
        registry = get_registry()
        configured = [
            integration.provider.value
            for integration in registry.all_instances()
            if settings.is_provider_configured(integration.provider.value)
        ]
        log_info(f"Integration providers configured: {', '.join(configured) or 'none'}")
        if not settings.cron_secret:
            log_warning("CRON_SECRET not set; POST /integrations/cron/sync is disabled")
    except Exception as exc:
        log_error(exc)
        raise
    yield
    log_info("Shutting down Catalyst Launch integration service...")
    try:
        await close_http_client()
    except Exception as exc:
        log_warning(f"Failed to close HTTP client: {exc}")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Ingests content from connected tools into captures, memories and tasks",
    openapi_url=f"{settings.api_v1_prefix}/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# -----------------------------------------------------------------------------
# Middleware Configuration
# -----------------------------------------------------------------------------
cors_origins = settings.cors_origins or []
if settings.enable_cors:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", "Origin"],
        max_age=3600,
    )
    log_info(f"CORS enabled for origins: {cors_origins}")


def _trusted_hosts() -> list[str]:
    """Hostnames allowed by TrustedHostMiddleware; every host outside production."""
    if settings.environment != "production":
        return ["*"]
    hosts = []
    for candidate in (settings.app_url, settings.domain_name, *cors_origins):
        if not candidate:
            continue
        hostname = urlparse(candidate if "://" in candidate else f"//{candidate}").hostname
        if hostname and hostname not in hosts:
            hosts.append(hostname)
    if not hosts:
        log_warning("No public hostname configured in production; allowing all hosts")
        return ["*"]
    # Container health checks
    return hosts + ["localhost", "127.0.0.1"]


app.add_middleware(GZipMiddleware, minimum_size=1024)
app.add_middleware(TrustedHostMiddleware, allowed_hosts=_trusted_hosts())
app.add_middleware(RequestLoggingMiddleware)


@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    start_time = time.perf_counter()
    response = await call_next(request)
    response.headers["X-Process-Time"] = f"{time.perf_counter() - start_time:.4f}"
    return response


# -----------------------------------------------------------------------------
# Exception Handlers
# -----------------------------------------------------------------------------
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return validation errors without echoing submitted values (they may be tokens)."""
    request_id = request_id_ctx.get()
    errors = [{"loc": err.get("loc"), "msg": err.get("msg"), "type": err.get("type")} for err in exc.errors()]
    log_warning(
        "Request validation failed",
        request_id=request_id,
        path=request.url.path,
        method=request.method,
        errors=errors,
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"error": "validation_error", "message": errors, "request_id": request_id},
    )


@app.exception_handler(CatalystAppException)
async def catalyst_app_exception_handler(request: Request, exc: CatalystAppException):
    request_id = request_id_ctx.get()
    status_code = next(
        (code for exc_types, code in EXCEPTION_STATUS_CODES if isinstance(exc, exc_types)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if status_code >= 500:
        log_error(exc, request_id=request_id, path=request.url.path)
    else:
        log_warning(f"{type(exc).__name__}: {exc}", request_id=request_id, path=request.url.path)

    message = (
        "An unexpected internal error occurred."
        if settings.environment == "production" and status_code >= 500
        else str(exc)
    )
    return JSONResponse(
        status_code=status_code,
        content={"error": type(exc).__name__, "message": message, "request_id": request_id},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    request_id = request_id_ctx.get()
    log_error(exc, request_id=request_id, path=request.url.path)
    message = (
        "An unexpected error occurred. Please try again later."
        if settings.environment == "production"
        else str(exc)
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "internal_server_error", "message": message, "request_id": request_id},
    )


app.include_router(api_router, prefix=settings.api_v1_prefix)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=settings.app_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
