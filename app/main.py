"""
FastAPI application entry point.
Initializes the FastAPI app, configures logging, and includes sync and webhook routes.
"""

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.database import dispose_engine, init_models
from app.dependencies import get_kiotviet_client
from app.integrations.kiotviet.token_cache import CredentialError
from app.routers import sync, webhooks
from app.utils.logger import configure_logging

SERVICE_NAME = "KiotViet Sync Middleware"
SERVICE_VERSION = "1.0.0"

# Configure logging first
configure_logging()
logger = structlog.get_logger()

# Create FastAPI app
app = FastAPI(
    title=SERVICE_NAME,
    description="Middleware for syncing the KiotViet POS catalog and orders with the storefront database",
    version=SERVICE_VERSION,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(webhooks.router)  # KiotViet order.update webhooks
app.include_router(sync.router)  # Manual product/order sync


@app.exception_handler(CredentialError)
async def credential_error_handler(request: Request, exc: CredentialError):
    logger.error("KiotViet credentials unavailable", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": str(exc)},
    )


@app.on_event("startup")
async def startup_event():
    """Application startup event."""
    logger.info(
        f"{SERVICE_NAME} started",
        environment=settings.app_environment,
        branch_id=settings.kiotviet_website_branch_id,
        sale_channel_id=settings.kiotviet_website_sale_channel_id,
    )
    if settings.database_auto_create:
        await init_models()
    if not settings.kiotviet_webhook_secret:
        if settings.kiotviet_webhook_allow_unsigned:
            logger.warning("KiotViet webhook signature verification is disabled")
        else:
            logger.error(
                "KiotViet webhook secret missing and unsigned webhooks disabled; "
                "every webhook will be rejected"
            )


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event."""
    logger.info(f"{SERVICE_NAME} shutting down")
    if get_kiotviet_client.cache_info().currsize:
        await get_kiotviet_client().close()
    await dispose_engine()


@app.get("/")
async def root():
    """Root endpoint - also serves as a simple health check."""
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "kiotviet_configured": bool(
            settings.kiotviet_client_id and settings.kiotviet_client_secret
        ),
    }


@app.get("/healthz")
async def healthz():
    """Alternative health check endpoint (Kubernetes-style)."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True)
