"""
FastAPI application entry point.
Initializes the FastAPI app, configures logging, maps integration errors to HTTP
responses and includes the integration, menu and webhook routes.
"""

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from possync.dependencies import ServiceContainer, get_container
from possync.exceptions import IntegrationError
from possync.routers import integrations, menu, webhooks
from possync.utils.logger import configure_logging

# Configure logging first
configure_logging()
logger = structlog.get_logger()

SERVICE_NAME = "POS Catalog Sync"
SERVICE_VERSION = "0.1.0"

app = FastAPI(
    title=SERVICE_NAME,
    description="Keeps tenant menus in sync with their Square or Toast catalog",
    version=SERVICE_VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(integrations.router)
app.include_router(menu.router)
app.include_router(webhooks.router)


@app.exception_handler(IntegrationError)
async def integration_error_handler(request: Request, exc: IntegrationError):
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "Integration error",
        path=request.url.path,
        error=exc.code,
        provider=exc.provider,
        detail=exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.on_event("startup")
async def startup_event():
    """Application startup event."""
    logger.info(f"{SERVICE_NAME} started")

    # Log loaded integrations to verify adapters are registered
    loaded_integrations = get_container().registry.list_available()
    logger.info(
        "Integration adapters loaded",
        integrations=loaded_integrations,
        count=len(loaded_integrations),
    )


@app.on_event("shutdown")
async def shutdown_event():
    """Let webhook-triggered syncs finish before the process exits."""
    logger.info(f"{SERVICE_NAME} shutting down")
    await get_container().dispatcher.drain(timeout=30.0)


@app.get("/")
async def root(container: ServiceContainer = Depends(get_container)):
    """Root endpoint - also serves as a simple health check."""
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "integrations": container.registry.list_available(),
    }


@app.get("/health")
async def health(container: ServiceContainer = Depends(get_container)):
    """Health check endpoint."""
    return {
        "status": "healthy",
        "integrations": container.registry.list_available(),
    }


@app.get("/healthz")
async def healthz():
    """Alternative health check endpoint (Kubernetes-style)."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("possync.main:app", host="0.0.0.0", port=8000, reload=True)
