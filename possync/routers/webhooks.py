"""
Webhook endpoints for Square and Toast catalog events.
Both acknowledge quickly; catalog syncs run in the background.
"""

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from possync.dependencies import ServiceContainer, get_container
from possync.models.database import IntegrationProvider

logger = structlog.get_logger()

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def _handle(request: Request, provider: IntegrationProvider, container: ServiceContainer) -> JSONResponse:
    raw_body = await request.body()
    verifier = container.registry.get_verifier(provider)
    signature = request.headers.get(verifier.signature_header) if verifier else None

    logger.info(
        "Received webhook",
        provider=provider.value,
        has_signature=bool(signature),
        body_length=len(raw_body),
    )
    outcome = await container.webhook_service.handle(
        provider, raw_body, signature, request_url=str(request.url)
    )
    return JSONResponse(status_code=outcome.status_code, content=outcome.body)


@router.post("/square")
async def square_webhook(request: Request, container: ServiceContainer = Depends(get_container)):
    """Square webhooks (catalog.version.updated triggers a sync)."""
    return await _handle(request, IntegrationProvider.SQUARE, container)


@router.post("/toast")
async def toast_webhook(request: Request, container: ServiceContainer = Depends(get_container)):
    """Toast webhooks (menu and availability events trigger a sync)."""
    return await _handle(request, IntegrationProvider.TOAST, container)
