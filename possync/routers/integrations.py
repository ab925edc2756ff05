"""
FastAPI router for POS integrations.
Connect (Square OAuth / Toast client credentials), disconnect, status, manual sync
and sync run history.
"""

from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from possync.dependencies import ServiceContainer, get_container
from possync.exceptions import InvalidCredentialsError
from possync.integrations.square.oauth import authorization_url, decode_oauth_state
from possync.models.database import IntegrationProvider, SyncRun, TriggerSource
from possync.routers.auth import get_current_tenant_id
from possync.sync.orchestrator import ConnectResult, IntegrationStatus, SyncResult

logger = structlog.get_logger()

router = APIRouter(prefix="/integrations", tags=["integrations"])


class ToastConnectRequest(BaseModel):
    client_id: str
    client_secret: str
    restaurant_guid: str


def resolve_provider(provider: str) -> IntegrationProvider:
    """Path parameter -> provider; only real POS providers are routable."""
    try:
        resolved = IntegrationProvider(provider.lower())
    except ValueError:
        resolved = IntegrationProvider.NONE
    if resolved == IntegrationProvider.NONE:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown provider: {provider}")
    return resolved


@router.get("/square/connect")
async def square_connect(
    tenant_id: str = Depends(get_current_tenant_id),
    container: ServiceContainer = Depends(get_container),
):
    """Start the Square OAuth flow. Fails fast if another POS is active."""
    await container.orchestrator.check_can_connect(tenant_id, IntegrationProvider.SQUARE)
    return {"auth_url": authorization_url(tenant_id)}


@router.get("/square/callback", response_model=ConnectResult)
async def square_callback(
    code: Optional[str] = Query(None, description="Authorization code from Square"),
    state: Optional[str] = Query(None, description="State parameter"),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    container: ServiceContainer = Depends(get_container),
):
    """
    Square OAuth callback.
    The tenant comes from the signed state created by /square/connect.
    """
    if error:
        logger.warning("Square OAuth error", error=error, error_description=error_description)
        raise InvalidCredentialsError(error_description or error, provider="square")
    if not code:
        raise InvalidCredentialsError("Invalid OAuth callback parameters", provider="square")

    oauth_state = decode_oauth_state(state)
    return await container.orchestrator.connect(
        oauth_state.tenant_id, IntegrationProvider.SQUARE, {"code": code}
    )


@router.post("/toast/connect", response_model=ConnectResult)
async def toast_connect(
    request: ToastConnectRequest,
    tenant_id: str = Depends(get_current_tenant_id),
    container: ServiceContainer = Depends(get_container),
):
    return await container.orchestrator.connect(
        tenant_id, IntegrationProvider.TOAST, request.model_dump()
    )


@router.post("/{provider}/disconnect")
async def disconnect(
    provider: IntegrationProvider = Depends(resolve_provider),
    tenant_id: str = Depends(get_current_tenant_id),
    container: ServiceContainer = Depends(get_container),
):
    """Disconnect the provider. Menu data synced from it is kept."""
    await container.orchestrator.disconnect(tenant_id, provider)
    return {"success": True, "message": f"{provider.value} integration disconnected"}


@router.get("/{provider}/status", response_model=IntegrationStatus)
async def integration_status(
    provider: IntegrationProvider = Depends(resolve_provider),
    tenant_id: str = Depends(get_current_tenant_id),
    container: ServiceContainer = Depends(get_container),
):
    return await container.orchestrator.status(tenant_id, provider)


@router.post("/{provider}/sync", response_model=SyncResult)
async def manual_sync(
    provider: IntegrationProvider = Depends(resolve_provider),
    tenant_id: str = Depends(get_current_tenant_id),
    container: ServiceContainer = Depends(get_container),
):
    """Run a full catalog sync now and return its outcome."""
    logger.info("Manual sync requested", tenant_id=tenant_id, provider=provider.value)
    return await container.orchestrator.run_sync(tenant_id, TriggerSource.MANUAL, provider)


@router.get("/sync-runs", response_model=List[SyncRun])
async def sync_runs(
    limit: int = Query(20, ge=1, le=100),
    tenant_id: str = Depends(get_current_tenant_id),
    container: ServiceContainer = Depends(get_container),
):
    """Recent sync runs for the tenant, newest first."""
    return await container.integration_store.list_sync_runs(tenant_id, limit=limit)
