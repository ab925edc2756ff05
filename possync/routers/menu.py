"""
FastAPI router for local menu edits made by staff.
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from possync.dependencies import ServiceContainer, get_container
from possync.models.database import LocalMenuItem
from possync.routers.auth import get_current_tenant_id

logger = structlog.get_logger()

router = APIRouter(prefix="/menu", tags=["menu"])


class AvailabilityRequest(BaseModel):
    available: bool


@router.patch("/items/{item_id}/availability", response_model=LocalMenuItem)
async def set_item_availability(
    item_id: str,
    request: AvailabilityRequest,
    tenant_id: str = Depends(get_current_tenant_id),
    container: ServiceContainer = Depends(get_container),
):
    """
    Mark an item available or unavailable.
    Marking it unavailable sets the staff override, which later syncs never undo.
    """
    item = await container.catalog_store.set_item_availability(tenant_id, item_id, request.available)
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Menu item not found: {item_id}")
    logger.info("Item availability set", tenant_id=tenant_id, item_id=item_id, available=request.available)
    return item
