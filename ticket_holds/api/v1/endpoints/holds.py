"""
Ticket hold management endpoints
"""

from typing import Any, Dict, List, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, Query, status

from ticket_holds.core.security import Identity, require_operator
from ticket_holds.models.enums import HoldStatus
from ticket_holds.schemas.ticket_hold import HoldCreate, HoldUpdate, HoldResponse
from ticket_holds.schemas.purchase_link import LinkResponse
from ticket_holds.services.analytics import HoldAnalyticsService, get_analytics_service
from ticket_holds.services.hold_ledger import HoldLedger, get_hold_ledger
from ticket_holds.services.purchase_links import PurchaseLinkRegistry, get_purchase_link_registry

router = APIRouter()


@router.post("", response_model=HoldResponse, status_code=status.HTTP_201_CREATED)
async def create_hold(
    hold_data: HoldCreate,
    identity: Identity = Depends(require_operator),
    ledger: HoldLedger = Depends(get_hold_ledger)
) -> Any:
    """
    Reserve inventory for an event occurrence
    """
    return await ledger.create_hold(hold_data, created_by=identity.user_id)


@router.get("", response_model=List[HoldResponse])
async def list_holds(
    event_occurrence_id: Optional[int] = None,
    organizer_id: Optional[int] = None,
    hold_status: Optional[HoldStatus] = Query(None, alias="status"),
    skip: int = 0,
    limit: int = 100,
    identity: Identity = Depends(require_operator),
    ledger: HoldLedger = Depends(get_hold_ledger)
) -> Any:
    """
    List holds, newest first
    """
    return await ledger.list_holds(
        event_occurrence_id=event_occurrence_id,
        organizer_id=organizer_id,
        status=hold_status,
        skip=skip,
        limit=limit
    )


@router.get("/{hold_id}", response_model=HoldResponse)
async def get_hold(
    hold_id: UUID,
    identity: Identity = Depends(require_operator),
    ledger: HoldLedger = Depends(get_hold_ledger)
) -> Any:
    return await ledger.get_hold(hold_id)


@router.patch("/{hold_id}", response_model=HoldResponse)
async def update_hold(
    hold_id: UUID,
    hold_data: HoldUpdate,
    identity: Identity = Depends(require_operator),
    ledger: HoldLedger = Depends(get_hold_ledger)
) -> Any:
    """
    Update an active hold; a provided allocation list replaces the current one
    """
    return await ledger.update_hold(hold_id, hold_data)


@router.post("/{hold_id}/release", response_model=HoldResponse)
async def release_hold(
    hold_id: UUID,
    identity: Identity = Depends(require_operator),
    ledger: HoldLedger = Depends(get_hold_ledger)
) -> Any:
    """
    Release a hold back to general inventory
    """
    return await ledger.release_hold(hold_id, released_by=identity.user_id)


@router.get("/{hold_id}/links", response_model=List[LinkResponse])
async def list_hold_links(
    hold_id: UUID,
    identity: Identity = Depends(require_operator),
    registry: PurchaseLinkRegistry = Depends(get_purchase_link_registry)
) -> Any:
    return await registry.list_links(hold_id)


@router.get("/{hold_id}/analytics")
async def hold_analytics(
    hold_id: UUID,
    identity: Identity = Depends(require_operator),
    analytics: HoldAnalyticsService = Depends(get_analytics_service)
) -> Dict[str, Any]:
    return await analytics.get_hold_analytics(hold_id)
