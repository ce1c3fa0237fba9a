"""
Purchase link management and redemption endpoints
"""

from typing import Any, Dict, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, status

from ticket_holds.core.security import Identity, get_optional_user_id, require_operator
from ticket_holds.schemas.purchase_link import LinkCreate, LinkUpdate, LinkResponse
from ticket_holds.schemas.redemption import RedeemRequest, PurchaseResponse
from ticket_holds.services.analytics import HoldAnalyticsService, get_analytics_service
from ticket_holds.services.purchase_links import PurchaseLinkRegistry, get_purchase_link_registry
from ticket_holds.services.redemption import (
    RedemptionCoordinator,
    RedemptionRequest,
    get_redemption_coordinator,
)

router = APIRouter()


@router.post("", response_model=LinkResponse, status_code=status.HTTP_201_CREATED)
async def create_link(
    link_data: LinkCreate,
    identity: Identity = Depends(require_operator),
    registry: PurchaseLinkRegistry = Depends(get_purchase_link_registry)
) -> Any:
    """
    Issue a purchase link against an active hold
    """
    return await registry.create_link(link_data, created_by=identity.user_id)


@router.get("/{link_id}", response_model=LinkResponse)
async def get_link(
    link_id: UUID,
    identity: Identity = Depends(require_operator),
    registry: PurchaseLinkRegistry = Depends(get_purchase_link_registry)
) -> Any:
    return await registry.get_link(link_id)


@router.patch("/{link_id}", response_model=LinkResponse)
async def update_link(
    link_id: UUID,
    link_data: LinkUpdate,
    identity: Identity = Depends(require_operator),
    registry: PurchaseLinkRegistry = Depends(get_purchase_link_registry)
) -> Any:
    return await registry.update_link(link_id, link_data)


@router.delete("/{link_id}", response_model=LinkResponse)
async def revoke_link(
    link_id: UUID,
    identity: Identity = Depends(require_operator),
    registry: PurchaseLinkRegistry = Depends(get_purchase_link_registry)
) -> Any:
    """
    Revoke a link; revoking twice returns the revoked link
    """
    return await registry.revoke_link(link_id, revoked_by=identity.user_id)


@router.get("/{link_id}/analytics")
async def link_analytics(
    link_id: UUID,
    identity: Identity = Depends(require_operator),
    analytics: HoldAnalyticsService = Depends(get_analytics_service)
) -> Dict[str, Any]:
    return await analytics.get_link_analytics(link_id)


@router.post("/{code}/redeem", response_model=PurchaseResponse, status_code=status.HTTP_201_CREATED)
async def redeem_link(
    code: str,
    redeem_data: RedeemRequest,
    user_id: Optional[int] = Depends(get_optional_user_id),
    coordinator: RedemptionCoordinator = Depends(get_redemption_coordinator)
) -> Any:
    """
    Buy tickets through a purchase link. Authentication is optional unless
    the link is assigned to a user.
    """
    request = RedemptionRequest.build(code, redeem_data.items, redeem_data.coupon_code)
    result = await coordinator.redeem(request, user_id=user_id, access_id=redeem_data.access_id)
    return result.purchase
