"""
Public purchase link endpoints
"""

from typing import Any, Optional
from fastapi import APIRouter, Depends, Request

from ticket_holds.config import settings
from ticket_holds.core.security import get_optional_user_id
from ticket_holds.schemas.purchase_link import LinkPreview
from ticket_holds.schemas.redemption import QuoteRequest, QuoteResponse
from ticket_holds.services.purchase_links import PurchaseLinkRegistry, get_purchase_link_registry
from ticket_holds.services.redemption import (
    RedemptionCoordinator,
    RedemptionRequest,
    get_redemption_coordinator,
)

router = APIRouter()


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.get("/{code}", response_model=LinkPreview)
async def preview_link(
    code: str,
    request: Request,
    user_id: Optional[int] = Depends(get_optional_user_id),
    registry: PurchaseLinkRegistry = Depends(get_purchase_link_registry)
) -> Any:
    """
    Show what a link offers and at what price. Every call is logged as an access.
    """
    return await registry.preview(
        code,
        user_id=user_id,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        referer=request.headers.get("referer"),
        session_id=request.headers.get("x-session-id"),
    )


@router.post("/{code}/quote", response_model=QuoteResponse)
async def quote_link(
    code: str,
    quote_data: QuoteRequest,
    user_id: Optional[int] = Depends(get_optional_user_id),
    coordinator: RedemptionCoordinator = Depends(get_redemption_coordinator)
) -> Any:
    """
    Price an order without reserving anything
    """
    order = await coordinator.quote(RedemptionRequest.build(code, quote_data.items), user_id=user_id)
    return {
        "items": [
            {
                "ticket_definition_id": line.ticket_definition_id,
                "quantity": line.quantity,
                "unit_price": line.quote.unit_price,
                "original_price": line.quote.original_price,
                "line_total": line.line_total,
                "savings": line.line_savings,
                "pricing_mode": line.quote.pricing_mode,
            }
            for line in order.items
        ],
        "subtotal": order.subtotal,
        "total_savings": order.total_savings,
        "currency": settings.CURRENCY,
    }
