"""
Redemption and quote schemas
"""

from pydantic import Field
from typing import List, Optional
from uuid import UUID

from ticket_holds.schemas.base import BaseSchema, IDSchema, UTCDateTime
from ticket_holds.models.enums import PricingMode


class RedemptionItem(BaseSchema):
    ticket_definition_id: int = Field(..., ge=1)
    quantity: int = Field(..., ge=1)


class RedeemRequest(BaseSchema):
    """Body of a redemption"""
    items: List[RedemptionItem] = Field(..., min_length=1)
    coupon_code: Optional[str] = Field(None, max_length=50)
    access_id: Optional[UUID] = None


class QuoteRequest(BaseSchema):
    items: List[RedemptionItem] = Field(..., min_length=1)


class QuoteLineResponse(BaseSchema):
    ticket_definition_id: int
    quantity: int
    unit_price: int
    original_price: int
    line_total: int
    savings: int
    pricing_mode: PricingMode


class QuoteResponse(BaseSchema):
    """Price of an order without reserving anything"""
    items: List[QuoteLineResponse]
    subtotal: int
    total_savings: int
    currency: str


class PurchaseItemResponse(BaseSchema):
    ticket_definition_id: int
    quantity: int
    unit_price: int
    original_price: int
    line_total: int


class PurchaseResponse(IDSchema):
    """Committed purchase"""
    reference: str
    purchase_link_id: UUID
    ticket_hold_id: UUID
    user_id: Optional[int] = None
    coupon_code: Optional[str] = None
    subtotal: int
    coupon_discount: int
    total: int
    total_savings: int
    currency: str
    created_at: UTCDateTime
    items: List[PurchaseItemResponse]
