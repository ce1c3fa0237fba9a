"""
Purchase link schemas
"""

from pydantic import Field, model_validator
from typing import Any, Dict, List, Optional
from uuid import UUID

from ticket_holds.schemas.base import BaseSchema, IDSchema, TimestampSchema, UTCDateTime
from ticket_holds.models.enums import HoldStatus, LinkStatus, PricingMode, QuantityMode


class LinkCreate(BaseSchema):
    """Purchase link creation schema"""
    ticket_hold_id: UUID
    name: Optional[str] = Field(None, max_length=255)
    assigned_user_id: Optional[int] = Field(None, ge=1)
    quantity_mode: QuantityMode = QuantityMode.MAXIMUM
    quantity_limit: Optional[int] = Field(None, ge=1)
    expires_at: Optional[UTCDateTime] = None
    notes: Optional[str] = Field(None, max_length=5000)
    metadata: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def validate_quantity_limit(self):
        if QuantityMode(self.quantity_mode).has_limit() and self.quantity_limit is None:
            raise ValueError("A quantity limit is required unless the quantity mode is unlimited")
        return self


class LinkUpdate(BaseSchema):
    """Partial link update; the quantity mode cannot change"""
    name: Optional[str] = Field(None, max_length=255)
    assigned_user_id: Optional[int] = Field(None, ge=1)
    quantity_limit: Optional[int] = Field(None, ge=1)
    expires_at: Optional[UTCDateTime] = None
    notes: Optional[str] = Field(None, max_length=5000)
    metadata: Optional[Dict[str, Any]] = None


class LinkResponse(IDSchema, TimestampSchema):
    """Purchase link response schema"""
    code: str
    ticket_hold_id: UUID
    name: Optional[str] = None
    assigned_user_id: Optional[int] = None
    quantity_mode: QuantityMode
    quantity_limit: Optional[int] = None
    redeemed_count: int
    remaining_quantity: Optional[int] = None
    status: LinkStatus
    expires_at: Optional[UTCDateTime] = None
    revoked_at: Optional[UTCDateTime] = None
    revoked_by: Optional[int] = None
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="link_metadata")


class PricedAllocation(BaseSchema):
    """Allocation as shown to a buyer"""
    ticket_definition_id: int
    ticket_name: Optional[str] = None
    remaining_quantity: int
    pricing_mode: PricingMode
    unit_price: int
    original_price: int
    savings: int
    savings_percentage: int
    is_free: bool


class LinkPreviewHold(BaseSchema):
    id: UUID
    name: str
    event_occurrence_id: int
    status: HoldStatus
    expires_at: Optional[UTCDateTime] = None


class LinkPreview(BaseSchema):
    """Public view of a purchase link"""
    code: str
    name: Optional[str] = None
    quantity_mode: QuantityMode
    quantity_limit: Optional[int] = None
    remaining_quantity: Optional[int] = None
    expires_at: Optional[UTCDateTime] = None
    is_usable: bool
    errors: List[str] = []
    currency: str
    access_id: Optional[UUID] = None
    hold: LinkPreviewHold
    allocations: List[PricedAllocation]
