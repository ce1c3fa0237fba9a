"""
Ticket hold schemas
"""

from pydantic import Field, field_validator, model_validator
from typing import List, Optional
from uuid import UUID

from ticket_holds.schemas.base import BaseSchema, IDSchema, TimestampSchema, UTCDateTime
from ticket_holds.models.enums import HoldStatus, PricingMode
from ticket_holds.models.pricing import pricing_rule
from ticket_holds.core.exceptions import ValidationError


class AllocationInput(BaseSchema):
    """Allocation of one ticket definition inside a hold"""
    ticket_definition_id: int = Field(..., ge=1)
    allocated_quantity: int = Field(..., ge=1)
    pricing_mode: PricingMode = PricingMode.ORIGINAL
    custom_price: Optional[int] = Field(None, ge=0)
    discount_percentage: Optional[int] = Field(None, ge=0, le=100)

    @model_validator(mode="after")
    def validate_pricing(self):
        try:
            pricing_rule(self.pricing_mode, self.custom_price, self.discount_percentage)
        except ValidationError as e:
            raise ValueError(e.message) from e
        return self


def _unique_definitions(allocations: Optional[List[AllocationInput]]):
    if allocations is None:
        return allocations
    ids = [a.ticket_definition_id for a in allocations]
    if len(ids) != len(set(ids)):
        raise ValueError("Each ticket definition can only be allocated once per hold")
    return allocations


class HoldCreate(BaseSchema):
    """Hold creation schema"""
    event_occurrence_id: int = Field(..., ge=1)
    organizer_id: Optional[int] = Field(None, ge=1)
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    internal_notes: Optional[str] = Field(None, max_length=5000)
    expires_at: Optional[UTCDateTime] = None
    allocations: List[AllocationInput] = Field(..., min_length=1)

    @field_validator("allocations")
    @classmethod
    def validate_unique_definitions(cls, v):
        return _unique_definitions(v)


class HoldUpdate(BaseSchema):
    """
    Partial hold update.

    Only fields present in the request are applied; `allocations`, when
    present, replaces the hold's allocation set.
    """
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    internal_notes: Optional[str] = Field(None, max_length=5000)
    expires_at: Optional[UTCDateTime] = None
    allocations: Optional[List[AllocationInput]] = Field(None, min_length=1)

    @field_validator("allocations")
    @classmethod
    def validate_unique_definitions(cls, v):
        return _unique_definitions(v)

    @field_validator("name")
    @classmethod
    def name_not_null(cls, v):
        if v is None:
            raise ValueError("Name cannot be empty")
        return v


class AllocationResponse(BaseSchema):
    """Allocation response schema"""
    id: UUID
    ticket_definition_id: int
    allocated_quantity: int
    redeemed_count: int
    remaining_quantity: int
    pricing_mode: PricingMode
    custom_price: Optional[int] = None
    discount_percentage: Optional[int] = None


class HoldResponse(IDSchema, TimestampSchema):
    """Hold response schema"""
    event_occurrence_id: int
    organizer_id: Optional[int] = None
    created_by: Optional[int] = None
    name: str
    description: Optional[str] = None
    internal_notes: Optional[str] = None
    status: HoldStatus
    expires_at: Optional[UTCDateTime] = None
    released_at: Optional[UTCDateTime] = None
    released_by: Optional[int] = None
    total_allocated: int
    total_redeemed: int
    total_remaining: int
    allocations: List[AllocationResponse]
