"""
Pydantic schemas for request/response validation
"""

from ticket_holds.schemas.base import BaseSchema, TimestampSchema, IDSchema
from ticket_holds.schemas.response import ErrorResponse, ErrorDetail
from ticket_holds.schemas.ticket_hold import (
    AllocationInput,
    HoldCreate,
    HoldUpdate,
    AllocationResponse,
    HoldResponse,
)
from ticket_holds.schemas.purchase_link import (
    LinkCreate,
    LinkUpdate,
    LinkResponse,
    LinkPreview,
    PricedAllocation,
)
from ticket_holds.schemas.redemption import (
    RedemptionItem,
    RedeemRequest,
    QuoteRequest,
    QuoteResponse,
    PurchaseResponse,
)

__all__ = [
    "BaseSchema",
    "TimestampSchema",
    "IDSchema",
    "ErrorResponse",
    "ErrorDetail",
    "AllocationInput",
    "HoldCreate",
    "HoldUpdate",
    "AllocationResponse",
    "HoldResponse",
    "LinkCreate",
    "LinkUpdate",
    "LinkResponse",
    "LinkPreview",
    "PricedAllocation",
    "RedemptionItem",
    "RedeemRequest",
    "QuoteRequest",
    "QuoteResponse",
    "PurchaseResponse",
]
