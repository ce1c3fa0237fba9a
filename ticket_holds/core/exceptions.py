"""
Domain exceptions for ticket holds, purchase links and redemptions
"""

from typing import Optional, Dict, Any, List


class HoldEngineError(Exception):
    """Base exception carrying a stable error code and an HTTP status"""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(HoldEngineError):
    """Rejected input, reported as a list of field errors"""

    def __init__(self, message: str, field: Optional[str] = None, errors: Optional[List[Dict]] = None):
        if errors is None:
            errors = [{"field": field, "message": message}] if field else []
        super().__init__(
            message=message,
            code="validation_error",
            status_code=422,
            details={"errors": errors}
        )


class NotFoundError(HoldEngineError):
    """Resource not found errors"""

    def __init__(self, resource: str, identifier: Any = None, code: str = "not_found"):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} {identifier} not found"
        super().__init__(
            message=message,
            code=code,
            status_code=404
        )


class HoldNotFoundError(NotFoundError):
    def __init__(self, hold_id: Any = None):
        super().__init__("Ticket hold", hold_id, code="hold_not_found")


class LinkNotFoundError(NotFoundError):
    def __init__(self, link_id: Any = None):
        super().__init__("Purchase link", link_id, code="link_not_found")


class HoldNotActiveError(HoldEngineError):
    """The hold is released, exhausted or past its expiry"""

    def __init__(self, message: str = "The ticket hold associated with this link is not active."):
        super().__init__(
            message=message,
            code="hold_not_active",
            status_code=422
        )


class LinkNotUsableError(HoldEngineError):
    """The link is missing, revoked, exhausted or past its expiry"""

    def __init__(
        self,
        message: str = "This purchase link is not available.",
        code: str = "link_not_usable",
        details: Optional[Dict] = None
    ):
        super().__init__(
            message=message,
            code=code,
            status_code=422,
            details=details
        )


class LinkQuantityMismatchError(LinkNotUsableError):
    """Requested total does not satisfy the link's quantity mode"""

    def __init__(self, requested: int, remaining: Optional[int], quantity_mode: str):
        if remaining is not None:
            message = f"Cannot purchase {requested} tickets through this link. Remaining quota: {remaining}"
        else:
            message = f"Cannot purchase {requested} tickets through this link."
        super().__init__(
            message=message,
            code="link_quantity_mismatch",
            details={
                "requested": requested,
                "remaining": remaining,
                "quantity_mode": quantity_mode
            }
        )


class UserNotAuthorizedForLinkError(HoldEngineError):
    def __init__(self, message: str = "You are not authorized to use this purchase link."):
        super().__init__(
            message=message,
            code="user_not_authorized_for_link",
            status_code=403
        )


class UnknownHoldItemError(HoldEngineError):
    """No allocation exists in the hold for a ticket definition"""

    def __init__(self, ticket_definition_ids: List[int]):
        ids = ", ".join(str(i) for i in ticket_definition_ids)
        super().__init__(
            message=f"Ticket definition {ids} is not available in this hold.",
            code="unknown_hold_item",
            status_code=422,
            details={"ticket_definition_ids": list(ticket_definition_ids)}
        )


class InsufficientHoldInventoryError(HoldEngineError):
    """
    Hold allocations cannot cover the request.

    `items` lists every failing ticket definition with the requested and the
    available quantity so callers can retry with less.
    """

    def __init__(self, items: List[Dict[str, int]], message: Optional[str] = None):
        if message is None:
            parts = [
                f"ticket {item['ticket_definition_id']} (requested {item['requested']}, available {item['available']})"
                for item in items
            ]
            message = "Insufficient hold inventory for " + ", ".join(parts)
        super().__init__(
            message=message,
            code="insufficient_hold_inventory",
            status_code=409,
            details={"items": items}
        )


class InsufficientInventoryError(HoldEngineError):
    """A ticket definition's own inventory cannot cover a new allocation"""

    def __init__(self, ticket_definition_id: int, requested: int, available: int, ticket_name: Optional[str] = None):
        label = ticket_name or f"ticket {ticket_definition_id}"
        super().__init__(
            message=f"Insufficient inventory for {label}. Requested: {requested}, Available: {available}",
            code="insufficient_inventory",
            status_code=409,
            details={
                "ticket_definition_id": ticket_definition_id,
                "requested": requested,
                "available": available
            }
        )


class CouponNotApplicableError(HoldEngineError):
    def __init__(self, coupon_code: str):
        super().__init__(
            message=f"Coupon '{coupon_code}' cannot be applied to this purchase.",
            code="coupon_not_applicable",
            status_code=422,
            details={"coupon_code": coupon_code}
        )


class LockTimeoutError(HoldEngineError):
    """Gave up waiting for a row lock; safe to retry"""

    def __init__(self, message: str = "The resource is busy, please retry."):
        super().__init__(
            message=message,
            code="lock_timeout",
            status_code=503,
            details={"retryable": True}
        )


class CodeGenerationError(HoldEngineError):
    def __init__(self, attempts: int):
        super().__init__(
            message=f"Unable to generate a unique purchase link code after {attempts} attempts.",
            code="code_generation_failed",
            status_code=500
        )
