"""
Database models
"""

from ticket_holds.models.enums import HoldStatus, LinkStatus, PricingMode, QuantityMode
from ticket_holds.models.ticket_definition import TicketDefinition
from ticket_holds.models.ticket_hold import TicketHold, HoldAllocation
from ticket_holds.models.purchase_link import PurchaseLink, PurchaseLinkAccess
from ticket_holds.models.purchase import HoldPurchase, HoldPurchaseItem

__all__ = [
    "HoldStatus",
    "LinkStatus",
    "PricingMode",
    "QuantityMode",
    "TicketDefinition",
    "TicketHold",
    "HoldAllocation",
    "PurchaseLink",
    "PurchaseLinkAccess",
    "HoldPurchase",
    "HoldPurchaseItem"
]
