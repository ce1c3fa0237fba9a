"""
Coupon engine interface
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Union


class NotApplicable:
    """Marker returned when a coupon does not apply to an order"""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "NOT_APPLICABLE"


NOT_APPLICABLE = NotApplicable()


@dataclass(frozen=True)
class CouponLine:
    ticket_definition_id: int
    quantity: int
    unit_price: int


class CouponEngine(ABC):
    """Applies coupon rules owned by another service."""

    @abstractmethod
    async def apply_coupon(self, code: str, line_items: List[CouponLine]) -> Union[int, NotApplicable]:
        """
        Return the discounted order total in cents, or NOT_APPLICABLE when the
        coupon cannot be used for these lines.
        """
        ...


class NoCouponEngine(CouponEngine):
    """Default engine for deployments without a coupon service"""

    async def apply_coupon(self, code, line_items):
        return NOT_APPLICABLE


# Global coupon engine
coupon_engine = NoCouponEngine()


def get_coupon_engine() -> CouponEngine:
    return coupon_engine
