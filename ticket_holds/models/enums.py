"""
Status and mode enums shared by holds, allocations and links
"""

import enum


class _LifecycleStatus(str, enum.Enum):
    """
    ACTIVE is the only non-terminal state; every other member is terminal
    and reachable only from ACTIVE.
    """

    def is_usable(self) -> bool:
        return self.value == "active"

    def is_terminal(self) -> bool:
        return not self.is_usable()

    def can_transition_to(self, target: "_LifecycleStatus") -> bool:
        return self.is_usable() and target.is_terminal()

    def label(self) -> str:
        return self.value.replace("_", " ").title()


class HoldStatus(_LifecycleStatus):
    ACTIVE = "active"
    EXPIRED = "expired"
    RELEASED = "released"
    EXHAUSTED = "exhausted"


class LinkStatus(_LifecycleStatus):
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"
    EXHAUSTED = "exhausted"


class PricingMode(str, enum.Enum):
    ORIGINAL = "original"
    FIXED = "fixed"
    PERCENTAGE_DISCOUNT = "percentage_discount"
    FREE = "free"

    def label(self) -> str:
        return {
            PricingMode.ORIGINAL: "Original price",
            PricingMode.FIXED: "Fixed price",
            PricingMode.PERCENTAGE_DISCOUNT: "Percentage discount",
            PricingMode.FREE: "Free",
        }[self]


class QuantityMode(str, enum.Enum):
    FIXED = "fixed"
    MAXIMUM = "maximum"
    UNLIMITED = "unlimited"

    def has_limit(self) -> bool:
        return self is not QuantityMode.UNLIMITED


def enum_values(enum_cls) -> list:
    """Persist enum values rather than member names"""
    return [member.value for member in enum_cls]
