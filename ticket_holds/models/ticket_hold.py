"""
TicketHold and HoldAllocation models
"""

from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    ForeignKey,
    Enum,
    CheckConstraint,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from ticket_holds.models.base import BaseModel, LifecycleMixin, UTCDateTime
from ticket_holds.models.enums import HoldStatus, PricingMode, enum_values
from ticket_holds.models.pricing import PricingRule, pricing_rule


class TicketHold(LifecycleMixin, BaseModel):
    """
    Inventory reserved for one event occurrence, outside general sale
    """
    __tablename__ = "ticket_holds"

    event_occurrence_id = Column(Integer, nullable=False, index=True)
    organizer_id = Column(Integer, index=True)
    created_by = Column(Integer)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    internal_notes = Column(Text)
    status = Column(
        Enum(HoldStatus, name="hold_status", values_callable=enum_values),
        default=HoldStatus.ACTIVE,
        nullable=False,
        index=True
    )
    expires_at = Column(UTCDateTime(), index=True)
    released_at = Column(UTCDateTime())
    released_by = Column(Integer)

    # Relationships
    allocations = relationship(
        "HoldAllocation",
        back_populates="ticket_hold",
        cascade="all, delete-orphan",
        order_by="HoldAllocation.ticket_definition_id",
        lazy="selectin"
    )
    purchase_links = relationship("PurchaseLink", back_populates="ticket_hold", lazy="raise")

    @property
    def total_allocated(self) -> int:
        return sum(a.allocated_quantity for a in self.allocations)

    @property
    def total_redeemed(self) -> int:
        return sum(a.redeemed_count for a in self.allocations)

    @property
    def total_remaining(self) -> int:
        return sum(a.remaining_quantity for a in self.allocations)

    def allocation_for(self, ticket_definition_id: int):
        for allocation in self.allocations:
            if allocation.ticket_definition_id == ticket_definition_id:
                return allocation
        return None

    def __repr__(self):
        return f"<TicketHold(id={self.id}, name={self.name}, status={self.status})>"


class HoldAllocation(BaseModel):
    """
    Quantity of one ticket definition inside a hold, with its pricing rule
    """
    __tablename__ = "hold_allocations"
    __table_args__ = (
        UniqueConstraint("ticket_hold_id", "ticket_definition_id", name="uq_allocation_hold_definition"),
        CheckConstraint("allocated_quantity >= 1", name="ck_allocation_quantity_positive"),
        CheckConstraint("redeemed_count >= 0", name="ck_allocation_redeemed_non_negative"),
        CheckConstraint("redeemed_count <= allocated_quantity", name="ck_allocation_not_oversold"),
    )

    ticket_hold_id = Column(
        ForeignKey("ticket_holds.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    ticket_definition_id = Column(Integer, ForeignKey("ticket_definitions.id"), nullable=False, index=True)
    allocated_quantity = Column(Integer, nullable=False)
    redeemed_count = Column(Integer, default=0, nullable=False)
    pricing_mode = Column(
        Enum(PricingMode, name="pricing_mode", values_callable=enum_values),
        default=PricingMode.ORIGINAL,
        nullable=False
    )
    custom_price = Column(Integer)  # cents
    discount_percentage = Column(Integer)

    # Relationships
    ticket_hold = relationship("TicketHold", back_populates="allocations")

    @property
    def remaining_quantity(self) -> int:
        return max(0, self.allocated_quantity - (self.redeemed_count or 0))

    @property
    def pricing(self) -> PricingRule:
        return pricing_rule(self.pricing_mode, self.custom_price, self.discount_percentage)

    def __repr__(self):
        return (
            f"<HoldAllocation(hold={self.ticket_hold_id}, ticket={self.ticket_definition_id}, "
            f"allocated={self.allocated_quantity}, redeemed={self.redeemed_count})>"
        )
