"""
HoldPurchase and HoldPurchaseItem models
"""

from sqlalchemy import Column, String, Integer, ForeignKey
from sqlalchemy.orm import relationship

from ticket_holds.models.base import BaseModel


class HoldPurchase(BaseModel):
    """
    Committed redemption of a purchase link
    """
    __tablename__ = "hold_purchases"

    reference = Column(String(20), unique=True, nullable=False, index=True)
    purchase_link_id = Column(ForeignKey("purchase_links.id"), nullable=False, index=True)
    ticket_hold_id = Column(ForeignKey("ticket_holds.id"), nullable=False, index=True)
    user_id = Column(Integer, index=True)
    access_id = Column(ForeignKey("purchase_link_accesses.id"))
    coupon_code = Column(String(50))
    subtotal = Column(Integer, nullable=False)  # cents
    coupon_discount = Column(Integer, default=0, nullable=False)
    total = Column(Integer, nullable=False)
    total_savings = Column(Integer, default=0, nullable=False)
    currency = Column(String(3), nullable=False)

    # Relationships
    items = relationship(
        "HoldPurchaseItem",
        back_populates="purchase",
        cascade="all, delete-orphan",
        order_by="HoldPurchaseItem.ticket_definition_id",
        lazy="selectin"
    )

    @property
    def ticket_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def __repr__(self):
        return f"<HoldPurchase(reference={self.reference}, total={self.total})>"


class HoldPurchaseItem(BaseModel):
    """
    One priced line of a purchase
    """
    __tablename__ = "hold_purchase_items"

    hold_purchase_id = Column(
        ForeignKey("hold_purchases.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    ticket_definition_id = Column(Integer, nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Integer, nullable=False)
    original_price = Column(Integer, nullable=False)
    line_total = Column(Integer, nullable=False)

    # Relationships
    purchase = relationship("HoldPurchase", back_populates="items")

    @property
    def savings(self) -> int:
        return (self.original_price - self.unit_price) * self.quantity
