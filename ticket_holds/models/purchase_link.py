"""
PurchaseLink and PurchaseLinkAccess models
"""

from typing import Optional

from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    Boolean,
    ForeignKey,
    Enum,
    JSON,
    CheckConstraint,
)
from sqlalchemy.orm import relationship

from ticket_holds.models.base import BaseModel, LifecycleMixin, UTCDateTime, utcnow
from ticket_holds.models.enums import LinkStatus, QuantityMode, enum_values


class PurchaseLink(LifecycleMixin, BaseModel):
    """
    Shareable code that lets a buyer purchase from a hold
    """
    __tablename__ = "purchase_links"
    __table_args__ = (
        CheckConstraint(
            "quantity_limit IS NULL OR quantity_limit >= 1",
            name="ck_link_limit_positive"
        ),
        CheckConstraint(
            "quantity_limit IS NULL OR redeemed_count <= quantity_limit",
            name="ck_link_not_overused"
        ),
    )

    code = Column(String(64), unique=True, nullable=False, index=True)
    ticket_hold_id = Column(ForeignKey("ticket_holds.id"), nullable=False, index=True)
    name = Column(String(255))
    assigned_user_id = Column(Integer, index=True)
    quantity_mode = Column(
        Enum(QuantityMode, name="quantity_mode", values_callable=enum_values),
        default=QuantityMode.MAXIMUM,
        nullable=False
    )
    quantity_limit = Column(Integer)
    redeemed_count = Column(Integer, default=0, nullable=False)
    status = Column(
        Enum(LinkStatus, name="link_status", values_callable=enum_values),
        default=LinkStatus.ACTIVE,
        nullable=False,
        index=True
    )
    expires_at = Column(UTCDateTime(), index=True)
    revoked_at = Column(UTCDateTime())
    revoked_by = Column(Integer)
    notes = Column(Text)
    link_metadata = Column("metadata", JSON, default=dict)

    # Relationships
    ticket_hold = relationship("TicketHold", back_populates="purchase_links", lazy="raise")

    @property
    def remaining_quantity(self) -> Optional[int]:
        """None for unlimited links"""
        if not self.quantity_mode.has_limit():
            return None
        return max(0, self.quantity_limit - (self.redeemed_count or 0))

    def is_restricted_to_user(self) -> bool:
        return self.assigned_user_id is not None

    def __repr__(self):
        return f"<PurchaseLink(id={self.id}, code={self.code}, status={self.status})>"


class PurchaseLinkAccess(BaseModel):
    """
    Append-only record of a link being opened
    """
    __tablename__ = "purchase_link_accesses"

    purchase_link_id = Column(ForeignKey("purchase_links.id"), nullable=False, index=True)
    user_id = Column(Integer, index=True)
    ip_address = Column(String(45))
    user_agent = Column(String(500))
    referer = Column(Text)
    session_id = Column(String(255))
    resulted_in_purchase = Column(Boolean, default=False, nullable=False)
    accessed_at = Column(UTCDateTime(), default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<PurchaseLinkAccess(link={self.purchase_link_id}, at={self.accessed_at})>"
