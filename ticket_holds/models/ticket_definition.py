"""
Ticket definitions owned by the event catalog
"""

from sqlalchemy import Column, Integer, String

from ticket_holds.core.database import Base


class TicketDefinition(Base):
    """
    Sellable ticket type of an event occurrence.

    Authored elsewhere; the engine only reads name, price and total quantity.
    """
    __tablename__ = "ticket_definitions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_occurrence_id = Column(Integer, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    price = Column(Integer, nullable=False, default=0)  # cents
    total_quantity = Column(Integer)  # NULL means unlimited

    def __repr__(self):
        return f"<TicketDefinition(id={self.id}, name={self.name}, price={self.price})>"
