"""
Ticket catalog lookups used by the hold engine
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ticket_holds.models.ticket_definition import TicketDefinition

logger = logging.getLogger(__name__)


class TicketCatalog(ABC):
    """Read access to ticket definitions owned by the event catalog."""

    @abstractmethod
    async def exists(self, session: AsyncSession, ticket_definition_id: int) -> bool:
        ...

    @abstractmethod
    async def get_original_price(self, session: AsyncSession, ticket_definition_id: int) -> int:
        """Catalog price in cents. Raises KeyError for an unknown definition."""
        ...

    @abstractmethod
    async def get_total_quantity(self, session: AsyncSession, ticket_definition_id: int) -> Optional[int]:
        """Total inventory of the definition, None when unlimited."""
        ...

    @abstractmethod
    async def get_names(self, session: AsyncSession, ticket_definition_ids: Iterable[int]) -> Dict[int, str]:
        ...


class SqlTicketCatalog(TicketCatalog):
    """Catalog backed by the ticket_definitions table"""

    async def _get(self, session: AsyncSession, ticket_definition_id: int) -> Optional[TicketDefinition]:
        return await session.get(TicketDefinition, ticket_definition_id)

    async def exists(self, session, ticket_definition_id):
        return await self._get(session, ticket_definition_id) is not None

    async def get_original_price(self, session, ticket_definition_id):
        definition = await self._get(session, ticket_definition_id)
        if definition is None:
            raise KeyError(ticket_definition_id)
        return definition.price

    async def get_total_quantity(self, session, ticket_definition_id):
        definition = await self._get(session, ticket_definition_id)
        if definition is None:
            raise KeyError(ticket_definition_id)
        return definition.total_quantity

    async def get_names(self, session, ticket_definition_ids):
        ids = list(ticket_definition_ids)
        if not ids:
            return {}
        result = await session.execute(
            select(TicketDefinition.id, TicketDefinition.name).where(TicketDefinition.id.in_(ids))
        )
        return {row.id: row.name for row in result}


# Global catalog
ticket_catalog = SqlTicketCatalog()


def get_ticket_catalog() -> TicketCatalog:
    return ticket_catalog
