"""
Hold Ledger: ticket holds, their allocations and inventory caps
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional
from uuid import UUID
import logging

from sqlalchemy import case, select, func
from sqlalchemy.ext.asyncio import AsyncSession

from ticket_holds.core.clock import Clock, get_clock
from ticket_holds.core.database import DatabaseManager, get_db_manager
from ticket_holds.core.exceptions import (
    HoldNotActiveError,
    HoldNotFoundError,
    InsufficientHoldInventoryError,
    InsufficientInventoryError,
    UnknownHoldItemError,
    ValidationError,
)
from ticket_holds.models.enums import HoldStatus
from ticket_holds.models.pricing import pricing_rule, rule_fields
from ticket_holds.models.ticket_hold import TicketHold, HoldAllocation
from ticket_holds.schemas.ticket_hold import AllocationInput, HoldCreate, HoldUpdate
from ticket_holds.services.catalog import TicketCatalog, get_ticket_catalog
from ticket_holds.services.lifecycle import apply_transition

logger = logging.getLogger(__name__)


async def lock_hold(session: AsyncSession, hold_id: UUID) -> Optional[TicketHold]:
    """SELECT ... FOR UPDATE on the hold row"""
    result = await session.execute(
        select(TicketHold)
        .where(TicketHold.id == hold_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def lock_allocations(session: AsyncSession, hold_id: UUID) -> List[HoldAllocation]:
    """Lock every allocation of a hold, ordered by ticket definition"""
    result = await session.execute(
        select(HoldAllocation)
        .where(HoldAllocation.ticket_hold_id == hold_id)
        .order_by(HoldAllocation.ticket_definition_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


def ensure_future(value: Optional[datetime], now: datetime, field: str) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    if value <= now:
        raise ValidationError("The expiry time must be in the future.", field=field)
    return value


class HoldLedger:
    """
    Creates, updates and releases holds.

    Every write runs in its own transaction from DatabaseManager.atomic(),
    taking the hold row lock before any allocation lock.
    """

    def __init__(
        self,
        db: Optional[DatabaseManager] = None,
        catalog: Optional[TicketCatalog] = None,
        clock: Optional[Clock] = None,
    ):
        self.db = db or get_db_manager()
        self.catalog = catalog or get_ticket_catalog()
        self.clock = clock or get_clock()

    def _validate_allocations(self, allocations: List[AllocationInput]) -> None:
        if not allocations:
            raise ValidationError("At least one allocation is required.", field="allocations")
        ids = [a.ticket_definition_id for a in allocations]
        if len(ids) != len(set(ids)):
            raise ValidationError(
                "Each ticket definition can only be allocated once per hold.",
                field="allocations"
            )
        for index, allocation in enumerate(allocations):
            pricing_rule(
                allocation.pricing_mode,
                allocation.custom_price,
                allocation.discount_percentage,
                field_prefix=f"allocations.{index}.",
            )

    async def _validate_definitions(self, session: AsyncSession, allocations: List[AllocationInput]) -> None:
        errors = []
        for index, allocation in enumerate(allocations):
            if not await self.catalog.exists(session, allocation.ticket_definition_id):
                errors.append({
                    "field": f"allocations.{index}.ticket_definition_id",
                    "message": f"Ticket definition {allocation.ticket_definition_id} does not exist."
                })
        if errors:
            raise ValidationError("Unknown ticket definition.", errors=errors)

    async def _check_general_inventory(
        self,
        session: AsyncSession,
        allocations: Iterable[AllocationInput],
        exclude_hold_id: Optional[UUID] = None,
    ) -> None:
        """
        The definition's total quantity must cover every ACTIVE hold's
        allocation, the tickets already sold through any other hold, and the
        requested allocation.

        The hold being updated is excluded entirely: its redeemed tickets are
        part of its new allocation, since allocations never drop below
        their redeemed count.
        """
        consumed = case(
            (TicketHold.status == HoldStatus.ACTIVE, HoldAllocation.allocated_quantity),
            else_=HoldAllocation.redeemed_count,
        )
        for allocation in allocations:
            total = await self.catalog.get_total_quantity(session, allocation.ticket_definition_id)
            if total is None:
                continue

            stmt = (
                select(func.coalesce(func.sum(consumed), 0))
                .join(TicketHold, TicketHold.id == HoldAllocation.ticket_hold_id)
                .where(HoldAllocation.ticket_definition_id == allocation.ticket_definition_id)
            )
            if exclude_hold_id is not None:
                stmt = stmt.where(TicketHold.id != exclude_hold_id)
            already_held = (await session.execute(stmt)).scalar_one()

            available = max(0, total - already_held)
            if allocation.allocated_quantity > available:
                names = await self.catalog.get_names(session, [allocation.ticket_definition_id])
                raise InsufficientInventoryError(
                    ticket_definition_id=allocation.ticket_definition_id,
                    requested=allocation.allocated_quantity,
                    available=available,
                    ticket_name=names.get(allocation.ticket_definition_id),
                )

    async def create_hold(self, data: HoldCreate, created_by: Optional[int] = None) -> TicketHold:
        """
        Create an ACTIVE hold with its allocations in one transaction.

        Raises:
            ValidationError: bad allocations, unknown definitions or a past expiry
            InsufficientInventoryError: a definition's inventory is already held
        """
        now = self.clock.now()
        expires_at = ensure_future(data.expires_at, now, "expires_at")
        self._validate_allocations(data.allocations)

        async with self.db.atomic() as session:
            await self._validate_definitions(session, data.allocations)
            await self._check_general_inventory(session, data.allocations)

            hold = TicketHold(
                event_occurrence_id=data.event_occurrence_id,
                organizer_id=data.organizer_id,
                created_by=created_by,
                name=data.name,
                description=data.description,
                internal_notes=data.internal_notes,
                status=HoldStatus.ACTIVE,
                expires_at=expires_at,
            )
            hold.allocations = [
                HoldAllocation(
                    ticket_definition_id=a.ticket_definition_id,
                    allocated_quantity=a.allocated_quantity,
                    redeemed_count=0,
                    **rule_fields(pricing_rule(a.pricing_mode, a.custom_price, a.discount_percentage)),
                )
                for a in sorted(data.allocations, key=lambda a: a.ticket_definition_id)
            ]
            session.add(hold)
            await session.flush()

        logger.info(
            f"Hold {hold.id} created for occurrence {hold.event_occurrence_id} "
            f"with {len(hold.allocations)} allocation(s)"
        )
        return hold

    async def update_hold(self, hold_id: UUID, data: HoldUpdate) -> TicketHold:
        """
        Apply a partial update to an ACTIVE hold.

        A provided allocation list replaces the current set: kept definitions
        are updated in place and keep their redeemed count, new ones are
        added and missing ones removed. A hold left with nothing to sell
        becomes EXHAUSTED.

        Raises:
            HoldNotFoundError: hold missing or already terminal
            InsufficientHoldInventoryError: an allocation would drop below what was redeemed
        """
        now = self.clock.now()
        changes = data.model_dump(exclude_unset=True, exclude={"allocations"})
        if "expires_at" in changes:
            changes["expires_at"] = ensure_future(changes["expires_at"], now, "expires_at")
        new_allocations = data.allocations if "allocations" in data.model_fields_set else None
        if new_allocations is not None:
            self._validate_allocations(new_allocations)

        async with self.db.atomic() as session:
            hold = await lock_hold(session, hold_id)
            if hold is None or hold.status.is_terminal():
                raise HoldNotFoundError(hold_id)
            current = await lock_allocations(session, hold_id)

            for key, value in changes.items():
                setattr(hold, key, value)

            if new_allocations is not None:
                await self._validate_definitions(session, new_allocations)
                self._check_shrink(current, new_allocations)
                await self._check_general_inventory(session, new_allocations, exclude_hold_id=hold.id)
                self._replace_allocations(hold, current, new_allocations)
                if all(a.remaining_quantity == 0 for a in hold.allocations):
                    apply_transition(hold, HoldStatus.EXHAUSTED, reason="inventory_exhausted")

            await session.flush()
            await session.refresh(hold, attribute_names=["allocations"])

        logger.info(f"Hold {hold.id} updated: {sorted(data.model_fields_set)}")
        return hold

    def _check_shrink(self, current: List[HoldAllocation], incoming: List[AllocationInput]) -> None:
        requested: Dict[int, int] = {a.ticket_definition_id: a.allocated_quantity for a in incoming}
        conflicts = []
        for allocation in current:
            new_quantity = requested.get(allocation.ticket_definition_id, 0)
            if new_quantity < allocation.redeemed_count:
                conflicts.append({
                    "ticket_definition_id": allocation.ticket_definition_id,
                    "requested": new_quantity,
                    "available": allocation.redeemed_count,
                })
        if conflicts:
            parts = [
                f"ticket {c['ticket_definition_id']} (requested {c['requested']}, already redeemed {c['available']})"
                for c in conflicts
            ]
            raise InsufficientHoldInventoryError(
                conflicts,
                message="Allocations cannot drop below their redeemed count: " + ", ".join(parts)
            )

    def _replace_allocations(
        self,
        hold: TicketHold,
        current: List[HoldAllocation],
        incoming: List[AllocationInput],
    ) -> None:
        by_definition = {a.ticket_definition_id: a for a in current}
        keep = set()
        for data in sorted(incoming, key=lambda a: a.ticket_definition_id):
            fields = rule_fields(pricing_rule(data.pricing_mode, data.custom_price, data.discount_percentage))
            allocation = by_definition.get(data.ticket_definition_id)
            if allocation is None:
                hold.allocations.append(HoldAllocation(
                    ticket_definition_id=data.ticket_definition_id,
                    allocated_quantity=data.allocated_quantity,
                    redeemed_count=0,
                    **fields,
                ))
                continue
            allocation.allocated_quantity = data.allocated_quantity
            for key, value in fields.items():
                setattr(allocation, key, value)
            keep.add(data.ticket_definition_id)

        for allocation in current:
            if allocation.ticket_definition_id not in keep:
                hold.allocations.remove(allocation)

    async def release_hold(self, hold_id: UUID, released_by: Optional[int] = None) -> TicketHold:
        """
        Release an ACTIVE hold. Releasing a terminal hold changes nothing.

        Purchase links of the hold keep their status; they stop working
        because redemption checks the hold.
        """
        async with self.db.atomic() as session:
            hold = await lock_hold(session, hold_id)
            if hold is None:
                raise HoldNotFoundError(hold_id)
            if hold.status.is_terminal():
                logger.debug(f"Hold {hold_id} already {hold.status.value}, release ignored")
                return hold
            apply_transition(hold, HoldStatus.RELEASED, reason="released", actor=released_by)
            hold.released_at = self.clock.now()
            hold.released_by = released_by
            await session.flush()
        return hold

    async def check_availability(self, hold_id: UUID, ticket_definition_id: int, quantity: int) -> bool:
        """
        Whether the hold can still cover `quantity` tickets of a definition.

        Raises:
            HoldNotFoundError: unknown hold
            HoldNotActiveError: hold released, exhausted or expired
            UnknownHoldItemError: the hold has no allocation for the definition
        """
        async with self.db.reader() as session:
            hold = await session.get(TicketHold, hold_id)
            if hold is None:
                raise HoldNotFoundError(hold_id)
            if not hold.is_usable(self.clock.now()):
                raise HoldNotActiveError()
            allocation = hold.allocation_for(ticket_definition_id)
            if allocation is None:
                raise UnknownHoldItemError([ticket_definition_id])
            return quantity <= allocation.remaining_quantity

    async def get_hold(self, hold_id: UUID) -> TicketHold:
        async with self.db.reader() as session:
            hold = await session.get(TicketHold, hold_id)
        if hold is None:
            raise HoldNotFoundError(hold_id)
        return hold

    async def list_holds(
        self,
        event_occurrence_id: Optional[int] = None,
        organizer_id: Optional[int] = None,
        status: Optional[HoldStatus] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[TicketHold]:
        stmt = select(TicketHold)
        if event_occurrence_id is not None:
            stmt = stmt.where(TicketHold.event_occurrence_id == event_occurrence_id)
        if organizer_id is not None:
            stmt = stmt.where(TicketHold.organizer_id == organizer_id)
        if status is not None:
            stmt = stmt.where(TicketHold.status == HoldStatus(status))
        stmt = stmt.order_by(TicketHold.created_at.desc()).offset(skip).limit(limit)

        async with self.db.reader() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())


def get_hold_ledger() -> HoldLedger:
    return HoldLedger()
