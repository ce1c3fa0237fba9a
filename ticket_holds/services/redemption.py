"""
Redemption Coordinator: turns a purchase link request into a committed purchase.

One redemption is one transaction. Rows are locked in a fixed order (purchase
link, ticket hold, then allocations by ticket definition id) so concurrent
redemptions of the same hold queue up instead of deadlocking, and no two
committed redemptions can together exceed an allocation.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import UUID
import enum
import logging
import secrets
import string

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ticket_holds.config import settings
from ticket_holds.core.clock import Clock, get_clock
from ticket_holds.core.database import DatabaseManager, get_db_manager
from ticket_holds.core.exceptions import (
    CouponNotApplicableError,
    HoldEngineError,
    HoldNotActiveError,
    InsufficientHoldInventoryError,
    LinkQuantityMismatchError,
    UnknownHoldItemError,
    ValidationError,
)
from ticket_holds.core.logging import LoggerAdapter, get_audit_logger
from ticket_holds.core.metrics import metrics_collector
from ticket_holds.models.enums import HoldStatus, LinkStatus, QuantityMode
from ticket_holds.models.purchase import HoldPurchase, HoldPurchaseItem
from ticket_holds.models.purchase_link import PurchaseLink, PurchaseLinkAccess
from ticket_holds.models.ticket_hold import TicketHold, HoldAllocation
from ticket_holds.services.catalog import TicketCatalog, get_ticket_catalog
from ticket_holds.services.coupons import CouponEngine, CouponLine, NotApplicable, get_coupon_engine
from ticket_holds.services.hold_ledger import lock_hold, lock_allocations
from ticket_holds.services.lifecycle import apply_transition
from ticket_holds.services.pricing import OrderQuote, quote_order
from ticket_holds.services.purchase_links import (
    ensure_usable,
    ensure_user_allowed,
    lock_link_by_code,
)

logger = logging.getLogger(__name__)

REFERENCE_PREFIX = "TH-"
REFERENCE_ALPHABET = string.ascii_uppercase + string.digits


def generate_reference() -> str:
    return REFERENCE_PREFIX + "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(12))


class RedemptionStage(str, enum.Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    RESERVED = "reserved"
    COMMITTED = "committed"
    REJECTED = "rejected"


@dataclass(frozen=True)
class RedemptionRequest:
    """
    A buyer's attempt to purchase through a link.

    `items` is a sequence of (ticket_definition_id, quantity) pairs; repeated
    definitions are merged.
    """
    link_code: str
    items: Tuple[Tuple[int, int], ...]
    coupon_code: Optional[str] = None

    @classmethod
    def build(cls, link_code: str, items: Iterable, coupon_code: Optional[str] = None) -> "RedemptionRequest":
        pairs = []
        for item in items:
            if isinstance(item, tuple):
                pairs.append(item)
            else:
                pairs.append((item.ticket_definition_id, item.quantity))
        return cls(link_code=link_code, items=tuple(pairs), coupon_code=coupon_code or None)

    def merged_items(self) -> Dict[int, int]:
        """Quantities per ticket definition, in ascending definition order"""
        if not self.items:
            raise ValidationError("At least one item is required.", field="items")
        merged: Dict[int, int] = {}
        for index, (ticket_definition_id, quantity) in enumerate(self.items):
            if quantity < 1:
                raise ValidationError(
                    "Quantity must be at least 1.",
                    field=f"items.{index}.quantity"
                )
            merged[ticket_definition_id] = merged.get(ticket_definition_id, 0) + quantity
        return dict(sorted(merged.items()))


@dataclass
class RedemptionResult:
    purchase: HoldPurchase
    items: List[HoldPurchaseItem]
    subtotal: int
    coupon_discount: int
    total: int
    total_savings: int


@dataclass
class _Reservation:
    link: PurchaseLink
    hold: TicketHold
    quantities: Dict[int, int]
    allocations: Dict[int, HoldAllocation] = field(default_factory=dict)

    @property
    def ticket_count(self) -> int:
        return sum(self.quantities.values())


def check_quantity_mode(link: PurchaseLink, requested: int) -> None:
    """
    FIXED links must be used for exactly their remaining quantity, MAXIMUM
    links for at most that, UNLIMITED links have no cap of their own.
    """
    mode = link.quantity_mode
    if mode is QuantityMode.UNLIMITED:
        return
    remaining = link.remaining_quantity
    if mode is QuantityMode.FIXED and requested != remaining:
        raise LinkQuantityMismatchError(requested, remaining, mode.value)
    if mode is QuantityMode.MAXIMUM and requested > remaining:
        raise LinkQuantityMismatchError(requested, remaining, mode.value)


def check_inventory(quantities: Dict[int, int], allocations: Dict[int, HoldAllocation]) -> None:
    """
    Raises:
        UnknownHoldItemError: a definition has no allocation in the hold
        InsufficientHoldInventoryError: lists every allocation that falls short
    """
    unknown = [tdid for tdid in quantities if tdid not in allocations]
    if unknown:
        raise UnknownHoldItemError(unknown)
    shortages = [
        {
            "ticket_definition_id": tdid,
            "requested": quantity,
            "available": allocations[tdid].remaining_quantity,
        }
        for tdid, quantity in quantities.items()
        if quantity > allocations[tdid].remaining_quantity
    ]
    if shortages:
        raise InsufficientHoldInventoryError(shortages)


class RedemptionCoordinator:
    """Validates, reserves and commits redemptions"""

    def __init__(
        self,
        db: Optional[DatabaseManager] = None,
        catalog: Optional[TicketCatalog] = None,
        coupon_engine: Optional[CouponEngine] = None,
        clock: Optional[Clock] = None,
    ):
        self.db = db or get_db_manager()
        self.catalog = catalog or get_ticket_catalog()
        self.coupon_engine = coupon_engine or get_coupon_engine()
        self.clock = clock or get_clock()
        self.audit = get_audit_logger()

    async def _validate(
        self,
        session: AsyncSession,
        request: RedemptionRequest,
        user_id: Optional[int],
        lock: bool,
    ) -> _Reservation:
        quantities = request.merged_items()
        now = self.clock.now()

        if lock:
            link = await lock_link_by_code(session, request.link_code)
        else:
            result = await session.execute(
                select(PurchaseLink).where(PurchaseLink.code == request.link_code)
            )
            link = result.scalar_one_or_none()
        ensure_usable(link, now)
        ensure_user_allowed(link, user_id)

        if lock:
            hold = await lock_hold(session, link.ticket_hold_id)
        else:
            hold = await session.get(TicketHold, link.ticket_hold_id)
        if hold is None or not hold.is_usable(now):
            raise HoldNotActiveError()

        reservation = _Reservation(link=link, hold=hold, quantities=quantities)
        check_quantity_mode(link, reservation.ticket_count)
        return reservation

    async def _price(self, session: AsyncSession, reservation: _Reservation) -> OrderQuote:
        lines = []
        for tdid, quantity in reservation.quantities.items():
            original_price = await self.catalog.get_original_price(session, tdid)
            lines.append((tdid, quantity, reservation.allocations[tdid], original_price))
        return quote_order(lines)

    async def _apply_coupon(self, coupon_code: Optional[str], order: OrderQuote) -> int:
        """Discount granted by the coupon engine, in cents"""
        if not coupon_code:
            return 0
        discounted = await self.coupon_engine.apply_coupon(
            coupon_code,
            [
                CouponLine(
                    ticket_definition_id=line.ticket_definition_id,
                    quantity=line.quantity,
                    unit_price=line.quote.unit_price,
                )
                for line in order.items
            ]
        )
        if isinstance(discounted, NotApplicable):
            raise CouponNotApplicableError(coupon_code)
        total = min(max(0, int(discounted)), order.subtotal)
        return order.subtotal - total

    async def redeem(
        self,
        request: RedemptionRequest,
        user_id: Optional[int] = None,
        access_id: Optional[UUID] = None,
    ) -> RedemptionResult:
        """
        Redeem a purchase link in a single transaction.

        Raises:
            LinkNotUsableError: link missing, terminal or expired
            UserNotAuthorizedForLinkError: link assigned to someone else
            HoldNotActiveError: hold released, exhausted or expired
            LinkQuantityMismatchError: total does not fit the link's quantity mode
            UnknownHoldItemError: item outside the hold
            InsufficientHoldInventoryError: allocation shortfall
            CouponNotApplicableError: coupon rejected by the coupon engine
            LockTimeoutError: row locks not granted in time
        """
        audit = LoggerAdapter(self.audit, {
            "event": "redemption",
            "link_code": request.link_code,
            "user_id": user_id,
        })
        stage = RedemptionStage.RECEIVED

        async with metrics_collector.track_redemption():
            try:
                async with self.db.atomic() as session:
                    reservation = await self._validate(session, request, user_id, lock=True)
                    stage = RedemptionStage.VALIDATED

                    allocations = await lock_allocations(session, reservation.hold.id)
                    reservation.allocations = {a.ticket_definition_id: a for a in allocations}
                    check_inventory(reservation.quantities, reservation.allocations)
                    stage = RedemptionStage.RESERVED

                    order = await self._price(session, reservation)
                    coupon_discount = await self._apply_coupon(request.coupon_code, order)
                    access = await self._flag_access(session, reservation.link, access_id)
                    purchase = self._commit(
                        session, reservation, order, request, coupon_discount, user_id,
                        access.id if access is not None else None,
                    )
                    self._settle_statuses(reservation, user_id)
                    await session.flush()
            except HoldEngineError as e:
                audit.info(
                    f"Redemption rejected after {stage.value}: {e.code}",
                    extra={"stage": RedemptionStage.REJECTED.value, "failed_after": stage.value, "code": e.code}
                )
                raise

        stage = RedemptionStage.COMMITTED
        metrics_collector.record_tickets(reservation.ticket_count)
        audit.info(
            f"Redemption {purchase.reference} committed",
            extra={
                "stage": stage.value,
                "reference": purchase.reference,
                "ticket_hold_id": str(reservation.hold.id),
                "tickets": reservation.ticket_count,
                "total": purchase.total,
            }
        )
        return RedemptionResult(
            purchase=purchase,
            items=list(purchase.items),
            subtotal=purchase.subtotal,
            coupon_discount=purchase.coupon_discount,
            total=purchase.total,
            total_savings=purchase.total_savings,
        )

    def _commit(
        self,
        session: AsyncSession,
        reservation: _Reservation,
        order: OrderQuote,
        request: RedemptionRequest,
        coupon_discount: int,
        user_id: Optional[int],
        access_id: Optional[UUID],
    ) -> HoldPurchase:
        for tdid, quantity in reservation.quantities.items():
            reservation.allocations[tdid].redeemed_count += quantity
        reservation.link.redeemed_count += reservation.ticket_count

        purchase = HoldPurchase(
            reference=generate_reference(),
            purchase_link_id=reservation.link.id,
            ticket_hold_id=reservation.hold.id,
            user_id=user_id,
            access_id=access_id,
            coupon_code=request.coupon_code,
            subtotal=order.subtotal,
            coupon_discount=coupon_discount,
            total=order.subtotal - coupon_discount,
            total_savings=order.total_savings,
            currency=settings.CURRENCY,
        )
        purchase.items = [
            HoldPurchaseItem(
                ticket_definition_id=line.ticket_definition_id,
                quantity=line.quantity,
                unit_price=line.quote.unit_price,
                original_price=line.quote.original_price,
                line_total=line.line_total,
            )
            for line in order.items
        ]
        session.add(purchase)
        return purchase

    async def _flag_access(
        self,
        session: AsyncSession,
        link: PurchaseLink,
        access_id: Optional[UUID],
    ) -> Optional[PurchaseLinkAccess]:
        """Mark the access row that led to this purchase"""
        if access_id is None:
            return None
        access = await session.get(PurchaseLinkAccess, access_id)
        if access is None or access.purchase_link_id != link.id:
            logger.debug(f"Access {access_id} does not belong to link {link.id}, not flagged")
            return None
        access.resulted_in_purchase = True
        return access

    def _settle_statuses(self, reservation: _Reservation, user_id: Optional[int]) -> None:
        link, hold = reservation.link, reservation.hold
        if link.remaining_quantity == 0:
            apply_transition(link, LinkStatus.EXHAUSTED, reason="limit_reached", actor=user_id)
        if all(a.remaining_quantity == 0 for a in reservation.allocations.values()):
            apply_transition(hold, HoldStatus.EXHAUSTED, reason="inventory_exhausted", actor=user_id)

    async def quote(self, request: RedemptionRequest, user_id: Optional[int] = None) -> OrderQuote:
        """
        Price a request with the same checks as redeem(), without locking or
        changing anything.
        """
        async with self.db.reader() as session:
            reservation = await self._validate(session, request, user_id, lock=False)
            reservation.allocations = {a.ticket_definition_id: a for a in reservation.hold.allocations}
            check_inventory(reservation.quantities, reservation.allocations)
            return await self._price(session, reservation)


def get_redemption_coordinator() -> RedemptionCoordinator:
    return RedemptionCoordinator()
