"""
Expiry Sweeper: moves expired holds and links to EXPIRED
"""

from dataclasses import dataclass
from typing import List, Optional
from uuid import UUID
import logging

from sqlalchemy import select

from ticket_holds.config import settings
from ticket_holds.core.clock import Clock, get_clock
from ticket_holds.core.database import DatabaseManager, get_db_manager
from ticket_holds.core.metrics import metrics_collector
from ticket_holds.core.redis import RedisLock
from ticket_holds.models.enums import HoldStatus, LinkStatus
from ticket_holds.models.purchase_link import PurchaseLink
from ticket_holds.models.ticket_hold import TicketHold
from ticket_holds.services.hold_ledger import lock_hold
from ticket_holds.services.lifecycle import apply_transition
from ticket_holds.services.purchase_links import lock_link

logger = logging.getLogger(__name__)

SWEEPER_LOCK_RESOURCE = "ticket_holds:expiry_sweeper"


@dataclass(frozen=True)
class SweepResult:
    holds_expired: int = 0
    links_expired: int = 0


class ExpirySweeper:
    """
    Each candidate row is re-read under its own lock in its own short
    transaction, so a redemption running at the same moment either commits
    first or sees the EXPIRED status.
    """

    def __init__(self, db: Optional[DatabaseManager] = None, clock: Optional[Clock] = None):
        self.db = db or get_db_manager()
        self.clock = clock or get_clock()

    async def _candidates(self, model, active_status, now) -> List[UUID]:
        async with self.db.reader() as session:
            result = await session.execute(
                select(model.id).where(
                    model.status == active_status,
                    model.expires_at.is_not(None),
                    model.expires_at <= now,
                )
            )
            return list(result.scalars().all())

    async def _expire_hold(self, hold_id: UUID, now) -> bool:
        async with self.db.atomic() as session:
            hold = await lock_hold(session, hold_id)
            if hold is None or not hold.status.is_usable() or not hold.is_expired(now):
                return False
            return apply_transition(hold, HoldStatus.EXPIRED, reason="expired")

    async def _expire_link(self, link_id: UUID, now) -> bool:
        async with self.db.atomic() as session:
            link = await lock_link(session, link_id)
            if link is None or not link.status.is_usable() or not link.is_expired(now):
                return False
            return apply_transition(link, LinkStatus.EXPIRED, reason="expired")

    async def sweep(self) -> SweepResult:
        """Expire every ACTIVE hold and link whose expiry has passed. Idempotent."""
        now = self.clock.now()

        holds_expired = 0
        for hold_id in await self._candidates(TicketHold, HoldStatus.ACTIVE, now):
            if await self._expire_hold(hold_id, now):
                holds_expired += 1

        links_expired = 0
        for link_id in await self._candidates(PurchaseLink, LinkStatus.ACTIVE, now):
            if await self._expire_link(link_id, now):
                links_expired += 1

        metrics_collector.record_expired("hold", holds_expired)
        metrics_collector.record_expired("link", links_expired)
        if holds_expired or links_expired:
            logger.info(f"Expiry sweep: {holds_expired} hold(s), {links_expired} link(s) expired")
        return SweepResult(holds_expired=holds_expired, links_expired=links_expired)


async def run_scheduled_sweep(sweeper: Optional[ExpirySweeper] = None, redis_client=None) -> Optional[SweepResult]:
    """
    Scheduler entry point. With a redis client only the instance holding the
    leader lock sweeps; returns None when another instance holds it.
    """
    sweeper = sweeper or ExpirySweeper()
    if redis_client is None:
        return await sweeper.sweep()

    lock = RedisLock(redis_client, SWEEPER_LOCK_RESOURCE, settings.SWEEPER_LOCK_TTL_SECONDS)
    if not await lock.acquire():
        logger.debug("Another instance is sweeping, skipping this run")
        return None
    try:
        return await sweeper.sweep()
    finally:
        await lock.release()
