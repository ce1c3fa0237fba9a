"""
Concurrency tests
Races many redemptions against one allocation and checks nothing is oversold,
and checks that a writer blocked on the database lock gives up with a retryable error
"""

import pytest
import pytest_asyncio
import asyncio
from sqlalchemy import text
from sqlalchemy.pool import NullPool

from ticket_holds.config import settings
from ticket_holds.core.database import DatabaseManager, build_engine, build_session_factory
from ticket_holds.core.exceptions import InsufficientHoldInventoryError, LinkNotUsableError, LockTimeoutError
from ticket_holds.models.enums import HoldStatus, LinkStatus, QuantityMode
from ticket_holds.services.hold_ledger import HoldLedger, get_hold_ledger
from tests.conftest import GENERAL, VIP, hold_data, link_data, redemption


@pytest.mark.concurrency
@pytest.mark.asyncio
class TestRedemptionConcurrency:
    """Concurrent redemptions against the same hold"""

    async def _race(self, coordinator, code, attempts):
        async def attempt(n: int):
            return await coordinator.redeem(redemption(code, (VIP, 1)), user_id=100 + n)

        return await asyncio.gather(*(attempt(n) for n in range(attempts)), return_exceptions=True)

    async def test_allocation_is_never_oversold(self, ledger, registry, coordinator):
        # The GENERAL allocation keeps the hold ACTIVE once VIP runs out
        hold = await ledger.create_hold(hold_data([
            {"ticket_definition_id": VIP, "allocated_quantity": 5},
            {"ticket_definition_id": GENERAL, "allocated_quantity": 10},
        ]))
        link = await registry.create_link(
            link_data(hold.id, quantity_mode=QuantityMode.UNLIMITED, quantity_limit=None)
        )

        results = await self._race(coordinator, link.code, 10)

        committed = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, Exception)]
        assert len(committed) == 5
        assert len(rejected) == 5
        assert all(isinstance(e, InsufficientHoldInventoryError) for e in rejected)
        assert len({r.purchase.reference for r in committed}) == 5

        hold = await ledger.get_hold(hold.id)
        assert hold.allocation_for(VIP).redeemed_count == 5
        assert hold.status is HoldStatus.ACTIVE
        assert (await registry.get_link(link.id)).redeemed_count == 5

    async def test_link_limit_is_never_exceeded(self, hold, registry, coordinator):
        link = await registry.create_link(link_data(hold.id, quantity_limit=3))

        results = await self._race(coordinator, link.code, 8)

        rejected = [r for r in results if isinstance(r, Exception)]
        assert len(results) - len(rejected) == 3
        assert all(isinstance(e, LinkNotUsableError) for e in rejected)

        link = await registry.get_link(link.id)
        assert link.redeemed_count == 3
        assert link.status is LinkStatus.EXHAUSTED

    async def test_release_races_redemptions(self, hold, ledger, registry, coordinator):
        link = await registry.create_link(link_data(hold.id))

        outcomes = await asyncio.gather(
            coordinator.redeem(redemption(link.code, (VIP, 2))),
            ledger.release_hold(hold.id),
            coordinator.redeem(redemption(link.code, (VIP, 2))),
            return_exceptions=True,
        )

        hold = await ledger.get_hold(hold.id)
        assert hold.status is HoldStatus.RELEASED
        committed = [o for o in (outcomes[0], outcomes[2]) if not isinstance(o, Exception)]
        assert hold.allocation_for(VIP).redeemed_count == 2 * len(committed)


@pytest_asyncio.fixture
async def impatient_db(engine):
    """Second manager on the same database that gives up on a busy lock after 0.2s"""
    impatient = build_engine(str(engine.url), poolclass=NullPool, connect_args={"timeout": 0.2})
    yield DatabaseManager(build_session_factory(impatient), lock_timeout_ms=200)
    await impatient.dispose()


@pytest.mark.concurrency
@pytest.mark.asyncio
class TestLockTimeout:
    """A writer that cannot get the lock in time fails with a retryable error"""

    async def test_busy_writer_raises_lock_timeout(self, db_manager, impatient_db, catalog, clock, ticket_definitions):
        ledger = HoldLedger(db=impatient_db, catalog=catalog, clock=clock)

        async with db_manager.atomic() as session:
            # BEGIN IMMEDIATE takes the write lock on first use
            await session.execute(text("SELECT 1"))
            with pytest.raises(LockTimeoutError) as exc_info:
                await ledger.create_hold(hold_data())

        assert exc_info.value.status_code == 503
        assert exc_info.value.details == {"retryable": True}
        assert await ledger.list_holds() == []

    async def test_lock_timeout_response(self, client, db_manager, impatient_db, catalog, clock, operator_headers):
        from ticket_holds.main import app

        ledger = HoldLedger(db=impatient_db, catalog=catalog, clock=clock)
        app.dependency_overrides[get_hold_ledger] = lambda: ledger

        async with db_manager.atomic() as session:
            await session.execute(text("SELECT 1"))
            response = await client.post(f"{settings.API_PREFIX}/holds", headers=operator_headers, json={
                "event_occurrence_id": 1,
                "name": "Busy",
                "allocations": [{"ticket_definition_id": VIP, "allocated_quantity": 1}],
            })

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "1"
        error = response.json()["error"]
        assert error["code"] == "lock_timeout"
        assert error["details"] == {"retryable": True}
