"""
Tests for the expiry sweeper
"""

import pytest
from datetime import timedelta

from ticket_holds.core.redis import RedisLock
from ticket_holds.models.enums import HoldStatus, LinkStatus
from ticket_holds.services.expiry_sweeper import (
    SWEEPER_LOCK_RESOURCE,
    SweepResult,
    run_scheduled_sweep,
)
from tests.conftest import hold_data, link_data


class LockOnlyRedis:
    """Just enough of a redis client for RedisLock"""

    def __init__(self):
        self.values = {}

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.values:
            return None
        self.values[key] = value
        return True

    async def eval(self, script, numkeys, key, identifier):
        if self.values.get(key) == identifier:
            del self.values[key]
            return 1
        return 0


@pytest.mark.unit
@pytest.mark.asyncio
class TestExpirySweeper:

    async def test_expires_holds_and_links_past_expiry(self, ledger, registry, sweeper, clock):
        hold = await ledger.create_hold(hold_data(expires_at=clock.now() + timedelta(hours=2)))
        short_link = await registry.create_link(link_data(hold.id, expires_at=clock.now() + timedelta(hours=1)))
        open_link = await registry.create_link(link_data(hold.id))

        clock.advance(hours=1)
        assert await sweeper.sweep() == SweepResult(holds_expired=0, links_expired=1)
        assert (await registry.get_link(short_link.id)).status is LinkStatus.EXPIRED
        assert (await ledger.get_hold(hold.id)).status is HoldStatus.ACTIVE

        clock.advance(hours=1)
        assert await sweeper.sweep() == SweepResult(holds_expired=1, links_expired=0)
        assert (await ledger.get_hold(hold.id)).status is HoldStatus.EXPIRED
        # Links of an expired hold are only blocked at redemption time
        assert (await registry.get_link(open_link.id)).status is LinkStatus.ACTIVE

    async def test_sweep_is_idempotent(self, ledger, sweeper, clock):
        await ledger.create_hold(hold_data(expires_at=clock.now() + timedelta(minutes=1)))
        clock.advance(minutes=1)

        assert (await sweeper.sweep()).holds_expired == 1
        assert await sweeper.sweep() == SweepResult()

    async def test_terminal_rows_are_left_alone(self, ledger, registry, sweeper, clock):
        hold = await ledger.create_hold(hold_data(expires_at=clock.now() + timedelta(minutes=5)))
        link = await registry.create_link(link_data(hold.id, expires_at=clock.now() + timedelta(minutes=5)))
        await ledger.release_hold(hold.id)
        await registry.revoke_link(link.id)

        clock.advance(hours=1)
        assert await sweeper.sweep() == SweepResult()
        assert (await ledger.get_hold(hold.id)).status is HoldStatus.RELEASED
        assert (await registry.get_link(link.id)).status is LinkStatus.REVOKED

    async def test_no_expiry_never_expires(self, hold, sweeper, clock):
        clock.advance(days=365)
        assert await sweeper.sweep() == SweepResult()


@pytest.mark.unit
@pytest.mark.asyncio
class TestScheduledSweep:

    async def test_runs_without_redis(self, ledger, sweeper, clock):
        await ledger.create_hold(hold_data(expires_at=clock.now() + timedelta(minutes=1)))
        clock.advance(minutes=2)

        result = await run_scheduled_sweep(sweeper)
        assert result.holds_expired == 1

    async def test_leader_lock_is_released(self, sweeper, ticket_definitions):
        client = LockOnlyRedis()

        assert await run_scheduled_sweep(sweeper, redis_client=client) == SweepResult()
        assert client.values == {}

    async def test_skips_when_another_instance_sweeps(self, ledger, sweeper, clock):
        await ledger.create_hold(hold_data(expires_at=clock.now() + timedelta(minutes=1)))
        clock.advance(minutes=2)
        client = LockOnlyRedis()
        other = RedisLock(client, SWEEPER_LOCK_RESOURCE, ttl=60)
        assert await other.acquire()

        assert await run_scheduled_sweep(sweeper, redis_client=client) is None

        await other.release()
        assert (await run_scheduled_sweep(sweeper, redis_client=client)).holds_expired == 1
