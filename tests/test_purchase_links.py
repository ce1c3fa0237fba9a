"""
Tests for purchase link issuing, updates, revocation and access tracking
"""

import pytest
from datetime import timedelta
from uuid import uuid4

from pydantic import ValidationError as SchemaValidationError

from ticket_holds.core.exceptions import (
    CodeGenerationError,
    HoldNotActiveError,
    HoldNotFoundError,
    LinkNotFoundError,
    LinkNotUsableError,
    ValidationError,
)
from ticket_holds.models.enums import LinkStatus, QuantityMode
from ticket_holds.schemas.purchase_link import LinkUpdate
from ticket_holds.services.purchase_links import (
    PurchaseLinkRegistry,
    clean_ip_address,
    generate_link_code,
)
from tests.conftest import BUYER_ID, GENERAL, VIP, hold_data, link_data, redemption


@pytest.mark.unit
class TestLinkHelpers:

    def test_generated_codes_are_alphanumeric(self):
        code = generate_link_code(16)
        assert len(code) == 16
        assert code.isalnum()
        assert generate_link_code(16) != code

    @pytest.mark.parametrize("raw, cleaned", [
        ("203.0.113.9", "203.0.113.9"),
        (" 2001:db8::1 ", "2001:db8::1"),
        ("not-an-ip", None),
        ("", None),
        (None, None),
    ])
    def test_clean_ip_address(self, raw, cleaned):
        assert clean_ip_address(raw) == cleaned

    def test_limit_required_unless_unlimited(self):
        with pytest.raises(SchemaValidationError):
            link_data(uuid4(), quantity_mode=QuantityMode.FIXED, quantity_limit=None)


@pytest.mark.unit
@pytest.mark.asyncio
class TestCreateLink:

    async def test_create_maximum_link(self, registry, hold):
        link = await registry.create_link(
            link_data(hold.id, quantity_limit=4, name="Press", metadata={"campaign": "spring"}),
            created_by=1,
        )
        assert len(link.code) == 16
        assert link.status is LinkStatus.ACTIVE
        assert link.quantity_mode is QuantityMode.MAXIMUM
        assert link.quantity_limit == 4
        assert link.redeemed_count == 0
        assert link.remaining_quantity == 4
        assert link.link_metadata == {"campaign": "spring"}

        assert (await registry.get_link_by_code(link.code)).id == link.id

    async def test_unlimited_link_drops_limit(self, registry, hold):
        link = await registry.create_link(
            link_data(hold.id, quantity_mode=QuantityMode.UNLIMITED, quantity_limit=5)
        )
        assert link.quantity_limit is None
        assert link.remaining_quantity is None

    async def test_past_expiry_rejected(self, registry, hold, clock):
        with pytest.raises(ValidationError):
            await registry.create_link(link_data(hold.id, expires_at=clock.now() - timedelta(seconds=1)))

    async def test_unknown_hold(self, registry, ticket_definitions):
        with pytest.raises(HoldNotFoundError):
            await registry.create_link(link_data(uuid4()))

    async def test_released_hold_rejected(self, registry, ledger, hold):
        await ledger.release_hold(hold.id)
        with pytest.raises(HoldNotActiveError):
            await registry.create_link(link_data(hold.id))

    async def test_expired_hold_rejected(self, registry, ledger, clock):
        hold = await ledger.create_hold(hold_data(expires_at=clock.now() + timedelta(minutes=10)))
        clock.advance(minutes=11)
        with pytest.raises(HoldNotActiveError):
            await registry.create_link(link_data(hold.id))

    async def test_code_collisions_are_retried(self, db_manager, catalog, clock, hold):
        codes = iter(["TAKENCODE", "TAKENCODE", "FRESHCODE"])
        registry = PurchaseLinkRegistry(
            db=db_manager, catalog=catalog, clock=clock, code_generator=lambda length: next(codes)
        )
        first = await registry.create_link(link_data(hold.id))
        second = await registry.create_link(link_data(hold.id))
        assert first.code == "TAKENCODE"
        assert second.code == "FRESHCODE"

    async def test_gives_up_after_max_attempts(self, db_manager, catalog, clock, hold):
        registry = PurchaseLinkRegistry(
            db=db_manager, catalog=catalog, clock=clock, code_generator=lambda length: "SAMECODE"
        )
        await registry.create_link(link_data(hold.id))
        with pytest.raises(CodeGenerationError) as exc_info:
            await registry.create_link(link_data(hold.id))
        assert exc_info.value.status_code == 500
        assert len(await registry.list_links(hold.id)) == 1


@pytest.mark.unit
@pytest.mark.asyncio
class TestUpdateLink:

    async def test_update_fields(self, registry, hold):
        link = await registry.create_link(link_data(hold.id))
        updated = await registry.update_link(
            link.id, LinkUpdate(name="VIP guests", quantity_limit=6, metadata={"tier": "gold"})
        )
        assert updated.name == "VIP guests"
        assert updated.quantity_limit == 6
        assert updated.link_metadata == {"tier": "gold"}

    async def test_limit_cannot_drop_below_redeemed(self, registry, coordinator, hold):
        link = await registry.create_link(link_data(hold.id, quantity_limit=5))
        await coordinator.redeem(redemption(link.code, (VIP, 3)))

        with pytest.raises(ValidationError) as exc_info:
            await registry.update_link(link.id, LinkUpdate(quantity_limit=2))
        assert exc_info.value.details["errors"][0]["field"] == "quantity_limit"

    async def test_limit_equal_to_redeemed_exhausts(self, registry, coordinator, hold):
        link = await registry.create_link(link_data(hold.id, quantity_limit=5))
        await coordinator.redeem(redemption(link.code, (VIP, 3)))

        updated = await registry.update_link(link.id, LinkUpdate(quantity_limit=3))
        assert updated.remaining_quantity == 0
        assert updated.status is LinkStatus.EXHAUSTED

    async def test_limit_ignored_for_unlimited(self, registry, hold):
        link = await registry.create_link(
            link_data(hold.id, quantity_mode=QuantityMode.UNLIMITED, quantity_limit=None)
        )
        updated = await registry.update_link(link.id, LinkUpdate(quantity_limit=3))
        assert updated.quantity_limit is None
        assert updated.status is LinkStatus.ACTIVE

    async def test_revoked_link_cannot_change(self, registry, hold):
        link = await registry.create_link(link_data(hold.id))
        await registry.revoke_link(link.id)
        with pytest.raises(LinkNotUsableError) as exc_info:
            await registry.update_link(link.id, LinkUpdate(name="Again"))
        assert exc_info.value.details == {"status": "revoked"}

    async def test_missing_link(self, registry, ticket_definitions):
        with pytest.raises(LinkNotFoundError):
            await registry.update_link(uuid4(), LinkUpdate(name="Nobody"))


@pytest.mark.unit
@pytest.mark.asyncio
class TestRevokeLink:

    async def test_revoke_is_idempotent(self, registry, hold, clock):
        link = await registry.create_link(link_data(hold.id))

        revoked = await registry.revoke_link(link.id, revoked_by=3)
        assert revoked.status is LinkStatus.REVOKED
        assert revoked.revoked_at == clock.now()
        assert revoked.revoked_by == 3

        clock.advance(hours=1)
        again = await registry.revoke_link(link.id, revoked_by=4)
        assert again.status is LinkStatus.REVOKED
        assert again.revoked_at == revoked.revoked_at
        assert again.revoked_by == 3

    async def test_revoked_link_cannot_redeem(self, registry, coordinator, hold):
        link = await registry.create_link(link_data(hold.id))
        await registry.revoke_link(link.id)
        with pytest.raises(LinkNotUsableError):
            await coordinator.redeem(redemption(link.code, (VIP, 1)))


@pytest.mark.unit
@pytest.mark.asyncio
class TestAccessTracking:

    async def test_record_access_cleans_input(self, registry, hold, clock):
        link = await registry.create_link(link_data(hold.id))
        access = await registry.record_access(
            link.id,
            user_id=BUYER_ID,
            ip_address="garbage",
            user_agent="x" * 600,
            referer="https://example.org/newsletter",
        )
        assert access.ip_address is None
        assert len(access.user_agent) == 500
        assert access.accessed_at == clock.now()
        assert access.resulted_in_purchase is False

    async def test_record_access_leaves_status(self, registry, hold):
        link = await registry.create_link(link_data(hold.id))
        await registry.revoke_link(link.id)
        await registry.record_access(link.id, ip_address="198.51.100.4")
        assert (await registry.get_link(link.id)).status is LinkStatus.REVOKED

    async def test_record_access_unknown_link(self, registry, ticket_definitions):
        with pytest.raises(LinkNotFoundError):
            await registry.record_access(uuid4())


@pytest.mark.unit
@pytest.mark.asyncio
class TestValidateAndPreview:

    async def test_valid_link(self, registry, hold):
        link = await registry.create_link(link_data(hold.id))
        check = await registry.validate_link_for_user(link.code, BUYER_ID)
        assert check.valid is True
        assert check.errors == []
        assert check.hold.id == hold.id

    async def test_collects_every_problem(self, registry, ledger, hold):
        link = await registry.create_link(link_data(hold.id, assigned_user_id=42))
        await registry.revoke_link(link.id)
        await ledger.release_hold(hold.id)

        check = await registry.validate_link_for_user(link.code, BUYER_ID)
        assert check.valid is False
        assert len(check.errors) == 3

    async def test_unknown_code(self, registry, ticket_definitions):
        check = await registry.validate_link_for_user("nope")
        assert check.valid is False
        assert check.link is None

    async def test_preview_prices_allocations_and_records_access(self, registry, ledger):
        hold = await ledger.create_hold(hold_data([
            {"ticket_definition_id": VIP, "allocated_quantity": 4, "pricing_mode": "percentage_discount",
             "discount_percentage": 25},
            {"ticket_definition_id": GENERAL, "allocated_quantity": 2, "pricing_mode": "free"},
        ]))
        link = await registry.create_link(link_data(hold.id, quantity_limit=3))

        preview = await registry.preview(link.code, user_id=BUYER_ID, ip_address="203.0.113.9")

        assert preview["is_usable"] is True
        assert preview["remaining_quantity"] == 3
        assert preview["currency"] == "hkd"
        vip, general = preview["allocations"]
        assert vip["ticket_name"] == "VIP"
        assert vip["unit_price"] == 750
        assert vip["savings"] == 250
        assert vip["savings_percentage"] == 25
        assert general["is_free"] is True
        assert general["original_price"] == 500

        access_id = preview["access_id"]
        assert access_id is not None

    async def test_preview_unknown_code(self, registry, ticket_definitions):
        with pytest.raises(LinkNotFoundError):
            await registry.preview("missing")
