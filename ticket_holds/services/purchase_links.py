"""
Purchase Link Registry: shareable codes bound to a hold
"""

from dataclasses import dataclass, field
from typing import Callable, List, Optional
from uuid import UUID
import ipaddress
import logging
import secrets
import string

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ticket_holds.config import settings
from ticket_holds.core.clock import Clock, get_clock
from ticket_holds.core.database import DatabaseManager, get_db_manager
from ticket_holds.core.exceptions import (
    CodeGenerationError,
    HoldNotActiveError,
    HoldNotFoundError,
    LinkNotFoundError,
    LinkNotUsableError,
    UserNotAuthorizedForLinkError,
    ValidationError,
)
from ticket_holds.models.enums import LinkStatus, QuantityMode
from ticket_holds.models.purchase_link import PurchaseLink, PurchaseLinkAccess
from ticket_holds.models.ticket_hold import TicketHold
from ticket_holds.schemas.purchase_link import LinkCreate, LinkUpdate
from ticket_holds.services.catalog import TicketCatalog, get_ticket_catalog
from ticket_holds.services.hold_ledger import ensure_future, lock_hold
from ticket_holds.services.lifecycle import apply_transition
from ticket_holds.services.pricing import quote_line

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_letters + string.digits


def generate_link_code(length: int) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def clean_ip_address(value: Optional[str]) -> Optional[str]:
    """Return a normalised IPv4/IPv6 address, or None for anything else"""
    if not value:
        return None
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None


def _truncate(value: Optional[str], length: int) -> Optional[str]:
    if value is None:
        return None
    return value[:length]


async def lock_link(session: AsyncSession, link_id: UUID) -> Optional[PurchaseLink]:
    result = await session.execute(
        select(PurchaseLink)
        .where(PurchaseLink.id == link_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def lock_link_by_code(session: AsyncSession, code: str) -> Optional[PurchaseLink]:
    result = await session.execute(
        select(PurchaseLink)
        .where(PurchaseLink.code == code)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def ensure_usable(link: Optional[PurchaseLink], now) -> PurchaseLink:
    """Raise LinkNotUsableError for a missing, terminal or expired link"""
    if link is None:
        raise LinkNotUsableError("This purchase link does not exist.")
    if not link.status.is_usable():
        raise LinkNotUsableError(
            f"This purchase link is {link.status.label().lower()}.",
            details={"status": link.status.value}
        )
    if link.is_expired(now):
        raise LinkNotUsableError(
            "This purchase link has expired.",
            details={"status": LinkStatus.EXPIRED.value}
        )
    return link


def ensure_user_allowed(link: PurchaseLink, user_id: Optional[int]) -> None:
    """A link assigned to a user can only be used by that user"""
    if link.is_restricted_to_user() and link.assigned_user_id != user_id:
        raise UserNotAuthorizedForLinkError()


@dataclass
class LinkCheck:
    valid: bool
    link: Optional[PurchaseLink] = None
    hold: Optional[TicketHold] = None
    errors: List[str] = field(default_factory=list)


class PurchaseLinkRegistry:
    """
    Issues, updates and revokes purchase links and records their accesses
    """

    def __init__(
        self,
        db: Optional[DatabaseManager] = None,
        catalog: Optional[TicketCatalog] = None,
        clock: Optional[Clock] = None,
        code_generator: Callable[[int], str] = generate_link_code,
    ):
        self.db = db or get_db_manager()
        self.catalog = catalog or get_ticket_catalog()
        self.clock = clock or get_clock()
        self.code_generator = code_generator

    async def _unique_code(self, session: AsyncSession) -> str:
        for _ in range(settings.LINK_CODE_MAX_ATTEMPTS):
            code = self.code_generator(settings.LINK_CODE_LENGTH)
            taken = await session.execute(select(PurchaseLink.id).where(PurchaseLink.code == code))
            if taken.first() is None:
                return code
            logger.warning("Purchase link code collision, retrying")
        raise CodeGenerationError(settings.LINK_CODE_MAX_ATTEMPTS)

    async def create_link(self, data: LinkCreate, created_by: Optional[int] = None) -> PurchaseLink:
        """
        Issue a link against a usable hold.

        Raises:
            HoldNotFoundError: unknown hold
            HoldNotActiveError: hold released, exhausted or expired
            ValidationError: missing quantity limit or past expiry
            CodeGenerationError: no free code after the configured attempts
        """
        now = self.clock.now()
        expires_at = ensure_future(data.expires_at, now, "expires_at")
        quantity_mode = QuantityMode(data.quantity_mode)
        quantity_limit = data.quantity_limit
        if not quantity_mode.has_limit():
            quantity_limit = None
        elif quantity_limit is None or quantity_limit < 1:
            raise ValidationError(
                "A quantity limit of at least 1 is required for this quantity mode.",
                field="quantity_limit"
            )

        async with self.db.atomic() as session:
            hold = await lock_hold(session, data.ticket_hold_id)
            if hold is None:
                raise HoldNotFoundError(data.ticket_hold_id)
            if not hold.is_usable(now):
                raise HoldNotActiveError("Links can only be created for an active hold.")

            link = PurchaseLink(
                code=await self._unique_code(session),
                ticket_hold_id=hold.id,
                name=data.name,
                assigned_user_id=data.assigned_user_id,
                quantity_mode=quantity_mode,
                quantity_limit=quantity_limit,
                redeemed_count=0,
                status=LinkStatus.ACTIVE,
                expires_at=expires_at,
                notes=data.notes,
                link_metadata=data.metadata or {},
            )
            session.add(link)
            await session.flush()

        logger.info(f"Purchase link {link.id} issued for hold {link.ticket_hold_id} by {created_by}")
        return link

    async def update_link(self, link_id: UUID, data: LinkUpdate) -> PurchaseLink:
        """
        Update an ACTIVE link under its row lock. The quantity mode is fixed
        at creation; the limit may change but never below what was redeemed.
        """
        now = self.clock.now()
        changes = data.model_dump(exclude_unset=True)
        if "expires_at" in changes:
            changes["expires_at"] = ensure_future(changes["expires_at"], now, "expires_at")
        if "metadata" in changes:
            changes["link_metadata"] = changes.pop("metadata") or {}

        async with self.db.atomic() as session:
            link = await lock_link(session, link_id)
            if link is None:
                raise LinkNotFoundError(link_id)
            if not link.status.is_usable():
                raise LinkNotUsableError(
                    f"A {link.status.label().lower()} purchase link cannot be changed.",
                    details={"status": link.status.value}
                )

            if "quantity_limit" in changes:
                limit = changes.pop("quantity_limit")
                if link.quantity_mode.has_limit():
                    if limit is None:
                        raise ValidationError(
                            "A quantity limit is required for this quantity mode.",
                            field="quantity_limit"
                        )
                    if limit < link.redeemed_count:
                        raise ValidationError(
                            f"The quantity limit cannot be lower than the {link.redeemed_count} "
                            f"ticket(s) already purchased.",
                            field="quantity_limit"
                        )
                    link.quantity_limit = limit

            for key, value in changes.items():
                setattr(link, key, value)

            if link.remaining_quantity == 0:
                apply_transition(link, LinkStatus.EXHAUSTED, reason="limit_reached")
            await session.flush()

        return link

    async def revoke_link(self, link_id: UUID, revoked_by: Optional[int] = None) -> PurchaseLink:
        """Revoke an ACTIVE link; a terminal link is returned unchanged"""
        async with self.db.atomic() as session:
            link = await lock_link(session, link_id)
            if link is None:
                raise LinkNotFoundError(link_id)
            if link.status.is_terminal():
                return link
            apply_transition(link, LinkStatus.REVOKED, reason="revoked", actor=revoked_by)
            link.revoked_at = self.clock.now()
            link.revoked_by = revoked_by
            await session.flush()
        return link

    async def record_access(
        self,
        link_id: UUID,
        user_id: Optional[int] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        referer: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> PurchaseLinkAccess:
        """Append an access record. The link's status is never touched."""
        async with self.db.atomic() as session:
            if await session.get(PurchaseLink, link_id) is None:
                raise LinkNotFoundError(link_id)
            access = PurchaseLinkAccess(
                purchase_link_id=link_id,
                user_id=user_id,
                ip_address=clean_ip_address(ip_address),
                user_agent=_truncate(user_agent, settings.USER_AGENT_MAX_LENGTH),
                referer=referer,
                session_id=_truncate(session_id, 255),
                resulted_in_purchase=False,
                accessed_at=self.clock.now(),
            )
            session.add(access)
            await session.flush()
        return access

    async def get_link(self, link_id: UUID) -> PurchaseLink:
        async with self.db.reader() as session:
            link = await session.get(PurchaseLink, link_id)
        if link is None:
            raise LinkNotFoundError(link_id)
        return link

    async def get_link_by_code(self, code: str) -> PurchaseLink:
        async with self.db.reader() as session:
            result = await session.execute(select(PurchaseLink).where(PurchaseLink.code == code))
            link = result.scalar_one_or_none()
        if link is None:
            raise LinkNotFoundError(code)
        return link

    async def list_links(self, hold_id: UUID) -> List[PurchaseLink]:
        async with self.db.reader() as session:
            if await session.get(TicketHold, hold_id) is None:
                raise HoldNotFoundError(hold_id)
            result = await session.execute(
                select(PurchaseLink)
                .where(PurchaseLink.ticket_hold_id == hold_id)
                .order_by(PurchaseLink.created_at.desc())
            )
            return list(result.scalars().all())

    async def validate_link_for_user(self, code: str, user_id: Optional[int] = None) -> LinkCheck:
        """
        Collect every reason the user cannot buy through the link, without raising
        """
        now = self.clock.now()
        async with self.db.reader() as session:
            result = await session.execute(select(PurchaseLink).where(PurchaseLink.code == code))
            link = result.scalar_one_or_none()
            if link is None:
                return LinkCheck(valid=False, errors=["This purchase link does not exist."])
            hold = await session.get(TicketHold, link.ticket_hold_id)

        errors = []
        try:
            ensure_usable(link, now)
        except LinkNotUsableError as e:
            errors.append(e.message)
        try:
            ensure_user_allowed(link, user_id)
        except UserNotAuthorizedForLinkError as e:
            errors.append(e.message)
        if hold is None or not hold.is_usable(now):
            errors.append(HoldNotActiveError().message)
        if link.remaining_quantity == 0:
            errors.append("This purchase link has no remaining quantity.")
        return LinkCheck(valid=not errors, link=link, hold=hold, errors=errors)

    async def preview(
        self,
        code: str,
        user_id: Optional[int] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        referer: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> dict:
        """
        Public view of a link with its priced allocations. Records an access.

        Raises:
            LinkNotFoundError: unknown code
        """
        check = await self.validate_link_for_user(code, user_id)
        if check.link is None:
            raise LinkNotFoundError(code)
        link, hold = check.link, check.hold

        access = await self.record_access(
            link.id,
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
            referer=referer,
            session_id=session_id,
        )

        async with self.db.reader() as session:
            names = await self.catalog.get_names(
                session, [a.ticket_definition_id for a in hold.allocations]
            )
            allocations = []
            for allocation in hold.allocations:
                original_price = await self.catalog.get_original_price(session, allocation.ticket_definition_id)
                quote = quote_line(allocation, original_price)
                allocations.append({
                    "ticket_definition_id": allocation.ticket_definition_id,
                    "ticket_name": names.get(allocation.ticket_definition_id),
                    "remaining_quantity": allocation.remaining_quantity,
                    "pricing_mode": allocation.pricing_mode,
                    "unit_price": quote.unit_price,
                    "original_price": quote.original_price,
                    "savings": quote.savings,
                    "savings_percentage": quote.savings_percentage,
                    "is_free": quote.is_free,
                })

        return {
            "code": link.code,
            "name": link.name,
            "quantity_mode": link.quantity_mode,
            "quantity_limit": link.quantity_limit,
            "remaining_quantity": link.remaining_quantity,
            "expires_at": link.expires_at,
            "is_usable": check.valid,
            "errors": check.errors,
            "currency": settings.CURRENCY,
            "access_id": access.id,
            "hold": hold,
            "allocations": allocations,
        }


def get_purchase_link_registry() -> PurchaseLinkRegistry:
    return PurchaseLinkRegistry()
