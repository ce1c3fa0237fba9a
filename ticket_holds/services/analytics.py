"""
Hold Analytics Service
Inventory, link and engagement statistics for ticket holds and purchase links
"""

from datetime import timedelta
from typing import Dict, Optional
from uuid import UUID
import logging

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from ticket_holds.config import settings
from ticket_holds.core.clock import Clock, get_clock
from ticket_holds.core.database import DatabaseManager, get_db_manager
from ticket_holds.core.exceptions import HoldNotFoundError, LinkNotFoundError
from ticket_holds.models.enums import LinkStatus
from ticket_holds.models.purchase import HoldPurchase, HoldPurchaseItem
from ticket_holds.models.purchase_link import PurchaseLink, PurchaseLinkAccess
from ticket_holds.models.ticket_hold import TicketHold
from ticket_holds.services.catalog import TicketCatalog, get_ticket_catalog

logger = logging.getLogger(__name__)

RECENT_ACCESS_LIMIT = 10
ACCESS_WINDOW_DAYS = 30


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole > 0 else 0


class HoldAnalyticsService:
    """Read-only reporting over holds, links, accesses and purchases"""

    def __init__(
        self,
        db: Optional[DatabaseManager] = None,
        catalog: Optional[TicketCatalog] = None,
        clock: Optional[Clock] = None,
    ):
        self.db = db or get_db_manager()
        self.catalog = catalog or get_ticket_catalog()
        self.clock = clock or get_clock()

    async def _revenue(self, session: AsyncSession, column, value) -> Dict:
        """Purchase totals for the purchases where `column == value`"""
        totals = (await session.execute(
            select(
                func.count(HoldPurchase.id),
                func.coalesce(func.sum(HoldPurchase.total), 0),
                func.coalesce(func.sum(HoldPurchase.coupon_discount), 0),
            ).where(column == value)
        )).one()
        original_value = (await session.execute(
            select(func.coalesce(func.sum(HoldPurchaseItem.original_price * HoldPurchaseItem.quantity), 0))
            .join(HoldPurchase, HoldPurchase.id == HoldPurchaseItem.hold_purchase_id)
            .where(column == value)
        )).scalar_one()

        purchase_count, total_revenue, coupon_discounts = totals
        return {
            "purchase_count": purchase_count,
            "total_revenue": int(total_revenue),
            "total_original_value": int(original_value),
            "total_savings_given": int(original_value) - int(total_revenue),
            "coupon_discounts": int(coupon_discounts),
            "average_order_value": round(total_revenue / purchase_count) if purchase_count else 0,
            "currency": settings.CURRENCY,
        }

    async def get_hold_analytics(self, hold_id: UUID) -> Dict:
        """Inventory utilisation, link status counts, engagement and revenue of a hold"""
        try:
            async with self.db.reader() as session:
                hold = await session.get(TicketHold, hold_id)
                if hold is None:
                    raise HoldNotFoundError(hold_id)

                names = await self.catalog.get_names(
                    session, [a.ticket_definition_id for a in hold.allocations]
                )

                status_rows = await session.execute(
                    select(PurchaseLink.status, func.count(PurchaseLink.id))
                    .where(PurchaseLink.ticket_hold_id == hold_id)
                    .group_by(PurchaseLink.status)
                )
                links_by_status = {status.value: 0 for status in LinkStatus}
                for status, count in status_rows:
                    links_by_status[LinkStatus(status).value] = count

                total_accesses = (await session.execute(
                    select(func.count(PurchaseLinkAccess.id))
                    .join(PurchaseLink, PurchaseLink.id == PurchaseLinkAccess.purchase_link_id)
                    .where(PurchaseLink.ticket_hold_id == hold_id)
                )).scalar_one()

                revenue = await self._revenue(session, HoldPurchase.ticket_hold_id, hold_id)

            total_allocated = hold.total_allocated
            total_redeemed = hold.total_redeemed
            return {
                "hold": {
                    "id": str(hold.id),
                    "name": hold.name,
                    "status": hold.status.value,
                    "created_at": hold.created_at.isoformat(),
                    "expires_at": hold.expires_at.isoformat() if hold.expires_at else None,
                },
                "inventory": {
                    "total_allocated": total_allocated,
                    "total_purchased": total_redeemed,
                    "total_remaining": hold.total_remaining,
                    "utilization_rate": _rate(total_redeemed, total_allocated),
                },
                "allocations": [
                    {
                        "ticket_definition_id": a.ticket_definition_id,
                        "ticket_name": names.get(a.ticket_definition_id),
                        "allocated": a.allocated_quantity,
                        "purchased": a.redeemed_count,
                        "remaining": a.remaining_quantity,
                        "pricing_mode": a.pricing_mode.value,
                        "utilization_rate": _rate(a.redeemed_count, a.allocated_quantity),
                    }
                    for a in hold.allocations
                ],
                "links": {"total": sum(links_by_status.values()), **links_by_status},
                "engagement": {
                    "total_accesses": total_accesses,
                    "total_purchases": revenue["purchase_count"],
                    "conversion_rate": _rate(revenue["purchase_count"], total_accesses),
                },
                "revenue": revenue,
            }

        except (HoldNotFoundError, LinkNotFoundError):
            raise
        except Exception as e:
            logger.error(f"Error getting hold analytics: {str(e)}")
            raise

    async def get_link_analytics(self, link_id: UUID) -> Dict:
        """Engagement, revenue and recent accesses of a purchase link"""
        now = self.clock.now()
        try:
            async with self.db.reader() as session:
                link = await session.get(PurchaseLink, link_id)
                if link is None:
                    raise LinkNotFoundError(link_id)

                engagement = (await session.execute(
                    select(
                        func.count(PurchaseLinkAccess.id),
                        func.count(func.distinct(PurchaseLinkAccess.user_id)),
                    ).where(PurchaseLinkAccess.purchase_link_id == link_id)
                )).one()
                converted = (await session.execute(
                    select(func.count(PurchaseLinkAccess.id)).where(
                        PurchaseLinkAccess.purchase_link_id == link_id,
                        PurchaseLinkAccess.resulted_in_purchase.is_(True),
                    )
                )).scalar_one()

                window = await session.execute(
                    select(PurchaseLinkAccess.accessed_at).where(
                        PurchaseLinkAccess.purchase_link_id == link_id,
                        PurchaseLinkAccess.accessed_at >= now - timedelta(days=ACCESS_WINDOW_DAYS),
                    )
                )
                accesses_by_day: Dict[str, int] = {}
                for (accessed_at,) in window:
                    day = accessed_at.strftime("%Y-%m-%d")
                    accesses_by_day[day] = accesses_by_day.get(day, 0) + 1

                recent = await session.execute(
                    select(PurchaseLinkAccess)
                    .where(PurchaseLinkAccess.purchase_link_id == link_id)
                    .order_by(PurchaseLinkAccess.accessed_at.desc())
                    .limit(RECENT_ACCESS_LIMIT)
                )
                recent_accesses = [
                    {
                        "accessed_at": access.accessed_at.isoformat(),
                        "user_id": access.user_id,
                        "ip_address": access.ip_address,
                        "resulted_in_purchase": access.resulted_in_purchase,
                    }
                    for access in recent.scalars()
                ]

                revenue = await self._revenue(session, HoldPurchase.purchase_link_id, link_id)

            total_accesses, unique_visitors = engagement
            return {
                "link": {
                    "id": str(link.id),
                    "code": link.code,
                    "name": link.name,
                    "status": link.status.value,
                    "quantity_mode": link.quantity_mode.value,
                    "quantity_limit": link.quantity_limit,
                    "quantity_purchased": link.redeemed_count,
                    "remaining_quantity": link.remaining_quantity,
                    "is_anonymous": link.assigned_user_id is None,
                    "created_at": link.created_at.isoformat(),
                    "expires_at": link.expires_at.isoformat() if link.expires_at else None,
                },
                "engagement": {
                    "total_accesses": total_accesses,
                    "unique_visitors": unique_visitors,
                    "purchases_from_access": converted,
                    "conversion_rate": _rate(converted, total_accesses),
                },
                "revenue": revenue,
                "accesses_by_day": dict(sorted(accesses_by_day.items())),
                "recent_accesses": recent_accesses,
            }

        except LinkNotFoundError:
            raise
        except Exception as e:
            logger.error(f"Error getting link analytics: {str(e)}")
            raise


def get_analytics_service() -> HoldAnalyticsService:
    return HoldAnalyticsService()
