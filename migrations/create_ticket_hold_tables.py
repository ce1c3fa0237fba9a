"""
Migration to create the ticket hold tables
"""

import asyncio

from sqlalchemy import text

from ticket_holds.core.database import Base, engine, async_session
from ticket_holds.models import (
    TicketDefinition,
    TicketHold,
    HoldAllocation,
    PurchaseLink,
    PurchaseLinkAccess,
    HoldPurchase,
    HoldPurchaseItem,
)

TABLES = [
    TicketDefinition.__table__,
    TicketHold.__table__,
    HoldAllocation.__table__,
    PurchaseLink.__table__,
    PurchaseLinkAccess.__table__,
    HoldPurchase.__table__,
    HoldPurchaseItem.__table__,
]


async def create_ticket_hold_tables():
    """Create the ticket hold tables if they don't exist"""
    try:
        print("Creating ticket hold tables...")

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all, tables=TABLES)

        print("[OK] Ticket hold tables created")

    except Exception as e:
        print(f"[ERROR] Creating ticket hold tables failed: {e}")
        raise


async def verify_tables_exist():
    """Verify that every table exists and is accessible"""
    try:
        async with async_session() as session:
            for table in TABLES:
                result = await session.execute(text(f"SELECT COUNT(*) FROM {table.name}"))
                print(f"[OK] {table.name} verified - current record count: {result.scalar()}")

    except Exception as e:
        print(f"[ERROR] Verifying ticket hold tables failed: {e}")
        raise


async def main():
    """Main migration function"""
    print("Starting ticket hold migration...")

    await create_ticket_hold_tables()
    await verify_tables_exist()
    await engine.dispose()

    print("Migration completed successfully!")


if __name__ == "__main__":
    asyncio.run(main())
