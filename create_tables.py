"""
Script to create all database tables.

This script creates the webhooks and webhook_deliveries tables.
Run this after starting PostgreSQL with Docker.
"""
import asyncio
import sys
from webhook_relay.database import engine
from webhook_relay.models.base import Base
from webhook_relay.models.webhook import Webhook, DeliveryAttempt  # noqa: F401  registers tables


async def create_all_tables():
    """Create all tables in the database."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("All tables created successfully!")


async def drop_all_tables():
    """Drop all tables in the database (for testing)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    print("All tables dropped!")


async def main():
    """Main entry point."""
    if "--drop" in sys.argv:
        await drop_all_tables()
    print("Creating database tables...")
    await create_all_tables()
    await engine.dispose()
    print("Done!")


if __name__ == "__main__":
    asyncio.run(main())
