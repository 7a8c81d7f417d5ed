"""
Script to create all database tables.

This script creates all tables defined in the models.
Run this after starting PostgreSQL with Docker.
"""
import asyncio
from dripline.database import engine
from dripline.models.base import Base
# Import all models to register them with Base
from dripline.models.sequence import DripSequence, DripStep  # noqa: F401
from dripline.models.job import DripJob  # noqa: F401


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
    print("Creating drip tables...")
    await create_all_tables()
    print("Done!")


if __name__ == "__main__":
    asyncio.run(main())
