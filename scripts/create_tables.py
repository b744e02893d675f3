#!/usr/bin/env python3
"""
Script to create the delegate key table directly from the SQLAlchemy models.
"""
import asyncio
import os
import sys

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine

# Add project root to path
sys.path.insert(0, os.path.abspath('.'))

from signless.core.config import settings
from signless.db.models import Base


async def create_tables():
    """Create database tables directly."""
    db_url = os.getenv("DATABASE_URL", str(settings.DATABASE_URL))
    if not db_url:
        print("ERROR: DATABASE_URL environment variable or setting must be set")
        sys.exit(1)

    print(f"Connecting to database: {db_url}")
    engine = create_async_engine(db_url)

    try:
        async with engine.begin() as conn:
            result = await conn.execute(text(
                "SELECT EXISTS (SELECT FROM information_schema.tables WHERE table_name = 'delegate_keys')"
            ))
            if result.scalar():
                print("delegate_keys table already exists, skipping creation.")
            else:
                print("Creating delegate_keys table...")
                await conn.run_sync(Base.metadata.create_all)
                print("Successfully created delegate_keys table")
    except Exception as e:
        print(f"ERROR: {e}")
        sys.exit(1)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(create_tables())
