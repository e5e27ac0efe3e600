"""Script to initialize the database without running migrations."""

import asyncio

from sqlalchemy import text

from clinic_api.database import engine
from clinic_api.models import metadata


async def init_db() -> None:
    """Initialize the database by creating all tables."""
    async with engine.begin() as conn:
        if conn.dialect.name == "postgresql":
            # gen_random_uuid() for rows inserted outside the application
            await conn.execute(text('CREATE EXTENSION IF NOT EXISTS "pgcrypto"'))

        # Create all tables
        await conn.run_sync(metadata.create_all)

        print(f"✓ Database initialized successfully! ({len(metadata.tables)} tables)")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(init_db())
