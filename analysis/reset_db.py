#!/usr/bin/env python
"""Helper: drops and recreates the TwinWatch tables."""

from __future__ import annotations

import asyncio

from twinwatch.db.session import engine
from twinwatch.models.models import Base


async def main() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()
    print("SQLite DB reset.")


if __name__ == "__main__":
    asyncio.run(main())
