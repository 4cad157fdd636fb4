#!/usr/bin/env python
"""Runs the fault sweep outside the API process, once or on an interval."""

from __future__ import annotations

import argparse
import asyncio
import logging

from twinwatch.config import get_settings
from twinwatch.db.repository import DocumentRepository
from twinwatch.db.session import AsyncSessionLocal, engine
from twinwatch.models.models import Base
from twinwatch.services.faults import FaultDetectionService
from twinwatch.services.notifications import FaultBroker, FaultNotifier
from twinwatch.services.rules import RuleStore
from twinwatch.services.scheduler import sweep_loop


async def run(args: argparse.Namespace) -> None:
    settings = get_settings()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # no websocket clients here, so the broker only matters for Slack escalation
    notifier = FaultNotifier(FaultBroker(), settings)
    service = FaultDetectionService(
        DocumentRepository(AsyncSessionLocal),
        RuleStore(),
        notifier,
        settings=settings,
    )
    await sweep_loop(service, args.interval_minutes, args.window_seconds)
    await engine.dispose()


def parse_args() -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Periodic fault sweep over recent sensor data")
    parser.add_argument("--interval-minutes", type=float, default=settings.sweep_interval_minutes)
    parser.add_argument("--window-seconds", type=int, default=settings.sweep_window_seconds)
    parser.add_argument("--once", action="store_true", help="run a single sweep and exit")
    args = parser.parse_args()
    if args.once:
        args.interval_minutes = 0
    return args


def main() -> None:
    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(run(parse_args()))


if __name__ == "__main__":
    main()
