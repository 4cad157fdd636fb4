#!/usr/bin/env python
"""Exports stored faults as CSV or JSON."""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import Optional

import pandas as pd

from twinwatch.db.repository import DocumentRepository
from twinwatch.db.session import AsyncSessionLocal, engine

EXPORT_COLUMNS = [
    "id",
    "model_id",
    "device_id",
    "rule_id",
    "title",
    "severity",
    "type",
    "status",
    "detected_at",
    "acknowledged_at",
    "acknowledged_by",
    "resolved_at",
    "resolved_by",
    "resolution",
]


async def fetch_faults(limit: int, status: Optional[str], model_id: Optional[str]) -> list[dict]:
    filters = {}
    if status:
        filters["status"] = status
    if model_id:
        filters["model_id"] = model_id
    repository = DocumentRepository(AsyncSessionLocal)
    rows = await repository.query("faults", filters, limit=limit)
    await engine.dispose()
    return rows


def write_output(data: list[dict], path: Path, fmt: str) -> None:
    if fmt == "json":
        path.write_text(json.dumps(data, default=str, indent=2), encoding="utf-8")
        return
    df = pd.DataFrame.from_records(data, columns=EXPORT_COLUMNS)
    df.to_csv(path, index=False)


async def main():
    parser = argparse.ArgumentParser(description="Export detected faults")
    parser.add_argument("--limit", type=int, default=200)
    parser.add_argument("--status", choices=["ACTIVE", "ACKNOWLEDGED", "RESOLVED", "FALSE_POSITIVE"])
    parser.add_argument("--model-id", default=None)
    parser.add_argument("--format", choices=["csv", "json"], default="csv")
    parser.add_argument("--output", default="reports/faults.csv")
    args = parser.parse_args()

    faults = await fetch_faults(args.limit, args.status, args.model_id)
    output_path = Path(args.output)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    write_output(faults, output_path, args.format)
    print(f"Faults exported: {len(faults)} -> {output_path}")


if __name__ == "__main__":
    asyncio.run(main())
