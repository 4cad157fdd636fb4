from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Iterable, Mapping

import pandas as pd

from twinwatch.schemas.faults import DiagnosticData, FaultRule, RootCause

logger = logging.getLogger("twinwatch.diagnostics")

CONFIDENCE = 0.8
DEGRADED_CONFIDENCE = 0.5

RECOMMENDED_ACTIONS: dict[str, list[str]] = {
    "ENVIRONMENTAL": [
        "Check environmental controls",
        "Verify sensor calibration",
        "Inspect cooling systems",
    ],
    "STRUCTURAL": [
        "Perform structural inspection",
        "Check mounting and connections",
        "Review maintenance schedule",
    ],
    "CONNECTIVITY": [
        "Check network connections",
        "Verify signal strength",
        "Restart communication modules",
    ],
    "PERFORMANCE": [
        "Monitor system resources",
        "Check for software updates",
        "Review system configuration",
    ],
    "DATA_QUALITY": [
        "Validate data sources",
        "Check sensor accuracy",
        "Review data processing pipeline",
    ],
}
FALLBACK_ACTIONS = ["Contact technical support"]


def recommended_actions(fault_type: str) -> list[str]:
    return list(RECOMMENDED_ACTIONS.get(fault_type, FALLBACK_ACTIONS))


def summarize_history(records: Iterable[Mapping[str, Any]]) -> tuple[dict[str, float], dict[str, list[float]]]:
    """
    Groups readings by sensor type.

    Returns the latest value per type and the full value series per type,
    newest first.
    """
    df = pd.DataFrame.from_records(list(records), columns=["sensor_type", "value", "timestamp"])
    if df.empty:
        return {}, {}

    df = df.sort_values("timestamp", ascending=False, kind="stable")
    grouped = df.groupby("sensor_type", sort=False)["value"]
    parameters = {str(key): float(value) for key, value in grouped.first().items()}
    trends = {str(key): [float(v) for v in values] for key, values in grouped.agg(list).items()}
    return parameters, trends


async def generate_diagnostic_data(
    repository,
    model_id: str,
    rule: FaultRule,
    window_seconds: int = 3600,
) -> DiagnosticData:
    """Snapshot of the model's recent sensor history, attached to a new fault."""
    try:
        since = datetime.utcnow() - timedelta(seconds=window_seconds)
        records = await repository.query("sensorData", {"model_id": model_id}, since=since)
        parameters, trends = summarize_history(records)
    except Exception as exc:
        logger.warning("Diagnostic history unavailable for model %s: %s", model_id, exc)
        return DiagnosticData(
            root_cause=RootCause(primary_cause=rule.description, confidence=DEGRADED_CONFIDENCE),
        )

    return DiagnosticData(
        parameters=parameters,
        trends=trends,
        root_cause=RootCause(primary_cause=rule.description, confidence=CONFIDENCE),
    )
