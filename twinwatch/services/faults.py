from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import uuid4

from twinwatch.config import Settings, get_settings
from twinwatch.db.repository import RepositoryError
from twinwatch.schemas.faults import (
    DetectedFault,
    DiagnosticData,
    FaultRule,
    FaultStats,
    FaultStatus,
    ManualFaultIn,
    RootCause,
    SensorReading,
    TERMINAL_STATUSES,
)
from twinwatch.services.diagnostics import generate_diagnostic_data, recommended_actions
from twinwatch.services.evaluator import ConditionEvaluator
from twinwatch.services.locks import KeyedLock
from twinwatch.services.rules import RuleStore

logger = logging.getLogger("twinwatch.faults")

FAULTS = "faults"
SENSOR_DATA = "sensorData"

MANUAL_ACTIONS = [
    "Investigate the reported issue",
    "Check affected components",
    "Contact maintenance team if needed",
]


def format_value(value: float) -> str:
    """Full-precision reading value; whole numbers print without a trailing ``.0``."""
    return str(int(value)) if float(value).is_integer() else str(value)


class FaultPersistenceError(Exception):
    """A fault could not be stored. The triggering reading counts as unprocessed."""


class FaultDetectionService:
    """
    Turns sensor readings into fault records and drives the fault lifecycle.

    For every triggered rule at most one ACTIVE fault exists per model: the
    lookup and the insert run under a lock keyed by (rule id, model id), and
    an existing ACTIVE fault is handed back as-is.
    """

    def __init__(
        self,
        repository,
        rules: RuleStore,
        notifier=None,
        *,
        evaluator: Optional[ConditionEvaluator] = None,
        locks: Optional[KeyedLock] = None,
        settings: Optional[Settings] = None,
    ):
        self.repository = repository
        self.rules = rules
        self.notifier = notifier
        self.evaluator = evaluator or ConditionEvaluator()
        self._locks = locks or KeyedLock()
        self._settings = settings or get_settings()

    # ------ Detection ------
    async def handle_reading(self, reading: SensorReading) -> list[DetectedFault]:
        """
        Evaluates all applicable rules against ``reading``.

        Returns one fault per triggered rule, either newly created or the
        already ACTIVE one for the same rule and model.
        """
        triggered = [
            rule
            for rule in self.rules.list_active(reading.model_id)
            if self.evaluator.evaluate(rule, reading)
        ]

        faults: list[DetectedFault] = []
        for rule in triggered:
            faults.append(await self._resolve_or_create(rule, reading))
        return faults

    async def _find_active(self, rule_id: str, model_id: str) -> Optional[DetectedFault]:
        try:
            records = await self.repository.query(
                FAULTS, {"model_id": model_id, "status": FaultStatus.ACTIVE.value}
            )
        except RepositoryError as exc:
            logger.warning("Active fault lookup failed for model %s: %s", model_id, exc)
            return None
        for record in records:
            if record.get("rule_id") == rule_id:
                return DetectedFault.model_validate(record)
        return None

    async def _resolve_or_create(self, rule: FaultRule, reading: SensorReading) -> DetectedFault:
        async with self._locks.hold((rule.id, reading.model_id)):
            existing = await self._find_active(rule.id, reading.model_id)
            if existing is not None:
                logger.debug("Fault %s still active for rule %s, suppressed", existing.id, rule.id)
                return existing

            fault = await self._build_fault(rule, reading)
            await self._persist(fault)
            self.rules.mark_triggered(rule.id, fault.detected_at)

        logger.info("Fault detected: %s for model %s", fault.title, fault.model_id)
        await self._dispatch(fault)
        return fault

    async def _build_fault(self, rule: FaultRule, reading: SensorReading) -> DetectedFault:
        diagnostic_data = await generate_diagnostic_data(
            self.repository,
            reading.model_id,
            rule,
            self._settings.diagnostic_window_seconds,
        )
        return DetectedFault(
            id=str(uuid4()),
            rule_id=rule.id,
            model_id=reading.model_id,
            device_id=reading.device_id,
            title=rule.name,
            description=f"{rule.description} - Value: {format_value(reading.value)}{reading.unit}",
            severity=rule.severity,
            type=rule.fault_type,
            status=FaultStatus.ACTIVE,
            detected_at=datetime.utcnow(),
            coordinates=reading.coordinates,
            affected_components=[reading.sensor_type],
            diagnostic_data=diagnostic_data,
            recommended_actions=recommended_actions(rule.fault_type),
        )

    async def _persist(self, fault: DetectedFault) -> None:
        try:
            await self.repository.create(FAULTS, fault.to_record())
        except RepositoryError as exc:
            logger.error("Persisting fault for rule %s failed: %s", fault.rule_id, exc)
            raise FaultPersistenceError(f"Fault processing failed for rule {fault.rule_id}") from exc

    async def _dispatch(self, fault: DetectedFault) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.dispatch(fault)
        except Exception as exc:
            logger.warning("Dispatch of fault %s failed: %s", fault.id, exc)

    # ------ Lifecycle ------
    async def _load(self, fault_id: str) -> Optional[DetectedFault]:
        try:
            record = await self.repository.get(FAULTS, fault_id)
        except RepositoryError as exc:
            raise FaultPersistenceError(f"Fault {fault_id} could not be read") from exc
        return DetectedFault.model_validate(record) if record is not None else None

    async def _save(self, fault_id: str, changes: dict) -> Optional[DetectedFault]:
        try:
            record = await self.repository.update(FAULTS, fault_id, changes)
        except RepositoryError as exc:
            raise FaultPersistenceError(f"Fault {fault_id} could not be updated") from exc
        return DetectedFault.model_validate(record) if record is not None else None

    async def acknowledge(self, fault_id: str, actor_id: Optional[str] = None) -> Optional[DetectedFault]:
        """
        ACTIVE -> ACKNOWLEDGED. Repeating it overwrites who/when; RESOLVED and
        FALSE_POSITIVE faults come back unchanged. None if the fault is unknown.
        """
        fault = await self._load(fault_id)
        if fault is None:
            return None
        if fault.status in TERMINAL_STATUSES:
            logger.info("Fault %s already %s, acknowledge ignored", fault_id, fault.status)
            return fault

        updated = await self._save(
            fault_id,
            {
                "status": FaultStatus.ACKNOWLEDGED.value,
                "acknowledged_by": actor_id,
                "acknowledged_at": datetime.utcnow(),
            },
        )
        logger.info("Fault acknowledged: %s by %s", fault_id, actor_id)
        return updated

    async def resolve(
        self,
        fault_id: str,
        actor_id: Optional[str] = None,
        resolution: Optional[str] = None,
    ) -> Optional[DetectedFault]:
        """
        ACTIVE or ACKNOWLEDGED -> RESOLVED. Resolving again keeps RESOLVED and
        overwrites the metadata. None if the fault is unknown.
        """
        fault = await self._load(fault_id)
        if fault is None:
            return None
        if fault.status == FaultStatus.FALSE_POSITIVE:
            logger.info("Fault %s is a false positive, resolve ignored", fault_id)
            return fault

        diagnostic_data = fault.diagnostic_data.model_copy()
        if resolution:
            diagnostic_data.resolution = resolution
        updated = await self._save(
            fault_id,
            {
                "status": FaultStatus.RESOLVED.value,
                "resolved_at": datetime.utcnow(),
                "resolved_by": actor_id,
                "resolution": resolution,
                "diagnostic_data": diagnostic_data.model_dump(),
            },
        )
        logger.info("Fault resolved: %s by %s", fault_id, actor_id)
        return updated

    # ------ Queries ------
    async def get_fault(self, fault_id: str) -> Optional[DetectedFault]:
        record = await self.repository.get(FAULTS, fault_id)
        return DetectedFault.model_validate(record) if record is not None else None

    async def list_faults(
        self, limit: int = 50, offset: int = 0, status: Optional[str] = None
    ) -> list[DetectedFault]:
        filters = {"status": status} if status else None
        records = await self.repository.query(FAULTS, filters, limit=limit, offset=offset)
        return [DetectedFault.model_validate(r) for r in records]

    async def faults_by_model(self, model_id: str) -> list[DetectedFault]:
        records = await self.repository.query(FAULTS, {"model_id": model_id})
        return [DetectedFault.model_validate(r) for r in records]

    async def faults_by_device(self, device_id: str) -> list[DetectedFault]:
        records = await self.repository.query(FAULTS, {"device_id": device_id})
        return [DetectedFault.model_validate(r) for r in records]

    async def fault_stats(self) -> FaultStats:
        by_status = {
            status.value: await self.repository.count(FAULTS, {"status": status.value})
            for status in FaultStatus
        }
        active = by_status[FaultStatus.ACTIVE.value]
        return FaultStats(
            total=sum(by_status.values()),
            by_status=by_status,
            active=active,
            system_health=max(0, 100 - active * 10),
        )

    async def create_manual_fault(self, payload: ManualFaultIn, actor_id: Optional[str] = None) -> DetectedFault:
        fault = DetectedFault(
            id=str(uuid4()),
            rule_id=f"manual-{uuid4()}",
            model_id=payload.model_id,
            device_id=payload.device_id,
            title=payload.title,
            description=payload.description,
            severity=payload.severity,
            type=payload.type,
            coordinates=payload.coordinates,
            affected_components=payload.affected_components,
            diagnostic_data=DiagnosticData(
                root_cause=RootCause(primary_cause="Manual fault creation", confidence=1.0),
            ),
            recommended_actions=list(MANUAL_ACTIONS),
            assigned_to=actor_id or "unassigned",
            created_by=actor_id or "anonymous",
        )
        await self._persist(fault)
        logger.info("Manual fault created: %s", fault.title)
        await self._dispatch(fault)
        return fault

    # ------ Scheduled sweep ------
    async def run_scheduled_check(self, window_seconds: Optional[int] = None) -> int:
        """
        Re-runs detection over every reading of the last ``window_seconds``.

        A failing reading is logged and skipped. Returns the number of faults
        handed back (new and already active ones).
        """
        window = window_seconds if window_seconds is not None else self._settings.sweep_window_seconds
        since = datetime.utcnow() - timedelta(seconds=window)
        records = await self.repository.query(SENSOR_DATA, since=since)
        if not records:
            logger.info("No recent sensor data found for fault detection")
            return 0

        total = 0
        for record in records:
            try:
                reading = SensorReading.model_validate(record)
                total += len(await self.handle_reading(reading))
            except Exception:
                logger.exception("Fault detection failed for reading %s", record.get("id"))

        logger.info("Scheduled fault detection check completed. %d faults detected.", total)
        return total
