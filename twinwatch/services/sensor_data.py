from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional
from uuid import uuid4

from twinwatch.db.repository import RepositoryError
from twinwatch.schemas.devices import DeviceIn, DeviceStatus, SensorDataIn
from twinwatch.schemas.faults import DetectedFault, SensorReading, SensorStatus, SensorType, as_naive_utc
from twinwatch.services.faults import FaultDetectionService
from twinwatch.services.notifications import DEVICE_STATUS_TOPIC, SENSOR_DATA_TOPIC

logger = logging.getLogger("twinwatch.sensor_data")

DEVICES = "devices"
SENSOR_DATA = "sensorData"


def classify_reading(sensor_type: str, value: float) -> str:
    """Coarse reading status shown next to the raw value (temperature only)."""
    if sensor_type == SensorType.TEMPERATURE:
        if value > 80:
            return SensorStatus.CRITICAL.value
        if value > 70:
            return SensorStatus.WARNING.value
    return SensorStatus.NORMAL.value


class SensorDataService:
    """Device registry and reading ingest; every stored reading is fed to fault detection."""

    def __init__(self, repository, detection: FaultDetectionService, sink=None):
        self.repository = repository
        self.detection = detection
        self.sink = sink

    async def _publish(self, topic: str, payload: dict) -> None:
        if self.sink is None:
            return
        try:
            await self.sink.publish(topic, payload)
        except Exception as exc:
            logger.warning("Publishing to %s failed: %s", topic, exc)

    # ------ Devices ------
    async def create_device(self, payload: DeviceIn, actor_id: Optional[str] = None) -> dict:
        now = datetime.utcnow()
        device = await self.repository.create(
            DEVICES,
            {
                "id": str(uuid4()),
                "name": payload.name,
                "type": payload.type,
                "status": DeviceStatus.OFFLINE.value,
                "model_id": payload.model_id,
                "last_seen": now,
                "attributes": payload.metadata,
                "created_by": actor_id or "anonymous",
                "created_at": now,
            },
        )
        await self._publish(DEVICE_STATUS_TOPIC, {"deviceId": device["id"], "status": device["status"]})
        logger.info("Device created successfully: %s", payload.name)
        return device

    async def get_device(self, device_id: str) -> Optional[dict]:
        return await self.repository.get(DEVICES, device_id)

    async def _touch_device(self, device_id: str) -> None:
        try:
            device = await self.repository.get(DEVICES, device_id)
            if device is not None:
                await self.repository.update(
                    DEVICES,
                    device_id,
                    {"last_seen": datetime.utcnow(), "status": DeviceStatus.ONLINE.value},
                )
        except RepositoryError as exc:
            logger.warning("Error updating device last seen for %s: %s", device_id, exc)

    # ------ Readings ------
    async def ingest(self, payload: SensorDataIn) -> tuple[SensorReading, list[DetectedFault]]:
        """
        Stores one reading and runs fault detection on it.

        A failing insert raises ``RepositoryError``; a failing fault write
        raises ``FaultPersistenceError`` after the reading was stored.
        """
        reading = SensorReading(
            id=str(uuid4()),
            model_id=payload.model_id,
            device_id=payload.device_id,
            sensor_type=payload.sensor_type,
            value=payload.value,
            unit=payload.unit,
            timestamp=payload.timestamp or datetime.utcnow(),
            status=classify_reading(payload.sensor_type, payload.value),
            coordinates=payload.coordinates,
        )
        await self.repository.create(SENSOR_DATA, reading.model_dump())
        await self._touch_device(reading.device_id)
        await self._publish(
            SENSOR_DATA_TOPIC,
            {"deviceId": reading.device_id, "sensorData": reading.model_dump(mode="json")},
        )
        logger.info("Sensor data added for device: %s", reading.device_id)

        faults = await self.detection.handle_reading(reading)
        return reading, faults

    async def ingest_bulk(self, payloads: list[SensorDataIn]) -> list[tuple[SensorReading, list[DetectedFault]]]:
        results = []
        for payload in payloads:
            results.append(await self.ingest(payload))
        logger.info("Bulk sensor data added: %d records", len(results))
        return results

    async def latest_by_type(
        self,
        device_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[SensorReading]:
        """Newest reading per sensor type for a device, optionally within [start, end]."""
        start, end = as_naive_utc(start), as_naive_utc(end)
        records = await self.repository.query(SENSOR_DATA, {"device_id": device_id}, since=start)
        latest: dict[str, SensorReading] = {}
        for record in records:
            if end is not None and record["timestamp"] > end:
                continue
            current = latest.get(record["sensor_type"])
            if current is None or record["timestamp"] > current.timestamp:
                latest[record["sensor_type"]] = SensorReading.model_validate(record)
        return list(latest.values())
