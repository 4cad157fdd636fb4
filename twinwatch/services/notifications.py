from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Optional

import httpx

from twinwatch.config import Settings, get_settings
from twinwatch.schemas.faults import DetectedFault, Severity

logger = logging.getLogger("twinwatch.notifications")

FAULT_TOPIC = "fault-notifications"
SENSOR_DATA_TOPIC = "SENSOR_DATA_UPDATED"
DEVICE_STATUS_TOPIC = "DEVICE_STATUS_CHANGED"


class FaultBroker:
    """
    In-process publish/subscribe hub. Each subscriber owns a bounded queue;
    a full queue drops the message for that subscriber only.
    """

    def __init__(self, max_queue: int = 100):
        self._max_queue = max_queue
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))

    def subscribe(self, topic: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue)
        self._subscribers[topic].add(queue)
        return queue

    def unsubscribe(self, topic: str, queue: asyncio.Queue) -> None:
        subscribers = self._subscribers.get(topic)
        if subscribers is None:
            return
        subscribers.discard(queue)
        if not subscribers:
            del self._subscribers[topic]

    @asynccontextmanager
    async def subscription(self, topic: str) -> AsyncIterator[asyncio.Queue]:
        queue = self.subscribe(topic)
        try:
            yield queue
        finally:
            self.unsubscribe(topic, queue)

    async def publish(self, topic: str, payload: Mapping[str, Any]) -> int:
        delivered = 0
        for queue in list(self._subscribers.get(topic, ())):
            try:
                queue.put_nowait(dict(payload))
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("Subscriber queue full on %s, message dropped", topic)
        return delivered


def fault_notification(fault: DetectedFault) -> dict[str, Any]:
    return {
        "type": "FAULT_DETECTED",
        "faultId": fault.id,
        "modelId": fault.model_id,
        "severity": fault.severity,
        "title": fault.title,
        "description": fault.description,
        "timestamp": fault.detected_at.isoformat(),
    }


async def send_slack_alert(payload: Mapping[str, Any], webhook: str, timeout: float = 5.0) -> None:
    if not webhook:
        return
    body = {
        "text": (
            f"⚠️ TwinWatch Fault\n"
            f"Model: {payload.get('modelId')}\n"
            f"Title: {payload.get('title')}\n"
            f"Severity: {payload.get('severity')}\n"
            f"Detected: {payload.get('timestamp')}"
        )
    }
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.post(webhook, json=body)
            resp.raise_for_status()
    except Exception as exc:
        logger.warning("Slack notification failed: %s", exc)


class FaultNotifier:
    """
    Pushes newly created faults to the message sink, and CRITICAL ones to
    the Slack webhook. Never raises.
    """

    def __init__(self, sink, settings: Optional[Settings] = None):
        self._sink = sink
        self._settings = settings or get_settings()

    async def dispatch(self, fault: DetectedFault) -> bool:
        payload = fault_notification(fault)
        delivered = True
        try:
            await self._sink.publish(FAULT_TOPIC, payload)
        except Exception as exc:
            logger.warning("Fault notification for %s failed: %s", fault.id, exc)
            delivered = False

        if fault.severity == Severity.CRITICAL:
            await send_slack_alert(payload, self._settings.slack_webhook, self._settings.webhook_timeout)
        return delivered
