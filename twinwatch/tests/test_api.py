import asyncio
import unittest

from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from twinwatch.config import Settings
from twinwatch.main import app, fault_feed, get_broker, get_fault_service, get_rule_store, get_sensor_service, settings
from twinwatch.services.faults import FaultDetectionService
from twinwatch.services.notifications import FAULT_TOPIC, FaultBroker, FaultNotifier
from twinwatch.services.rules import RuleStore
from twinwatch.services.sensor_data import SensorDataService
from twinwatch.tests.fakes import InMemoryRepository, RecordingSink


def reading_payload(value, model_id="M1", device_id="dev-1", sensor_type="TEMPERATURE"):
    return {
        "device_id": device_id,
        "model_id": model_id,
        "sensor_type": sensor_type,
        "value": value,
        "unit": "C",
    }


class FaultAPITestCase(unittest.TestCase):
    def setUp(self):
        self.repo = InMemoryRepository()
        self.sink = RecordingSink()
        self.rules = RuleStore()
        self.faults = FaultDetectionService(
            self.repo, self.rules, FaultNotifier(self.sink, Settings(slack_webhook=""))
        )
        self.sensors = SensorDataService(self.repo, self.faults, self.sink)
        app.dependency_overrides[get_fault_service] = lambda: self.faults
        app.dependency_overrides[get_sensor_service] = lambda: self.sensors
        app.dependency_overrides[get_rule_store] = lambda: self.rules
        app.dependency_overrides[get_broker] = lambda: FaultBroker()
        self.client = TestClient(app)
        self.headers = {"x-api-key": settings.api_key}

    def tearDown(self):
        app.dependency_overrides.clear()

    def post_reading(self, value, **kwargs):
        return self.client.post("/sensor-data", json=reading_payload(value, **kwargs), headers=self.headers)

    def test_root_and_health(self):
        resp = self.client.get("/")
        self.assertEqual(resp.status_code, 200)
        self.assertIn("TwinWatch", resp.json().get("message", ""))

        resp = self.client.get("/health")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "ok")
        self.assertEqual(resp.json()["rules"], 3)

    def test_requires_key(self):
        self.assertEqual(self.client.get("/faults").status_code, 401)
        self.assertEqual(self.client.post("/sensor-data", json=reading_payload(90)).status_code, 401)

    def test_reading_above_threshold_creates_fault_once(self):
        first = self.post_reading(90)
        self.assertEqual(first.status_code, 201)
        body = first.json()
        self.assertEqual(body["reading"]["status"], "CRITICAL")
        self.assertEqual(len(body["faults"]), 1)
        fault = body["faults"][0]
        self.assertEqual(fault["severity"], "CRITICAL")
        self.assertEqual(fault["type"], "ENVIRONMENTAL")
        self.assertEqual(fault["status"], "ACTIVE")

        second = self.post_reading(97).json()
        self.assertEqual(second["faults"][0]["id"], fault["id"])

        listed = self.client.get("/faults", params={"status": "ACTIVE"}, headers=self.headers).json()
        self.assertEqual([f["id"] for f in listed], [fault["id"]])

    def test_reading_below_threshold(self):
        body = self.post_reading(75).json()
        self.assertEqual(body["faults"], [])
        self.assertEqual(body["reading"]["status"], "WARNING")

    def test_invalid_sensor_type_rejected(self):
        resp = self.post_reading(90, sensor_type="SMELL")
        self.assertEqual(resp.status_code, 422)

    def test_acknowledge_and_resolve(self):
        fault_id = self.post_reading(90).json()["faults"][0]["id"]
        user = {**self.headers, "x-user-id": "alice"}

        acked = self.client.post(f"/faults/{fault_id}/acknowledge", headers=user)
        self.assertEqual(acked.status_code, 200)
        self.assertEqual(acked.json()["status"], "ACKNOWLEDGED")
        self.assertEqual(acked.json()["acknowledged_by"], "alice")

        resolved = self.client.post(
            f"/faults/{fault_id}/resolve", json={"resolution": "Sensor recalibrated"}, headers=user
        )
        self.assertEqual(resolved.status_code, 200)
        self.assertEqual(resolved.json()["status"], "RESOLVED")
        self.assertEqual(resolved.json()["diagnostic_data"]["resolution"], "Sensor recalibrated")

        again = self.client.post(f"/faults/{fault_id}/resolve", headers=user)
        self.assertEqual(again.status_code, 200)
        self.assertEqual(again.json()["status"], "RESOLVED")

    def test_unknown_fault_is_404(self):
        self.assertEqual(self.client.post("/faults/nope/acknowledge", headers=self.headers).status_code, 404)
        self.assertEqual(self.client.post("/faults/nope/resolve", headers=self.headers).status_code, 404)
        self.assertEqual(self.client.get("/faults/nope", headers=self.headers).status_code, 404)

    def test_persistence_failure_is_503(self):
        self.repo.fail("create", "faults")
        resp = self.post_reading(90)
        self.assertEqual(resp.status_code, 503)
        self.assertEqual(resp.json()["detail"], "Fault processing failed")

    def test_rule_toggle(self):
        rules = self.client.get("/rules", headers=self.headers).json()
        self.assertEqual(len(rules), 3)

        resp = self.client.patch("/rules/rule-temp-critical", json={"is_active": False}, headers=self.headers)
        self.assertEqual(resp.status_code, 200)
        self.assertFalse(resp.json()["is_active"])
        self.assertEqual(self.post_reading(99).json()["faults"], [])

        missing = self.client.patch("/rules/unknown", json={"is_active": True}, headers=self.headers)
        self.assertEqual(missing.status_code, 404)

    def test_devices_and_latest_readings(self):
        created = self.client.post(
            "/devices",
            json={"name": "Chiller", "type": "SENSOR", "model_id": "M1", "metadata": {"floor": 2}},
            headers=self.headers,
        )
        self.assertEqual(created.status_code, 201)
        device = created.json()
        self.assertEqual(device["status"], "OFFLINE")
        self.assertEqual(device["metadata"], {"floor": 2})

        self.post_reading(40, device_id=device["id"])
        self.post_reading(3, device_id=device["id"], sensor_type="VIBRATION")
        self.post_reading(42, device_id=device["id"])

        fetched = self.client.get(f"/devices/{device['id']}", headers=self.headers).json()
        self.assertEqual(fetched["status"], "ONLINE")

        latest = self.client.get(f"/devices/{device['id']}/sensor-data", headers=self.headers).json()
        by_type = {r["sensor_type"]: r["value"] for r in latest}
        self.assertEqual(by_type, {"TEMPERATURE": 42.0, "VIBRATION": 3.0})

        self.assertEqual(self.client.get("/devices/unknown", headers=self.headers).status_code, 404)

    def test_latest_readings_accept_utc_bounds(self):
        self.post_reading(42)

        resp = self.client.get(
            "/devices/dev-1/sensor-data",
            params={"from": "2000-01-01T00:00:00+02:00", "to": "2099-01-01T00:00:00Z"},
            headers=self.headers,
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual([r["value"] for r in resp.json()], [42.0])

        before = self.client.get(
            "/devices/dev-1/sensor-data", params={"to": "2000-01-01T00:00:00Z"}, headers=self.headers
        )
        self.assertEqual(before.status_code, 200)
        self.assertEqual(before.json(), [])

    def test_manual_fault_stats_and_check(self):
        manual = self.client.post(
            "/faults",
            json={"model_id": "M9", "title": "Cracked housing", "severity": "HIGH", "type": "STRUCTURAL"},
            headers={**self.headers, "x-user-id": "bob"},
        )
        self.assertEqual(manual.status_code, 201)
        self.assertEqual(manual.json()["created_by"], "bob")

        self.post_reading(90)
        check = self.client.post("/faults/check", headers=self.headers)
        self.assertEqual(check.status_code, 200)
        self.assertEqual(check.json(), {"faults_detected": 1})

        stats = self.client.get("/faults/stats", headers=self.headers).json()
        self.assertEqual(stats["active"], 2)
        self.assertEqual(stats["system_health"], 80)

        by_model = self.client.get("/faults/model/M9", headers=self.headers).json()
        self.assertEqual(len(by_model), 1)

    def test_fault_feed_requires_key(self):
        with self.assertRaises(WebSocketDisconnect):
            with self.client.websocket_connect("/ws/faults") as ws:
                ws.receive_json()


class FakeFeedSocket:
    def __init__(self, key):
        self.query_params = {"key": key}
        self.sent = []
        self.accepted = False
        self.closed_with = None
        self.gone = asyncio.Event()

    async def accept(self):
        self.accepted = True

    async def close(self, code=1000):
        self.closed_with = code

    async def send_json(self, data):
        self.sent.append(data)

    async def receive(self):
        await self.gone.wait()
        return {"type": "websocket.disconnect", "code": 1000}


class FaultFeedTestCase(unittest.IsolatedAsyncioTestCase):
    async def test_feed_forwards_faults_and_releases_on_disconnect(self):
        hub = FaultBroker()
        socket = FakeFeedSocket(settings.api_key)
        feed = asyncio.create_task(fault_feed(socket, hub))
        while hub.subscriber_count(FAULT_TOPIC) == 0:
            await asyncio.sleep(0)

        await hub.publish(FAULT_TOPIC, {"faultId": "f-1"})
        while not socket.sent:
            await asyncio.sleep(0)
        self.assertEqual(socket.sent, [{"faultId": "f-1"}])

        socket.gone.set()
        await asyncio.wait_for(feed, timeout=1)

        self.assertTrue(socket.accepted)
        self.assertEqual(hub.subscriber_count(FAULT_TOPIC), 0)

    async def test_feed_rejects_wrong_key(self):
        hub = FaultBroker()
        socket = FakeFeedSocket("wrong")

        await fault_feed(socket, hub)

        self.assertEqual(socket.closed_with, 1008)
        self.assertFalse(socket.accepted)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
