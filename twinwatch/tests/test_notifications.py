import unittest
from unittest.mock import AsyncMock, patch

from twinwatch.config import Settings
from twinwatch.schemas.faults import DetectedFault, DiagnosticData, RootCause
from twinwatch.services.notifications import (
    FAULT_TOPIC,
    FaultBroker,
    FaultNotifier,
    fault_notification,
    send_slack_alert,
)
from twinwatch.tests.fakes import RecordingSink


def make_fault(severity="CRITICAL") -> DetectedFault:
    return DetectedFault(
        id="f-1",
        rule_id="rule-temp-critical",
        model_id="M1",
        title="Critical Temperature Alert",
        description="Temperature exceeds critical threshold - Value: 90C",
        severity=severity,
        type="ENVIRONMENTAL",
        diagnostic_data=DiagnosticData(root_cause=RootCause(primary_cause="heat", confidence=0.8)),
    )


class FaultBrokerTestCase(unittest.IsolatedAsyncioTestCase):
    async def test_publish_reaches_all_subscribers(self):
        broker = FaultBroker()
        first = broker.subscribe(FAULT_TOPIC)
        second = broker.subscribe(FAULT_TOPIC)

        delivered = await broker.publish(FAULT_TOPIC, {"faultId": "f-1"})

        self.assertEqual(delivered, 2)
        self.assertEqual(first.get_nowait(), {"faultId": "f-1"})
        self.assertEqual(second.get_nowait(), {"faultId": "f-1"})
        self.assertEqual(await broker.publish("other-topic", {}), 0)

    async def test_full_queue_drops_message(self):
        broker = FaultBroker(max_queue=1)
        queue = broker.subscribe(FAULT_TOPIC)
        await broker.publish(FAULT_TOPIC, {"n": 1})

        with self.assertLogs("twinwatch.notifications", level="WARNING"):
            delivered = await broker.publish(FAULT_TOPIC, {"n": 2})

        self.assertEqual(delivered, 0)
        self.assertEqual(queue.qsize(), 1)

    async def test_subscription_context_unsubscribes(self):
        broker = FaultBroker()
        async with broker.subscription(FAULT_TOPIC):
            self.assertEqual(broker.subscriber_count(FAULT_TOPIC), 1)
        self.assertEqual(broker.subscriber_count(FAULT_TOPIC), 0)


class FaultNotifierTestCase(unittest.IsolatedAsyncioTestCase):
    def test_payload_shape(self):
        payload = fault_notification(make_fault())
        self.assertEqual(payload["type"], "FAULT_DETECTED")
        self.assertEqual(payload["faultId"], "f-1")
        self.assertEqual(payload["modelId"], "M1")
        self.assertEqual(payload["severity"], "CRITICAL")
        self.assertIn("timestamp", payload)

    async def test_sink_failure_is_swallowed(self):
        notifier = FaultNotifier(RecordingSink(fail=True), Settings(slack_webhook=""))

        with self.assertLogs("twinwatch.notifications", level="WARNING"):
            delivered = await notifier.dispatch(make_fault())

        self.assertFalse(delivered)

    async def test_only_critical_faults_go_to_slack(self):
        sink = RecordingSink()
        notifier = FaultNotifier(sink, Settings(slack_webhook="https://hooks.example.invalid/x"))

        with patch("twinwatch.services.notifications.send_slack_alert", new=AsyncMock()) as slack:
            await notifier.dispatch(make_fault("CRITICAL"))
            await notifier.dispatch(make_fault("LOW"))

        self.assertEqual(slack.await_count, 1)
        self.assertEqual(slack.await_args.args[1], "https://hooks.example.invalid/x")
        self.assertEqual(len(sink.messages), 2)

    async def test_slack_errors_are_logged(self):
        with self.assertLogs("twinwatch.notifications", level="WARNING"):
            await send_slack_alert({"modelId": "M1"}, "http://127.0.0.1:9/hook", timeout=0.5)

    async def test_slack_without_webhook_is_noop(self):
        await send_slack_alert({"modelId": "M1"}, "")


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
