import unittest

import requests
from sqlalchemy import select

from drawengine.collaborators import (
    ACTION_COMPLETED,
    CompositeAuditSink,
    DatabaseAuditSink,
    DrawingSummary,
    LoggingAuditSink,
    RefundEvent,
    RefundItem,
    WebhookAuditSink,
    build_audit_sink,
    deliver,
)
from drawengine.config import EngineSettings
from drawengine.db.unit_of_work import UnitOfWork
from drawengine.models import DrawingLog

from factories import FailingSink, RecordingAuditSink, memory_engine


class DummyResponse:
    def __init__(self, status_code: int = 200):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class DummySession:
    def __init__(self, response: DummyResponse):
        self.response = response
        self.calls = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        return self.response


def _summary(**overrides):
    values = dict(
        action=ACTION_COMPLETED,
        instance_id=7,
        instance_code="daily_test-20260310-abc",
        audit_seed="seed",
        ticket_count=12,
        winner_count=3,
    )
    values.update(overrides)
    return DrawingSummary(**values)


class DeliverTests(unittest.TestCase):
    def test_failure_is_logged_not_raised(self):
        with self.assertLogs("drawengine.collaborators", level="ERROR") as logs:
            delivered = deliver(FailingSink().record, _summary(), what="audit sink")
        self.assertFalse(delivered)
        self.assertIn("audit sink", logs.output[0])

    def test_success(self):
        sink = RecordingAuditSink()
        self.assertTrue(deliver(sink.record, _summary(), what="audit sink"))
        self.assertEqual(len(sink.summaries), 1)

    def test_composite_keeps_going_after_a_failure(self):
        recorder = RecordingAuditSink()
        composite = CompositeAuditSink([FailingSink(), recorder])
        with self.assertLogs("drawengine.collaborators", level="ERROR"):
            composite.record(_summary())
        self.assertEqual(len(recorder.summaries), 1)


class SummaryTests(unittest.TestCase):
    def test_to_json_is_serializable(self):
        data = _summary().to_json()
        self.assertEqual(data["action"], "drawing_completed")
        self.assertIsInstance(data["occurred_at"], str)

    def test_refund_event_total(self):
        event = RefundEvent(
            instance_id=1,
            instance_code="x",
            reason="quorum",
            items=(RefundItem(1, 10, 2.0), RefundItem(2, 11, 1.5)),
        )
        self.assertEqual(event.total_amount, 3.5)


class DatabaseAuditSinkTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine, self.Session = memory_engine()

    def tearDown(self) -> None:
        self.engine.dispose()

    def test_writes_drawing_log(self):
        sink = DatabaseAuditSink(UnitOfWork(self.Session))
        sink.record(_summary(instance_id=None))

        with self.Session() as session:
            log = session.scalars(select(DrawingLog)).one()
            self.assertEqual(log.action, ACTION_COMPLETED)
            self.assertEqual(log.details["audit_seed"], "seed")
            self.assertEqual(log.details["winner_count"], 3)


class WebhookAuditSinkTests(unittest.TestCase):
    def test_posts_summary(self):
        session = DummySession(DummyResponse())
        sink = WebhookAuditSink(
            "https://audit.example.com/hook",
            timeout=3.0,
            session=session,
            headers={"X-Token": "t"},
        )

        sink.record(_summary())

        call = session.calls[0]
        self.assertEqual(call["url"], "https://audit.example.com/hook")
        self.assertEqual(call["timeout"], 3.0)
        self.assertEqual(call["json"]["instance_id"], 7)
        self.assertEqual(call["headers"]["X-Token"], "t")
        self.assertEqual(call["headers"]["Content-Type"], "application/json")

    def test_http_error_raises(self):
        sink = WebhookAuditSink("https://audit.example.com/hook", session=DummySession(DummyResponse(503)))
        with self.assertRaises(requests.HTTPError):
            sink.record(_summary())

    def test_empty_url_rejected(self):
        with self.assertRaises(ValueError):
            WebhookAuditSink("")


class BuildAuditSinkTests(unittest.TestCase):
    def test_logging_only_by_default(self):
        self.assertIsInstance(build_audit_sink(EngineSettings()), LoggingAuditSink)

    def test_database_and_webhook_sinks(self):
        engine, Session = memory_engine()
        self.addCleanup(engine.dispose)
        settings = EngineSettings(audit_webhook_url="https://audit.example.com/hook")

        sink = build_audit_sink(settings, UnitOfWork(Session))

        self.assertIsInstance(sink, CompositeAuditSink)
        self.assertEqual(
            [type(s) for s in sink.sinks],
            [LoggingAuditSink, DatabaseAuditSink, WebhookAuditSink],
        )


if __name__ == "__main__":
    unittest.main()
