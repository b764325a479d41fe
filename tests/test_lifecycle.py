from __future__ import annotations

import os
import tempfile
import threading
import unittest
from datetime import timedelta
from unittest.mock import patch

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from drawengine.config import EngineSettings
from drawengine.db.engine import get_sessionmaker, make_engine
from drawengine.db.unit_of_work import UnitOfWork
from drawengine.db.utils import as_utc
from drawengine.errors import ConflictError, DrawingTimeoutError
from drawengine.models import (
    Base,
    DrawingInstance,
    Entry,
    InstanceStatus,
    RecurrenceCategory,
    RefundRequest,
    User,
    Winner,
)
from drawengine.models.entry import METHOD_PAYMENT, METHOD_REWARDED_ACTION
from drawengine.prize_draw.lifecycle import InstanceLifecycleManager
from drawengine.workflows import submit_entry

from factories import (
    NOW,
    FailingSink,
    RecordingAuditSink,
    RecordingRefundSink,
    action_category,
    add_users,
    deterministic_selector,
    memory_engine,
    payment_category,
)


class LifecycleTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.engine, self.Session = memory_engine()
        self.uow = UnitOfWork(self.Session)
        self.refunds = RecordingRefundSink()
        self.audit = RecordingAuditSink()
        self.manager = InstanceLifecycleManager(
            self.uow,
            settings=EngineSettings(),
            selector=deterministic_selector(),
            refund_sink=self.refunds,
            audit_sink=self.audit,
            clock=lambda: NOW,
        )

    def tearDown(self) -> None:
        self.engine.dispose()

    def _seed(self, category, users: int) -> tuple[int, list[int]]:
        with self.Session.begin() as session:
            session.add(category)
            session.flush()
            return category.id, add_users(session, users)

    def _enter(self, category_id, user_ids, tickets=1, method=METHOD_PAYMENT):
        receipt = None
        for idx, user_id in enumerate(user_ids):
            refs = (
                {"payment_ref": f"pay-{user_id}-{idx}"}
                if method == METHOD_PAYMENT
                else {"action_ref": f"ad-{user_id}-{idx}"}
            )
            receipt = submit_entry(
                self.uow,
                user_id=user_id,
                category_id=category_id,
                method=method,
                ticket_count=tickets,
                now=NOW,
                **refs,
            )
        return receipt.instance_id

    def _instance(self, instance_id) -> DrawingInstance:
        with self.Session() as session:
            return session.get(DrawingInstance, instance_id)


class ExtensionAndCancellationTests(LifecycleTestCase):
    def test_quorum_miss_extends_instance(self):
        category_id, users = self._seed(payment_category(min_participants=5), 3)
        instance_id = self._enter(category_id, users)
        scheduled = self._instance(instance_id).scheduled_draw_time_utc

        outcome = self.manager.conduct_drawing(instance_id, now=scheduled)

        self.assertEqual(outcome.lifecycle_state, InstanceStatus.EXTENDED)
        instance = self._instance(instance_id)
        self.assertEqual(instance.status, InstanceStatus.ACTIVE)
        self.assertEqual(instance.lifecycle_state, InstanceStatus.EXTENDED)
        self.assertEqual(instance.extension_count, 1)
        self.assertEqual(instance.scheduled_draw_time_utc, scheduled + timedelta(hours=24))
        self.assertEqual(instance.participant_ticket_count, 3)
        with self.Session() as session:
            self.assertEqual(session.scalar(select(func.count(DrawingInstance.id))), 1)
            self.assertEqual(session.scalar(select(func.count(Winner.instance_id))), 0)
        self.assertEqual(self.audit.summaries[-1].action, "drawing_extended")

    def test_late_sweep_extends_from_now(self):
        category_id, users = self._seed(payment_category(min_participants=5), 1)
        instance_id = self._enter(category_id, users)
        late = self._instance(instance_id).scheduled_draw_time_utc + timedelta(hours=30)

        self.manager.conduct_drawing(instance_id, now=late)

        self.assertEqual(
            self._instance(instance_id).scheduled_draw_time_utc, late + timedelta(hours=24)
        )

    def test_cancellation_at_max_extensions_refunds_and_schedules_successor(self):
        category_id, users = self._seed(
            payment_category(min_participants=5, max_extensions=2), 2
        )
        instance_id = self._enter(category_id, users, tickets=2)
        with self.Session.begin() as session:
            session.get(DrawingInstance, instance_id).extension_count = 2

        outcome = self.manager.conduct_drawing(instance_id, now=NOW + timedelta(days=3))

        self.assertEqual(outcome.status, InstanceStatus.CANCELLED)
        instance = self._instance(instance_id)
        self.assertEqual(instance.status, InstanceStatus.CANCELLED)
        self.assertIn("Insufficient participants", instance.cancellation_reason)
        with self.Session() as session:
            refunds = session.scalars(select(RefundRequest)).all()
            self.assertEqual(len(refunds), 2)
            self.assertEqual({r.amount for r in refunds}, {2.0})
            successor = DrawingInstance.current_for_category(session, category_id)
            self.assertIsNotNone(successor)
            self.assertNotEqual(successor.id, instance_id)
            self.assertEqual(successor.participant_ticket_count, 0)
            self.assertEqual(successor.prize_pool, 0.0)
        self.assertEqual(outcome.successor_id, successor.id)
        self.assertEqual(len(self.refunds.events), 1)
        self.assertEqual(self.refunds.events[0].total_amount, 4.0)

    def test_action_category_cancellation_has_no_refunds(self):
        category_id, users = self._seed(action_category(max_extensions=0), 2)
        instance_id = self._enter(category_id, users, method=METHOD_REWARDED_ACTION)

        outcome = self.manager.conduct_drawing(instance_id, now=NOW + timedelta(days=1))

        self.assertEqual(outcome.status, InstanceStatus.CANCELLED)
        self.assertEqual(self.refunds.events, [])
        with self.Session() as session:
            self.assertEqual(session.scalar(select(func.count(RefundRequest.id))), 0)


class CompletionTests(LifecycleTestCase):
    def test_medium_tier_drawing(self):
        category_id, users = self._seed(
            payment_category(min_participants=5, max_tickets_per_user=3, platform_fee=0.0), 20
        )
        instance_id = self._enter(category_id, users, tickets=3)
        self.assertEqual(self._instance(instance_id).prize_pool, 60.0)

        outcome = self.manager.conduct_drawing(instance_id, now=NOW + timedelta(days=1))

        self.assertEqual(outcome.structure, "medium")
        self.assertEqual(len(outcome.winners), 5)
        with self.Session() as session:
            winners = Winner.for_instance(session, instance_id)
            self.assertEqual([w.position for w in winners], [1, 2, 3, 4, 5])
            self.assertEqual(winners[0].gross_amount, 30.0)
            self.assertEqual(winners[0].net_amount, 29.99)
            self.assertEqual(winners[4].gross_amount, 2.4)
            self.assertEqual(len({w.user_id for w in winners}), 5)

            instance = session.get(DrawingInstance, instance_id)
            self.assertEqual(instance.status, InstanceStatus.COMPLETED)
            self.assertEqual(instance.drawing_summary["entry_count"], 20)
            self.assertEqual(instance.drawing_summary["winner_count"], 5)
            self.assertEqual(instance.drawing_summary["audit_seed"], "testseed")
            self.assertIsNotNone(instance.actual_draw_time)

            first = session.get(User, winners[0].user_id)
            self.assertEqual(first.lotteries_won, 1)
            self.assertAlmostEqual(first.total_winnings, 30.0)

            successor = DrawingInstance.current_for_category(session, category_id)
            self.assertIsNotNone(successor)
            self.assertEqual(successor.id, outcome.successor_id)
        self.assertEqual(self.audit.summaries[-1].winner_count, 5)

    def test_second_drawing_is_a_conflict(self):
        category_id, users = self._seed(payment_category(min_participants=2), 3)
        instance_id = self._enter(category_id, users)
        self.manager.conduct_drawing(instance_id, now=NOW + timedelta(days=1))

        with self.assertRaises(ConflictError):
            self.manager.conduct_drawing(instance_id, now=NOW + timedelta(days=1))

        with self.Session() as session:
            self.assertEqual(len(Winner.for_instance(session, instance_id)), 3)

    def test_missing_instance_is_a_conflict(self):
        with self.assertRaises(ConflictError):
            self.manager.conduct_drawing(999)

    def test_disabled_category_gets_no_successor(self):
        category_id, users = self._seed(payment_category(min_participants=1), 2)
        instance_id = self._enter(category_id, users)
        with self.Session.begin() as session:
            session.get(RecurrenceCategory, category_id).enabled = False

        outcome = self.manager.conduct_drawing(instance_id, now=NOW + timedelta(days=1))

        self.assertIsNone(outcome.successor_id)
        with self.Session() as session:
            self.assertIsNone(DrawingInstance.current_for_category(session, category_id))

    def test_failing_sinks_do_not_undo_the_drawing(self):
        self.manager.audit_sink = FailingSink()
        category_id, users = self._seed(payment_category(min_participants=1), 2)
        instance_id = self._enter(category_id, users)

        with self.assertLogs("drawengine.collaborators", level="ERROR"):
            self.manager.conduct_drawing(instance_id, now=NOW + timedelta(days=1))

        self.assertEqual(self._instance(instance_id).status, InstanceStatus.COMPLETED)

    def test_successor_failure_still_reports_completion(self):
        category_id, users = self._seed(payment_category(min_participants=1), 2)
        instance_id = self._enter(category_id, users)
        disk_error = OperationalError("INSERT", {}, Exception("disk I/O error"))

        with patch.object(self.manager, "schedule_successor", side_effect=disk_error):
            with self.assertLogs("drawengine.prize_draw.lifecycle", level="ERROR"):
                outcome = self.manager.conduct_drawing(
                    instance_id, now=NOW + timedelta(days=1)
                )

        self.assertIsNone(outcome.successor_id)
        self.assertEqual(self._instance(instance_id).status, InstanceStatus.COMPLETED)
        self.assertEqual(self.audit.summaries[-1].action, "drawing_completed")

    def test_expired_deadline_rolls_back(self):
        category_id, users = self._seed(payment_category(min_participants=1), 2)
        instance_id = self._enter(category_id, users)

        with self.assertRaises(DrawingTimeoutError):
            self.manager.conduct_drawing(instance_id, now=NOW, deadline=0.0)

        instance = self._instance(instance_id)
        self.assertEqual(instance.status, InstanceStatus.ACTIVE)
        with self.Session() as session:
            self.assertEqual(len(Winner.for_instance(session, instance_id)), 0)
        self.assertEqual(self.audit.summaries[-1].action, "drawing_error")


class ConcurrencyTests(unittest.TestCase):
    def setUp(self) -> None:
        fd, self.db_path = tempfile.mkstemp(suffix=".db")
        os.close(fd)
        self.engine = make_engine(f"sqlite+pysqlite:///{self.db_path}")
        Base.metadata.create_all(self.engine)
        self.Session = get_sessionmaker(self.engine)
        self.uow = UnitOfWork(self.Session)

    def tearDown(self) -> None:
        self.engine.dispose()
        os.remove(self.db_path)

    def test_concurrent_entries_keep_counters_consistent(self):
        with self.Session.begin() as session:
            category = payment_category(max_tickets_per_user=3)
            session.add(category)
            session.flush()
            category_id = category.id
            users = add_users(session, 6)
        uow = UnitOfWork(self.Session, max_attempts=10)
        opening = submit_entry(
            uow,
            user_id=users[0],
            category_id=category_id,
            method=METHOD_PAYMENT,
            payment_ref="pay-open",
            now=NOW,
        )

        errors: list[BaseException] = []

        def enter(user_id):
            try:
                submit_entry(
                    uow,
                    user_id=user_id,
                    category_id=category_id,
                    method=METHOD_PAYMENT,
                    ticket_count=2,
                    payment_ref=f"pay-{user_id}",
                    now=NOW,
                )
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=enter, args=(u,)) for u in users[1:]]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        self.assertEqual(errors, [])
        with self.Session() as session:
            instance = session.get(DrawingInstance, opening.instance_id)
            total = session.scalar(
                select(func.sum(Entry.ticket_count)).where(
                    Entry.instance_id == instance.id
                )
            )
            self.assertEqual(total, 11)
            self.assertEqual(instance.participant_ticket_count, total)
            self.assertAlmostEqual(instance.prize_pool, 9.9)

    def test_parallel_drawings_commit_exactly_once(self):
        with self.Session.begin() as session:
            category = payment_category(min_participants=2)
            session.add(category)
            session.flush()
            category_id = category.id
            users = add_users(session, 4)
        receipt = None
        for user_id in users:
            receipt = submit_entry(
                self.uow,
                user_id=user_id,
                category_id=category_id,
                method=METHOD_PAYMENT,
                payment_ref=f"pay-{user_id}",
                now=NOW,
            )
        instance_id = receipt.instance_id

        barrier = threading.Barrier(2)
        results: list[str] = []
        lock = threading.Lock()

        def draw():
            manager = InstanceLifecycleManager(self.uow, clock=lambda: NOW)
            barrier.wait()
            try:
                manager.conduct_drawing(instance_id, now=NOW + timedelta(days=1))
                outcome = "drawn"
            except ConflictError:
                outcome = "conflict"
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=draw) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        self.assertEqual(sorted(results), ["conflict", "drawn"])
        with self.Session() as session:
            self.assertEqual(len(Winner.for_instance(session, instance_id)), 3)
            instance = session.get(DrawingInstance, instance_id)
            self.assertEqual(instance.status, InstanceStatus.COMPLETED)
            self.assertEqual(
                session.scalar(
                    select(func.sum(Entry.ticket_count)).where(Entry.instance_id == instance_id)
                ),
                instance.participant_ticket_count,
            )
            self.assertLessEqual(as_utc(instance.actual_draw_time), NOW + timedelta(days=1))


if __name__ == "__main__":
    unittest.main()
