import unittest
from datetime import timedelta

from drawengine.db.unit_of_work import UnitOfWork
from drawengine.models import DrawingInstance, InstanceStatus, Winner
from drawengine.models.entry import METHOD_PAYMENT
from drawengine.prize_draw.lifecycle import InstanceLifecycleManager
from drawengine.prize_draw.scheduler import RESULT_ERROR, SchedulerTrigger
from drawengine.prize_draw.selector import WinnerSelector
from drawengine.workflows import run_scheduled_sweep, submit_entry

from factories import (
    NOW,
    RecordingAuditSink,
    add_users,
    memory_engine,
    payment_category,
    sequential_index,
)


class BrokenSelector(WinnerSelector):
    """Fails for one instance and draws every other one normally."""

    def __init__(self, broken_instance_id=None):
        super().__init__(index_source=sequential_index, seed_factory=lambda: "seed")
        self.broken_instance_id = broken_instance_id

    def select(self, entries, instance, **kwargs):
        if instance.id == self.broken_instance_id:
            raise RuntimeError("selection backend down")
        return super().select(entries, instance, **kwargs)


class SchedulerTriggerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine, self.Session = memory_engine()
        self.uow = UnitOfWork(self.Session)
        self.selector = BrokenSelector()
        self.audit = RecordingAuditSink()
        self.manager = InstanceLifecycleManager(
            self.uow, selector=self.selector, audit_sink=self.audit, clock=lambda: NOW
        )
        self.trigger = SchedulerTrigger(self.manager, clock=lambda: NOW)

        with self.Session.begin() as session:
            first = payment_category(internal_name="daily_a", min_participants=1)
            second = payment_category(
                internal_name="daily_b", min_participants=1, draw_time="22:00"
            )
            session.add_all([first, second])
            session.flush()
            self.category_ids = [first.id, second.id]
            self.user_ids = add_users(session, 2)

        self.instance_ids = []
        for category_id in self.category_ids:
            for user_id in self.user_ids:
                receipt = submit_entry(
                    self.uow,
                    user_id=user_id,
                    category_id=category_id,
                    method=METHOD_PAYMENT,
                    payment_ref=f"pay-{category_id}-{user_id}",
                    now=NOW,
                )
            self.instance_ids.append(receipt.instance_id)

    def tearDown(self) -> None:
        self.engine.dispose()

    def _status(self, instance_id):
        with self.Session() as session:
            return session.get(DrawingInstance, instance_id).status

    def test_only_due_instances_are_swept(self):
        at = NOW.replace(hour=21)
        self.assertEqual(self.trigger.due_instance_ids(at), [self.instance_ids[0]])

        report = self.trigger.sweep(at)

        self.assertEqual(report.due_count, 1)
        self.assertEqual(self._status(self.instance_ids[0]), InstanceStatus.COMPLETED)
        self.assertEqual(self._status(self.instance_ids[1]), InstanceStatus.ACTIVE)

    def test_sweep_draws_all_due_and_opens_successors(self):
        report = self.trigger.sweep(NOW + timedelta(days=1))

        self.assertEqual(report.due_count, 2)
        self.assertEqual(report.failed, [])
        with self.Session() as session:
            for category_id, instance_id in zip(self.category_ids, self.instance_ids):
                self.assertEqual(len(Winner.for_instance(session, instance_id)), 2)
                successor = DrawingInstance.current_for_category(session, category_id)
                self.assertNotEqual(successor.id, instance_id)

    def test_paused_trigger_does_nothing(self):
        self.trigger.pause("maintenance")

        report = run_scheduled_sweep(self.trigger, now=NOW + timedelta(days=1))

        self.assertEqual(report.skipped_reason, "maintenance")
        self.assertEqual(report.due_count, 0)
        self.assertEqual(self._status(self.instance_ids[0]), InstanceStatus.ACTIVE)

        self.trigger.resume()
        report = run_scheduled_sweep(self.trigger, now=NOW + timedelta(days=1))
        self.assertEqual(report.due_count, 2)

    def test_failing_instance_does_not_stop_the_sweep(self):
        broken, healthy = self.instance_ids
        self.selector.broken_instance_id = broken

        with self.assertLogs("drawengine.prize_draw.scheduler", level="ERROR"):
            report = self.trigger.sweep(NOW + timedelta(days=1))

        self.assertEqual(report.count(RESULT_ERROR), 1)
        self.assertEqual([r.instance_id for r in report.failed], [broken])
        self.assertEqual(self._status(broken), InstanceStatus.ACTIVE)
        self.assertEqual(self._status(healthy), InstanceStatus.COMPLETED)
        with self.Session() as session:
            self.assertEqual(Winner.for_instance(session, broken), [])

    def test_expired_budget_leaves_instance_for_next_sweep(self):
        trigger = SchedulerTrigger(self.manager, budget_seconds=-1.0, clock=lambda: NOW)

        report = trigger.sweep(NOW + timedelta(days=1))

        self.assertEqual(report.count("timeout"), 2)
        self.assertEqual(self._status(self.instance_ids[0]), InstanceStatus.ACTIVE)

    def test_schedule_status(self):
        self.trigger.pause("deploy")
        status = self.trigger.schedule_status(NOW)

        self.assertTrue(status["paused"])
        self.assertEqual(status["paused_reason"], "deploy")
        self.assertEqual(
            [row["category"] for row in status["categories"]], ["daily_a", "daily_b"]
        )
        self.assertEqual(status["categories"][0]["seconds_until_draw"], 8 * 3600)


if __name__ == "__main__":
    unittest.main()
