import unittest
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from drawengine.models import (
    DrawingInstance,
    Entry,
    InstanceStatus,
    RecurrenceCategory,
    User,
    Winner,
    WinnerStatus,
)
from drawengine.models.category import prize_pool_for
from drawengine.models.entry import ENTRY_CONFIRMED, ENTRY_PENDING, METHOD_PAYMENT
from drawengine.models.utils import generate_instance_code

from factories import NOW, action_category, add_users, memory_engine, payment_category


class ModelTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.engine, self.Session = memory_engine()

    def tearDown(self) -> None:
        self.engine.dispose()

    def _instance(self, session, category=None, **kwargs):
        if category is None:
            category = payment_category()
            session.add(category)
            session.flush()
        instance = DrawingInstance(
            code=generate_instance_code("daily_test-20260310", session=session),
            category_id=category.id,
            scheduled_draw_time=NOW,
            **kwargs,
        )
        session.add(instance)
        session.flush()
        return instance


class CategoryTests(ModelTestCase):
    def test_prize_pool_for(self):
        self.assertEqual(payment_category().prize_pool_for(10), 9.0)
        self.assertEqual(action_category().prize_pool_for(10), 0.01)
        self.assertEqual(payment_category(platform_fee=2.0).prize_pool_for(4), 0.0)
        with self.assertRaises(ValueError):
            prize_pool_for(payment_category(), -1)

    def test_snapshot_matches_row(self):
        with self.Session.begin() as session:
            category = payment_category(display_name="Daily Test")
            session.add(category)
            session.flush()
            config = category.to_config()
        self.assertEqual(config.internal_name, "daily_test")
        self.assertEqual(config.prize_pool_for(3), category.prize_pool_for(3))
        self.assertFalse(config.is_action_based)
        self.assertEqual(config.extension_window, timedelta(hours=24))

    def test_internal_name_is_unique(self):
        with self.assertRaises(IntegrityError):
            with self.Session.begin() as session:
                session.add_all([payment_category(), payment_category()])

    def test_lookup_by_internal_name(self):
        with self.Session.begin() as session:
            session.add(payment_category())
        with self.Session() as session:
            self.assertIsNotNone(RecurrenceCategory.get_by_internal_name(session, "daily_test"))
            self.assertIsNone(RecurrenceCategory.get_by_internal_name(session, "other"))


class InstanceTests(ModelTestCase):
    def test_lifecycle_state(self):
        with self.Session.begin() as session:
            instance = self._instance(session)
            self.assertEqual(instance.lifecycle_state, InstanceStatus.ACTIVE)
            instance.extension_count = 1
            self.assertEqual(instance.lifecycle_state, InstanceStatus.EXTENDED)
            instance.status = InstanceStatus.CANCELLED
            self.assertEqual(instance.lifecycle_state, InstanceStatus.CANCELLED)

    def test_add_tickets_recomputes_pool(self):
        with self.Session.begin() as session:
            category = payment_category()
            session.add(category)
            session.flush()
            instance = self._instance(session, category)
            instance.add_tickets(2, category)
            instance.add_tickets(3, category)
            self.assertEqual(instance.participant_ticket_count, 5)
            self.assertAlmostEqual(instance.prize_pool, 4.5)
            with self.assertRaises(ValueError):
                instance.add_tickets(0, category)

    def test_one_active_instance_per_category(self):
        with self.assertRaises(IntegrityError):
            with self.Session.begin() as session:
                first = self._instance(session)
                category = session.get(RecurrenceCategory, first.category_id)
                self._instance(session, category)

    def test_closed_instances_do_not_block_a_new_one(self):
        with self.Session.begin() as session:
            first = self._instance(session)
            first.status = InstanceStatus.COMPLETED
            session.flush()
            category = session.get(RecurrenceCategory, first.category_id)
            second = self._instance(session, category)
            self.assertEqual(
                DrawingInstance.current_for_category(session, category.id).id, second.id
            )

    def test_due_ids(self):
        with self.Session.begin() as session:
            instance = self._instance(session)
            self.assertEqual(DrawingInstance.due_ids(session, NOW), [instance.id])
            self.assertEqual(DrawingInstance.due_ids(session, NOW - timedelta(seconds=1)), [])
            self.assertTrue(instance.is_due(NOW))

    def test_version_increments_on_update(self):
        with self.Session.begin() as session:
            instance = self._instance(session)
            first_version = instance.version
            instance.prize_pool = 1.0
            session.flush()
            self.assertEqual(instance.version, first_version + 1)

    def test_to_json(self):
        with self.Session.begin() as session:
            data = self._instance(session, extension_count=2).to_json()
        self.assertEqual(data["lifecycle_state"], InstanceStatus.EXTENDED)
        self.assertTrue(data["scheduled_draw_time"].endswith("+00:00"))


class EntryAndWinnerTests(ModelTestCase):
    def test_confirmed_for_instance_skips_pending(self):
        with self.Session.begin() as session:
            instance = self._instance(session)
            user_a, user_b = add_users(session, 2)
            for user_id, status in ((user_a, ENTRY_CONFIRMED), (user_b, ENTRY_PENDING)):
                session.add(
                    Entry(
                        user_id=user_id,
                        category_id=instance.category_id,
                        instance_id=instance.id,
                        method=METHOD_PAYMENT,
                        ticket_count=1,
                        status=status,
                        payment_ref=f"pay-{user_id}",
                    )
                )
            session.flush()
            confirmed = Entry.confirmed_for_instance(session, instance.id)
            self.assertEqual([e.user_id for e in confirmed], [user_a])

    def _winner(self, instance_id, user_id, position=1):
        return Winner(
            instance_id=instance_id,
            position=position,
            user_id=user_id,
            percentage=0.6,
            gross_amount=6.0,
            net_amount=5.99,
            ticket_index=0,
            selection_index=0,
        )

    def test_winner_status_transitions(self):
        winner = self._winner(1, 1)
        self.assertEqual(winner.status, WinnerStatus.PENDING_APPROVAL)
        self.assertEqual(winner.winner_id, "1_1")
        winner.transition(WinnerStatus.APPROVED)
        winner.transition(WinnerStatus.TRANSFERRED)
        with self.assertRaises(ValueError):
            winner.transition(WinnerStatus.REJECTED)
        with self.assertRaises(ValueError):
            self._winner(1, 1).transition("paid")

    def test_user_cannot_hold_two_positions(self):
        with self.assertRaises(IntegrityError):
            with self.Session.begin() as session:
                instance = self._instance(session)
                (user_id,) = add_users(session, 1)
                session.add(self._winner(instance.id, user_id, 1))
                session.add(self._winner(instance.id, user_id, 2))

    def test_user_counters_are_sql_increments(self):
        with self.Session.begin() as session:
            (user_id,) = add_users(session, 1)
        for amount in (6.0, 1.5):
            with self.Session.begin() as session:
                session.get(User, user_id).record_win(amount, NOW)
        with self.Session() as session:
            user = session.get(User, user_id)
            self.assertEqual(user.lotteries_won, 2)
            self.assertAlmostEqual(user.total_winnings, 7.5)


class InstanceCodeTests(ModelTestCase):
    def test_code_format(self):
        code = generate_instance_code("daily_pi-20260310")
        prefix, suffix = code.rsplit("-", 1)
        self.assertEqual(prefix, "daily_pi-20260310")
        self.assertEqual(len(suffix), 8)
        self.assertTrue(suffix.isalnum())

    def test_codes_are_unique_within_session(self):
        with self.Session.begin() as session:
            codes = {self._instance(session, status=InstanceStatus.COMPLETED).code}
            category_id = session.scalars(select(RecurrenceCategory.id)).one()
            for _ in range(5):
                code = generate_instance_code("daily_test-20260310", session=session)
                self.assertNotIn(code, codes)
                codes.add(code)
                session.add(
                    DrawingInstance(
                        code=code,
                        category_id=category_id,
                        scheduled_draw_time=NOW,
                        status=InstanceStatus.COMPLETED,
                    )
                )


if __name__ == "__main__":
    unittest.main()
