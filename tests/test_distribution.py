import unittest

from drawengine.models.category import ENTRY_KIND_ACTION, ENTRY_KIND_PAYMENT
from drawengine.prize_draw.distribution import (
    DEFAULT_STRUCTURE_REGISTRY,
    PrizeStructure,
    StructureRegistry,
    calculate_prize_amounts,
    distribution_report,
    payout_for,
    structure_for,
    validate_structure,
)


class StructureSelectionTests(unittest.TestCase):
    def test_tier_boundaries(self):
        self.assertEqual(len(structure_for(50, ENTRY_KIND_PAYMENT)), 3)
        self.assertEqual(structure_for(50, ENTRY_KIND_PAYMENT)[0], (1, 0.6))
        self.assertEqual(len(structure_for(51, ENTRY_KIND_PAYMENT)), 5)
        self.assertEqual(len(structure_for(200, ENTRY_KIND_PAYMENT)), 5)
        self.assertEqual(len(structure_for(201, ENTRY_KIND_PAYMENT)), 10)

    def test_action_categories_always_use_micro(self):
        for count in (0, 10, 500):
            self.assertEqual(
                structure_for(count, ENTRY_KIND_ACTION), [(1, 0.5), (2, 0.3), (3, 0.2)]
            )

    def test_event_override_wins(self):
        positions = structure_for(10, ENTRY_KIND_ACTION, event="holiday")
        self.assertEqual(len(positions), 10)
        self.assertEqual(positions[0], (1, 0.3))
        self.assertEqual(structure_for(500, ENTRY_KIND_PAYMENT, event="bonus")[0], (1, 0.7))

    def test_unknown_event_raises(self):
        with self.assertRaises(KeyError):
            structure_for(10, ENTRY_KIND_PAYMENT, event="missing")

    def test_default_structures_sum_to_one_except_large(self):
        for name, structure in DEFAULT_STRUCTURE_REGISTRY.available_structures().items():
            with self.subTest(name=name):
                result = validate_structure(structure.percentages)
                if name == "large":
                    self.assertFalse(result.is_valid)
                    self.assertAlmostEqual(result.total, 1.08)
                else:
                    self.assertTrue(result.is_valid)


class PayoutTests(unittest.TestCase):
    def test_medium_tier_payouts(self):
        breakdown = calculate_prize_amounts(60.0, 60, ENTRY_KIND_PAYMENT)
        self.assertEqual(breakdown.structure, "medium")
        first, last = breakdown.payouts[0], breakdown.payouts[-1]
        self.assertEqual((first.position, first.gross_amount, first.net_amount), (1, 30.0, 29.99))
        self.assertEqual((last.position, last.gross_amount), (5, 2.4))
        self.assertAlmostEqual(breakdown.total_distributed, 60.0)

    def test_large_tier_payouts(self):
        breakdown = calculate_prize_amounts(300.0, 250, ENTRY_KIND_PAYMENT)
        self.assertEqual(breakdown.structure, "large")
        grosses = [p.gross_amount for p in breakdown.payouts]
        expected = [120.0, 60.0, 45.0, 24.0, 24.0, 24.0, 6.75, 6.75, 6.75, 6.75]
        for position, (gross, want) in enumerate(zip(grosses, expected), start=1):
            with self.subTest(position=position):
                self.assertAlmostEqual(gross, want)
        self.assertEqual(len(grosses), 10)
        self.assertAlmostEqual(breakdown.payouts[5].net_amount, 23.99)
        self.assertAlmostEqual(breakdown.total_distributed, 324.0)

    def test_net_never_negative(self):
        gross, net = payout_for(0.01, 0.2)
        self.assertEqual(gross, 0.002)
        self.assertEqual(net, 0.0)

    def test_report_summary(self):
        report = distribution_report("daily-1", 30, 27.0, ENTRY_KIND_PAYMENT)
        self.assertEqual(report["summary"]["structure"], "small")
        self.assertEqual(report["breakdown"]["first_prize"], 16.2)
        self.assertEqual(report["breakdown"]["smallest_prize"], 4.05)
        self.assertEqual(len(report["prizes"]), 3)


class RegistryTests(unittest.TestCase):
    def test_register_rejects_invalid_total(self):
        registry = StructureRegistry()
        with self.assertRaises(ValueError):
            registry.register(PrizeStructure(name="bad", percentages=(0.5, 0.4)))

    def test_unvalidated_register_logs_and_keeps_structure(self):
        registry = StructureRegistry()
        with self.assertLogs("drawengine.prize_draw.distribution", level="WARNING"):
            registry.register(
                PrizeStructure(name="loose", percentages=(0.6, 0.5)), validate=False
            )
        self.assertEqual(registry.get("loose").percentages, (0.6, 0.5))

    def test_register_rejects_duplicates_unless_replacing(self):
        registry = StructureRegistry()
        registry.register(PrizeStructure(name="solo", percentages=(1.0,)))
        with self.assertRaises(ValueError):
            registry.register(PrizeStructure(name="solo", percentages=(0.5, 0.5)))
        registry.register(PrizeStructure(name="solo", percentages=(0.5, 0.5)), replace=True)
        self.assertEqual(registry.get("solo").winner_count, 2)

    def test_validate_structure_reports_difference(self):
        result = validate_structure([0.6, 0.3])
        self.assertFalse(result.is_valid)
        self.assertAlmostEqual(result.difference, -0.1)
        self.assertTrue(validate_structure([0.33333, 0.33333, 0.33334]).is_valid)
        self.assertFalse(validate_structure([]).is_valid)


if __name__ == "__main__":
    unittest.main()
