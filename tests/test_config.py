import unittest

from drawengine.config import EngineSettings
from drawengine.errors import ConfigurationError


class EngineSettingsTests(unittest.TestCase):
    def test_defaults(self):
        settings = EngineSettings.from_env({})
        self.assertEqual(settings.network_fee, 0.01)
        self.assertEqual(settings.conflict_retries, 3)
        self.assertEqual(settings.quota_retention_days, 90)
        self.assertIsNone(settings.audit_webhook_url)
        self.assertTrue(settings.database_url.startswith("sqlite"))

    def test_reads_values(self):
        settings = EngineSettings.from_env(
            {
                "DB_URL": "postgresql+psycopg://u:p@localhost/draws",
                "DRAW_NETWORK_FEE": "0.02",
                "DRAW_CONFLICT_RETRIES": "5",
                "DRAW_SWEEP_BUDGET_SECONDS": "15",
                "AUDIT_WEBHOOK_URL": "https://audit.example.com/hook",
            }
        )
        self.assertEqual(settings.database_url, "postgresql+psycopg://u:p@localhost/draws")
        self.assertEqual(settings.network_fee, 0.02)
        self.assertEqual(settings.conflict_retries, 5)
        self.assertEqual(settings.sweep_budget_seconds, 15.0)
        self.assertEqual(settings.audit_webhook_url, "https://audit.example.com/hook")

    def test_blank_values_use_defaults(self):
        settings = EngineSettings.from_env({"DRAW_NETWORK_FEE": " ", "AUDIT_WEBHOOK_URL": ""})
        self.assertEqual(settings.network_fee, 0.01)
        self.assertIsNone(settings.audit_webhook_url)

    def test_invalid_values(self):
        cases = [
            {"DRAW_NETWORK_FEE": "cheap"},
            {"DRAW_NETWORK_FEE": "-1"},
            {"DRAW_CONFLICT_RETRIES": "0"},
            {"DRAW_CONFLICT_RETRIES": "2.5"},
            {"DRAW_SWEEP_BUDGET_SECONDS": "0"},
            {"QUOTA_RETENTION_DAYS": "0"},
        ]
        for env in cases:
            with self.subTest(env=env), self.assertRaises(ConfigurationError):
                EngineSettings.from_env(env)


if __name__ == "__main__":
    unittest.main()
