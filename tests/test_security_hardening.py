import unittest

from app import create_app
from app.config import Config
from app.db import close_db
from app.observability import reset_metrics_for_tests
from app.security import generate_webhook_token, reset_rate_limiter_for_tests, tokens_match
from app.ui_strings import error_message
from tests.helpers.temp_db import TempDbSandbox


def _build_temp_config(temp_db: TempDbSandbox, **overrides):
    attrs = {
        "TESTING": False,
        "DB_AUTO_INIT": False,
        "RATE_LIMIT_ENABLED": True,
        "RATE_LIMIT_WINDOW_SECONDS": 60,
        "RATE_LIMIT_MAX_REQUESTS": 300,
    }
    attrs.update(overrides)
    return temp_db.make_config(Config, **attrs)


class TokenHelpersTest(unittest.TestCase):
    def test_tokens_match(self) -> None:
        self.assertTrue(tokens_match("abc", "abc"))
        self.assertTrue(tokens_match(" abc ", "abc"))
        self.assertFalse(tokens_match("abc", "abd"))
        self.assertFalse(tokens_match("abc", None))
        self.assertFalse(tokens_match("", ""))
        self.assertFalse(tokens_match(None, "abc"))

    def test_generated_tokens_are_unique_and_long(self) -> None:
        first = generate_webhook_token()
        second = generate_webhook_token()
        self.assertNotEqual(first, second)
        self.assertGreaterEqual(len(first), 40)


class SecurityHardeningTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="security_hardening")
        self.app = create_app(_build_temp_config(self._temp_db))
        self.client = self.app.test_client()
        reset_rate_limiter_for_tests()
        reset_metrics_for_tests()

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()
        reset_rate_limiter_for_tests()
        reset_metrics_for_tests()

    def test_rate_limit_blocks_excessive_api_calls(self) -> None:
        self.app.config["RATE_LIMIT_MAX_REQUESTS"] = 2

        first = self.client.get("/api/pix/key-info", query_string={"key": "a@b.com"})
        second = self.client.get("/api/pix/key-info", query_string={"key": "a@b.com"})
        third = self.client.get("/api/pix/key-info", query_string={"key": "a@b.com"})

        self.assertEqual(first.status_code, 200)
        self.assertEqual(second.status_code, 200)
        self.assertEqual(third.status_code, 429)
        payload = third.get_json() or {}
        self.assertEqual(payload.get("error"), "rate_limit_exceeded")
        self.assertEqual(payload.get("message"), error_message("rate_limit_exceeded"))
        self.assertGreaterEqual(int(payload.get("retry_after") or 0), 0)

    def test_rate_limit_skips_webhook_and_preflight(self) -> None:
        self.app.config["RATE_LIMIT_MAX_REQUESTS"] = 1

        statuses = [
            self.client.post("/api/webhooks/transfer-authorization", data="{}").status_code
            for _ in range(3)
        ]
        preflight = [self.client.open("/api/pix/payload", method="OPTIONS").status_code for _ in range(3)]

        self.assertNotIn(429, statuses)
        self.assertNotIn(429, preflight)

    def test_rate_limit_can_be_disabled(self) -> None:
        self.app.config["RATE_LIMIT_ENABLED"] = False
        self.app.config["RATE_LIMIT_MAX_REQUESTS"] = 1

        statuses = [self.client.get("/health").status_code for _ in range(3)]

        self.assertEqual(statuses, [200, 200, 200])

    def test_security_headers_present(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.headers.get("X-Content-Type-Options"), "nosniff")
        self.assertEqual(response.headers.get("X-Frame-Options"), "DENY")
        self.assertEqual(response.headers.get("Referrer-Policy"), "strict-origin-when-cross-origin")
        self.assertIn("frame-ancestors 'none'", response.headers.get("Content-Security-Policy") or "")
        self.assertIsNone(response.headers.get("Strict-Transport-Security"))

    def test_security_headers_can_be_disabled(self) -> None:
        self.app.config["SECURITY_HEADERS_ENABLED"] = False
        response = self.client.get("/health")
        self.assertIsNone(response.headers.get("X-Frame-Options"))


class ProductionGuardTest(unittest.TestCase):
    def test_production_requires_database_url_and_secret(self) -> None:
        class _ProdConfig(Config):
            DATABASE_URL = None

        import os

        previous = os.environ.get("FLASK_ENV")
        os.environ["FLASK_ENV"] = "production"
        try:
            with self.assertRaises(RuntimeError):
                _ProdConfig()
        finally:
            if previous is None:
                os.environ.pop("FLASK_ENV", None)
            else:
                os.environ["FLASK_ENV"] = previous


if __name__ == "__main__":
    unittest.main()
