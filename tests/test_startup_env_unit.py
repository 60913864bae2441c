# User value: This test validates startup checks so a misconfigured deploy fails loudly before taking traffic.
import os
import unittest
from unittest.mock import patch

from startup_env import validate_startup_env

_KEYS = (
    "STATUS_STORE_BACKEND",
    "REDIS_URL",
    "DEFAULT_MAX_RETRIES",
    "QUERY_MAX_LIMIT",
    "BOTTLENECK_AVG_TIME_MS",
    "CORS_ALLOW_ORIGINS",
    "FEATURE_STRICT_STAGE_ORDER",
    "FEATURE_CLEANUP_ENDPOINT",
)


def _env(**values):
    base = {k: v for k, v in os.environ.items() if k not in _KEYS}
    base.update(values)
    return patch.dict(os.environ, base, clear=True)


class StartupEnvUnitTests(unittest.TestCase):
    def test_memory_defaults_are_valid(self):
        with _env():
            validate_startup_env()

    def test_redis_backend_requires_redis_url(self):
        with _env(STATUS_STORE_BACKEND="redis", REDIS_URL="http://cache:6379"):
            with self.assertRaises(RuntimeError) as ctx:
                validate_startup_env()
        self.assertIn("REDIS_URL must start with redis://", str(ctx.exception))

    def test_redis_backend_with_url_is_valid(self):
        with _env(STATUS_STORE_BACKEND="redis", REDIS_URL="rediss://cache:6380/0"):
            validate_startup_env()

    # User value: every config mistake is reported at once so operators fix them in one pass.
    def test_collects_all_errors(self):
        with _env(
            STATUS_STORE_BACKEND="dynamo",
            DEFAULT_MAX_RETRIES="zero",
            QUERY_MAX_LIMIT="0",
            BOTTLENECK_AVG_TIME_MS="-5",
            CORS_ALLOW_ORIGINS="*",
            FEATURE_CLEANUP_ENDPOINT="sometimes",
        ):
            with self.assertRaises(RuntimeError) as ctx:
                validate_startup_env()
        message = str(ctx.exception)
        self.assertIn("STATUS_STORE_BACKEND", message)
        self.assertIn("DEFAULT_MAX_RETRIES must be an integer", message)
        self.assertIn("QUERY_MAX_LIMIT must be >= 1", message)
        self.assertIn("BOTTLENECK_AVG_TIME_MS must be > 0", message)
        self.assertIn("must not contain '*'", message)
        self.assertIn("FEATURE_CLEANUP_ENDPOINT must be one of", message)


if __name__ == "__main__":
    unittest.main()
