import io
import logging
import os
import unittest
from unittest import mock

from gamerlookup.lib.db.schemes import PlatformEnum
from gamerlookup.lib.settings import Settings
from gamerlookup.logger import logger, register_secret


class TestSettings(unittest.TestCase):

    @mock.patch.dict(os.environ, {}, clear=True)
    def test_defaults(self):
        settings = Settings.from_env()

        self.assertEqual(settings.cache_ttl, 1800.0)
        self.assertEqual(settings.attempt_timeout, 20.0)
        self.assertEqual(settings.resolution_deadline, 60.0)
        self.assertEqual(settings.transient_retries, 0)
        self.assertEqual(settings.top_games_limit, 20)
        self.assertEqual(settings.token_max_age_days, 30)
        self.assertTrue(settings.scraper_headless)
        self.assertEqual(settings.ttl_for(PlatformEnum.XBOX), 1800.0)

    @mock.patch.dict(os.environ, {
        "STEAM_WEB_API_KEY": "legacy-key",
        "CACHE_TTL_SECONDS": "600",
        "CACHE_TTL_PSN": "120",
        "TRANSIENT_RETRIES": "2",
        "SCRAPER_HEADLESS": "false",
        "DB_URL": "",
    }, clear=True)
    def test_overrides(self):
        settings = Settings.from_env()

        self.assertEqual(settings.steam_api_key, "legacy-key")
        self.assertEqual(settings.ttl_for(PlatformEnum.PSN), 120.0)
        self.assertEqual(settings.ttl_for(PlatformEnum.STEAM), 600.0)
        self.assertEqual(settings.transient_retries, 2)
        self.assertFalse(settings.scraper_headless)
        self.assertEqual(settings.db_url, "")


class TestSecretRedaction(unittest.TestCase):

    def test_registered_secret_is_masked(self):
        stream = io.StringIO()
        capture = logging.StreamHandler(stream)
        logger.addHandler(capture)
        try:
            register_secret("npsso-super-secret")
            logger.warning("token %s rejected", "npsso-super-secret")
        finally:
            logger.removeHandler(capture)

        self.assertIn("token *** rejected", stream.getvalue())
        self.assertNotIn("npsso-super-secret", stream.getvalue())


if __name__ == "__main__":
    unittest.main()
