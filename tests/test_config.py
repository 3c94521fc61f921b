import io
import os
import unittest
from unittest import mock

import config


class EnvHelperTests(unittest.TestCase):
    def test_missing_or_empty_returns_default(self):
        with mock.patch.dict(os.environ, {"HARNESS_TEST_VALUE": ""}, clear=False):
            self.assertEqual(config._env("HARNESS_TEST_VALUE", 7, int), 7)
        self.assertEqual(config._env("HARNESS_TEST_UNSET_VALUE", "x"), "x")

    def test_casts_numbers(self):
        with mock.patch.dict(os.environ, {"HARNESS_TEST_VALUE": "250"}):
            self.assertEqual(config._env("HARNESS_TEST_VALUE", 50, int), 250)
        with mock.patch.dict(os.environ, {"HARNESS_TEST_VALUE": "0.25"}):
            self.assertAlmostEqual(config._env("HARNESS_TEST_VALUE", 1.0, float), 0.25)

    def test_bad_value_falls_back_to_default(self):
        with mock.patch.dict(os.environ, {"HARNESS_TEST_VALUE": "fifty"}):
            self.assertEqual(config._env("HARNESS_TEST_VALUE", 50, int), 50)

    def test_boolean_spellings(self):
        for raw, expected in (("true", True), ("1", True), ("YES", True), ("no", False), ("0", False)):
            with mock.patch.dict(os.environ, {"HARNESS_TEST_VALUE": raw}):
                self.assertIs(config._env("HARNESS_TEST_VALUE", False, bool), expected)


class BannerTests(unittest.TestCase):
    def test_banner_lists_service_and_timeout(self):
        with mock.patch.object(config, "SERVICE_URL", "http://node:8545"), \
                mock.patch.object(config, "ROUND_TIMEOUT_SEC", 0.0), \
                mock.patch.object(config, "PROVIDER_KEY", "0xkey"), \
                mock.patch("sys.stdout", new_callable=io.StringIO) as out:
            config.print_banner()
        text = out.getvalue()
        self.assertIn("http://node:8545", text)
        self.assertIn("Round timeout:   none", text)
        self.assertIn("0xkey", text)


if __name__ == "__main__":
    unittest.main()
