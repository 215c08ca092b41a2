import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from subagent_delegate.config import (
    MAIN_MODEL_ENDPOINT,
    MAIN_MODEL_ID,
    apply_env_defaults,
    config_from_mapping,
    load_config,
    load_env_file,
    parse_profiles,
)


class TestConfigFromMapping(unittest.TestCase):
    def test_defaults(self):
        config = config_from_mapping({})
        self.assertTrue(config.enabled)
        self.assertEqual(config.endpoint, MAIN_MODEL_ENDPOINT)
        self.assertEqual(config.model, MAIN_MODEL_ID)
        self.assertTrue(config.allow_filesystem)
        self.assertFalse(config.allow_web)
        self.assertFalse(config.allow_code)
        self.assertTrue(config.auto_save)
        self.assertFalse(config.auto_debug)
        self.assertEqual(config.primary_turn_limit, 8)
        self.assertEqual(config.review_turn_limit, 5)

    def test_booleans_ints_and_fallbacks(self):
        config = config_from_mapping(
            {
                "SUBAGENT_ALLOW_WEB": "Yes",
                "SUBAGENT_AUTO_SAVE": "off",
                "SUBAGENT_TIMEOUT_SEC": "not-a-number",
                "SUBAGENT_CODE_TIMEOUT_SEC": "-4",
                "SUBAGENT_TEMPERATURE": "0.1",
                "SUBAGENT_ENDPOINT": "http://gpu-box:8000/v1/",
            }
        )
        self.assertTrue(config.allow_web)
        self.assertFalse(config.auto_save)
        self.assertEqual(config.timeout_sec, 120)
        self.assertEqual(config.code_timeout_sec, 1)
        self.assertEqual(config.temperature, 0.1)
        self.assertEqual(config.endpoint, "http://gpu-box:8000/v1")

    def test_use_main_model_forces_defaults(self):
        config = config_from_mapping(
            {
                "SUBAGENT_ENDPOINT": "http://elsewhere/v1",
                "SUBAGENT_MODEL": "other",
                "SUBAGENT_USE_MAIN_MODEL": "1",
            }
        )
        self.assertEqual(config.endpoint, MAIN_MODEL_ENDPOINT)
        self.assertEqual(config.model, MAIN_MODEL_ID)

    def test_review_budget_stays_below_primary(self):
        config = config_from_mapping({"SUBAGENT_PRIMARY_TURN_LIMIT": "4", "SUBAGENT_REVIEW_TURN_LIMIT": "9"})
        self.assertEqual(config.primary_turn_limit, 4)
        self.assertEqual(config.review_turn_limit, 3)

    def test_with_overrides(self):
        config = config_from_mapping({}).with_overrides(auto_debug=True)
        self.assertTrue(config.auto_debug)


class TestProfiles(unittest.TestCase):
    def test_parse_profiles(self):
        self.assertEqual(parse_profiles('{"coder": "Write code.", "empty": ""}'), {"coder": "Write code."})

    def test_malformed_profiles_ignored(self):
        self.assertEqual(parse_profiles("{not json"), {})
        self.assertEqual(parse_profiles('["a"]'), {})


class TestEnvFiles(unittest.TestCase):
    def test_load_env_file_and_defaults(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / ".env"
            path.write_text("# comment\nSUBAGENT_MODEL=qwen\nSUBAGENT_ALLOW_CODE=1\nbroken line\n", encoding="utf-8")
            data = load_env_file(path)
            self.assertEqual(data, {"SUBAGENT_MODEL": "qwen", "SUBAGENT_ALLOW_CODE": "1"})

            target = {"SUBAGENT_MODEL": "from-env"}
            applied = apply_env_defaults(data, target)
            self.assertEqual(applied, 1)
            self.assertEqual(target["SUBAGENT_MODEL"], "from-env")
            self.assertEqual(target["SUBAGENT_ALLOW_CODE"], "1")

    def test_load_config_prefers_process_env(self):
        with tempfile.TemporaryDirectory() as tmp:
            config_dir = Path(tmp)
            (config_dir / ".env").write_text(
                "SUBAGENT_MODEL=from-file\nSUBAGENT_AUTO_DEBUG=1\n", encoding="utf-8"
            )
            env = {k: v for k, v in os.environ.items() if not k.startswith("SUBAGENT_")}
            env["SUBAGENT_MODEL"] = "from-env"
            with patch.dict(os.environ, env, clear=True):
                config = load_config(config_dir)
            self.assertEqual(config.model, "from-env")
            self.assertTrue(config.auto_debug)


if __name__ == "__main__":
    unittest.main()
