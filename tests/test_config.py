from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from social_vault.config import (
    ProviderSettings,
    load_config,
    require_any_provider,
    resolve_runtime_secrets,
)
from social_vault.config_schema import AppConfig
from social_vault.errors import ConfigError


_VALID_YAML = """\
justone:
  token_env: JUSTONEAPI_TOKEN
  retry_attempts: 2
  retry_delay_seconds: 0.1

legacy_detail:
  enabled: true
  max_attempts: 4
  delay_seconds: 0

tikhub:
  token_env: TIKHUB_API_TOKEN
  base_url: https://api.tikhub.io/

x_api:
  bearer_token_env: X_API_BEARER_TOKEN

xiaohongshu:
  preferred_provider: tikhub

search:
  default_limit: 5
  min_interaction: 10
"""


class TestConfig(unittest.TestCase):
    def test_load_config_ok(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.yaml"
            path.write_text(_VALID_YAML, encoding="utf-8")

            cfg = load_config(path)
            self.assertEqual(cfg.justone.retry_attempts, 2)
            self.assertEqual(cfg.legacy_detail.max_attempts, 4)
            self.assertEqual(cfg.tikhub.base_url, "https://api.tikhub.io")
            self.assertEqual(cfg.xiaohongshu.preferred_provider, "tikhub")
            self.assertEqual(cfg.search.min_interaction, 10)

    def test_none_path_gives_defaults(self) -> None:
        cfg = load_config(None)
        self.assertEqual(cfg, AppConfig())
        self.assertEqual(cfg.justone.detail_path, "/api/xiaohongshu/get-note-detail/v7")
        self.assertEqual(cfg.legacy_detail.max_attempts, 10)
        self.assertEqual(cfg.legacy_detail.delay_seconds, 0.25)

    def test_empty_file_gives_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.yaml"
            path.write_text("", encoding="utf-8")
            self.assertEqual(load_config(path), AppConfig())

    def test_rejects_unknown_keys_and_bad_values(self) -> None:
        for bad in (
            "justone:\n  nope: 1\n",
            "xiaohongshu:\n  preferred_provider: scraper\n",
            "tikhub:\n  base_url: ftp://x\n",
            "justone:\n  detail_path: no-slash\n",
            "tikhub:\n  token_env: JUSTONEAPI_TOKEN\n",
            "x_api:\n  tweet_path: /2/tweets\n",
            "x_api:\n  search_path: search\n",
        ):
            with self.subTest(bad=bad):
                with tempfile.TemporaryDirectory() as td:
                    path = Path(td) / "config.yaml"
                    path.write_text(bad, encoding="utf-8")
                    with self.assertRaises(ConfigError):
                        load_config(path)

    def test_missing_file(self) -> None:
        with self.assertRaises(ConfigError) as ctx:
            load_config("/nonexistent/social_vault.yaml")
        self.assertIn("not found", str(ctx.exception))

    def test_non_mapping_yaml(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.yaml"
            path.write_text("- a\n- b\n", encoding="utf-8")
            with self.assertRaises(ConfigError):
                load_config(path)

    def test_resolve_runtime_secrets(self) -> None:
        cfg = AppConfig()
        secrets = resolve_runtime_secrets(
            cfg,
            environ={"JUSTONEAPI_TOKEN": " jt ", "X_API_BEARER_TOKEN": "", "OPENAI_API_KEY": "sk"},
        )
        self.assertEqual(secrets.justone_token, "jt")
        self.assertIsNone(secrets.tikhub_token)
        self.assertIsNone(secrets.x_bearer_token)
        self.assertEqual(secrets.openai_api_key, "sk")

        require_any_provider(cfg, secrets)
        with self.assertRaises(ConfigError):
            require_any_provider(cfg, resolve_runtime_secrets(cfg, environ={}))

    def test_provider_settings_from_config(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.yaml"
            path.write_text(_VALID_YAML, encoding="utf-8")
            cfg = load_config(path)

        settings = ProviderSettings.from_config(cfg)
        self.assertEqual(settings.xhs_preference, "tikhub")
        self.assertFalse(hasattr(settings, "tikhub_token"))
        self.assertEqual(settings.legacy_detail_attempts, 4)
        self.assertEqual(settings.legacy_detail_delay_seconds, 0.0)


if __name__ == "__main__":
    unittest.main()
