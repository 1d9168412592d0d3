"""Test settings and logging setup."""

import json
import logging
import os
from unittest.mock import patch

import pytest

from achievo_cli.config import LocalScoringConfig, Settings
from achievo_cli.errors import ConfigurationError
from achievo_cli.log import get_logger, setup_logging


class TestSettings:
    def test_defaults(self, tmp_path):
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings.from_env(data_dir=tmp_path)

        assert settings.repo_path is None
        assert settings.poll_seconds == 30
        assert settings.daily_cap_ratio == 0.35
        assert settings.local_scoring == LocalScoringConfig()
        assert settings.local_scoring.window_days == 30
        assert settings.ai_model == "claude-3-5-haiku-latest"
        assert settings.offline_mode is False

    def test_environment_values(self, tmp_path):
        env = {
            "ACHIEVO_REPO_PATH": "/work/project",
            "ACHIEVO_DATA_DIR": str(tmp_path),
            "ACHIEVO_DAILY_CAP_RATIO": "0.5",
            "ACHIEVO_LS_WINDOW_DAYS": "14",
            "ACHIEVO_LS_ALPHA": "0.5",
            "ACHIEVO_OFFLINE": "true",
            "ACHIEVO_LOG_NAMESPACES": "db, score",
            "ANTHROPIC_API_KEY": "sk-test",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env()

        assert settings.repo_path == "/work/project"
        assert settings.data_dir == tmp_path
        assert settings.daily_cap_ratio == 0.5
        assert settings.local_scoring.window_days == 14
        assert settings.local_scoring.alpha == 0.5
        assert settings.offline_mode is True
        assert settings.log_namespaces == ["db", "score"]
        assert settings.ai_api_key == "sk-test"

    def test_overrides_win(self):
        with patch.dict(os.environ, {"ACHIEVO_REPO_PATH": "/from/env"}, clear=True):
            settings = Settings.from_env(repo_path="/from/flag")
        assert settings.repo_path == "/from/flag"

    @pytest.mark.parametrize(
        "name,value",
        [
            ("ACHIEVO_DAILY_CAP_RATIO", "2"),
            ("ACHIEVO_POLL_SECONDS", "0"),
            ("ACHIEVO_LS_NORMAL_STD", "0"),
            ("ACHIEVO_LS_WINSOR_P_LOW", "0.99"),
        ],
    )
    def test_invalid_values(self, name, value):
        with patch.dict(os.environ, {name: value}, clear=True):
            with pytest.raises(ConfigurationError):
                Settings.from_env()

    def test_require_repo(self):
        with pytest.raises(ConfigurationError):
            Settings().require_repo()
        assert Settings().with_repo("/x").require_repo() == "/x"

    def test_frozen(self):
        settings = Settings()
        with pytest.raises(Exception):
            settings.poll_seconds = 5


class TestLogging:
    def teardown_method(self):
        setup_logging("info")

    def test_namespace_filter(self):
        setup_logging("debug", namespaces=["db"])
        assert get_logger("db").isEnabledFor(logging.DEBUG)
        assert not get_logger("ai").isEnabledFor(logging.DEBUG)
        assert get_logger("ai").isEnabledFor(logging.INFO)

    def test_namespaces_get_debug_at_any_level(self):
        setup_logging("info", namespaces=["score"])
        assert get_logger("score").isEnabledFor(logging.DEBUG)
        assert not get_logger("db").isEnabledFor(logging.DEBUG)

        setup_logging("warning", namespaces=["score"])
        assert get_logger("score").isEnabledFor(logging.DEBUG)
        assert not get_logger("db").isEnabledFor(logging.INFO)
        assert get_logger("db").isEnabledFor(logging.WARNING)

    def test_debug_everywhere_without_namespaces(self):
        setup_logging("debug")
        assert get_logger("ai").isEnabledFor(logging.DEBUG)

    def test_json_log_file(self, tmp_path):
        log_file = tmp_path / "logs" / "achievo.log"
        root = setup_logging("info", log_file=log_file)
        get_logger("tracker").info("tracked %s", "abc1234")
        for h in root.handlers:
            h.flush()

        entry = json.loads(log_file.read_text(encoding="utf-8").strip().splitlines()[-1])
        assert entry["level"] == "info"
        assert entry["ns"] == "tracker"
        assert entry["msg"] == "tracked abc1234"
