"""
Tests for foundation_chat.config (ChatConfig.from_env / with_overrides).
"""

import logging
from pathlib import Path
from unittest.mock import patch

import pytest

from foundation_chat.config import (
    STREAM_FIRST_PART_TIMEOUT_SECONDS,
    STREAM_PART_IDLE_TIMEOUT_SECONDS,
    ChatConfig,
    default_db_path,
)
from foundation_chat.runtime import DEFAULT_CONTEXT_CHARS


class TestFromEnv:
    def test_defaults(self):
        with patch("foundation_chat.config.click.get_app_dir", return_value="/tmp/fc-app"):
            config = ChatConfig.from_env({})

        assert config.db_path == Path("/tmp/fc-app") / "conversations.sqlite3"
        assert config.first_part_timeout == STREAM_FIRST_PART_TIMEOUT_SECONDS
        assert config.part_idle_timeout == STREAM_PART_IDLE_TIMEOUT_SECONDS
        assert config.context_chars == DEFAULT_CONTEXT_CHARS
        assert config.log_level == "WARNING"

    def test_default_db_path_uses_app_dir(self):
        with patch("foundation_chat.config.click.get_app_dir", return_value="/x") as get_app_dir:
            assert default_db_path() == Path("/x/conversations.sqlite3")
        get_app_dir.assert_called_once_with("foundation-chat")

    def test_values_from_environment(self, tmp_path):
        config = ChatConfig.from_env(
            {
                "FOUNDATION_CHAT_DB": str(tmp_path / "chat.db"),
                "FOUNDATION_CHAT_FIRST_PART_TIMEOUT": "5",
                "FOUNDATION_CHAT_IDLE_TIMEOUT": "2.5",
                "FOUNDATION_CHAT_CONTEXT_CHARS": "4000",
                "FOUNDATION_CHAT_LOG_LEVEL": "debug",
            }
        )

        assert config.db_path == tmp_path / "chat.db"
        assert config.first_part_timeout == 5.0
        assert config.part_idle_timeout == 2.5
        assert config.context_chars == 4000
        assert config.log_level == "DEBUG"

    @pytest.mark.parametrize("raw", ["0", "off", "None", "-3"])
    def test_timeouts_can_be_disabled(self, raw, tmp_path):
        config = ChatConfig.from_env(
            {
                "FOUNDATION_CHAT_DB": str(tmp_path / "c.db"),
                "FOUNDATION_CHAT_FIRST_PART_TIMEOUT": raw,
                "FOUNDATION_CHAT_IDLE_TIMEOUT": raw,
            }
        )
        assert config.first_part_timeout is None
        assert config.part_idle_timeout is None

    def test_invalid_values_fall_back_with_warning(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING, logger="foundation_chat.config"):
            config = ChatConfig.from_env(
                {
                    "FOUNDATION_CHAT_DB": str(tmp_path / "c.db"),
                    "FOUNDATION_CHAT_FIRST_PART_TIMEOUT": "soon",
                    "FOUNDATION_CHAT_CONTEXT_CHARS": "-5",
                }
            )

        assert config.first_part_timeout == STREAM_FIRST_PART_TIMEOUT_SECONDS
        assert config.context_chars == DEFAULT_CONTEXT_CHARS
        assert "FOUNDATION_CHAT_FIRST_PART_TIMEOUT" in caplog.text
        assert "FOUNDATION_CHAT_CONTEXT_CHARS" in caplog.text


def test_with_overrides_ignores_none(tmp_path):
    config = ChatConfig(db_path=tmp_path / "a.db")

    updated = config.with_overrides(db_path=tmp_path / "b.db", log_level=None)

    assert updated.db_path == tmp_path / "b.db"
    assert updated.log_level == "WARNING"
    assert config.db_path == tmp_path / "a.db"
