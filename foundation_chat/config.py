"""
Runtime configuration for FoundationChat, resolved from ``FOUNDATION_CHAT_*`` environment variables.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import click

from .runtime import DEFAULT_CONTEXT_CHARS

logger = logging.getLogger("foundation_chat.config")

APP_NAME = "foundation-chat"
DB_FILENAME = "conversations.sqlite3"
STREAM_FIRST_PART_TIMEOUT_SECONDS = 25.0
STREAM_PART_IDLE_TIMEOUT_SECONDS = 12.0

ENV_DB = "FOUNDATION_CHAT_DB"
ENV_FIRST_PART_TIMEOUT = "FOUNDATION_CHAT_FIRST_PART_TIMEOUT"
ENV_IDLE_TIMEOUT = "FOUNDATION_CHAT_IDLE_TIMEOUT"
ENV_CONTEXT_CHARS = "FOUNDATION_CHAT_CONTEXT_CHARS"
ENV_LOG_LEVEL = "FOUNDATION_CHAT_LOG_LEVEL"


def default_db_path() -> Path:
    """Per-user application directory, as chosen by click for this platform."""
    return Path(click.get_app_dir(APP_NAME)) / DB_FILENAME


def _parse_timeout(raw: str | None, default: float | None, name: str) -> float | None:
    """Parse a timeout in seconds; ``0``, ``none`` or ``off`` disable it."""
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in {"0", "none", "off"}:
        return None
    try:
        parsed = float(value)
    except ValueError:
        logger.warning(
            "[FoundationChat Config] Ignoring invalid %s=%r; using %s.", name, raw, default
        )
        return default
    if parsed <= 0:
        return None
    return parsed


def _parse_positive_int(raw: str | None, default: int, name: str) -> int:
    if raw is None or not raw.strip():
        return default
    try:
        parsed = int(raw)
    except ValueError:
        parsed = 0
    if parsed <= 0:
        logger.warning(
            "[FoundationChat Config] Ignoring invalid %s=%r; using %s.", name, raw, default
        )
        return default
    return parsed


@dataclass(frozen=True)
class ChatConfig:
    db_path: Path
    first_part_timeout: float | None = STREAM_FIRST_PART_TIMEOUT_SECONDS
    part_idle_timeout: float | None = STREAM_PART_IDLE_TIMEOUT_SECONDS
    context_chars: int = DEFAULT_CONTEXT_CHARS
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ChatConfig:
        env = os.environ if environ is None else environ
        raw_db = env.get(ENV_DB)
        return cls(
            db_path=Path(raw_db).expanduser() if raw_db else default_db_path(),
            first_part_timeout=_parse_timeout(
                env.get(ENV_FIRST_PART_TIMEOUT),
                STREAM_FIRST_PART_TIMEOUT_SECONDS,
                ENV_FIRST_PART_TIMEOUT,
            ),
            part_idle_timeout=_parse_timeout(
                env.get(ENV_IDLE_TIMEOUT), STREAM_PART_IDLE_TIMEOUT_SECONDS, ENV_IDLE_TIMEOUT
            ),
            context_chars=_parse_positive_int(
                env.get(ENV_CONTEXT_CHARS), DEFAULT_CONTEXT_CHARS, ENV_CONTEXT_CHARS
            ),
            log_level=(env.get(ENV_LOG_LEVEL) or "WARNING").upper(),
        )

    def with_overrides(self, **overrides: Any) -> ChatConfig:
        """Return a copy with every non-``None`` override applied."""
        applied = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **applied)
