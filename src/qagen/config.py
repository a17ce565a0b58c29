"""Environment-driven configuration for the QA generation service."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

LOGGER = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[2]

DEFAULT_MODEL = "gpt-3.5-turbo-1106"
DEFAULT_PROFILE = "qa_pairs"
DEFAULT_AIRTABLE_TOKEN_NAME = "github"
DEFAULT_AIRTABLE_BASE_ID = "appmhvMGsMRPmuUWJ"
DEFAULT_AIRTABLE_TABLE_NAME = "mention"
DEFAULT_AIRTABLE_API_URL = "https://api.airtable.com/v0"


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        LOGGER.warning("Invalid integer for %s: %s; using default %s", name, value, default)
        return default


def _env_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    try:
        return float(value)
    except ValueError:
        LOGGER.warning("Invalid float for %s: %s; ignoring", name, value)
        return None


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


@dataclass(slots=True, frozen=True)
class Settings:
    """Resolved service settings. Build with :meth:`from_env`."""

    bot_prompt: Optional[str] = None
    model: str = DEFAULT_MODEL
    temperature: Optional[float] = None
    generation_timeout: Optional[float] = None
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    use_stub: bool = False
    default_profile: str = DEFAULT_PROFILE
    flush_last_chunk: bool = True
    keep_line_breaks: bool = False
    strict_entries: bool = True
    persist_enabled: bool = False
    airtable_token_name: str = DEFAULT_AIRTABLE_TOKEN_NAME
    airtable_base_id: str = DEFAULT_AIRTABLE_BASE_ID
    airtable_table_name: str = DEFAULT_AIRTABLE_TABLE_NAME
    airtable_api_url: str = DEFAULT_AIRTABLE_API_URL
    persist_queue_size: int = 1000
    max_sessions: int = 256
    max_turns: int = 40

    @classmethod
    def from_env(cls) -> "Settings":
        bot_prompt = os.getenv("BOT_PROMPT")
        return cls(
            bot_prompt=bot_prompt if bot_prompt and bot_prompt.strip() else None,
            model=_env_str("QAGEN_MODEL", DEFAULT_MODEL),
            temperature=_env_float("QAGEN_TEMPERATURE"),
            generation_timeout=_env_float("QAGEN_GENERATION_TIMEOUT"),
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_base_url=os.getenv("OPENAI_BASE_URL") or None,
            use_stub=_env_flag("QAGEN_STUB"),
            default_profile=_env_str("QAGEN_PROFILE", DEFAULT_PROFILE),
            flush_last_chunk=_env_flag("QAGEN_FLUSH_LAST_CHUNK", True),
            keep_line_breaks=_env_flag("QAGEN_KEEP_LINE_BREAKS"),
            strict_entries=_env_flag("QAGEN_STRICT_ENTRIES", True),
            persist_enabled=_env_flag("QAGEN_PERSIST"),
            airtable_token_name=_env_str("airtable_token_name", DEFAULT_AIRTABLE_TOKEN_NAME),
            airtable_base_id=_env_str("airtable_base_id", DEFAULT_AIRTABLE_BASE_ID),
            airtable_table_name=_env_str("airtable_table_name", DEFAULT_AIRTABLE_TABLE_NAME),
            airtable_api_url=_env_str("AIRTABLE_API_URL", DEFAULT_AIRTABLE_API_URL).rstrip("/"),
            persist_queue_size=max(1, _env_int("QAGEN_PERSIST_QUEUE_SIZE", 1000)),
            max_sessions=max(1, _env_int("QAGEN_MAX_SESSIONS", 256)),
            max_turns=max(2, _env_int("QAGEN_MAX_TURNS", 40)),
        )

    def airtable_token(self) -> Optional[str]:
        """Resolve the credential named by ``airtable_token_name``."""

        suffix = "".join(ch if ch.isalnum() else "_" for ch in self.airtable_token_name).upper()
        return os.getenv(f"AIRTABLE_TOKEN_{suffix}") or os.getenv("AIRTABLE_TOKEN") or None


def load_env_file() -> None:
    """Load ``.env`` from the project root, or the nearest one found."""

    env_file = PROJECT_ROOT / ".env"
    if env_file.exists():
        load_dotenv(dotenv_path=env_file)
    else:
        load_dotenv()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, loading ``.env`` on first use."""

    load_env_file()
    return Settings.from_env()


__all__ = ["PROJECT_ROOT", "Settings", "get_settings", "load_env_file"]
