"""Shared fixtures keeping tests isolated from the process environment."""
from __future__ import annotations

import os
import tempfile

import pytest

# The application configures file logging on import; keep it out of the repository.
os.environ.setdefault("QAGEN_LOG_DIR", tempfile.mkdtemp(prefix="qagen-logs-"))

_ENV_PREFIXES = ("QAGEN_", "AIRTABLE_", "airtable_")
_ENV_NAMES = ("BOT_PROMPT", "OPENAI_API_KEY", "OPENAI_BASE_URL")


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    from qagen.config import get_settings

    for name in list(os.environ):
        if name == "QAGEN_LOG_DIR":
            continue
        if name.startswith(_ENV_PREFIXES) or name in _ENV_NAMES:
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("qagen.config.load_env_file", lambda: None)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
