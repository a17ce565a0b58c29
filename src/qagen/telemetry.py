"""Structured lifecycle events for the QA generation service.

Every event is a single dict logged through :func:`log_event`, with a
``step`` name, the emitting ``module`` and optional ``req_id``,
``session_id``, ``duration_ms``, ``details`` and ``exc`` fields. The JSON
formatter in :mod:`qagen.logging_config` writes the dict as one line.
"""

from __future__ import annotations

import logging
import os
import platform
import socket
import subprocess
import sys
import time
import traceback
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional


LOGGER = logging.getLogger("qagen.telemetry")

STARTUP_ENV_KEYS: tuple[str, ...] = (
    "QAGEN_MODEL",
    "QAGEN_PROFILE",
    "QAGEN_STUB",
    "QAGEN_TEMPERATURE",
    "QAGEN_GENERATION_TIMEOUT",
    "QAGEN_FLUSH_LAST_CHUNK",
    "QAGEN_KEEP_LINE_BREAKS",
    "QAGEN_STRICT_ENTRIES",
    "QAGEN_PERSIST",
    "QAGEN_MAX_SESSIONS",
    "QAGEN_MAX_TURNS",
    "OPENAI_BASE_URL",
    "airtable_base_id",
    "airtable_table_name",
)

PROMPT_PREVIEW_CHARS = 120


def _describe_exception(exc: BaseException | str) -> tuple[str, Any]:
    """Return the ``exc`` field text and the matching ``exc_info`` value."""

    if isinstance(exc, BaseException):
        text = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return text, (type(exc), exc, exc.__traceback__)
    return str(exc), None


def log_event(
    logger: Optional[logging.Logger],
    step: str,
    *,
    level: str = "info",
    req_id: str | None = None,
    session_id: str | None = None,
    duration_ms: float | None = None,
    exc: BaseException | str | None = None,
    details: dict[str, Any] | None = None,
    extra: dict[str, Any] | None = None,
    **payload: Any,
) -> None:
    """Log one structured event dict on *logger* (the telemetry logger by default)."""

    target = logger or LOGGER
    optional = {
        "req_id": req_id or None,
        "session_id": session_id or None,
        "duration_ms": None if duration_ms is None else round(duration_ms, 3),
        "details": details,
    }
    event: dict[str, Any] = {"step": step, "module": target.name}
    event.update((key, value) for key, value in optional.items() if value is not None)
    event.update(extra or {})
    event.update(payload)

    exc_info = None
    if exc is not None:
        event["exc"], exc_info = _describe_exception(exc)

    target.log(logging.getLevelName(level.upper()), event, exc_info=exc_info)


def _git_commit() -> Optional[str]:
    try:
        completed = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            check=False,
            capture_output=True,
            text=True,
            timeout=5.0,
        )
    except (OSError, subprocess.SubprocessError):
        return None
    if completed.returncode != 0:
        return None
    return completed.stdout.strip() or None


def emit_app_startup_event() -> None:
    env = {key: os.environ[key] for key in STARTUP_ENV_KEYS if key in os.environ}
    log_event(
        LOGGER,
        "app.startup",
        details={
            "env": env,
            "python": sys.version.split()[0],
            "platform": platform.platform(),
        },
        extra={
            "commit": _git_commit(),
            "pid": os.getpid(),
            "hostname": socket.gethostname(),
            "cwd": str(Path.cwd()),
        },
    )


def emit_generation_client_init(
    *, provider: str, model: str, ready: bool, timeout: float | None, reason: str | None = None
) -> None:
    log_event(
        LOGGER,
        "generation.client.init",
        level="info" if ready else "warning",
        details={"provider": provider, "model": model, "ready": ready, "timeout": timeout, "reason": reason},
    )


def emit_chunking_event(
    *, req_id: str, profile: str, strategy: str, chunks: int, words: int, chars: int
) -> None:
    log_event(
        LOGGER,
        "chunking.split",
        req_id=req_id,
        details={"profile": profile, "strategy": strategy, "chunks": chunks, "words": words, "chars": chars},
    )


def emit_generation_request(
    *,
    req_id: str,
    chunk_index: int,
    shape: str,
    prompt_preview: str,
    prompt_len: int,
    messages: int,
    session_id: str | None = None,
) -> None:
    log_event(
        LOGGER,
        "generation.request",
        req_id=req_id,
        session_id=session_id,
        details={
            "chunk_index": chunk_index,
            "shape": shape,
            "messages": messages,
            "prompt_len": prompt_len,
            "prompt_preview": prompt_preview[:PROMPT_PREVIEW_CHARS],
        },
    )


def emit_generation_result(
    *,
    req_id: str,
    chunk_index: int,
    duration_ms: float,
    model_used: str | None,
    pairs: int,
    fallback: bool,
    error: BaseException | None = None,
    session_id: str | None = None,
) -> None:
    """Report how one generation call ended; ``fallback`` marks a skipped chunk."""

    log_event(
        LOGGER,
        "generation.result",
        level="warning" if error is not None else "info",
        req_id=req_id,
        session_id=session_id,
        duration_ms=duration_ms,
        details={"chunk_index": chunk_index, "model_used": model_used, "pairs": pairs, "fallback": fallback},
        exc=None if error is None else f"{type(error).__name__}: {error}",
    )


def emit_persistence_event(
    step: str,
    *,
    table: str,
    queued: int,
    error: BaseException | None = None,
) -> None:
    log_event(
        LOGGER,
        step,
        level="error" if error is not None else "info",
        details={"table": table, "queued": queued},
        exc=error,
    )


def emit_session_event(step: str, *, session_id: str, turns: int, sessions: int) -> None:
    log_event(LOGGER, step, session_id=session_id, details={"turns": turns, "sessions": sessions})


def emit_exception(
    *,
    module: str,
    error: BaseException,
    req_id: str | None = None,
    session_id: str | None = None,
) -> None:
    log_event(
        LOGGER,
        "exception",
        level="error",
        req_id=req_id,
        session_id=session_id,
        details={"module": module},
        exc=error,
    )


@contextmanager
def traced_duration(step: str, *, logger: Optional[logging.Logger] = None, **fields: Any) -> Iterator[None]:
    """Log ``<step>.start`` and ``<step>.complete`` (or ``<step>.error``) around a block."""

    target = logger or LOGGER
    started = time.perf_counter()
    log_event(target, f"{step}.start", details=fields)
    try:
        yield
    except Exception as error:
        log_event(target, f"{step}.error", level="error", details=fields, exc=error)
        raise
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        log_event(target, f"{step}.complete", duration_ms=elapsed_ms, details=fields)


__all__ = [
    "emit_app_startup_event",
    "emit_chunking_event",
    "emit_exception",
    "emit_generation_client_init",
    "emit_generation_request",
    "emit_generation_result",
    "emit_persistence_event",
    "emit_session_event",
    "log_event",
    "traced_duration",
]
