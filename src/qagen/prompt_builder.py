"""Utilities for constructing the prompts sent with each chunk."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List

from qagen.models import ChatMessage
from qagen.normalizer import DEFAULT_FUNCTION_NAME, DEFAULT_PAIRS_KEY

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
SYSTEM_TEMPLATE = "system.txt"


@lru_cache(maxsize=None)
def load_template(name: str) -> str:
    """Read and trim the contents of a packaged template file."""

    path = TEMPLATE_DIR / name
    if not path.is_file():
        raise FileNotFoundError(f"Prompt template {name!r} not found in {TEMPLATE_DIR}")
    return path.read_text(encoding="utf-8").strip()


def default_system_prompt() -> str:
    return load_template(SYSTEM_TEMPLATE)


def build_prompt(
    template_name: str,
    text: str,
    *,
    pairs_key: str = DEFAULT_PAIRS_KEY,
    function_name: str = DEFAULT_FUNCTION_NAME,
) -> str:
    """Interpolate a chunk of request text into the named template."""

    if text is None:
        raise ValueError("text must not be None")

    template = load_template(template_name)
    return template.format(text=text, pairs_key=pairs_key, function_name=function_name)


def build_messages(
    template_name: str,
    text: str,
    *,
    pairs_key: str = DEFAULT_PAIRS_KEY,
    function_name: str = DEFAULT_FUNCTION_NAME,
) -> List[ChatMessage]:
    prompt = build_prompt(
        template_name, text, pairs_key=pairs_key, function_name=function_name
    )
    return [ChatMessage(role="user", content=prompt)]


__all__ = [
    "TEMPLATE_DIR",
    "build_messages",
    "build_prompt",
    "default_system_prompt",
    "load_template",
]
