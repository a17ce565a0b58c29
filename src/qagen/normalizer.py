"""Turn chat-completion replies into ordered question/answer pairs.

Four reply shapes are understood:

``OBJECT``
    A JSON object holding a list of ``{"question": ..., "answer": ...}``
    entries under a named key (``qa_pairs`` by default).
``PAIRS``
    A list of ``[question, answer]`` arrays, either bare or under the same
    named key. Entries that are not two-element arrays are skipped.
``TOOL_CALL``
    The model invoked a named function whose JSON arguments hold one of the
    two shapes above. No matching call means no pairs.
``DELIMITED``
    Plain text split once on a separator into question and answer.

Anything that cannot be read under the selected shape raises
:class:`~qagen.errors.SchemaError`.
"""
from __future__ import annotations

import json
import logging
from typing import Any, List, Mapping

from qagen.errors import SchemaError
from qagen.models import GenerationReply, QAPair, ResponseShape

LOGGER = logging.getLogger(__name__)

DEFAULT_PAIRS_KEY = "qa_pairs"
DEFAULT_FUNCTION_NAME = "record_qa_pairs"


def _load_json(text: str | None) -> Any:
    if text is None:
        raise SchemaError("Reply carried no content to parse")
    try:
        return json.loads(text)
    except json.JSONDecodeError as error:
        raise SchemaError(f"Reply is not valid JSON: {error.msg}", cause=error) from error
    except (ValueError, RecursionError) as error:
        # Oversized integer literals and very deep nesting.
        raise SchemaError(f"Reply JSON could not be decoded: {error}", cause=error) from error


def _coerce_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def pairs_from_object(
    payload: Any,
    *,
    pairs_key: str = DEFAULT_PAIRS_KEY,
    strict_entries: bool = True,
) -> List[QAPair]:
    """Extract pairs from a mapping holding question/answer objects under *pairs_key*."""

    if not isinstance(payload, Mapping):
        raise SchemaError(f"Expected a JSON object, got {type(payload).__name__}")

    entries = payload.get(pairs_key)
    if entries is None:
        LOGGER.info("Reply has no %r key; treating as zero pairs", pairs_key)
        return []
    if not isinstance(entries, list):
        raise SchemaError(f"{pairs_key!r} must be a list, got {type(entries).__name__}")

    pairs: List[QAPair] = []
    for position, entry in enumerate(entries):
        question = entry.get("question") if isinstance(entry, Mapping) else None
        answer = entry.get("answer") if isinstance(entry, Mapping) else None
        if isinstance(question, str) and isinstance(answer, str):
            pairs.append(QAPair(question=question, answer=answer))
            continue
        if strict_entries:
            raise SchemaError(f"Entry {position} of {pairs_key!r} lacks a string question/answer")
        LOGGER.warning("Skipping malformed entry %d of %r", position, pairs_key)
    return pairs


def pairs_from_arrays(payload: Any, *, pairs_key: str = DEFAULT_PAIRS_KEY) -> List[QAPair]:
    """Extract pairs from ``[question, answer]`` arrays; other entries are skipped."""

    if isinstance(payload, Mapping):
        payload = payload.get(pairs_key, [])
    if not isinstance(payload, list):
        raise SchemaError(f"Expected a list of pairs, got {type(payload).__name__}")

    pairs: List[QAPair] = []
    for entry in payload:
        if isinstance(entry, list) and len(entry) == 2:
            pairs.append(QAPair(question=_coerce_text(entry[0]), answer=_coerce_text(entry[1])))
    return pairs


def pairs_from_tool_call(
    reply: GenerationReply,
    *,
    function_name: str = DEFAULT_FUNCTION_NAME,
    pairs_key: str = DEFAULT_PAIRS_KEY,
    strict_entries: bool = True,
) -> List[QAPair]:
    """Extract pairs from the arguments of the tool call named *function_name*."""

    call = next((call for call in reply.tool_calls if call.name == function_name), None)
    if call is None:
        LOGGER.info("Model did not call %s; no pairs produced", function_name)
        return []

    arguments = _load_json(call.arguments)
    if isinstance(arguments, list):
        return pairs_from_arrays(arguments, pairs_key=pairs_key)
    if isinstance(arguments, Mapping) and _holds_arrays(arguments.get(pairs_key)):
        return pairs_from_arrays(arguments, pairs_key=pairs_key)
    return pairs_from_object(arguments, pairs_key=pairs_key, strict_entries=strict_entries)


def _holds_arrays(entries: Any) -> bool:
    return isinstance(entries, list) and bool(entries) and all(
        isinstance(entry, list) for entry in entries
    )


def pairs_from_delimited(text: str | None, *, separator: str = "\n") -> List[QAPair]:
    """Split *text* once on *separator* into a single pair."""

    if text is None:
        raise SchemaError("Reply carried no text")
    question, found, answer = text.partition(separator)
    if not found:
        return [QAPair(question="", answer="")]
    return [QAPair(question=question, answer=answer)]


def normalize(
    reply: GenerationReply,
    shape: ResponseShape,
    *,
    pairs_key: str = DEFAULT_PAIRS_KEY,
    function_name: str = DEFAULT_FUNCTION_NAME,
    separator: str = "\n",
    strict_entries: bool = True,
) -> List[QAPair]:
    """Reduce *reply* to an ordered list of :class:`QAPair` for the given *shape*."""

    if shape is ResponseShape.OBJECT:
        return pairs_from_object(
            _load_json(reply.content), pairs_key=pairs_key, strict_entries=strict_entries
        )
    if shape is ResponseShape.PAIRS:
        return pairs_from_arrays(_load_json(reply.content), pairs_key=pairs_key)
    if shape is ResponseShape.TOOL_CALL:
        return pairs_from_tool_call(
            reply,
            function_name=function_name,
            pairs_key=pairs_key,
            strict_entries=strict_entries,
        )
    if shape is ResponseShape.DELIMITED:
        return pairs_from_delimited(reply.content, separator=separator)
    raise SchemaError(f"Unsupported response shape: {shape}")


__all__ = [
    "DEFAULT_FUNCTION_NAME",
    "DEFAULT_PAIRS_KEY",
    "QAPair",
    "normalize",
    "pairs_from_arrays",
    "pairs_from_delimited",
    "pairs_from_object",
    "pairs_from_tool_call",
]
