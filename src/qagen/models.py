"""Data models exchanged between the pipeline, the generation client and the normalizer."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


class ResponseShape(str, Enum):
    """How the model is asked to format its question/answer pairs."""

    OBJECT = "object"
    PAIRS = "pairs"
    TOOL_CALL = "tool_call"
    DELIMITED = "delimited"


@dataclass(slots=True, frozen=True)
class QAPair:
    question: str
    answer: str

    def as_row(self) -> Tuple[str, str]:
        return (self.question, self.answer)


@dataclass(slots=True, frozen=True)
class ChatMessage:
    """A single message in a chat-completion conversation."""

    role: str
    content: str

    def to_payload(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(slots=True, frozen=True)
class ToolCall:
    """Function invocation requested by the model; ``arguments`` is raw JSON text."""

    name: str
    arguments: str


@dataclass(slots=True, frozen=True)
class GenerationReply:
    """Reply returned by one chat-completion call."""

    content: Optional[str] = None
    tool_calls: Tuple[ToolCall, ...] = field(default_factory=tuple)
    finish_reason: Optional[str] = None
    model: Optional[str] = None


__all__ = ["ChatMessage", "GenerationReply", "QAPair", "ResponseShape", "ToolCall"]
