"""Exception types shared across the QA generation service."""
from __future__ import annotations


class QAGenError(RuntimeError):
    """Base class for errors raised by the service."""

    def __init__(self, message: str, *, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.__cause__ = cause


class InputDecodingError(QAGenError):
    """Raised when a request body is not valid UTF-8 text."""


class GenerationServiceError(QAGenError):
    """Raised when the chat-completion service cannot be reached or fails."""


class SchemaError(QAGenError, ValueError):
    """Raised when a generation reply does not match the expected shape."""


class PersistenceError(QAGenError):
    """Raised when a pair cannot be written to the record store."""


class UnknownProfileError(QAGenError, KeyError):
    """Raised when a requested pipeline profile is not registered."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


__all__ = [
    "GenerationServiceError",
    "InputDecodingError",
    "PersistenceError",
    "QAGenError",
    "SchemaError",
    "UnknownProfileError",
]
