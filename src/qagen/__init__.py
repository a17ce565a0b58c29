"""Question/answer pair generation service."""

__version__ = "0.1.0"
