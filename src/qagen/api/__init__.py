"""HTTP routers for the QA generation service."""

from qagen.api.webhook import router

__all__ = ["router"]
