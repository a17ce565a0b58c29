import logging

from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse

from qagen.api import router as qagen_router
from qagen.generation import get_generation_status
from qagen.logging_config import configure_logging
from qagen.pipeline import shutdown_qa_service
from qagen.telemetry import emit_app_startup_event

configure_logging()

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="QA Generation API")
app.include_router(qagen_router)


@app.on_event("startup")
async def _startup_event() -> None:
    emit_app_startup_event()


@app.on_event("shutdown")
async def _shutdown_event() -> None:
    """Drain the persistence queue before the process exits."""

    shutdown_qa_service()


@app.get("/", response_class=PlainTextResponse)
def read_root() -> str:
    """Healthcheck endpoint for the service."""
    return "ok"


@app.get("/healthz", response_class=PlainTextResponse)
def healthcheck() -> str:
    """Liveness probe reporting whether the generation client can be used."""
    status = get_generation_status()
    if not status.ready:
        detail = status.error or "Generation client is not ready"
        raise HTTPException(status_code=503, detail=detail)

    return "ok"


@app.get("/healthz/generation")
def generation_healthcheck() -> dict[str, object]:
    """Expose the configured generation provider and model."""

    status = get_generation_status()
    payload: dict[str, object] = {
        "ready": status.ready,
        "provider": status.provider,
        "model": status.model_name,
    }
    if status.error:
        payload["reason"] = status.error
    return payload
