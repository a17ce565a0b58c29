"""API router exposing the CSV webhook and the conversational endpoint."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from qagen.errors import GenerationServiceError, InputDecodingError, UnknownProfileError
from qagen.pipeline import PROFILES, GenerationResult, QAGenerationService, get_qa_service

router = APIRouter(tags=["qagen"])

CSV_MEDIA_TYPE = "text/plain; charset=UTF-8"
TEXT_MEDIA_TYPE = "text/plain; charset=utf-8"
SESSION_HEADER = "X-Session-Id"


class ChatRequest(BaseModel):
    """Request body accepted by the chat endpoint."""

    question: str = Field(..., min_length=1, description="Question to put to the assistant.")
    session_id: str | None = Field(
        None,
        min_length=1,
        max_length=128,
        description="Conversation to continue; a new one is started when omitted.",
    )


class ProfileDescription(BaseModel):
    name: str
    response_shape: str
    chunking: str
    template: str
    max_words: int | None
    pairs_key: str
    function_name: str


def _csv_response(result: GenerationResult) -> PlainTextResponse:
    headers = {
        "X-QAGen-Profile": result.profile,
        "X-QAGen-Chunks": str(result.chunk_count),
        "X-QAGen-Failed-Chunks": str(len(result.failed_chunks)),
    }
    return PlainTextResponse(result.to_csv(), media_type=CSV_MEDIA_TYPE, headers=headers)


@router.api_route("/webhook", methods=["GET", "POST"], response_class=PlainTextResponse)
@router.api_route("/webhook/{subpath:path}", methods=["GET", "POST"], response_class=PlainTextResponse)
async def generate_pairs(
    request: Request,
    variant: str | None = Query(None, description="Pipeline profile to run."),
    service: QAGenerationService = Depends(get_qa_service),
) -> PlainTextResponse:
    """Turn the raw request body into a CSV of question/answer pairs."""

    try:
        profile = service.resolve_profile(variant)
    except UnknownProfileError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    body = await request.body()
    try:
        result = await run_in_threadpool(service.generate_from_bytes, body, profile)
    except InputDecodingError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _csv_response(result)


@router.post("/chat", response_class=PlainTextResponse)
def chat(
    request: ChatRequest,
    service: QAGenerationService = Depends(get_qa_service),
) -> PlainTextResponse:
    """Answer one question within a bounded conversation session."""

    if not request.question.strip():
        raise HTTPException(status_code=422, detail="Question must not be empty")

    try:
        result = service.chat(request.question, request.session_id)
    except GenerationServiceError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return PlainTextResponse(
        result.answer,
        media_type=TEXT_MEDIA_TYPE,
        headers={SESSION_HEADER: result.session_id},
    )


@router.get("/profiles", response_model=list[ProfileDescription])
def list_profiles() -> list[dict[str, Any]]:
    """List the registered pipeline profiles."""

    return [profile.describe() for profile in PROFILES.values()]
