from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from qagen.chunker import ChunkingStrategy, TextChunk, build_chunks
from qagen.config import Settings, get_settings
from qagen.csv_writer import encode_csv
from qagen.errors import GenerationServiceError, InputDecodingError, SchemaError, UnknownProfileError
from qagen.generation import GenerationClient, get_generation_client
from qagen.models import ChatMessage, QAPair, ResponseShape
from qagen.normalizer import DEFAULT_FUNCTION_NAME, DEFAULT_PAIRS_KEY, normalize
from qagen.persistence import PersistenceQueue, create_persistence_queue
from qagen.prompt_builder import build_messages, default_system_prompt
from qagen.sessions import SessionStore
from qagen.telemetry import (
    emit_chunking_event,
    emit_exception,
    emit_generation_request,
    emit_generation_result,
)

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class PipelineProfile:
    """One combination of response shape, chunking strategy and prompt template."""

    name: str
    response_shape: ResponseShape
    chunking: ChunkingStrategy
    template: str
    max_words: Optional[int] = None
    pairs_key: str = DEFAULT_PAIRS_KEY
    function_name: str = DEFAULT_FUNCTION_NAME

    def describe(self) -> dict[str, object]:
        return {
            "name": self.name,
            "response_shape": self.response_shape.value,
            "chunking": self.chunking.value,
            "template": self.template,
            "max_words": self.max_words,
            "pairs_key": self.pairs_key,
            "function_name": self.function_name,
        }


PROFILES: Dict[str, PipelineProfile] = {
    profile.name: profile
    for profile in (
        PipelineProfile(
            name="qa_pairs",
            response_shape=ResponseShape.OBJECT,
            chunking=ChunkingStrategy.WORD_BUDGET,
            template="qa_pairs.md",
            max_words=2000,
        ),
        PipelineProfile(
            name="pair_array",
            response_shape=ResponseShape.PAIRS,
            chunking=ChunkingStrategy.WORD_BUDGET,
            template="pair_array.md",
            max_words=3000,
        ),
        PipelineProfile(
            name="function_call",
            response_shape=ResponseShape.TOOL_CALL,
            chunking=ChunkingStrategy.WORD_BUDGET,
            template="function_call.md",
            max_words=2000,
        ),
        PipelineProfile(
            name="paragraph",
            response_shape=ResponseShape.DELIMITED,
            chunking=ChunkingStrategy.PARAGRAPH,
            template="paragraph.md",
        ),
    )
}


def get_profile(name: str) -> PipelineProfile:
    try:
        return PROFILES[name]
    except KeyError:
        known = ", ".join(sorted(PROFILES))
        raise UnknownProfileError(f"Unknown profile {name!r}; expected one of: {known}") from None


@dataclass(slots=True)
class GenerationResult:
    """Pairs produced for one request along with per-chunk bookkeeping."""

    req_id: str
    profile: str
    pairs: List[QAPair]
    chunk_count: int
    failed_chunks: List[int] = field(default_factory=list)
    duration_seconds: float = 0.0

    def rows(self) -> List[Tuple[str, str]]:
        return [pair.as_row() for pair in self.pairs]

    def to_csv(self) -> str:
        return encode_csv(self.rows())


@dataclass(slots=True)
class ChatResult:
    session_id: str
    question: str
    answer: str
    turns: int


class QAGenerationService:
    """Turn request text into question/answer pairs, one generation call per chunk."""

    def __init__(
        self,
        *,
        client: GenerationClient | None = None,
        settings: Settings | None = None,
        persistence: PersistenceQueue | None = None,
        sessions: SessionStore | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._client = client
        self.persistence = persistence if persistence is not None else create_persistence_queue(
            self.settings
        )
        if sessions is None:
            sessions = SessionStore(
                max_sessions=self.settings.max_sessions, max_turns=self.settings.max_turns
            )
        self.sessions = sessions
        self.system_prompt = self.settings.bot_prompt or default_system_prompt()

    @property
    def client(self) -> GenerationClient:
        if self._client is None:
            self._client = get_generation_client()
        return self._client

    def resolve_profile(self, name: str | None = None) -> PipelineProfile:
        return get_profile(name or self.settings.default_profile)

    def generate_from_bytes(self, body: bytes, profile: PipelineProfile | str | None = None) -> GenerationResult:
        """Decode a raw request body as UTF-8 and run :meth:`generate` on it."""

        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError as error:
            LOGGER.error("Failed to parse request body as UTF-8 string: %s", error)
            raise InputDecodingError("Request body is not valid UTF-8", cause=error) from error
        LOGGER.info("parsed body from request (%d characters)", len(text))
        return self.generate(text, profile)

    def generate(self, text: str, profile: PipelineProfile | str | None = None) -> GenerationResult:
        if not isinstance(profile, PipelineProfile):
            profile = self.resolve_profile(profile)

        req_id = uuid.uuid4().hex
        started = time.perf_counter()
        chunks = build_chunks(
            text,
            profile.chunking,
            max_words=profile.max_words,
            flush_last=self.settings.flush_last_chunk,
            keep_line_breaks=self.settings.keep_line_breaks,
        )
        emit_chunking_event(
            req_id=req_id,
            profile=profile.name,
            strategy=profile.chunking.value,
            chunks=len(chunks),
            words=sum(chunk.word_count for chunk in chunks),
            chars=len(text),
        )

        pairs: List[QAPair] = []
        failed: List[int] = []
        for chunk in chunks:
            chunk_pairs = self._generate_chunk(req_id, profile, chunk)
            if chunk_pairs is None:
                failed.append(chunk.index)
                continue
            pairs.extend(chunk_pairs)
            self._persist(chunk_pairs)
            LOGGER.info("produced %d QAs so far (chunk %d/%d)", len(pairs), chunk.index + 1, len(chunks))

        duration = time.perf_counter() - started
        if failed:
            LOGGER.warning(
                "Request %s: %d of %d chunks produced no pairs", req_id, len(failed), len(chunks)
            )
        return GenerationResult(
            req_id=req_id,
            profile=profile.name,
            pairs=pairs,
            chunk_count=len(chunks),
            failed_chunks=failed,
            duration_seconds=duration,
        )

    def _generate_chunk(
        self, req_id: str, profile: PipelineProfile, chunk: TextChunk
    ) -> Optional[List[QAPair]]:
        """Return the chunk's pairs, or ``None`` when the chunk had to be skipped."""

        messages = build_messages(
            profile.template,
            chunk.text,
            pairs_key=profile.pairs_key,
            function_name=profile.function_name,
        )
        emit_generation_request(
            req_id=req_id,
            chunk_index=chunk.index,
            shape=profile.response_shape.value,
            prompt_preview=messages[-1].content,
            prompt_len=len(messages[-1].content),
            messages=len(messages) + 1,
        )

        started = time.perf_counter()
        model_used: Optional[str] = None
        try:
            reply = self.client.complete(
                self.system_prompt,
                messages,
                profile.response_shape,
                function_name=profile.function_name,
                pairs_key=profile.pairs_key,
            )
            model_used = reply.model
            pairs = normalize(
                reply,
                profile.response_shape,
                pairs_key=profile.pairs_key,
                function_name=profile.function_name,
                strict_entries=self.settings.strict_entries,
            )
        except (GenerationServiceError, SchemaError) as error:
            LOGGER.warning("Chunk %d of request %s produced no pairs: %s", chunk.index, req_id, error)
            emit_generation_result(
                req_id=req_id,
                chunk_index=chunk.index,
                duration_ms=(time.perf_counter() - started) * 1000.0,
                model_used=model_used,
                pairs=0,
                fallback=True,
                error=error,
            )
            return None

        emit_generation_result(
            req_id=req_id,
            chunk_index=chunk.index,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            model_used=model_used,
            pairs=len(pairs),
            fallback=False,
        )
        return pairs

    def _persist(self, pairs: List[QAPair]) -> None:
        if self.persistence is None:
            return
        for pair in pairs:
            self.persistence.submit(pair.question, pair.answer)

    def chat(self, question: str, session_id: str | None = None) -> ChatResult:
        """Answer *question* within the conversation identified by *session_id*."""

        session_id = session_id or uuid.uuid4().hex
        session = self.sessions.get(session_id)
        req_id = uuid.uuid4().hex

        with session.lock:
            conversation = list(session.transcript())
            conversation.append(ChatMessage(role="user", content=question))
            emit_generation_request(
                req_id=req_id,
                chunk_index=0,
                shape="chat",
                prompt_preview=question,
                prompt_len=len(question),
                messages=len(conversation) + 1,
                session_id=session_id,
            )
            started = time.perf_counter()
            try:
                reply = self.client.complete(self.system_prompt, conversation)
            except GenerationServiceError as error:
                emit_exception(module=__name__, error=error, req_id=req_id, session_id=session_id)
                raise
            answer = (reply.content or "").strip()
            if not answer:
                raise GenerationServiceError("Chat completion returned an empty answer")
            session.record_turn(question, answer)
            emit_generation_result(
                req_id=req_id,
                chunk_index=0,
                duration_ms=(time.perf_counter() - started) * 1000.0,
                model_used=reply.model,
                pairs=0,
                fallback=False,
                session_id=session_id,
            )
            turns = len(session)

        return ChatResult(session_id=session_id, question=question, answer=answer, turns=turns)

    def shutdown(self) -> None:
        if self.persistence is not None:
            self.persistence.stop()


_SERVICE: Optional[QAGenerationService] = None
_SERVICE_LOCK = threading.Lock()


def get_qa_service() -> QAGenerationService:
    """FastAPI dependency returning the shared :class:`QAGenerationService` instance."""

    global _SERVICE

    if _SERVICE is None:
        with _SERVICE_LOCK:
            if _SERVICE is None:
                _SERVICE = QAGenerationService()
    return _SERVICE


def shutdown_qa_service() -> None:
    global _SERVICE

    with _SERVICE_LOCK:
        if _SERVICE is not None:
            _SERVICE.shutdown()
            _SERVICE = None


__all__ = [
    "ChatResult",
    "GenerationResult",
    "PROFILES",
    "PipelineProfile",
    "QAGenerationService",
    "get_profile",
    "get_qa_service",
    "shutdown_qa_service",
]
