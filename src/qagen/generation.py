"""Clients for the hosted chat-completion service that writes the QA pairs."""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from openai import OpenAI, OpenAIError

from qagen.config import Settings, get_settings
from qagen.errors import GenerationServiceError
from qagen.models import ChatMessage, GenerationReply, ResponseShape, ToolCall
from qagen.normalizer import DEFAULT_FUNCTION_NAME, DEFAULT_PAIRS_KEY
from qagen.telemetry import emit_generation_client_init

LOGGER = logging.getLogger(__name__)

MOCK_QUESTION = "MOCK_QUESTION"
MOCK_ANSWER_PREFIX = "MOCK_ANSWER: "


@dataclass(slots=True)
class ClientStatus:
    """Structured status information about the configured generation client."""

    ready: bool
    provider: str
    model_name: str
    error: Optional[str] = None


def build_tool_schema(function_name: str, pairs_key: str = DEFAULT_PAIRS_KEY) -> dict[str, Any]:
    """Describe the single function the model may call to hand back its pairs."""

    return {
        "type": "function",
        "function": {
            "name": function_name,
            "description": "Record the question and answer pairs generated from the text.",
            "parameters": {
                "type": "object",
                "properties": {
                    pairs_key: {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "question": {"type": "string"},
                                "answer": {"type": "string"},
                            },
                            "required": ["question", "answer"],
                        },
                    }
                },
                "required": [pairs_key],
            },
        },
    }


class GenerationClient(ABC):
    """Common interface exposed by chat-completion backends."""

    provider = "base"

    @abstractmethod
    def complete(
        self,
        system_prompt: str,
        conversation: Sequence[ChatMessage],
        shape: ResponseShape | None = None,
        *,
        function_name: str = DEFAULT_FUNCTION_NAME,
        pairs_key: str = DEFAULT_PAIRS_KEY,
    ) -> GenerationReply:
        """Send one chat-completion request and return the reply."""

    @property
    def model_name(self) -> str:
        return "stub"

    @property
    def ready(self) -> bool:
        return False

    @property
    def last_error(self) -> Optional[str]:
        return None

    def status(self) -> ClientStatus:
        return ClientStatus(
            ready=self.ready,
            provider=self.provider,
            model_name=self.model_name,
            error=self.last_error,
        )


class StubGenerationClient(GenerationClient):
    """Offline client echoing the last user message as a single pair."""

    provider = "stub"

    def __init__(self, *, reason: str | None = None) -> None:
        self._reason = reason or "Generation stub is active (QAGEN_STUB enabled)."

    @property
    def ready(self) -> bool:
        return True

    @property
    def last_error(self) -> Optional[str]:
        return self._reason

    def complete(
        self,
        system_prompt: str,
        conversation: Sequence[ChatMessage],
        shape: ResponseShape | None = None,
        *,
        function_name: str = DEFAULT_FUNCTION_NAME,
        pairs_key: str = DEFAULT_PAIRS_KEY,
    ) -> GenerationReply:
        user_text = next(
            (message.content for message in reversed(conversation) if message.role == "user"), ""
        )
        answer = MOCK_ANSWER_PREFIX + " ".join(user_text.split())[:100]
        if shape is ResponseShape.OBJECT:
            content = json.dumps({pairs_key: [{"question": MOCK_QUESTION, "answer": answer}]})
            return GenerationReply(content=content, model=self.model_name)
        if shape is ResponseShape.PAIRS:
            content = json.dumps({pairs_key: [[MOCK_QUESTION, answer]]})
            return GenerationReply(content=content, model=self.model_name)
        if shape is ResponseShape.TOOL_CALL:
            arguments = json.dumps({pairs_key: [{"question": MOCK_QUESTION, "answer": answer}]})
            return GenerationReply(
                tool_calls=(ToolCall(name=function_name, arguments=arguments),),
                finish_reason="tool_calls",
                model=self.model_name,
            )
        if shape is ResponseShape.DELIMITED:
            return GenerationReply(content=f"{MOCK_QUESTION}\n{answer}", model=self.model_name)
        return GenerationReply(content=answer, model=self.model_name)


class OpenAIChatClient(GenerationClient):
    """Chat-completion client backed by the ``openai`` SDK.

    The SDK client is created lazily on the first request so that a missing
    API key surfaces as a :class:`GenerationServiceError` for that request
    instead of failing at import time.
    """

    provider = "openai"

    def __init__(
        self,
        *,
        model: str,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        temperature: float | None = None,
        client: Any | None = None,
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._base_url = base_url
        self._timeout = timeout
        self._temperature = temperature
        self._client = client
        self._lock = threading.RLock()
        self._init_error: Optional[Exception] = None

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def ready(self) -> bool:
        return self._init_error is None

    @property
    def last_error(self) -> Optional[str]:
        if self._init_error is None:
            return None
        return str(self._init_error)

    def status(self) -> ClientStatus:
        """Build the SDK client if needed so a missing credential shows up right away."""

        try:
            self._ensure_client()
        except GenerationServiceError:
            LOGGER.warning("chat-completion client unavailable: %s", self.last_error)
        return super().status()

    def _ensure_client(self) -> Any:
        if self._client is not None:
            return self._client
        with self._lock:
            if self._client is not None:
                return self._client

            options: dict[str, Any] = {"max_retries": 0}
            if self._api_key:
                options["api_key"] = self._api_key
            if self._base_url:
                options["base_url"] = self._base_url
            # Without a configured timeout the SDK default applies.
            if self._timeout is not None:
                options["timeout"] = self._timeout

            try:
                self._client = OpenAI(**options)
            except OpenAIError as error:
                self._init_error = error
                raise GenerationServiceError(
                    "Failed to initialise the chat-completion client", cause=error
                ) from error
            self._init_error = None
            LOGGER.info("chat-completion client ready for model %s", self._model)
            return self._client

    def complete(
        self,
        system_prompt: str,
        conversation: Sequence[ChatMessage],
        shape: ResponseShape | None = None,
        *,
        function_name: str = DEFAULT_FUNCTION_NAME,
        pairs_key: str = DEFAULT_PAIRS_KEY,
    ) -> GenerationReply:
        client = self._ensure_client()

        messages = [ChatMessage(role="system", content=system_prompt).to_payload()]
        messages.extend(message.to_payload() for message in conversation)
        request: dict[str, Any] = {"model": self._model, "messages": messages}
        if self._temperature is not None:
            request["temperature"] = self._temperature
        if shape in (ResponseShape.OBJECT, ResponseShape.PAIRS):
            request["response_format"] = {"type": "json_object"}
        elif shape is ResponseShape.TOOL_CALL:
            request["tools"] = [build_tool_schema(function_name, pairs_key)]
            request["tool_choice"] = "auto"

        try:
            response = client.chat.completions.create(**request)
        except OpenAIError as error:
            LOGGER.error("Failed to create chat completion: %s", error)
            raise GenerationServiceError("Chat completion request failed", cause=error) from error

        if not response.choices:
            raise GenerationServiceError("Chat completion returned no choices")

        choice = response.choices[0]
        message = choice.message
        tool_calls = tuple(
            ToolCall(name=call.function.name, arguments=call.function.arguments or "")
            for call in (message.tool_calls or [])
            if getattr(call, "function", None) is not None
        )
        return GenerationReply(
            content=message.content,
            tool_calls=tool_calls,
            finish_reason=choice.finish_reason,
            model=getattr(response, "model", None) or self._model,
        )


_GLOBAL_CLIENT: Optional[GenerationClient] = None
_GLOBAL_LOCK = threading.Lock()


def create_generation_client(settings: Settings) -> GenerationClient:
    """Build the client described by *settings* without caching it."""

    if settings.use_stub:
        LOGGER.warning("QAGEN_STUB flag enabled; using stub replies only.")
        client: GenerationClient = StubGenerationClient()
    else:
        client = OpenAIChatClient(
            model=settings.model,
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            timeout=settings.generation_timeout,
            temperature=settings.temperature,
        )
    emit_generation_client_init(
        provider=client.provider,
        model=client.model_name,
        ready=client.ready,
        timeout=settings.generation_timeout,
        reason=client.last_error,
    )
    return client


def get_generation_client() -> GenerationClient:
    """Return the lazily initialised process-wide generation client."""

    global _GLOBAL_CLIENT

    if _GLOBAL_CLIENT is not None:
        return _GLOBAL_CLIENT
    with _GLOBAL_LOCK:
        if _GLOBAL_CLIENT is None:
            _GLOBAL_CLIENT = create_generation_client(get_settings())
    return _GLOBAL_CLIENT


def get_generation_status() -> ClientStatus:
    return get_generation_client().status()


__all__ = [
    "ClientStatus",
    "GenerationClient",
    "GenerationReply",
    "OpenAIChatClient",
    "StubGenerationClient",
    "build_tool_schema",
    "create_generation_client",
    "get_generation_client",
    "get_generation_status",
]
