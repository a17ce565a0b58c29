from __future__ import annotations

import json
from typing import Sequence

import pytest

from qagen.config import Settings
from qagen.errors import GenerationServiceError, InputDecodingError, UnknownProfileError
from qagen.generation import GenerationClient
from qagen.models import ChatMessage, GenerationReply, QAPair, ResponseShape, ToolCall
from qagen.pipeline import PROFILES, QAGenerationService, get_profile
from qagen.sessions import SessionStore


class ScriptedClient(GenerationClient):
    """Return one scripted reply per call; exceptions in the script are raised."""

    provider = "scripted"

    def __init__(self, replies: Sequence[object]) -> None:
        self._replies = list(replies)
        self.calls: list[dict[str, object]] = []

    @property
    def ready(self) -> bool:
        return True

    def complete(self, system_prompt, conversation, shape=None, *, function_name="", pairs_key=""):
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "conversation": list(conversation),
                "shape": shape,
                "function_name": function_name,
            }
        )
        reply = self._replies[len(self.calls) - 1]
        if isinstance(reply, Exception):
            raise reply
        return reply


class RecordingQueue:
    def __init__(self) -> None:
        self.items: list[tuple[str, str]] = []
        self.stopped = False

    def submit(self, question: str, answer: str) -> bool:
        self.items.append((question, answer))
        return True

    def stop(self) -> None:
        self.stopped = True


def _object_reply(*pairs: tuple[str, str]) -> GenerationReply:
    payload = {"qa_pairs": [{"question": q, "answer": a} for q, a in pairs]}
    return GenerationReply(content=json.dumps(payload), model="test-model")


def _three_chunk_text() -> str:
    # Each line is 1500 words, so a 2000 word budget puts every line in its own chunk.
    return "\n".join(" ".join([word] * 1500) for word in ("alpha", "beta", "gamma"))


def _service(client: GenerationClient, **overrides) -> QAGenerationService:
    settings = Settings(**overrides)
    return QAGenerationService(client=client, settings=settings, persistence=RecordingQueue())


def test_profiles_cover_every_shape():
    assert set(PROFILES) == {"qa_pairs", "pair_array", "function_call", "paragraph"}
    assert {profile.response_shape for profile in PROFILES.values()} == set(ResponseShape)
    assert get_profile("pair_array").max_words == 3000


def test_unknown_profile_raises():
    with pytest.raises(UnknownProfileError):
        get_profile("nope")


def test_failed_middle_chunk_is_skipped():
    client = ScriptedClient(
        [
            _object_reply(("Q1", "A1")),
            GenerationServiceError("boom"),
            _object_reply(("Q3a", "A3a"), ("Q3b", "A3b")),
        ]
    )
    service = _service(client)

    result = service.generate(_three_chunk_text(), "qa_pairs")

    assert len(client.calls) == 3
    assert result.chunk_count == 3
    assert result.failed_chunks == [1]
    assert result.pairs == [QAPair("Q1", "A1"), QAPair("Q3a", "A3a"), QAPair("Q3b", "A3b")]


def test_unparseable_reply_degrades_like_a_service_error():
    client = ScriptedClient(
        [
            GenerationReply(content="not json"),
            _object_reply(("Q2", "A2")),
            _object_reply(("Q3", "A3")),
        ]
    )
    service = _service(client)

    result = service.generate(_three_chunk_text())

    assert result.failed_chunks == [0]
    assert result.rows() == [("Q2", "A2"), ("Q3", "A3")]


@pytest.mark.parametrize(
    "bad_content",
    [
        '{"qa_pairs": [{"question": "Q", "answer": ' + "9" * 5000 + "}]}",
        "[" * 200000,
    ],
    ids=["oversized-integer", "deep-nesting"],
)
def test_undecodable_middle_reply_only_skips_that_chunk(bad_content):
    client = ScriptedClient(
        [
            _object_reply(("Q1", "A1")),
            GenerationReply(content=bad_content),
            _object_reply(("Q3", "A3")),
        ]
    )
    service = _service(client)

    result = service.generate(_three_chunk_text(), "qa_pairs")

    assert len(client.calls) == 3
    assert result.failed_chunks == [1]
    assert result.rows() == [("Q1", "A1"), ("Q3", "A3")]


def test_each_chunk_is_sent_with_the_profile_template():
    client = ScriptedClient([GenerationReply(tool_calls=()) for _ in range(3)])
    service = _service(client, bot_prompt="Be terse.")

    service.generate(_three_chunk_text(), "function_call")

    assert [call["shape"] for call in client.calls] == [ResponseShape.TOOL_CALL] * 3
    assert all(call["system_prompt"] == "Be terse." for call in client.calls)
    first = client.calls[0]["conversation"]
    assert len(first) == 1 and first[0].role == "user"
    assert "alpha" in first[0].content and "beta" not in first[0].content


def test_trailing_chunk_follows_flush_setting():
    text = "one two three"

    flushed = ScriptedClient([_object_reply(("Q", "A"))])
    assert _service(flushed).generate(text).chunk_count == 1

    dropped = ScriptedClient([])
    result = _service(dropped, flush_last_chunk=False).generate(text)
    assert result.chunk_count == 0
    assert dropped.calls == []


def test_paragraph_profile_splits_on_blank_lines():
    client = ScriptedClient(
        [GenerationReply(content="Q1\nA1"), GenerationReply(content="Q2\nA2")]
    )

    result = _service(client).generate("first para\n\nsecond para", "paragraph")

    assert result.rows() == [("Q1", "A1"), ("Q2", "A2")]


def test_generated_pairs_are_queued_for_persistence():
    client = ScriptedClient([_object_reply(("Q1", "A1"), ("Q2", "A2"))])
    service = _service(client)

    service.generate("short text")

    assert service.persistence.items == [("Q1", "A1"), ("Q2", "A2")]


def test_non_utf8_body_makes_no_generation_calls():
    client = ScriptedClient([_object_reply(("Q", "A"))])
    service = _service(client)

    with pytest.raises(InputDecodingError):
        service.generate_from_bytes(b"\xff\xfe\xfa")

    assert client.calls == []


def test_result_renders_csv():
    client = ScriptedClient([_object_reply(("Q1", "A1"), ("Q2", "A2"))])

    result = _service(client).generate_from_bytes("text under budget".encode("utf-8"))

    assert result.to_csv() == '"Question","Answer"\r\n"Q1","A1"\r\n"Q2","A2"\r\n'


def test_chat_carries_transcript_within_a_session():
    client = ScriptedClient(
        [GenerationReply(content="First answer"), GenerationReply(content="Second answer")]
    )
    service = _service(client)

    first = service.chat("First question?", "s1")
    second = service.chat("Second question?", "s1")

    assert first.answer == "First answer"
    assert second.turns == 4
    conversation = client.calls[1]["conversation"]
    assert conversation == [
        ChatMessage("user", "First question?"),
        ChatMessage("assistant", "First answer"),
        ChatMessage("user", "Second question?"),
    ]
    assert client.calls[1]["shape"] is None


def test_chat_sessions_are_isolated():
    client = ScriptedClient([GenerationReply(content="a"), GenerationReply(content="b")])
    service = _service(client)

    service.chat("one", "s1")
    service.chat("two", "s2")

    assert len(client.calls[1]["conversation"]) == 1


def test_chat_failure_propagates_and_leaves_transcript_untouched():
    client = ScriptedClient([GenerationServiceError("down")])
    sessions = SessionStore()
    service = QAGenerationService(
        client=client, settings=Settings(), persistence=RecordingQueue(), sessions=sessions
    )

    with pytest.raises(GenerationServiceError):
        service.chat("Anyone there?", "s1")

    assert len(sessions.get("s1")) == 0


def test_chat_without_session_id_starts_a_new_session():
    client = ScriptedClient([GenerationReply(content="hi")])

    result = _service(client).chat("hello")

    assert result.session_id
    assert result.turns == 2


def test_shutdown_stops_persistence():
    service = _service(ScriptedClient([]))

    service.shutdown()

    assert service.persistence.stopped
