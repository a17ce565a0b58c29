"""Best-effort forwarding of generated pairs to an Airtable-style record store."""
from __future__ import annotations

import logging
import queue
import threading
from typing import Optional, Protocol
from urllib.parse import quote

import requests

from qagen.config import Settings
from qagen.errors import PersistenceError
from qagen.logging_config import AUDIT_LOGGER_NAME
from qagen.telemetry import emit_persistence_event

LOGGER = logging.getLogger(__name__)
AUDIT_LOGGER = logging.getLogger(AUDIT_LOGGER_NAME)

_STOP = object()


class PairRecorder(Protocol):
    """Anything able to store one question/answer pair."""

    def record(self, question: str, answer: str) -> None:
        ...


class AirtableRecorder:
    """Create one Airtable record per pair through the REST API."""

    def __init__(
        self,
        *,
        base_id: str,
        table_name: str,
        token: str | None,
        api_url: str = "https://api.airtable.com/v0",
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self.base_id = base_id
        self.table_name = table_name
        self._token = token
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings) -> "AirtableRecorder":
        return cls(
            base_id=settings.airtable_base_id,
            table_name=settings.airtable_table_name,
            token=settings.airtable_token(),
            api_url=settings.airtable_api_url,
        )

    @property
    def endpoint(self) -> str:
        return f"{self._api_url}/{quote(self.base_id, safe='')}/{quote(self.table_name, safe='')}"

    def record(self, question: str, answer: str) -> None:
        if not self._token:
            raise PersistenceError("No Airtable token configured")

        payload = {"fields": {"Question": question, "Answer": answer}}
        headers = {"Authorization": f"Bearer {self._token}"}
        try:
            response = self._session.post(
                self.endpoint, json=payload, headers=headers, timeout=self._timeout
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as error:
            raise PersistenceError(f"Airtable request failed: {error}", cause=error) from error
        LOGGER.info("Uploaded to airtable: %s", answer)


class PersistenceQueue:
    """Bounded queue drained by a single background worker.

    ``submit`` never blocks: when the queue is full the pair is dropped and a
    warning is logged. Recorder failures are logged and never reach callers.
    """

    def __init__(self, recorder: PairRecorder, *, maxsize: int = 1000, name: str = "airtable") -> None:
        self._recorder = recorder
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=maxsize)
        self._name = name
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self.recorded = 0
        self.failed = 0
        self.dropped = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._thread = threading.Thread(
                target=self._run, name=f"qagen-persist-{self._name}", daemon=True
            )
            self._thread.start()

    def submit(self, question: str, answer: str) -> bool:
        """Enqueue one pair; returns ``False`` when it had to be dropped."""

        if not self.running:
            self.start()
        try:
            self._queue.put_nowait((question, answer))
        except queue.Full:
            self.dropped += 1
            LOGGER.warning("Persistence queue full; dropping pair %r", question[:80])
            return False
        return True

    def join(self) -> None:
        """Block until every queued pair has been handled."""

        self._queue.join()

    def stop(self, timeout: float | None = 5.0) -> None:
        """Drain the queue and stop the worker."""

        with self._lock:
            thread = self._thread
            if thread is None:
                return
            try:
                self._queue.put(_STOP, timeout=timeout)
            except queue.Full:
                LOGGER.warning(
                    "Persistence queue still full after %ss; leaving %d pairs undelivered",
                    timeout,
                    self.pending,
                )
            else:
                thread.join(timeout)
            if thread.is_alive():
                LOGGER.warning("Persistence worker did not stop within %ss", timeout)
            else:
                self._thread = None
        emit_persistence_event(
            "persistence.stop", table=self._name, queued=self.pending
        )

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                question, answer = item  # type: ignore[misc]
                self._handle(question, answer)
            finally:
                self._queue.task_done()

    def _handle(self, question: str, answer: str) -> None:
        try:
            self._recorder.record(question, answer)
        except PersistenceError as error:
            self.failed += 1
            emit_persistence_event(
                "persistence.record", table=self._name, queued=self.pending, error=error
            )
            return
        except Exception as error:  # pragma: no cover - unexpected recorder failure
            self.failed += 1
            LOGGER.exception("Unexpected error while recording pair")
            emit_persistence_event(
                "persistence.record", table=self._name, queued=self.pending, error=error
            )
            return
        self.recorded += 1
        AUDIT_LOGGER.info({"event": "record", "table": self._name, "question": question})


def create_persistence_queue(settings: Settings) -> Optional[PersistenceQueue]:
    """Return a queue for the configured record store, or ``None`` when disabled."""

    if not settings.persist_enabled:
        return None
    recorder = AirtableRecorder.from_settings(settings)
    if not settings.airtable_token():
        LOGGER.warning(
            "Persistence enabled but no token found for credential %r; records will fail",
            settings.airtable_token_name,
        )
    return PersistenceQueue(
        recorder, maxsize=settings.persist_queue_size, name=settings.airtable_table_name
    )


__all__ = [
    "AirtableRecorder",
    "PairRecorder",
    "PersistenceQueue",
    "create_persistence_queue",
]
