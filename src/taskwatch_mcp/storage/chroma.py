"""Chroma-based persistence layer."""

from __future__ import annotations

import json
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from ..capture import VideoArtifact
from ..errors import TaskNotFound
from ..verification.models import VerificationResult
from .models import MAX_TASK_DURATION, MIN_TASK_DURATION, TaskRecord, TaskStatus

logger = logging.getLogger(__name__)

TASK_STREAM = "task::{task_id}"
VERIFICATION_STREAM = "verification::{task_id}"
CREDENTIAL_STREAM = "credential::{name}"
JUDGE_CREDENTIAL = "judge"


class ChromaUnavailableError(RuntimeError):
    """Raised when the Chroma client cannot be constructed."""


class CollectionProtocol(Protocol):
    """Protocol for the minimal Chroma collection API used by TaskWatch."""

    def add(
        self,
        *,
        documents: Iterable[str],
        metadatas: Iterable[dict[str, Any]],
        ids: Iterable[str],
    ) -> None:
        ...

    def get(
        self,
        *,
        ids: Iterable[str] | None = None,
        where: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> dict[str, list[Any]]:
        ...


class ClientProtocol(Protocol):
    """Protocol for the minimal Chroma client API used by TaskWatch."""

    def get_or_create_collection(self, name: str) -> CollectionProtocol:
        ...


@dataclass(slots=True)
class ChromaEvent:
    """Represents a stored event in Chroma."""

    id: str
    stream: str
    event_type: str
    document: str
    metadata: dict[str, Any]
    timestamp: datetime

    def payload(self) -> dict[str, Any]:
        return json.loads(self.document)


def _scalar_metadata(values: dict[str, Any]) -> dict[str, Any]:
    # Chroma metadata only accepts str/int/float/bool values.
    return {key: value for key, value in values.items() if value is not None}


class ChromaStore:
    """Task, verification and credential records kept as append-only Chroma events.

    Every mutation appends an event to a per-entity stream; the latest event of a
    stream is the entity's current state.
    """

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = "taskwatch_events",
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._client: ClientProtocol | None = None
        self._collection: CollectionProtocol | None = None
        self._counters: dict[str, int] = defaultdict(int)

    def _default_client_factory(self) -> ClientProtocol:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise ChromaUnavailableError("chromadb package is not installed") from exc

        return chromadb.PersistentClient(path=str(self._path))

    def _ensure_collection(self) -> CollectionProtocol:
        if self._collection is None:
            client = self._client or self._client_factory()
            self._client = client
            self._collection = client.get_or_create_collection(self._collection_name)
        return self._collection

    def _convert_result(self, result: dict[str, list[Any]]) -> list[ChromaEvent]:
        events: list[ChromaEvent] = []
        ids = result.get("ids", [])
        documents = result.get("documents", [])
        metadatas = result.get("metadatas", [])
        for event_id, document, metadata in zip(ids, documents, metadatas):
            timestamp_raw = metadata.get("timestamp")
            timestamp = (
                datetime.fromisoformat(timestamp_raw)
                if isinstance(timestamp_raw, str)
                else self._clock()
            )
            events.append(
                ChromaEvent(
                    id=event_id,
                    stream=metadata.get("stream", ""),
                    event_type=metadata.get("event_type", ""),
                    document=document,
                    metadata=metadata,
                    timestamp=timestamp,
                )
            )
        events.sort(key=lambda event: (event.timestamp, event.metadata.get("sequence", 0)))
        return events

    def ping(self) -> bool:
        """Verify that the underlying collection can be obtained."""

        self._ensure_collection()
        return True

    def record_event(
        self,
        *,
        stream: str,
        event_type: str,
        body: Any,
        metadata: dict[str, Any] | None = None,
    ) -> ChromaEvent:
        collection = self._ensure_collection()
        counter = self._counters[stream] = self._counters[stream] + 1
        event_id = f"{stream}:{uuid.uuid4().hex}"
        timestamp = self._clock()

        document = body if isinstance(body, str) else json.dumps(body)
        record_metadata = {
            "stream": stream,
            "event_type": event_type,
            "timestamp": timestamp.isoformat(),
            "sequence": counter,
        }
        if metadata:
            record_metadata.update(_scalar_metadata(metadata))

        collection.add(
            documents=[document],
            metadatas=[record_metadata],
            ids=[event_id],
        )

        return ChromaEvent(
            id=event_id,
            stream=stream,
            event_type=event_type,
            document=document,
            metadata=record_metadata,
            timestamp=timestamp,
        )

    def fetch_stream(self, stream: str, *, limit: int | None = None) -> list[ChromaEvent]:
        collection = self._ensure_collection()
        result = collection.get(where={"stream": stream}, limit=limit)
        return self._convert_result(result)

    def search_events(
        self,
        *,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[ChromaEvent]:
        collection = self._ensure_collection()
        result = collection.get(where=filters, limit=limit)
        events = self._convert_result(result)
        return events[:limit] if limit else events

    # Tasks -----------------------------------------------------------------

    def create_task(
        self,
        *,
        title: str,
        due_at: str,
        min_duration: int,
        description: str | None = None,
    ) -> TaskRecord:
        title = title.strip()
        if not title:
            raise ValueError("Task title must not be empty")
        if isinstance(min_duration, bool) or not MIN_TASK_DURATION <= int(min_duration) <= MAX_TASK_DURATION:
            raise ValueError(
                f"min_duration must be between {MIN_TASK_DURATION} and {MAX_TASK_DURATION} seconds"
            )
        try:
            due = datetime.fromisoformat(due_at)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"due_at must be an ISO-8601 timestamp, got {due_at!r}") from exc

        created = self.search_events(filters={"event_type": "task_created"})
        task_id = max((int(event.metadata.get("task_id", 0)) for event in created), default=0) + 1
        timestamp = self._clock()
        record = TaskRecord(
            task_id=task_id,
            title=title,
            due_at=due.isoformat(),
            min_duration=int(min_duration),
            status=TaskStatus.PENDING,
            created_at=timestamp,
            updated_at=timestamp,
            description=(description or "").strip() or None,
        )
        self._append_task_event(record, "task_created")
        logger.info("Created task", extra={"task_id": task_id, "min_duration": record.min_duration})
        return record

    def get_task(self, task_id: int) -> TaskRecord:
        events = self.fetch_stream(TASK_STREAM.format(task_id=task_id))
        if not events:
            raise TaskNotFound(task_id)
        return TaskRecord.from_document(
            events[-1].payload(),
            created_at=events[0].timestamp,
            updated_at=events[-1].timestamp,
        )

    def list_tasks(self, status: TaskStatus | str | None = None) -> list[TaskRecord]:
        wanted = TaskStatus(status) if status else None
        created = self.search_events(filters={"event_type": "task_created"})
        tasks: list[TaskRecord] = []
        for event in created:
            task = self.get_task(int(event.metadata["task_id"]))
            if wanted is None or task.status is wanted:
                tasks.append(task)
        tasks.sort(key=lambda task: task.task_id)
        return tasks

    def set_task_status(self, task_id: int, status: TaskStatus | str) -> TaskRecord:
        task = self.get_task(task_id)
        task.status = TaskStatus(status)
        return self._save_task(task)

    def attach_recording(
        self,
        task_id: int,
        artifact: VideoArtifact,
        *,
        recorded_duration: float,
    ) -> TaskRecord:
        task = self.get_task(task_id)
        task.video_path = str(artifact.path)
        task.video_duration = artifact.total_duration
        task.recorded_duration = recorded_duration
        return self._save_task(task)

    def _save_task(self, task: TaskRecord) -> TaskRecord:
        event = self._append_task_event(task, "task_updated")
        task.updated_at = event.timestamp
        return task

    def _append_task_event(self, task: TaskRecord, event_type: str) -> ChromaEvent:
        return self.record_event(
            stream=TASK_STREAM.format(task_id=task.task_id),
            event_type=event_type,
            body=task.to_document(),
            metadata={"task_id": task.task_id, "status": task.status.value},
        )

    # Verifications ---------------------------------------------------------

    def record_verification(self, result: VerificationResult) -> VerificationResult:
        self.record_event(
            stream=VERIFICATION_STREAM.format(task_id=result.task_id),
            event_type="verification_recorded",
            body=result.model_dump_json(),
            metadata={
                "task_id": result.task_id,
                "verified": result.verified,
                "confidence": result.confidence,
                "model": result.model,
            },
        )
        return result

    def list_verifications(self, task_id: int) -> list[VerificationResult]:
        """Return every verification for ``task_id``, newest first."""

        events = self.fetch_stream(VERIFICATION_STREAM.format(task_id=task_id))
        return [VerificationResult.model_validate_json(event.document) for event in reversed(events)]

    def latest_verification(self, task_id: int) -> VerificationResult | None:
        history = self.list_verifications(task_id)
        return history[0] if history else None

    # Credentials -----------------------------------------------------------

    def set_credential(self, value: str, *, name: str = JUDGE_CREDENTIAL) -> None:
        self.record_event(
            stream=CREDENTIAL_STREAM.format(name=name),
            event_type="credential_set",
            body=json.dumps({"value": value}),
            metadata={"credential": name},
        )

    def clear_credential(self, *, name: str = JUDGE_CREDENTIAL) -> None:
        self.record_event(
            stream=CREDENTIAL_STREAM.format(name=name),
            event_type="credential_cleared",
            body=json.dumps({"value": None}),
            metadata={"credential": name},
        )

    def get_credential(self, *, name: str = JUDGE_CREDENTIAL) -> str | None:
        events = self.fetch_stream(CREDENTIAL_STREAM.format(name=name))
        if not events or events[-1].event_type == "credential_cleared":
            return None
        return events[-1].payload().get("value")


__all__ = ["ChromaEvent", "ChromaStore", "ChromaUnavailableError", "JUDGE_CREDENTIAL"]
