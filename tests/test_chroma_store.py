from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from taskwatch_mcp.capture import VideoArtifact
from taskwatch_mcp.errors import TaskNotFound
from taskwatch_mcp.storage import ChromaStore, TaskStatus
from taskwatch_mcp.verification import VerificationResult


@dataclass
class _Record:
    document: str
    metadata: dict[str, Any]
    id: str


class StubCollection:
    def __init__(self) -> None:
        self.records: list[_Record] = []

    def add(self, *, documents, metadatas, ids) -> None:  # type: ignore[override]
        for document, metadata, record_id in zip(documents, metadatas, ids):
            assert all(value is not None for value in metadata.values())
            self.records.append(_Record(document=document, metadata=dict(metadata), id=record_id))

    def get(self, *, ids=None, where=None, limit=None):  # type: ignore[override]
        filtered = self.records
        if where:
            for key, value in where.items():
                filtered = [record for record in filtered if record.metadata.get(key) == value]
        if limit is not None:
            filtered = filtered[:limit]
        return {
            "ids": [record.id for record in filtered],
            "documents": [record.document for record in filtered],
            "metadatas": [record.metadata for record in filtered],
        }


class StubClient:
    def __init__(self) -> None:
        self.collections = defaultdict(StubCollection)

    def get_or_create_collection(self, name: str) -> StubCollection:
        return self.collections[name]


class TickingClock:
    def __init__(self) -> None:
        self.current = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


def _store(tmp_path: Path) -> ChromaStore:
    return ChromaStore(tmp_path, client_factory=lambda: StubClient(), clock=TickingClock())


def _result(task_id: int, *, verified: bool, confidence: int) -> VerificationResult:
    return VerificationResult(
        task_id=task_id,
        verified=verified,
        confidence=confidence,
        time_on_task_minutes=10,
        explanation="checked",
        video_duration=1200,
        model=None,
    )


def test_record_and_fetch_events(tmp_path: Path) -> None:
    store = _store(tmp_path)

    event = store.record_event(
        stream="task::1",
        event_type="note",
        body={"message": "started"},
        metadata={"level": "INFO", "skipped": None},
    )

    assert event.metadata["sequence"] == 1
    assert "skipped" not in event.metadata
    events = store.fetch_stream("task::1")
    assert len(events) == 1
    assert events[0].payload() == {"message": "started"}


def test_create_task_assigns_sequential_ids(tmp_path: Path) -> None:
    store = _store(tmp_path)

    first = store.create_task(title=" Report ", due_at="2025-02-01T09:00:00+00:00", min_duration=1800)
    second = store.create_task(
        title="Slides",
        due_at="2025-02-02T09:00:00",
        min_duration=600,
        description="Deck for review",
    )

    assert (first.task_id, second.task_id) == (1, 2)
    assert first.title == "Report"
    assert first.status is TaskStatus.PENDING
    assert store.get_task(2).description == "Deck for review"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"title": "", "due_at": "2025-02-01T09:00:00", "min_duration": 60},
        {"title": "x", "due_at": "tomorrow", "min_duration": 60},
        {"title": "x", "due_at": "2025-02-01T09:00:00", "min_duration": 0},
        {"title": "x", "due_at": "2025-02-01T09:00:00", "min_duration": 14_401},
    ],
)
def test_create_task_validates_input(tmp_path: Path, kwargs) -> None:
    with pytest.raises(ValueError):
        _store(tmp_path).create_task(**kwargs)


def test_get_unknown_task_raises(tmp_path: Path) -> None:
    with pytest.raises(TaskNotFound):
        _store(tmp_path).get_task(99)


def test_status_updates_and_filtering(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.create_task(title="A", due_at="2025-02-01T09:00:00", min_duration=60)
    store.create_task(title="B", due_at="2025-02-01T09:00:00", min_duration=60)

    store.set_task_status(1, TaskStatus.IN_PROGRESS)
    store.set_task_status(1, "completed")

    assert store.get_task(1).status is TaskStatus.COMPLETED
    assert [task.task_id for task in store.list_tasks("completed")] == [1]
    assert [task.task_id for task in store.list_tasks(TaskStatus.PENDING)] == [2]
    assert len(store.list_tasks()) == 2


def test_attach_recording(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.create_task(title="A", due_at="2025-02-01T09:00:00", min_duration=60)

    task = store.attach_recording(
        1,
        VideoArtifact(path=tmp_path / "task_1_combined.mp4", total_duration=61.5),
        recorded_duration=60.0,
    )

    reloaded = store.get_task(1)
    assert reloaded.video_path == str(tmp_path / "task_1_combined.mp4")
    assert reloaded.video_duration == 61.5
    assert reloaded.recorded_duration == 60.0
    assert reloaded.updated_at == task.updated_at
    assert reloaded.created_at < reloaded.updated_at


def test_verifications_are_append_only_latest_first(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.record_verification(_result(3, verified=False, confidence=40))
    store.record_verification(_result(3, verified=True, confidence=85))
    store.record_verification(_result(4, verified=True, confidence=70))

    history = store.list_verifications(3)

    assert [result.confidence for result in history] == [85, 40]
    assert store.latest_verification(3).verified is True
    assert store.latest_verification(5) is None


def test_credentials_set_and_clear(tmp_path: Path) -> None:
    store = _store(tmp_path)
    assert store.get_credential() is None

    store.set_credential("sk-first")
    store.set_credential("sk-second")
    assert store.get_credential() == "sk-second"

    store.clear_credential()
    assert store.get_credential() is None
