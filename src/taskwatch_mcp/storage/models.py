"""Data models for persistent tracking."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any

MIN_TASK_DURATION = 1
MAX_TASK_DURATION = 14_400


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True)
class TaskRecord:
    task_id: int
    title: str
    due_at: str
    min_duration: int
    status: TaskStatus
    created_at: datetime
    updated_at: datetime
    description: str | None = None
    video_path: str | None = None
    video_duration: float | None = None
    recorded_duration: float | None = None

    @property
    def min_duration_minutes(self) -> float:
        return self.min_duration / 60

    def to_document(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["status"] = self.status.value
        payload.pop("created_at")
        payload.pop("updated_at")
        return payload

    @classmethod
    def from_document(cls, doc: dict[str, Any], *, created_at: datetime, updated_at: datetime) -> "TaskRecord":
        return cls(
            task_id=int(doc["task_id"]),
            title=doc["title"],
            due_at=doc["due_at"],
            min_duration=int(doc["min_duration"]),
            status=TaskStatus(doc.get("status", TaskStatus.PENDING.value)),
            created_at=created_at,
            updated_at=updated_at,
            description=doc.get("description"),
            video_path=doc.get("video_path"),
            video_duration=doc.get("video_duration"),
            recorded_duration=doc.get("recorded_duration"),
        )

    def to_dict(self) -> dict[str, Any]:
        payload = self.to_document()
        payload["created_at"] = self.created_at.isoformat()
        payload["updated_at"] = self.updated_at.isoformat()
        return payload


__all__ = ["MAX_TASK_DURATION", "MIN_TASK_DURATION", "TaskRecord", "TaskStatus"]
