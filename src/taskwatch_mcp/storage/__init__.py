"""Storage abstractions for TaskWatch."""

from .chroma import JUDGE_CREDENTIAL, ChromaEvent, ChromaStore, ChromaUnavailableError
from .models import MAX_TASK_DURATION, MIN_TASK_DURATION, TaskRecord, TaskStatus

__all__ = [
    "ChromaEvent",
    "ChromaStore",
    "ChromaUnavailableError",
    "JUDGE_CREDENTIAL",
    "MAX_TASK_DURATION",
    "MIN_TASK_DURATION",
    "TaskRecord",
    "TaskStatus",
]
