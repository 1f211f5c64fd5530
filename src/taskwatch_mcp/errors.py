"""Error taxonomy shared by the session and verification layers."""

from __future__ import annotations


class TaskWatchError(RuntimeError):
    """Base class for TaskWatch errors surfaced to callers."""


class SessionAlreadyActive(TaskWatchError):
    """Raised when Start is requested while another session is still active."""

    def __init__(self, task_id: int | None) -> None:
        super().__init__(f"A recording session is already active for task {task_id}")
        self.task_id = task_id


class NoActiveSession(TaskWatchError):
    """Raised when Pause, Resume or Stop is requested without an active session."""

    def __init__(self, operation: str) -> None:
        super().__init__(f"Cannot {operation}: no recording session is in progress")
        self.operation = operation


class DeviceUnavailable(TaskWatchError):
    """Raised when no display or webcam can be captured."""


class CaptureFailed(TaskWatchError):
    """Raised when the capture engine fails while running or finalizing."""


class ArtifactUnreadable(TaskWatchError):
    """Raised when a recorded video cannot be opened, probed or seeked."""


class TaskNotFound(TaskWatchError):
    """Raised when a task id does not resolve in the task store."""

    def __init__(self, task_id: int) -> None:
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


class MissingCredential(TaskWatchError):
    """Raised when verification is requested without a configured API key."""


class JudgeError(TaskWatchError):
    """Base class for failures of the external judge service itself."""


class JudgeTimeout(JudgeError):
    """Raised when the judge does not answer within the configured timeout."""


class JudgeRequestFailed(JudgeError):
    """Raised when every configured judge model rejected or failed the request."""


class JudgeResponseInvalid(TaskWatchError):
    """Raised when the judge answered but the answer does not match the verdict schema."""

    def __init__(self, message: str, *, raw: str | None = None) -> None:
        super().__init__(message)
        self.raw = raw


class VerificationInProgress(TaskWatchError):
    """Raised when a task already has a verification in flight."""

    def __init__(self, task_id: int) -> None:
        super().__init__(f"Verification already in progress for task {task_id}")
        self.task_id = task_id


class InsufficientDuration(UserWarning):
    """Warns that a recording is shorter than the task's minimum duration."""


__all__ = [
    "TaskWatchError",
    "SessionAlreadyActive",
    "NoActiveSession",
    "DeviceUnavailable",
    "CaptureFailed",
    "ArtifactUnreadable",
    "TaskNotFound",
    "MissingCredential",
    "JudgeError",
    "JudgeTimeout",
    "JudgeRequestFailed",
    "JudgeResponseInvalid",
    "VerificationInProgress",
    "InsufficientDuration",
]
