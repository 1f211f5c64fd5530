"""Recording session state machine."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable

from ..capture import CaptureCoordinator, CaptureHandle, VideoArtifact
from ..errors import CaptureFailed, NoActiveSession, SessionAlreadyActive, TaskWatchError
from .duration import DurationAccumulator

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"
    STOPPING = "stopping"
    STOPPED = "stopped"


ACTIVE_STATES = frozenset({SessionState.RECORDING, SessionState.PAUSED, SessionState.STOPPING})
CONTROLLABLE_STATES = frozenset({SessionState.RECORDING, SessionState.PAUSED})


@dataclass(frozen=True, slots=True)
class RecordingSession:
    """Published view of the current (or most recent) session."""

    task_id: int | None
    state: SessionState
    accumulated_duration: float
    started_at: float | None
    paused_at: float | None

    def duration_at(self, now: float) -> float:
        if self.state is SessionState.RECORDING and self.started_at is not None:
            return self.accumulated_duration + max(0.0, now - self.started_at)
        return self.accumulated_duration


IDLE_SESSION = RecordingSession(
    task_id=None,
    state=SessionState.IDLE,
    accumulated_duration=0.0,
    started_at=None,
    paused_at=None,
)


class SessionController:
    """Own the single recording session and drive the capture coordinator.

    Transitions are serialized by an ``asyncio.Lock``; coordinator calls are the only
    points where a transition suspends. Callers read state through ``session`` and
    ``current_duration()``, both backed by one immutable ``RecordingSession`` that is
    replaced wholesale after every step. Requests that cannot apply to the current
    state are rejected before waiting on the lock, so a Start issued while a Stop is
    finalizing fails fast instead of queueing.
    """

    def __init__(
        self,
        coordinator: CaptureCoordinator,
        *,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._coordinator = coordinator
        self._clock = clock or time.monotonic
        self._accumulator = DurationAccumulator(self._clock)
        self._lock = asyncio.Lock()
        self._session = IDLE_SESSION
        self._handle: CaptureHandle | None = None
        self._last_artifact: VideoArtifact | None = None
        self._last_task_id: int | None = None

    @property
    def session(self) -> RecordingSession:
        return self._session

    @property
    def coordinator(self) -> CaptureCoordinator:
        return self._coordinator

    @property
    def last_artifact(self) -> VideoArtifact | None:
        return self._last_artifact

    @property
    def last_task_id(self) -> int | None:
        return self._last_task_id

    def current_duration(self) -> float:
        return self._session.duration_at(self._clock())

    def status(self) -> dict[str, Any]:
        session = self._session
        payload: dict[str, Any] = {
            "recording": session.state in CONTROLLABLE_STATES,
            "paused": session.state is SessionState.PAUSED,
            "duration": session.duration_at(self._clock()),
            "state": session.state.value,
        }
        if session.task_id is not None:
            payload["task_id"] = session.task_id
        return payload

    def _publish(self, state: SessionState, *, task_id: int | None = None) -> RecordingSession:
        snapshot = self._accumulator.snapshot
        self._session = RecordingSession(
            task_id=task_id if task_id is not None else self._session.task_id,
            state=state,
            accumulated_duration=snapshot.accumulated,
            started_at=snapshot.started_at,
            paused_at=snapshot.paused_at,
        )
        return self._session

    def _require_idle(self) -> None:
        session = self._session
        if session.state in ACTIVE_STATES:
            raise SessionAlreadyActive(session.task_id)

    def _require_controllable(self, operation: str) -> RecordingSession:
        session = self._session
        if session.state not in CONTROLLABLE_STATES or self._handle is None:
            raise NoActiveSession(operation)
        return session

    async def start(self, task_id: int) -> RecordingSession:
        """Begin capturing for ``task_id``; the controller stays Idle if capture fails."""

        self._require_idle()
        async with self._lock:
            self._require_idle()
            targets = await self._coordinator.select_targets(task_id)
            handle = await self._coordinator.begin(targets)

            self._handle = handle
            self._last_artifact = None
            self._last_task_id = task_id
            self._accumulator.reset()
            self._accumulator.start()
            session = self._publish(SessionState.RECORDING, task_id=task_id)

        logger.info(
            "Recording started",
            extra={"task_id": task_id, "job_id": handle.job_id, "sources": targets.source_count},
        )
        return session

    async def pause(self) -> RecordingSession:
        self._require_controllable("pause")
        async with self._lock:
            session = self._require_controllable("pause")
            if session.state is SessionState.PAUSED:
                return session

            before = self._accumulator.snapshot
            self._accumulator.pause()
            self._publish(SessionState.PAUSED)
            try:
                await self._coordinator.pause(self._handle)
            except Exception:
                self._accumulator.restore(before)
                self._publish(SessionState.RECORDING)
                logger.exception("Pause failed; session left recording", extra={"task_id": session.task_id})
                raise
            session = self._session

        logger.info(
            "Recording paused",
            extra={"task_id": session.task_id, "duration": session.accumulated_duration},
        )
        return session

    async def resume(self) -> RecordingSession:
        self._require_controllable("resume")
        async with self._lock:
            session = self._require_controllable("resume")
            if session.state is SessionState.RECORDING:
                return session

            await self._coordinator.resume(self._handle)
            self._accumulator.start()
            session = self._publish(SessionState.RECORDING)

        logger.info("Recording resumed", extra={"task_id": session.task_id})
        return session

    async def stop(self) -> VideoArtifact:
        """Freeze duration, then wait for the coordinator to finalize the artifact.

        Duration stops advancing before any engine work starts. If finalization fails
        or is cancelled, capture resources are released, the session is left Stopped
        without an artifact and the error propagates.
        """

        self._require_controllable("stop")
        async with self._lock:
            session = self._require_controllable("stop")
            handle = self._handle
            total = self._accumulator.freeze()
            self._publish(SessionState.STOPPING)
            logger.info(
                "Stopping recording",
                extra={"task_id": session.task_id, "duration": total},
            )

            try:
                artifact = await self._coordinator.finalize(handle)
            except asyncio.CancelledError:
                await self._release(handle)
                raise
            except TaskWatchError:
                await self._release(handle)
                raise
            except Exception as exc:
                await self._release(handle)
                raise CaptureFailed(f"Failed to finalize recording: {exc}") from exc

            self._handle = None
            self._last_artifact = artifact
            self._session = replace(self._publish(SessionState.IDLE), task_id=None)

        logger.info(
            "Recording stopped",
            extra={
                "task_id": session.task_id,
                "duration": total,
                "path": str(artifact.path),
                "video_duration": artifact.total_duration,
            },
        )
        return artifact

    async def _release(self, handle: CaptureHandle | None) -> None:
        self._handle = None
        self._publish(SessionState.STOPPED)
        if handle is None:
            return
        try:
            await self._coordinator.abort(handle)
        except Exception:
            logger.exception("Failed to release capture resources", extra={"job_id": handle.job_id})
        logger.error(
            "Recording finalization failed",
            extra={"task_id": self._session.task_id, "job_id": handle.job_id},
        )


__all__ = ["SessionController", "SessionState", "RecordingSession", "ACTIVE_STATES"]
