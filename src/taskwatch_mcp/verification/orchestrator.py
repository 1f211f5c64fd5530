"""Turn a finished recording into a persisted verdict."""

from __future__ import annotations

import asyncio
import logging
import warnings
from typing import Callable, Protocol

from ..capture import VideoArtifact
from ..errors import InsufficientDuration, JudgeTimeout, MissingCredential, VerificationInProgress
from ..storage.models import TaskRecord, TaskStatus
from .judge import JudgeClient, JudgeRequest
from .models import VerificationResult, decode_verdict
from .sampling import FrameSample, FrameSampler

logger = logging.getLogger(__name__)

DEFAULT_MIN_TIME_ON_TASK_RATIO = 0.5


class VerificationStore(Protocol):
    def record_verification(self, result: VerificationResult) -> VerificationResult:
        ...

    def set_task_status(self, task_id: int, status: TaskStatus | str) -> TaskRecord:
        ...


class VerificationOrchestrator:
    """Sample frames, ask the judge, validate the verdict and persist it.

    At most one verification runs per task id. Failures propagate before anything is
    written, so a task's status only changes once a verdict has been recorded.
    """

    def __init__(
        self,
        sampler: FrameSampler,
        judge: JudgeClient,
        store: VerificationStore,
        credentials: Callable[[], str | None],
        *,
        sample_interval: float = 15.0,
        min_time_on_task_ratio: float = DEFAULT_MIN_TIME_ON_TASK_RATIO,
        timeout: float = 120.0,
    ) -> None:
        self._sampler = sampler
        self._judge = judge
        self._store = store
        self._credentials = credentials
        self.sample_interval = sample_interval
        self.min_time_on_task_ratio = min_time_on_task_ratio
        self.timeout = timeout
        self._in_flight: set[int] = set()

    def in_flight(self, task_id: int) -> bool:
        return task_id in self._in_flight

    async def verify(self, task: TaskRecord, artifact: VideoArtifact) -> VerificationResult:
        if task.task_id in self._in_flight:
            raise VerificationInProgress(task.task_id)
        self._in_flight.add(task.task_id)
        try:
            return await self._verify(task, artifact)
        finally:
            self._in_flight.discard(task.task_id)

    async def _verify(self, task: TaskRecord, artifact: VideoArtifact) -> VerificationResult:
        if artifact.total_duration < task.min_duration:
            message = (
                f"Recording for task {task.task_id} is {artifact.total_duration:.0f}s, "
                f"shorter than the {task.min_duration}s minimum"
            )
            warnings.warn(InsufficientDuration(message), stacklevel=3)
            logger.warning(message, extra={"task_id": task.task_id})

        api_key = self._credentials()
        if not api_key:
            raise MissingCredential("No judge API key configured; call set_api_key first")

        frames, interval = await asyncio.to_thread(self._collect_frames, artifact)
        request = JudgeRequest(
            task_title=task.title,
            task_description=task.description,
            required_minutes=round(task.min_duration_minutes),
            video_duration_seconds=artifact.total_duration,
            sample_interval_seconds=interval,
            frames=frames,
        )
        logger.info(
            "Submitting task for verification",
            extra={"task_id": task.task_id, "frames": len(frames), "interval": interval},
        )
        try:
            reply = await asyncio.wait_for(
                self._judge.evaluate(request, api_key=api_key),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise JudgeTimeout(f"Judge did not answer within {self.timeout:.0f}s") from exc

        verdict = decode_verdict(reply.text)
        result = self._build_result(task, artifact, verdict, reply.model)
        self._store.record_verification(result)
        status = TaskStatus.COMPLETED if result.verified else TaskStatus.FAILED
        self._store.set_task_status(task.task_id, status)
        logger.info(
            "Verification recorded",
            extra={"task_id": task.task_id, "verified": result.verified, "confidence": result.confidence},
        )
        return result

    def _collect_frames(self, artifact: VideoArtifact) -> tuple[tuple[FrameSample, ...], float]:
        sequence = self._sampler.sample(artifact, self.sample_interval)
        return tuple(sequence), sequence.plan.interval

    def _build_result(self, task: TaskRecord, artifact: VideoArtifact, verdict, model: str | None) -> VerificationResult:
        video_minutes = artifact.total_duration / 60
        minutes = min(verdict.time_on_task_minutes, video_minutes)
        verified = verdict.verified
        issues = list(verdict.issues)

        threshold = task.min_duration_minutes * self.min_time_on_task_ratio
        if minutes < threshold:
            verified = False
            issues.append(
                f"Time on task ({minutes:.1f} min) is below {self.min_time_on_task_ratio:.0%} "
                f"of the {task.min_duration_minutes:.1f} min minimum"
            )

        return VerificationResult(
            task_id=task.task_id,
            verified=verified,
            confidence=verdict.confidence,
            time_on_task_minutes=minutes,
            explanation=verdict.explanation,
            issues=tuple(issues),
            timeline=tuple(verdict.timeline),
            video_duration=artifact.total_duration,
            model=model,
        )


__all__ = ["DEFAULT_MIN_TIME_ON_TASK_RATIO", "VerificationOrchestrator", "VerificationStore"]
