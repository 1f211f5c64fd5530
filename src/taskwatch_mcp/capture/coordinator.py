"""Control interface to the external capture engine."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable
from uuid import uuid4

from ..errors import CaptureFailed, DeviceUnavailable
from .models import CaptureHandle, CaptureTargets, DisplayInfo, VideoArtifact, WebcamInfo


class CaptureCoordinator:
    """Drive a capture job through begin, pause, resume and finalize.

    Subclasses talk to a concrete engine. Every method here may block on device or OS
    I/O, so all of them are coroutines.
    """

    async def enumerate_displays(self) -> list[DisplayInfo]:
        raise NotImplementedError

    async def enumerate_webcams(self) -> list[WebcamInfo]:
        raise NotImplementedError

    async def select_targets(self, task_id: int) -> CaptureTargets:
        """Record every display plus the first webcam, if any."""

        displays = await self.enumerate_displays()
        webcams = await self.enumerate_webcams()
        targets = CaptureTargets(
            task_id=task_id,
            displays=tuple(displays),
            webcam=webcams[0] if webcams else None,
        )
        if targets.source_count == 0:
            raise DeviceUnavailable("No display or webcam available for capture")
        return targets

    async def begin(self, targets: CaptureTargets) -> CaptureHandle:
        raise NotImplementedError

    async def pause(self, handle: CaptureHandle) -> None:
        raise NotImplementedError

    async def resume(self, handle: CaptureHandle) -> None:
        raise NotImplementedError

    async def finalize(self, handle: CaptureHandle) -> VideoArtifact:
        raise NotImplementedError

    async def abort(self, handle: CaptureHandle) -> None:
        """Release engine resources without producing an artifact."""

        raise NotImplementedError


class FakeCaptureCoordinator(CaptureCoordinator):
    """Test double that records calls and returns canned devices and artifacts."""

    def __init__(
        self,
        *,
        displays: Iterable[DisplayInfo] | None = None,
        webcams: Iterable[WebcamInfo] | None = None,
        artifact_dir: Path | None = None,
        artifact_duration: float | None = None,
        finalize_delay: float = 0.0,
        fail_begin: bool = False,
        fail_pause: bool = False,
        fail_finalize: bool = False,
    ) -> None:
        self._displays = list(displays) if displays is not None else [
            DisplayInfo(id=0, name="Primary Display", is_primary=True)
        ]
        self._webcams = list(webcams) if webcams is not None else [
            WebcamInfo(id="0", name="Default Webcam")
        ]
        self._artifact_dir = Path(artifact_dir or "/tmp/taskwatch-fake")
        self.artifact_duration = artifact_duration
        self.finalize_delay = finalize_delay
        self.fail_begin = fail_begin
        self.fail_pause = fail_pause
        self.fail_finalize = fail_finalize
        self.calls: list[tuple[str, str | None]] = []
        self.active: set[str] = set()

    async def enumerate_displays(self) -> list[DisplayInfo]:
        self.calls.append(("enumerate_displays", None))
        return list(self._displays)

    async def enumerate_webcams(self) -> list[WebcamInfo]:
        self.calls.append(("enumerate_webcams", None))
        return list(self._webcams)

    async def begin(self, targets: CaptureTargets) -> CaptureHandle:
        self.calls.append(("begin", None))
        if self.fail_begin:
            raise DeviceUnavailable("Simulated device failure")
        handle = CaptureHandle(
            job_id=uuid4().hex,
            targets=targets,
            output_base=self._artifact_dir / f"task_{targets.task_id}",
            started_at=datetime.now(timezone.utc),
        )
        self.active.add(handle.job_id)
        return handle

    async def pause(self, handle: CaptureHandle) -> None:
        self.calls.append(("pause", handle.job_id))
        if self.fail_pause:
            raise CaptureFailed("Simulated pause failure")
        handle.paused = True

    async def resume(self, handle: CaptureHandle) -> None:
        self.calls.append(("resume", handle.job_id))
        handle.paused = False

    async def finalize(self, handle: CaptureHandle) -> VideoArtifact:
        self.calls.append(("finalize", handle.job_id))
        if self.finalize_delay:
            await asyncio.sleep(self.finalize_delay)
        if self.fail_finalize:
            raise CaptureFailed("Simulated finalize failure")
        self.active.discard(handle.job_id)
        duration = self.artifact_duration if self.artifact_duration is not None else 60.0
        return VideoArtifact(
            path=handle.output_base.with_name(handle.output_base.name + "_combined.mp4"),
            total_duration=duration,
        )

    async def abort(self, handle: CaptureHandle) -> None:
        self.calls.append(("abort", handle.job_id))
        self.active.discard(handle.job_id)

    def operations(self) -> list[str]:
        return [name for name, _ in self.calls]


__all__ = ["CaptureCoordinator", "FakeCaptureCoordinator"]
