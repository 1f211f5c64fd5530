"""Still-frame sampling from finished recordings."""

from __future__ import annotations

import base64
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

import cv2

from ..capture import VideoArtifact
from ..errors import ArtifactUnreadable

DEFAULT_MAX_SAMPLES = 60


@dataclass(frozen=True, slots=True)
class FrameSample:
    timestamp_offset: float
    image_payload: str
    media_type: str = "image/jpeg"


@dataclass(frozen=True, slots=True)
class SamplePlan:
    """Offsets to extract and the interval they were derived from."""

    interval: float
    offsets: tuple[float, ...]

    @property
    def count(self) -> int:
        return len(self.offsets)


def plan_samples(duration: float, interval: float, max_samples: int = DEFAULT_MAX_SAMPLES) -> SamplePlan:
    """Return the sample offsets for a video of ``duration`` seconds.

    Offsets are ``0, interval, 2 * interval, ...`` strictly below ``duration``; the last
    partial interval is represented by its starting offset. When the video would need
    more than ``max_samples`` frames, the interval is widened to
    ``duration / max_samples``.
    """

    if interval <= 0:
        raise ValueError("Sample interval must be > 0 seconds")
    if max_samples < 1:
        raise ValueError("max_samples must be >= 1")
    if duration <= 0:
        return SamplePlan(interval=interval, offsets=())

    if duration / interval > max_samples:
        interval = duration / max_samples
    count = min(math.ceil(duration / interval), max_samples)
    offsets = tuple(index * interval for index in range(count) if index * interval < duration)
    return SamplePlan(interval=interval, offsets=offsets)


class FrameSequence:
    """Lazy, restartable iterable of frames; each iteration reopens the video."""

    def __init__(self, sampler: "FrameSampler", artifact: VideoArtifact, plan: SamplePlan) -> None:
        self._sampler = sampler
        self._artifact = artifact
        self._plan = plan

    @property
    def plan(self) -> SamplePlan:
        return self._plan

    @property
    def artifact(self) -> VideoArtifact:
        return self._artifact

    def __len__(self) -> int:
        return self._plan.count

    def __iter__(self) -> Iterator[FrameSample]:
        capture = self._sampler._open(self._artifact.path)
        try:
            fps = capture.get(cv2.CAP_PROP_FPS) or 0.0
            frame_total = int(capture.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
            for offset in self._plan.offsets:
                if fps > 0:
                    index = int(round(offset * fps))
                    if frame_total > 0:
                        index = min(index, frame_total - 1)
                    seeked = capture.set(cv2.CAP_PROP_POS_FRAMES, index)
                else:
                    seeked = capture.set(cv2.CAP_PROP_POS_MSEC, offset * 1000.0)
                ok, frame = capture.read()
                if not seeked or not ok or frame is None:
                    raise ArtifactUnreadable(
                        f"Cannot read frame at {offset:.1f}s from {self._artifact.path}"
                    )
                yield FrameSample(
                    timestamp_offset=offset,
                    image_payload=self._sampler._encode(frame),
                )
        finally:
            capture.release()


class FrameSampler:
    """Produce evenly spaced JPEG stills from a recording."""

    def __init__(
        self,
        *,
        max_samples: int = DEFAULT_MAX_SAMPLES,
        max_width: int = 1280,
        jpeg_quality: int = 80,
    ) -> None:
        self.max_samples = max_samples
        self.max_width = max_width
        self.jpeg_quality = jpeg_quality

    def plan(self, artifact: VideoArtifact, interval_seconds: float) -> SamplePlan:
        return plan_samples(artifact.total_duration, interval_seconds, self.max_samples)

    def sample(self, artifact: VideoArtifact, interval_seconds: float) -> FrameSequence:
        """Validate ``artifact`` and return its frame sequence.

        Raises ``ArtifactUnreadable`` up front when the file is missing, cannot be
        opened, or has no duration; seek/read failures surface during iteration.
        """

        if artifact.total_duration <= 0:
            raise ArtifactUnreadable(f"Recording {artifact.path} has no duration")
        self._open(artifact.path).release()
        return FrameSequence(self, artifact, self.plan(artifact, interval_seconds))

    def _open(self, path: Path) -> cv2.VideoCapture:
        if not Path(path).is_file():
            raise ArtifactUnreadable(f"Recording {path} does not exist")
        capture = cv2.VideoCapture(str(path))
        if not capture.isOpened():
            capture.release()
            raise ArtifactUnreadable(f"Cannot open recording {path}")
        return capture

    def _encode(self, frame) -> str:
        height, width = frame.shape[:2]
        if width > self.max_width:
            scale = self.max_width / width
            frame = cv2.resize(
                frame,
                (self.max_width, max(1, int(round(height * scale)))),
                interpolation=cv2.INTER_AREA,
            )
        ok, buffer = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), self.jpeg_quality])
        if not ok:
            raise ArtifactUnreadable("Failed to encode frame as JPEG")
        return base64.b64encode(buffer.tobytes()).decode("ascii")


__all__ = ["FrameSample", "FrameSampler", "FrameSequence", "SamplePlan", "plan_samples", "DEFAULT_MAX_SAMPLES"]
