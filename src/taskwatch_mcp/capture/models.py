"""Data models exchanged with the capture engine."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any


@dataclass(frozen=True, slots=True)
class DisplayInfo:
    id: int
    name: str
    width: int = 1920
    height: int = 1080
    is_primary: bool = False
    source: str = "desktop"


@dataclass(frozen=True, slots=True)
class WebcamInfo:
    id: str
    name: str
    source: str = ""


@dataclass(frozen=True, slots=True)
class CaptureTargets:
    """The displays and optional webcam a session records."""

    task_id: int
    displays: tuple[DisplayInfo, ...]
    webcam: WebcamInfo | None = None

    @property
    def source_count(self) -> int:
        return len(self.displays) + (1 if self.webcam is not None else 0)


@dataclass(slots=True)
class CaptureHandle:
    """Opaque reference to a running capture job."""

    job_id: str
    targets: CaptureTargets
    output_base: Path
    started_at: datetime
    paused: bool = False


@dataclass(frozen=True, slots=True)
class VideoArtifact:
    """A finalized, seekable recording."""

    path: Path
    total_duration: float

    def to_dict(self) -> dict[str, Any]:
        return {"path": str(self.path), "total_duration": self.total_duration}


__all__ = ["DisplayInfo", "WebcamInfo", "CaptureTargets", "CaptureHandle", "VideoArtifact"]
