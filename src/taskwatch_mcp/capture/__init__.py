"""Capture engine control: device discovery and recording lifecycle."""

from .coordinator import CaptureCoordinator, FakeCaptureCoordinator
from .ffmpeg import FFmpegCaptureCoordinator, FFmpegNotFoundError
from .models import CaptureHandle, CaptureTargets, DisplayInfo, VideoArtifact, WebcamInfo

__all__ = [
    "CaptureCoordinator",
    "FakeCaptureCoordinator",
    "FFmpegCaptureCoordinator",
    "FFmpegNotFoundError",
    "CaptureHandle",
    "CaptureTargets",
    "DisplayInfo",
    "VideoArtifact",
    "WebcamInfo",
]
