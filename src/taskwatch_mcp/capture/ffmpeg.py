"""Capture coordinator backed by the ffmpeg command line tool."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import shutil
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Mapping
from uuid import uuid4

import cv2

from ..errors import ArtifactUnreadable, CaptureFailed, DeviceUnavailable
from .compositor import concat_command, grid_command, write_concat_list
from .coordinator import CaptureCoordinator
from .models import CaptureHandle, CaptureTargets, DisplayInfo, VideoArtifact, WebcamInfo

logger = logging.getLogger(__name__)

_STRIPPED_VARS = {"FFREPORT", "AV_LOG_FORCE_COLOR"}

_DSHOW_VIDEO_RE = re.compile(r'"(?P<name>[^"]+)"\s*\(video\)')
_AVFOUNDATION_RE = re.compile(r"\[(?P<index>\d+)\]\s+(?P<name>.+?)\s*$")


class FFmpegNotFoundError(DeviceUnavailable):
    """Raised when the ffmpeg executable cannot be located."""


@dataclass(slots=True)
class CaptureCommandResult:
    """Holds the outcome of a one-shot ffmpeg invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(slots=True)
class _SourceProcess:
    key: str
    process: asyncio.subprocess.Process
    output: Path
    log: IO[bytes]


@dataclass(slots=True)
class _CaptureJob:
    handle: CaptureHandle
    segment_index: int = 0
    running: list[_SourceProcess] = field(default_factory=list)
    segments: dict[str, list[Path]] = field(default_factory=dict)


def ffmpeg_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return an environment that keeps ffmpeg from writing reports or colored logs."""

    env = dict(os.environ)
    for key in _STRIPPED_VARS:
        env.pop(key, None)
    env["AV_LOG_FORCE_NOCOLOR"] = "1"
    if additional:
        env.update(additional)
    return env


def parse_dshow_devices(output: str) -> list[WebcamInfo]:
    """Extract video devices from ``ffmpeg -list_devices true -f dshow`` output."""

    webcams: list[WebcamInfo] = []
    for line in output.splitlines():
        match = _DSHOW_VIDEO_RE.search(line)
        if match:
            name = match.group("name")
            webcams.append(WebcamInfo(id=name, name=name, source=f"video={name}"))
    return webcams


def parse_avfoundation_devices(output: str) -> tuple[list[DisplayInfo], list[WebcamInfo]]:
    """Split avfoundation video devices into screens and cameras."""

    displays: list[DisplayInfo] = []
    webcams: list[WebcamInfo] = []
    in_video_section = False
    for line in output.splitlines():
        if "AVFoundation video devices" in line:
            in_video_section = True
            continue
        if "AVFoundation audio devices" in line:
            in_video_section = False
            continue
        if not in_video_section:
            continue
        match = _AVFOUNDATION_RE.search(line)
        if not match:
            continue
        index = match.group("index")
        name = match.group("name")
        if name.lower().startswith("capture screen"):
            displays.append(
                DisplayInfo(
                    id=len(displays),
                    name=name,
                    is_primary=not displays,
                    source=f"{index}:none",
                )
            )
        else:
            webcams.append(WebcamInfo(id=index, name=name, source=f"{index}:none"))
    return displays, webcams


def probe_video_duration(path: Path) -> float:
    """Return the duration of ``path`` in seconds using OpenCV metadata."""

    capture = cv2.VideoCapture(str(path))
    try:
        if not capture.isOpened():
            raise ArtifactUnreadable(f"Cannot open video {path}")
        fps = capture.get(cv2.CAP_PROP_FPS) or 0.0
        frames = capture.get(cv2.CAP_PROP_FRAME_COUNT) or 0.0
    finally:
        capture.release()
    if fps <= 0 or frames <= 0:
        raise ArtifactUnreadable(f"Video {path} reports no frames")
    return float(frames) / float(fps)


class FFmpegCaptureCoordinator(CaptureCoordinator):
    """Record displays and a webcam through ffmpeg subprocesses.

    Each active stretch between begin/resume and pause/finalize is written as its own
    segment per source, so paused time never reaches the output. Finalize joins the
    segments of every source, lays the sources out on one canvas and probes the
    resulting duration.
    """

    def __init__(
        self,
        recordings_dir: Path,
        executable: Path | None = None,
        *,
        framerate: int = 30,
        platform: str | None = None,
        startup_grace: float = 0.5,
        stop_timeout: float = 10.0,
    ) -> None:
        self._executable_path = self._resolve_executable(executable)
        self._recordings_dir = Path(recordings_dir)
        self._framerate = framerate
        self._platform = platform or sys.platform
        self._startup_grace = startup_grace
        self._stop_timeout = stop_timeout
        self._jobs: dict[str, _CaptureJob] = {}

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise FFmpegNotFoundError(f"ffmpeg executable not found at {candidate}")

        binary = shutil.which("ffmpeg")
        if binary is None:
            raise FFmpegNotFoundError("ffmpeg executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    async def version(self) -> CaptureCommandResult:
        return await self._invoke("-version")

    async def enumerate_displays(self) -> list[DisplayInfo]:
        if self._platform.startswith("win"):
            return [DisplayInfo(id=0, name="Primary Display", is_primary=True, source="desktop")]
        if self._platform == "darwin":
            displays, _ = await self._list_avfoundation()
            return displays
        display = os.environ.get("DISPLAY")
        if not display:
            return []
        source = display if "." in display else f"{display}.0"
        return [DisplayInfo(id=0, name=f"X11 display {display}", is_primary=True, source=source)]

    async def enumerate_webcams(self) -> list[WebcamInfo]:
        if self._platform.startswith("win"):
            result = await self._invoke("-hide_banner", "-list_devices", "true", "-f", "dshow", "-i", "dummy")
            return parse_dshow_devices(result.stderr)
        if self._platform == "darwin":
            _, webcams = await self._list_avfoundation()
            return webcams
        return [
            WebcamInfo(id=device.name, name=device.name, source=str(device))
            for device in sorted(Path("/dev").glob("video*"))
        ]

    async def _list_avfoundation(self) -> tuple[list[DisplayInfo], list[WebcamInfo]]:
        result = await self._invoke(
            "-hide_banner", "-f", "avfoundation", "-list_devices", "true", "-i", ""
        )
        return parse_avfoundation_devices(result.stderr)

    def _display_input_args(self, display: DisplayInfo) -> list[str]:
        rate = str(self._framerate)
        if self._platform.startswith("win"):
            return ["-f", "gdigrab", "-framerate", rate, "-i", display.source]
        if self._platform == "darwin":
            return ["-f", "avfoundation", "-framerate", rate, "-capture_cursor", "1", "-i", display.source]
        return [
            "-f", "x11grab",
            "-framerate", rate,
            "-video_size", f"{display.width}x{display.height}",
            "-i", display.source,
        ]

    def _webcam_input_args(self, webcam: WebcamInfo) -> list[str]:
        rate = str(self._framerate)
        if self._platform.startswith("win"):
            return ["-f", "dshow", "-video_size", "640x480", "-framerate", rate, "-i", webcam.source]
        if self._platform == "darwin":
            return ["-f", "avfoundation", "-framerate", rate, "-i", webcam.source]
        return ["-f", "v4l2", "-framerate", rate, "-i", webcam.source]

    def _source_inputs(self, targets: CaptureTargets) -> list[tuple[str, list[str]]]:
        sources = [
            (f"display_{idx}", self._display_input_args(display))
            for idx, display in enumerate(targets.displays)
        ]
        if targets.webcam is not None:
            sources.append(("webcam", self._webcam_input_args(targets.webcam)))
        return sources

    async def begin(self, targets: CaptureTargets) -> CaptureHandle:
        if targets.source_count == 0:
            raise DeviceUnavailable("No display or webcam available for capture")

        self._recordings_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        handle = CaptureHandle(
            job_id=uuid4().hex,
            targets=targets,
            output_base=self._recordings_dir / f"task_{targets.task_id}_rec_{stamp}",
            started_at=datetime.now(timezone.utc),
        )
        job = _CaptureJob(handle=handle)
        try:
            await self._start_segment(job)
        except CaptureFailed as exc:
            raise DeviceUnavailable(str(exc)) from exc
        self._jobs[handle.job_id] = job
        logger.info(
            "Capture started",
            extra={"job_id": handle.job_id, "task_id": targets.task_id, "sources": targets.source_count},
        )
        return handle

    async def pause(self, handle: CaptureHandle) -> None:
        job = self._job(handle)
        if handle.paused:
            return
        await self._stop_segment(job)
        handle.paused = True

    async def resume(self, handle: CaptureHandle) -> None:
        job = self._job(handle)
        if not handle.paused:
            return
        await self._start_segment(job)
        handle.paused = False

    async def finalize(self, handle: CaptureHandle) -> VideoArtifact:
        job = self._job(handle)
        if not handle.paused:
            await self._stop_segment(job)
        sources = await self._join_segments(job)
        if not sources:
            raise CaptureFailed("No valid video files were recorded")
        output = handle.output_base.with_name(handle.output_base.name + "_combined.mp4")
        await self._compose(sources, output)
        try:
            duration = await asyncio.to_thread(probe_video_duration, output)
        except ArtifactUnreadable as exc:
            raise CaptureFailed(str(exc)) from exc

        self._jobs.pop(handle.job_id, None)
        self._cleanup(job, keep={output})
        logger.info(
            "Capture finalized",
            extra={"job_id": handle.job_id, "path": str(output), "duration": duration},
        )
        return VideoArtifact(path=output, total_duration=duration)

    async def abort(self, handle: CaptureHandle) -> None:
        job = self._jobs.pop(handle.job_id, None)
        if job is None:
            return
        for source in job.running:
            if source.process.returncode is None:
                source.process.kill()
                await source.process.wait()
            source.log.close()
        job.running.clear()
        self._cleanup(job, keep=set())
        logger.warning("Capture aborted", extra={"job_id": handle.job_id})

    def _job(self, handle: CaptureHandle) -> _CaptureJob:
        try:
            return self._jobs[handle.job_id]
        except KeyError as exc:
            raise CaptureFailed(f"Unknown capture job {handle.job_id}") from exc

    async def _start_segment(self, job: _CaptureJob) -> None:
        base = job.handle.output_base
        index = job.segment_index
        started: list[_SourceProcess] = []
        try:
            for key, input_args in self._source_inputs(job.handle.targets):
                output = base.with_name(f"{base.name}_{key}_seg{index:03d}.mp4")
                log = output.with_suffix(".log").open("wb")
                cmd = [
                    str(self._executable_path),
                    "-y",
                    "-hide_banner",
                    "-loglevel", "error",
                    *input_args,
                    "-c:v", "libx264",
                    "-preset", "ultrafast",
                    "-pix_fmt", "yuv420p",
                    str(output),
                ]
                try:
                    process = await asyncio.create_subprocess_exec(
                        *cmd,
                        stdin=asyncio.subprocess.PIPE,
                        stdout=asyncio.subprocess.DEVNULL,
                        stderr=log,
                        env=ffmpeg_environment(),
                    )
                except OSError as exc:
                    log.close()
                    raise CaptureFailed(f"Failed to start {key} recording: {exc}") from exc
                started.append(_SourceProcess(key=key, process=process, output=output, log=log))

            if self._startup_grace:
                await asyncio.sleep(self._startup_grace)
            for source in started:
                if source.process.returncode is not None:
                    detail = source.output.with_suffix(".log").read_text(encoding="utf-8", errors="replace")
                    raise CaptureFailed(
                        f"{source.key} recording exited with code {source.process.returncode}: {detail.strip()[:400]}"
                    )
        except BaseException:
            for source in started:
                if source.process.returncode is None:
                    source.process.kill()
                    await source.process.wait()
                source.log.close()
            raise

        job.running = started
        job.segment_index += 1

    async def _stop_segment(self, job: _CaptureJob) -> None:
        for source in job.running:
            process = source.process
            if process.returncode is None and process.stdin is not None:
                try:
                    process.stdin.write(b"q")
                    await process.stdin.drain()
                except (BrokenPipeError, ConnectionResetError):
                    pass
            try:
                await asyncio.wait_for(process.wait(), timeout=self._stop_timeout)
            except asyncio.TimeoutError:
                logger.warning("ffmpeg did not stop in time; killing", extra={"source": source.key})
                process.kill()
                await process.wait()
            source.log.close()
            if source.output.exists() and source.output.stat().st_size > 0:
                job.segments.setdefault(source.key, []).append(source.output)
            else:
                logger.warning("Skipping empty segment", extra={"path": str(source.output)})
        job.running = []

    async def _join_segments(self, job: _CaptureJob) -> list[Path]:
        base = job.handle.output_base
        joined: list[Path] = []
        for key, segments in job.segments.items():
            if len(segments) == 1:
                joined.append(segments[0])
                continue
            list_path = write_concat_list(segments, base.with_name(f"{base.name}_{key}.txt"))
            output = base.with_name(f"{base.name}_{key}.mp4")
            result = await self._invoke(*concat_command(list_path, output))
            if not result.ok:
                raise CaptureFailed(f"Failed to join {key} segments: {result.stderr.strip()[:400]}")
            joined.append(output)
        return joined

    async def _compose(self, sources: list[Path], output: Path) -> None:
        result = await self._invoke(*grid_command(sources, output))
        if result.ok:
            return
        logger.error(
            "Combining videos failed; using first source as fallback",
            extra={"stderr": result.stderr[:400], "fallback": str(sources[0])},
        )
        await asyncio.to_thread(shutil.copyfile, sources[0], output)

    def _cleanup(self, job: _CaptureJob, *, keep: set[Path]) -> None:
        base = job.handle.output_base
        for path in base.parent.glob(f"{base.name}_*"):
            if path in keep:
                continue
            path.unlink(missing_ok=True)

    async def _invoke(self, *args: str) -> CaptureCommandResult:
        cmd = [str(self._executable_path), *args]
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=ffmpeg_environment(),
        )
        stdout_bytes, stderr_bytes = await process.communicate()
        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return CaptureCommandResult(args=tuple(cmd), returncode=process.returncode, stdout=stdout, stderr=stderr)


__all__ = [
    "CaptureCommandResult",
    "FFmpegCaptureCoordinator",
    "FFmpegNotFoundError",
    "ffmpeg_environment",
    "parse_avfoundation_devices",
    "parse_dshow_devices",
    "probe_video_duration",
]
