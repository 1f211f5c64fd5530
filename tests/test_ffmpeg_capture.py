from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path

import pytest

from taskwatch_mcp.capture import CaptureTargets, DisplayInfo, FFmpegCaptureCoordinator, WebcamInfo
from taskwatch_mcp.capture import ffmpeg as ffmpeg_module
from taskwatch_mcp.errors import ArtifactUnreadable, CaptureFailed, DeviceUnavailable

FAKE_FFMPEG = """#!/bin/sh
for last; do :; done
printf '%s\\n' "$*" >> "$TW_FAKE_CALLS"
case "$*" in
  *"-f concat"*)
    printf 'joined' > "$last"
    ;;
  *-filter_complex*)
    if [ -n "$TW_FAKE_COMPOSE_FAIL" ]; then
      echo "xstack failed" >&2
      exit 1
    fi
    printf 'combined' > "$last"
    ;;
  *)
    case "$last" in
      *"${TW_FAKE_EMPTY_SOURCE:-no-empty-source}"*) ;;
      *) printf 'frames' > "$last" ;;
    esac
    exec dd bs=1 count=1 of=/dev/null 2>/dev/null
    ;;
esac
"""


@pytest.fixture()
def fake_ffmpeg(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    script = tmp_path / "ffmpeg"
    script.write_text(FAKE_FFMPEG, encoding="utf-8")
    script.chmod(0o755)
    monkeypatch.setenv("TW_FAKE_CALLS", str(tmp_path / "calls.log"))
    monkeypatch.delenv("TW_FAKE_COMPOSE_FAIL", raising=False)
    monkeypatch.delenv("TW_FAKE_EMPTY_SOURCE", raising=False)
    return script


@pytest.fixture()
def probed(monkeypatch: pytest.MonkeyPatch) -> list[Path]:
    calls: list[Path] = []

    def fake_probe(path: Path) -> float:
        calls.append(path)
        return 42.0

    monkeypatch.setattr(ffmpeg_module, "probe_video_duration", fake_probe)
    return calls


def _coordinator(tmp_path: Path, script: Path) -> FFmpegCaptureCoordinator:
    return FFmpegCaptureCoordinator(
        tmp_path / "recordings",
        script,
        platform="linux",
        startup_grace=0,
        stop_timeout=5,
    )


def _targets(webcam: bool = True) -> CaptureTargets:
    return CaptureTargets(
        task_id=7,
        displays=(DisplayInfo(id=0, name="X11 display :0", is_primary=True, source=":0.0"),),
        webcam=WebcamInfo(id="video0", name="video0", source="/dev/video0") if webcam else None,
    )


def _calls(tmp_path: Path) -> list[str]:
    return (tmp_path / "calls.log").read_text(encoding="utf-8").splitlines()


def _leftovers(tmp_path: Path) -> list[str]:
    return sorted(path.name for path in (tmp_path / "recordings").iterdir())


def test_pause_resume_records_one_segment_per_stretch(tmp_path: Path, fake_ffmpeg: Path, probed: list[Path]) -> None:
    coordinator = _coordinator(tmp_path, fake_ffmpeg)

    async def scenario():
        handle = await coordinator.begin(_targets())
        await coordinator.pause(handle)
        await coordinator.pause(handle)
        await coordinator.resume(handle)
        artifact = await coordinator.finalize(handle)
        return handle, artifact

    handle, artifact = asyncio.run(scenario())

    calls = _calls(tmp_path)
    recordings = [call for call in calls if "_seg" in call]
    assert len(recordings) == 4
    assert sum("display_0_seg000.mp4" in call for call in recordings) == 1
    assert sum("display_0_seg001.mp4" in call for call in recordings) == 1
    assert sum("webcam_seg001.mp4" in call for call in recordings) == 1
    assert len([call for call in calls if "-f concat" in call]) == 2
    assert len([call for call in calls if "-filter_complex" in call]) == 1

    assert artifact.path == handle.output_base.with_name(handle.output_base.name + "_combined.mp4")
    assert artifact.path.name.startswith("task_7_rec_")
    assert artifact.total_duration == 42.0
    assert artifact.path.read_text(encoding="utf-8") == "combined"
    assert probed == [artifact.path]
    assert _leftovers(tmp_path) == [artifact.path.name]


def test_single_stretch_skips_concat_and_empty_sources(
    tmp_path: Path, fake_ffmpeg: Path, probed: list[Path], monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("TW_FAKE_EMPTY_SOURCE", "webcam")
    coordinator = _coordinator(tmp_path, fake_ffmpeg)

    async def scenario():
        handle = await coordinator.begin(_targets())
        return await coordinator.finalize(handle)

    artifact = asyncio.run(scenario())

    calls = _calls(tmp_path)
    assert not [call for call in calls if "-f concat" in call]
    compose = [call for call in calls if "-filter_complex" in call]
    assert len(compose) == 1
    assert "display_0_seg000.mp4" in compose[0]
    assert "webcam" not in compose[0]
    assert artifact.total_duration == 42.0


def test_failed_compose_falls_back_to_first_source(
    tmp_path: Path, fake_ffmpeg: Path, probed: list[Path], monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("TW_FAKE_COMPOSE_FAIL", "1")
    coordinator = _coordinator(tmp_path, fake_ffmpeg)

    async def scenario():
        handle = await coordinator.begin(_targets())
        return await coordinator.finalize(handle)

    artifact = asyncio.run(scenario())

    assert artifact.path.name.endswith("_combined.mp4")
    assert artifact.path.read_text(encoding="utf-8") == "frames"
    assert _leftovers(tmp_path) == [artifact.path.name]


def test_finalize_without_frames_fails(tmp_path: Path, fake_ffmpeg: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TW_FAKE_EMPTY_SOURCE", "_seg")
    coordinator = _coordinator(tmp_path, fake_ffmpeg)

    async def scenario():
        handle = await coordinator.begin(_targets(webcam=False))
        await coordinator.finalize(handle)

    with pytest.raises(CaptureFailed, match="No valid video files"):
        asyncio.run(scenario())


def test_abort_kills_running_processes_and_removes_files(tmp_path: Path, fake_ffmpeg: Path) -> None:
    coordinator = _coordinator(tmp_path, fake_ffmpeg)

    async def scenario():
        handle = await coordinator.begin(_targets())
        processes = [source.process for source in coordinator._jobs[handle.job_id].running]
        await coordinator.abort(handle)
        await coordinator.abort(handle)
        return handle, processes

    handle, processes = asyncio.run(scenario())

    assert len(processes) == 2
    assert all(process.returncode is not None for process in processes)
    assert handle.job_id not in coordinator._jobs
    assert _leftovers(tmp_path) == []


def test_abort_after_failed_finalize_removes_segments(
    tmp_path: Path, fake_ffmpeg: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    def unreadable(path: Path) -> float:
        raise ArtifactUnreadable(f"Cannot open video {path}")

    monkeypatch.setattr(ffmpeg_module, "probe_video_duration", unreadable)
    coordinator = _coordinator(tmp_path, fake_ffmpeg)

    async def scenario():
        handle = await coordinator.begin(_targets())
        await coordinator.pause(handle)
        await coordinator.resume(handle)
        with pytest.raises(CaptureFailed, match="Cannot open video"):
            await coordinator.finalize(handle)
        assert any("_seg" in name for name in _leftovers(tmp_path))
        await coordinator.abort(handle)

    asyncio.run(scenario())

    assert _leftovers(tmp_path) == []


def test_begin_without_sources_is_device_unavailable(tmp_path: Path, fake_ffmpeg: Path) -> None:
    coordinator = _coordinator(tmp_path, fake_ffmpeg)
    targets = CaptureTargets(task_id=1, displays=())

    with pytest.raises(DeviceUnavailable):
        asyncio.run(coordinator.begin(targets))


def test_handle_started_at_is_utc(tmp_path: Path, fake_ffmpeg: Path) -> None:
    coordinator = _coordinator(tmp_path, fake_ffmpeg)

    async def scenario():
        handle = await coordinator.begin(_targets(webcam=False))
        await coordinator.abort(handle)
        return handle

    handle = asyncio.run(scenario())

    assert handle.started_at.tzinfo is timezone.utc
    assert handle.started_at <= datetime.now(timezone.utc)
