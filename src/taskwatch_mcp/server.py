"""FastMCP server bootstrap for TaskWatch."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import Optional

from fastmcp import Context, FastMCP

from . import __version__
from .capture import CaptureCoordinator, FFmpegCaptureCoordinator, FFmpegNotFoundError
from .config import TaskWatchSettings, get_settings
from .session import SessionController
from .storage import ChromaStore, TaskStatus
from .tools import register_tools, resolve_api_key
from .verification import (
    CostEstimator,
    FrameSampler,
    JudgeClient,
    OpenAIJudgeClient,
    VerificationOrchestrator,
)


def configure_logging(level: str) -> None:
    """Configure root logging for the TaskWatch server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _run_sync(coro):
    """Execute an async coroutine on a dedicated event loop."""

    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def create_server(
    settings: Optional[TaskWatchSettings] = None,
    coordinator: CaptureCoordinator | None = None,
    judge: JudgeClient | None = None,
    store: ChromaStore | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server and the single controller, orchestrator and store it serves."""

    settings = settings or get_settings()

    capture_metadata = {
        "available": False,
        "version": None,
        "error": None,
    }

    if coordinator is None:
        try:
            ffmpeg = FFmpegCaptureCoordinator(
                settings.recordings_dir,
                Path(settings.ffmpeg_path) if settings.ffmpeg_path else None,
                framerate=settings.capture_framerate,
            )
            coordinator = ffmpeg
            capture_metadata["available"] = True
            version_result = _run_sync(ffmpeg.version())
            if version_result.ok:
                banner = version_result.stdout.strip().splitlines()
                capture_metadata["version"] = banner[0] if banner else None
            else:
                capture_metadata["error"] = (
                    version_result.stderr.strip()
                    or f"ffmpeg -version failed with exit code {version_result.returncode}"
                )
        except FFmpegNotFoundError as exc:
            capture_metadata["error"] = str(exc)
            coordinator = None
    else:
        capture_metadata["available"] = True

    store = store or ChromaStore(settings.chroma_persist_path)
    store.ping()
    chroma_metadata = {
        "path": str(settings.chroma_persist_path),
        "collection": "taskwatch_events",
    }

    controller = SessionController(coordinator) if coordinator is not None else None
    judge = judge or OpenAIJudgeClient(
        settings.judge_models,
        base_url=settings.judge_base_url,
        timeout=settings.judge_timeout,
        max_tokens=settings.judge_max_tokens,
    )
    orchestrator = VerificationOrchestrator(
        FrameSampler(
            max_samples=settings.max_samples,
            max_width=settings.frame_max_width,
            jpeg_quality=settings.jpeg_quality,
        ),
        judge,
        store,
        partial(resolve_api_key, store, settings),
        sample_interval=settings.sample_interval,
        min_time_on_task_ratio=settings.min_time_on_task_ratio,
        timeout=settings.judge_timeout,
    )
    estimator = CostEstimator.from_settings(settings)

    server = FastMCP(
        name="TaskWatch MCP",
        version=__version__,
        instructions=(
            "TaskWatch records screens and webcam while a user works on a task, then asks "
            "a vision model to verify the recording. Create a task, start/pause/resume/stop "
            "a session, then call verify_task."
        ),
    )

    handles = register_tools(
        server,
        settings=settings,
        controller=controller,
        orchestrator=orchestrator,
        estimator=estimator,
        store=store,
    )

    @server.resource(
        "resource://taskwatch/status",
        name="taskwatch_status",
        title="TaskWatch MCP Status",
        description="Provides the current runtime status for the TaskWatch MCP server.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing basic runtime state."""

        status_counts: dict[str, int] = {status.value: 0 for status in TaskStatus}
        for task in store.list_tasks():
            status_counts[task.status.value] += 1

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "capture": {
                "ffmpeg_path": settings.ffmpeg_path,
                "recordings_dir": str(settings.recordings_dir),
                **capture_metadata,
            },
            "session": controller.status() if controller is not None else None,
            "judge": {
                "models": list(settings.judge_models),
                "base_url": settings.judge_base_url,
                "api_key_configured": bool(resolve_api_key(store, settings)),
                "sample_interval": settings.sample_interval,
                "max_samples": settings.max_samples,
                "min_time_on_task_ratio": settings.min_time_on_task_ratio,
            },
            "storage": {"chroma": chroma_metadata},
            "tasks": {
                "count": sum(status_counts.values()),
                "status_counts": status_counts,
            },
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    setattr(server, "controller", controller)
    setattr(server, "orchestrator", orchestrator)
    setattr(server, "chroma_store", store)
    setattr(server, "capture_metadata", capture_metadata)
    setattr(server, "chroma_metadata", chroma_metadata)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the TaskWatch MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching TaskWatch MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "capture_available": getattr(server, "capture_metadata", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
