"""Tool registration for TaskWatch MCP."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from fastmcp import Context, FastMCP

from ..capture import VideoArtifact
from ..config import TaskWatchSettings
from ..errors import ArtifactUnreadable
from ..session import SessionController
from ..storage import ChromaStore, TaskRecord, TaskStatus
from ..verification import CostEstimator, VerificationOrchestrator

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    start_session: Any
    pause_session: Any
    resume_session: Any
    stop_session: Any
    get_session_status: Any
    estimate_verification_cost: Any
    verify_task: Any
    get_verification_status: Any
    list_verifications: Any
    set_api_key: Any
    get_api_key: Any
    clear_api_key: Any
    enumerate_displays: Any
    enumerate_webcams: Any
    create_task: Any
    get_task: Any
    list_tasks: Any


def mask_secret(value: str | None) -> str | None:
    if not value:
        return None
    if len(value) <= 8:
        return "*" * len(value)
    return f"{value[:4]}...{value[-4:]}"


def resolve_api_key(store: ChromaStore, settings: TaskWatchSettings) -> str | None:
    """Stored key first, then ``TASKWATCH_JUDGE_API_KEY``."""

    return store.get_credential() or settings.judge_api_key


def _artifact_for(task: TaskRecord) -> VideoArtifact:
    if not task.video_path or task.video_duration is None:
        raise ArtifactUnreadable(f"Task {task.task_id} has no stored recording")
    return VideoArtifact(path=Path(task.video_path), total_duration=float(task.video_duration))


def register_tools(
    server: FastMCP,
    *,
    settings: TaskWatchSettings,
    controller: SessionController | None,
    orchestrator: VerificationOrchestrator,
    estimator: CostEstimator,
    store: ChromaStore,
) -> ToolHandles:
    """Register TaskWatch's MCP tools on the server."""

    def _require_controller() -> SessionController:
        if controller is None:
            raise RuntimeError("Capture engine is unavailable; install ffmpeg or set TASKWATCH_FFMPEG_PATH")
        return controller

    # Sessions --------------------------------------------------------------

    async def _start_session(task_id: int, context: Context | None = None) -> dict[str, Any]:
        """Start recording all displays and the first webcam for a task."""

        active = _require_controller()
        store.get_task(task_id)
        await active.start(task_id)
        store.set_task_status(task_id, TaskStatus.IN_PROGRESS)
        await _emit_log(context, "info", "Recording session started", extra={"task_id": task_id})
        return active.status()

    async def _pause_session(context: Context | None = None) -> dict[str, Any]:
        active = _require_controller()
        await active.pause()
        status = active.status()
        await _emit_log(context, "info", "Recording session paused", extra={"duration": status["duration"]})
        return status

    async def _resume_session(context: Context | None = None) -> dict[str, Any]:
        active = _require_controller()
        await active.resume()
        await _emit_log(context, "info", "Recording session resumed")
        return active.status()

    async def _stop_session(context: Context | None = None) -> dict[str, Any]:
        """Stop recording, finalize the video and attach it to the task."""

        active = _require_controller()
        task_id = active.session.task_id
        artifact = await active.stop()
        recorded = active.current_duration()
        if task_id is not None:
            store.attach_recording(task_id, artifact, recorded_duration=recorded)

        response = {
            "task_id": task_id,
            "video_path": str(artifact.path),
            "video_duration": artifact.total_duration,
            "recorded_duration": recorded,
        }
        await _emit_log(context, "info", "Recording session stopped", extra=response)
        return response

    def _get_session_status(context: Context | None = None) -> dict[str, Any]:
        if controller is None:
            return {"recording": False, "paused": False, "duration": 0.0, "state": "unavailable"}
        return controller.status()

    tool_start = server.tool(
        name="start_session",
        description="Begin recording the screens and webcam for a task.",
    )(_start_session)

    tool_pause = server.tool(
        name="pause_session",
        description="Pause the active recording; paused time does not count towards duration.",
    )(_pause_session)

    tool_resume = server.tool(
        name="resume_session",
        description="Resume a paused recording.",
    )(_resume_session)

    tool_stop = server.tool(
        name="stop_session",
        description="Stop the active recording and store the finalized video against its task.",
    )(_stop_session)

    tool_status = server.tool(
        name="get_session_status",
        description="Report whether a session is recording or paused and its active duration.",
    )(_get_session_status)

    # Verification ----------------------------------------------------------

    def _estimate_cost(
        duration_seconds: float,
        sample_interval: float | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Predict frame count, tokens and USD cost for verifying a video."""

        interval = sample_interval or settings.sample_interval
        return estimator.estimate(duration_seconds, interval).to_dict()

    async def _verify_task(task_id: int, context: Context | None = None) -> dict[str, Any]:
        """Ask the judge whether the stored recording shows the task being done."""

        task = store.get_task(task_id)
        artifact = _artifact_for(task)
        await _emit_log(
            context,
            "info",
            "Verifying task",
            extra={"task_id": task_id, "video_duration": artifact.total_duration},
        )
        try:
            result = await orchestrator.verify(task, artifact)
        except Exception as exc:
            await _emit_log(context, "error", "Verification failed", extra={"task_id": task_id, "error": str(exc)})
            raise
        await _emit_log(
            context,
            "info",
            "Verification complete",
            extra={"task_id": task_id, "verified": result.verified, "confidence": result.confidence},
        )
        return result.to_payload()

    def _get_verification_status(task_id: int, context: Context | None = None) -> dict[str, Any]:
        task = store.get_task(task_id)
        latest = store.latest_verification(task_id)
        return {
            "task_id": task_id,
            "status": task.status.value,
            "in_progress": orchestrator.in_flight(task_id),
            "verification": latest.to_payload() if latest is not None else None,
        }

    def _list_verifications(task_id: int, context: Context | None = None) -> list[dict[str, Any]]:
        store.get_task(task_id)
        return [result.to_payload() for result in store.list_verifications(task_id)]

    tool_estimate = server.tool(
        name="estimate_verification_cost",
        description="Estimate frames, tokens and USD cost of verifying a video of the given length.",
    )(_estimate_cost)

    tool_verify = server.tool(
        name="verify_task",
        description="Verify a task's stored recording with the AI judge and record the verdict.",
    )(_verify_task)

    tool_verification_status = server.tool(
        name="get_verification_status",
        description="Fetch the task status and its latest verification result.",
    )(_get_verification_status)

    tool_verifications = server.tool(
        name="list_verifications",
        description="List every verification recorded for a task, newest first.",
    )(_list_verifications)

    # Credentials -----------------------------------------------------------

    async def _set_api_key(api_key: str, context: Context | None = None) -> dict[str, Any]:
        value = api_key.strip()
        if not value:
            raise ValueError("api_key must not be empty")
        store.set_credential(value)
        await _emit_log(context, "info", "Judge API key updated")
        return {"configured": True, "api_key": mask_secret(value)}

    def _get_api_key(context: Context | None = None) -> dict[str, Any]:
        stored = store.get_credential()
        value = stored or settings.judge_api_key
        return {
            "configured": bool(value),
            "api_key": mask_secret(value),
            "source": "store" if stored else ("environment" if value else None),
        }

    async def _clear_api_key(context: Context | None = None) -> dict[str, Any]:
        store.clear_credential()
        await _emit_log(context, "info", "Judge API key cleared")
        return _get_api_key()

    tool_set_key = server.tool(
        name="set_api_key",
        description="Store the API key used for the verification judge.",
    )(_set_api_key)

    tool_get_key = server.tool(
        name="get_api_key",
        description="Report whether a judge API key is configured (masked).",
    )(_get_api_key)

    tool_clear_key = server.tool(
        name="clear_api_key",
        description="Remove the stored judge API key.",
    )(_clear_api_key)

    # Devices ---------------------------------------------------------------

    async def _enumerate_displays(context: Context | None = None) -> list[dict[str, Any]]:
        displays = await _require_controller().coordinator.enumerate_displays()
        await _emit_log(context, "debug", "Enumerated displays", extra={"count": len(displays)})
        return [asdict(display) for display in displays]

    async def _enumerate_webcams(context: Context | None = None) -> list[dict[str, Any]]:
        webcams = await _require_controller().coordinator.enumerate_webcams()
        await _emit_log(context, "debug", "Enumerated webcams", extra={"count": len(webcams)})
        return [asdict(webcam) for webcam in webcams]

    tool_displays = server.tool(
        name="enumerate_displays",
        description="List displays the capture engine can record.",
    )(_enumerate_displays)

    tool_webcams = server.tool(
        name="enumerate_webcams",
        description="List webcams the capture engine can record.",
    )(_enumerate_webcams)

    # Tasks -----------------------------------------------------------------

    async def _create_task(
        title: str,
        due_at: str,
        min_duration: int,
        description: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Create a task with a deadline and a minimum duration in seconds."""

        task = store.create_task(
            title=title,
            due_at=due_at,
            min_duration=min_duration,
            description=description,
        )
        await _emit_log(context, "info", "Task created", extra={"task_id": task.task_id})
        return task.to_dict()

    def _get_task(task_id: int, context: Context | None = None) -> dict[str, Any]:
        return store.get_task(task_id).to_dict()

    def _list_tasks(status: str | None = None, context: Context | None = None) -> list[dict[str, Any]]:
        return [task.to_dict() for task in store.list_tasks(status)]

    tool_create_task = server.tool(
        name="create_task",
        description="Create a task with a title, due time and minimum duration.",
    )(_create_task)

    tool_get_task = server.tool(
        name="get_task",
        description="Fetch a task and its stored recording.",
    )(_get_task)

    tool_list_tasks = server.tool(
        name="list_tasks",
        description="List tasks, optionally filtered by status (pending, in_progress, completed, failed).",
    )(_list_tasks)

    return ToolHandles(
        start_session=tool_start,
        pause_session=tool_pause,
        resume_session=tool_resume,
        stop_session=tool_stop,
        get_session_status=tool_status,
        estimate_verification_cost=tool_estimate,
        verify_task=tool_verify,
        get_verification_status=tool_verification_status,
        list_verifications=tool_verifications,
        set_api_key=tool_set_key,
        get_api_key=tool_get_key,
        clear_api_key=tool_clear_key,
        enumerate_displays=tool_displays,
        enumerate_webcams=tool_webcams,
        create_task=tool_create_task,
        get_task=tool_get_task,
        list_tasks=tool_list_tasks,
    )


async def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Log locally and mirror the message to the MCP client when a context is available."""

    payload = extra or {}
    log_method = getattr(logger, level, logger.info)
    log_method(message, extra=payload)

    if context is not None:
        details = ", ".join(f"{key}={value}" for key, value in payload.items())
        await context.log(f"{message} ({details})" if details else message, level=level)


__all__ = ["register_tools", "ToolHandles", "mask_secret", "resolve_api_key"]
