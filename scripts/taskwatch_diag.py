"""TaskWatch MCP diagnostics CLI."""

from __future__ import annotations

import argparse
import json

from taskwatch_mcp.config import TaskWatchSettings
from taskwatch_mcp.errors import TaskNotFound
from taskwatch_mcp.storage import ChromaStore, ChromaUnavailableError


def load_store(settings: TaskWatchSettings) -> ChromaStore:
    store = ChromaStore(settings.chroma_persist_path)
    try:
        store.ping()
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)
    return store


def cmd_tasks(args: argparse.Namespace) -> None:
    store = load_store(TaskWatchSettings())
    tasks = store.list_tasks(args.status)
    if args.json:
        print(json.dumps([task.to_dict() for task in tasks], indent=2))
    else:
        for task in tasks:
            recording = task.video_path or "-"
            print(f"{task.task_id} [{task.status.value}] {task.title} -> {recording}")


def cmd_verifications(args: argparse.Namespace) -> None:
    store = load_store(TaskWatchSettings())
    try:
        store.get_task(args.task_id)
    except TaskNotFound as exc:
        print(str(exc))
        raise SystemExit(1)
    history = store.list_verifications(args.task_id)
    if args.limit is not None and args.limit > 0:
        history = history[: args.limit]
    print(json.dumps([result.to_payload() for result in history], indent=2))


def cmd_metrics(args: argparse.Namespace) -> None:
    store = load_store(TaskWatchSettings())
    tasks = store.list_tasks()
    verifications = store.search_events(filters={"event_type": "verification_recorded"})

    status_counts: dict[str, int] = {}
    for task in tasks:
        status_counts[task.status.value] = status_counts.get(task.status.value, 0) + 1

    verified = sum(1 for event in verifications if event.metadata.get("verified"))
    confidences = [event.metadata.get("confidence", 0) for event in verifications]
    model_counts: dict[str, int] = {}
    for event in verifications:
        model = event.metadata.get("model") or "unknown"
        model_counts[model] = model_counts.get(model, 0) + 1

    recorded = [task.recorded_duration for task in tasks if task.recorded_duration is not None]
    metrics = {
        "tasks_total": len(tasks),
        "status_counts": status_counts,
        "recordings_total": len(recorded),
        "recorded_seconds_total": sum(recorded),
        "verifications_total": len(verifications),
        "verifications_passed": verified,
        "verifications_failed": len(verifications) - verified,
        "average_confidence": (sum(confidences) / len(confidences)) if confidences else None,
        "model_counts": model_counts,
    }
    print(json.dumps(metrics, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="TaskWatch MCP diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_tasks = sub.add_parser("tasks", help="List stored tasks")
    p_tasks.add_argument("--status", choices=["pending", "in_progress", "completed", "failed"])
    p_tasks.add_argument("--json", action="store_true", help="Output JSON")
    p_tasks.set_defaults(func=cmd_tasks)

    p_verifications = sub.add_parser("verifications", help="List verification results for a task")
    p_verifications.add_argument("task_id", type=int)
    p_verifications.add_argument(
        "--limit",
        type=int,
        default=None,
        help="If provided, show only the latest N results",
    )
    p_verifications.set_defaults(func=cmd_verifications)

    p_metrics = sub.add_parser("metrics", help="Show task, recording and verification counts")
    p_metrics.set_defaults(func=cmd_metrics)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
