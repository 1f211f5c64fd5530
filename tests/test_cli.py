from __future__ import annotations

import argparse
import importlib.util
import json
from datetime import datetime, timezone
from pathlib import Path

from taskwatch_mcp.storage import TaskRecord, TaskStatus
from taskwatch_mcp.verification import VerificationResult


def _load_diag(name: str):
    module_path = Path(__file__).resolve().parents[1] / "scripts" / "taskwatch_diag.py"
    spec = importlib.util.spec_from_file_location(name, module_path)
    assert spec and spec.loader
    diag = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(diag)
    return diag


def _task(task_id: int, status: TaskStatus, recorded: float | None = None) -> TaskRecord:
    now = datetime(2025, 1, 1, tzinfo=timezone.utc)
    return TaskRecord(
        task_id=task_id,
        title=f"Task {task_id}",
        due_at="2025-01-02T00:00:00+00:00",
        min_duration=600,
        status=status,
        created_at=now,
        updated_at=now,
        video_path=f"/rec/task_{task_id}_combined.mp4" if recorded else None,
        recorded_duration=recorded,
    )


def test_metrics_reports_verification_counts(monkeypatch, capsys) -> None:
    class StubStore:
        def list_tasks(self, status=None):
            return [
                _task(1, TaskStatus.COMPLETED, recorded=600.0),
                _task(2, TaskStatus.FAILED, recorded=300.0),
                _task(3, TaskStatus.PENDING),
            ]

        def search_events(self, filters=None):
            assert filters == {"event_type": "verification_recorded"}
            return [
                argparse.Namespace(metadata={"verified": True, "confidence": 90, "model": "gpt-4o"}),
                argparse.Namespace(metadata={"verified": False, "confidence": 60, "model": "gpt-4o"}),
                argparse.Namespace(metadata={"verified": False, "confidence": 30}),
            ]

    diag = _load_diag("taskwatch_diag_metrics_module")
    monkeypatch.setattr(diag, "load_store", lambda _settings: StubStore())

    diag.cmd_metrics(argparse.Namespace())

    payload = json.loads(capsys.readouterr().out)
    assert payload["tasks_total"] == 3
    assert payload["status_counts"] == {"completed": 1, "failed": 1, "pending": 1}
    assert payload["recordings_total"] == 2
    assert payload["recorded_seconds_total"] == 900.0
    assert payload["verifications_passed"] == 1
    assert payload["verifications_failed"] == 2
    assert payload["average_confidence"] == 60
    assert payload["model_counts"] == {"gpt-4o": 2, "unknown": 1}


def test_tasks_plain_listing(monkeypatch, capsys) -> None:
    class StubStore:
        def list_tasks(self, status=None):
            assert status == "completed"
            return [_task(1, TaskStatus.COMPLETED, recorded=600.0)]

    diag = _load_diag("taskwatch_diag_tasks_module")
    monkeypatch.setattr(diag, "load_store", lambda _settings: StubStore())

    diag.cmd_tasks(argparse.Namespace(status="completed", json=False))

    assert capsys.readouterr().out.strip() == "1 [completed] Task 1 -> /rec/task_1_combined.mp4"


def test_verifications_limit(monkeypatch, capsys) -> None:
    results = [
        VerificationResult(
            task_id=4,
            verified=bool(index % 2),
            confidence=50 + index,
            time_on_task_minutes=1,
            explanation="checked",
            video_duration=600,
        )
        for index in range(3)
    ]

    class StubStore:
        def get_task(self, task_id):
            return _task(task_id, TaskStatus.FAILED)

        def list_verifications(self, task_id):
            return list(reversed(results))

    diag = _load_diag("taskwatch_diag_verifications_module")
    monkeypatch.setattr(diag, "load_store", lambda _settings: StubStore())

    diag.cmd_verifications(argparse.Namespace(task_id=4, limit=2))

    payload = json.loads(capsys.readouterr().out)
    assert [item["confidence"] for item in payload] == [52, 51]


def test_parser_requires_subcommand(capsys) -> None:
    diag = _load_diag("taskwatch_diag_parser_module")

    diag.main([])

    assert "TaskWatch MCP diagnostics" in capsys.readouterr().out
