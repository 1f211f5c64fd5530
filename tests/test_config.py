from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from taskwatch_mcp.config import DEFAULT_JUDGE_MODELS, TaskWatchSettings, get_settings


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("TASKWATCH_JUDGE_MODELS", raising=False)
    settings = TaskWatchSettings(_env_file=None)

    assert settings.sample_interval == 15
    assert settings.max_samples == 60
    assert settings.min_time_on_task_ratio == 0.5
    assert settings.judge_models == DEFAULT_JUDGE_MODELS
    assert settings.log_level == "INFO"


def test_env_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("TASKWATCH_JUDGE_MODELS", "model-a, model-b,,")
    monkeypatch.setenv("TASKWATCH_LOG_LEVEL", "debug")
    monkeypatch.setenv("TASKWATCH_SAMPLE_INTERVAL", "10")
    monkeypatch.setenv("CHROMA_PERSIST_PATH", str(tmp_path / "chroma"))

    settings = TaskWatchSettings(_env_file=None)

    assert settings.judge_models == ("model-a", "model-b")
    assert settings.log_level == "DEBUG"
    assert settings.sample_interval == 10
    assert settings.chroma_persist_path == tmp_path / "chroma"


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("TASKWATCH_LOG_LEVEL", "LOUD"),
        ("TASKWATCH_SAMPLE_INTERVAL", "0"),
        ("TASKWATCH_MAX_SAMPLES", "0"),
        ("TASKWATCH_JPEG_QUALITY", "101"),
        ("TASKWATCH_MIN_TIME_ON_TASK_RATIO", "1.5"),
    ],
)
def test_invalid_values_rejected(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        TaskWatchSettings(_env_file=None)


def test_get_settings_resolves_paths(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("TASKWATCH_RECORDINGS_DIR", str(tmp_path / "rec" / ".." / "videos"))
    get_settings.cache_clear()
    try:
        settings = get_settings()
        assert settings.recordings_dir == (tmp_path / "videos").resolve()
        assert settings.chroma_persist_path.is_absolute()
    finally:
        get_settings.cache_clear()
