"""Configuration management for TaskWatch MCP."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_JUDGE_MODELS = ("gpt-4o", "gpt-4o-mini")


class TaskWatchSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    chroma_persist_path: Path = Field(
        default=Path("./storage/chroma"), validation_alias="CHROMA_PERSIST_PATH"
    )
    recordings_dir: Path = Field(
        default=Path("./storage/recordings"), validation_alias="TASKWATCH_RECORDINGS_DIR"
    )
    ffmpeg_path: str | None = Field(default=None, validation_alias="TASKWATCH_FFMPEG_PATH")
    capture_framerate: int = Field(default=30, validation_alias="TASKWATCH_CAPTURE_FRAMERATE")

    judge_base_url: str | None = Field(default=None, validation_alias="TASKWATCH_JUDGE_BASE_URL")
    judge_models: Annotated[tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_JUDGE_MODELS, validation_alias="TASKWATCH_JUDGE_MODELS"
    )
    judge_api_key: str | None = Field(default=None, validation_alias="TASKWATCH_JUDGE_API_KEY")
    judge_timeout: float = Field(default=120.0, validation_alias="TASKWATCH_JUDGE_TIMEOUT")
    judge_max_tokens: int = Field(default=2048, validation_alias="TASKWATCH_JUDGE_MAX_TOKENS")

    sample_interval: float = Field(default=15.0, validation_alias="TASKWATCH_SAMPLE_INTERVAL")
    max_samples: int = Field(default=60, validation_alias="TASKWATCH_MAX_SAMPLES")
    frame_max_width: int = Field(default=1280, validation_alias="TASKWATCH_FRAME_MAX_WIDTH")
    jpeg_quality: int = Field(default=80, validation_alias="TASKWATCH_JPEG_QUALITY")

    tokens_per_frame: int = Field(default=1000, validation_alias="TASKWATCH_TOKENS_PER_FRAME")
    prompt_tokens: int = Field(default=500, validation_alias="TASKWATCH_PROMPT_TOKENS")
    usd_per_million_tokens: float = Field(
        default=3.0, validation_alias="TASKWATCH_USD_PER_MILLION_TOKENS"
    )
    min_time_on_task_ratio: float = Field(
        default=0.5, validation_alias="TASKWATCH_MIN_TIME_ON_TASK_RATIO"
    )

    log_level: str = Field(default="INFO", validation_alias="TASKWATCH_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "TASKWATCH_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("judge_models", mode="before")
    @classmethod
    def _parse_judge_models(cls, value):
        if value is None or value == "":
            return DEFAULT_JUDGE_MODELS
        if isinstance(value, (list, tuple)):
            models = tuple(str(item).strip() for item in value if str(item).strip())
        elif isinstance(value, str):
            models = tuple(part.strip() for part in value.split(",") if part.strip())
        else:
            raise TypeError("TASKWATCH_JUDGE_MODELS must be a list or a comma-separated string")
        return models or DEFAULT_JUDGE_MODELS

    @field_validator("sample_interval", "judge_timeout")
    @classmethod
    def _validate_positive_seconds(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Intervals and timeouts must be > 0 seconds")
        return value

    @field_validator("max_samples", "capture_framerate", "frame_max_width", "judge_max_tokens")
    @classmethod
    def _validate_positive_int(cls, value: int) -> int:
        if value < 1:
            raise ValueError("Value must be >= 1")
        return value

    @field_validator("jpeg_quality")
    @classmethod
    def _validate_jpeg_quality(cls, value: int) -> int:
        if not 1 <= value <= 100:
            raise ValueError("TASKWATCH_JPEG_QUALITY must be between 1 and 100")
        return value

    @field_validator("min_time_on_task_ratio")
    @classmethod
    def _validate_ratio(cls, value: float) -> float:
        if not 0 <= value <= 1:
            raise ValueError("TASKWATCH_MIN_TIME_ON_TASK_RATIO must be between 0 and 1")
        return value


@lru_cache(maxsize=1)
def get_settings() -> TaskWatchSettings:
    """Return cached settings instance."""

    settings = TaskWatchSettings()
    settings.chroma_persist_path = settings.chroma_persist_path.expanduser().resolve()
    settings.recordings_dir = settings.recordings_dir.expanduser().resolve()
    return settings


__all__ = ["TaskWatchSettings", "get_settings", "DEFAULT_JUDGE_MODELS"]
