"""Verdict schemas: the judge's raw answer and the persisted verification result."""

from __future__ import annotations

import json
import math
import re
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ..errors import JudgeResponseInvalid

_FENCE_RE = re.compile(r"^```(?:json)?\s*(?P<body>.*?)\s*```$", re.DOTALL | re.IGNORECASE)
_RANGE_SPLIT_RE = re.compile(r"\s*(?:-|–|—|to)\s*")


def parse_timestamp(value: Any) -> float:
    """Parse ``SS``, ``MM:SS`` or ``HH:MM:SS`` (ranges use their start) into seconds."""

    if isinstance(value, bool):
        raise ValueError("Timestamp must be a number or clock string")
    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("Timestamp must not be empty")
        text = _RANGE_SPLIT_RE.split(text, maxsplit=1)[0]
        parts = text.split(":")
        if len(parts) > 3:
            raise ValueError(f"Unrecognized timestamp '{value}'")
        try:
            numbers = [float(part) for part in parts]
        except ValueError as exc:
            raise ValueError(f"Unrecognized timestamp '{value}'") from exc
        seconds = 0.0
        for number in numbers:
            seconds = seconds * 60 + number
    else:
        raise ValueError("Timestamp must be a number or clock string")
    if not math.isfinite(seconds) or seconds < 0:
        raise ValueError(f"Timestamp '{value}' is out of range")
    return seconds


def format_timestamp(seconds: float) -> str:
    if not math.isfinite(seconds) or seconds < 0:
        raise ValueError(f"Cannot format offset {seconds!r}")
    whole = int(seconds)
    hours, remainder = divmod(whole, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


class TimelineEntry(BaseModel):
    """One observed activity at a point in the recording."""

    model_config = ConfigDict(frozen=True)

    timestamp: str = Field(..., description="Normalized MM:SS or H:MM:SS offset.")
    activity: str = Field(..., description="What the user was doing at that point.")
    offset_seconds: float = Field(..., ge=0)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            raise ValueError("Timeline entries must be objects with timestamp and activity")
        if "timestamp" not in data:
            raise ValueError("Timeline entry is missing 'timestamp'")
        offset = data.get("offset_seconds")
        if offset is None:
            offset = parse_timestamp(data["timestamp"])
        else:
            offset = parse_timestamp(offset)
        activity = data.get("activity")
        if not isinstance(activity, str) or not activity.strip():
            raise ValueError("Timeline entry needs a non-empty 'activity'")
        return {
            "timestamp": format_timestamp(offset),
            "activity": activity.strip(),
            "offset_seconds": offset,
        }


class JudgeVerdict(BaseModel):
    """Schema the judge's JSON answer must satisfy.

    Defaulting rules: ``confidence`` is clamped to [0, 100]; ``issues`` and
    ``timeline`` default to empty lists; timeline entries are sorted by offset.
    Anything else that does not fit is rejected.
    """

    verified: bool
    confidence: int
    time_on_task_minutes: float = Field(..., ge=0)
    explanation: str
    issues: list[str] = Field(default_factory=list)
    timeline: list[TimelineEntry] = Field(default_factory=list)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> int:
        if isinstance(value, bool) or value is None:
            raise ValueError("confidence must be a number")
        if isinstance(value, str):
            value = value.strip().rstrip("%")
        try:
            number = float(value)
        except (TypeError, ValueError) as exc:
            raise ValueError("confidence must be a number") from exc
        if not math.isfinite(number):
            raise ValueError("confidence must be finite")
        return int(round(min(100.0, max(0.0, number))))

    @field_validator("time_on_task_minutes")
    @classmethod
    def _finite_minutes(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("time_on_task_minutes must be finite")
        return value

    @field_validator("explanation")
    @classmethod
    def _require_explanation(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("explanation must not be empty")
        return normalized

    @field_validator("issues", mode="before")
    @classmethod
    def _default_issues(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("issues")
    @classmethod
    def _strip_issues(cls, value: list[str]) -> list[str]:
        return [issue.strip() for issue in value if issue.strip()]

    @field_validator("timeline", mode="before")
    @classmethod
    def _default_timeline(cls, value: Any) -> Any:
        if value is None:
            return []
        if not isinstance(value, list):
            raise ValueError("timeline must be a list")
        return value

    @field_validator("timeline")
    @classmethod
    def _sort_timeline(cls, value: list[TimelineEntry]) -> list[TimelineEntry]:
        return sorted(value, key=lambda entry: entry.offset_seconds)


class VerificationResult(BaseModel):
    """Immutable record of one verification attempt."""

    model_config = ConfigDict(frozen=True)

    task_id: int
    verified: bool
    confidence: int = Field(..., ge=0, le=100)
    time_on_task_minutes: float = Field(..., ge=0)
    explanation: str = Field(..., min_length=1)
    issues: tuple[str, ...] = ()
    timeline: tuple[TimelineEntry, ...] = ()
    video_duration: float = Field(..., ge=0)
    model: str | None = None
    verified_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def _check_invariants(self) -> "VerificationResult":
        if self.time_on_task_minutes > self.video_duration / 60 + 1e-9:
            raise ValueError("time_on_task_minutes cannot exceed the video duration")
        offsets = [entry.offset_seconds for entry in self.timeline]
        if offsets != sorted(offsets):
            raise ValueError("timeline must be chronologically ordered")
        return self

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


def _extract_json(text: str) -> Any:
    stripped = text.strip()
    fenced = _FENCE_RE.match(stripped)
    if fenced:
        stripped = fenced.group("body")
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        start = stripped.find("{")
        end = stripped.rfind("}")
        if start == -1 or end <= start:
            raise
        return json.loads(stripped[start : end + 1])


def decode_verdict(text: str) -> JudgeVerdict:
    """Decode the judge's reply text into a validated ``JudgeVerdict``."""

    if not text or not text.strip():
        raise JudgeResponseInvalid("Judge returned an empty response", raw=text)
    try:
        payload = _extract_json(text)
    except json.JSONDecodeError as exc:
        raise JudgeResponseInvalid(f"Judge response is not valid JSON: {exc}", raw=text) from exc
    if not isinstance(payload, dict):
        raise JudgeResponseInvalid("Judge response must be a JSON object", raw=text)
    try:
        return JudgeVerdict.model_validate(payload)
    except ValidationError as exc:
        raise JudgeResponseInvalid(f"Judge response failed validation: {exc}", raw=text) from exc


__all__ = [
    "JudgeVerdict",
    "TimelineEntry",
    "VerificationResult",
    "decode_verdict",
    "format_timestamp",
    "parse_timestamp",
]
