"""Pre-flight token and cost estimates for judge calls."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from .sampling import DEFAULT_MAX_SAMPLES, plan_samples

if TYPE_CHECKING:
    from ..config import TaskWatchSettings


@dataclass(frozen=True, slots=True)
class CostEstimate:
    sample_count: int
    sample_interval: float
    estimated_tokens: int
    estimated_cost_usd: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class CostEstimator:
    """Predict judge usage from video length alone; performs no I/O."""

    def __init__(
        self,
        *,
        max_samples: int = DEFAULT_MAX_SAMPLES,
        tokens_per_frame: int = 1000,
        prompt_tokens: int = 500,
        usd_per_million_tokens: float = 3.0,
    ) -> None:
        self.max_samples = max_samples
        self.tokens_per_frame = tokens_per_frame
        self.prompt_tokens = prompt_tokens
        self.usd_per_million_tokens = usd_per_million_tokens

    @classmethod
    def from_settings(cls, settings: "TaskWatchSettings") -> "CostEstimator":
        return cls(
            max_samples=settings.max_samples,
            tokens_per_frame=settings.tokens_per_frame,
            prompt_tokens=settings.prompt_tokens,
            usd_per_million_tokens=settings.usd_per_million_tokens,
        )

    def estimate(self, video_duration_seconds: float, sample_interval_seconds: float) -> CostEstimate:
        if video_duration_seconds < 0:
            raise ValueError("Video duration must be >= 0 seconds")
        plan = plan_samples(video_duration_seconds, sample_interval_seconds, self.max_samples)
        tokens = plan.count * self.tokens_per_frame + self.prompt_tokens
        cost = tokens / 1_000_000 * self.usd_per_million_tokens
        return CostEstimate(
            sample_count=plan.count,
            sample_interval=plan.interval,
            estimated_tokens=tokens,
            estimated_cost_usd=cost,
        )


__all__ = ["CostEstimate", "CostEstimator"]
