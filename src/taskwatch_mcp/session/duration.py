"""Active recording time tracked from clock deltas."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True, slots=True)
class DurationSnapshot:
    """Consistent view of the accumulator at one instant."""

    accumulated: float
    started_at: float | None
    paused_at: float | None

    @property
    def running(self) -> bool:
        return self.started_at is not None

    def elapsed(self, now: float) -> float:
        if self.started_at is None:
            return self.accumulated
        return self.accumulated + max(0.0, now - self.started_at)


class DurationAccumulator:
    """Sum of Recording-state intervals across pause/resume cycles.

    The accumulator never counts ticks. It stores the committed total plus the clock
    reading at which the current running stretch began, and derives elapsed time from
    those two values on every read. State lives in a single frozen snapshot that is
    swapped wholesale, so a reader always sees matching ``accumulated``/``started_at``.
    """

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or time.monotonic
        self._snapshot = DurationSnapshot(accumulated=0.0, started_at=None, paused_at=None)

    @property
    def snapshot(self) -> DurationSnapshot:
        return self._snapshot

    def now(self) -> float:
        return self._clock()

    def reset(self) -> None:
        self._snapshot = DurationSnapshot(accumulated=0.0, started_at=None, paused_at=None)

    def start(self) -> None:
        """Begin a running stretch; a no-op when already running."""

        current = self._snapshot
        if current.running:
            return
        self._snapshot = DurationSnapshot(
            accumulated=current.accumulated, started_at=self._clock(), paused_at=None
        )

    def pause(self) -> float:
        """Commit the running stretch and return the new accumulated total."""

        current = self._snapshot
        if not current.running:
            return current.accumulated
        now = self._clock()
        self._snapshot = DurationSnapshot(
            accumulated=current.elapsed(now), started_at=None, paused_at=now
        )
        return self._snapshot.accumulated

    def freeze(self) -> float:
        """Commit any running stretch and stop advancing for good."""

        total = self.pause()
        self._snapshot = DurationSnapshot(accumulated=total, started_at=None, paused_at=None)
        return total

    def restore(self, snapshot: DurationSnapshot) -> None:
        self._snapshot = snapshot

    def current(self) -> float:
        return self._snapshot.elapsed(self._clock())


__all__ = ["DurationAccumulator", "DurationSnapshot"]
