"""Exponential backoff with jitter, following Kubernetes ``wait.Backoff`` stepping."""

from __future__ import annotations

import random
from dataclasses import dataclass, field


@dataclass
class Backoff:
    """Stateful exponential backoff.

    Each :meth:`step` returns the current delay (with jitter) and grows the base
    delay by ``factor`` until ``steps`` are used up, after which the last delay
    is returned forever. ``cap`` bounds the base delay when set.
    """

    duration: float = 0.25
    factor: float = 1.5
    jitter: float = 0.1
    steps: int = 20
    cap: float | None = None

    _initial: tuple[float, int] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._initial = (self.duration, self.steps)

    def step(self) -> float:
        """Return the next delay in seconds and advance the schedule."""
        if self.steps < 1:
            return self._jittered(self.duration)

        self.steps -= 1
        delay = self.duration
        if self.factor:
            self.duration *= self.factor
            if self.cap is not None and self.duration > self.cap:
                self.duration = self.cap
                self.steps = 0
        return self._jittered(delay)

    def reset(self) -> None:
        self.duration, self.steps = self._initial

    def _jittered(self, delay: float) -> float:
        if self.jitter > 0:
            return delay + random.random() * self.jitter * delay
        return delay


def forever_watch_backoff() -> Backoff:
    """Backoff preset for the CRD watch: 250 ms growing to roughly 8 minutes."""
    return Backoff(duration=0.25, factor=1.5, jitter=0.1, steps=20)
