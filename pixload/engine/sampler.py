"""Bounded, probabilistic sampler for webhook failure diagnostics."""

from __future__ import annotations

import random
import threading
from collections.abc import Callable
from dataclasses import dataclass

import structlog

logger = structlog.get_logger()

DEFAULT_SAMPLE_CAPACITY = 500


@dataclass(frozen=True)
class FailureSample:
    status: int
    end_to_end_id: str | None
    error_code: str
    message: str


class SampleLimiter:
    """Caps how many failure samples a run may log.

    Two independent knobs: ``sample_pct`` is the chance (0-100) that an offer
    is accepted, ``capacity`` is the hard ceiling on accepted samples for the
    whole run. One limiter is shared by every worker.
    """

    def __init__(
        self,
        sample_pct: float,
        capacity: int = DEFAULT_SAMPLE_CAPACITY,
        rng: Callable[[], float] = random.random,
    ) -> None:
        if not 0.0 <= sample_pct <= 100.0:
            raise ValueError(f"sample_pct must be within [0, 100], got {sample_pct}")
        if capacity < 0:
            raise ValueError(f"capacity must be >= 0, got {capacity}")
        self.sample_pct = sample_pct
        self.capacity = capacity
        self._rng = rng
        self._lock = threading.Lock()
        self._emitted = 0
        self.samples: list[FailureSample] = []

    @property
    def emitted(self) -> int:
        return self._emitted

    def offer(
        self,
        status: int,
        end_to_end_id: str | None,
        error_code: str,
        message: str | None = None,
    ) -> bool:
        """Offer one failure; return True if it was emitted."""
        draw = self._rng() * 100.0
        if draw >= self.sample_pct:
            return False
        sample = FailureSample(
            status=status,
            end_to_end_id=end_to_end_id,
            error_code=error_code,
            message=message or "",
        )
        # check-and-increment must be one step or concurrent offers overshoot
        with self._lock:
            if self._emitted >= self.capacity:
                return False
            self._emitted += 1
            self.samples.append(sample)

        logger.warning(
            "webhook_failure_sampled",
            status=status,
            code=error_code,
            e2e=end_to_end_id,
            msg=sample.message,
        )
        return True
