"""Load shapes: a fixed worker pool, or a ramping arrival rate.

Fixed pool (closed model)
    ``W`` workers each loop the iteration body back to back, with a pacing
    delay after every iteration, until the duration elapses.

Ramping arrival rate (open model)
    One scheduler task integrates the piecewise-linear rate curve to find how
    many iterations should have started by now and dispatches the difference
    onto a bounded ``WorkerPool``. An arrival that finds the pool saturated is
    dropped and counted, never queued.

In both modes stopping (duration elapsed or ``stop()``) only prevents new
starts; in-flight iterations always run to completion.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from pixload.engine import metrics as m
from pixload.engine.metrics import MetricsSink

logger = structlog.get_logger()

Iteration = Callable[[], Awaitable[Any]]
Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[Any]]

PROGRESS_LOG_INTERVAL_SECONDS = 10.0


# ---------------------------------------------------------------------------
# Shapes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoadStage:
    """Ramp to *target* by the end of *duration* seconds."""

    duration: float
    target: float

    def __post_init__(self) -> None:
        if self.duration < 0:
            raise ValueError(f"stage duration must be >= 0, got {self.duration}")
        if self.target < 0:
            raise ValueError(f"stage target must be >= 0, got {self.target}")


@dataclass(frozen=True)
class FixedPoolShape:
    workers: int
    duration: float
    pacing: float = 0.0

    def __post_init__(self) -> None:
        if self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")
        if self.duration <= 0:
            raise ValueError(f"duration must be > 0, got {self.duration}")
        if self.pacing < 0:
            raise ValueError(f"pacing must be >= 0, got {self.pacing}")


@dataclass(frozen=True)
class RampingShape:
    stages: tuple[LoadStage, ...]
    preallocated: int
    maximum: int
    start_rate: float = 0.0
    time_unit: float = 1.0

    def __post_init__(self) -> None:
        if not self.stages:
            raise ValueError("ramping shape needs at least one stage")
        if self.start_rate < 0:
            raise ValueError(f"start_rate must be >= 0, got {self.start_rate}")
        if self.time_unit <= 0:
            raise ValueError(f"time_unit must be > 0, got {self.time_unit}")
        if not 0 <= self.preallocated <= self.maximum or self.maximum < 1:
            raise ValueError(
                f"pool bounds must satisfy 0 <= preallocated <= maximum >= 1, "
                f"got [{self.preallocated}, {self.maximum}]"
            )


LoadShape = FixedPoolShape | RampingShape


@dataclass
class LoadStats:
    started: int = 0
    completed: int = 0
    crashed: int = 0
    dropped: int = 0
    due: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "started": self.started,
            "completed": self.completed,
            "crashed": self.crashed,
            "dropped": self.dropped,
            "due": self.due,
            "duration_seconds": round(self.duration_seconds, 3),
        }


# ---------------------------------------------------------------------------
# Ramp math
# ---------------------------------------------------------------------------


class RampProfile:
    """Piecewise-linear arrival rate built from ``LoadStage`` targets."""

    def __init__(
        self,
        stages: Sequence[LoadStage],
        start_rate: float = 0.0,
        time_unit: float = 1.0,
    ) -> None:
        self.stages = tuple(stages)
        self.start_rate = start_rate
        self.time_unit = time_unit

    @property
    def total_duration(self) -> float:
        return sum(s.duration for s in self.stages)

    def rate_at(self, elapsed: float) -> float:
        """Arrivals per second at *elapsed* seconds."""
        prev = self.start_rate
        offset = 0.0
        for stage in self.stages:
            end = offset + stage.duration
            if elapsed < end and stage.duration > 0:
                frac = (elapsed - offset) / stage.duration
                return (prev + (stage.target - prev) * frac) / self.time_unit
            prev = stage.target
            offset = end
        return prev / self.time_unit if elapsed <= offset else 0.0

    def arrivals_due(self, elapsed: float) -> float:
        """Area under the rate curve from 0 to *elapsed* (iterations)."""
        elapsed = min(max(elapsed, 0.0), self.total_duration)
        prev = self.start_rate
        offset = 0.0
        area = 0.0
        for stage in self.stages:
            if stage.duration == 0:
                prev = stage.target
                continue
            end = offset + stage.duration
            if elapsed >= end:
                area += (prev + stage.target) / 2.0 * stage.duration
            else:
                x = elapsed - offset
                rate_x = prev + (stage.target - prev) * (x / stage.duration)
                area += (prev + rate_x) / 2.0 * x
                break
            prev = stage.target
            offset = end
        return area / self.time_unit


# ---------------------------------------------------------------------------
# Worker pool
# ---------------------------------------------------------------------------


class WorkerPool:
    """Bounded set of execution slots.

    ``preallocated`` slots are considered warm; the pool grows on demand up
    to ``maximum``. Acquire/release run on the event loop thread with no await
    in between, so the busy count needs no lock.
    """

    def __init__(self, preallocated: int, maximum: int) -> None:
        if maximum < 1 or not 0 <= preallocated <= maximum:
            raise ValueError(f"invalid pool bounds [{preallocated}, {maximum}]")
        self.preallocated = preallocated
        self.maximum = maximum
        self.allocated = preallocated
        self.busy = 0

    @property
    def saturated(self) -> bool:
        return self.busy >= self.maximum

    def try_acquire(self) -> bool:
        if self.saturated:
            return False
        self.busy += 1
        if self.busy > self.allocated:
            self.allocated = self.busy
            if self.allocated == self.preallocated + 1:
                logger.warning(
                    "worker_pool_grew",
                    preallocated=self.preallocated,
                    maximum=self.maximum,
                )
        return True

    def release(self) -> None:
        if self.busy <= 0:
            raise RuntimeError("release() without matching try_acquire()")
        self.busy -= 1


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


class _Executor:
    def __init__(self, sink: MetricsSink, clock: Clock, sleep: Sleep) -> None:
        self.sink = sink
        self.stats = LoadStats()
        self._clock = clock
        self._sleep = sleep
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    def stop(self) -> None:
        """Stop starting new iterations; in-flight ones finish normally."""
        self._stopped = True

    async def _execute(self, iteration: Iteration) -> None:
        self.stats.started += 1
        try:
            await iteration()
        except Exception:
            self.stats.crashed += 1
            self.sink.record(m.ITERATION_ERRORS, 1)
            logger.exception("iteration_crashed")
        else:
            self.stats.completed += 1
            self.sink.record(m.ITERATIONS, 1)


class ConstantWorkers(_Executor):
    def __init__(
        self,
        shape: FixedPoolShape,
        sink: MetricsSink,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        super().__init__(sink, clock, sleep)
        self.shape = shape

    async def run(self, iteration: Iteration) -> LoadStats:
        shape = self.shape
        start = self._clock()
        deadline = start + shape.duration
        logger.info(
            "load_started",
            mode="fixed_pool",
            workers=shape.workers,
            duration_seconds=shape.duration,
        )

        async def worker() -> None:
            while not self._stopped and self._clock() < deadline:
                await self._execute(iteration)
                remaining = deadline - self._clock()
                # a zero pacing still yields so workers interleave
                if remaining > 0 and not self._stopped:
                    await self._sleep(min(shape.pacing, remaining))

        await asyncio.gather(*(worker() for _ in range(shape.workers)))

        self.stats.duration_seconds = self._clock() - start
        self.stats.due = self.stats.started
        logger.info("load_complete", mode="fixed_pool", **self.stats.to_dict())
        return self.stats


class RampingArrivalRate(_Executor):
    def __init__(
        self,
        shape: RampingShape,
        sink: MetricsSink,
        tick: float = 0.01,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        super().__init__(sink, clock, sleep)
        if tick <= 0:
            raise ValueError(f"tick must be > 0, got {tick}")
        self.shape = shape
        self.tick = tick
        self.profile = RampProfile(shape.stages, shape.start_rate, shape.time_unit)
        self.pool = WorkerPool(shape.preallocated, shape.maximum)
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def in_flight(self) -> int:
        return len(self._pending)

    def _dispatch(self, iteration: Iteration) -> None:
        if not self.pool.try_acquire():
            self.stats.dropped += 1
            self.sink.record(m.DROPPED_ITERATIONS, 1)
            logger.debug("arrival_dropped", busy=self.pool.busy, maximum=self.pool.maximum)
            return
        task = asyncio.create_task(self._run_slot(iteration))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _run_slot(self, iteration: Iteration) -> None:
        try:
            await self._execute(iteration)
        finally:
            self.pool.release()

    async def schedule(self, iteration: Iteration) -> LoadStats:
        """Start arrivals until the last stage ends or ``stop()`` is called."""
        total = self.profile.total_duration
        start = self._clock()
        next_progress = PROGRESS_LOG_INTERVAL_SECONDS
        logger.info(
            "load_started",
            mode="ramping_arrival_rate",
            stages=len(self.shape.stages),
            duration_seconds=total,
            preallocated=self.shape.preallocated,
            maximum=self.shape.maximum,
        )

        while not self._stopped:
            elapsed = min(self._clock() - start, total)
            # epsilon keeps exact integral values from flooring one short
            due = int(self.profile.arrivals_due(elapsed) + 1e-9)
            while self.stats.due < due:
                self.stats.due += 1
                self._dispatch(iteration)

            if elapsed >= total:
                break
            if elapsed >= next_progress:
                next_progress += PROGRESS_LOG_INTERVAL_SECONDS
                logger.info(
                    "load_progress",
                    elapsed_seconds=int(elapsed),
                    target_rate=round(self.profile.rate_at(elapsed), 1),
                    started=self.stats.started,
                    dropped=self.stats.dropped,
                    in_flight=self.in_flight,
                )
            await self._sleep(min(self.tick, total - elapsed))

        self.stats.duration_seconds = self._clock() - start
        return self.stats

    async def drain(self) -> None:
        """Wait for every in-flight iteration to finish."""
        if self._pending:
            logger.info("load_draining", in_flight=len(self._pending))
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def run(self, iteration: Iteration) -> LoadStats:
        await self.schedule(iteration)
        await self.drain()
        logger.info(
            "load_complete",
            mode="ramping_arrival_rate",
            pool_allocated=self.pool.allocated,
            **self.stats.to_dict(),
        )
        return self.stats


class LoadController:
    """Picks the executor for a shape and runs the iteration body under it."""

    def __init__(
        self,
        shape: LoadShape,
        sink: MetricsSink,
        tick: float = 0.01,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.shape = shape
        self.executor: ConstantWorkers | RampingArrivalRate
        if isinstance(shape, FixedPoolShape):
            self.executor = ConstantWorkers(shape, sink, clock=clock, sleep=sleep)
        elif isinstance(shape, RampingShape):
            self.executor = RampingArrivalRate(shape, sink, tick=tick, clock=clock, sleep=sleep)
        else:
            raise TypeError(f"unsupported load shape: {type(shape).__name__}")

    async def run(self, iteration: Iteration) -> LoadStats:
        return await self.executor.run(iteration)

    def stop(self) -> None:
        self.executor.stop()
