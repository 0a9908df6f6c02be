"""Built-in scenario profiles."""

from dataclasses import dataclass, field

from pixload.engine.load import FixedPoolShape, LoadShape, LoadStage, RampingShape

# Same pass/fail bar for both shapes
DEFAULT_THRESHOLDS: dict[str, list[str]] = {
    "http_req_failed": ["rate<0.005"],
    "http_req_duration{endpoint:transfer_create}": ["p(95)<300"],
    "time_to_confirm": ["p(95)<2000"],
    "webhook_5xx_rate": ["rate<0.002"],
}


@dataclass
class Scenario:
    name: str
    shape: LoadShape
    thresholds: dict[str, list[str]] = field(default_factory=lambda: dict(DEFAULT_THRESHOLDS))


def baseline(workers: int = 30, duration: float = 300.0, pacing: float = 0.5) -> Scenario:
    """Constant 30 workers for 5 minutes with 0.5 s think time."""
    return Scenario(
        name="baseline",
        shape=FixedPoolShape(workers=workers, duration=duration, pacing=pacing),
    )


STRESS_STAGES: tuple[LoadStage, ...] = (
    LoadStage(duration=30, target=25),  # warm-up
    LoadStage(duration=60, target=50),
    LoadStage(duration=60, target=100),
    LoadStage(duration=60, target=150),
    LoadStage(duration=60, target=200),
    LoadStage(duration=60, target=250),
    LoadStage(duration=60, target=300),
)


def stress(preallocated: int = 50, max_workers: int = 500) -> Scenario:
    """Arrival rate from 25/s up to 300/s over 6.5 minutes."""
    return Scenario(
        name="stress",
        shape=RampingShape(
            stages=STRESS_STAGES,
            preallocated=min(preallocated, max_workers),
            maximum=max_workers,
            start_rate=25,
            time_unit=1.0,
        ),
    )


PROFILES = {
    "baseline": baseline,
    "stress": stress,
}
