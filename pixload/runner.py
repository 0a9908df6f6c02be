"""Wires settings, setup, load and thresholds into one run."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import httpx
import structlog

from pixload.config import Settings
from pixload.engine.bootstrap import ScenarioBootstrapper
from pixload.engine.classifier import OutcomeClassifier
from pixload.engine.client import ServiceClient, build_http_client
from pixload.engine.iteration import TransferIteration
from pixload.engine.load import FixedPoolShape, LoadController, LoadStats
from pixload.engine.metrics import MetricsRecorder, evaluate_thresholds, parse_thresholds
from pixload.engine.models import ScenarioContext
from pixload.engine.sampler import SampleLimiter
from pixload.engine.transfers import TransferRequestBuilder, WebhookConfirmer
from pixload.scenarios import Scenario

logger = structlog.get_logger()


class LoadRun:
    """One complete run: setup, load, threshold evaluation.

    Pass *http* to drive a custom transport (tests use an in-process app); the
    caller then owns its lifecycle. Otherwise a pooled client is built and
    closed here.
    """

    def __init__(
        self,
        settings: Settings,
        scenario: Scenario,
        http: httpx.AsyncClient | None = None,
        recorder: MetricsRecorder | None = None,
        tick: float = 0.01,
    ) -> None:
        self.settings = settings
        self.scenario = scenario
        self.recorder = recorder or MetricsRecorder()
        self.limiter = SampleLimiter(settings.fail_sample_pct, settings.fail_sample_cap)
        self.thresholds = parse_thresholds(scenario.thresholds)
        self.controller = LoadController(scenario.shape, self.recorder, tick=tick)
        self._http = http
        self.context: ScenarioContext | None = None

    def _pool_size(self) -> int:
        shape = self.scenario.shape
        if isinstance(shape, FixedPoolShape):
            return shape.workers
        return shape.maximum

    def stop(self) -> None:
        self.controller.stop()

    async def run(self) -> dict[str, Any]:
        """Execute setup then load. ``SetupFailure`` propagates before any load."""
        cfg = self.settings
        owns_client = self._http is None
        http = self._http or build_http_client(
            cfg.base_url, cfg.request_timeout_seconds, max_connections=self._pool_size()
        )
        client = ServiceClient(http, self.recorder, cfg.scenario_name, cfg.run_id)
        try:
            self.context = await ScenarioBootstrapper(client, cfg.initial_balance).setup()
            iteration = TransferIteration(
                ctx=self.context,
                builder=TransferRequestBuilder(client),
                confirmer=WebhookConfirmer(
                    client,
                    OutcomeClassifier(self.recorder, self.limiter),
                    skew_ms=cfg.webhook_timestamp_skew_ms,
                ),
                sink=self.recorder,
                amount=cfg.transfer_amount,
            )
            stats = await self.controller.run(iteration)
        finally:
            if owns_client:
                await http.aclose()

        return self.collect_results(stats)

    def collect_results(self, stats: LoadStats) -> dict[str, Any]:
        """Aggregate the recorder into the JSON-serialisable report."""
        threshold_results = evaluate_thresholds(self.thresholds, self.recorder)
        overall_pass = all(r.passed for r in threshold_results)
        return {
            "test_config": {
                "scenario": self.scenario.name,
                "scenario_name": self.settings.scenario_name,
                "run_id": self.settings.run_id,
                "base_url": self.settings.base_url,
                "transfer_amount": self.settings.transfer_amount,
                "fail_sample_pct": self.settings.fail_sample_pct,
            },
            "summary": {
                **stats.to_dict(),
                "samples_emitted": self.limiter.emitted,
            },
            "metrics": self.recorder.summary(),
            "thresholds": [r.to_dict() for r in threshold_results],
            "overall_pass": overall_pass,
            "generated_at": datetime.now(UTC).isoformat(),
        }
