"""The iteration body: create a transfer, then confirm it."""

import time
from collections.abc import Callable

from pixload.engine import metrics as m
from pixload.engine.metrics import MetricsSink
from pixload.engine.models import ScenarioContext, TransferFailed
from pixload.engine.transfers import TRANSFER_ENDPOINT, TransferRequestBuilder, WebhookConfirmer


class TransferIteration:
    """Callable run once per scheduled iteration.

    Returns True when the transfer was created and its confirmation got a 200.
    A failed creation ends the iteration early with no confirmation attempt.
    """

    def __init__(
        self,
        ctx: ScenarioContext,
        builder: TransferRequestBuilder,
        confirmer: WebhookConfirmer,
        sink: MetricsSink,
        amount: str,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ctx = ctx
        self.builder = builder
        self.confirmer = confirmer
        self.sink = sink
        self.amount = amount
        self._clock = clock

    async def __call__(self) -> bool:
        start = self._clock()
        outcome = await self.builder.create_transfer(self.ctx, self.amount)
        if isinstance(outcome, TransferFailed):
            return False

        confirmed = await self.confirmer.confirm(outcome.result.end_to_end_id)
        self.sink.record(m.TIME_TO_CONFIRM, max(0.0, (self._clock() - start) * 1000.0))
        self.builder.client.check(
            "transfer status returned", bool(outcome.result.status), TRANSFER_ENDPOINT
        )
        return confirmed
