"""Transfer creation and simulated webhook confirmation."""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import structlog

from pixload.engine.classifier import OutcomeClassifier
from pixload.engine.client import ServiceClient
from pixload.engine.models import (
    CreationOutcome,
    ScenarioContext,
    TransferCreated,
    TransferFailed,
    TransferRequest,
    TransferResult,
    WebhookEvent,
)

logger = structlog.get_logger()

TRANSFER_ENDPOINT = "transfer_create"
CONFIRM_ENDPOINT = "transfer_confirm"


class TransferRequestBuilder:
    def __init__(self, client: ServiceClient) -> None:
        self.client = client

    def build(self, ctx: ScenarioContext, amount: str) -> TransferRequest:
        """New request with a never-before-used idempotency key and trace id."""
        return TransferRequest(
            idempotency_key=self.client.ids.idempotency_key(),
            trace_id=self.client.ids.trace_id(),
            source_account_id=ctx.source_account_id,
            destination_key=ctx.destination_key,
            amount=amount,
        )

    async def create_transfer(self, ctx: ScenarioContext, amount: str) -> CreationOutcome:
        """POST /pix/transfers.

        Returns ``TransferCreated`` only for a 201 whose body carries an
        ``endToEndId``. A failed attempt is abandoned; the next call mints a
        fresh key rather than replaying this one.
        """
        request = self.build(ctx, amount)
        resp = await self.client.post(
            "/pix/transfers",
            endpoint=TRANSFER_ENDPOINT,
            payload=request.to_payload(),
            idempotency_key=request.idempotency_key,
            trace_id=request.trace_id,
        )
        self.client.check("transfer created 201", resp.status == 201, TRANSFER_ENDPOINT)

        if resp.status != 201:
            logger.debug(
                "transfer_create_failed",
                status=resp.status,
                code=resp.body.get("code"),
                idempotency_key=request.idempotency_key,
            )
            return TransferFailed(status=resp.status, reason=f"unexpected status {resp.status}")

        end_to_end_id = resp.body.get("endToEndId")
        if not end_to_end_id:
            logger.debug(
                "transfer_create_failed",
                status=resp.status,
                reason="missing endToEndId",
                idempotency_key=request.idempotency_key,
            )
            return TransferFailed(status=resp.status, reason="missing endToEndId")

        status = resp.body.get("status")
        return TransferCreated(
            TransferResult(
                end_to_end_id=str(end_to_end_id),
                status=str(status) if status is not None else None,
                idempotency_key=request.idempotency_key,
            )
        )


class WebhookConfirmer:
    def __init__(
        self,
        client: ServiceClient,
        classifier: OutcomeClassifier,
        skew_ms: int = 750,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.client = client
        self.classifier = classifier
        self.skew_ms = max(0, skew_ms)
        self._clock = clock

    def build_event(self, end_to_end_id: str) -> WebhookEvent:
        return WebhookEvent(
            end_to_end_id=end_to_end_id,
            event_id=self.client.ids.event_id(),
            occurred_at=self._clock() - timedelta(milliseconds=self.skew_ms),
        )

    async def confirm(self, end_to_end_id: str) -> bool:
        """POST /pix/webhook and classify the response; True iff status 200."""
        event = self.build_event(end_to_end_id)
        resp = await self.client.post(
            "/pix/webhook",
            endpoint=CONFIRM_ENDPOINT,
            payload=event.to_payload(),
        )
        self.classifier.classify(resp.status, resp.body, end_to_end_id)
        return self.client.check("webhook ok 200", resp.status == 200, CONFIRM_ENDPOINT)
