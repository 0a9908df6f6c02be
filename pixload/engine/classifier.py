"""Webhook response classification and outcome metrics."""

from collections.abc import Mapping
from typing import Any

from pixload.engine import metrics as m
from pixload.engine.metrics import MetricsSink
from pixload.engine.models import OutcomeCategory
from pixload.engine.sampler import SampleLimiter

NO_ERROR_CODE = "none"

_CATEGORY_COUNTERS: dict[OutcomeCategory, str] = {
    OutcomeCategory.SUCCESS: m.WEBHOOK_SUCCESS_COUNT,
    OutcomeCategory.CLIENT_ERROR_NOT_FOUND: m.WEBHOOK_404_COUNT,
    OutcomeCategory.CLIENT_ERROR_OTHER: m.WEBHOOK_OTHER_4XX_COUNT,
    OutcomeCategory.SERVER_ERROR: m.WEBHOOK_5XX_COUNT,
    OutcomeCategory.UNCLASSIFIED: m.WEBHOOK_UNCLASSIFIED_COUNT,
}

# Both client-error categories feed the same 4xx rate
_CATEGORY_RATES: dict[str, frozenset[OutcomeCategory]] = {
    m.WEBHOOK_SUCCESS_RATE: frozenset({OutcomeCategory.SUCCESS}),
    m.WEBHOOK_4XX_RATE: frozenset(
        {OutcomeCategory.CLIENT_ERROR_NOT_FOUND, OutcomeCategory.CLIENT_ERROR_OTHER}
    ),
    m.WEBHOOK_5XX_RATE: frozenset({OutcomeCategory.SERVER_ERROR}),
    m.WEBHOOK_UNCLASSIFIED_RATE: frozenset({OutcomeCategory.UNCLASSIFIED}),
}


def categorize(status: int) -> OutcomeCategory:
    if status == 200:
        return OutcomeCategory.SUCCESS
    if status == 404:
        return OutcomeCategory.CLIENT_ERROR_NOT_FOUND
    if 400 <= status < 500:
        return OutcomeCategory.CLIENT_ERROR_OTHER
    if status >= 500:
        return OutcomeCategory.SERVER_ERROR
    return OutcomeCategory.UNCLASSIFIED


def _text_field(body: Any, key: str) -> str | None:
    if not isinstance(body, Mapping):
        return None
    value = body.get(key)
    if value is None or value == "":
        return None
    return str(value)


class OutcomeClassifier:
    """Maps a webhook response to an ``OutcomeCategory`` and records it."""

    def __init__(self, sink: MetricsSink, limiter: SampleLimiter) -> None:
        self.sink = sink
        self.limiter = limiter

    def classify(
        self,
        status: int,
        body: Any = None,
        end_to_end_id: str | None = None,
    ) -> OutcomeCategory:
        category = categorize(status)

        for rate_name, members in _CATEGORY_RATES.items():
            self.sink.record(rate_name, 1 if category in members else 0)
        self.sink.record(_CATEGORY_COUNTERS[category], 1)

        if category is OutcomeCategory.SUCCESS:
            return category

        error_code = _text_field(body, "code") or NO_ERROR_CODE
        self.sink.record(
            m.WEBHOOK_ERROR_CODE_COUNT,
            1,
            {"error_code": error_code, "status": str(status)},
        )
        self.limiter.offer(status, end_to_end_id, error_code, _text_field(body, "message"))
        return category
