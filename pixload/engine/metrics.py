"""In-process metrics sink and threshold evaluation.

Metrics come in three kinds, mirroring what a load-testing backend exposes:

- **counter**: sum of recorded values;
- **rate**: fraction of recorded samples that were non-zero;
- **trend**: a distribution (latencies) queried by average/percentile.

Every sample carries a tag dict. Samples are folded into one running series
per distinct tag set, so memory grows with tag cardinality rather than sample
count (trends still keep their values for percentiles). Queries may filter on
a subset of tags, so ``http_req_duration{endpoint:transfer_create}`` selects
only transfer-create latencies. The engine never reads a metric to make a
scheduling decision.
"""

from __future__ import annotations

import math
import operator
import re
import statistics
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol

import structlog

logger = structlog.get_logger()


class MetricKind(StrEnum):
    COUNTER = "counter"
    RATE = "rate"
    TREND = "trend"


# ---------------------------------------------------------------------------
# Metric catalogue
# ---------------------------------------------------------------------------

HTTP_REQS = "http_reqs"
HTTP_REQ_DURATION = "http_req_duration"
HTTP_REQ_FAILED = "http_req_failed"
CHECKS = "checks"
ITERATIONS = "iterations"
ITERATION_ERRORS = "iteration_errors"
DROPPED_ITERATIONS = "dropped_iterations"
TIME_TO_CONFIRM = "time_to_confirm"

WEBHOOK_SUCCESS_RATE = "webhook_success_rate"
WEBHOOK_4XX_RATE = "webhook_4xx_rate"
WEBHOOK_5XX_RATE = "webhook_5xx_rate"
WEBHOOK_UNCLASSIFIED_RATE = "webhook_unclassified_rate"
WEBHOOK_SUCCESS_COUNT = "webhook_success_count"
WEBHOOK_404_COUNT = "webhook_404_count"
WEBHOOK_OTHER_4XX_COUNT = "webhook_other_4xx_count"
WEBHOOK_5XX_COUNT = "webhook_5xx_count"
WEBHOOK_UNCLASSIFIED_COUNT = "webhook_unclassified_count"
WEBHOOK_ERROR_CODE_COUNT = "webhook_error_code_count"

METRIC_KINDS: dict[str, MetricKind] = {
    HTTP_REQS: MetricKind.COUNTER,
    HTTP_REQ_DURATION: MetricKind.TREND,
    HTTP_REQ_FAILED: MetricKind.RATE,
    CHECKS: MetricKind.RATE,
    ITERATIONS: MetricKind.COUNTER,
    ITERATION_ERRORS: MetricKind.COUNTER,
    DROPPED_ITERATIONS: MetricKind.COUNTER,
    TIME_TO_CONFIRM: MetricKind.TREND,
    WEBHOOK_SUCCESS_RATE: MetricKind.RATE,
    WEBHOOK_4XX_RATE: MetricKind.RATE,
    WEBHOOK_5XX_RATE: MetricKind.RATE,
    WEBHOOK_UNCLASSIFIED_RATE: MetricKind.RATE,
    WEBHOOK_SUCCESS_COUNT: MetricKind.COUNTER,
    WEBHOOK_404_COUNT: MetricKind.COUNTER,
    WEBHOOK_OTHER_4XX_COUNT: MetricKind.COUNTER,
    WEBHOOK_5XX_COUNT: MetricKind.COUNTER,
    WEBHOOK_UNCLASSIFIED_COUNT: MetricKind.COUNTER,
    WEBHOOK_ERROR_CODE_COUNT: MetricKind.COUNTER,
}


class MetricsSink(Protocol):
    def record(self, name: str, value: float, tags: Mapping[str, str] | None = None) -> None: ...


# ---------------------------------------------------------------------------
# Recorder
# ---------------------------------------------------------------------------


def percentile(data: list[float], pct: float) -> float:
    """Linear-interpolated percentile; 0.0 for an empty series."""
    if not data:
        return 0.0
    sorted_data = sorted(data)
    k = (len(sorted_data) - 1) * (pct / 100.0)
    f = math.floor(k)
    c = math.ceil(k)
    if f == c:
        return sorted_data[int(k)]
    return sorted_data[f] * (c - k) + sorted_data[c] * (k - f)


TagKey = frozenset[tuple[str, str]]


@dataclass
class _Series:
    """Running aggregate for one (metric, tag set) pair.

    Counters and rates keep only totals; trends also keep their values so
    percentiles can be computed at the end of the run.
    """

    samples: int = 0
    total: float = 0.0
    nonzero: int = 0
    data: list[float] = field(default_factory=list)


class MetricsRecorder:
    """Thread-safe metrics sink aggregating samples per distinct tag set."""

    def __init__(self, kinds: Mapping[str, MetricKind] | None = None) -> None:
        self._kinds: dict[str, MetricKind] = dict(METRIC_KINDS if kinds is None else kinds)
        self._series: dict[str, dict[TagKey, _Series]] = {}
        self._lock = threading.Lock()

    def register(self, name: str, kind: MetricKind) -> None:
        existing = self._kinds.get(name)
        if existing is not None and existing is not kind:
            raise ValueError(f"metric {name!r} already registered as {existing}")
        self._kinds[name] = kind

    def kind(self, name: str) -> MetricKind:
        try:
            return self._kinds[name]
        except KeyError:
            raise KeyError(f"unknown metric: {name}") from None

    def record(self, name: str, value: float, tags: Mapping[str, str] | None = None) -> None:
        """Add one sample. Booleans are accepted for rates."""
        kind = self.kind(name)
        value = float(value)
        key: TagKey = frozenset((tags or {}).items())
        with self._lock:
            series = self._series.setdefault(name, {}).get(key)
            if series is None:
                series = self._series[name][key] = _Series()
            series.samples += 1
            series.total += value
            if value:
                series.nonzero += 1
            if kind is MetricKind.TREND:
                series.data.append(value)
        if kind is MetricKind.RATE and value not in (0, 1):
            logger.debug("rate_sample_not_boolean", metric=name, value=value)

    # ---- queries ------------------------------------------------------------

    def _matching(self, name: str, tags: Mapping[str, str] | None) -> list[_Series]:
        wanted = frozenset((tags or {}).items())
        with self._lock:
            return [
                _Series(s.samples, s.total, s.nonzero, list(s.data))
                for key, s in self._series.get(name, {}).items()
                if wanted <= key
            ]

    def values(self, name: str, tags: Mapping[str, str] | None = None) -> list[float]:
        """Recorded values of a trend, in recording order per tag set."""
        if self.kind(name) is not MetricKind.TREND:
            raise ValueError(f"values are only kept for trends, {name!r} is a {self.kind(name)}")
        return [v for s in self._matching(name, tags) for v in s.data]

    def count(self, name: str, tags: Mapping[str, str] | None = None) -> float:
        """Counter total (sum of values)."""
        return sum(s.total for s in self._matching(name, tags))

    def samples(self, name: str, tags: Mapping[str, str] | None = None) -> int:
        return sum(s.samples for s in self._matching(name, tags))

    def rate(self, name: str, tags: Mapping[str, str] | None = None) -> float:
        series = self._matching(name, tags)
        n = sum(s.samples for s in series)
        if not n:
            return 0.0
        return sum(s.nonzero for s in series) / n

    def percentile(self, name: str, pct: float, tags: Mapping[str, str] | None = None) -> float:
        return percentile(self.values(name, tags), pct)

    def tag_sets(self, name: str) -> list[dict[str, str]]:
        with self._lock:
            return [dict(key) for key in self._series.get(name, {})]

    def names(self) -> list[str]:
        with self._lock:
            return list(self._series.keys())

    def aggregate(self, name: str, aggregation: str, tags: Mapping[str, str] | None = None) -> float:
        """Evaluate one threshold aggregation (``avg``, ``p(95)``, ``rate``...)."""
        kind = self.kind(name)
        if aggregation == "count":
            if kind is MetricKind.COUNTER:
                return self.count(name, tags)
            return float(self.samples(name, tags))
        if aggregation == "rate":
            return self.rate(name, tags)
        if aggregation == "avg":
            n = self.samples(name, tags)
            return self.count(name, tags) / n if n else 0.0
        if kind is not MetricKind.TREND:
            raise ValueError(f"aggregation {aggregation!r} needs a trend, {name!r} is a {kind}")
        data = self.values(name, tags)
        if aggregation == "min":
            return min(data) if data else 0.0
        if aggregation == "max":
            return max(data) if data else 0.0
        if aggregation == "med":
            return percentile(data, 50)
        match = _PERCENTILE_RE.fullmatch(aggregation)
        if match:
            return percentile(data, float(match.group(1)))
        raise ValueError(f"unsupported aggregation: {aggregation}")

    def summary(self) -> dict[str, Any]:
        """JSON-serialisable view of every recorded metric."""
        out: dict[str, Any] = {}
        for name in sorted(self.names()):
            kind = self.kind(name)
            if kind is MetricKind.COUNTER:
                out[name] = {"type": kind.value, "count": self.count(name)}
            elif kind is MetricKind.RATE:
                series = self._matching(name, None)
                passes = sum(s.nonzero for s in series)
                out[name] = {
                    "type": kind.value,
                    "rate": round(self.rate(name), 4),
                    "passes": passes,
                    "fails": sum(s.samples for s in series) - passes,
                }
            else:
                data = self.values(name)
                out[name] = {
                    "type": kind.value,
                    "avg": round(statistics.mean(data), 2) if data else 0.0,
                    "min": round(min(data), 2) if data else 0.0,
                    "med": round(percentile(data, 50), 2),
                    "p90": round(percentile(data, 90), 2),
                    "p95": round(percentile(data, 95), 2),
                    "p99": round(percentile(data, 99), 2),
                    "max": round(max(data), 2) if data else 0.0,
                    "count": len(data),
                }
        return out


# ---------------------------------------------------------------------------
# Thresholds
# ---------------------------------------------------------------------------

_PERCENTILE_RE = re.compile(r"p\((\d+(?:\.\d+)?)\)")
_EXPRESSION_RE = re.compile(
    r"^\s*(?P<agg>avg|min|max|med|count|rate|p\(\d+(?:\.\d+)?\))\s*"
    r"(?P<op><=|>=|==|!=|<|>)\s*(?P<limit>-?\d+(?:\.\d+)?)\s*$"
)
_SELECTOR_RE = re.compile(r"^(?P<name>[A-Za-z_][\w]*)(?:\{(?P<tags>[^}]*)\})?$")

_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}


@dataclass(frozen=True)
class Threshold:
    metric: str
    tags: tuple[tuple[str, str], ...]
    aggregation: str
    op: str
    limit: float
    source: str

    @classmethod
    def parse(cls, selector: str, expression: str) -> Threshold:
        """Parse ``("http_req_duration{endpoint:x}", "p(95)<300")``."""
        sel = _SELECTOR_RE.match(selector.strip())
        if not sel:
            raise ValueError(f"invalid metric selector: {selector!r}")
        tags: list[tuple[str, str]] = []
        if sel.group("tags"):
            for pair in sel.group("tags").split(","):
                key, sep, value = pair.partition(":")
                if not sep or not key.strip():
                    raise ValueError(f"invalid tag filter {pair!r} in {selector!r}")
                tags.append((key.strip(), value.strip()))
        expr = _EXPRESSION_RE.match(expression)
        if not expr:
            raise ValueError(f"invalid threshold expression: {expression!r}")
        return cls(
            metric=sel.group("name"),
            tags=tuple(tags),
            aggregation=expr.group("agg"),
            op=expr.group("op"),
            limit=float(expr.group("limit")),
            source=expression.strip(),
        )

    def evaluate(self, recorder: MetricsRecorder) -> ThresholdResult:
        actual = recorder.aggregate(self.metric, self.aggregation, dict(self.tags) or None)
        return ThresholdResult(
            threshold=self,
            actual=actual,
            passed=_OPERATORS[self.op](actual, self.limit),
        )

    @property
    def selector(self) -> str:
        if not self.tags:
            return self.metric
        inner = ",".join(f"{k}:{v}" for k, v in self.tags)
        return f"{self.metric}{{{inner}}}"


@dataclass(frozen=True)
class ThresholdResult:
    threshold: Threshold
    actual: float
    passed: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.threshold.selector,
            "expression": self.threshold.source,
            "actual": round(self.actual, 4),
            "pass": self.passed,
        }


def parse_thresholds(table: Mapping[str, list[str]]) -> list[Threshold]:
    """Parse a ``{selector: [expression, ...]}`` mapping."""
    return [
        Threshold.parse(selector, expression)
        for selector, expressions in table.items()
        for expression in expressions
    ]


def evaluate_thresholds(
    thresholds: list[Threshold], recorder: MetricsRecorder
) -> list[ThresholdResult]:
    results = [t.evaluate(recorder) for t in thresholds]
    for r in results:
        if not r.passed:
            logger.warning(
                "threshold_crossed",
                metric=r.threshold.selector,
                expression=r.threshold.source,
                actual=round(r.actual, 4),
            )
    return results
