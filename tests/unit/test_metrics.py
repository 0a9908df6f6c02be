"""Tests for the metrics recorder and threshold evaluation."""

import threading

import pytest

from pixload.engine import metrics as m
from pixload.engine.metrics import (
    MetricKind,
    MetricsRecorder,
    Threshold,
    evaluate_thresholds,
    parse_thresholds,
    percentile,
)


class TestPercentile:
    def test_empty(self) -> None:
        assert percentile([], 95) == 0.0

    def test_interpolates(self) -> None:
        assert percentile([1.0, 2.0, 3.0, 4.0], 50) == pytest.approx(2.5)
        assert percentile([10.0], 99) == 10.0
        assert percentile(list(range(101)), 95) == pytest.approx(95.0)


class TestMetricsRecorder:
    def test_unknown_metric_rejected(self, recorder: MetricsRecorder) -> None:
        with pytest.raises(KeyError):
            recorder.record("nope", 1)

    def test_register_custom_metric(self, recorder: MetricsRecorder) -> None:
        recorder.register("custom_count", MetricKind.COUNTER)
        recorder.record("custom_count", 2)
        recorder.record("custom_count", 3)
        assert recorder.count("custom_count") == 5

    def test_register_conflicting_kind(self, recorder: MetricsRecorder) -> None:
        with pytest.raises(ValueError):
            recorder.register(m.HTTP_REQS, MetricKind.TREND)

    def test_tag_filtering(self, recorder: MetricsRecorder) -> None:
        recorder.record(m.HTTP_REQ_DURATION, 100, {"endpoint": "transfer_create", "status": "201"})
        recorder.record(m.HTTP_REQ_DURATION, 300, {"endpoint": "transfer_create", "status": "500"})
        recorder.record(m.HTTP_REQ_DURATION, 5, {"endpoint": "transfer_confirm", "status": "200"})

        assert recorder.values(m.HTTP_REQ_DURATION, {"endpoint": "transfer_create"}) == [100, 300]
        assert recorder.values(m.HTTP_REQ_DURATION, {"status": "200"}) == [5]
        assert recorder.samples(m.HTTP_REQ_DURATION) == 3

    def test_rate_with_booleans(self, recorder: MetricsRecorder) -> None:
        recorder.record(m.HTTP_REQ_FAILED, True)
        recorder.record(m.HTTP_REQ_FAILED, False)
        recorder.record(m.HTTP_REQ_FAILED, False)
        recorder.record(m.HTTP_REQ_FAILED, False)
        assert recorder.rate(m.HTTP_REQ_FAILED) == pytest.approx(0.25)

    def test_rate_of_nothing_is_zero(self, recorder: MetricsRecorder) -> None:
        assert recorder.rate(m.WEBHOOK_5XX_RATE) == 0.0

    def test_concurrent_counter_updates(self, recorder: MetricsRecorder) -> None:
        def bump() -> None:
            for _ in range(1_000):
                recorder.record(m.ITERATIONS, 1)

        threads = [threading.Thread(target=bump) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert recorder.count(m.ITERATIONS) == 8_000

    def test_summary_shapes(self, recorder: MetricsRecorder) -> None:
        recorder.record(m.ITERATIONS, 1)
        recorder.record(m.HTTP_REQ_FAILED, 0)
        recorder.record(m.TIME_TO_CONFIRM, 12.0)
        summary = recorder.summary()
        assert summary[m.ITERATIONS] == {"type": "counter", "count": 1}
        assert summary[m.HTTP_REQ_FAILED]["rate"] == 0.0
        assert summary[m.HTTP_REQ_FAILED]["fails"] == 1
        assert summary[m.TIME_TO_CONFIRM]["p95"] == 12.0
        assert summary[m.TIME_TO_CONFIRM]["count"] == 1


class TestThresholds:
    def test_parse_selector_with_tags(self) -> None:
        t = Threshold.parse("http_req_duration{endpoint:transfer_create}", "p(95)<300")
        assert t.metric == "http_req_duration"
        assert t.tags == (("endpoint", "transfer_create"),)
        assert t.aggregation == "p(95)"
        assert t.op == "<"
        assert t.limit == 300.0
        assert t.selector == "http_req_duration{endpoint:transfer_create}"

    @pytest.mark.parametrize(
        ("selector", "expression"),
        [
            ("http_req_failed", "rate<<0.1"),
            ("http_req_failed", "mean<1"),
            ("http_req_failed", "rate<abc"),
            ("bad name!", "rate<0.1"),
            ("http_req_duration{endpoint}", "p(95)<300"),
        ],
    )
    def test_parse_rejects_garbage(self, selector: str, expression: str) -> None:
        with pytest.raises(ValueError):
            Threshold.parse(selector, expression)

    def test_evaluate_pass_and_fail(self, recorder: MetricsRecorder) -> None:
        for latency in (100, 120, 140, 900):
            recorder.record(m.HTTP_REQ_DURATION, latency, {"endpoint": "transfer_create"})
        for latency in (5, 6):
            recorder.record(m.HTTP_REQ_DURATION, latency, {"endpoint": "transfer_confirm"})
        recorder.record(m.WEBHOOK_5XX_RATE, 0)

        results = evaluate_thresholds(
            parse_thresholds(
                {
                    "http_req_duration{endpoint:transfer_create}": ["p(95)<300", "med<200"],
                    "http_req_duration{endpoint:transfer_confirm}": ["max<10"],
                    "webhook_5xx_rate": ["rate<0.002"],
                }
            ),
            recorder,
        )

        verdicts = {(r.threshold.selector, r.threshold.source): r.passed for r in results}
        assert verdicts[("http_req_duration{endpoint:transfer_create}", "p(95)<300")] is False
        assert verdicts[("http_req_duration{endpoint:transfer_create}", "med<200")] is True
        assert verdicts[("http_req_duration{endpoint:transfer_confirm}", "max<10")] is True
        assert verdicts[("webhook_5xx_rate", "rate<0.002")] is True

    def test_count_aggregation_sums_counters(self, recorder: MetricsRecorder) -> None:
        recorder.record(m.DROPPED_ITERATIONS, 1)
        recorder.record(m.DROPPED_ITERATIONS, 1)
        result = Threshold.parse("dropped_iterations", "count<=1").evaluate(recorder)
        assert result.actual == 2
        assert result.passed is False
        assert result.to_dict()["pass"] is False


class TestSeriesAggregation:
    def test_repeated_tags_share_one_series(self, recorder: MetricsRecorder) -> None:
        tags = {"endpoint": "transfer_create", "method": "POST", "status": "201"}
        for _ in range(10_000):
            recorder.record(m.HTTP_REQS, 1, tags)
            recorder.record(m.HTTP_REQ_FAILED, 0, tags)
        recorder.record(m.HTTP_REQ_FAILED, 1, {**tags, "status": "500"})

        assert recorder.tag_sets(m.HTTP_REQS) == [tags]
        assert len(recorder.tag_sets(m.HTTP_REQ_FAILED)) == 2
        assert recorder.count(m.HTTP_REQS) == 10_000
        assert recorder.samples(m.HTTP_REQ_FAILED) == 10_001
        assert recorder.rate(m.HTTP_REQ_FAILED, {"status": "500"}) == 1.0

    def test_values_only_kept_for_trends(self, recorder: MetricsRecorder) -> None:
        recorder.record(m.ITERATIONS, 1)
        with pytest.raises(ValueError):
            recorder.values(m.ITERATIONS)

    def test_counter_avg_and_trend_only_aggregations(self, recorder: MetricsRecorder) -> None:
        recorder.record(m.HTTP_REQS, 2)
        recorder.record(m.HTTP_REQS, 4)
        assert recorder.aggregate(m.HTTP_REQS, "avg") == pytest.approx(3.0)
        with pytest.raises(ValueError):
            recorder.aggregate(m.HTTP_REQS, "p(95)")
