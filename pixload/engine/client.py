"""HTTP primitives for talking to the wallet service.

Every call carries the correlation headers, records the built-in request
metrics, and never raises for HTTP or transport failures. A timeout becomes a
synthetic 504. Any other request error (connect, protocol, body decoding)
becomes a synthetic 503. Callers only ever look at a status code and a
(possibly empty) parsed body.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from pixload.engine import metrics as m
from pixload.engine.metrics import MetricsSink
from pixload.shared.ids import IdGenerator

logger = structlog.get_logger()

TIMEOUT_STATUS = 504
TRANSPORT_ERROR_STATUS = 503


def try_parse(response: httpx.Response) -> dict[str, Any]:
    """Decode a JSON object body, or return ``{}``."""
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


@dataclass(frozen=True)
class ServiceResponse:
    status: int
    body: dict[str, Any] = field(default_factory=dict)
    elapsed_ms: float = 0.0
    transport_error: str | None = None

    @property
    def failed(self) -> bool:
        return self.transport_error is not None or self.status >= 400


def build_http_client(
    base_url: str,
    timeout_seconds: float,
    max_connections: int = 200,
) -> httpx.AsyncClient:
    """Pooled async client sized to the worker pool, no transport retries."""
    transport = httpx.AsyncHTTPTransport(
        retries=0,
        limits=httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max(1, max_connections // 2),
        ),
    )
    return httpx.AsyncClient(
        base_url=base_url.rstrip("/"),
        transport=transport,
        timeout=httpx.Timeout(timeout_seconds),
    )


class ServiceClient:
    """Thin wrapper over ``httpx.AsyncClient`` adding correlation and metrics."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        sink: MetricsSink,
        scenario_name: str,
        run_id: str,
        ids: IdGenerator | None = None,
    ) -> None:
        self.http = http
        self.sink = sink
        self.scenario_name = scenario_name
        self.run_id = run_id
        self.ids = ids or IdGenerator()

    def headers(self, trace_id: str, idempotency_key: str | None = None) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "X-Scenario": self.scenario_name,
            "X-Run-Id": self.run_id,
            "X-Trace-Id": trace_id,
            "X-Correlation-ID": trace_id,
        }
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    def check(self, name: str, ok: bool, endpoint: str) -> bool:
        self.sink.record(m.CHECKS, 1 if ok else 0, {"check": name, "endpoint": endpoint})
        return ok

    async def post(
        self,
        path: str,
        *,
        endpoint: str,
        payload: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
        trace_id: str | None = None,
    ) -> ServiceResponse:
        """POST *payload* to *path* and record request metrics under *endpoint*."""
        headers = self.headers(trace_id or self.ids.trace_id(), idempotency_key)
        t0 = time.monotonic()
        try:
            if payload is None:
                resp = await self.http.post(path, headers=headers)
            else:
                resp = await self.http.post(path, json=payload, headers=headers)
            result = ServiceResponse(
                status=resp.status_code,
                body=try_parse(resp),
                elapsed_ms=(time.monotonic() - t0) * 1000.0,
            )
        except httpx.TimeoutException as exc:
            result = ServiceResponse(
                status=TIMEOUT_STATUS,
                body={"code": "CLIENT_TIMEOUT", "message": str(exc) or type(exc).__name__},
                elapsed_ms=(time.monotonic() - t0) * 1000.0,
                transport_error="timeout",
            )
        except httpx.RequestError as exc:
            result = ServiceResponse(
                status=TRANSPORT_ERROR_STATUS,
                body={"code": "TRANSPORT_ERROR", "message": str(exc) or type(exc).__name__},
                elapsed_ms=(time.monotonic() - t0) * 1000.0,
                transport_error=type(exc).__name__,
            )

        tags = {"endpoint": endpoint, "method": "POST", "status": str(result.status)}
        self.sink.record(m.HTTP_REQS, 1, tags)
        self.sink.record(m.HTTP_REQ_DURATION, result.elapsed_ms, tags)
        self.sink.record(m.HTTP_REQ_FAILED, 1 if result.failed else 0, tags)
        if result.transport_error:
            logger.debug(
                "request_transport_error",
                endpoint=endpoint,
                error=result.transport_error,
                elapsed_ms=round(result.elapsed_ms, 2),
            )
        return result
