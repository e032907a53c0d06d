from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

_REQ_COUNT = Counter(
    "handoff_http_requests_total",
    "Total HTTP requests",
    labelnames=("method", "route", "status"),
)
_REQ_LATENCY = Histogram(
    "handoff_http_request_duration_seconds",
    "HTTP request latency seconds",
    labelnames=("method", "route"),
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.3, 0.5, 1.0, 2.5, 5.0, 10.0),
)
_TOKENS_ISSUED = Counter(
    "handoff_upload_tokens_issued_total",
    "Upload tokens issued",
    labelnames=("entity_type",),
)
_TOKEN_CONSUMES = Counter(
    "handoff_upload_token_consumes_total",
    "Upload token consume attempts by outcome",
    labelnames=("result",),
)


def observe_http_request(*, method: str, route: str, status: int, duration_seconds: float) -> None:
    _REQ_COUNT.labels(method=method, route=route, status=str(status)).inc()
    _REQ_LATENCY.labels(method=method, route=route).observe(duration_seconds)


def record_token_issued(*, entity_type: str) -> None:
    _TOKENS_ISSUED.labels(entity_type=entity_type).inc()


def record_token_consume(*, result: str) -> None:
    _TOKEN_CONSUMES.labels(result=result).inc()


def render_metrics() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
