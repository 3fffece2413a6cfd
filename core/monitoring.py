"""Prometheus metrics for the execution engines.

Metrics live in the default registry; call :func:`start_metrics_server` from
a host process to expose them.
"""
from prometheus_client import Counter, Histogram, start_http_server

from core.logging import logger

REQUESTS_TOTAL = Counter(
    "aiquery_requests_total",
    "Completed requests by mode and outcome",
    ["mode", "outcome"],
)
ATTEMPT_FAILURES_TOTAL = Counter(
    "aiquery_attempt_failures_total",
    "Failed provider attempts by error kind",
    ["mode", "kind"],
)
CACHE_HITS_TOTAL = Counter("aiquery_cache_hits_total", "Requests answered from the session cache")
TOKENS_TOTAL = Counter("aiquery_tokens_total", "Tokens accounted for fresh results", ["mode"])
ATTEMPT_DURATION_MS = Histogram(
    "aiquery_attempt_duration_ms",
    "Provider attempt duration in milliseconds",
    ["mode"],
    buckets=(50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000),
)


def start_metrics_server(port: int = 9090, addr: str = "127.0.0.1") -> None:
    """Expose metrics over HTTP; binds to localhost unless told otherwise."""
    start_http_server(port, addr=addr)
    logger.info(f"Metrics server listening on {addr}:{port}")
