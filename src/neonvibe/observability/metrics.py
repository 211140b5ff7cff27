from __future__ import annotations

"""Prometheus metrics for the NeonVibe backend.

Adds an HTTP middleware that records request latency per method/path/status,
plus counters for streamed fragments and turn outcomes.
"""

import time
from typing import Callable, Awaitable

from prometheus_client import Counter, Histogram
from starlette.requests import Request
from starlette.responses import Response

REQUEST_LATENCY = Histogram(
    "neonvibe_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path", "status"),
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 120.0),
)

FRAGMENTS_TOTAL = Counter(
    "neonvibe_stream_fragments_total",
    "Text fragments received from model providers",
    labelnames=("provider",),
)

TURNS_TOTAL = Counter(
    "neonvibe_turns_total",
    "Generation turns by terminal state",
    labelnames=("provider", "state"),
)


def sanitize_path(path: str) -> str:
    """Reduce high-cardinality paths (e.g., /sessions/{id}) to a coarse label."""
    if not path:
        return "/"
    segs = path.split("?")[0].split("/")
    if len(segs) > 1:
        return "/" + segs[1]
    return path


def metrics_middleware_factory() -> Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]:
    async def middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        if request.url.path.startswith("/metrics"):
            return await call_next(request)
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        REQUEST_LATENCY.labels(
            method=request.method,
            path=sanitize_path(request.url.path),
            status=str(response.status_code),
        ).observe(elapsed)
        return response

    return middleware
