"""
Prometheus metrics middleware.

Collects HTTP request metrics (counter + histogram) and exposes application-level
counters for billing analyses and upstream bill extraction.
"""

import time

from prometheus_client import Counter, Histogram, Info
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

# ── HTTP metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# ── Billing analysis metrics ─────────────────────────────────────────────────

billing_analyses_total = Counter(
    "billing_analyses_total",
    "Total billing analyses run",
)

billing_line_items_analyzed = Counter(
    "billing_line_items_analyzed",
    "Total bill line items accepted for analysis",
)

billing_line_items_skipped = Counter(
    "billing_line_items_skipped",
    "Total bill records skipped by the data quality gate",
)

billing_duplicate_matches_total = Counter(
    "billing_duplicate_matches_total",
    "Duplicate-charge matches found",
    ["match_type"],
)

billing_analysis_duration_seconds = Histogram(
    "billing_analysis_duration_seconds",
    "Billing analysis duration in seconds",
    buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

billing_reference_data = Info(
    "billing_reference_data",
    "Versions of the fee schedule and coding rules in use",
)

# ── Extraction metrics ───────────────────────────────────────────────────────

bill_documents_processed_total = Counter(
    "bill_documents_processed_total",
    "Bill documents run through extraction",
    ["status"],
)


def _normalize_path(path: str) -> str:
    """Collapse path parameters to reduce cardinality.

    e.g. /api/cases/CASE-ABC123/reasonableness → /api/cases/{id}/reasonableness
    """
    parts = path.strip("/").split("/")
    normalized = []
    for i, part in enumerate(parts):
        if i > 1 and (
            part.startswith("CASE-")
            or part.isdigit()
            or len(part) > 20
        ):
            normalized.append("{id}")
        else:
            normalized.append(part)
    return "/" + "/".join(normalized)


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        # Skip metrics endpoint itself to avoid recursion
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        path = _normalize_path(request.url.path)

        start = time.time()
        response = await call_next(request)
        duration = time.time() - start

        http_requests_total.labels(
            method=method,
            path=path,
            status_code=response.status_code,
        ).inc()

        http_request_duration_seconds.labels(
            method=method,
            path=path,
        ).observe(duration)

        return response
