# Centralized Prometheus metrics. The middleware below records timing
# and counts for every request; the flag engine records one sample per
# evaluated key so dashboards can show adoption and failure rates.

from time import monotonic

from fastapi import Request
from prometheus_client import Counter, Gauge, Histogram
from starlette.middleware.base import BaseHTTPMiddleware


# Generic API latency + request counters, labelled by method and
# route template so hot paths and slow ones show at a glance.
REQUEST_DURATION_MS = Histogram(
    "request_duration_ms",
    "API request duration in milliseconds",
    ["method", "route"],
    buckets=[5, 10, 25, 50, 100, 250, 500, 1000, 2000, 5000, 10000],
)
REQUESTS_TOTAL = Counter(
    "requests_total",
    "Total API requests",
    ["method", "route", "status_code"],
)

# One sample per evaluated flag key, labelled with the resolution reason.
FLAG_EVALUATIONS_TOTAL = Counter(
    "flag_evaluations_total",
    "Feature flag evaluations by flag and reason",
    ["flag_key", "reason"],
)
# Keys that fell back to their default because resolving them raised.
FLAG_EVALUATION_ERRORS_TOTAL = Counter(
    "flag_evaluation_errors_total",
    "Feature flag evaluations that degraded to the default",
    ["flag_key"],
)
FLAG_AUDIT_WRITE_FAILURES_TOTAL = Counter(
    "flag_audit_write_failures_total",
    "Evaluation audit records that could not be written",
)

CACHE_HIT_TOTAL = Counter(
    "cache_hit_total",
    "Cache hits by cache name",
    ["cache"],
)
CACHE_MISS_TOTAL = Counter(
    "cache_miss_total",
    "Cache misses by cache name",
    ["cache"],
)
CACHE_SET_TOTAL = Counter(
    "cache_set_total",
    "Cache sets by cache name",
    ["cache"],
)
CACHE_PAYLOAD_BYTES = Histogram(
    "cache_payload_bytes",
    "Cached payload size in bytes",
    ["cache"],
    buckets=[100, 500, 1000, 5000, 10000, 50000, 100000],
)
CACHE_KEYS = Gauge(
    "cache_keys",
    "Keys currently held by the cache backend",
    ["backend"],
)


class MetricsMiddleware(BaseHTTPMiddleware):
    # Wraps every request to capture latency and a labelled count.
    async def dispatch(self, request: Request, call_next):
        start = monotonic()
        response = await call_next(request)
        duration_ms = (monotonic() - start) * 1000.0

        route = request.scope.get("route")
        route_path = getattr(route, "path", None) or request.url.path
        REQUEST_DURATION_MS.labels(request.method, route_path).observe(duration_ms)
        REQUESTS_TOTAL.labels(request.method, route_path, str(response.status_code)).inc()
        return response


def _label(value: object | None, default: str = "unknown") -> str:
    if value is None:
        return default
    if isinstance(value, str) and not value.strip():
        return default
    return str(value)


def record_flag_evaluation(flag_key: str, reason: str) -> None:
    FLAG_EVALUATIONS_TOTAL.labels(flag_key=_label(flag_key), reason=_label(reason)).inc()


def record_flag_evaluation_error(flag_key: str) -> None:
    FLAG_EVALUATION_ERRORS_TOTAL.labels(flag_key=_label(flag_key)).inc()


def record_flag_audit_failure() -> None:
    FLAG_AUDIT_WRITE_FAILURES_TOTAL.inc()


def record_cache_hit(cache_name: str) -> None:
    CACHE_HIT_TOTAL.labels(cache=_label(cache_name, "default")).inc()


def record_cache_miss(cache_name: str) -> None:
    CACHE_MISS_TOTAL.labels(cache=_label(cache_name, "default")).inc()


def record_cache_set(cache_name: str, payload_bytes: int | None = None) -> None:
    CACHE_SET_TOTAL.labels(cache=_label(cache_name, "default")).inc()
    if payload_bytes is not None:
        CACHE_PAYLOAD_BYTES.labels(cache=_label(cache_name, "default")).observe(payload_bytes)


def record_cache_key_count(backend_name: str, count: int) -> None:
    CACHE_KEYS.labels(backend=_label(backend_name, "memory")).set(count)
