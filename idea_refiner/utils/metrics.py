from prometheus_client import CollectorRegistry, Counter, Histogram

registry = CollectorRegistry()

request_count = Counter(
    "app_requests_total",
    "Total HTTP requests processed",
    labelnames=("endpoint", "status"),
    registry=registry,
)

request_latency = Histogram(
    "app_request_latency_seconds",
    "Request latency in seconds",
    labelnames=("endpoint",),
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60),
    registry=registry,
)

upstream_attempts = Counter(
    "refiner_upstream_attempts_total",
    "Upstream model calls by outcome (ok, retry, failed)",
    labelnames=("provider", "outcome"),
    registry=registry,
)

normalization_failures = Counter(
    "refiner_normalization_failures_total",
    "Completions rejected by the normalizer",
    labelnames=("stage",),
    registry=registry,
)

plan_repairs = Counter(
    "refiner_plan_repairs_total",
    "List fields replaced with the placeholder",
    labelnames=("field",),
    registry=registry,
)

rate_limited = Counter(
    "refiner_rate_limited_total",
    "Requests rejected by the rate limiter",
    registry=registry,
)
