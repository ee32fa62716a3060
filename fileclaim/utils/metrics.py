"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
claims_total = Counter(
    "claims_total",
    "Claim requests by outcome",
    ["outcome"],  # minted, replayed, or the error code
)

downloads_total = Counter(
    "downloads_total",
    "File downloads by outcome",
    ["outcome"],  # served, or the error code
)

notifications_total = Counter(
    "notifications_total",
    "Telegram notifications",
    ["status"],
)

payment_requests_total = Counter(
    "payment_requests_total",
    "Total payment provider API requests",
    ["method", "status"],
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
payment_request_duration_seconds = Histogram(
    "payment_request_duration_seconds",
    "Payment provider API request duration",
    ["method"],
    buckets=[0.1, 0.5, 1, 2, 5, 10],
)


# Metrics endpoint router
router = APIRouter()


@router.get("/metrics")
def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
