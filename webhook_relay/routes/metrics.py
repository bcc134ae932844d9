"""
Prometheus metrics endpoint.

Exposes webhook pipeline metrics for monitoring.
"""
from fastapi import APIRouter, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

router = APIRouter()

# ============================================
# HTTP Request Metrics
# ============================================

http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# ============================================
# Webhook Metrics
# ============================================

webhooks_created = Counter(
    'webhooks_created_total',
    'Total webhooks accepted',
    ['event_type']
)

delivery_attempts = Counter(
    'webhook_delivery_attempts_total',
    'Total delivery attempts by outcome',
    ['status']
)

delivery_duration = Histogram(
    'webhook_delivery_duration_seconds',
    'Outbound webhook call duration in seconds',
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

webhooks_delivered = Counter(
    'webhooks_delivered_total',
    'Total webhooks delivered'
)

webhooks_failed = Counter(
    'webhooks_failed_total',
    'Total webhooks permanently failed'
)

webhook_retries = Counter(
    'webhook_retries_total',
    'Total retries scheduled'
)


# ============================================
# Metrics Helper Functions
# ============================================

def track_request(method: str, endpoint: str, status: int, duration_seconds: float):
    """
    Record HTTP request metrics.

    Call this after each request.
    """
    http_requests_total.labels(
        method=method,
        endpoint=endpoint,
        status=status
    ).inc()

    http_request_duration.labels(
        method=method,
        endpoint=endpoint
    ).observe(duration_seconds)


def track_webhook_created(event_type: str):
    """Record a webhook being accepted."""
    webhooks_created.labels(event_type=event_type).inc()


def track_delivery_attempt(status: str, duration_seconds: float | None = None):
    """Record a delivery attempt outcome."""
    delivery_attempts.labels(status=status).inc()
    if duration_seconds is not None:
        delivery_duration.observe(duration_seconds)


def track_webhook_delivered():
    webhooks_delivered.inc()


def track_webhook_failed():
    webhooks_failed.inc()


def track_webhook_retry():
    webhook_retries.inc()


# ============================================
# Prometheus Endpoint
# ============================================

@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Returns all registered metrics in Prometheus format.
    """
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
