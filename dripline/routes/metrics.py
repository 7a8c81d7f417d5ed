"""
Prometheus metrics endpoint.

Exposes drip scheduling and delivery metrics for monitoring.
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
# Business Metrics - Drip Jobs
# ============================================

drip_jobs_scheduled = Counter(
    'drip_jobs_scheduled_total',
    'Total drip jobs materialized',
    ['tenant_id']
)

drip_jobs_sent = Counter(
    'drip_jobs_sent_total',
    'Total drip jobs delivered on at least one channel',
    ['tenant_id', 'channel']
)

drip_jobs_failed = Counter(
    'drip_jobs_failed_total',
    'Total drip jobs failed',
    ['tenant_id', 'channel']
)

drip_jobs_cancelled = Counter(
    'drip_jobs_cancelled_total',
    'Total drip jobs cancelled before send',
    ['reason']
)

# ============================================
# Dispatcher Metrics
# ============================================

drip_dispatch_cycle_duration = Histogram(
    'drip_dispatch_cycle_seconds',
    'Dispatch cycle duration in seconds',
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0]
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


def track_jobs_scheduled(tenant_id: str, count: int):
    """Record jobs created for a stage entry."""
    if count:
        drip_jobs_scheduled.labels(tenant_id=tenant_id).inc(count)


def track_job_sent(tenant_id: str, channel: str):
    drip_jobs_sent.labels(tenant_id=tenant_id, channel=channel).inc()


def track_job_failed(tenant_id: str, channel: str):
    drip_jobs_failed.labels(tenant_id=tenant_id, channel=channel).inc()


def track_jobs_cancelled(reason: str, count: int):
    """Record jobs cancelled by a stage change, archive or manual cancel."""
    if count:
        drip_jobs_cancelled.labels(reason=reason).inc(count)


def track_dispatch_cycle(duration_seconds: float):
    drip_dispatch_cycle_duration.observe(duration_seconds)


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
