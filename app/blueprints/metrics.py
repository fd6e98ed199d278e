"""
Prometheus metrics blueprint.

Exposes /metrics with HTTP request metrics plus the quote pipeline counters
from app.metrics. Restrict it to the monitoring network.
"""
import time

from flask import Blueprint, Response, request, g
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

from app.metrics import MULTIPROCESS_MODE, registry

metrics_bp = Blueprint('metrics', __name__)

http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'http_status'],
    registry=registry if not MULTIPROCESS_MODE else None
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request latency in seconds',
    ['method', 'endpoint'],
    registry=registry if not MULTIPROCESS_MODE else None,
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)
)


def setup_metrics_instrumentation(app):
    """Register before/after request hooks that record request count and latency."""

    @app.before_request
    def before_request_metrics():
        g._prometheus_metrics_start_time = time.time()

    @app.after_request
    def after_request_metrics(response):
        try:
            if hasattr(g, '_prometheus_metrics_start_time'):
                duration = time.time() - g._prometheus_metrics_start_time
                endpoint = request.endpoint or 'unknown'
                http_request_duration_seconds.labels(
                    method=request.method,
                    endpoint=endpoint
                ).observe(duration)
                http_requests_total.labels(
                    method=request.method,
                    endpoint=endpoint,
                    http_status=response.status_code
                ).inc()
        except Exception as e:
            # Metrics must never break a response
            app.logger.warning(f"Failed to record metrics: {e}")
        return response


@metrics_bp.route('/metrics')
def metrics():
    """Prometheus text exposition. Not authenticated."""
    return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)
