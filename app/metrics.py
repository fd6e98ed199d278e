"""
Prometheus counters for the quote pipeline.

Registered on the same registry the /metrics blueprint exposes.
"""
import os

from prometheus_client import Counter, CollectorRegistry, REGISTRY, multiprocess

# Gunicorn workers share counters through PROMETHEUS_MULTIPROC_DIR
MULTIPROCESS_MODE = os.environ.get('PROMETHEUS_MULTIPROC_DIR') is not None

if MULTIPROCESS_MODE:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
else:
    registry = REGISTRY

_counter_registry = registry if not MULTIPROCESS_MODE else None

notification_attempts_total = Counter(
    'quote_notification_attempts_total',
    'Email provider attempts',
    ['provider', 'status'],
    registry=_counter_registry
)

payment_links_total = Counter(
    'quote_payment_links_total',
    'Payment link issuance by outcome (created, reused, fallback)',
    ['provider', 'outcome'],
    registry=_counter_registry
)

documents_rendered_total = Counter(
    'quote_documents_rendered_total',
    'Quote PDF renders by outcome (full, fallback, unavailable)',
    ['outcome'],
    registry=_counter_registry
)

quotes_sent_total = Counter(
    'quotes_sent_total',
    'Send operations by result (sent, degraded, not_sent)',
    ['result'],
    registry=_counter_registry
)
