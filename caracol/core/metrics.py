"""
Prometheus metrics for the collector and its query monitors.
"""
from prometheus_client import Counter, Gauge, Info
from prometheus_client import CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST

from caracol.core.config import settings

registry = CollectorRegistry()

# Application info
app_info = Info('app', 'Application information', registry=registry)
app_info.info({
    'name': settings.APP_NAME,
    'version': settings.APP_VERSION
})

# Collector gauges
active_queries = Gauge(
    'active_queries',
    'Current number of active queries',
    registry=registry
)

monitored_queries = Gauge(
    'monitored_queries',
    'Current number of queries being monitored',
    registry=registry
)

# Per-query counters
query_collection_total = Counter(
    'query_collection_total',
    'Total number of collections made for a query',
    ['query_id'],
    registry=registry
)

query_error_total = Counter(
    'query_error_total',
    'Total number of errors encountered when collecting for a query',
    ['query_id'],
    registry=registry
)


def get_metrics(names=None):
    """
    Get current metrics in Prometheus format.

    Args:
        names: Sample names to restrict the output to; all metrics when empty

    Returns:
        Prometheus metrics in text format
    """
    if names:
        return generate_latest(registry.restricted_registry(names))
    return generate_latest(registry)


def get_metrics_content_type():
    """
    Get the content type for Prometheus metrics.

    Returns:
        Content type string
    """
    return CONTENT_TYPE_LATEST


def sample_value(name, labels=None) -> float:
    """Current value of a sample in the registry; 0 when it was never set."""
    return registry.get_sample_value(name, labels or {}) or 0.0
