"""
Prometheus metrics for the daemon.
Tracks loaded alerts, sent and failed notifications, and reloads.
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

metrics_registry = CollectorRegistry()

alerts_loaded = Gauge(
    'alertd_alerts_loaded',
    'Number of alerts currently loaded',
    registry=metrics_registry
)

# Counter names get the _total suffix on exposition
alerts_sent = Counter(
    'alertd_alerts_sent',
    'Total number of notifications delivered to a target',
    registry=metrics_registry
)

alerts_failed = Counter(
    'alertd_alerts_failed',
    'Total number of failed deliveries and source errors',
    registry=metrics_registry
)

reloads = Counter(
    'alertd_reloads',
    'Total number of configuration reloads',
    registry=metrics_registry
)


def get_metrics() -> bytes:
    """Metrics in Prometheus text format."""
    return generate_latest(metrics_registry)
