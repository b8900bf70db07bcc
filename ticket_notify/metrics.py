"""Prometheus metrics for notification delivery."""

from prometheus_client import Counter, Histogram, start_http_server
import functools
import time

# Public exports
__all__ = [
    "NOTIFICATIONS_SENT",
    "NOTIFICATIONS_FAILED",
    "SUBSCRIPTIONS_PRUNED",
    "SWEEP_LATENCY",
    "start_metrics_server",
    "track_sweep",
]

NOTIFICATIONS_SENT = Counter(
    "notifications_sent_total",
    "Total number of push notifications accepted by the provider",
)

# ``reason`` is ``transient`` or ``gone``.
NOTIFICATIONS_FAILED = Counter(
    "notifications_failed_total",
    "Total number of push notifications the provider rejected",
    ["reason"],
)

SUBSCRIPTIONS_PRUNED = Counter(
    "subscriptions_pruned_total",
    "Total number of subscriptions removed after a permanent failure",
)

SWEEP_LATENCY = Histogram(
    "sweep_latency_seconds",
    "Time spent sweeping for due notifications",
    ["source"],
)


def start_metrics_server(port: int = 8000) -> None:
    """Start an HTTP server to expose Prometheus metrics."""
    start_http_server(port)


def track_sweep(func=None, *, source: str | None = None):
    """Decorator recording how long a sweep takes.

    Usable bare as ``@track_sweep`` or as ``@track_sweep(source="cron")``.
    """

    def decorator(func):
        label = source or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.monotonic()
            try:
                return func(*args, **kwargs)
            finally:
                SWEEP_LATENCY.labels(label).observe(time.monotonic() - start_time)

        return wrapper

    if func is None:
        return decorator

    return decorator(func)
