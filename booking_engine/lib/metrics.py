"""
Prometheus-compatible metrics for observability.

Tracks:
- Bookings created and status transitions
- Conflicts by kind (duplicate, slot taken, already rescheduled, ...)
- Store timeouts and unknown write outcomes
- Notification deliveries and failures

Usage:
    from booking_engine.lib.metrics import get_metrics_collector

    metrics = get_metrics_collector()
    metrics.increment_transitions(to_status="confirmed")
    prometheus_output = metrics.export_prometheus()
"""

from typing import Dict, Tuple
from threading import Lock


HELP_TEXTS = {
    "bookings_created_total": "Total number of bookings created",
    "booking_transitions_total": "Total number of booking status transitions",
    "booking_reschedules_total": "Total number of successful reschedules",
    "booking_conflicts_total": "Total number of rejected booking mutations by conflict kind",
    "store_failures_total": "Total number of bounded store calls that timed out or failed",
    "notifications_emitted_total": "Total number of notification intents emitted",
    "notifications_delivered_total": "Total number of notification deliveries",
    "notifications_failed_total": "Total number of failed notification deliveries",
}


class MetricsCollector:
    """
    Prometheus-style counter collector.

    Thread-safe for concurrent increments.
    """

    def __init__(self):
        self._lock = Lock()

        # Counters: key = (metric_name, labels_tuple), value = count
        self._counters: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], int] = {}

    def _get_counter_key(self, metric_name: str, labels: Dict[str, str]) -> Tuple[str, Tuple[Tuple[str, str], ...]]:
        """Generate unique key for counter with sorted labels."""
        return (metric_name, tuple(sorted(labels.items())))

    def _increment(self, metric_name: str, labels: Dict[str, str], amount: int = 1):
        key = self._get_counter_key(metric_name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    # ===== Booking metrics =====

    def increment_bookings_created(self, source: str = "online"):
        self._increment("bookings_created_total", {"source": source.lower()})

    def increment_transitions(self, to_status: str, actor: str = "business"):
        self._increment(
            "booking_transitions_total",
            {"to_status": to_status.lower(), "actor": actor.lower()},
        )

    def increment_reschedules(self):
        self._increment("booking_reschedules_total", {})

    def increment_conflicts(self, kind: str, operation: str):
        self._increment(
            "booking_conflicts_total",
            {"kind": kind.lower(), "operation": operation.lower()},
        )

    # ===== Infrastructure metrics =====

    def increment_store_failures(self, operation: str, reason: str):
        self._increment(
            "store_failures_total",
            {"operation": operation, "reason": reason.lower()},
        )

    # ===== Notification metrics =====

    def increment_notifications_emitted(self, kind: str):
        self._increment("notifications_emitted_total", {"kind": kind.lower()})

    def increment_notifications_delivered(self, kind: str, channel: str):
        self._increment(
            "notifications_delivered_total",
            {"kind": kind.lower(), "channel": channel.upper()},
        )

    def increment_notifications_failed(self, kind: str, channel: str):
        self._increment(
            "notifications_failed_total",
            {"kind": kind.lower(), "channel": channel.upper()},
        )

    # ===== Export =====

    def export_prometheus(self) -> str:
        """
        Export all metrics in Prometheus text format.
        """
        output_lines = []

        metrics_by_name: Dict[str, list] = {}
        with self._lock:
            for (metric_name, labels_tuple), value in self._counters.items():
                metrics_by_name.setdefault(metric_name, []).append((dict(labels_tuple), value))

        for metric_name in sorted(metrics_by_name.keys()):
            output_lines.append(f"# HELP {metric_name} {HELP_TEXTS.get(metric_name, 'Counter metric')}")
            output_lines.append(f"# TYPE {metric_name} counter")

            for labels_dict, value in sorted(metrics_by_name[metric_name], key=lambda x: str(x[0])):
                if labels_dict:
                    labels_str = ",".join([f'{k}="{v}"' for k, v in sorted(labels_dict.items())])
                    output_lines.append(f"{metric_name}{{{labels_str}}} {value}")
                else:
                    output_lines.append(f"{metric_name} {value}")

            output_lines.append("")

        return "\n".join(output_lines)

    def get_counter_value(self, metric_name: str, labels: Dict[str, str]) -> int:
        """Get current value of a specific counter."""
        key = self._get_counter_key(metric_name, labels)
        with self._lock:
            return self._counters.get(key, 0)

    def reset_all(self):
        """Reset all counters (for testing)."""
        with self._lock:
            self._counters.clear()


# Global singleton instance
_metrics_collector: MetricsCollector | None = None
_metrics_lock = Lock()


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector singleton."""
    global _metrics_collector
    if _metrics_collector is None:
        with _metrics_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()
    return _metrics_collector


def reset_metrics():
    """Reset global metrics collector (for testing)."""
    with _metrics_lock:
        if _metrics_collector is not None:
            _metrics_collector.reset_all()
