"""
Tests for the Prometheus-style metrics collector.
"""
import threading

import pytest

from booking_engine.lib.metrics import MetricsCollector, get_metrics_collector


@pytest.mark.unit
def test_singleton():
    assert get_metrics_collector() is get_metrics_collector()


@pytest.mark.unit
def test_counters_are_labelled():
    metrics = MetricsCollector()

    metrics.increment_bookings_created("Online")
    metrics.increment_bookings_created("online")
    metrics.increment_bookings_created("walk_in")
    metrics.increment_conflicts("slot_taken", "create")

    assert metrics.get_counter_value("bookings_created_total", {"source": "online"}) == 2
    assert metrics.get_counter_value("bookings_created_total", {"source": "walk_in"}) == 1
    assert metrics.get_counter_value(
        "booking_conflicts_total", {"kind": "slot_taken", "operation": "create"}
    ) == 1
    assert metrics.get_counter_value("booking_reschedules_total", {}) == 0


@pytest.mark.unit
def test_prometheus_export_format():
    metrics = MetricsCollector()
    metrics.increment_transitions("confirmed", "business")
    metrics.increment_reschedules()
    metrics.increment_notifications_delivered("new_booking", "email")

    output = metrics.export_prometheus()

    assert "# HELP booking_transitions_total Total number of booking status transitions" in output
    assert "# TYPE booking_transitions_total counter" in output
    assert 'booking_transitions_total{actor="business",to_status="confirmed"} 1' in output
    assert "booking_reschedules_total 1" in output
    assert 'notifications_delivered_total{channel="EMAIL",kind="new_booking"} 1' in output


@pytest.mark.unit
def test_concurrent_increments_are_counted():
    metrics = MetricsCollector()

    def work():
        for _ in range(500):
            metrics.increment_store_failures("list_bookings", "timeout")

    threads = [threading.Thread(target=work) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert metrics.get_counter_value(
        "store_failures_total", {"operation": "list_bookings", "reason": "timeout"}
    ) == 4000


@pytest.mark.unit
def test_reset_all():
    metrics = MetricsCollector()
    metrics.increment_reschedules()

    metrics.reset_all()

    assert metrics.export_prometheus() == ""
