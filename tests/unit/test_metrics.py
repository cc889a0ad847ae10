"""
Unit tests for Prometheus metrics collection
Tests that requeue attempts update the counters
"""

from prometheus_client import REGISTRY

from returntosource.observability.metrics import increment_failures, increment_outcome


def _sample(name, labels=None):
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


class TestMetrics:
    """Test Prometheus metrics collection"""

    def test_increment_outcome_counter(self):
        """Test outcome counter increment"""
        before = _sample("rts_requeue_outcomes_total", {"outcome": "RETURNED"})

        increment_outcome("RETURNED")

        assert _sample("rts_requeue_outcomes_total", {"outcome": "RETURNED"}) == before + 1

    def test_increment_failures_counter(self):
        """Test failure counter increment"""
        before = _sample("rts_requeue_failures_total", {"error_type": "QueueAccessError"})

        increment_failures("QueueAccessError")

        assert _sample("rts_requeue_failures_total", {"error_type": "QueueAccessError"}) == before + 1

    def test_direct_return_recorded(self, operator, enqueue, failed_headers):
        """Test that a direct return updates the outcome counter and duration histogram"""
        stored = enqueue(failed_headers())
        before = _sample("rts_requeue_outcomes_total", {"outcome": "RETURNED"})
        durations = _sample("rts_requeue_duration_seconds_count")

        operator.return_message_to_source_queue(stored.id)

        assert _sample("rts_requeue_outcomes_total", {"outcome": "RETURNED"}) == before + 1
        assert _sample("rts_requeue_duration_seconds_count") == durations + 1

    def test_scan_records_timeout_and_examined_messages(self, operator, enqueue, failed_headers):
        """Test that a scan records the lookup timeout and examined messages"""
        for index in range(3):
            enqueue(failed_headers(original_id=f"other-{index}"))
        timeouts = _sample("rts_lookup_timeouts_total")
        scanned = _sample("rts_messages_scanned_total")

        operator.return_message_to_source_queue("target")

        assert _sample("rts_lookup_timeouts_total") == timeouts + 1
        assert _sample("rts_messages_scanned_total") == scanned + 3
