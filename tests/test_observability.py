"""Tests for log redaction and the metrics collector."""

from compass_agent.infrastructure.observability.logging import (
    REDACTED,
    MetricsCollector,
    redact_contact_details,
    summarize_output,
)


class TestRedaction:
    def test_contact_details_are_masked_at_any_depth(self):
        event = {
            "event": "tool_execution",
            "output": {"advisor": {"email": "thandi@example.com", "phone": "+264 61 000 101", "branch": "Windhoek"}},
            "rows": [{"id_number": "85010112345"}],
        }

        redacted = redact_contact_details(None, "info", event)

        assert redacted["output"]["advisor"]["email"] == REDACTED
        assert redacted["output"]["advisor"]["phone"] == REDACTED
        assert redacted["output"]["advisor"]["branch"] == "Windhoek"
        assert redacted["rows"][0]["id_number"] == REDACTED

    def test_empty_values_are_left_alone(self):
        assert redact_contact_details(None, "info", {"email": None})["email"] is None


class TestSummarizeOutput:
    def test_shapes(self):
        assert summarize_output([1, 2, 3]) == {"kind": "list", "count": 3}
        assert summarize_output({"b": 1, "a": 2}) == {"kind": "object", "keys": ["a", "b"]}
        assert summarize_output(None) == {"kind": "none"}


class TestMetricsCollector:
    def test_summary(self):
        collector = MetricsCollector()
        collector.record_latency("tool.calculator", 10.0)
        collector.record_latency("tool.calculator", 30.0)
        collector.increment_counter("turn.completed")
        collector.increment_counter("turn.completed", 2)

        summary = collector.get_metrics_summary()

        assert summary["latency.tool.calculator"] == {"count": 2, "avg": 20.0, "min": 10.0, "max": 30.0}
        assert summary["turn.completed"] == 3
