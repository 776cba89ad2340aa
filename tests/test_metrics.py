"""Tests for the CloudWatch metrics client."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from orchestrator.services.metrics import MetricsClient


def _make_client(*, enabled: bool = True) -> MetricsClient:
    """Build a client without starting the background flush thread."""
    with patch.object(MetricsClient, "_start_flush_thread"):
        client = MetricsClient(enabled=enabled)
    client._cw_client = MagicMock()
    return client


class TestMetricsRecording:
    """Verify that record_success / record_failure buffer the right data."""

    def test_record_success_appends_two_data_points(self):
        client = _make_client()
        client.record_success("backend", "list_units", latency_ms=123.4)
        assert client.pending == 2
        names = {m["MetricName"] for m in client._buffer}
        assert names == {"External/RequestCount", "External/Latency"}

    def test_record_failure_appends_count_and_error(self):
        client = _make_client()
        client.record_failure("anthropic", "chat", error_type="timeout")
        names = {m["MetricName"] for m in client._buffer}
        assert names == {"External/RequestCount", "External/ErrorCount"}

    def test_record_failure_with_latency_appends_three_data_points(self):
        client = _make_client()
        client.record_failure("openai", "embed_query", error_type="APIError", latency_ms=500.0)
        assert client.pending == 3

    def test_failure_dimensions_include_error_type(self):
        client = _make_client()
        client.record_failure("backend", "create_appointment", error_type="HTTPError")
        error_metric = next(
            m for m in client._buffer if m["MetricName"] == "External/ErrorCount"
        )
        dim_map = {d["Name"]: d["Value"] for d in error_metric["Dimensions"]}
        assert dim_map == {"Service": "backend", "ErrorType": "HTTPError"}

    def test_disabled_client_buffers_nothing(self):
        client = _make_client(enabled=False)
        client.record_success("backend", "list_units", latency_ms=1.0)
        assert client.pending == 0


class TestTrack:
    def test_success_is_recorded(self):
        client = _make_client()
        with client.track("vector_store", "search"):
            pass
        statuses = [
            d["Value"]
            for m in client._buffer if m["MetricName"] == "External/RequestCount"
            for d in m["Dimensions"] if d["Name"] == "Status"
        ]
        assert statuses == ["success"]

    def test_exception_is_recorded_and_reraised(self):
        client = _make_client()
        with pytest.raises(RuntimeError):
            with client.track("anthropic", "chat"):
                raise RuntimeError("boom")
        error_metric = next(
            m for m in client._buffer if m["MetricName"] == "External/ErrorCount"
        )
        dim_map = {d["Name"]: d["Value"] for d in error_metric["Dimensions"]}
        assert dim_map["ErrorType"] == "RuntimeError"


class TestMetricsFlush:
    def test_flush_when_enabled_calls_put_metric_data(self):
        client = _make_client()
        client.record_success("backend", "list_units", latency_ms=100.0)

        sent = client.flush()

        assert sent == 2
        call_args = client._cw_client.put_metric_data.call_args
        assert call_args[1]["Namespace"] == "ClinicOrchestrator"
        assert len(call_args[1]["MetricData"]) == 2
        assert client.pending == 0

    def test_flush_empty_buffer_returns_zero(self):
        client = _make_client()
        assert client.flush() == 0
        client._cw_client.put_metric_data.assert_not_called()

    def test_flush_swallows_cloudwatch_errors(self):
        client = _make_client()
        client._cw_client.put_metric_data.side_effect = RuntimeError("throttled")
        client.record_success("backend", "list_units", latency_ms=1.0)
        assert client.flush() == 0
