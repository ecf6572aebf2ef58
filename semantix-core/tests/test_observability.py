"""
Observability Tests
===================
Pipeline metrics and structured logging setup.
"""

import logging

import pytest
import structlog

from fakes import FakeTransport, fast_retry_policy


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


class TestPipelineMetrics:
    """Tests for metrics fed from lifecycle events."""

    @pytest.mark.asyncio
    async def test_counts_pipeline_events(self):
        from semantix_core import (
            MetricNames,
            PipelineMetrics,
            RequestOrchestrator,
            TransientNetworkError,
        )

        transport = FakeTransport(outcomes=[TransientNetworkError("down"), {"ok": True}])
        orchestrator = RequestOrchestrator(transport=transport, retry_policy=fast_retry_policy())
        metrics = PipelineMetrics().attach(orchestrator.channel)

        orchestrator.enqueue_request({"method": "GET", "endpoint": "/conversations"})
        await orchestrator.wait_for_idle()

        assert metrics.get_counter(MetricNames.REQUESTS_QUEUED) == 1
        assert metrics.get_counter(MetricNames.REQUEST_ATTEMPTS) == 2
        assert metrics.get_counter(MetricNames.RETRIES_SCHEDULED) == 1
        assert metrics.get_counter(MetricNames.REQUESTS_SUCCEEDED) == 1
        assert metrics.get_histogram_stats(MetricNames.REQUEST_DURATION, {"outcome": "success"})["count"] == 1

        metrics.detach()
        assert orchestrator.channel.handler_count() == 1  # orchestrator's own half-open hook
        await orchestrator.close()

    def test_circuit_gauge_follows_state(self):
        """The state gauge tracks open, half-open, closed and reset."""
        from semantix_core import CircuitBreaker, CircuitBreakerConfig, MetricNames, PipelineMetrics

        breaker = CircuitBreaker(CircuitBreakerConfig(threshold=1))
        metrics = PipelineMetrics().attach(breaker.channel)
        assert metrics.get_gauge(MetricNames.CIRCUIT_STATE) == 0

        breaker.record_failure()
        assert metrics.get_gauge(MetricNames.CIRCUIT_STATE) == 2
        assert metrics.get_counter(MetricNames.CIRCUIT_OPENED) == 1

        breaker.half_open()
        assert metrics.get_gauge(MetricNames.CIRCUIT_STATE) == 1

        breaker.record_success()
        assert metrics.get_gauge(MetricNames.CIRCUIT_STATE) == 0
        assert metrics.get_counter(MetricNames.CIRCUIT_CLOSED) == 1

    def test_failed_requests_labelled_by_error(self):
        from semantix_core import EventType, MetricNames, NotificationChannel, PipelineMetrics

        channel = NotificationChannel()
        metrics = PipelineMetrics().attach(channel)

        channel.emit(EventType.REQUEST_FAILED, request_id="r1", error=TimeoutError("slow"))

        assert metrics.get_counter(MetricNames.REQUESTS_FAILED, {"error": "TimeoutError"}) == 1

    def test_export_prometheus(self):
        from semantix_core import MetricLabels, MetricNames, PipelineMetrics

        metrics = PipelineMetrics(MetricLabels(service="semantix-extension", environment="test"))
        metrics.increment(MetricNames.REQUESTS_FAILED, labels={"error": "HTTPError"})
        metrics.set_gauge(MetricNames.CIRCUIT_STATE, 2)
        metrics.observe(MetricNames.RETRY_DELAY, 1.5)

        output = metrics.export_prometheus()

        assert (
            'semantix_requests_failed_total{service="semantix-extension",env="test",error="HTTPError"} 1'
            in output
        )
        assert 'semantix_circuit_state{service="semantix-extension",env="test"} 2' in output
        assert 'semantix_retry_delay_seconds_count{service="semantix-extension",env="test"} 1' in output

    def test_histogram_stats(self):
        from semantix_core import PipelineMetrics

        metrics = PipelineMetrics()
        for value in range(1, 101):
            metrics.observe("latency", value)

        stats = metrics.get_histogram_stats("latency")

        assert stats["count"] == 100
        assert stats["avg"] == 50.5
        assert stats["p50"] == 51
        assert metrics.get_histogram_stats("missing")["count"] == 0


class TestLogging:
    """Tests for structlog configuration."""

    def test_setup_logging(self, restore_logging):
        from semantix_core.logging import setup_logging

        root = setup_logging("semantix-test", level="debug", json_output=False)

        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert structlog.contextvars.get_contextvars()["service"] == "semantix-test"

    def test_request_context(self, restore_logging):
        from semantix_core.logging import bind_request_context, clear_request_context

        bind_request_context("req_1", attempt=2)
        context = structlog.contextvars.get_contextvars()
        assert context["request_id"] == "req_1"
        assert context["attempt"] == 2

        clear_request_context()
        assert "request_id" not in structlog.contextvars.get_contextvars()
