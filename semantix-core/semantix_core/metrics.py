"""
Pipeline Metrics
================
In-memory counters, gauges and histograms fed by pipeline notifications.

Usage:
    metrics = PipelineMetrics(MetricLabels(service="semantix-extension"))
    metrics.attach(orchestrator.channel)
    print(metrics.export_prometheus())
"""

import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import structlog

from .circuit_breaker.models import CircuitState
from .events import Event, EventType, NotificationChannel

logger = structlog.get_logger(__name__)

# Keep only the most recent samples per histogram
HISTOGRAM_SAMPLE_LIMIT = 1000

CIRCUIT_STATE_VALUES = {
    CircuitState.CLOSED.value: 0,
    CircuitState.HALF_OPEN.value: 1,
    CircuitState.OPEN.value: 2,
}


class MetricNames:
    """Metric names emitted by PipelineMetrics."""
    REQUESTS_QUEUED = "semantix_requests_queued"
    REQUEST_ATTEMPTS = "semantix_request_attempts"
    REQUESTS_SUCCEEDED = "semantix_requests_succeeded"
    REQUESTS_FAILED = "semantix_requests_failed"
    RETRIES_SCHEDULED = "semantix_retries_scheduled"
    CIRCUIT_OPENED = "semantix_circuit_opened"
    CIRCUIT_CLOSED = "semantix_circuit_closed"
    CIRCUIT_STATE = "semantix_circuit_state"
    REQUEST_DURATION = "semantix_request_duration_seconds"
    RETRY_DELAY = "semantix_retry_delay_seconds"


@dataclass
class MetricLabels:
    """Common labels for metrics."""
    service: str
    environment: str = "production"
    version: str = "1.0.0"


class PipelineMetrics:
    """
    Simple in-memory metrics collector for the delivery pipeline.

    `attach()` subscribes to a NotificationChannel; every lifecycle event
    updates the matching counter, gauge or histogram.
    """

    def __init__(self, labels: Optional[MetricLabels] = None):
        self.labels = labels or MetricLabels(service="semantix")
        self._counters: Dict[str, int] = {}
        self._gauges: Dict[str, float] = {}
        self._histograms: Dict[str, list] = {}
        self._unsubscribers: List[Callable[[], None]] = []

    def attach(self, channel: NotificationChannel) -> "PipelineMetrics":
        self._unsubscribers.append(channel.subscribe_all(self.handle_event))
        self.set_gauge(MetricNames.CIRCUIT_STATE, CIRCUIT_STATE_VALUES[CircuitState.CLOSED.value])
        return self

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    def handle_event(self, event: Event) -> None:
        """Update metrics for one lifecycle event."""
        if event.type == EventType.REQUEST_QUEUED:
            self.increment(MetricNames.REQUESTS_QUEUED)
        elif event.type == EventType.REQUEST_STARTED:
            self.increment(MetricNames.REQUEST_ATTEMPTS)
        elif event.type == EventType.REQUEST_SUCCEEDED:
            self.increment(MetricNames.REQUESTS_SUCCEEDED)
            self._observe_duration(event, "success")
        elif event.type == EventType.REQUEST_FAILED:
            error = event.data.get("error")
            self.increment(
                MetricNames.REQUESTS_FAILED,
                labels={"error": type(error).__name__ if error is not None else "unknown"},
            )
            self._observe_duration(event, "failed")
        elif event.type == EventType.REQUEST_RETRY_SCHEDULED:
            self.increment(MetricNames.RETRIES_SCHEDULED)
            self.observe(MetricNames.RETRY_DELAY, event.data.get("delay_ms", 0) / 1000)
        elif event.type == EventType.CIRCUIT_OPENED:
            self.increment(MetricNames.CIRCUIT_OPENED)
        elif event.type == EventType.CIRCUIT_CLOSED:
            self.increment(MetricNames.CIRCUIT_CLOSED)
        elif event.type == EventType.CIRCUIT_STATE_CHANGED:
            state = event.data.get("to_state")
            if state in CIRCUIT_STATE_VALUES:
                self.set_gauge(MetricNames.CIRCUIT_STATE, CIRCUIT_STATE_VALUES[state])
        elif event.type == EventType.CIRCUIT_RESET:
            self.set_gauge(MetricNames.CIRCUIT_STATE, CIRCUIT_STATE_VALUES[CircuitState.CLOSED.value])

    def _observe_duration(self, event: Event, outcome: str) -> None:
        enqueued_at = getattr(event.request, "enqueued_at", None)
        if enqueued_at is None:
            return
        self.observe(
            MetricNames.REQUEST_DURATION,
            max(0.0, time.time() - enqueued_at),
            labels={"outcome": outcome},
        )

    def increment(self, name: str, value: int = 1, labels: Optional[Dict] = None) -> None:
        """Increment a counter."""
        key = self._make_key(name, labels)
        self._counters[key] = self._counters.get(key, 0) + value

    def set_gauge(self, name: str, value: float, labels: Optional[Dict] = None) -> None:
        """Set a gauge value."""
        key = self._make_key(name, labels)
        self._gauges[key] = value

    def observe(self, name: str, value: float, labels: Optional[Dict] = None) -> None:
        """Record a histogram observation."""
        key = self._make_key(name, labels)
        samples = self._histograms.setdefault(key, [])
        samples.append(value)
        if len(samples) > HISTOGRAM_SAMPLE_LIMIT:
            del samples[:-HISTOGRAM_SAMPLE_LIMIT]

    def _make_key(self, name: str, labels: Optional[Dict] = None) -> str:
        """Create a unique key for a metric."""
        if labels:
            label_str = ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))
            return f"{name}{{{label_str}}}"
        return name

    def get_counter(self, name: str, labels: Optional[Dict] = None) -> int:
        return self._counters.get(self._make_key(name, labels), 0)

    def get_gauge(self, name: str, labels: Optional[Dict] = None) -> Optional[float]:
        return self._gauges.get(self._make_key(name, labels))

    def get_histogram_stats(self, name: str, labels: Optional[Dict] = None) -> Dict:
        """Get histogram statistics."""
        values = self._histograms.get(self._make_key(name, labels), [])

        if not values:
            return {"count": 0, "sum": 0, "avg": 0, "p50": 0, "p95": 0, "p99": 0}

        sorted_values = sorted(values)
        count = len(values)

        return {
            "count": count,
            "sum": sum(values),
            "avg": sum(values) / count,
            "p50": self._percentile(sorted_values, 50),
            "p95": self._percentile(sorted_values, 95),
            "p99": self._percentile(sorted_values, 99),
        }

    def _percentile(self, sorted_values: list, percentile: int) -> float:
        if not sorted_values:
            return 0
        idx = int(len(sorted_values) * percentile / 100)
        return sorted_values[min(idx, len(sorted_values) - 1)]

    def export_prometheus(self) -> str:
        """Export metrics in Prometheus text format."""
        lines = []
        base_labels = f'service="{self.labels.service}",env="{self.labels.environment}"'

        for key, value in sorted(self._counters.items()):
            name, extra = self._split_key(key)
            lines.append(f"{name}_total{{{base_labels}{extra}}} {value}")

        for key, value in sorted(self._gauges.items()):
            name, extra = self._split_key(key)
            lines.append(f"{name}{{{base_labels}{extra}}} {value}")

        for key, values in sorted(self._histograms.items()):
            name, extra = self._split_key(key)
            lines.append(f"{name}_count{{{base_labels}{extra}}} {len(values)}")
            lines.append(f"{name}_sum{{{base_labels}{extra}}} {sum(values)}")

        return "\n".join(lines)

    @staticmethod
    def _split_key(key: str):
        if "{" not in key:
            return key, ""
        name, rest = key.split("{", 1)
        return name, "," + rest[:-1]
