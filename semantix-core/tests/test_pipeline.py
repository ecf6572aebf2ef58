"""
Pipeline Tests
==============
End-to-end delivery through the orchestrator with a scripted transport.
"""

import asyncio

import pytest

from fakes import FakeTransport, fast_retry_policy
from semantix_core import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
    CircuitState,
    ConfigurationError,
    EventType,
    FixedRecoveryStrategy,
    InvalidRequestError,
    NotificationChannel,
    PipelineConfig,
    Request,
    RequestOrchestrator,
    RequestStatus,
    SemantixError,
    TransientNetworkError,
)

SYNC = {"method": "POST", "endpoint": "/conversations", "payload": {"title": "t"}}


def _recorder(channel):
    events = []
    channel.subscribe_all(events.append)
    return events


class TestOrchestratorDispatch:
    """Tests for queueing and the concurrency cap."""

    @pytest.mark.asyncio
    async def test_success(self):
        transport = FakeTransport(outcomes=[{"id": "c_1"}])
        orchestrator = RequestOrchestrator(PipelineConfig(), transport=transport)
        events = _recorder(orchestrator.channel)

        request_id = orchestrator.enqueue_request(SYNC)
        await orchestrator.wait_for_idle()

        request = orchestrator.get_status(request_id)
        assert request.status == RequestStatus.SUCCESS
        assert request.response == {"id": "c_1"}
        assert request.attempts == 1
        assert [event.type for event in events] == [
            EventType.REQUEST_QUEUED,
            EventType.REQUEST_STARTED,
            EventType.REQUEST_SUCCEEDED,
        ]
        await orchestrator.close()

    @pytest.mark.asyncio
    async def test_concurrency_cap(self):
        """Six requests with five slots leave one pending."""
        gate = asyncio.Event()
        transport = FakeTransport(gate=gate)
        orchestrator = RequestOrchestrator(PipelineConfig(max_concurrent=5), transport=transport)

        request_ids = [orchestrator.enqueue_request(SYNC) for _ in range(6)]

        assert orchestrator.queue.active_count == 5
        assert orchestrator.queue.pending_count == 1
        assert orchestrator.get_status(request_ids[-1]).status == RequestStatus.PENDING
        assert orchestrator.get_status(request_ids[0]).status == RequestStatus.IN_FLIGHT

        await asyncio.sleep(0)
        assert len(transport.calls) == 5

        gate.set()
        await orchestrator.wait_for_idle()

        assert transport.max_in_flight == 5
        assert all(orchestrator.get_status(rid).status == RequestStatus.SUCCESS for rid in request_ids)
        assert orchestrator.get_stats()["total_processed"] == 6
        await orchestrator.close()

    @pytest.mark.asyncio
    async def test_invalid_request(self):
        orchestrator = RequestOrchestrator(transport=FakeTransport())

        with pytest.raises(InvalidRequestError):
            orchestrator.enqueue_request({"method": "FETCH", "endpoint": "/x"})
        with pytest.raises(InvalidRequestError):
            orchestrator.enqueue_request({"method": "GET"})

        assert orchestrator.queue.pending_count == 0
        await orchestrator.close()

    @pytest.mark.asyncio
    async def test_unknown_status(self):
        orchestrator = RequestOrchestrator(transport=FakeTransport())
        assert orchestrator.get_status("req_missing") is None
        await orchestrator.close()

    @pytest.mark.asyncio
    async def test_closed_rejects_new_work(self):
        orchestrator = RequestOrchestrator(transport=FakeTransport())
        await orchestrator.close()

        with pytest.raises(SemantixError):
            orchestrator.enqueue_request(SYNC)

    @pytest.mark.asyncio
    async def test_history_is_bounded(self):
        orchestrator = RequestOrchestrator(PipelineConfig(max_history=2), transport=FakeTransport())

        first = orchestrator.enqueue_request(SYNC)
        await orchestrator.wait_for_idle()
        for _ in range(2):
            orchestrator.enqueue_request(SYNC)
            await orchestrator.wait_for_idle()

        assert orchestrator.get_status(first) is None
        assert orchestrator.get_stats()["total_processed"] == 2

        orchestrator.clear_history()
        assert orchestrator.get_stats()["total_processed"] == 0
        await orchestrator.close()


class TestRetries:
    """Tests for retry scheduling and terminal failure."""

    @pytest.mark.asyncio
    async def test_retry_then_success(self):
        transport = FakeTransport(outcomes=[TransientNetworkError("down"), {"ok": True}])
        orchestrator = RequestOrchestrator(transport=transport, retry_policy=fast_retry_policy())
        events = _recorder(orchestrator.channel)

        request_id = orchestrator.enqueue_request(SYNC)
        await orchestrator.wait_for_idle()

        request = orchestrator.get_status(request_id)
        assert request.status == RequestStatus.SUCCESS
        assert request.attempts == 2
        assert isinstance(request.last_error, TransientNetworkError)

        scheduled = [event for event in events if event.type == EventType.REQUEST_RETRY_SCHEDULED]
        assert len(scheduled) == 1
        assert scheduled[0].data["next_attempt"] == 2
        assert scheduled[0].data["delay_ms"] == 1
        assert orchestrator.circuit_breaker.metrics.failures == 0
        await orchestrator.close()

    @pytest.mark.asyncio
    async def test_exhausted_attempts(self):
        """Three failures with three attempts is terminal; no fourth attempt."""
        transport = FakeTransport(default=lambda request: TransientNetworkError("down"))
        orchestrator = RequestOrchestrator(transport=transport, retry_policy=fast_retry_policy(max_attempts=3))
        events = _recorder(orchestrator.channel)

        request_id = orchestrator.enqueue_request(SYNC)
        await orchestrator.wait_for_idle()

        request = orchestrator.get_status(request_id)
        assert request.status == RequestStatus.FAILED
        assert request.attempts == 3
        assert isinstance(request.error, TransientNetworkError)
        assert len(transport.calls) == 3
        assert orchestrator.queue.active_count == 0

        failed = [event for event in events if event.type == EventType.REQUEST_FAILED]
        assert len(failed) == 1
        assert failed[0].data["attempts"] == 3
        assert orchestrator.circuit_breaker.metrics.failures == 1
        await orchestrator.close()

    @pytest.mark.asyncio
    async def test_non_retryable_error_fails_fast(self):
        transport = FakeTransport(outcomes=[CircuitOpenError(retry_after=5)])
        orchestrator = RequestOrchestrator(transport=transport, retry_policy=fast_retry_policy())

        request_id = orchestrator.enqueue_request(SYNC)
        await orchestrator.wait_for_idle()

        request = orchestrator.get_status(request_id)
        assert request.status == RequestStatus.FAILED
        assert request.attempts == 1
        await orchestrator.close()

    @pytest.mark.asyncio
    async def test_retrying_request_holds_its_slot(self):
        """A request waiting on its retry timer still occupies a slot."""
        transport = FakeTransport(outcomes=[TransientNetworkError("down")])
        policy = fast_retry_policy()
        policy.update_config(base_delay_ms=50, max_delay_ms=50)
        orchestrator = RequestOrchestrator(
            PipelineConfig(max_concurrent=1), transport=transport, retry_policy=policy
        )

        first = orchestrator.enqueue_request(SYNC)
        await asyncio.sleep(0.01)
        second = orchestrator.enqueue_request(SYNC)

        assert orchestrator.get_status(first).status == RequestStatus.RETRYING
        assert orchestrator.get_status(second).status == RequestStatus.PENDING
        assert orchestrator.lifecycle_handler.pending_retry_count == 1

        await orchestrator.wait_for_idle()

        # Retries re-enter at the head of the queue
        assert [call[0] for call in transport.calls] == [first, first, second]
        await orchestrator.close()

    @pytest.mark.asyncio
    async def test_close_cancels_retry_timers(self):
        transport = FakeTransport(outcomes=[TransientNetworkError("down")])
        policy = fast_retry_policy()
        policy.update_config(base_delay_ms=10000, max_delay_ms=10000)
        orchestrator = RequestOrchestrator(transport=transport, retry_policy=policy)

        request_id = orchestrator.enqueue_request(SYNC)
        await asyncio.sleep(0.01)
        await orchestrator.close()

        assert orchestrator.lifecycle_handler.pending_retry_count == 0
        assert orchestrator.get_status(request_id).status == RequestStatus.RETRYING
        assert len(transport.calls) == 1


class TestCircuitIntegration:
    """Tests for dispatch gating by the circuit breaker."""

    @pytest.mark.asyncio
    async def test_open_circuit_blocks_dispatch(self):
        transport = FakeTransport(default=lambda request: TransientNetworkError("down"))
        orchestrator = RequestOrchestrator(
            PipelineConfig(circuit_threshold=2, retry_attempts=1),
            transport=transport,
        )
        events = _recorder(orchestrator.channel)

        for _ in range(3):
            orchestrator.enqueue_request(SYNC)
        await orchestrator.wait_for_idle()

        assert orchestrator.circuit_breaker.current_state == CircuitState.OPEN
        opened = [event for event in events if event.type == EventType.CIRCUIT_OPENED]
        assert len(opened) == 1
        assert opened[0].data["failures"] == 2

        blocked = orchestrator.enqueue_request(SYNC)

        assert orchestrator.get_status(blocked).status == RequestStatus.PENDING
        assert orchestrator.process_queue() == 0
        assert len(transport.calls) == 3
        await orchestrator.close()

    @pytest.mark.asyncio
    async def test_half_open_trial_then_drain(self):
        """After recovery a single trial request runs; its success closes and drains."""
        channel = NotificationChannel()
        breaker = CircuitBreaker(
            CircuitBreakerConfig(threshold=2, timeout_ms=1000),
            channel=channel,
            recovery_strategy=FixedRecoveryStrategy(timeout_ms=20),
        )
        transport = FakeTransport(
            outcomes=[TransientNetworkError("down"), TransientNetworkError("down")],
        )
        orchestrator = RequestOrchestrator(
            PipelineConfig(retry_attempts=1),
            transport=transport,
            circuit_breaker=breaker,
        )
        assert orchestrator.channel is channel
        events = _recorder(channel)

        orchestrator.enqueue_request(SYNC)
        orchestrator.enqueue_request(SYNC)
        await orchestrator.wait_for_idle()
        assert breaker.is_open()

        waiting = [orchestrator.enqueue_request(SYNC) for _ in range(3)]
        assert orchestrator.queue.pending_count == 3

        await asyncio.sleep(0.1)
        await orchestrator.wait_for_idle()

        assert breaker.is_closed()
        assert all(orchestrator.get_status(rid).status == RequestStatus.SUCCESS for rid in waiting)

        kinds = [event.type for event in events]
        half_opened = kinds.index(EventType.CIRCUIT_HALF_OPENED)
        closed = kinds.index(EventType.CIRCUIT_CLOSED)
        assert kinds[half_opened:closed].count(EventType.REQUEST_STARTED) == 1
        await orchestrator.close()

    @pytest.mark.asyncio
    async def test_adaptive_circuit_recovers_when_backend_returns(self):
        """Failure history frozen by the open circuit still allows recovery."""
        transport = FakeTransport(
            outcomes=[TransientNetworkError("down"), TransientNetworkError("down")],
        )
        orchestrator = RequestOrchestrator(
            PipelineConfig(
                circuit_threshold=2,
                retry_attempts=1,
                recovery_strategy="adaptive",
                recovery_options={"min_timeout_ms": 10, "max_timeout_ms": 50},
            ),
            transport=transport,
        )

        orchestrator.enqueue_request(SYNC)
        orchestrator.enqueue_request(SYNC)
        await orchestrator.wait_for_idle()
        assert orchestrator.circuit_breaker.is_open()

        waiting = orchestrator.enqueue_request(SYNC)
        assert orchestrator.get_status(waiting).status == RequestStatus.PENDING

        await asyncio.sleep(0.3)
        await orchestrator.wait_for_idle()

        assert orchestrator.get_status(waiting).status == RequestStatus.SUCCESS
        assert orchestrator.circuit_breaker.is_closed()
        await orchestrator.close()

    def test_explicit_channel_must_match_breaker(self):
        breaker = CircuitBreaker()

        with pytest.raises(ConfigurationError):
            RequestOrchestrator(transport=FakeTransport(), channel=NotificationChannel(), circuit_breaker=breaker)

        orchestrator = RequestOrchestrator(
            transport=FakeTransport(), channel=breaker.channel, circuit_breaker=breaker
        )
        assert orchestrator.channel is breaker.channel
        orchestrator.destroy()


class TestRuntimeConfig:
    """Tests for runtime configuration updates and stats."""

    @pytest.mark.asyncio
    async def test_update_config(self):
        orchestrator = RequestOrchestrator(transport=FakeTransport())

        config = orchestrator.update_config(retry_attempts=5, max_concurrent=2, request_timeout_ms=1500)

        assert config.retry_attempts == 5
        assert orchestrator.retry_policy.max_attempts == 5
        assert orchestrator.queue.max_concurrent == 2
        assert orchestrator.lifecycle_handler.request_timeout == 1.5
        await orchestrator.close()

    @pytest.mark.asyncio
    async def test_update_config_rejects_circuit_settings(self):
        orchestrator = RequestOrchestrator(transport=FakeTransport())

        with pytest.raises(ConfigurationError):
            orchestrator.update_config(circuit_threshold=3)
        with pytest.raises(ConfigurationError):
            orchestrator.update_config(max_concurrent=0)

        assert orchestrator.config.max_concurrent == 5
        await orchestrator.close()

    @pytest.mark.asyncio
    async def test_timeout_reaches_transport(self):
        transport = FakeTransport()
        orchestrator = RequestOrchestrator(PipelineConfig(request_timeout_ms=2500), transport=transport)

        orchestrator.enqueue_request(SYNC)
        await orchestrator.wait_for_idle()

        assert transport.calls[0][2] == 2.5
        await orchestrator.close()

    @pytest.mark.asyncio
    async def test_stats(self):
        orchestrator = RequestOrchestrator(transport=FakeTransport())

        stats = orchestrator.get_stats()

        assert set(stats) == {"queue", "circuit_breaker", "retry_policy", "total_processed"}
        assert stats["queue"]["max_concurrent"] == 5
        assert stats["circuit_breaker"]["state"] == "closed"
        assert stats["retry_policy"]["max_attempts"] == 3
        await orchestrator.close()

    @pytest.mark.asyncio
    async def test_context_manager_closes_owned_transport(self):
        async with RequestOrchestrator(PipelineConfig(base_url="http://backend.test")) as orchestrator:
            assert orchestrator.transport.base_url == "http://backend.test"

        assert orchestrator.is_closed
        assert orchestrator.transport.client.is_closed


class TestWithoutEventLoop:
    """Dispatch outside a running loop leaves no half-applied state."""

    def test_execute_request_leaves_request_untouched(self):
        orchestrator = RequestOrchestrator(transport=FakeTransport())
        request = Request(id="req_sync", method="GET", endpoint="/conversations")

        with pytest.raises(RuntimeError):
            orchestrator.lifecycle_handler.execute_request(request)

        assert request.status == RequestStatus.PENDING
        assert request.attempts == 0
        assert orchestrator.queue.active_count == 0
        orchestrator.destroy()

    def test_enqueue_keeps_request_pending(self):
        orchestrator = RequestOrchestrator(transport=FakeTransport())

        with pytest.raises(RuntimeError):
            orchestrator.enqueue_request(SYNC)

        assert orchestrator.queue.pending_count == 1
        assert orchestrator.queue.active_count == 0
        orchestrator.destroy()
