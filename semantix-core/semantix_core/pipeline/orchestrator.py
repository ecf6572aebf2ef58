"""
Request Orchestrator
====================
Public entry point of the delivery pipeline.

Usage:
    from semantix_core import PipelineConfig, RequestOrchestrator

    async with RequestOrchestrator(PipelineConfig(base_url="https://api.semantix.dev")) as client:
        request_id = client.enqueue_request({
            "method": "POST",
            "endpoint": "/conversations",
            "payload": conversation,
        })
        ...
        client.get_status(request_id)
"""

from typing import Any, Dict, Mapping, Optional, Union

import structlog
from pydantic import ValidationError

from ..circuit_breaker import CircuitBreaker
from ..config import PipelineConfig
from ..events import Event, EventType, NotificationChannel
from ..exceptions import ConfigurationError, InvalidRequestError, SemantixError
from ..requests import Request, RequestQueue, RequestSpec, RequestStateManager
from ..retry import RetryPolicy
from ..transport import HttpTransport, Transport
from .lifecycle import RequestLifecycleHandler

logger = structlog.get_logger(__name__)

RUNTIME_SETTINGS = frozenset({
    "retry_attempts",
    "retry_base_delay_ms",
    "retry_max_delay_ms",
    "retry_jitter",
    "request_timeout_ms",
    "max_concurrent",
    "base_url",
})


class RequestOrchestrator:
    """
    Drains the request queue subject to the circuit breaker and the
    concurrency cap, dispatching each request to the transport.

    All collaborators are injectable; anything not supplied is built from
    the configuration. An injected circuit breaker brings its own channel;
    a different explicit channel is rejected.

    `enqueue_request` must be called from a running event loop.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        transport: Optional[Transport] = None,
        channel: Optional[NotificationChannel] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.config = config or PipelineConfig()

        if circuit_breaker is not None:
            if channel is not None and channel is not circuit_breaker.channel:
                raise ConfigurationError(
                    "channel must be the circuit breaker's channel; circuit events would be missed"
                )
            channel = circuit_breaker.channel
        elif channel is None:
            channel = NotificationChannel()
        self.channel = channel

        self._owns_transport = transport is None
        self.transport = transport or HttpTransport(
            base_url=self.config.base_url,
            timeout=self.config.request_timeout,
        )

        self.queue = RequestQueue(self.config.max_concurrent)
        self.retry_policy = retry_policy or self.config.to_retry_policy()
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            self.config.to_circuit_breaker_config(),
            channel=self.channel,
        )
        self.state_manager = RequestStateManager(self.queue, max_history=self.config.max_history)

        self.lifecycle_handler = RequestLifecycleHandler(
            transport=self.transport,
            circuit_breaker=self.circuit_breaker,
            retry_policy=self.retry_policy,
            state_manager=self.state_manager,
            queue=self.queue,
            channel=self.channel,
            request_timeout=self.config.request_timeout,
            on_settled=self.process_queue,
        )

        self._processing = False
        self._closed = False
        self._unsubscribe = self.channel.subscribe(EventType.CIRCUIT_HALF_OPENED, self._on_half_open)

        logger.info(
            "orchestrator_initialized",
            base_url=self.config.base_url,
            max_concurrent=self.config.max_concurrent,
            recovery_strategy=self.circuit_breaker.recovery_strategy.name,
        )

    async def __aenter__(self) -> "RequestOrchestrator":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    @property
    def is_closed(self) -> bool:
        return self._closed

    def enqueue_request(self, spec: Union[RequestSpec, Mapping[str, Any]]) -> str:
        """
        Queue a request for delivery.

        Returns:
            The request id, usable with `get_status`

        Raises:
            InvalidRequestError: If the request description is malformed
        """
        if self._closed:
            raise SemantixError("Orchestrator is closed")

        request_spec = self._validate_spec(spec)
        request = self.state_manager.create_request(request_spec)
        self.queue.enqueue(request)

        logger.info(
            "request_enqueued",
            request_id=request.id,
            method=request.method,
            endpoint=request.endpoint,
            pending=self.queue.pending_count,
        )
        self.channel.emit(EventType.REQUEST_QUEUED, request_id=request.id, request=request)

        self.process_queue()
        return request.id

    def _validate_spec(self, spec: Union[RequestSpec, Mapping[str, Any]]) -> RequestSpec:
        if isinstance(spec, RequestSpec):
            return spec
        try:
            return RequestSpec.model_validate(spec)
        except ValidationError as e:
            raise InvalidRequestError(f"Invalid request: {e}", details=e.errors())

    def process_queue(self) -> int:
        """
        Dispatch queued requests without waiting for them to finish.

        Stops when the queue is empty, the breaker blocks, or every slot is
        taken. While half-open only one request may be in flight. Returns the
        number of requests dispatched.
        """
        if self._processing or self._closed:
            return 0

        self._processing = True
        dispatched = 0
        try:
            while not self.queue.is_empty():
                if not self.circuit_breaker.is_request_allowed():
                    logger.debug("dispatch_blocked_by_circuit", pending=self.queue.pending_count)
                    break
                if self.circuit_breaker.is_half_open() and self.queue.active_count > 0:
                    break

                request = self.queue.dequeue()
                if request is None:
                    break

                try:
                    self.lifecycle_handler.execute_request(request)
                except RuntimeError:
                    # No running loop; keep the request at the head
                    self.queue.enqueue_priority(request)
                    raise
                dispatched += 1
        finally:
            self._processing = False

        return dispatched

    def _on_half_open(self, event: Event) -> None:
        self.process_queue()

    def get_status(self, request_id: str) -> Optional[Request]:
        return self.state_manager.get_status(request_id)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "queue": self.queue.get_stats(),
            "circuit_breaker": self.circuit_breaker.get_stats(),
            "retry_policy": self.retry_policy.get_config(),
            "total_processed": self.state_manager.history_size,
        }

    def clear_history(self) -> None:
        self.state_manager.clear_history()

    def update_config(self, **changes: Any) -> PipelineConfig:
        """
        Change delivery settings at runtime.

        Only retry, timeout, concurrency and base URL settings can change;
        circuit breaker settings are fixed at construction.
        """
        fixed = set(changes) - RUNTIME_SETTINGS
        if fixed:
            raise ConfigurationError(
                f"Settings cannot be changed at runtime: {', '.join(sorted(fixed))}"
            )

        config = self.config.updated(**changes)

        self.retry_policy.update_config(
            max_attempts=config.retry_attempts,
            base_delay_ms=config.retry_base_delay_ms,
            max_delay_ms=config.retry_max_delay_ms,
            jitter=config.retry_jitter,
        )
        self.lifecycle_handler.request_timeout = config.request_timeout
        self.queue.max_concurrent = config.max_concurrent
        if isinstance(self.transport, HttpTransport):
            self.transport.base_url = config.base_url.rstrip("/")
            self.transport.timeout = config.request_timeout

        self.config = config
        logger.info("orchestrator_config_updated", changes=sorted(changes))

        self.process_queue()
        return config

    async def wait_for_idle(self) -> None:
        """Wait for in-flight attempts and pending retries to settle."""
        await self.lifecycle_handler.wait_for_idle()

    def destroy(self) -> None:
        """
        Stop dispatching and release timers.

        In-flight attempts are not cancelled; they run to completion.
        """
        if self._closed:
            return
        self._closed = True
        self._unsubscribe()
        self.lifecycle_handler.destroy()
        self.circuit_breaker.destroy()
        self.queue.clear_pending()
        logger.info("orchestrator_destroyed")

    async def close(self) -> None:
        """Destroy, wait for in-flight attempts, and close an owned transport."""
        self.destroy()
        await self.lifecycle_handler.wait_for_idle()
        if self._owns_transport:
            await self.transport.aclose()
