"""
Request Lifecycle Handler
=========================
Drives one request through execute -> success / retry / terminal failure.
"""

import asyncio
from typing import Any, Callable, Dict, Optional, Set

import structlog

from ..circuit_breaker import CircuitBreaker
from ..events import EventType, NotificationChannel
from ..exceptions import InvalidStateTransition
from ..requests import Request, RequestQueue, RequestStateManager, RequestStatus
from ..retry import RetryPolicy
from ..transport import Transport

logger = structlog.get_logger(__name__)


class RequestLifecycleHandler:
    """
    Executes requests against the transport and settles their outcome.

    Transport errors never escape: each one becomes either a scheduled retry
    or a terminal failure recorded on the circuit breaker. Retry timers are
    asyncio tasks owned by this handler and are cancelled by `destroy()`.

    A retrying request keeps its concurrency slot until its timer fires and
    it is pushed back to the head of the queue.
    """

    def __init__(
        self,
        transport: Transport,
        circuit_breaker: CircuitBreaker,
        retry_policy: RetryPolicy,
        state_manager: RequestStateManager,
        queue: RequestQueue,
        channel: NotificationChannel,
        request_timeout: float = 30.0,
        on_settled: Optional[Callable[[], Any]] = None,
    ):
        self.transport = transport
        self.circuit_breaker = circuit_breaker
        self.retry_policy = retry_policy
        self.state_manager = state_manager
        self.queue = queue
        self.channel = channel
        self.request_timeout = request_timeout
        self.on_settled = on_settled

        self._executions: Set[asyncio.Task] = set()
        self._retry_timers: Dict[str, asyncio.Task] = {}

    @property
    def in_flight_count(self) -> int:
        return len(self._executions)

    @property
    def pending_retry_count(self) -> int:
        return len(self._retry_timers)

    def execute_request(self, request: Request) -> asyncio.Task:
        """
        Start an attempt and return the task running it.

        The request is marked in flight and occupies its slot before this
        returns, so callers can dispatch in a loop without awaiting.
        """
        loop = asyncio.get_running_loop()

        request.status = RequestStatus.IN_FLIGHT
        request.attempts += 1
        self.queue.mark_active(request.id, request)

        logger.info(
            "request_started",
            request_id=request.id,
            method=request.method,
            endpoint=request.endpoint,
            attempt=request.attempts,
            max_attempts=self.retry_policy.max_attempts,
        )
        self.channel.emit(
            EventType.REQUEST_STARTED,
            request_id=request.id,
            request=request,
            attempt=request.attempts,
        )

        task = loop.create_task(self._execute(request))
        self._executions.add(task)
        task.add_done_callback(self._executions.discard)
        return task

    async def _execute(self, request: Request) -> None:
        with structlog.contextvars.bound_contextvars(request_id=request.id):
            try:
                response = await self.transport.execute(request, timeout=self.request_timeout)
            except Exception as e:
                self.handle_failure(request, e)
            else:
                self.handle_success(request, response)

    def handle_success(self, request: Request, response: Any) -> None:
        request.status = RequestStatus.SUCCESS
        self.queue.mark_complete(request.id)
        self.state_manager.store_in_history(request, response=response)

        logger.info(
            "request_succeeded",
            request_id=request.id,
            method=request.method,
            endpoint=request.endpoint,
            attempts=request.attempts,
        )

        self._record_outcome(self.circuit_breaker.record_success)
        self.channel.emit(
            EventType.REQUEST_SUCCEEDED,
            request_id=request.id,
            request=request,
            response=response,
        )
        self._settled()

    def handle_failure(self, request: Request, error: BaseException) -> None:
        request.last_error = error

        logger.warning(
            "request_attempt_failed",
            request_id=request.id,
            method=request.method,
            endpoint=request.endpoint,
            attempt=request.attempts,
            error=str(error),
            error_type=type(error).__name__,
        )

        retryable = getattr(error, "retryable", True)
        if retryable and self.retry_policy.should_retry(request.attempts):
            self.schedule_retry(request, error)
        else:
            self.handle_final_failure(request, error)

    def schedule_retry(self, request: Request, error: BaseException) -> None:
        request.status = RequestStatus.RETRYING
        delay_ms = self.retry_policy.calculate_delay(request.attempts)

        logger.info(
            "request_retry_scheduled",
            request_id=request.id,
            delay_ms=delay_ms,
            next_attempt=request.attempts + 1,
        )
        self.channel.emit(
            EventType.REQUEST_RETRY_SCHEDULED,
            request_id=request.id,
            request=request,
            error=error,
            next_attempt=request.attempts + 1,
            delay_ms=delay_ms,
        )

        timer = asyncio.get_running_loop().create_task(self._retry_after(request, delay_ms))
        self._retry_timers[request.id] = timer

    async def _retry_after(self, request: Request, delay_ms: int) -> None:
        try:
            await asyncio.sleep(delay_ms / 1000)
        finally:
            self._retry_timers.pop(request.id, None)

        self.queue.enqueue_priority(request)
        self.queue.mark_complete(request.id)
        self._settled()

    def handle_final_failure(self, request: Request, error: BaseException) -> None:
        request.status = RequestStatus.FAILED
        self.queue.mark_complete(request.id)
        self.state_manager.store_in_history(request, error=error)

        logger.error(
            "request_failed",
            request_id=request.id,
            method=request.method,
            endpoint=request.endpoint,
            attempts=request.attempts,
            error=str(error),
        )
        self.channel.emit(
            EventType.REQUEST_FAILED,
            request_id=request.id,
            request=request,
            error=error,
            attempts=request.attempts,
        )

        opened = self._record_outcome(lambda: self.circuit_breaker.record_failure(request.id))
        if opened:
            logger.warning(
                "circuit_opened_after_failure",
                request_id=request.id,
                failures=self.circuit_breaker.metrics.consecutive_failures,
                threshold=self.circuit_breaker.config.threshold,
            )
        self._settled()

    def _record_outcome(self, record: Callable[[], Any]) -> Any:
        try:
            return record()
        except InvalidStateTransition as e:
            logger.error("circuit_transition_rejected", error=str(e))
            return False

    def _settled(self) -> None:
        if self.on_settled is not None:
            self.on_settled()

    async def wait_for_idle(self) -> None:
        """Wait until no attempt is running and no retry timer is pending."""
        while self._executions or self._retry_timers:
            pending = list(self._executions) + list(self._retry_timers.values())
            await asyncio.gather(*pending, return_exceptions=True)

    def cancel_retries(self) -> int:
        """Cancel every pending retry timer."""
        timers = list(self._retry_timers.values())
        self._retry_timers.clear()
        for timer in timers:
            timer.cancel()
        return len(timers)

    def destroy(self) -> None:
        cancelled = self.cancel_retries()
        self.on_settled = None
        if cancelled:
            logger.info("retry_timers_cancelled", count=cancelled)
