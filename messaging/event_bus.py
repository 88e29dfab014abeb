"""
Messaging - In-Process Event Bus.

============================================================
RESPONSIBILITY
============================================================
Direct delivery path: hands every received frame to the
subscribers without blocking the feed receive loop.

- publish() schedules one worker per subscriber and returns
- each worker runs the handler on a thread (asyncio.to_thread)
- handler exceptions are logged and counted, never propagated
- drain() waits, bounded, for in-flight workers on shutdown

============================================================
DELIVERY GUARANTEE
============================================================
At-most-once. A frame whose dispatch fails is dropped; there is
no retry and no replay on this path.

============================================================
"""

import asyncio
import logging
from typing import Any, Callable, List, Optional, Set

from data_ingestion.dispatcher import MessageDispatcher
from data_ingestion.types import RawEnvelope
from monitoring.metrics import BUS_HANDLER_ERRORS, BUS_PUBLISHED, PipelineMetrics


logger = logging.getLogger("messaging.event_bus")


EnvelopeHandler = Callable[[RawEnvelope], Any]


class EventBusClosedError(RuntimeError):
    """Raised when publishing to a closed bus."""
    pass


class EventBus:
    """
    Fan-out of raw envelopes to subscribers.

    publish() must be called from the event loop thread.
    """

    def __init__(self, metrics: Optional[PipelineMetrics] = None) -> None:
        self._handlers: List[EnvelopeHandler] = []
        self._pending: Set[asyncio.Task] = set()
        self._metrics = metrics or PipelineMetrics()
        self._closed = False

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def is_closed(self) -> bool:
        return self._closed

    def subscribe(self, handler: EnvelopeHandler) -> None:
        self._handlers.append(handler)
        logger.debug(f"Subscribed handler {handler!r}")

    def publish(self, envelope: RawEnvelope) -> None:
        """
        Schedule delivery to every subscriber and return immediately.

        Raises:
            EventBusClosedError: the bus has been closed
        """
        if self._closed:
            raise EventBusClosedError("Event bus is closed")

        loop = asyncio.get_running_loop()
        for handler in self._handlers:
            task = loop.create_task(asyncio.to_thread(self._invoke, handler, envelope))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        self._metrics.increment(BUS_PUBLISHED)

    def _invoke(self, handler: EnvelopeHandler, envelope: RawEnvelope) -> None:
        try:
            handler(envelope)
        except Exception as e:
            self._metrics.increment(BUS_HANDLER_ERRORS)
            logger.error(
                f"Event handler {handler!r} failed for message from {envelope.source}: {e}",
                exc_info=True,
            )

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for in-flight deliveries.

        Returns:
            True when nothing is left in flight
        """
        if not self._pending:
            return True
        pending = list(self._pending)
        done, not_done = await asyncio.wait(pending, timeout=timeout)
        if not_done:
            logger.warning(
                f"Event bus drain timed out with {len(not_done)} deliveries in flight"
            )
        return not not_done

    async def close(self, timeout: Optional[float] = None) -> bool:
        """Stop accepting frames and drain what is in flight."""
        self._closed = True
        return await self.drain(timeout)


class DispatcherSubscriber:
    """
    Event bus handler that runs the dispatcher on each frame.

    FAILED outcomes are logged and dropped.
    """

    def __init__(
        self,
        dispatcher: MessageDispatcher,
        metrics: Optional[PipelineMetrics] = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._metrics = metrics or PipelineMetrics()

    def __call__(self, envelope: RawEnvelope) -> None:
        outcome = self._dispatcher.dispatch(envelope.payload)
        self._metrics.record_outcome(outcome, path="bus")
        if outcome.is_failed:
            logger.warning(
                f"Dropping message from {envelope.source} after {outcome} "
                f"(received_at={envelope.received_at_millis})"
            )

    def __repr__(self) -> str:
        return f"DispatcherSubscriber(exchange={self._dispatcher.exchange!r})"
