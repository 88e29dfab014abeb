"""
Data Ingestion - Message Dispatcher.

============================================================
RESPONSIBILITY
============================================================
Classifies one raw feed payload and routes it.

- ticker        -> normalize and persist
- heartbeat     -> ignored (debug log)
- subscriptions -> ignored (info log)
- error         -> ignored (error log)
- anything else -> ignored (debug log)

============================================================
CONTRACT
============================================================
dispatch() never raises. Every invocation returns exactly one
DispatchOutcome:

- PERSISTED             ticker row committed
- IGNORED               nothing to persist
- FAILED(parse_error)   payload is not a JSON object
- FAILED(store_error)   the writer raised StorageError
- FAILED(internal_error) anything else went wrong

Callers decide what a FAILED outcome means for them: the event
bus path drops it, the durable log path withholds the commit.

============================================================
"""

import json
import logging
from typing import Optional, Protocol

from core.clock import ClockProtocol, SystemClock
from data_ingestion.normalizers.ticker_normalizer import (
    TickerNormalizer,
    compact_json,
    field_text,
)
from data_ingestion.types import (
    DispatchOutcome,
    FailureReason,
    MessageType,
    StorageError,
    TickerSnapshot,
)


logger = logging.getLogger("data_ingestion.dispatcher")


class SnapshotWriter(Protocol):
    """Anything that can persist a TickerSnapshot and return its id."""

    def write(self, snapshot: TickerSnapshot) -> int:
        ...


class MessageDispatcher:
    """
    Stateless classifier and router for feed payloads.

    Safe to call from many threads at once; all shared state is
    in the writer, which opens its own session per call.
    """

    def __init__(
        self,
        writer: SnapshotWriter,
        exchange: str = "coinbase",
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._writer = writer
        self._clock = clock or SystemClock()
        self._normalizer = TickerNormalizer(exchange)

    @property
    def exchange(self) -> str:
        return self._normalizer.exchange

    def dispatch(self, payload: str) -> DispatchOutcome:
        """Classify and route a single payload."""
        try:
            return self._dispatch(payload)
        except Exception as e:
            logger.error(f"Unexpected error dispatching message: {e}", exc_info=True)
            return DispatchOutcome.failed(FailureReason.INTERNAL_ERROR)

    # =========================================================
    # ROUTING
    # =========================================================

    def _dispatch(self, payload: str) -> DispatchOutcome:
        try:
            message = json.loads(payload)
        except (TypeError, ValueError, RecursionError) as e:
            logger.error(f"Error processing market data message: {e}")
            return DispatchOutcome.failed(FailureReason.PARSE_ERROR)

        if not isinstance(message, dict):
            logger.error(f"Market data message is not a JSON object: {payload[:200]!r}")
            return DispatchOutcome.failed(FailureReason.PARSE_ERROR)

        message_type = MessageType.from_tag(field_text(message, "type"))

        if message_type == MessageType.TICKER:
            return self._handle_ticker(message)

        if message_type == MessageType.HEARTBEAT:
            logger.debug("Received heartbeat message")
        elif message_type == MessageType.SUBSCRIPTIONS:
            logger.info(f"Subscription confirmed: {compact_json(message)}")
        elif message_type == MessageType.ERROR:
            logger.error(f"Received error message: {compact_json(message)}")
        else:
            logger.debug(f"Unhandled message type: {field_text(message, 'type')!r}")

        return DispatchOutcome.ignored()

    def _handle_ticker(self, message: dict) -> DispatchOutcome:
        snapshot = self._normalizer.normalize(message, observed_at=self._clock.now())

        try:
            record_id = self._writer.write(snapshot)
        except StorageError as e:
            logger.error(f"Error storing ticker for {snapshot.symbol}: {e}")
            return DispatchOutcome.failed(FailureReason.STORE_ERROR)

        logger.debug(
            f"Stored market data: {snapshot.symbol} - {snapshot.price} (row {record_id})"
        )
        return DispatchOutcome.persisted(record_id)
