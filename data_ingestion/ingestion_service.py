"""
Data Ingestion - Market Data Streaming Service.

============================================================
RESPONSIBILITY
============================================================
Wires the feed to the delivery paths and owns their lifecycle.

- Connects the feed and subscribes the configured symbols
- Hands every received frame to each enabled path:
  (a) event bus -> dispatcher -> writer
  (b) log producer -> topic -> log consumer -> dispatcher -> writer
- Shuts everything down in order, bounded by a drain timeout

============================================================
DESIGN PRINCIPLES
============================================================
- No business logic - coordination only
- Paths are independent; no cross-path deduplication
- A failing path never stops the other one
- Start failures are reported, not raised

============================================================
SHUTDOWN ORDER
============================================================
1. Disconnect the feed (no new frames)
2. Drain the event bus
3. Stop consumer workers (each finishes its in-flight message)
4. Flush the log producer

============================================================
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from core.config import PipelineConfig
from data_ingestion.collectors.coinbase_feed import CoinbaseFeed
from data_ingestion.dispatcher import MessageDispatcher
from data_ingestion.types import FetchError, RawEnvelope
from messaging.event_bus import DispatcherSubscriber, EventBus
from messaging.log_consumer import MarketDataLogConsumer
from messaging.log_producer import MarketDataLogProducer
from monitoring.metrics import PipelineMetrics


class MarketDataStreamingService:
    """
    Streaming orchestrator for one exchange feed.

    ============================================================
    USAGE
    ============================================================
    ```python
    service = MarketDataStreamingService(
        feed, dispatcher, config,
        event_bus=EventBus(metrics),
    )
    await service.start_streaming()
    ...
    await service.stop_streaming()
    ```

    ============================================================
    """

    def __init__(
        self,
        feed: CoinbaseFeed,
        dispatcher: MessageDispatcher,
        config: Optional[PipelineConfig] = None,
        metrics: Optional[PipelineMetrics] = None,
        event_bus: Optional[EventBus] = None,
        log_producer: Optional[MarketDataLogProducer] = None,
        log_consumer: Optional[MarketDataLogConsumer] = None,
    ) -> None:
        self._feed = feed
        self._dispatcher = dispatcher
        self._config = config or PipelineConfig()
        self._metrics = metrics or PipelineMetrics()
        self._event_bus = event_bus
        self._log_producer = log_producer
        self._log_consumer = log_consumer
        self._logger = logging.getLogger("ingestion_service")

        self._streaming = False

        if self._event_bus is not None:
            self._event_bus.subscribe(DispatcherSubscriber(dispatcher, self._metrics))
        self._feed.add_sink(self._on_frame)

    @property
    def is_streaming(self) -> bool:
        return self._streaming

    @property
    def symbols(self) -> List[str]:
        return list(self._config.feed.symbols)

    # =========================================================
    # FRAME ROUTING
    # =========================================================

    def _on_frame(self, envelope: RawEnvelope) -> None:
        if self._event_bus is not None and not self._event_bus.is_closed:
            try:
                self._event_bus.publish(envelope)
            except Exception as e:
                self._logger.error(f"Event bus publish failed: {e}")

        if self._log_producer is not None:
            self._log_producer.publish(envelope)

    # =========================================================
    # LIFECYCLE
    # =========================================================

    async def start_streaming(self) -> bool:
        """
        Start consumers, connect the feed and subscribe.

        Returns:
            True if streaming started
        """
        if self._streaming:
            return True

        try:
            if self._log_consumer is not None:
                await self._log_consumer.start()

            await self._feed.connect()
            await self._feed.subscribe(self.symbols)
        except FetchError as e:
            self._logger.error(f"Failed to start market data streaming: {e}")
            return False

        self._streaming = True
        self._logger.info(
            f"Started market data streaming for symbols: {', '.join(self.symbols)}"
        )
        return True

    async def stop_streaming(self, timeout: Optional[float] = None) -> bool:
        """
        Stop streaming and drain in-flight work.

        Args:
            timeout: Overall drain budget (defaults to configured)

        Returns:
            True if every stage drained within the budget
        """
        if timeout is None:
            timeout = self._config.shutdown_timeout_seconds
        deadline = time.monotonic() + timeout

        def remaining() -> float:
            return max(0.0, deadline - time.monotonic())

        await self._feed.disconnect()
        drained = True

        if self._event_bus is not None:
            drained = await self._event_bus.close(remaining()) and drained

        if self._log_consumer is not None:
            drained = await self._log_consumer.stop(remaining()) and drained

        if self._log_producer is not None:
            pending = await asyncio.to_thread(self._log_producer.flush, remaining())
            drained = pending == 0 and drained

        self._streaming = False
        if drained:
            self._logger.info("Stopped market data streaming")
        else:
            self._logger.warning("Stopped market data streaming with undrained work")
        return drained

    # =========================================================
    # HEALTH
    # =========================================================

    def get_health_status(self) -> Dict[str, Any]:
        status: Dict[str, Any] = {
            "streaming": self._streaming,
            "feed_state": self._feed.state.value,
            "symbols": self.symbols,
            "event_bus_enabled": self._event_bus is not None,
            "durable_log_enabled": self._log_producer is not None,
            "metrics": self._metrics.snapshot().counters,
        }
        if self._event_bus is not None:
            status["event_bus_pending"] = self._event_bus.pending_count
        if self._log_consumer is not None:
            status["consumer_workers"] = {
                worker.index: worker.state.value for worker in self._log_consumer.workers
            }
        return status
