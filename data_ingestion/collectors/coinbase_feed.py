"""
Data Ingestion - Coinbase Feed Connection.

============================================================
PURPOSE
============================================================
Owned handle over the exchange websocket feed.

FEATURES:
- Explicit connection state
- connect() idempotent while connecting or connected
- disconnect() safe when already disconnected
- Automatic reconnection with exponential backoff
- Resubscription after reconnect
- Every text frame wrapped in a RawEnvelope and handed to
  the registered sinks, in receive order

============================================================
USAGE
============================================================
```python
feed = CoinbaseFeed(FeedConfig())
feed.add_sink(event_bus.publish)
await feed.connect()
await feed.subscribe(["BTC-USD"])
```

============================================================
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import aiohttp

from core.clock import ClockProtocol, SystemClock
from core.config import FeedConfig
from data_ingestion.types import FetchError, RawEnvelope
from monitoring.metrics import FRAMES_RECEIVED, PipelineMetrics


logger = logging.getLogger("collector.coinbase_feed")


FeedSink = Callable[[RawEnvelope], Any]


# ============================================================
# CONNECTION STATE
# ============================================================

class ConnectionState(Enum):
    """Feed connection states."""

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    RECONNECTING = "RECONNECTING"
    CLOSING = "CLOSING"


# ============================================================
# FEED
# ============================================================

class CoinbaseFeed:
    """
    Websocket connection to the Coinbase exchange feed.

    Passed explicitly to whoever needs it; there is no global
    connection.
    """

    def __init__(
        self,
        config: Optional[FeedConfig] = None,
        clock: Optional[ClockProtocol] = None,
        metrics: Optional[PipelineMetrics] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self._config = config or FeedConfig()
        self._clock = clock or SystemClock()
        self._metrics = metrics or PipelineMetrics()

        # Connection state
        self._state = ConnectionState.DISCONNECTED
        self._session = session
        self._owns_session = session is None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None

        # Reconnection
        self._reconnect_count = 0
        self._reconnect_task: Optional[asyncio.Task] = None

        # Message handling
        self._receive_task: Optional[asyncio.Task] = None
        self._sinks: List[FeedSink] = []

        # Subscriptions (insertion ordered)
        self._symbols: Dict[str, None] = {}

    # --------------------------------------------------------
    # PROPERTIES
    # --------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED and self._ws is not None

    @property
    def url(self) -> str:
        return self._config.ws_url

    @property
    def source(self) -> str:
        return self._config.exchange_name

    @property
    def subscribed_symbols(self) -> List[str]:
        return list(self._symbols)

    def add_sink(self, sink: FeedSink) -> None:
        """Register a receiver for every incoming frame."""
        self._sinks.append(sink)

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    async def connect(self) -> None:
        """
        Open the websocket connection.

        Retries with backoff when reconnect is enabled.

        Raises:
            FetchError: the connection could not be established
        """
        if self._state in (
            ConnectionState.CONNECTED,
            ConnectionState.CONNECTING,
            ConnectionState.RECONNECTING,
        ):
            return

        attempts = 0
        while True:
            self._state = ConnectionState.CONNECTING
            try:
                await self._open()
                return
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                self._state = ConnectionState.DISCONNECTED
                logger.error(f"Feed connection failed: {e}")

                attempts += 1
                if not self._config.reconnect or attempts > self._config.max_reconnect_attempts:
                    raise FetchError(
                        f"Feed connection failed: {e}",
                        source=self.source,
                        recoverable=self._config.reconnect,
                        details={"url": self.url, "attempts": attempts},
                    ) from e

                self._state = ConnectionState.RECONNECTING
                await asyncio.sleep(self._backoff_seconds(attempts))

    async def _open(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

        self._ws = await self._session.ws_connect(
            self.url,
            heartbeat=self._config.heartbeat_interval_seconds,
        )

        self._state = ConnectionState.CONNECTED
        self._reconnect_count = 0
        logger.info(f"Connected to {self.source} feed: {self.url}")

        self._receive_task = asyncio.create_task(self._receive_loop())

        if self._symbols:
            await self._send_subscribe(list(self._symbols))

    async def disconnect(self) -> None:
        """Close the connection. Safe to call when already disconnected."""
        owned_session_open = self._owns_session and self._session is not None
        if self._state == ConnectionState.DISCONNECTED and self._ws is None and not owned_session_open:
            return

        self._state = ConnectionState.CLOSING

        for task in (self._reconnect_task, self._receive_task):
            if task is not None and task is not asyncio.current_task():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._reconnect_task = None
        self._receive_task = None

        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        self._ws = None

        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

        self._state = ConnectionState.DISCONNECTED
        logger.info(f"Disconnected from {self.source} feed")

    def _backoff_seconds(self, attempt: int) -> float:
        delay_ms = min(
            self._config.reconnect_interval_ms * (2 ** (attempt - 1)),
            self._config.max_reconnect_interval_ms,
        )
        return delay_ms / 1000

    async def _reconnect(self) -> None:
        """Reopen a dropped connection with backoff."""
        while self._state == ConnectionState.RECONNECTING:
            if self._reconnect_count >= self._config.max_reconnect_attempts:
                logger.error("Max reconnection attempts reached")
                self._state = ConnectionState.DISCONNECTED
                return

            self._reconnect_count += 1
            delay = self._backoff_seconds(self._reconnect_count)
            logger.info(f"Reconnecting in {delay:.1f}s (attempt {self._reconnect_count})")
            await asyncio.sleep(delay)

            try:
                await self._open()
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                logger.error(f"Reconnect attempt {self._reconnect_count} failed: {e}")
                self._state = ConnectionState.RECONNECTING

    # --------------------------------------------------------
    # MESSAGE HANDLING
    # --------------------------------------------------------

    async def _receive_loop(self) -> None:
        ws = self._ws
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._deliver(msg.data)

                elif msg.type == aiohttp.WSMsgType.BINARY:
                    self._deliver(msg.data.decode("utf-8", errors="replace"))

                elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED):
                    logger.warning(f"Feed closed by server: {msg.data}")
                    break

                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error(f"Feed error: {ws.exception()}")
                    break

        except asyncio.CancelledError:
            raise

        except Exception as e:
            logger.error(f"Error in feed receive loop: {e}", exc_info=True)

        if self._state == ConnectionState.CONNECTED:
            self._ws = None
            if self._config.reconnect:
                self._state = ConnectionState.RECONNECTING
                self._reconnect_task = asyncio.create_task(self._reconnect())
            else:
                self._state = ConnectionState.DISCONNECTED

    def _deliver(self, payload: str) -> None:
        envelope = RawEnvelope.create(
            payload,
            source=self.source,
            received_at_millis=self._clock.millis(),
        )
        self._metrics.increment(FRAMES_RECEIVED)

        for sink in self._sinks:
            try:
                sink(envelope)
            except Exception as e:
                logger.error(f"Feed sink {sink!r} failed: {e}")

    # --------------------------------------------------------
    # SUBSCRIPTIONS
    # --------------------------------------------------------

    def subscribe_message(self, symbols: List[str]) -> Dict[str, Any]:
        return {
            "type": "subscribe",
            "product_ids": list(symbols),
            "channels": list(self._config.channels),
        }

    async def subscribe(self, symbols: List[str]) -> None:
        """
        Subscribe to ticker updates for the given products.

        Remembered and re-sent after every reconnect.
        """
        for symbol in symbols:
            self._symbols[symbol] = None

        if self.is_connected:
            await self._send_subscribe(list(symbols))

    async def unsubscribe(self, symbols: List[str]) -> None:
        for symbol in symbols:
            self._symbols.pop(symbol, None)

        if self.is_connected:
            await self._ws.send_json({
                "type": "unsubscribe",
                "product_ids": list(symbols),
                "channels": list(self._config.channels),
            })

    async def _send_subscribe(self, symbols: List[str]) -> None:
        await self._ws.send_json(self.subscribe_message(symbols))
        logger.info(f"Subscribed to {self.source} market data for: {', '.join(symbols)}")
