"""
Messaging - Durable Log Producer.

============================================================
RESPONSIBILITY
============================================================
Publishes raw envelopes to the market data topic.

- Key: "<source>-<now_millis % 10>"
- Value: JSON envelope {"message", "source", "timestamp"}
- Asynchronous: publish() returns before the broker acknowledges
- Delivery results are reported through a callback

============================================================
FAILURE HANDLING
============================================================
publish() never raises. Failed deliveries (callback error) and
synchronous produce errors (full local queue, bad config) are
logged and counted on `log_publish_failed`. The envelope is not
retried.

============================================================
"""

import logging
from typing import Any, Callable, Mapping, Optional, Protocol

from confluent_kafka import Producer

from core.clock import ClockProtocol, SystemClock
from core.config import KafkaConfig
from data_ingestion.types import RawEnvelope
from monitoring.metrics import LOG_PUBLISH_FAILED, LOG_PUBLISHED, PipelineMetrics


logger = logging.getLogger("messaging.log_producer")

PARTITION_KEY_BUCKETS = 10


class KafkaProducerLike(Protocol):
    """Subset of confluent_kafka.Producer used by the publisher."""

    def produce(self, topic: str, value: Any = None, key: Any = None, **kwargs: Any) -> None: ...

    def poll(self, timeout: Optional[float] = None) -> int: ...

    def flush(self, timeout: Optional[float] = None) -> int: ...


KafkaProducerFactory = Callable[[Mapping[str, Any]], KafkaProducerLike]


def _default_producer_factory(config: Mapping[str, Any]) -> KafkaProducerLike:
    return Producer(dict(config))


class MarketDataLogProducer:
    """Fire-and-forget publisher for the durable log path."""

    def __init__(
        self,
        config: Optional[KafkaConfig] = None,
        clock: Optional[ClockProtocol] = None,
        metrics: Optional[PipelineMetrics] = None,
        producer_factory: Optional[KafkaProducerFactory] = None,
    ) -> None:
        self._config = config or KafkaConfig()
        self._clock = clock or SystemClock()
        self._metrics = metrics or PipelineMetrics()
        factory = producer_factory or _default_producer_factory
        self._producer = factory(self._config.producer_config())
        self._logger = logger

    @property
    def topic(self) -> str:
        return self._config.topic

    def partition_key(self, source: str) -> str:
        """Spread one source over a handful of keys by publish time."""
        return f"{source}-{self._clock.millis() % PARTITION_KEY_BUCKETS}"

    def publish(self, envelope: RawEnvelope) -> None:
        """Hand the envelope to the producer queue. Never raises."""
        key = self.partition_key(envelope.source)
        try:
            self._producer.produce(
                self._config.topic,
                value=envelope.to_json().encode("utf-8"),
                key=key.encode("utf-8"),
                on_delivery=self._on_delivery,
            )
            # Serve delivery callbacks of earlier messages
            self._producer.poll(0)
        except Exception as e:
            self._metrics.increment(LOG_PUBLISH_FAILED)
            self._logger.error(
                f"Failed to send message to topic {self._config.topic} (key={key}): {e}"
            )

    def _on_delivery(self, err: Any, msg: Any) -> None:
        if err is not None:
            self._metrics.increment(LOG_PUBLISH_FAILED)
            self._logger.error(
                f"Failed to deliver message to topic {self._config.topic}: {err}"
            )
            return

        self._metrics.increment(LOG_PUBLISHED)
        self._logger.debug(
            f"Message sent to topic {msg.topic()} partition {msg.partition()} "
            f"offset {msg.offset()}"
        )

    def flush(self, timeout: Optional[float] = None) -> int:
        """
        Wait for outstanding deliveries.

        Returns:
            Number of messages still undelivered
        """
        if timeout is None:
            timeout = self._config.flush_timeout_seconds
        remaining = self._producer.flush(timeout)
        if remaining:
            self._logger.warning(
                f"{remaining} messages still pending after {timeout}s flush"
            )
        return remaining

    def close(self) -> None:
        self.flush()
        self._logger.info("Log producer closed")
