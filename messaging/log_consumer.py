"""
Messaging - Durable Log Consumer.

============================================================
RESPONSIBILITY
============================================================
Replays the market data topic into the dispatcher.

- A fixed pool of workers, one Kafka consumer each, one group
- The broker assigns each worker a disjoint set of partitions
- Messages of one partition are handled strictly in order

============================================================
ACKNOWLEDGMENT CONTRACT
============================================================
Per message, after dispatch:

- PERSISTED / IGNORED -> synchronous commit of that offset
- FAILED              -> no commit; the partition is rewound
                         to the failed offset and the rest of
                         its batch is skipped, so the next
                         fetch redelivers it

There is no retry bound and no dead-letter topic: a message that
always fails blocks its partition. Redelivery after a failure
that actually committed the row produces a duplicate row.

============================================================
WORKER STATES
============================================================
IDLE -> FETCHING -> DISPATCHING -> COMMITTING  -> IDLE
                               +-> WITHHOLDING -> IDLE

============================================================
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, List, Mapping, Optional, Protocol, Sequence, Set, Tuple

from confluent_kafka import Consumer, KafkaError, KafkaException, TopicPartition

from core.config import KafkaConfig
from data_ingestion.dispatcher import MessageDispatcher
from data_ingestion.types import DispatchOutcome, FailureReason, ParseError, RawEnvelope
from monitoring.metrics import (
    LOG_COMMIT_FAILED,
    LOG_COMMITTED,
    LOG_WITHHELD,
    PipelineMetrics,
)


logger = logging.getLogger("messaging.log_consumer")


class KafkaMessageLike(Protocol):
    """Subset of confluent_kafka.Message used by the workers."""

    def error(self) -> Any: ...

    def value(self) -> Any: ...

    def topic(self) -> str: ...

    def partition(self) -> int: ...

    def offset(self) -> int: ...


class KafkaConsumerLike(Protocol):
    """Subset of confluent_kafka.Consumer used by the workers."""

    def subscribe(self, topics: Sequence[str]) -> None: ...

    def consume(self, num_messages: int = 1, timeout: float = -1) -> List[KafkaMessageLike]: ...

    def commit(self, message: Optional[KafkaMessageLike] = None, asynchronous: bool = True) -> Any: ...

    def seek(self, partition: TopicPartition) -> None: ...

    def close(self) -> None: ...


KafkaConsumerFactory = Callable[[Mapping[str, Any]], KafkaConsumerLike]


def _default_consumer_factory(config: Mapping[str, Any]) -> KafkaConsumerLike:
    return Consumer(dict(config))


class WorkerState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    DISPATCHING = "dispatching"
    COMMITTING = "committing"
    WITHHOLDING = "withholding"


# =============================================================
# WORKER
# =============================================================

class ConsumerWorker:
    """
    One consumer of the group.

    poll_once() is blocking and runs on a worker thread; the
    asyncio side only schedules it (run_forever).
    """

    def __init__(
        self,
        index: int,
        consumer: KafkaConsumerLike,
        dispatcher: MessageDispatcher,
        config: Optional[KafkaConfig] = None,
        metrics: Optional[PipelineMetrics] = None,
    ) -> None:
        self._index = index
        self._consumer = consumer
        self._dispatcher = dispatcher
        self._config = config or KafkaConfig()
        self._metrics = metrics or PipelineMetrics()
        self._logger = logging.getLogger(f"messaging.log_consumer.worker-{index}")

        self._state = WorkerState.IDLE
        self._started = False
        self._closed = False
        self._stop_requested = False
        self._last_batch_withheld = False

    @property
    def index(self) -> int:
        return self._index

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def last_batch_withheld(self) -> bool:
        return self._last_batch_withheld

    def start(self) -> None:
        if self._started:
            return
        self._consumer.subscribe([self._config.topic])
        self._started = True
        self._logger.info(f"Subscribed to topic {self._config.topic}")

    def request_stop(self) -> None:
        """Finish the in-flight message, then stop taking new ones."""
        self._stop_requested = True

    # =========================================================
    # POLL LOOP
    # =========================================================

    def poll_once(self) -> int:
        """
        Fetch one batch and handle it.

        Returns:
            Number of messages dispatched
        """
        if not self._started:
            self.start()

        self._state = WorkerState.FETCHING
        messages = self._consumer.consume(
            num_messages=self._config.max_poll_records,
            timeout=self._config.poll_timeout_seconds,
        )
        self._last_batch_withheld = False

        withheld: Set[Tuple[str, int]] = set()
        dispatched = 0

        for message in messages or ():
            if self._stop_requested:
                break

            err = message.error()
            if err is not None:
                if err.code() != KafkaError._PARTITION_EOF:
                    self._logger.error(f"Consumer error: {err}")
                continue

            topic_partition = (message.topic(), message.partition())
            if topic_partition in withheld:
                # Redelivered after the rewind
                continue

            self._state = WorkerState.DISPATCHING
            outcome = self._dispatch(message)
            dispatched += 1

            if outcome.is_failed:
                self._state = WorkerState.WITHHOLDING
                withheld.add(topic_partition)
                self._withhold(message, outcome)
            else:
                self._state = WorkerState.COMMITTING
                self._commit(message)

        self._last_batch_withheld = bool(withheld)
        self._state = WorkerState.IDLE
        return dispatched

    def _dispatch(self, message: KafkaMessageLike) -> DispatchOutcome:
        raw = message.value()
        try:
            if isinstance(raw, (bytes, bytearray)):
                raw = raw.decode("utf-8")
            envelope = RawEnvelope.from_json(raw)
        except (UnicodeDecodeError, ParseError) as e:
            self._logger.error(
                f"Undecodable envelope at {message.topic()}[{message.partition()}]"
                f"@{message.offset()}: {e}"
            )
            outcome = DispatchOutcome.failed(FailureReason.PARSE_ERROR)
            self._metrics.record_outcome(outcome, path="log")
            return outcome

        outcome = self._dispatcher.dispatch(envelope.payload)
        self._metrics.record_outcome(outcome, path="log")
        return outcome

    def _commit(self, message: KafkaMessageLike) -> None:
        try:
            self._consumer.commit(message=message, asynchronous=False)
            self._metrics.increment(LOG_COMMITTED)
        except KafkaException as e:
            # Uncommitted offset is redelivered after a rebalance
            self._metrics.increment(LOG_COMMIT_FAILED)
            self._logger.error(
                f"Commit failed at {message.topic()}[{message.partition()}]"
                f"@{message.offset()}: {e}"
            )

    def _withhold(self, message: KafkaMessageLike, outcome: DispatchOutcome) -> None:
        self._metrics.increment(LOG_WITHHELD)
        self._logger.warning(
            f"Withholding commit at {message.topic()}[{message.partition()}]"
            f"@{message.offset()} after {outcome}; message will be redelivered"
        )
        try:
            self._consumer.seek(
                TopicPartition(message.topic(), message.partition(), message.offset())
            )
        except KafkaException as e:
            self._logger.error(f"Seek back to offset {message.offset()} failed: {e}")

    # =========================================================
    # LIFECYCLE
    # =========================================================

    async def run_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        stop = stop_event or asyncio.Event()
        self.start()
        try:
            while not stop.is_set() and not self._stop_requested:
                try:
                    dispatched = await asyncio.to_thread(self.poll_once)
                except KafkaException as e:
                    self._state = WorkerState.IDLE
                    self._logger.error(f"Fetch failed: {e}")
                    await asyncio.sleep(self._config.redelivery_backoff_seconds)
                    continue
                if self._last_batch_withheld:
                    await asyncio.sleep(self._config.redelivery_backoff_seconds)
                elif not dispatched and self._config.idle_sleep_seconds > 0:
                    await asyncio.sleep(self._config.idle_sleep_seconds)
        except asyncio.CancelledError:
            self._logger.debug("Consumer worker task cancelled")
            raise
        finally:
            self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._consumer.close()
        except KafkaException as e:
            self._logger.warning(f"Error closing consumer: {e}")
        self._logger.info("Consumer worker closed")


# =============================================================
# POOL
# =============================================================

class MarketDataLogConsumer:
    """Fixed pool of ConsumerWorkers sharing one consumer group."""

    def __init__(
        self,
        dispatcher: MessageDispatcher,
        config: Optional[KafkaConfig] = None,
        metrics: Optional[PipelineMetrics] = None,
        consumer_factory: Optional[KafkaConsumerFactory] = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._config = config or KafkaConfig()
        self._metrics = metrics or PipelineMetrics()
        self._consumer_factory = consumer_factory or _default_consumer_factory

        self._workers: List[ConsumerWorker] = []
        self._tasks: List[asyncio.Task] = []
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def workers(self) -> List[ConsumerWorker]:
        return list(self._workers)

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def start(self) -> None:
        if self.is_running:
            return

        self._stop_event = asyncio.Event()
        self._workers = [
            ConsumerWorker(
                index=i,
                consumer=self._consumer_factory(self._config.consumer_config(i)),
                dispatcher=self._dispatcher,
                config=self._config,
                metrics=self._metrics,
            )
            for i in range(self._config.concurrency)
        ]
        self._tasks = [
            asyncio.create_task(
                worker.run_forever(self._stop_event),
                name=f"log-consumer-{worker.index}",
            )
            for worker in self._workers
        ]
        logger.info(
            f"Started {len(self._workers)} consumer workers on topic "
            f"{self._config.topic} (group {self._config.group_id})"
        )

    async def stop(self, timeout: Optional[float] = None) -> bool:
        """
        Stop every worker after its in-flight message.

        Returns:
            True if all workers stopped within the timeout
        """
        if self._stop_event is not None:
            self._stop_event.set()
        for worker in self._workers:
            worker.request_stop()

        if not self._tasks:
            return True

        done, not_done = await asyncio.wait(self._tasks, timeout=timeout)
        for task in not_done:
            task.cancel()
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.error(f"Consumer worker {task.get_name()} failed: {task.exception()}")

        self._tasks = []
        if not_done:
            logger.warning(f"{len(not_done)} consumer workers did not stop in time")
        else:
            logger.info("All consumer workers stopped")
        return not not_done
