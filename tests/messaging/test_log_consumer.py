"""
Tests for the durable log consumer.

============================================================
COVERAGE
============================================================
1. Commit on PERSISTED / IGNORED
2. Withhold + rewind on FAILED, redelivery on next fetch
3. Per-partition ordering and isolation
4. Undecodable envelopes
5. Duplicate rows after a lost commit
6. Worker pool lifecycle

============================================================
"""

import asyncio
import json
import warnings
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from confluent_kafka import KafkaError, KafkaException

from core.config import KafkaConfig
from data_ingestion.dispatcher import MessageDispatcher
from data_ingestion.types import DispatchOutcome, FailureReason, RawEnvelope
from messaging import log_consumer
from messaging.log_consumer import ConsumerWorker, MarketDataLogConsumer, WorkerState
from monitoring.metrics import LOG_COMMIT_FAILED, LOG_COMMITTED, LOG_WITHHELD
from storage.market_data_writer import MarketDataWriter
from storage.repositories.market_data import MarketDataRepository


TOPIC = "market-data"


# ============================================================
# FAKE KAFKA
# ============================================================

class FakeMessage:
    def __init__(self, topic, partition, offset, value, error=None):
        self._topic = topic
        self._partition = partition
        self._offset = offset
        self._value = value
        self._error = error

    def error(self):
        return self._error

    def value(self):
        return self._value

    def topic(self):
        return self._topic

    def partition(self):
        return self._partition

    def offset(self):
        return self._offset


class FakeLog:
    """Partitioned topic plus the group's committed offsets."""

    def __init__(self):
        self.partitions = {}
        self.committed = {}

    def append(self, partition, value):
        self.partitions.setdefault(partition, []).append(value)


class FakeConsumer:
    """Consumer that reads from a FakeLog starting at committed offsets."""

    def __init__(self, log, config=None):
        self.log = log
        self.config = dict(config or {})
        self.positions = {p: log.committed.get(p, 0) for p in log.partitions}
        self.subscribed = []
        self.closed = False
        self.commit_failures = 0
        self.extra_messages = []

    def subscribe(self, topics):
        self.subscribed = list(topics)

    def consume(self, num_messages=1, timeout=-1):
        batch = list(self.extra_messages)
        self.extra_messages = []
        for partition in sorted(self.log.partitions):
            values = self.log.partitions[partition]
            start = self.positions.get(partition, 0)
            for offset in range(start, len(values)):
                if len(batch) >= num_messages:
                    break
                batch.append(FakeMessage(TOPIC, partition, offset, values[offset]))
                self.positions[partition] = offset + 1
        return batch

    def commit(self, message=None, asynchronous=True):
        assert asynchronous is False
        if self.commit_failures:
            self.commit_failures -= 1
            raise KafkaException("Broker: Coordinator not available")
        self.log.committed[message.partition()] = message.offset() + 1

    def seek(self, partition):
        self.positions[partition.partition] = partition.offset

    def close(self):
        self.closed = True


def _envelope_bytes(payload):
    return RawEnvelope.create(payload, source="coinbase", received_at_millis=1).to_json().encode()


def _ticker(symbol="BTC-USD", price="50000.00"):
    return json.dumps({"type": "ticker", "product_id": symbol, "price": price})


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def kafka_config():
    return KafkaConfig(
        max_poll_records=500,
        poll_timeout_seconds=0.01,
        idle_sleep_seconds=0.01,
        redelivery_backoff_seconds=0.01,
    )


@pytest.fixture
def log():
    return FakeLog()


@pytest.fixture
def mock_dispatcher():
    dispatcher = MagicMock()
    dispatcher.dispatch.return_value = DispatchOutcome.persisted(1)
    return dispatcher


def _worker(consumer, dispatcher, kafka_config, metrics):
    return ConsumerWorker(0, consumer, dispatcher, config=kafka_config, metrics=metrics)


# ============================================================
# ACKNOWLEDGMENT
# ============================================================

class TestConsumerWorkerAcknowledgment:

    def test_persisted_and_ignored_are_committed(self, log, mock_dispatcher, kafka_config, metrics):
        log.append(0, _envelope_bytes(_ticker()))
        log.append(0, _envelope_bytes('{"type":"heartbeat"}'))
        mock_dispatcher.dispatch.side_effect = [
            DispatchOutcome.persisted(1),
            DispatchOutcome.ignored(),
        ]
        consumer = FakeConsumer(log)
        worker = _worker(consumer, mock_dispatcher, kafka_config, metrics)

        assert worker.poll_once() == 2

        assert consumer.subscribed == [TOPIC]
        assert log.committed[0] == 2
        assert metrics.get(LOG_COMMITTED) == 2
        assert worker.state == WorkerState.IDLE

    def test_failed_message_is_withheld_and_redelivered(self, log, mock_dispatcher, kafka_config, metrics):
        for price in ("1", "2", "3"):
            log.append(0, _envelope_bytes(_ticker(price=price)))
        mock_dispatcher.dispatch.side_effect = [
            DispatchOutcome.persisted(1),
            DispatchOutcome.failed(FailureReason.STORE_ERROR),
            DispatchOutcome.persisted(2),
            DispatchOutcome.persisted(3),
        ]
        consumer = FakeConsumer(log)
        worker = _worker(consumer, mock_dispatcher, kafka_config, metrics)

        # First batch: offset 0 committed, offset 1 withheld, offset 2 skipped
        assert worker.poll_once() == 2
        assert log.committed[0] == 1
        assert worker.last_batch_withheld
        assert metrics.get(LOG_WITHHELD) == 1

        # Second batch resumes at the withheld offset
        assert worker.poll_once() == 2
        assert log.committed[0] == 3
        assert not worker.last_batch_withheld

        prices = [json.loads(c.args[0])["price"] for c in mock_dispatcher.dispatch.call_args_list]
        assert prices == ["1", "2", "2", "3"]

    def test_failure_does_not_block_other_partitions(self, log, mock_dispatcher, kafka_config, metrics):
        log.append(0, _envelope_bytes(_ticker(price="p0-a")))
        log.append(0, _envelope_bytes(_ticker(price="p0-b")))
        log.append(1, _envelope_bytes(_ticker(price="p1-a")))

        def dispatch(payload):
            if json.loads(payload)["price"] == "p0-a":
                return DispatchOutcome.failed(FailureReason.STORE_ERROR)
            return DispatchOutcome.persisted(1)

        mock_dispatcher.dispatch.side_effect = dispatch
        consumer = FakeConsumer(log)
        worker = _worker(consumer, mock_dispatcher, kafka_config, metrics)

        worker.poll_once()

        assert log.committed.get(0) is None
        assert log.committed[1] == 1
        assert consumer.positions[0] == 0

    def test_undecodable_envelope_is_withheld(self, log, mock_dispatcher, kafka_config, metrics):
        log.append(0, b"not an envelope")
        consumer = FakeConsumer(log)
        worker = _worker(consumer, mock_dispatcher, kafka_config, metrics)

        worker.poll_once()

        mock_dispatcher.dispatch.assert_not_called()
        assert log.committed.get(0) is None
        assert metrics.get("log.dispatch_failed") == 1

    def test_partition_eof_is_skipped(self, log, mock_dispatcher, kafka_config, metrics):
        consumer = FakeConsumer(log)
        consumer.extra_messages = [
            FakeMessage(TOPIC, 0, 0, None, error=KafkaError(KafkaError._PARTITION_EOF)),
        ]
        worker = _worker(consumer, mock_dispatcher, kafka_config, metrics)

        assert worker.poll_once() == 0
        mock_dispatcher.dispatch.assert_not_called()

    def test_commit_failure_is_counted(self, log, mock_dispatcher, kafka_config, metrics):
        log.append(0, _envelope_bytes(_ticker()))
        consumer = FakeConsumer(log)
        consumer.commit_failures = 1
        worker = _worker(consumer, mock_dispatcher, kafka_config, metrics)

        worker.poll_once()

        assert metrics.get(LOG_COMMIT_FAILED) == 1
        assert log.committed.get(0) is None

    def test_state_is_dispatching_during_dispatch(self, log, mock_dispatcher, kafka_config, metrics):
        log.append(0, _envelope_bytes(_ticker()))
        consumer = FakeConsumer(log)
        worker = _worker(consumer, mock_dispatcher, kafka_config, metrics)
        seen = []

        def dispatch(payload):
            seen.append(worker.state)
            return DispatchOutcome.persisted(1)

        mock_dispatcher.dispatch.side_effect = dispatch
        worker.poll_once()

        assert seen == [WorkerState.DISPATCHING]
        assert worker.state == WorkerState.IDLE


# ============================================================
# DUPLICATES UNDER REDELIVERY
# ============================================================

class TestRedeliveryDuplicates:

    def test_lost_commit_produces_duplicate_row(self, log, database, mock_clock, kafka_config, metrics):
        dispatcher = MessageDispatcher(MarketDataWriter(database, clock=mock_clock), clock=mock_clock)
        log.append(0, _envelope_bytes(_ticker()))

        # Row is written, but the commit is lost
        first = FakeConsumer(log)
        first.commit_failures = 1
        _worker(first, dispatcher, kafka_config, metrics).poll_once()
        first.close()

        # After a rebalance the group resumes from the committed offset
        second = FakeConsumer(log)
        _worker(second, dispatcher, kafka_config, metrics).poll_once()

        with database.session_scope() as session:
            assert MarketDataRepository(session).count() == 2
        assert log.committed[0] == 1


# ============================================================
# WORKER POOL
# ============================================================

class TestMarketDataLogConsumer:

    @pytest.mark.asyncio
    async def test_pool_starts_and_stops(self, log, mock_dispatcher, kafka_config, metrics):
        log.append(0, _envelope_bytes(_ticker()))
        created = []

        def factory(config):
            consumer = FakeConsumer(log, config)
            created.append(consumer)
            return consumer

        pool = MarketDataLogConsumer(
            mock_dispatcher,
            kafka_config,
            metrics=metrics,
            consumer_factory=factory,
        )
        await pool.start()

        assert len(pool.workers) == kafka_config.concurrency
        assert {c.config["group.id"] for c in created} == {"market-data-consumer"}
        assert all(c.config["enable.auto.commit"] is False for c in created)

        for _ in range(100):
            if log.committed.get(0) == 1:
                break
            await asyncio.sleep(0.01)

        assert await pool.stop(timeout=5)
        assert all(c.closed for c in created)
        assert not pool.is_running
        assert log.committed[0] == 1


# ============================================================
# MODULE SOURCE
# ============================================================

class TestLogConsumerModule:

    def test_source_compiles_without_warnings(self):
        path = Path(log_consumer.__file__)

        with warnings.catch_warnings():
            warnings.simplefilter("error")
            compile(path.read_text(encoding="utf-8"), str(path), "exec")
