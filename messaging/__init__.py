"""
Messaging Package.

The two delivery paths between the feed and the dispatcher.

Modules:
- event_bus: in-process, at-most-once fan-out
- log_producer: publish envelopes to the durable log
- log_consumer: consumer-group workers with commit/withhold
"""

from messaging.event_bus import DispatcherSubscriber, EventBus, EventBusClosedError
from messaging.log_consumer import ConsumerWorker, MarketDataLogConsumer, WorkerState
from messaging.log_producer import MarketDataLogProducer


__all__ = [
    "EventBus",
    "EventBusClosedError",
    "DispatcherSubscriber",
    "MarketDataLogProducer",
    "MarketDataLogConsumer",
    "ConsumerWorker",
    "WorkerState",
]
