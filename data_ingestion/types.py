"""
Data Ingestion - Type Definitions.

============================================================
PURPOSE
============================================================
Shared types for the market data ingestion layer.

- RawEnvelope: a received frame plus provenance
- MessageType: closed set of feed message tags
- TickerSnapshot: parsed ticker handed to the writer
- DispatchOutcome: result of one dispatch invocation
- Error types

============================================================
DESIGN PRINCIPLES
============================================================
- Immutable data structures where possible
- Clear typing for all fields
- No business logic
- Serializable for the durable log

============================================================
"""

import json
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


# =============================================================
# ENUMS
# =============================================================

class MessageType(str, Enum):
    """Feed message tags the dispatcher knows how to handle."""
    TICKER = "ticker"
    HEARTBEAT = "heartbeat"
    SUBSCRIPTIONS = "subscriptions"
    ERROR = "error"
    UNKNOWN = "unknown"

    @classmethod
    def from_tag(cls, tag: str) -> "MessageType":
        """Decode a raw `type` value; anything unrecognized is UNKNOWN."""
        if tag == cls.UNKNOWN.value:
            return cls.UNKNOWN
        try:
            return cls(tag)
        except ValueError:
            return cls.UNKNOWN


class OutcomeStatus(str, Enum):
    """Status of a dispatch invocation."""
    PERSISTED = "persisted"
    IGNORED = "ignored"
    FAILED = "failed"


class FailureReason(str, Enum):
    """Why a dispatch invocation failed."""
    PARSE_ERROR = "parse_error"
    STORE_ERROR = "store_error"
    INTERNAL_ERROR = "internal_error"


# =============================================================
# ENVELOPE
# =============================================================

@dataclass(frozen=True)
class RawEnvelope:
    """
    A raw feed frame with its origin and receive time.

    On the durable log it is serialized as
    {"message": payload, "source": source, "timestamp": millis}.
    """
    payload: str
    source: str
    received_at_millis: int

    @classmethod
    def create(
        cls,
        payload: str,
        source: str,
        received_at_millis: Optional[int] = None,
    ) -> "RawEnvelope":
        """Wrap a frame, stamping wall-clock millis when none is given."""
        if received_at_millis is None:
            received_at_millis = time.time_ns() // 1_000_000
        return cls(payload=payload, source=source, received_at_millis=received_at_millis)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.payload,
            "source": self.source,
            "timestamp": self.received_at_millis,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_json(cls, data: str) -> "RawEnvelope":
        """
        Decode a serialized envelope.

        Raises:
            ParseError: not a JSON object, or `message` is not text
        """
        try:
            obj = json.loads(data)
        except (TypeError, ValueError, RecursionError) as e:
            raise ParseError(f"Envelope is not valid JSON: {e}", source="durable_log") from e

        if not isinstance(obj, dict):
            raise ParseError("Envelope root is not an object", source="durable_log")

        message = obj.get("message")
        if not isinstance(message, str):
            raise ParseError("Envelope has no text message", source="durable_log")

        timestamp = obj.get("timestamp", 0)
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            raise ParseError(
                f"Envelope timestamp is not numeric: {timestamp!r}",
                source="durable_log",
            )

        source = obj.get("source")
        return cls(
            payload=message,
            source=source if isinstance(source, str) else "",
            received_at_millis=int(timestamp),
        )


# =============================================================
# TICKER SNAPSHOT
# =============================================================

@dataclass
class TickerSnapshot:
    """Parsed ticker, ready for the persistence writer."""
    observed_at: datetime
    symbol: str
    exchange: str
    raw_payload: str

    price: Optional[Decimal] = None
    volume: Optional[Decimal] = None
    bid: Optional[Decimal] = None
    ask: Optional[Decimal] = None
    high_24h: Optional[Decimal] = None
    low_24h: Optional[Decimal] = None
    open_24h: Optional[Decimal] = None

    created_at: Optional[datetime] = None


# =============================================================
# DISPATCH OUTCOME
# =============================================================

@dataclass(frozen=True)
class DispatchOutcome:
    """
    Result of one dispatch invocation.

    The durable log driver commits on PERSISTED and IGNORED and
    withholds the commit on FAILED.
    """
    status: OutcomeStatus
    reason: Optional[FailureReason] = None
    record_id: Optional[int] = None

    @classmethod
    def persisted(cls, record_id: Optional[int] = None) -> "DispatchOutcome":
        return cls(OutcomeStatus.PERSISTED, record_id=record_id)

    @classmethod
    def ignored(cls) -> "DispatchOutcome":
        return cls(OutcomeStatus.IGNORED)

    @classmethod
    def failed(cls, reason: FailureReason) -> "DispatchOutcome":
        return cls(OutcomeStatus.FAILED, reason=reason)

    @property
    def is_failed(self) -> bool:
        return self.status == OutcomeStatus.FAILED

    def __str__(self) -> str:
        if self.reason is not None:
            return f"{self.status.value}({self.reason.value})"
        return self.status.value


# =============================================================
# ERROR TYPES
# =============================================================

class IngestionError(Exception):
    """Base exception for ingestion errors."""

    def __init__(
        self,
        message: str,
        source: str,
        recoverable: bool = True,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.source = source
        self.recoverable = recoverable
        self.details = details or {}


class FetchError(IngestionError):
    """Error receiving data from the feed."""
    pass


class ParseError(IngestionError):
    """Error decoding a frame or envelope."""
    pass


class StorageError(IngestionError):
    """Error storing data to the repository."""
    pass
