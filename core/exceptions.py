"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines the process-level exceptions of the market data pipeline.

Layer-specific errors live next to their layer:
- data_ingestion.types: IngestionError, FetchError, ParseError, StorageError
- storage.repositories.exceptions: RepositoryException and subclasses

============================================================
EXCEPTION HIERARCHY
============================================================
PipelineException (base)
└── ConfigurationError
    └── InvalidConfigError

============================================================
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class Severity(Enum):
    """Exception severity levels for alerting."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class PipelineException(Exception):
    """
    Base exception for process-level pipeline errors.

    All exceptions carry:
    - severity: for alerting
    - context: for debugging
    - timestamp: when the error occurred
    """

    default_severity: Severity = Severity.MEDIUM

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }


class ConfigurationError(PipelineException):
    """Configuration could not be loaded or is inconsistent."""

    default_severity = Severity.HIGH

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message, context={"errors": list(errors or [])})
        self.errors = list(errors or [])


class InvalidConfigError(ConfigurationError):
    """A single configuration value is invalid."""

    def __init__(self, key: str, value: Any, reason: str):
        super().__init__(
            message=f"Invalid configuration for {key}: {reason}",
            errors=[f"{key}={str(value)[:100]}: {reason}"],
        )
        self.key = key
