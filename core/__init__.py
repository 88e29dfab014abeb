"""
Core Module Package.

Infrastructure shared by every pipeline stage.

Components:
- clock: Injected time source
- config: Environment-driven configuration
- exceptions: Process-level exception hierarchy
"""

from core.clock import ClockProtocol, MockClock, SystemClock
from core.config import DatabaseConfig, FeedConfig, KafkaConfig, PipelineConfig
from core.exceptions import ConfigurationError, InvalidConfigError, PipelineException


__all__ = [
    "ClockProtocol",
    "MockClock",
    "SystemClock",
    "DatabaseConfig",
    "FeedConfig",
    "KafkaConfig",
    "PipelineConfig",
    "ConfigurationError",
    "InvalidConfigError",
    "PipelineException",
]
