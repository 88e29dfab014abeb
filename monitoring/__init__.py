"""
Monitoring Package.

Strictly observational: counters never influence the pipeline.

Modules:
- metrics: thread-safe, observable pipeline counters
"""

from monitoring.metrics import (
    LOG_PUBLISH_FAILED,
    STANDARD_COUNTERS,
    MetricsSnapshot,
    PipelineMetrics,
)


__all__ = [
    "LOG_PUBLISH_FAILED",
    "STANDARD_COUNTERS",
    "MetricsSnapshot",
    "PipelineMetrics",
]
