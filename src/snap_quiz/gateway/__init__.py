"""Request gateway: failure classification, orchestration, health."""

from __future__ import annotations

from .classifier import classify_failure, describe_error
from .errors import (
    FailureCategory,
    GenerationError,
    MalformedResponseError,
    RateLimitedError,
    SafetyBlockedError,
    ServerTransientError,
    UnknownGenerationError,
    error_for_category,
)
from .health import (
    HealthMonitor,
    HealthState,
    HealthStatus,
    RequestRecord,
    load_record,
    save_record,
)
from .orchestrator import RequestOrchestrator

__all__ = [
    "classify_failure",
    "describe_error",
    "FailureCategory",
    "GenerationError",
    "MalformedResponseError",
    "RateLimitedError",
    "SafetyBlockedError",
    "ServerTransientError",
    "UnknownGenerationError",
    "error_for_category",
    "HealthMonitor",
    "HealthState",
    "HealthStatus",
    "RequestRecord",
    "load_record",
    "save_record",
    "RequestOrchestrator",
]
