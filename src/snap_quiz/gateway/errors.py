"""Failure categories and the domain errors raised by the request gateway."""

from __future__ import annotations

from enum import Enum

__all__ = [
    "FailureCategory",
    "GenerationError",
    "RateLimitedError",
    "SafetyBlockedError",
    "ServerTransientError",
    "MalformedResponseError",
    "UnknownGenerationError",
    "error_for_category",
]


class FailureCategory(Enum):
    """Why a remote generation call failed."""

    RATE_LIMITED = "rate_limited"
    SAFETY_BLOCKED = "safety_blocked"
    SERVER_TRANSIENT = "server_transient"
    MALFORMED_RESPONSE = "malformed_response"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE


_RETRYABLE = frozenset(
    {FailureCategory.SERVER_TRANSIENT, FailureCategory.UNKNOWN}
)


class GenerationError(RuntimeError):
    """Base class for failures surfaced by the request gateway."""

    category: FailureCategory = FailureCategory.UNKNOWN


class RateLimitedError(GenerationError):
    """The remote service rejected the call for quota reasons."""

    category = FailureCategory.RATE_LIMITED


class SafetyBlockedError(GenerationError):
    """The remote service refused the content on policy grounds."""

    category = FailureCategory.SAFETY_BLOCKED


class ServerTransientError(GenerationError):
    """The remote service was overloaded or unreachable."""

    category = FailureCategory.SERVER_TRANSIENT


class MalformedResponseError(GenerationError):
    """The response did not match the expected shape."""

    category = FailureCategory.MALFORMED_RESPONSE


class UnknownGenerationError(GenerationError):
    """A failure that matched no known pattern."""

    category = FailureCategory.UNKNOWN


_ERROR_TYPES: dict[FailureCategory, type[GenerationError]] = {
    FailureCategory.RATE_LIMITED: RateLimitedError,
    FailureCategory.SAFETY_BLOCKED: SafetyBlockedError,
    FailureCategory.SERVER_TRANSIENT: ServerTransientError,
    FailureCategory.MALFORMED_RESPONSE: MalformedResponseError,
    FailureCategory.UNKNOWN: UnknownGenerationError,
}


def error_for_category(
    category: FailureCategory, message: str
) -> GenerationError:
    """Build the domain error matching ``category``."""

    return _ERROR_TYPES[category](message)
