"""Textual classification of remote-call failures.

``classify_failure`` is pure and total: any value raised or returned by a
failed call maps to exactly one :class:`FailureCategory`. The checks run in a
fixed order so a safety rejection that also mentions a quota is never
retried:

1. safety / content policy
2. quota / rate limit / 429
3. 5xx / overload / gateway / network
4. anything else is ``UNKNOWN``
"""

from __future__ import annotations

import re
from typing import Any, Mapping

from .errors import FailureCategory, GenerationError

__all__ = ["classify_failure", "describe_error"]

_SAFETY_PATTERN = re.compile(
    r"safety|content[ _-]?policy|content[ _-]?filter|\bblocked\b|"
    r"\bharm(ful)?\b|prohibited",
    re.IGNORECASE,
)
_RATE_LIMIT_PATTERN = re.compile(
    r"\b429\b|quota|rate[ _-]?limit|resource[ _-]?exhausted|"
    r"too many requests|\blimit(s|ed)?\b",
    re.IGNORECASE,
)
_TRANSIENT_PATTERN = re.compile(
    r"\b5\d\d\b|overload|unavailable|gateway|internal[ _-]?server|"
    r"timed? ?out|timeout|failed to fetch|network|connection|"
    r"econnreset|temporarily",
    re.IGNORECASE,
)

_ORDERED_RULES = (
    (_SAFETY_PATTERN, FailureCategory.SAFETY_BLOCKED),
    (_RATE_LIMIT_PATTERN, FailureCategory.RATE_LIMITED),
    (_TRANSIENT_PATTERN, FailureCategory.SERVER_TRANSIENT),
)

_MAX_DEPTH = 4


def classify_failure(error: Any) -> FailureCategory:
    """Return the failure category for ``error``.

    Domain errors raised by this package keep the category they carry.
    """

    if isinstance(error, GenerationError):
        return error.category
    text = describe_error(error)
    for pattern, category in _ORDERED_RULES:
        if pattern.search(text):
            return category
    return FailureCategory.UNKNOWN


def describe_error(error: Any) -> str:
    """Flatten ``error`` into the text the classifier matches against."""

    parts: list[str] = []
    _collect_text(error, parts, depth=0)
    return " ".join(part for part in parts if part)


def _collect_text(value: Any, parts: list[str], *, depth: int) -> None:
    if value is None or depth > _MAX_DEPTH:
        return
    if isinstance(value, str):
        parts.append(value)
        return
    if isinstance(value, bytes):
        parts.append(value.decode("utf-8", errors="replace"))
        return
    if isinstance(value, Mapping):
        _collect_mapping(value, parts, depth=depth)
        return
    if isinstance(value, BaseException):
        parts.append(type(value).__name__)
        parts.append(str(value))
        status = getattr(value, "status_code", None)
        if status is not None:
            parts.append(str(status))
        body = getattr(value, "body", None)
        if body is not None:
            _collect_text(body, parts, depth=depth + 1)
        return
    parts.append(str(value))


def _collect_mapping(
    value: Mapping[Any, Any], parts: list[str], *, depth: int
) -> None:
    for key in ("message", "status", "code", "reason", "type"):
        if key in value:
            _collect_text(value[key], parts, depth=depth + 1)
    if "error" in value:
        _collect_text(value["error"], parts, depth=depth + 1)
