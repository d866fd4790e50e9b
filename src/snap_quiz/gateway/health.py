"""Advisory health reporting for the remote generation service.

The :class:`RequestRecord` is written by the orchestrator around every
dispatch; :class:`HealthMonitor` only reads it. Nothing here gates a
request.
"""

from __future__ import annotations

import json
import logging
import math
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Deque, Optional

__all__ = [
    "HealthState",
    "HealthStatus",
    "HealthMonitor",
    "RequestRecord",
    "load_record",
    "save_record",
]

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

DEFAULT_WINDOW_SECONDS = 60.0
DEFAULT_COOLDOWN_SECONDS = 60.0
DEFAULT_WARNING_THRESHOLD = 10

LABEL_READY = "AI ready"
LABEL_BUSY = "AI thinking..."
LABEL_WARNING = "Heavy traffic, slow down a little"
LABEL_COOLDOWN = "Taking a break"


class HealthState(Enum):
    OK = "ok"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class HealthStatus:
    """Snapshot returned to status pollers."""

    state: HealthState
    label: str
    remaining_seconds: Optional[int] = None


class RequestRecord:
    """Rolling dispatch timestamps plus the last rate-limited failure."""

    def __init__(self, *, window_seconds: float = DEFAULT_WINDOW_SECONDS):
        self.window_seconds = window_seconds
        self._dispatches: Deque[float] = deque()
        self.last_rate_limited_at: Optional[float] = None
        self.in_flight = False

    def record_dispatch(self, at: float) -> None:
        self._dispatches.append(at)
        self.prune(at)

    def record_rate_limited(self, at: float) -> None:
        self.last_rate_limited_at = at

    def prune(self, now: float) -> None:
        horizon = now - self.window_seconds
        while self._dispatches and self._dispatches[0] < horizon:
            self._dispatches.popleft()

    def recent_dispatches(self, now: float) -> int:
        horizon = now - self.window_seconds
        return sum(1 for stamp in self._dispatches if stamp >= horizon)

    @property
    def dispatches(self) -> tuple[float, ...]:
        return tuple(self._dispatches)

    def to_dict(self) -> dict[str, object]:
        return {
            "dispatches": list(self._dispatches),
            "last_rate_limited_at": self.last_rate_limited_at,
        }

    @classmethod
    def from_dict(
        cls,
        payload: dict[str, object],
        *,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
    ) -> "RequestRecord":
        record = cls(window_seconds=window_seconds)
        stamps = payload.get("dispatches") or []
        if isinstance(stamps, list):
            for stamp in sorted(
                float(item) for item in stamps if isinstance(item, (int, float))
            ):
                record._dispatches.append(stamp)
        last = payload.get("last_rate_limited_at")
        if isinstance(last, (int, float)):
            record.last_rate_limited_at = float(last)
        return record


class HealthMonitor:
    """Derive an Ok / Warning / Error status from a :class:`RequestRecord`."""

    def __init__(
        self,
        record: RequestRecord,
        *,
        clock: Clock = time.time,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        warning_threshold: int = DEFAULT_WARNING_THRESHOLD,
    ) -> None:
        self.record = record
        self._clock = clock
        self.cooldown_seconds = cooldown_seconds
        self.warning_threshold = warning_threshold

    def cooldown_remaining(self) -> int:
        """Whole seconds left in the rate-limit cooldown, rounded up."""

        last = self.record.last_rate_limited_at
        if last is None:
            return 0
        elapsed = self._clock() - last
        if elapsed < 0 or elapsed >= self.cooldown_seconds:
            return 0
        return max(1, math.ceil(self.cooldown_seconds - elapsed))

    def get_status(self) -> HealthStatus:
        remaining = self.cooldown_remaining()
        if remaining > 0:
            return HealthStatus(HealthState.ERROR, LABEL_COOLDOWN, remaining)
        now = self._clock()
        if self.record.recent_dispatches(now) >= self.warning_threshold:
            return HealthStatus(HealthState.WARNING, LABEL_WARNING)
        if self.record.in_flight:
            return HealthStatus(HealthState.OK, LABEL_BUSY)
        return HealthStatus(HealthState.OK, LABEL_READY)


def save_record(record: RequestRecord, path: Path) -> Path:
    """Persist ``record`` as JSON; failures are logged, never raised."""

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(record.to_dict()), encoding="utf-8")
    except OSError as exc:
        logger.warning(
            "Could not persist request record",
            extra={"path": str(path), "error": str(exc)},
        )
    return path


def load_record(
    path: Path, *, window_seconds: float = DEFAULT_WINDOW_SECONDS
) -> RequestRecord:
    """Load a record saved by :func:`save_record` or start an empty one."""

    if not path.exists():
        return RequestRecord(window_seconds=window_seconds)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning(
            "Ignoring unreadable request record",
            extra={"path": str(path), "error": str(exc)},
        )
        return RequestRecord(window_seconds=window_seconds)
    if not isinstance(payload, dict):
        return RequestRecord(window_seconds=window_seconds)
    return RequestRecord.from_dict(payload, window_seconds=window_seconds)
