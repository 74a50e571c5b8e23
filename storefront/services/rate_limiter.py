"""In-memory sliding-window rate limiter.

Tracks admitted request timestamps (epoch milliseconds) per identity within a
configurable window.  Expired timestamps are dropped lazily whenever an
identity is checked, and the whole table is compacted once the number of
distinct identities passes a ceiling.

State is per instance and per process: two limiters built in the same process
never share history, and horizontally scaled services enforce the window
independently on each instance.
"""

from __future__ import annotations

import bisect
import enum
import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable

logger = logging.getLogger(__name__)

DEFAULT_MAX_IDENTITIES = 10_000


class RateLimiterConfigError(ValueError):
    """Raised when a limiter is built with a non-positive window or limit."""


class CompactionPolicy(str, enum.Enum):
    """What to do when the identity table grows past its ceiling."""

    SWEEP = "sweep"  # drop expired timestamps, forget identities left empty
    CLEAR = "clear"  # forget every identity


@dataclass(frozen=True)
class Decision:
    """Outcome of a single admission check.

    ``limit`` is ``None`` for untracked callers (no identity could be
    resolved); such decisions are always allowed and carry no counters.
    """

    allowed: bool
    limit: int | None = None
    remaining: int | None = None
    reset_at: int | None = None  # epoch ms
    window_ms: int | None = None
    retry_after: int | None = None  # seconds, set on rejections only

    @property
    def tracked(self) -> bool:
        return self.limit is not None


class RateLimitExceeded(Exception):
    """Raised by request guards when a limiter rejects the caller."""

    def __init__(self, decision: Decision) -> None:
        self.decision = decision
        self.retry_after = decision.retry_after or 0
        super().__init__(f"Rate limit exceeded. Try again in {self.retry_after} seconds.")


@dataclass
class _RequestLog:
    timestamps: deque[int] = field(default_factory=deque)
    lock: threading.Lock = field(default_factory=threading.Lock)
    # Set once the log has been dropped from the table; holders must re-fetch.
    evicted: bool = False

    def expire(self, floor: int) -> None:
        """Drop every timestamp at or before *floor*."""
        timestamps = self.timestamps
        while timestamps and timestamps[0] <= floor:
            timestamps.popleft()

    def record(self, now: int) -> None:
        if self.timestamps and now < self.timestamps[-1]:
            bisect.insort(self.timestamps, now)
        else:
            self.timestamps.append(now)


def epoch_millis() -> int:
    """Current wall-clock time in whole milliseconds."""
    return time.time_ns() // 1_000_000


def _require_positive(name: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise RateLimiterConfigError(f"{name} must be a positive integer, got {value!r}")
    return value


class SlidingWindowRateLimiter:
    """Sliding-window counter keyed by an opaque identity string.

    Parameters
    ----------
    window_ms:
        Length of the sliding window in milliseconds.
    max_requests:
        Maximum number of admitted requests within *window_ms*.
    max_identities:
        Ceiling on distinct tracked identities before a compaction pass runs.
    compaction:
        Compaction policy applied when the ceiling is crossed.
    clock:
        Source of "now" in epoch milliseconds when ``admit`` is not given one.
    """

    def __init__(
        self,
        window_ms: int,
        max_requests: int,
        *,
        max_identities: int = DEFAULT_MAX_IDENTITIES,
        compaction: CompactionPolicy | str = CompactionPolicy.SWEEP,
        clock: Callable[[], int] = epoch_millis,
    ) -> None:
        self._window_ms = _require_positive("window_ms", window_ms)
        self._max_requests = _require_positive("max_requests", max_requests)
        self._max_identities = _require_positive("max_identities", max_identities)
        try:
            self._compaction = CompactionPolicy(compaction)
        except ValueError:
            raise RateLimiterConfigError(f"Unknown compaction policy: {compaction!r}") from None
        self._clock = clock

        self._logs: dict[str, _RequestLog] = {}
        # Table size that triggers the next compaction; never below the ceiling.
        self._compact_above = self._max_identities
        # Guards the identity table itself; each log has its own lock.
        self._table_lock = threading.Lock()

    @classmethod
    def create(cls, window_ms: int, max_requests: int, **kwargs: object) -> SlidingWindowRateLimiter:
        """Build a limiter, failing fast on invalid parameters."""
        return cls(window_ms, max_requests, **kwargs)  # type: ignore[arg-type]

    @property
    def window_ms(self) -> int:
        return self._window_ms

    @property
    def max_requests(self) -> int:
        return self._max_requests

    @property
    def retry_after_seconds(self) -> int:
        return math.ceil(self._window_ms / 1000)

    @property
    def tracked_identities(self) -> int:
        return len(self._logs)

    def __contains__(self, identity: object) -> bool:
        return identity in self._logs

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(window_ms={self._window_ms}, "
            f"max_requests={self._max_requests}, compaction={self._compaction.value})"
        )

    def admit(self, identity: str | None, now: int | None = None) -> Decision:
        """Record a request for *identity* if it fits in the window.

        Callers without an identity are always allowed and leave no trace.
        """
        if not identity:
            return Decision(allowed=True)

        if now is None:
            now = self._clock()

        while True:
            entry = self._log_for(identity)
            with entry.lock:
                if entry.evicted:
                    continue
                decision = self._decide(entry, now)
                break

        if len(self._logs) > self._compact_above:
            self._compact(now)

        if not decision.allowed:
            logger.debug("Rejected %s: %d requests within %dms", identity, self._max_requests, self._window_ms)
        return decision

    def history(self, identity: str) -> tuple[int, ...]:
        """Return the stored timestamps for *identity*, oldest first."""
        entry = self._logs.get(identity)
        if entry is None:
            return ()
        with entry.lock:
            return tuple(entry.timestamps)

    def reset(self) -> None:
        """Clear all tracked state (useful for tests)."""
        with self._table_lock:
            self._evict_all()

    # -- internals -----------------------------------------------------------

    def _log_for(self, identity: str) -> _RequestLog:
        with self._table_lock:
            entry = self._logs.get(identity)
            if entry is None:
                entry = self._logs[identity] = _RequestLog()
            return entry

    def _decide(self, entry: _RequestLog, now: int) -> Decision:
        entry.expire(now - self._window_ms)
        reset_at = now + self._window_ms

        if len(entry.timestamps) >= self._max_requests:
            return Decision(
                allowed=False,
                limit=self._max_requests,
                remaining=0,
                reset_at=reset_at,
                window_ms=self._window_ms,
                retry_after=self.retry_after_seconds,
            )

        entry.record(now)
        return Decision(
            allowed=True,
            limit=self._max_requests,
            remaining=self._max_requests - len(entry.timestamps),
            reset_at=reset_at,
            window_ms=self._window_ms,
        )

    def _compact(self, now: int) -> None:
        floor = now - self._window_ms
        with self._table_lock:
            before = len(self._logs)
            # Another caller may have compacted while we waited for the lock.
            if before <= self._compact_above:
                return

            if self._compaction is CompactionPolicy.CLEAR:
                self._evict_all()
            else:
                for identity, entry in list(self._logs.items()):
                    with entry.lock:
                        entry.expire(floor)
                        if not entry.timestamps:
                            entry.evicted = True
                            del self._logs[identity]
            after = len(self._logs)
            # Survivors are live; wait for the table to double before sweeping again.
            self._compact_above = max(self._max_identities, 2 * after)

        logger.info(
            "Rate limiter compaction (%s): %d -> %d identities",
            self._compaction.value,
            before,
            after,
        )

    def _evict_all(self) -> None:
        for entry in self._logs.values():
            with entry.lock:
                entry.evicted = True
        self._logs.clear()
        self._compact_above = self._max_identities
