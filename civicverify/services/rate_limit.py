"""Per-source daily rate limiting with sliding or calendar-day windows.

Each registered source owns a :class:`RateWindow`: a deque of call
timestamps pruned on every check.  ``rolling`` windows keep the trailing
24 hours; ``calendar_day`` windows keep only calls made since midnight in
the clock's timezone (UTC by default), which is how quota-by-day APIs such
as NewsAPI count.

Sources that were never registered are unlimited.  Windows registered with
``persist=True`` are written to a small JSON state file so a restart does
not hand the process a fresh quota.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from pathlib import Path
from typing import Final

import orjson
import structlog

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]

_ROLLING_WINDOW: Final[timedelta] = timedelta(hours=24)
_WARNING_RATIO: Final[float] = 0.8


def _utc_now() -> datetime:
    return datetime.now(UTC)


class WindowPolicy(StrEnum):
    __slots__ = ()

    ROLLING = "rolling"
    CALENDAR_DAY = "calendar_day"


@dataclass
class RateWindow:
    """Usage timestamps (epoch seconds) for one source."""

    source_id: str
    daily_limit: int
    policy: WindowPolicy = WindowPolicy.ROLLING
    persist: bool = False
    timestamps: deque[float] = field(default_factory=deque)

    def prune(self, now: datetime) -> None:
        if self.policy is WindowPolicy.CALENDAR_DAY:
            cutoff = now.replace(hour=0, minute=0, second=0, microsecond=0)
        else:
            cutoff = now - _ROLLING_WINDOW
        floor = cutoff.timestamp()
        while self.timestamps and self.timestamps[0] < floor:
            self.timestamps.popleft()

    @property
    def used(self) -> int:
        return len(self.timestamps)

    @property
    def remaining(self) -> int:
        return max(0, self.daily_limit - len(self.timestamps))


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class RateUsageStore:
    """JSON file holding ``{source_id: [epoch_seconds, ...]}``."""

    __slots__ = ("_path",)

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, list[float]]:
        """Read the state file; a missing or corrupt file yields no usage."""
        if not self._path.exists():
            return {}
        try:
            data = orjson.loads(self._path.read_bytes())
        except (OSError, orjson.JSONDecodeError):
            logger.warning("rate_limit.state_unreadable", path=str(self._path), exc_info=True)
            return {}
        if not isinstance(data, dict):
            logger.warning("rate_limit.state_malformed", path=str(self._path))
            return {}
        usage: dict[str, list[float]] = {}
        for source_id, stamps in data.items():
            if isinstance(stamps, list):
                usage[source_id] = sorted(float(s) for s in stamps if isinstance(s, int | float))
        return usage

    def save(self, usage: dict[str, list[float]]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_bytes(orjson.dumps(usage, option=orjson.OPT_INDENT_2))
        except OSError:
            logger.warning("rate_limit.state_write_failed", path=str(self._path), exc_info=True)


# ---------------------------------------------------------------------------
# RateLimiter
# ---------------------------------------------------------------------------


class RateLimiter:
    """Per-source daily call budget.

    Parameters
    ----------
    clock:
        Returns the current timezone-aware time; injectable for tests.
    store:
        Optional persistence for windows registered with ``persist=True``.
    """

    def __init__(self, clock: Clock = _utc_now, store: RateUsageStore | None = None) -> None:
        self._clock = clock
        self._store = store
        self._windows: dict[str, RateWindow] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._save_lock = asyncio.Lock()

    def register(
        self,
        source_id: str,
        daily_limit: int,
        *,
        policy: WindowPolicy = WindowPolicy.ROLLING,
        persist: bool = False,
    ) -> RateWindow:
        """Create the window for *source_id*; re-registering returns the existing one."""
        if daily_limit < 1:
            raise ValueError("daily_limit must be at least 1")
        existing = self._windows.get(source_id)
        if existing is not None:
            return existing

        window = RateWindow(
            source_id=source_id,
            daily_limit=daily_limit,
            policy=policy,
            persist=persist,
        )
        if persist and self._store is not None:
            window.timestamps.extend(self._store.load().get(source_id, []))
            window.prune(self._clock())
        self._windows[source_id] = window
        self._locks[source_id] = asyncio.Lock()
        logger.debug(
            "rate_limit.registered",
            source=source_id,
            daily_limit=daily_limit,
            policy=policy,
            restored=window.used,
        )
        return window

    def is_limited(self, source_id: str) -> bool:
        return source_id in self._windows

    # ------------------------------------------------------------------
    # Check / record
    # ------------------------------------------------------------------

    def try_acquire(self, source_id: str) -> bool:
        """Whether a call may be issued now.  Does not record usage."""
        window = self._windows.get(source_id)
        if window is None:
            return True
        window.prune(self._clock())
        return window.used < window.daily_limit

    def record_use(self, source_id: str) -> None:
        """Record one call against *source_id*'s window, persisting synchronously."""
        window = self._record(source_id)
        if window is not None and window.persist:
            self._persist()

    async def acquire(self, source_id: str) -> bool:
        """Atomically check and record one call; ``False`` when refused.

        The per-source lock is held until the usage has been written, so a
        granted call is durable before it is issued and saves land in order.
        """
        lock = self._locks.get(source_id)
        if lock is None:
            return True
        async with lock:
            if not self.try_acquire(source_id):
                logger.warning(
                    "rate_limit.refused",
                    source=source_id,
                    daily_limit=self._windows[source_id].daily_limit,
                )
                return False
            await self._commit(source_id)
            return True

    async def charge(self, source_id: str) -> None:
        """Record a follow-up call (a retry or next page) without gating it."""
        lock = self._locks.get(source_id)
        if lock is None:
            return
        async with lock:
            await self._commit(source_id)

    def _record(self, source_id: str) -> RateWindow | None:
        window = self._windows.get(source_id)
        if window is None:
            return None
        now = self._clock()
        window.prune(now)
        window.timestamps.append(now.timestamp())

        if window.used >= window.daily_limit * _WARNING_RATIO:
            logger.warning(
                "rate_limit.approaching",
                source=source_id,
                used=window.used,
                daily_limit=window.daily_limit,
            )
        return window

    def remaining(self, source_id: str) -> int | None:
        """Calls left in the current window, or ``None`` when unlimited."""
        window = self._windows.get(source_id)
        if window is None:
            return None
        window.prune(self._clock())
        return window.remaining

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _snapshot(self) -> dict[str, list[float]]:
        return {
            source_id: list(window.timestamps)
            for source_id, window in self._windows.items()
            if window.persist
        }

    def _persist(self) -> None:
        if self._store is not None:
            self._store.save(self._snapshot())

    async def _commit(self, source_id: str) -> None:
        window = self._record(source_id)
        if window is None or not window.persist or self._store is None:
            return
        async with self._save_lock:
            # Snapshot at write time so a later save never carries older state.
            await asyncio.to_thread(self._store.save, self._snapshot())
