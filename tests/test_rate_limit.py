"""Tests for the per-source rate limiter and its usage store."""

from __future__ import annotations

import asyncio
import threading
import time
from datetime import UTC, datetime, timedelta
from pathlib import Path

import orjson
import pytest
from structlog.testing import capture_logs

from civicverify.services.rate_limit import (
    RateLimiter,
    RateUsageStore,
    WindowPolicy,
)


class FakeClock:
    """Manually advanced timezone-aware clock."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 5, 1, 12, 0, tzinfo=UTC))


# ---------------------------------------------------------------------------
# Rolling window
# ---------------------------------------------------------------------------


class TestRollingWindow:
    def test_unregistered_source_is_unlimited(self, clock: FakeClock) -> None:
        limiter = RateLimiter(clock)
        assert limiter.try_acquire("epa_envirofacts")
        assert limiter.remaining("epa_envirofacts") is None
        limiter.record_use("epa_envirofacts")  # no-op

    def test_try_acquire_has_no_side_effects(self, clock: FakeClock) -> None:
        limiter = RateLimiter(clock)
        limiter.register("fred", 2)
        for _ in range(5):
            assert limiter.try_acquire("fred")
        assert limiter.remaining("fred") == 2

    def test_limit_reached(self, clock: FakeClock) -> None:
        limiter = RateLimiter(clock)
        limiter.register("fred", 2)
        limiter.record_use("fred")
        limiter.record_use("fred")
        assert not limiter.try_acquire("fred")
        assert limiter.remaining("fred") == 0

    def test_window_restores_after_24h(self, clock: FakeClock) -> None:
        limiter = RateLimiter(clock)
        limiter.register("fred", 1)
        limiter.record_use("fred")
        clock.advance(hours=23, minutes=59)
        assert not limiter.try_acquire("fred")
        clock.advance(minutes=2)
        assert limiter.try_acquire("fred")

    def test_sources_are_independent(self, clock: FakeClock) -> None:
        limiter = RateLimiter(clock)
        limiter.register("fred", 1)
        limiter.register("news", 1)
        limiter.record_use("fred")
        assert not limiter.try_acquire("fred")
        assert limiter.try_acquire("news")

    def test_register_is_idempotent(self, clock: FakeClock) -> None:
        limiter = RateLimiter(clock)
        first = limiter.register("fred", 3)
        limiter.record_use("fred")
        second = limiter.register("fred", 10)
        assert first is second
        assert limiter.remaining("fred") == 2

    def test_invalid_limit(self, clock: FakeClock) -> None:
        with pytest.raises(ValueError):
            RateLimiter(clock).register("fred", 0)


# ---------------------------------------------------------------------------
# Calendar-day window
# ---------------------------------------------------------------------------


class TestCalendarDayWindow:
    def test_resets_at_midnight(self) -> None:
        clock = FakeClock(datetime(2024, 5, 1, 23, 30, tzinfo=UTC))
        limiter = RateLimiter(clock)
        limiter.register("news", 1, policy=WindowPolicy.CALENDAR_DAY)
        limiter.record_use("news")
        assert not limiter.try_acquire("news")
        clock.advance(minutes=31)
        assert limiter.try_acquire("news")


# ---------------------------------------------------------------------------
# Atomic acquire
# ---------------------------------------------------------------------------


class TestAcquire:
    @pytest.mark.asyncio
    async def test_concurrent_acquires_never_exceed_limit(self, clock: FakeClock) -> None:
        limiter = RateLimiter(clock)
        limiter.register("news", 5)

        granted = await asyncio.gather(*(limiter.acquire("news") for _ in range(20)))

        assert sum(granted) == 5
        assert limiter.remaining("news") == 0

    @pytest.mark.asyncio
    async def test_refusal_is_logged(self, clock: FakeClock) -> None:
        limiter = RateLimiter(clock)
        limiter.register("news", 1)
        assert await limiter.acquire("news")
        with capture_logs() as logs:
            assert not await limiter.acquire("news")
        assert any(entry["event"] == "rate_limit.refused" for entry in logs)

    @pytest.mark.asyncio
    async def test_unregistered_acquire_always_granted(self, clock: FakeClock) -> None:
        limiter = RateLimiter(clock)
        assert all(await asyncio.gather(*(limiter.acquire("cdc_wonder") for _ in range(50))))

    def test_warning_at_eighty_percent(self, clock: FakeClock) -> None:
        limiter = RateLimiter(clock)
        limiter.register("news", 10)
        with capture_logs() as logs:
            for _ in range(7):
                limiter.record_use("news")
        assert not [e for e in logs if e["event"] == "rate_limit.approaching"]

        with capture_logs() as logs:
            limiter.record_use("news")
        warnings = [e for e in logs if e["event"] == "rate_limit.approaching"]
        assert warnings and warnings[0]["log_level"] == "warning"
        assert warnings[0]["used"] == 8

    @pytest.mark.asyncio
    async def test_charge_records_without_gating(self, clock: FakeClock) -> None:
        limiter = RateLimiter(clock)
        limiter.register("news", 1)
        assert await limiter.acquire("news")
        await limiter.charge("news")
        await limiter.charge("cdc_wonder")  # unregistered: no-op
        assert limiter.remaining("news") == 0
        assert limiter.remaining("cdc_wonder") is None


class SlowFirstSaveStore(RateUsageStore):
    """Store whose first write stalls, so unordered saves would land stale data last."""

    def __init__(self, path: Path) -> None:
        super().__init__(path)
        self.snapshots: list[int] = []
        self.active = 0
        self.peak = 0
        self._guard = threading.Lock()

    def save(self, usage: dict[str, list[float]]) -> None:
        with self._guard:
            self.active += 1
            self.peak = max(self.peak, self.active)
            first = not self.snapshots
            self.snapshots.append(len(usage.get("news", [])))
        if first:
            time.sleep(0.05)
        super().save(usage)
        with self._guard:
            self.active -= 1


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class TestRateUsageStore:
    def test_usage_survives_restart(self, tmp_path: Path, clock: FakeClock) -> None:
        store = RateUsageStore(tmp_path / "state.json")
        limiter = RateLimiter(clock, store)
        limiter.register("news", 3, policy=WindowPolicy.CALENDAR_DAY, persist=True)
        limiter.record_use("news")
        limiter.record_use("news")

        restarted = RateLimiter(clock, RateUsageStore(tmp_path / "state.json"))
        restarted.register("news", 3, policy=WindowPolicy.CALENDAR_DAY, persist=True)
        assert restarted.remaining("news") == 1

    def test_expired_usage_dropped_on_restore(self, tmp_path: Path, clock: FakeClock) -> None:
        path = tmp_path / "state.json"
        limiter = RateLimiter(clock, RateUsageStore(path))
        limiter.register("news", 3, policy=WindowPolicy.CALENDAR_DAY, persist=True)
        limiter.record_use("news")

        clock.advance(days=1)
        restarted = RateLimiter(clock, RateUsageStore(path))
        restarted.register("news", 3, policy=WindowPolicy.CALENDAR_DAY, persist=True)
        assert restarted.remaining("news") == 3

    def test_non_persistent_windows_not_written(self, tmp_path: Path, clock: FakeClock) -> None:
        path = tmp_path / "state.json"
        limiter = RateLimiter(clock, RateUsageStore(path))
        limiter.register("news", 3, persist=True)
        limiter.register("fred", 3)
        limiter.record_use("fred")
        limiter.record_use("news")
        assert set(orjson.loads(path.read_bytes())) == {"news"}

    def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        assert RateUsageStore(tmp_path / "absent.json").load() == {}

    def test_corrupt_file_is_empty_with_warning(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text("{not json")
        with capture_logs() as logs:
            assert RateUsageStore(path).load() == {}
        assert any(e["event"] == "rate_limit.state_unreadable" for e in logs)

    def test_malformed_entries_skipped(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_bytes(orjson.dumps({"news": [2.0, "x", 1.0], "fred": "nope"}))
        assert RateUsageStore(path).load() == {"news": [1.0, 2.0]}

    @pytest.mark.asyncio
    async def test_concurrent_acquires_persist_in_order(
        self, tmp_path: Path, clock: FakeClock
    ) -> None:
        store = SlowFirstSaveStore(tmp_path / "state.json")
        limiter = RateLimiter(clock, store)
        limiter.register("news", 10, policy=WindowPolicy.CALENDAR_DAY, persist=True)

        granted = await asyncio.gather(*(limiter.acquire("news") for _ in range(5)))

        assert all(granted)
        assert store.peak == 1
        assert store.snapshots == [1, 2, 3, 4, 5]
        assert len(RateUsageStore(tmp_path / "state.json").load()["news"]) == 5

    @pytest.mark.asyncio
    async def test_acquire_writes_off_the_event_loop(
        self, tmp_path: Path, clock: FakeClock
    ) -> None:
        loop_thread = threading.get_ident()
        writers: list[int] = []

        class ThreadRecordingStore(RateUsageStore):
            def save(self, usage: dict[str, list[float]]) -> None:
                writers.append(threading.get_ident())
                super().save(usage)

        limiter = RateLimiter(clock, ThreadRecordingStore(tmp_path / "state.json"))
        limiter.register("news", 3, persist=True)

        assert await limiter.acquire("news")

        assert writers and writers[0] != loop_thread
