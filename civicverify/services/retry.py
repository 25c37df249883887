"""Retry/backoff policy and the attempt loop built on tenacity.

The policy decides, per attempt outcome, whether another attempt is worth
making and how long to wait first.  ``delay(n) = base_delay * 2**n`` where
``n`` is the 0-based number of the attempt that just failed, so the default
policy (4 attempts, 2s base) sleeps 2s, 4s and 8s before giving up.

Rate-limit refusals are never retried here: the upstream quota resets on
its own schedule, far beyond any sensible backoff.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Final

import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_result, stop_after_attempt

from civicverify.services.transport import ErrorKind, Outcome, OutcomeKind

logger = structlog.get_logger(__name__)

SleepFn = Callable[[float], Awaitable[None]]

_RETRYABLE_ERRORS: Final[frozenset[ErrorKind]] = frozenset({
    ErrorKind.CONNECTION,
    ErrorKind.SERVER,
})


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded exponential backoff.

    Parameters
    ----------
    max_attempts:
        Total attempts including the first one.
    base_delay:
        Delay in seconds before the first retry.
    """

    max_attempts: int = 4
    base_delay: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must not be negative")

    @staticmethod
    def is_retryable(outcome: Outcome) -> bool:
        """Timeouts, connection errors and 5xx responses are retryable."""
        if outcome.kind is OutcomeKind.TIMED_OUT:
            return True
        if outcome.kind is OutcomeKind.FAILED:
            return outcome.error in _RETRYABLE_ERRORS
        return False

    def should_retry(self, attempt_number: int, outcome: Outcome) -> bool:
        """Whether attempt *attempt_number* (0-based) should be followed by another."""
        return self.is_retryable(outcome) and attempt_number + 1 < self.max_attempts

    def delay_for(self, attempt_number: int) -> float:
        """Seconds to wait after the 0-based attempt *attempt_number* fails."""
        return self.base_delay * (2 ** attempt_number)


@dataclass(frozen=True, slots=True)
class RetryResult:
    """Final outcome of an attempt loop and how many attempts it took."""

    outcome: Outcome
    attempts: int


async def run_with_retry(
    attempt: Callable[[], Awaitable[Outcome]],
    policy: RetryPolicy,
    *,
    sleep: SleepFn = asyncio.sleep,
    label: str = "",
) -> RetryResult:
    """Drive *attempt* until it succeeds, fails fatally, or attempts run out.

    Never raises for an unsuccessful outcome: on exhaustion the last
    outcome is returned and the caller decides what it means.

    Parameters
    ----------
    attempt:
        Zero-argument coroutine factory performing one transport call.
    policy:
        Retry classification and backoff schedule.
    sleep:
        Awaitable sleep, injectable so tests run without real delays.
    label:
        Identifier included in log events (usually the source id).
    """
    attempts = 0

    async def _counted() -> Outcome:
        nonlocal attempts
        attempts += 1
        return await attempt()

    def _wait(retry_state: RetryCallState) -> float:
        return policy.delay_for(retry_state.attempt_number - 1)

    def _before_sleep(retry_state: RetryCallState) -> None:
        outcome: Outcome = retry_state.outcome.result()  # type: ignore[union-attr]
        logger.warning(
            "retry.backoff",
            source=label,
            attempt=retry_state.attempt_number,
            outcome=outcome.describe(),
            sleep_s=retry_state.next_action.sleep if retry_state.next_action else 0.0,
        )

    def _exhausted(retry_state: RetryCallState) -> Outcome:
        outcome: Outcome = retry_state.outcome.result()  # type: ignore[union-attr]
        logger.warning(
            "retry.exhausted",
            source=label,
            attempts=retry_state.attempt_number,
            outcome=outcome.describe(),
        )
        return outcome

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=_wait,
        retry=retry_if_result(policy.is_retryable),
        sleep=sleep,
        before_sleep=_before_sleep,
        retry_error_callback=_exhausted,
    )
    outcome = await retrying(_counted)
    return RetryResult(outcome=outcome, attempts=attempts)
