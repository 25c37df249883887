"""Source adapter contract shared by every external data source.

An adapter turns a :class:`Claim` into exactly one :class:`SourceResult`.
The steps are always the same and always in this order:

1. Validate configuration (a required credential is present).
2. Build the adapter-specific query from the claim.
3. Acquire one slot from the per-source rate limiter.
4. Drive the transport calls through the retry policy.
5. Parse the responses into the normalized payload.

Concrete adapters only implement :meth:`SourceAdapter.build_query` and
:meth:`SourceAdapter.collect`; everything that can go wrong in those two
methods is expressed with the small exception hierarchy below and turned
into a status here, so nothing escapes :meth:`SourceAdapter.query`.
"""

from __future__ import annotations

import abc
import asyncio
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, Field

from civicverify.models.claim import Claim
from civicverify.models.verification import SourceResult
from civicverify.services.rate_limit import RateLimiter, WindowPolicy
from civicverify.services.retry import RetryPolicy, SleepFn, run_with_retry
from civicverify.services.transport import (
    ErrorKind,
    Outcome,
    RawResponse,
    TransportExecutor,
    TransportRequest,
)

logger = structlog.get_logger(__name__)

QueryT = TypeVar("QueryT")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class SourceConfig(BaseModel):
    """Per-source settings resolved from :class:`config.settings.Settings`."""

    model_config = ConfigDict(frozen=True)

    source_id: str = Field(min_length=1)
    base_url: str
    api_key: str | None = None
    requires_api_key: bool = False
    timeout_seconds: float = Field(default=30.0, gt=0)
    daily_limit: int | None = Field(default=None, ge=1)
    window: WindowPolicy = WindowPolicy.ROLLING
    persist_usage: bool = False
    page_size: int = Field(default=1000, ge=1)
    max_pages: int = Field(default=5, ge=1)

    @property
    def has_credential(self) -> bool:
        return bool(self.api_key and self.api_key.strip())


# ---------------------------------------------------------------------------
# Internal exceptions (never escape ``query``)
# ---------------------------------------------------------------------------


class SourceError(Exception):
    """Base class for adapter-internal failures."""


class MissingInputError(SourceError):
    """The claim lacks something the source needs (usually a location)."""


class FetchError(SourceError):
    """A transport call ended without success after retries."""

    def __init__(self, outcome: Outcome) -> None:
        self.outcome = outcome
        super().__init__(outcome.describe())


class PayloadError(SourceError):
    """The upstream answered, but not with anything we can use."""


@dataclass
class AttemptTally:
    """Transport attempts made during one adapter invocation."""

    count: int = 0


# ---------------------------------------------------------------------------
# SourceAdapter
# ---------------------------------------------------------------------------


class SourceAdapter(abc.ABC, Generic[QueryT]):
    """Base class for every external data source.

    Parameters
    ----------
    config:
        Endpoint, credential, timeout and quota for this source.
    executor:
        Shared transport executor.
    limiter:
        Shared rate limiter; the source's window is registered here when
        ``config.daily_limit`` is set.
    retry_policy:
        Backoff schedule for transport attempts.
    sleep:
        Awaitable sleep used between retries (tests inject a recorder).
    """

    def __init__(
        self,
        config: SourceConfig,
        executor: TransportExecutor,
        limiter: RateLimiter,
        retry_policy: RetryPolicy | None = None,
        *,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._config = config
        self._executor = executor
        self._limiter = limiter
        self._retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

        if config.daily_limit is not None:
            limiter.register(
                config.source_id,
                config.daily_limit,
                policy=config.window,
                persist=config.persist_usage,
            )

    @property
    def source_id(self) -> str:
        return self._config.source_id

    @property
    def config(self) -> SourceConfig:
        return self._config

    # ------------------------------------------------------------------
    # Hooks for concrete adapters
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def build_query(self, claim: Claim) -> QueryT:
        """Derive the source query; raise :class:`MissingInputError` when impossible."""

    @abc.abstractmethod
    async def collect(self, query: QueryT, tally: AttemptTally) -> dict[str, Any]:
        """Fetch and parse everything the source contributes for *query*."""

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def query(self, claim: Claim) -> SourceResult:
        """Query the source for *claim*.  Never raises."""
        source_id = self.source_id
        tally = AttemptTally()

        if self._config.requires_api_key and not self._config.has_credential:
            logger.warning("source.misconfigured", source=source_id, reason="missing api key")
            return SourceResult.misconfigured(source_id, "API key not configured")

        try:
            query = self.build_query(claim)
        except MissingInputError as exc:
            logger.info("source.missing_input", source=source_id, reason=str(exc))
            return SourceResult.misconfigured(source_id, str(exc))

        if not await self._limiter.acquire(source_id):
            logger.warning("source.rate_limited", source=source_id, local=True)
            return SourceResult.rate_limited(source_id, "daily request limit reached")

        try:
            payload = await self.collect(query, tally)
        except FetchError as exc:
            return self._result_for_failure(exc.outcome, tally.count)
        except PayloadError as exc:
            logger.warning("source.bad_payload", source=source_id, error=str(exc))
            return SourceResult.unavailable(
                source_id, f"malformed response: {exc}", attempts=tally.count
            )
        except Exception:
            logger.warning("source.unexpected_error", source=source_id, exc_info=True)
            return SourceResult.unavailable(
                source_id, "unexpected adapter error", attempts=tally.count
            )

        logger.info("source.ok", source=source_id, attempts=tally.count)
        return SourceResult.success(source_id, payload, attempts=tally.count)

    # ------------------------------------------------------------------
    # Helpers for concrete adapters
    # ------------------------------------------------------------------

    async def fetch(self, request: TransportRequest, tally: AttemptTally) -> RawResponse:
        """Execute *request* under the retry policy; raise :class:`FetchError` on failure."""
        timeout = self._config.timeout_seconds
        issued = 0

        async def _attempt() -> Outcome:
            nonlocal issued
            # query() already charged the invocation's first request.
            if issued or tally.count:
                await self._limiter.charge(self.source_id)
            issued += 1
            return await self._executor.execute(request, timeout)

        result = await run_with_retry(
            _attempt,
            self._retry_policy,
            sleep=self._sleep,
            label=self.source_id,
        )
        tally.count += result.attempts
        if not result.outcome.ok or result.outcome.raw is None:
            raise FetchError(result.outcome)
        return result.outcome.raw

    @staticmethod
    def decode_json(raw: RawResponse) -> Any:
        """Decode a JSON body, converting decode errors to :class:`PayloadError`."""
        try:
            return raw.json()
        except ValueError as exc:
            raise PayloadError(f"invalid JSON ({exc})") from exc

    def url(self, path: str) -> str:
        return f"{self._config.base_url.rstrip('/')}/{path.lstrip('/')}"

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _result_for_failure(self, outcome: Outcome, attempts: int) -> SourceResult:
        source_id = self.source_id
        if outcome.error is ErrorKind.AUTH:
            logger.warning("source.credential_rejected", source=source_id, status=outcome.status_code)
            return SourceResult.misconfigured(
                source_id,
                f"credential rejected by upstream (HTTP {outcome.status_code})",
                attempts=attempts,
            )
        if outcome.error is ErrorKind.RATE_LIMITED:
            logger.warning("source.rate_limited", source=source_id, local=False)
            return SourceResult.rate_limited(
                source_id, "upstream rate limit (HTTP 429)", attempts=attempts
            )
        logger.warning(
            "source.unavailable",
            source=source_id,
            attempts=attempts,
            outcome=outcome.describe(),
        )
        return SourceResult.unavailable(source_id, outcome.describe(), attempts=attempts)


# ---------------------------------------------------------------------------
# Paginated adapters
# ---------------------------------------------------------------------------


class PaginatedSourceAdapter(SourceAdapter[QueryT]):
    """Adapter that reads fixed-size pages until a short page or the page cap.

    A failure after at least one successful page ends the loop and the rows
    gathered so far are still returned as a successful result.
    """

    @abc.abstractmethod
    def page_request(self, query: QueryT, page: int) -> TransportRequest:
        """Request for the 0-based *page*."""

    @abc.abstractmethod
    def parse_page(self, raw: RawResponse) -> list[dict[str, Any]]:
        """Rows contained in one page response."""

    @abc.abstractmethod
    def summarize(self, query: QueryT, rows: list[dict[str, Any]], pages: int) -> dict[str, Any]:
        """Normalized payload built from every row fetched."""

    async def collect(self, query: QueryT, tally: AttemptTally) -> dict[str, Any]:
        rows: list[dict[str, Any]] = []
        page_size = self._config.page_size
        pages = 0

        for page in range(self._config.max_pages):
            try:
                raw = await self.fetch(self.page_request(query, page), tally)
                page_rows = self.parse_page(raw)
            except SourceError as exc:
                if pages == 0:
                    raise
                logger.warning(
                    "source.pagination_partial",
                    source=self.source_id,
                    pages=pages,
                    rows=len(rows),
                    error=str(exc),
                )
                break

            pages += 1
            rows.extend(page_rows)
            if len(page_rows) < page_size:
                break

        return self.summarize(query, rows, pages)
