"""Application wiring for the claim verification core.

Builds the shared transport executor, rate limiter and source adapters
from :mod:`config.settings` and hands back a ready
:class:`ClaimVerificationEngine`.  Callers (the web layer, the scheduled
story job) use :func:`lifespan` so the HTTP connection pool is closed on
shutdown::

    async with lifespan() as app:
        result = await app.engine.verify(claim)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx
import structlog

from civicverify.services.rate_limit import Clock, RateLimiter, RateUsageStore
from civicverify.services.retry import RetryPolicy, SleepFn
from civicverify.services.sources.base import SourceAdapter
from civicverify.services.sources.registry import build_adapters, build_source_configs
from civicverify.services.transport import TransportExecutor
from civicverify.services.verification.engine import ClaimVerificationEngine
from config.settings import Settings
from config.settings import settings as default_settings

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Logging configuration
# ---------------------------------------------------------------------------


def configure_logging(settings: Settings = default_settings) -> None:
    """Set up structlog with JSON or console rendering based on settings."""
    level = logging.getLevelNamesMapping()[settings.log_level.upper()]
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        # Cached loggers ignore later reconfiguration.
        cache_logger_on_first_use=settings.is_production,
    )


# ---------------------------------------------------------------------------
# Application assembly
# ---------------------------------------------------------------------------


@dataclass
class VerificationApp:
    engine: ClaimVerificationEngine
    executor: TransportExecutor
    limiter: RateLimiter
    adapters: dict[str, SourceAdapter]

    async def close(self) -> None:
        await self.executor.close()


def build_app(
    settings: Settings = default_settings,
    *,
    client: httpx.AsyncClient | None = None,
    clock: Clock | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> VerificationApp:
    """Assemble the engine and its collaborators from *settings*.

    Parameters
    ----------
    client:
        Optional HTTP client for the transport executor (tests pass one
        backed by ``httpx.MockTransport``).
    clock:
        Optional clock for the rate limiter.
    sleep:
        Awaitable sleep used between retries.
    """
    executor = TransportExecutor(client)
    store = RateUsageStore(settings.rate_state_path)
    limiter = RateLimiter(clock, store) if clock is not None else RateLimiter(store=store)
    retry_policy = RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        base_delay=settings.retry_base_delay,
    )
    adapters = build_adapters(
        build_source_configs(settings),
        executor,
        limiter,
        retry_policy,
        sleep=sleep,
    )
    engine = ClaimVerificationEngine(
        adapters,
        deadline_seconds=settings.verification_deadline_seconds,
    )

    misconfigured = sorted(
        source_id for source_id, adapter in adapters.items()
        if adapter.config.requires_api_key and not adapter.config.has_credential
    )
    if misconfigured:
        logger.warning("app.sources_missing_credentials", sources=misconfigured)

    logger.info(
        "app.engine_ready",
        env=settings.env,
        sources=sorted(adapters),
        max_attempts=retry_policy.max_attempts,
    )
    return VerificationApp(engine=engine, executor=executor, limiter=limiter, adapters=adapters)


@asynccontextmanager
async def lifespan(
    settings: Settings = default_settings,
    *,
    client: httpx.AsyncClient | None = None,
) -> AsyncIterator[VerificationApp]:
    """Configure logging, build the app, and close the HTTP pool on exit."""
    configure_logging(settings)
    app = build_app(settings, client=client)
    logger.info("app.startup", env=settings.env)
    try:
        yield app
    finally:
        await app.close()
        logger.info("app.shutdown")
