"""Source catalogue: which adapters exist and which domains use them."""

from __future__ import annotations

import asyncio
from types import MappingProxyType
from typing import TYPE_CHECKING, Final

from civicverify.models.enums import PolicyArea
from civicverify.services.rate_limit import WindowPolicy
from civicverify.services.retry import RetryPolicy, SleepFn
from civicverify.services.sources.base import SourceAdapter, SourceConfig
from civicverify.services.sources.cdc_wonder import CdcWonderAdapter
from civicverify.services.sources.epa import EpaEnvirofactsAdapter
from civicverify.services.sources.fred import FredAdapter
from civicverify.services.sources.hud import HudAdapter
from civicverify.services.sources.news import NewsAdapter

if TYPE_CHECKING:
    from collections.abc import Mapping

    from config.settings import Settings
    from civicverify.services.rate_limit import RateLimiter
    from civicverify.services.transport import TransportExecutor

HUD: Final[str] = "hud"
FRED: Final[str] = "fred"
EPA_ENVIROFACTS: Final[str] = "epa_envirofacts"
CDC_WONDER: Final[str] = "cdc_wonder"
NEWS: Final[str] = "news"

ADAPTER_TYPES: Final[Mapping[str, type[SourceAdapter]]] = MappingProxyType({
    HUD: HudAdapter,
    FRED: FredAdapter,
    EPA_ENVIROFACTS: EpaEnvirofactsAdapter,
    CDC_WONDER: CdcWonderAdapter,
    NEWS: NewsAdapter,
})

# Static domain -> sources mapping.  Domains without an entry have no
# applicable data source.
DOMAIN_SOURCES: Final[Mapping[PolicyArea, tuple[str, ...]]] = MappingProxyType({
    PolicyArea.HOUSING: (HUD, NEWS),
    PolicyArea.HEALTHCARE: (CDC_WONDER, NEWS),
    PolicyArea.ENVIRONMENT: (EPA_ENVIROFACTS, NEWS),
    PolicyArea.EMPLOYMENT: (FRED, NEWS),
    PolicyArea.ENERGY: (FRED, NEWS),
    PolicyArea.EDUCATION: (NEWS,),
    PolicyArea.INFRASTRUCTURE: (NEWS,),
})


def sources_for(domain: PolicyArea) -> tuple[str, ...]:
    return DOMAIN_SOURCES.get(domain, ())


def build_source_configs(settings: Settings) -> dict[str, SourceConfig]:
    """Resolve per-source configuration from application settings."""
    return {
        HUD: SourceConfig(
            source_id=HUD,
            base_url=settings.hud_base_url,
            api_key=settings.hud_api_key,
            requires_api_key=True,
            timeout_seconds=settings.hud_timeout,
        ),
        FRED: SourceConfig(
            source_id=FRED,
            base_url=settings.fred_base_url,
            api_key=settings.fred_api_key,
            requires_api_key=True,
            timeout_seconds=settings.fred_timeout,
        ),
        EPA_ENVIROFACTS: SourceConfig(
            source_id=EPA_ENVIROFACTS,
            base_url=settings.epa_base_url,
            timeout_seconds=settings.epa_timeout,
            page_size=settings.epa_page_size,
            max_pages=settings.epa_max_pages,
        ),
        CDC_WONDER: SourceConfig(
            source_id=CDC_WONDER,
            base_url=settings.cdc_wonder_base_url,
            timeout_seconds=settings.cdc_wonder_timeout,
        ),
        NEWS: SourceConfig(
            source_id=NEWS,
            base_url=settings.news_base_url,
            api_key=settings.news_api_key,
            requires_api_key=True,
            timeout_seconds=settings.news_timeout,
            daily_limit=settings.news_daily_limit,
            window=WindowPolicy.CALENDAR_DAY,
            persist_usage=True,
        ),
    }


def build_adapters(
    configs: Mapping[str, SourceConfig],
    executor: TransportExecutor,
    limiter: RateLimiter,
    retry_policy: RetryPolicy | None = None,
    *,
    sleep: SleepFn = asyncio.sleep,
) -> dict[str, SourceAdapter]:
    """Instantiate one adapter per configured source."""
    adapters: dict[str, SourceAdapter] = {}
    for source_id, config in configs.items():
        adapter_type = ADAPTER_TYPES.get(source_id)
        if adapter_type is None:
            raise ValueError(f"No adapter registered for source {source_id!r}")
        adapters[source_id] = adapter_type(
            config, executor, limiter, retry_policy, sleep=sleep
        )
    return adapters
