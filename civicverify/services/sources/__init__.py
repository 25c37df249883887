"""External data source adapters.

Each adapter queries one government or news API and normalizes the
outcome into a :class:`~civicverify.models.SourceResult`:

  - HUD User (huduser.gov) -- Fair Market Rents and income limits
  - FRED (stlouisfed.org) -- economic time series
  - EPA Envirofacts (data.epa.gov) -- Toxics Release Inventory facilities
  - CDC WONDER (wonder.cdc.gov) -- national mortality statistics
  - NewsAPI (newsapi.org) -- recent coverage of the policy area

Public API::

    from civicverify.services.sources import SourceAdapter, build_adapters
"""

from __future__ import annotations

from civicverify.services.sources.base import (
    PaginatedSourceAdapter,
    SourceAdapter,
    SourceConfig,
)
from civicverify.services.sources.registry import (
    DOMAIN_SOURCES,
    build_adapters,
    build_source_configs,
    sources_for,
)

__all__ = [
    "DOMAIN_SOURCES",
    "PaginatedSourceAdapter",
    "SourceAdapter",
    "SourceConfig",
    "build_adapters",
    "build_source_configs",
    "sources_for",
]
