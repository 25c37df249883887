"""EPA Envirofacts adapter (Toxics Release Inventory facilities).

Envirofacts encodes filters and row ranges as path segments::

    /tri_facility/state_abbr/MI/rows/0:999/JSON

Large states return thousands of rows, so results are paged by row range
and capped at ``max_pages``.  The service is slow (a 15 minute upstream
ceiling), hence the long default timeout.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Any

from civicverify.models.claim import Claim
from civicverify.services.sources.base import (
    MissingInputError,
    PaginatedSourceAdapter,
    PayloadError,
)
from civicverify.services.transport import RawResponse, TransportRequest

_TABLE = "tri_facility"


@dataclass(frozen=True, slots=True)
class EpaQuery:
    field: str
    value: str


class EpaEnvirofactsAdapter(PaginatedSourceAdapter[EpaQuery]):
    """TRI facilities in the claimant's state (or ZIP when the state is unknown)."""

    def build_query(self, claim: Claim) -> EpaQuery:
        if claim.state is not None:
            return EpaQuery(field="state_abbr", value=claim.state)
        if claim.zip_code is not None:
            return EpaQuery(field="zip_code", value=claim.zip_code)
        raise MissingInputError("EPA lookups need a state or ZIP code")

    def page_request(self, query: EpaQuery, page: int) -> TransportRequest:
        start = page * self._config.page_size
        end = start + self._config.page_size - 1
        return TransportRequest(
            method="GET",
            url=self.url(f"{_TABLE}/{query.field}/{query.value}/rows/{start}:{end}/JSON"),
        )

    def parse_page(self, raw: RawResponse) -> list[dict[str, Any]]:
        body = self.decode_json(raw)
        if not isinstance(body, list):
            raise PayloadError("expected a JSON array of facilities")
        return [row for row in body if isinstance(row, dict)]

    def summarize(self, query: EpaQuery, rows: list[dict[str, Any]], pages: int) -> dict[str, Any]:
        cities = Counter(
            str(row.get("city_name")).title()
            for row in rows
            if row.get("city_name")
        )
        return {
            "epa_filter": f"{query.field}={query.value}",
            "tri_facility_count": len(rows),
            "tri_active_facility_count": sum(1 for row in rows if not row.get("fac_closed_ind")),
            "pages_fetched": pages,
            "top_cities": [city for city, _ in cities.most_common(5)],
            "facilities": [
                row.get("facility_name") for row in rows[:10] if row.get("facility_name")
            ],
        }
