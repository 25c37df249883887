"""FRED (Federal Reserve Economic Data) adapter.

Picks one economic series from the claim's wording and reads its most
recent observations.  FRED reports request errors inside a 200/400 JSON
body (``error_code`` / ``error_message``); those are treated as malformed
payloads rather than retried.

API documentation: https://fred.stlouisfed.org/docs/api/fred/
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Final

from civicverify.models.claim import Claim
from civicverify.models.enums import PolicyArea
from civicverify.services.sources.base import AttemptTally, PayloadError, SourceAdapter
from civicverify.services.transport import TransportRequest

_OBSERVATION_LIMIT: Final[int] = 100

# Checked in order; the first matching keyword group picks the series.
_SERIES_BY_KEYWORD: Final[tuple[tuple[tuple[str, ...], str], ...]] = (
    (("mortgage", "interest rate"), "MORTGAGE30US"),
    (("gas", "fuel", "electric", "heating", "energy"), "CPIENGSL"),
    (("unemploy", "job", "laid off", "layoff", "hiring"), "UNRATE"),
)
_DEFAULT_SERIES: Final[dict[PolicyArea, str]] = {
    PolicyArea.ENERGY: "CPIENGSL",
    PolicyArea.EMPLOYMENT: "UNRATE",
}
_FALLBACK_SERIES: Final[str] = "CPIAUCSL"


@dataclass(frozen=True, slots=True)
class FredQuery:
    series_id: str


def select_series(claim: Claim) -> str:
    """FRED series id that best matches the claim text."""
    text = claim.text
    for keywords, series_id in _SERIES_BY_KEYWORD:
        if any(keyword in text for keyword in keywords):
            return series_id
    return _DEFAULT_SERIES.get(claim.domain, _FALLBACK_SERIES)


def _value(observation: dict[str, Any]) -> float | None:
    # Missing observations are reported as ".".
    try:
        return float(observation.get("value", "."))
    except (TypeError, ValueError):
        return None


class FredAdapter(SourceAdapter[FredQuery]):
    """Latest observations for one FRED series."""

    def build_query(self, claim: Claim) -> FredQuery:
        return FredQuery(series_id=select_series(claim))

    async def collect(self, query: FredQuery, tally: AttemptTally) -> dict[str, Any]:
        request = TransportRequest(
            method="GET",
            url=self.url("series/observations"),
            params={
                "series_id": query.series_id,
                "api_key": self._config.api_key or "",
                "file_type": "json",
                "sort_order": "desc",
                "limit": str(_OBSERVATION_LIMIT),
            },
        )
        body = self.decode_json(await self.fetch(request, tally))
        if not isinstance(body, dict):
            raise PayloadError("expected a JSON object")
        if body.get("error_code") or body.get("error_message"):
            raise PayloadError(str(body.get("error_message") or body.get("error_code")))

        observations = [
            obs for obs in body.get("observations") or []
            if isinstance(obs, dict) and _value(obs) is not None
        ]
        if not observations:
            raise PayloadError(f"no observations for {query.series_id}")

        # Sorted newest first.
        latest, earliest = observations[0], observations[-1]
        latest_value = _value(latest)
        earliest_value = _value(earliest)
        payload: dict[str, Any] = {
            "series_id": query.series_id,
            "fred_latest_value": latest_value,
            "fred_latest_date": latest.get("date"),
            "fred_observation_count": len(observations),
        }
        if earliest_value and latest_value is not None and len(observations) > 1:
            payload["fred_change_pct"] = round(
                (latest_value - earliest_value) / abs(earliest_value) * 100, 2
            )
        return payload
