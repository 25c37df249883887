"""HUD (Housing and Urban Development) adapter.

Pulls Fair Market Rents for the claimant's ZIP code and, when the state is
known, the state-wide income limits, then derives a rent-burden ratio:
the 2-bedroom Fair Market Rent as a percentage of what a median-income
household can afford at 30% of income.

API documentation: https://www.huduser.gov/portal/dataset/fmr-api.html
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Final

import structlog

from civicverify.models.claim import Claim
from civicverify.services.sources.base import (
    AttemptTally,
    MissingInputError,
    PayloadError,
    SourceAdapter,
    SourceError,
)
from civicverify.services.transport import RawResponse, TransportRequest

logger = structlog.get_logger(__name__)

# HUD affordability standard: housing should cost at most 30% of income.
_AFFORDABLE_SHARE: Final[float] = 0.30

_FMR_FIELDS: Final[dict[str, str]] = {
    "fmr_0": "fmr_studio",
    "fmr_1": "fmr_1br",
    "fmr_2": "fmr_2br",
    "fmr_3": "fmr_3br",
    "fmr_4": "fmr_4br",
}


@dataclass(frozen=True, slots=True)
class HudQuery:
    zip_code: str
    state: str | None


def _first_result(body: Any) -> dict[str, Any]:
    """HUD wraps records as ``{"data": {"results": [...]}}`` or ``{"data": {...}}``."""
    if not isinstance(body, dict):
        raise PayloadError("expected a JSON object")
    data = body.get("data", body)
    if isinstance(data, dict):
        results = data.get("basicdata", data.get("results"))
        if isinstance(results, list):
            if not results:
                raise PayloadError("no records returned")
            data = results[0]
        elif isinstance(results, dict):
            data = results
    if not isinstance(data, dict):
        raise PayloadError("unexpected record shape")
    return data


def _to_number(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(str(value).replace(",", ""))
    except ValueError:
        return None


def rent_burden_ratio(fmr_2br: float, median_income: float) -> float | None:
    """2BR Fair Market Rent as a percentage of the affordable monthly rent."""
    affordable = median_income / 12 * _AFFORDABLE_SHARE
    if affordable <= 0:
        return None
    return round(fmr_2br / affordable * 100, 1)


class HudAdapter(SourceAdapter[HudQuery]):
    """Fair Market Rents and income limits from the HUD User API."""

    def build_query(self, claim: Claim) -> HudQuery:
        if claim.zip_code is None:
            raise MissingInputError("HUD lookups need the claimant's ZIP code")
        return HudQuery(zip_code=claim.zip_code, state=claim.state)

    async def collect(self, query: HudQuery, tally: AttemptTally) -> dict[str, Any]:
        fmr_raw = await self.fetch(self._request(f"fmr/data/{query.zip_code}"), tally)
        payload = self._parse_fmr(fmr_raw)
        payload["zip"] = query.zip_code

        if query.state is not None:
            payload.update(await self._income_limits(query.state, tally))

        fmr_2br = payload.get("fmr_2br")
        median = payload.get("median_income")
        if fmr_2br is not None and median:
            payload["affordable_rent"] = round(median / 12 * _AFFORDABLE_SHARE, 2)
            payload["rent_burden_ratio"] = rent_burden_ratio(fmr_2br, median)
        return payload

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _request(self, path: str) -> TransportRequest:
        return TransportRequest(
            method="GET",
            url=self.url(path),
            headers={"Authorization": f"Bearer {self._config.api_key}"},
        )

    def _parse_fmr(self, raw: RawResponse) -> dict[str, Any]:
        record = _first_result(self.decode_json(raw))
        rates = {
            name: _to_number(record.get(field))
            for field, name in _FMR_FIELDS.items()
        }
        # The ZIP-level endpoint reports "Two-Bedroom" style keys instead.
        if rates["fmr_2br"] is None:
            rates["fmr_2br"] = _to_number(record.get("Two-Bedroom"))
        if rates["fmr_2br"] is None:
            raise PayloadError("Fair Market Rent record has no 2-bedroom rate")
        payload: dict[str, Any] = {k: v for k, v in rates.items() if v is not None}
        payload["area_name"] = record.get("area_name") or record.get("metro_name") or ""
        return payload

    async def _income_limits(self, state: str, tally: AttemptTally) -> dict[str, Any]:
        """State income limits, or an empty dict when HUD cannot supply them."""
        try:
            raw = await self.fetch(self._request(f"il/statedata/{state}"), tally)
            return self._parse_income_limits(raw)
        except SourceError as exc:
            logger.warning("hud.income_limits_unavailable", state=state, error=str(exc))
            return {}

    def _parse_income_limits(self, raw: RawResponse) -> dict[str, Any]:
        record = _first_result(self.decode_json(raw))
        median = _to_number(record.get("median_income", record.get("median_4")))
        very_low = record.get("very_low", {})
        low = record.get("low", {})
        very_low_4 = _to_number(very_low.get("il50_p4") if isinstance(very_low, dict) else None)
        low_4 = _to_number(low.get("il80_p4") if isinstance(low, dict) else None)
        if very_low_4 is None:
            very_low_4 = _to_number(record.get("l50_4"))
        if low_4 is None:
            low_4 = _to_number(record.get("l80_4"))

        if median is None:
            logger.warning("hud.income_limits_missing_median", keys=sorted(record)[:10])
            return {}
        limits: dict[str, Any] = {"median_income": median}
        if very_low_4 is not None:
            limits["very_low_income_limit"] = very_low_4
        if low_4 is not None:
            limits["low_income_limit"] = low_4
        return limits
