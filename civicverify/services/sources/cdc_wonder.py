"""CDC WONDER adapter (Detailed Mortality database, national level).

WONDER takes a form-encoded POST whose ``request_xml`` field is a list of
``<parameter><name/><value/></parameter>`` entries, and answers with a
``<data-table>`` of ``<r>`` rows made of ``<c>`` cells.  The first row
carries column labels in ``l`` attributes; data rows carry values in ``v``
(or ``l`` for label cells), aligned with the header by position.

The public API only serves national figures, so the payload says nothing
about the claimant's location.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Final

from bs4 import BeautifulSoup
from lxml import etree

from civicverify.models.claim import Claim
from civicverify.services.sources.base import AttemptTally, PayloadError, SourceAdapter
from civicverify.services.transport import RawResponse, TransportRequest

DATABASE: Final[str] = "D76"
_YEAR_START: Final[str] = "2018"
_YEAR_END: Final[str] = "2020"


@dataclass(frozen=True, slots=True)
class WonderQuery:
    database: str
    parameters: tuple[tuple[str, tuple[str, ...]], ...]


def build_request_xml(parameters: tuple[tuple[str, tuple[str, ...]], ...]) -> str:
    root = etree.Element("request-parameters")
    for name, values in parameters:
        param = etree.SubElement(root, "parameter")
        etree.SubElement(param, "name").text = name
        for value in values:
            etree.SubElement(param, "value").text = value
    return etree.tostring(root, encoding="unicode")


def parse_data_table(text: str) -> list[dict[str, str]]:
    """Rows of a WONDER ``<data-table>`` keyed by the header row's labels."""
    soup = BeautifulSoup(text, "xml")
    table = soup.find("data-table")
    if table is None:
        raise PayloadError("response has no data-table")

    headers: list[str] = []
    rows: list[dict[str, str]] = []
    for index, row in enumerate(table.find_all("r", recursive=False)):
        cells = row.find_all("c", recursive=False)
        if not cells:
            continue
        if index == 0:
            headers = [cell.get("l") or cell.get_text(strip=True) for cell in cells]
            continue
        record: dict[str, str] = {}
        for position, cell in enumerate(cells):
            column = headers[position] if position < len(headers) else f"col_{position}"
            record[column] = cell.get("v") or cell.get("l") or cell.get_text(strip=True)
        rows.append(record)
    return rows


def _number(value: str) -> float | None:
    try:
        return float(value.replace(",", ""))
    except (AttributeError, ValueError):
        return None


class CdcWonderAdapter(SourceAdapter[WonderQuery]):
    """Yearly national death counts and crude rates."""

    def build_query(self, claim: Claim) -> WonderQuery:
        return WonderQuery(
            database=DATABASE,
            parameters=(
                ("B_1", ("D76.V1",)),
                ("M_1", ("D76.M1",)),
                ("M_2", ("D76.M2",)),
                ("M_3", ("D76.M3",)),
                ("F_D76.V1", tuple(str(y) for y in range(int(_YEAR_START), int(_YEAR_END) + 1))),
                ("F_D76.V9", ("*All*",)),
                ("I_D76.V9", ("*All*",)),
                ("O_precision", ("1",)),
                ("O_rate_per", ("100000",)),
                ("O_show_totals", ("false",)),
                ("O_timeout", ("300",)),
            ),
        )

    async def collect(self, query: WonderQuery, tally: AttemptTally) -> dict[str, Any]:
        request = TransportRequest(
            method="POST",
            url=self.url(query.database),
            data={
                "request_xml": build_request_xml(query.parameters),
                "accept_datause_restrictions": "true",
            },
        )
        raw = await self.fetch(request, tally)
        return self._summarize(self._parse(raw))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _parse(raw: RawResponse) -> list[dict[str, str]]:
        if not raw.text.strip():
            raise PayloadError("empty response body")
        return parse_data_table(raw.text)

    @staticmethod
    def _summarize(rows: list[dict[str, str]]) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "cdc_database": DATABASE,
            "cdc_year_range": f"{_YEAR_START}-{_YEAR_END}",
            "national_data_points": len(rows),
            "data_level": "national",
            "rows": rows,
        }
        deaths = [
            n for n in (_number(row.get("Deaths", "")) for row in rows) if n is not None
        ]
        if deaths:
            payload["national_deaths_total"] = int(sum(deaths))
        return payload
