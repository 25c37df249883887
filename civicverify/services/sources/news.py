"""NewsAPI adapter: recent coverage of the claim's policy area.

The free tier allows 100 requests per calendar day, so this source is
registered with a ``calendar_day`` window that is persisted across
restarts.  Searches combine a few policy keywords with the claimant's
city or state when known.

API documentation: https://newsapi.org/docs/endpoints/everything
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Final

from civicverify.models.claim import Claim
from civicverify.models.enums import PolicyArea
from civicverify.services.sources.base import AttemptTally, PayloadError, SourceAdapter
from civicverify.services.transport import TransportRequest

_DAYS_BACK: Final[int] = 30
_PAGE_SIZE: Final[int] = 100
_TERMS_PER_QUERY: Final[int] = 3

POLICY_KEYWORDS: Final[dict[PolicyArea, tuple[str, ...]]] = {
    PolicyArea.EDUCATION: ("Department of Education", "Title I", "Pell Grant", "school choice"),
    PolicyArea.HEALTHCARE: ("Medicaid", "Medicare", "ACA", "health insurance"),
    PolicyArea.EMPLOYMENT: ("federal workforce", "minimum wage", "Department of Labor", "layoffs"),
    PolicyArea.HOUSING: ("HUD", "housing policy", "affordable housing", "rent control"),
    PolicyArea.ENVIRONMENT: ("EPA", "climate regulation", "emissions", "clean water"),
    PolicyArea.ENERGY: ("energy policy", "fossil fuel", "drilling", "utility rates"),
    PolicyArea.IMMIGRATION: ("immigration enforcement", "deportation", "asylum"),
    PolicyArea.INFRASTRUCTURE: ("infrastructure funding", "highway", "public transit"),
    PolicyArea.JUSTICE: ("federal judge", "Supreme Court", "judiciary"),
    PolicyArea.ELECTION: ("election", "voting rights", "ballot"),
}


@dataclass(frozen=True, slots=True)
class NewsQuery:
    q: str
    from_date: str
    locality: str | None


def build_search(claim: Claim, today: datetime | None = None) -> NewsQuery:
    """Keyword query for the claim's domain, narrowed to its locality."""
    terms = POLICY_KEYWORDS.get(claim.domain, (claim.domain.value,))[:_TERMS_PER_QUERY]
    query = " OR ".join(f'"{term}"' for term in terms)

    locality = None
    if claim.location is not None:
        locality = claim.location.city or claim.state
    if locality:
        query = f"({query}) AND ({locality})"

    start = (today or datetime.now(UTC)) - timedelta(days=_DAYS_BACK)
    return NewsQuery(q=query, from_date=start.date().isoformat(), locality=locality)


class NewsAdapter(SourceAdapter[NewsQuery]):
    """Article counts and headlines from NewsAPI ``/everything``."""

    def build_query(self, claim: Claim) -> NewsQuery:
        return build_search(claim)

    async def collect(self, query: NewsQuery, tally: AttemptTally) -> dict[str, Any]:
        request = TransportRequest(
            method="GET",
            url=self.url("everything"),
            params={
                "q": query.q,
                "from": query.from_date,
                "language": "en",
                "sortBy": "relevancy",
                "pageSize": str(_PAGE_SIZE),
            },
            headers={"X-Api-Key": self._config.api_key or ""},
        )
        body = self.decode_json(await self.fetch(request, tally))
        if not isinstance(body, dict):
            raise PayloadError("expected a JSON object")
        if body.get("status") != "ok":
            raise PayloadError(str(body.get("message") or body.get("code") or "status not ok"))

        articles = [a for a in body.get("articles") or [] if isinstance(a, dict)]
        sources = {
            (a.get("source") or {}).get("name")
            for a in articles
            if isinstance(a.get("source"), dict)
        }
        sources.discard(None)

        payload: dict[str, Any] = {
            "news_article_count": int(body.get("totalResults") or len(articles)),
            "news_source_count": len(sources),
            "headlines": [a.get("title") for a in articles[:5] if a.get("title")],
        }
        if query.locality:
            needle = query.locality.lower()
            payload["news_local_count"] = sum(
                1 for a in articles
                if needle in f"{a.get('title') or ''} {a.get('description') or ''}".lower()
            )
        return payload
