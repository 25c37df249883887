"""Per-domain scoring rulebooks.

A rulebook is plain data: the keywords that make a claim relevant to its
domain, a base score, additive score rules, and flag rules.  The
:class:`~civicverify.services.verification.scorer.Scorer` evaluates them
in declaration order, so the order of ``rules`` is the order of the
resulting insights.

Score rules fire only when their text condition holds *and* the metrics
they need were produced by a successful source.  Flag rules look only at
the claim and never change the score.

Message templates use ``str.format_map`` over the metrics; a metric that
is missing renders as ``n/a``.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Final

from civicverify.models.claim import Claim
from civicverify.models.enums import PolicyArea

MetricCheck = Callable[[Mapping[str, Any]], bool]
ClaimCheck = Callable[[Claim], bool]


@dataclass(frozen=True, slots=True)
class ScoreRule:
    """An additive score contribution with the insight that explains it.

    Parameters
    ----------
    insight_type:
        Machine-readable insight identifier.
    bonus:
        Points added when the rule fires (``0`` for context-only insights).
    message:
        Insight text; ``{metric}`` placeholders are filled from metrics.
    keywords:
        Any of these must appear in the lower-cased claim text.  Empty
        means no keyword condition.
    pattern:
        Optional regex that must match the lower-cased claim text.
    requires:
        Metric names that must be present.
    check:
        Optional predicate over the metrics, evaluated after ``requires``.
    """

    insight_type: str
    bonus: int
    message: str
    keywords: tuple[str, ...] = ()
    pattern: re.Pattern[str] | None = None
    requires: tuple[str, ...] = ()
    check: MetricCheck | None = None

    def matches_text(self, text: str) -> bool:
        if self.keywords and not any(keyword in text for keyword in self.keywords):
            return False
        if self.pattern is not None and self.pattern.search(text) is None:
            return False
        return True

    def matches_data(self, metrics: Mapping[str, Any]) -> bool:
        if any(name not in metrics for name in self.requires):
            return False
        return self.check is None or bool(self.check(metrics))


@dataclass(frozen=True, slots=True)
class FlagRule:
    """A machine-checkable concern raised from the claim alone."""

    flag: str
    keywords: tuple[str, ...] = ()
    pattern: re.Pattern[str] | None = None
    when: ClaimCheck | None = None
    insight_type: str | None = None
    message: str = ""

    def matches(self, claim: Claim) -> bool:
        text = claim.text
        if self.keywords and not any(keyword in text for keyword in self.keywords):
            return False
        if self.pattern is not None and self.pattern.search(text) is None:
            return False
        return self.when is None or self.when(claim)


@dataclass(frozen=True, slots=True)
class Rulebook:
    domain: PolicyArea
    relevance_keywords: tuple[str, ...]
    base_score: int
    rules: tuple[ScoreRule, ...] = ()
    flags: tuple[FlagRule, ...] = ()

    def is_relevant(self, text: str) -> bool:
        return any(keyword in text for keyword in self.relevance_keywords)


# ---------------------------------------------------------------------------
# Shared rules
# ---------------------------------------------------------------------------


def _positive(name: str) -> MetricCheck:
    return lambda metrics: _as_float(metrics.get(name)) > 0


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


_NEWS_RULES: Final[tuple[ScoreRule, ...]] = (
    ScoreRule(
        insight_type="news_coverage",
        bonus=5,
        message="{news_article_count} recent news articles cover this policy area",
        requires=("news_article_count",),
        check=_positive("news_article_count"),
    ),
    ScoreRule(
        insight_type="local_news_coverage",
        bonus=5,
        message="{news_local_count} recent articles mention the claimant's area",
        requires=("news_local_count",),
        check=_positive("news_local_count"),
    ),
)

_COST_PATTERN: Final[re.Pattern[str]] = re.compile(r"\$[\d,]+")

_ECONOMIC_FLAGS: Final[tuple[FlagRule, ...]] = (
    FlagRule(
        flag="economic_increase_claimed",
        pattern=re.compile(r"\b(increas\w*|rising|rose|higher|up)\b"),
        insight_type="trend_claim",
        message="Claim describes an increase; requires trend analysis",
    ),
    FlagRule(
        flag="economic_decrease_claimed",
        pattern=re.compile(r"\b(decreas\w*|falling|fell|lower|down)\b"),
        insight_type="trend_claim",
        message="Claim describes a decrease; requires trend analysis",
    ),
    FlagRule(
        flag="economic_hardship_mentioned",
        keywords=("struggling", "hardship", "difficult", "cannot afford", "can't afford"),
        insight_type="hardship_concern",
        message="Claim mentions economic hardship",
    ),
)

_ECONOMIC_RULES: Final[tuple[ScoreRule, ...]] = (
    ScoreRule(
        insight_type="economic_data_available",
        bonus=15,
        message="FRED series {series_id} latest value {fred_latest_value} ({fred_latest_date})",
        requires=("fred_latest_value",),
    ),
    ScoreRule(
        insight_type="inflation_mention",
        bonus=10,
        message="Claim mentions prices; comparable with FRED price indexes",
        keywords=("inflation", "price"),
        requires=("fred_latest_value",),
    ),
    ScoreRule(
        insight_type="employment_mention",
        bonus=10,
        message="Claim mentions jobs; comparable with FRED labor data",
        keywords=("unemployment", "job"),
        requires=("fred_latest_value",),
    ),
    ScoreRule(
        insight_type="interest_rate_mention",
        bonus=5,
        message="Claim mentions interest rates; comparable with FRED rate data",
        keywords=("interest rate", "mortgage"),
        requires=("fred_latest_value",),
    ),
)

_ECONOMIC_KEYWORDS: Final[tuple[str, ...]] = (
    "inflation", "unemployment", "interest rate", "federal reserve", "economy",
    "recession", "gdp", "job", "employment", "mortgage", "cost of living",
    "price", "wages", "laid off", "layoff", "hiring",
)


def _has_regional_location(claim: Claim) -> bool:
    location = claim.location
    return location is not None and bool(location.state or location.county)


# ---------------------------------------------------------------------------
# Rulebooks
# ---------------------------------------------------------------------------

HOUSING: Final[Rulebook] = Rulebook(
    domain=PolicyArea.HOUSING,
    relevance_keywords=(
        "rent", "housing", "apartment", "evict", "afford", "homeless",
        "section 8", "public housing", "landlord", "lease",
    ),
    base_score=70,
    rules=(
        ScoreRule(
            insight_type="state_housing_context",
            bonus=0,
            message="Area median income is ${median_income}/year",
            requires=("median_income",),
        ),
        ScoreRule(
            insight_type="rent_context",
            bonus=0,
            message="Fair Market Rent (2BR) is ${fmr_2br}/month",
            requires=("fmr_2br",),
        ),
        ScoreRule(
            insight_type="affordability_crisis",
            bonus=15,
            message="Housing cost burden is high ({rent_burden_ratio}% of affordable rent)",
            requires=("rent_burden_ratio",),
            check=lambda m: _as_float(m["rent_burden_ratio"]) > 100,
        ),
        ScoreRule(
            insight_type="affordability_concern",
            bonus=10,
            message="Housing cost burden is moderate ({rent_burden_ratio}% of affordable rent)",
            requires=("rent_burden_ratio",),
            check=lambda m: 80 < _as_float(m["rent_burden_ratio"]) <= 100,
        ),
        ScoreRule(
            insight_type="rent_comparison",
            bonus=10,
            message=(
                "Claim cites specific costs; Fair Market Rents: studio ${fmr_studio}, "
                "1BR ${fmr_1br}, 2BR ${fmr_2br}, 3BR ${fmr_3br}"
            ),
            pattern=_COST_PATTERN,
            requires=("fmr_2br",),
        ),
        ScoreRule(
            insight_type="eviction_context",
            bonus=5,
            message="Claim mentions eviction, a critical housing instability indicator",
            keywords=("evict",),
            requires=("fmr_2br",),
        ),
        ScoreRule(
            insight_type="housing_assistance",
            bonus=10,
            message="Claim mentions housing assistance; very low income limit is ${very_low_income_limit}/year",
            keywords=("section 8", "housing assistance", "voucher"),
            requires=("very_low_income_limit",),
        ),
        *_NEWS_RULES,
    ),
    flags=(FlagRule(flag="eviction_mentioned", keywords=("evict",)),),
)

EMPLOYMENT: Final[Rulebook] = Rulebook(
    domain=PolicyArea.EMPLOYMENT,
    relevance_keywords=_ECONOMIC_KEYWORDS,
    base_score=65,
    rules=(*_ECONOMIC_RULES, *_NEWS_RULES),
    flags=_ECONOMIC_FLAGS,
)

ENERGY: Final[Rulebook] = Rulebook(
    domain=PolicyArea.ENERGY,
    relevance_keywords=(
        *_ECONOMIC_KEYWORDS, "energy", "gas", "electric", "utility", "utilities",
        "fuel", "heating", "oil",
    ),
    base_score=65,
    rules=(*_ECONOMIC_RULES, *_NEWS_RULES),
    flags=_ECONOMIC_FLAGS,
)

ENVIRONMENT: Final[Rulebook] = Rulebook(
    domain=PolicyArea.ENVIRONMENT,
    relevance_keywords=(
        "pollution", "toxic", "chemical", "hazardous", "waste", "air quality",
        "water quality", "emissions", "contamination", "environmental", "epa",
    ),
    base_score=60,
    rules=(
        ScoreRule(
            insight_type="facilities_found",
            bonus=15,
            message="Found {tri_facility_count} EPA-tracked facilities in the area",
            requires=("tri_facility_count",),
            check=_positive("tri_facility_count"),
        ),
        ScoreRule(
            insight_type="toxic_mention",
            bonus=10,
            message="Claim mentions toxic substances; comparable with Toxics Release Inventory data",
            keywords=("toxic", "hazardous"),
            requires=("tri_facility_count",),
        ),
        ScoreRule(
            insight_type="air_quality_mention",
            bonus=10,
            message="Claim mentions air quality or emissions",
            keywords=("air quality", "emissions"),
            requires=("tri_facility_count",),
        ),
        ScoreRule(
            insight_type="water_quality_mention",
            bonus=10,
            message="Claim mentions water quality",
            keywords=("water",),
            requires=("tri_facility_count",),
        ),
        *_NEWS_RULES,
    ),
    flags=(
        FlagRule(
            flag="health_impact_mentioned",
            keywords=("cancer", "illness", "health", "sick"),
            insight_type="health_concern",
            message="Claim mentions health impacts",
        ),
    ),
)

_CAUSES_OF_DEATH: Final[tuple[str, ...]] = (
    "cancer", "heart disease", "diabetes", "stroke", "alzheimer", "overdose",
)

HEALTHCARE: Final[Rulebook] = Rulebook(
    domain=PolicyArea.HEALTHCARE,
    relevance_keywords=(
        "death", "mortality", "disease", "illness", "health", "cancer", "heart",
        "diabetes", "covid", "birth", "infant", "medical", "medicaid", "medicare",
        "hospital",
    ),
    base_score=60,
    rules=(
        ScoreRule(
            insight_type="national_data_only",
            bonus=0,
            message="CDC WONDER provides national-level data only",
            requires=("national_data_points",),
        ),
        ScoreRule(
            insight_type="national_context",
            bonus=15,
            message="Found {national_data_points} national-level data points for context",
            requires=("national_data_points",),
            check=_positive("national_data_points"),
        ),
        ScoreRule(
            insight_type="mortality_mention",
            bonus=10,
            message="Claim mentions mortality; comparable with national CDC data",
            keywords=("death", "mortality"),
            requires=("national_data_points",),
        ),
        ScoreRule(
            insight_type="natality_mention",
            bonus=10,
            message="Claim mentions births or infants",
            keywords=("birth", "infant"),
            requires=("national_data_points",),
        ),
        ScoreRule(
            insight_type="covid_mention",
            bonus=10,
            message="Claim mentions COVID-19",
            keywords=("covid", "pandemic"),
            requires=("national_data_points",),
        ),
        *_NEWS_RULES,
    ),
    flags=(
        *(
            FlagRule(
                flag=f"{cause.replace(' ', '_')}_mentioned",
                keywords=(cause,),
                insight_type="cause_specific",
                message=f"Claim mentions {cause}; comparable with CDC cause-of-death data",
            )
            for cause in _CAUSES_OF_DEATH
        ),
        FlagRule(
            flag="location_specific_claim",
            when=_has_regional_location,
            insight_type="location_limitation",
            message="Claim is location-specific but CDC WONDER data is national only",
        ),
    ),
)

EDUCATION: Final[Rulebook] = Rulebook(
    domain=PolicyArea.EDUCATION,
    relevance_keywords=(
        "school", "teacher", "student", "education", "college", "tuition",
        "pell", "title i", "classroom", "university",
    ),
    base_score=60,
    rules=_NEWS_RULES,
)

INFRASTRUCTURE: Final[Rulebook] = Rulebook(
    domain=PolicyArea.INFRASTRUCTURE,
    relevance_keywords=(
        "road", "bridge", "highway", "transit", "bus", "train", "broadband",
        "infrastructure", "pothole", "water main",
    ),
    base_score=60,
    rules=_NEWS_RULES,
)

IMMIGRATION: Final[Rulebook] = Rulebook(
    domain=PolicyArea.IMMIGRATION,
    relevance_keywords=(
        "immigra", "visa", "deport", "asylum", "border", "citizenship",
        "green card", "migrant",
    ),
    base_score=60,
    rules=_NEWS_RULES,
)

JUSTICE: Final[Rulebook] = Rulebook(
    domain=PolicyArea.JUSTICE,
    relevance_keywords=(
        "court", "judge", "police", "prison", "jail", "sentence", "crime",
        "arrest", "lawyer", "justice",
    ),
    base_score=60,
    rules=_NEWS_RULES,
)

ELECTION: Final[Rulebook] = Rulebook(
    domain=PolicyArea.ELECTION,
    relevance_keywords=(
        "vote", "voting", "ballot", "election", "polling", "voter", "candidate",
    ),
    base_score=60,
    rules=_NEWS_RULES,
)

RULEBOOKS: Final[Mapping[PolicyArea, Rulebook]] = MappingProxyType({
    book.domain: book
    for book in (
        HOUSING, EMPLOYMENT, ENERGY, ENVIRONMENT, HEALTHCARE,
        EDUCATION, INFRASTRUCTURE, IMMIGRATION, JUSTICE, ELECTION,
    )
})
