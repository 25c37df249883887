"""Tests for the deterministic scorer and the domain rulebooks."""

from __future__ import annotations

import re
from types import MappingProxyType

import pytest

from civicverify.models import Claim, Location, PolicyArea, SourceResult
from civicverify.services.verification.rules import (
    RULEBOOKS,
    FlagRule,
    Rulebook,
    ScoreRule,
)
from civicverify.services.verification.scorer import Scorer, collect_metrics

_HOUSING_CLAIM = Claim(
    headline="Rent increase forcing eviction",
    body="landlord raised rent $500, we face eviction",
    domain="housing",
    location=Location(zip="48201", state="MI"),
)
_HUD_OK = SourceResult.success("hud", {"median_income": 60000, "fmr_2br": 1200})


@pytest.fixture
def scorer() -> Scorer:
    return Scorer()


# ---------------------------------------------------------------------------
# Gates
# ---------------------------------------------------------------------------


class TestGates:
    def test_relevance_gate(self, scorer: Scorer) -> None:
        claim = Claim(headline="Parking tickets doubled", body="", domain="housing")
        result = scorer.score(claim, [_HUD_OK])
        assert result.confidence == 0
        assert result.verified is True
        assert result.insight_types == ["not_domain_related"]
        assert result.flags == []

    def test_relevance_gate_precedes_availability(self, scorer: Scorer) -> None:
        claim = Claim(headline="Parking tickets doubled", body="", domain="housing")
        result = scorer.score(claim, [SourceResult.unavailable("hud", "down")])
        assert result.confidence == 0
        assert result.insight_types == ["not_domain_related"]

    def test_relevance_is_case_insensitive(self, scorer: Scorer) -> None:
        claim = Claim(headline="LANDLORD won't fix heat", body="", domain="housing")
        assert scorer.score(claim, [_HUD_OK]).confidence > 0

    def test_rate_limited_only(self, scorer: Scorer) -> None:
        result = scorer.score(_HOUSING_CLAIM, [SourceResult.rate_limited("hud", "daily limit")])
        assert result.confidence == 50
        assert result.verified is True
        assert result.insight_types == ["api_unavailable"]

    def test_all_sources_down_mixed_statuses(self, scorer: Scorer) -> None:
        result = scorer.score(
            _HOUSING_CLAIM,
            [
                SourceResult.unavailable("news", "timeout"),
                SourceResult.misconfigured("hud", "API key not configured"),
            ],
        )
        assert result.confidence == 50
        assert result.insight_types == ["source_misconfigured", "api_unavailable"]
        assert result.metrics == {}


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


class TestHousingScenario:
    def test_rent_and_eviction(self, scorer: Scorer) -> None:
        result = scorer.score(_HOUSING_CLAIM, [_HUD_OK])
        assert result.verified is True
        assert result.confidence == 85
        assert result.flags == ["eviction_mentioned"]
        assert "rent_comparison" in result.insight_types
        assert "eviction_context" in result.insight_types
        assert result.metrics == {"median_income": 60000, "fmr_2br": 1200}

    def test_messages_fill_metrics(self, scorer: Scorer) -> None:
        result = scorer.score(_HOUSING_CLAIM, [_HUD_OK])
        rent = next(i for i in result.insights if i.type == "rent_context")
        assert "$1200/month" in rent.message
        comparison = next(i for i in result.insights if i.type == "rent_comparison")
        assert "studio $n/a" in comparison.message

    def test_high_rent_burden(self, scorer: Scorer) -> None:
        hud = SourceResult.success(
            "hud", {"median_income": 48000, "fmr_2br": 1500, "rent_burden_ratio": 125.0}
        )
        result = scorer.score(_HOUSING_CLAIM, [hud])
        assert "affordability_crisis" in result.insight_types
        assert "affordability_concern" not in result.insight_types
        assert result.confidence == 100

    def test_housing_assistance_needs_income_limits(self, scorer: Scorer) -> None:
        claim = Claim(headline="Section 8 voucher waitlist closed", body="", domain="housing")
        without = scorer.score(claim, [_HUD_OK])
        with_limits = scorer.score(
            claim,
            [SourceResult.success("hud", {"fmr_2br": 1200, "very_low_income_limit": 38750})],
        )
        assert "housing_assistance" not in without.insight_types
        assert with_limits.confidence == without.confidence + 10


class TestOtherDomains:
    def test_environment(self, scorer: Scorer) -> None:
        claim = Claim(
            headline="Toxic emissions from the plant",
            body="my kids are sick",
            domain="environment",
        )
        epa = SourceResult.success("epa_envirofacts", {"tri_facility_count": 12})
        result = scorer.score(claim, [epa])
        # 60 base + 15 facilities + 10 toxic + 10 emissions
        assert result.confidence == 95
        assert result.flags == ["health_impact_mentioned"]

    def test_healthcare_location_flag(self, scorer: Scorer) -> None:
        claim = Claim(
            headline="Cancer deaths rising",
            body="",
            domain="healthcare",
            location=Location(zip="48201", state="MI"),
        )
        cdc = SourceResult.success("cdc_wonder", {"national_data_points": 3})
        result = scorer.score(claim, [cdc])
        # 60 base + 15 context + 10 mortality
        assert result.confidence == 85
        assert result.flags == ["cancer_mentioned", "location_specific_claim"]
        assert result.insight_types[0] == "national_data_only"

    def test_employment_trend_flags(self, scorer: Scorer) -> None:
        claim = Claim(
            headline="Prices went up and I lost my job",
            body="we are struggling",
            domain="employment",
        )
        fred = SourceResult.success("fred", {"series_id": "UNRATE", "fred_latest_value": 3.9})
        result = scorer.score(claim, [fred])
        # 65 base + 15 data + 10 prices + 10 job
        assert result.confidence == 100
        assert result.flags == ["economic_increase_claimed", "economic_hardship_mentioned"]

    def test_every_domain_has_a_rulebook(self) -> None:
        assert set(RULEBOOKS) == set(PolicyArea)


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------


class TestScoringProperties:
    def test_deterministic(self, scorer: Scorer) -> None:
        results = [_HUD_OK, SourceResult.success("news", {"news_article_count": 4})]
        first = scorer.score(_HOUSING_CLAIM, results)
        second = scorer.score(_HOUSING_CLAIM, list(results))
        assert first.model_dump_json() == second.model_dump_json()

    def test_arrival_order_does_not_matter(self, scorer: Scorer) -> None:
        news = SourceResult.success("news", {"news_article_count": 4, "fmr_2br": 9999})
        down = SourceResult.unavailable("cdc_wonder", "down")
        a = scorer.score(_HOUSING_CLAIM, [_HUD_OK, news, down])
        b = scorer.score(_HOUSING_CLAIM, [down, news, _HUD_OK])
        assert a.model_dump_json() == b.model_dump_json()
        # hud sorts before news, so its value wins the collision
        assert a.metrics["fmr_2br"] == 1200

    def test_partial_failure_references_failed_source_once(self, scorer: Scorer) -> None:
        results = [
            _HUD_OK,
            SourceResult.unavailable("news", "timed out"),
            SourceResult.success("zillow", {"listing_count": 3}),
        ]
        result = scorer.score(_HOUSING_CLAIM, results)
        assert result.confidence == 85
        mentions = [i for i in result.insights if "news" in i.message]
        assert len(mentions) == 1
        assert result.insights[0].type == "api_unavailable"
        assert result.metrics["listing_count"] == 3

    def test_clamped_once_at_end(self) -> None:
        book = Rulebook(
            domain=PolicyArea.HOUSING,
            relevance_keywords=("rent",),
            base_score=70,
            rules=tuple(
                ScoreRule(insight_type=f"bonus_{i}", bonus=20, message="")
                for i in range(5)
            ),
        )
        scorer = Scorer(MappingProxyType({PolicyArea.HOUSING: book}))
        result = scorer.score(_HOUSING_CLAIM, [_HUD_OK])
        assert result.confidence == 100
        assert len(result.insights) == 5

    def test_negative_bonus_clamped_at_zero(self) -> None:
        book = Rulebook(
            domain=PolicyArea.HOUSING,
            relevance_keywords=("rent",),
            base_score=10,
            rules=(ScoreRule(insight_type="penalty", bonus=-50, message=""),),
        )
        result = Scorer({PolicyArea.HOUSING: book}).score(_HOUSING_CLAIM, [_HUD_OK])
        assert result.confidence == 0

    def test_flags_never_change_score(self) -> None:
        flagged = Rulebook(
            domain=PolicyArea.HOUSING,
            relevance_keywords=("rent",),
            base_score=60,
            flags=(FlagRule(flag="dollar_amount", pattern=re.compile(r"\$\d+")),),
        )
        result = Scorer({PolicyArea.HOUSING: flagged}).score(_HOUSING_CLAIM, [_HUD_OK])
        assert result.flags == ["dollar_amount"]
        assert result.confidence == 60

    def test_missing_rulebook_raises(self) -> None:
        with pytest.raises(ValueError):
            Scorer({}).score(_HOUSING_CLAIM, [_HUD_OK])


class TestCollectMetrics:
    def test_only_scalars_from_ok_results(self) -> None:
        results = [
            SourceResult.success(
                "epa_envirofacts",
                {"tri_facility_count": 3, "facilities": ["A"], "note": None, "ok": True},
            ),
            SourceResult.unavailable("fred", "down"),
        ]
        assert collect_metrics(results) == {"tri_facility_count": 3, "ok": True}

    def test_non_mapping_payload_ignored(self) -> None:
        assert collect_metrics([SourceResult.success("x", [1, 2, 3])]) == {}
