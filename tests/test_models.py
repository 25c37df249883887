"""Tests for the claim and verification data models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from civicverify.models import (
    Claim,
    Insight,
    Location,
    PolicyArea,
    SourceResult,
    SourceStatus,
    VerificationResult,
)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class TestPolicyArea:
    def test_closed_set(self) -> None:
        assert {area.value for area in PolicyArea} == {
            "education",
            "healthcare",
            "employment",
            "housing",
            "environment",
            "energy",
            "immigration",
            "infrastructure",
            "justice",
            "election",
        }

    def test_unknown_value_raises(self) -> None:
        with pytest.raises(ValueError):
            PolicyArea("astrology")

    def test_string_compatible(self) -> None:
        assert PolicyArea.HOUSING == "housing"


# ---------------------------------------------------------------------------
# Claim
# ---------------------------------------------------------------------------


class TestClaim:
    def test_text_is_lowercased_headline_and_body(self) -> None:
        claim = Claim(headline="Rent UP", body="Landlord Raised It", domain="housing")
        assert claim.text == "rent up landlord raised it"

    def test_domain_coerced_to_enum(self) -> None:
        claim = Claim(headline="x", domain="energy")
        assert claim.domain is PolicyArea.ENERGY

    def test_empty_headline_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Claim(headline="", domain="housing")

    def test_unknown_domain_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Claim(headline="x", domain="astrology")

    def test_location_accessors(self) -> None:
        claim = Claim(
            headline="x",
            domain="housing",
            location=Location(zip="48201", city="Detroit", state="mi"),
        )
        assert claim.state == "MI"
        assert claim.zip_code == "48201"

    def test_location_optional(self) -> None:
        claim = Claim(headline="x", domain="housing")
        assert claim.location is None
        assert claim.state is None
        assert claim.zip_code is None

    def test_invalid_state_length_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Location(zip="48201", state="Michigan")

    def test_frozen(self) -> None:
        claim = Claim(headline="x", domain="housing")
        with pytest.raises(ValidationError):
            claim.headline = "y"  # type: ignore[misc]


# ---------------------------------------------------------------------------
# SourceResult
# ---------------------------------------------------------------------------


class TestSourceResult:
    def test_success(self) -> None:
        result = SourceResult.success("hud", {"fmr_2br": 1200}, attempts=1)
        assert result.ok
        assert result.status is SourceStatus.OK
        assert result.error_message is None
        assert result.retrieved_at.tzinfo is not None

    @pytest.mark.parametrize(
        "factory, status",
        [
            (SourceResult.unavailable, SourceStatus.UNAVAILABLE),
            (SourceResult.rate_limited, SourceStatus.RATE_LIMITED),
            (SourceResult.misconfigured, SourceStatus.MISCONFIGURED),
        ],
    )
    def test_failure_constructors(self, factory, status) -> None:
        result = factory("news", "boom")
        assert result.status is status
        assert not result.ok
        assert result.payload is None
        assert result.error_message == "boom"

    def test_failure_without_message_rejected(self) -> None:
        with pytest.raises(ValidationError):
            SourceResult(source_id="hud", status=SourceStatus.UNAVAILABLE)

    def test_failure_with_payload_rejected(self) -> None:
        with pytest.raises(ValidationError):
            SourceResult(
                source_id="hud",
                status=SourceStatus.RATE_LIMITED,
                payload={"x": 1},
                error_message="limit",
            )

    def test_ok_with_error_message_rejected(self) -> None:
        with pytest.raises(ValidationError):
            SourceResult(source_id="hud", status=SourceStatus.OK, error_message="nope")

    def test_negative_attempts_rejected(self) -> None:
        with pytest.raises(ValidationError):
            SourceResult.unavailable("hud", "down", attempts=-1)


# ---------------------------------------------------------------------------
# VerificationResult
# ---------------------------------------------------------------------------


class TestVerificationResult:
    def test_confidence_bounds(self) -> None:
        with pytest.raises(ValidationError):
            VerificationResult(confidence=101)
        with pytest.raises(ValidationError):
            VerificationResult(confidence=-1)

    def test_to_dict_is_json_ready(self) -> None:
        result = VerificationResult(
            confidence=85,
            flags=["eviction_mentioned"],
            insights=[Insight(type="rent_comparison", message="m")],
            metrics={"fmr_2br": 1200},
        )
        assert result.to_dict() == {
            "confidence": 85,
            "verified": True,
            "flags": ["eviction_mentioned"],
            "insights": [{"type": "rent_comparison", "message": "m"}],
            "metrics": {"fmr_2br": 1200},
        }

    def test_insight_types(self) -> None:
        result = VerificationResult(
            confidence=50,
            insights=[Insight(type="a"), Insight(type="b")],
        )
        assert result.insight_types == ["a", "b"]
