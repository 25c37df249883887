"""Deterministic confidence scoring for a claim and its source results.

Scoring pipeline
----------------
1. **Relevance gate** -- no domain keyword in ``headline + " " + body``
   yields ``confidence = 0`` and a single ``not_domain_related`` insight.
2. **Availability gate** -- when no source answered successfully the
   result is ``confidence = 50`` ("could not verify either way") with one
   insight per source.
3. **Base score** from the domain rulebook.
4. **Score rules** in declaration order; each needs its text condition and
   its metrics.
5. **Flag rules**; flags never move the score.
6. **Clamp** to ``[0, 100]``, once.

Results are processed in ``source_id`` order, so the order in which
adapters finished never changes the outcome.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Final

from civicverify.models.claim import Claim
from civicverify.models.enums import PolicyArea, SourceStatus
from civicverify.models.verification import Insight, SourceResult, VerificationResult
from civicverify.services.verification.rules import RULEBOOKS, Rulebook, ScoreRule

MIN_CONFIDENCE: Final[int] = 0
MAX_CONFIDENCE: Final[int] = 100
UNVERIFIABLE_CONFIDENCE: Final[int] = 50

_SCALAR_TYPES: Final[tuple[type, ...]] = (str, int, float, bool)


class _MetricView(dict):
    """``format_map`` mapping that renders missing metrics as ``n/a``."""

    def __missing__(self, key: str) -> str:
        return "n/a"


def _display(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def collect_metrics(results: Sequence[SourceResult]) -> dict[str, Any]:
    """Scalar top-level payload values of ``ok`` results.

    *results* must already be in ``source_id`` order; on a key collision
    the first source wins.
    """
    metrics: dict[str, Any] = {}
    for result in results:
        if not result.ok or not isinstance(result.payload, Mapping):
            continue
        for key, value in result.payload.items():
            if key in metrics or value is None:
                continue
            if isinstance(value, _SCALAR_TYPES):
                metrics[key] = value
    return metrics


def unavailability_insight(result: SourceResult) -> Insight:
    if result.status is SourceStatus.MISCONFIGURED:
        return Insight(
            type="source_misconfigured",
            message=f"{result.source_id}: {result.error_message}",
        )
    return Insight(
        type="api_unavailable",
        message=f"{result.source_id}: {result.error_message}",
    )


class Scorer:
    """Applies domain rulebooks to source results.

    Parameters
    ----------
    rulebooks:
        Rulebook per policy area.  Defaults to the built-in set.
    """

    def __init__(self, rulebooks: Mapping[PolicyArea, Rulebook] | None = None) -> None:
        self._rulebooks = rulebooks if rulebooks is not None else RULEBOOKS

    def rulebook(self, domain: PolicyArea) -> Rulebook:
        try:
            return self._rulebooks[domain]
        except KeyError:
            raise ValueError(f"No rulebook for domain {domain!r}") from None

    def score(self, claim: Claim, results: Sequence[SourceResult]) -> VerificationResult:
        """Score *claim* against *results*.  Pure: no I/O, no clock."""
        book = self.rulebook(claim.domain)
        text = claim.text

        if not book.is_relevant(text):
            return VerificationResult(
                confidence=MIN_CONFIDENCE,
                verified=True,
                insights=[
                    Insight(
                        type="not_domain_related",
                        message=f"Claim does not appear to be {claim.domain.value}-related",
                    )
                ],
            )

        ordered = sorted(results, key=lambda r: r.source_id)
        failed = [r for r in ordered if not r.ok]
        insights = [unavailability_insight(r) for r in failed]

        if len(failed) == len(ordered):
            return VerificationResult(
                confidence=UNVERIFIABLE_CONFIDENCE,
                verified=True,
                insights=insights,
            )

        metrics = collect_metrics(ordered)
        view = _MetricView({key: _display(value) for key, value in metrics.items()})
        confidence = book.base_score

        for rule in book.rules:
            if rule.matches_text(text) and rule.matches_data(metrics):
                confidence += rule.bonus
                insights.append(self._insight(rule, view))

        flags: list[str] = []
        for flag_rule in book.flags:
            if not flag_rule.matches(claim) or flag_rule.flag in flags:
                continue
            flags.append(flag_rule.flag)
            if flag_rule.insight_type is not None:
                insights.append(Insight(type=flag_rule.insight_type, message=flag_rule.message))

        return VerificationResult(
            confidence=max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, confidence)),
            verified=True,
            flags=flags,
            insights=insights,
            metrics=metrics,
        )

    @staticmethod
    def _insight(rule: ScoreRule, view: _MetricView) -> Insight:
        return Insight(type=rule.insight_type, message=rule.message.format_map(view))
