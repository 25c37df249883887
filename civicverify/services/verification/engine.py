"""Claim verification engine: fan out to data sources, then score.

Each claim is checked against the sources mapped to its policy area.
Every source runs as its own task, so a slow or failing source never
holds back the others; whatever comes back (including failures, which
adapters describe rather than raise) is handed to the
:class:`~civicverify.services.verification.scorer.Scorer`.

Guarantees
----------
- ``verify`` always returns a result for a valid claim and domain.
- Exactly one :class:`SourceResult` per mapped source reaches the scorer.
- An optional overall deadline cancels sources that have not finished;
  they are reported as ``unavailable``.
- A domain with no mapped source yields ``confidence = 0`` and
  ``verified = False`` with a single ``not_applicable`` insight.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping, Sequence

import structlog

from civicverify.models.claim import Claim
from civicverify.models.enums import PolicyArea
from civicverify.models.verification import Insight, SourceResult, VerificationResult
from civicverify.services.sources.base import SourceAdapter
from civicverify.services.sources.registry import DOMAIN_SOURCES
from civicverify.services.verification.scorer import UNVERIFIABLE_CONFIDENCE, Scorer

logger = structlog.get_logger(__name__)


class ClaimVerificationEngine:
    """Orchestrates multi-source verification of citizen claims.

    Parameters
    ----------
    adapters:
        Source adapters keyed by source id.
    scorer:
        Scorer applied to the collected results.
    domain_sources:
        Static mapping from policy area to source ids.
    deadline_seconds:
        Optional bound on the whole fan-out.  ``None`` relies on the
        per-attempt timeouts and retry bounds alone.
    """

    def __init__(
        self,
        adapters: Mapping[str, SourceAdapter],
        scorer: Scorer | None = None,
        domain_sources: Mapping[PolicyArea, Sequence[str]] = DOMAIN_SOURCES,
        deadline_seconds: float | None = None,
    ) -> None:
        self._adapters = dict(adapters)
        self._scorer = scorer or Scorer()
        self._domain_sources = domain_sources
        self._deadline = deadline_seconds

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def verify(
        self,
        claim: Claim,
        domain: PolicyArea | str | None = None,
    ) -> VerificationResult:
        """Verify *claim* under *domain* (defaults to the claim's own).

        Raises
        ------
        ValueError
            If *domain* is not a known policy area.
        """
        area = PolicyArea(domain) if domain is not None else claim.domain
        if area is not claim.domain:
            claim = claim.model_copy(update={"domain": area})

        source_ids = tuple(self._domain_sources.get(area, ()))
        if not source_ids:
            logger.info("verification.not_applicable", domain=area)
            return VerificationResult(
                confidence=0,
                verified=False,
                insights=[
                    Insight(
                        type="not_applicable",
                        message=f"No data sources cover the {area.value} policy area",
                    )
                ],
            )

        start = time.monotonic()
        logger.info("verification.claim_start", domain=area, sources=list(source_ids))

        results = await self._collect(claim, source_ids)
        verification = self._scorer.score(claim, results)

        logger.info(
            "verification.claim_complete",
            domain=area,
            confidence=verification.confidence,
            ok_sources=sum(1 for r in results if r.ok),
            total_sources=len(results),
            flags=verification.flags,
            duration_s=round(time.monotonic() - start, 2),
        )
        return verification

    async def verify_batch(
        self,
        claims: Sequence[Claim],
        max_concurrent: int = 3,
    ) -> list[VerificationResult]:
        """Verify multiple claims with bounded concurrency.

        Returns
        -------
        list[VerificationResult]
            Results in the same order as *claims*.
        """
        if not claims:
            return []

        semaphore = asyncio.Semaphore(max_concurrent)
        logger.info(
            "verification.batch_start",
            claim_count=len(claims),
            max_concurrent=max_concurrent,
        )

        async def _verify_with_semaphore(claim: Claim) -> VerificationResult:
            async with semaphore:
                try:
                    return await self.verify(claim)
                except Exception as exc:
                    logger.error(
                        "verification.batch_item_failed",
                        domain=claim.domain,
                        error=str(exc),
                    )
                    return VerificationResult(
                        confidence=UNVERIFIABLE_CONFIDENCE,
                        verified=True,
                        insights=[Insight(type="verification_failed", message=str(exc))],
                    )

        results = await asyncio.gather(*(_verify_with_semaphore(c) for c in claims))
        logger.info("verification.batch_complete", claim_count=len(results))
        return list(results)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _collect(self, claim: Claim, source_ids: Sequence[str]) -> list[SourceResult]:
        tasks: dict[str, asyncio.Task[SourceResult]] = {}
        results: list[SourceResult] = []

        for source_id in source_ids:
            adapter = self._adapters.get(source_id)
            if adapter is None:
                logger.warning("verification.adapter_missing", source=source_id)
                results.append(
                    SourceResult.misconfigured(source_id, "no adapter configured for source")
                )
                continue
            tasks[source_id] = asyncio.create_task(
                self._run_adapter(adapter, claim),
                name=f"source:{source_id}",
            )

        if not tasks:
            return results

        done, pending = await asyncio.wait(tasks.values(), timeout=self._deadline)

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for source_id, task in tasks.items():
            if task in done:
                results.append(task.result())
            else:
                logger.warning(
                    "verification.source_deadline_exceeded",
                    source=source_id,
                    deadline_s=self._deadline,
                )
                results.append(SourceResult.unavailable(source_id, "deadline exceeded"))
        return results

    @staticmethod
    async def _run_adapter(adapter: SourceAdapter, claim: Claim) -> SourceResult:
        try:
            return await adapter.query(claim)
        except Exception:
            logger.error(
                "verification.source_failed",
                source=adapter.source_id,
                exc_info=True,
            )
            return SourceResult.unavailable(adapter.source_id, "adapter raised unexpectedly")
