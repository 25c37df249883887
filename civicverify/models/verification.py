"""Verification data models.

Defines the normalized outcome of a single source adapter invocation
(:class:`SourceResult`) and the scored, explainable outcome of a whole
claim verification (:class:`VerificationResult`).

A :class:`SourceResult` is always produced: adapters never propagate a
failure to the aggregator, they describe it.  A :class:`VerificationResult`
is the hand-off contract for the persistence layer, which never needs to
know which sources contributed to it.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from civicverify.models.enums import SourceStatus

# ---------------------------------------------------------------------------
# Source results
# ---------------------------------------------------------------------------


class SourceResult(BaseModel):
    """Terminal, normalized outcome of one source adapter invocation.

    ``status != ok`` always carries an ``error_message`` and no payload.
    """

    model_config = ConfigDict(frozen=True)

    source_id: str
    status: SourceStatus
    payload: Any | None = None
    error_message: str | None = None
    retrieved_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    attempts: int = Field(
        default=0,
        ge=0,
        description="Transport attempts made during the invocation.",
    )

    @model_validator(mode="after")
    def _check_status_invariant(self) -> SourceResult:
        if self.status is SourceStatus.OK:
            if self.error_message is not None:
                raise ValueError("ok results must not carry an error_message")
            return self
        if self.payload is not None:
            raise ValueError(f"{self.status} results must not carry a payload")
        if not self.error_message:
            raise ValueError(f"{self.status} results require an error_message")
        return self

    @property
    def ok(self) -> bool:
        return self.status is SourceStatus.OK

    # -- Constructors -------------------------------------------------------

    @classmethod
    def success(cls, source_id: str, payload: Any, attempts: int = 0) -> SourceResult:
        return cls(
            source_id=source_id,
            status=SourceStatus.OK,
            payload=payload,
            attempts=attempts,
        )

    @classmethod
    def unavailable(cls, source_id: str, message: str, attempts: int = 0) -> SourceResult:
        return cls(
            source_id=source_id,
            status=SourceStatus.UNAVAILABLE,
            error_message=message,
            attempts=attempts,
        )

    @classmethod
    def rate_limited(cls, source_id: str, message: str, attempts: int = 0) -> SourceResult:
        return cls(
            source_id=source_id,
            status=SourceStatus.RATE_LIMITED,
            error_message=message,
            attempts=attempts,
        )

    @classmethod
    def misconfigured(cls, source_id: str, message: str, attempts: int = 0) -> SourceResult:
        return cls(
            source_id=source_id,
            status=SourceStatus.MISCONFIGURED,
            error_message=message,
            attempts=attempts,
        )


# ---------------------------------------------------------------------------
# Verification results
# ---------------------------------------------------------------------------


class Insight(BaseModel):
    """A human-readable explanation attached to a verification."""

    model_config = ConfigDict(frozen=True)

    type: str
    message: str = ""


class VerificationResult(BaseModel):
    """Scored outcome of verifying one claim.

    ``insights`` keep the order in which heuristics were evaluated; they are
    never sorted.  ``flags`` are machine-checkable concerns and never
    influence ``confidence``.
    """

    confidence: int = Field(
        ge=0,
        le=100,
        description="Bounded confidence score (50 = could not verify either way).",
    )
    verified: bool = True
    flags: list[str] = Field(default_factory=list)
    insights: list[Insight] = Field(default_factory=list)
    metrics: dict[str, Any] = Field(default_factory=dict)

    @property
    def insight_types(self) -> list[str]:
        return [insight.type for insight in self.insights]

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation for the persistence layer."""
        return self.model_dump(mode="json")
