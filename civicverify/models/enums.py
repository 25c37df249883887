from __future__ import annotations

from enum import StrEnum


class PolicyArea(StrEnum):
    """Closed set of policy domains a claim can be filed under."""

    __slots__ = ()

    EDUCATION = "education"
    HEALTHCARE = "healthcare"
    EMPLOYMENT = "employment"
    HOUSING = "housing"
    ENVIRONMENT = "environment"
    ENERGY = "energy"
    IMMIGRATION = "immigration"
    INFRASTRUCTURE = "infrastructure"
    JUSTICE = "justice"
    ELECTION = "election"


class SourceStatus(StrEnum):
    """Terminal status of one source adapter invocation."""

    __slots__ = ()

    OK = "ok"
    UNAVAILABLE = "unavailable"
    RATE_LIMITED = "rate_limited"
    MISCONFIGURED = "misconfigured"
