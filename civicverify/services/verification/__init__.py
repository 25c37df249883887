"""Claim verification: source fan-out and deterministic scoring.

Public API::

    from civicverify.services.verification import ClaimVerificationEngine, Scorer
"""

from __future__ import annotations

from civicverify.services.verification.engine import ClaimVerificationEngine
from civicverify.services.verification.rules import RULEBOOKS, Rulebook
from civicverify.services.verification.scorer import Scorer

__all__ = [
    "RULEBOOKS",
    "ClaimVerificationEngine",
    "Rulebook",
    "Scorer",
]
