from civicverify.models.claim import Claim, Location
from civicverify.models.enums import PolicyArea, SourceStatus
from civicverify.models.verification import Insight, SourceResult, VerificationResult

__all__ = [
    "Claim",
    "Insight",
    "Location",
    "PolicyArea",
    "SourceResult",
    "SourceStatus",
    "VerificationResult",
]
