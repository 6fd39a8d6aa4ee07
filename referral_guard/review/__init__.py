# Review Module
from .cases import ReviewCaseManager, detection_evidence, PRIORITY_BY_RISK, VERIFICATION_FEATURE

__all__ = [
    "ReviewCaseManager",
    "detection_evidence",
    "PRIORITY_BY_RISK",
    "VERIFICATION_FEATURE",
]
