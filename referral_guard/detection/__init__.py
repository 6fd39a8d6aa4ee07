# Detection Module
from .detector import BaseDetector, warning_threshold
from .ip_frequency import IPFrequencyDetector
from .device_reuse import DeviceReuseDetector
from .self_invitation import SelfInvitationDetector
from .batch_registration import BatchRegistrationDetector
from .similarity import (
    levenshtein_distance,
    split_email,
    normalize_local_part,
    is_similar_email_prefix,
    fingerprint_similarity,
    compute_fingerprint_hash,
)

__all__ = [
    "BaseDetector",
    "warning_threshold",
    "IPFrequencyDetector",
    "DeviceReuseDetector",
    "SelfInvitationDetector",
    "BatchRegistrationDetector",
    "levenshtein_distance",
    "split_email",
    "normalize_local_part",
    "is_similar_email_prefix",
    "fingerprint_similarity",
    "compute_fingerprint_hash",
]
