"""
Similarity helpers for email aliasing and device fingerprints.

All functions are synchronous and side-effect free.
"""

import re

from ..schemas import DeviceFingerprint


# Weights for structural fingerprint comparison (sum to 1.0)
FINGERPRINT_WEIGHTS = {
    "user_agent": 0.30,
    "screen_resolution": 0.20,
    "platform": 0.15,
    "timezone": 0.15,
    "language": 0.10,
    "cookie_enabled": 0.05,
    "extended": 0.05,
}

_LOCAL_PART_NOISE = re.compile(r"[0-9._-]")

SIMILAR_EMAIL_MAX_DISTANCE = 2


def levenshtein_distance(s1: str, s2: str) -> int:
    """
    Calculate Levenshtein distance between two strings

    Args:
        s1: First string
        s2: Second string

    Returns:
        Edit distance
    """
    if len(s1) < len(s2):
        return levenshtein_distance(s2, s1)

    if len(s2) == 0:
        return len(s1)

    previous_row = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1):
        current_row = [i + 1]
        for j, c2 in enumerate(s2):
            insertions = previous_row[j + 1] + 1
            deletions = current_row[j] + 1
            substitutions = previous_row[j] + (c1 != c2)
            current_row.append(min(insertions, deletions, substitutions))
        previous_row = current_row

    return previous_row[-1]


def split_email(email: str) -> tuple[str, str]:
    """Split into lowercased (local part, domain). Domain is empty if malformed."""
    local, sep, domain = email.strip().lower().rpartition("@")
    if not sep:
        return domain, ""
    return local, domain


def normalize_local_part(local: str) -> str:
    """
    Lowercase, drop any ``+tag`` suffix, then strip digits, dots,
    dashes and underscores.

    ``John.Doe+1`` and ``johndoe`` both normalize to ``johndoe``.
    """
    local = local.lower().split("+", 1)[0]
    return _LOCAL_PART_NOISE.sub("", local)


def is_similar_email_prefix(local1: str, local2: str) -> bool:
    """
    Whether two local parts look like aliases of each other.

    Similar when equal after normalization (and non-empty), or within
    an edit distance of 2.
    """
    clean1 = normalize_local_part(local1)
    clean2 = normalize_local_part(local2)

    if clean1 and clean1 == clean2:
        return True

    return levenshtein_distance(local1.lower(), local2.lower()) <= SIMILAR_EMAIL_MAX_DISTANCE


def compute_fingerprint_hash(fingerprint: DeviceFingerprint) -> str:
    """Digest of the fingerprint attributes, ignoring any client-supplied hash."""
    return fingerprint.compute_hash()


def fingerprint_similarity(a: DeviceFingerprint, b: DeviceFingerprint) -> float:
    """
    Weighted field-match similarity in [0, 1].

    Identical hashes score 1.0. Empty string fields never match, so two
    sparse fingerprints do not look alike just because both are blank.
    """
    if a.hash and a.hash == b.hash:
        return 1.0

    score = 0.0
    for field_name, weight in FINGERPRINT_WEIGHTS.items():
        left = getattr(a, field_name)
        right = getattr(b, field_name)
        if field_name == "cookie_enabled":
            matched = left == right
        else:
            matched = bool(left) and left == right
        if matched:
            score += weight

    return round(min(score, 1.0), 4)
