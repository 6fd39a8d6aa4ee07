"""
Referral reward milestones.

A sorted (threshold -> reward) table. Crossing a threshold of successful
invites earns its reward once; lookups use bisect over the thresholds.
"""

from bisect import bisect_right
from itertools import accumulate
from typing import Iterable, Optional

# Registration milestones: invites needed -> credits awarded
DEFAULT_MILESTONES: tuple[tuple[int, float], ...] = (
    (5, 10.0),
    (10, 20.0),
    (25, 50.0),
    (50, 100.0),
    (100, 200.0),
)


class RewardMilestones:
    """
    Milestone table used to price reward recovery.

    Example:
        >>> table = RewardMilestones()
        >>> table.earned(12)
        30.0
        >>> table.clawback(successful_invites=12, fraudulent_invites=3)
        20.0
    """

    def __init__(self, milestones: Optional[Iterable[tuple[int, float]]] = None):
        rows = sorted(milestones if milestones is not None else DEFAULT_MILESTONES)
        thresholds = [threshold for threshold, _ in rows]
        if len(set(thresholds)) != len(thresholds):
            raise ValueError("Milestone thresholds must be unique")
        if any(threshold <= 0 for threshold in thresholds):
            raise ValueError("Milestone thresholds must be positive")
        self.thresholds = thresholds
        self.rewards = [reward for _, reward in rows]
        self._cumulative = list(accumulate(self.rewards))

    def reached(self, invites: int) -> int:
        """Number of milestones reached with ``invites`` successful invites."""
        return bisect_right(self.thresholds, invites)

    def next_milestone(self, invites: int) -> Optional[tuple[int, float]]:
        index = self.reached(invites)
        if index >= len(self.thresholds):
            return None
        return self.thresholds[index], self.rewards[index]

    def earned(self, invites: int) -> float:
        """Total milestone rewards earned with ``invites`` successful invites."""
        index = self.reached(invites)
        return self._cumulative[index - 1] if index else 0.0

    def clawback(self, successful_invites: int, fraudulent_invites: int) -> float:
        """Milestone rewards that were only earned because of fraudulent invites."""
        fraudulent = min(max(fraudulent_invites, 0), successful_invites)
        return self.earned(successful_invites) - self.earned(successful_invites - fraudulent)
