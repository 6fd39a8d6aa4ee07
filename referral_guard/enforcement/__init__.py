# Enforcement Module
from .accounts import AccountEnforcement
from .rewards import RewardMilestones, DEFAULT_MILESTONES

__all__ = [
    "AccountEnforcement",
    "RewardMilestones",
    "DEFAULT_MILESTONES",
]
