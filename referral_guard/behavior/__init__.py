# Behavior Module
from .analyzer import BehaviorAnalyzer, ActivityContext, stable_hash

__all__ = ["BehaviorAnalyzer", "ActivityContext", "stable_hash"]
