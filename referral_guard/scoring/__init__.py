# Scoring Module
from .aggregator import RiskAggregator

__all__ = ["RiskAggregator"]
