# Metrics Module
from .prometheus import metrics, setup_metrics

__all__ = ["metrics", "setup_metrics"]
