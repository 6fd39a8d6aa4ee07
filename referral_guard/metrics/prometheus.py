"""
Prometheus Metrics

Defines all metrics exposed by the referral risk engine.
Metrics are critical for:
- Decision mix (allow/warn/review/block rates)
- Operational health (detector failures, store latency)
- Workflow throughput (alerts, review cases, enforcement)
"""

import logging

from prometheus_client import Counter, Histogram, Gauge, start_http_server

from ..config import settings

logger = logging.getLogger("referral_guard.metrics")


class RiskMetrics:
    """
    Container for all Prometheus metrics.

    Organized by category:
    - Assessment metrics
    - Detector metrics
    - Alert / review / enforcement metrics
    - Notification and scheduler metrics
    - System metrics
    """

    def __init__(self):
        """Initialize all metrics."""

        # =====================================================================
        # Assessment Metrics
        # =====================================================================
        self.assessments_total = Counter(
            "referral_assessments_total",
            "Total number of risk assessments by entry point and decision",
            labelnames=["endpoint", "decision"],
        )

        self.assessment_latency = Histogram(
            "referral_assessment_latency_ms",
            "End-to-end assessment latency in milliseconds",
            buckets=[5, 10, 25, 50, 100, 250, 500, 1000, 2500],
        )

        self.degraded_assessments = Counter(
            "referral_degraded_assessments_total",
            "Assessments where at least one detector failed open",
        )

        # =====================================================================
        # Detector Metrics
        # =====================================================================
        self.detector_triggers = Counter(
            "referral_detector_triggers_total",
            "Number of times each detector returned a non-low result",
            labelnames=["detector", "risk_level"],
        )

        self.detector_failures = Counter(
            "referral_detector_failures_total",
            "Detector errors and timeouts (failed open)",
            labelnames=["detector", "reason"],
        )

        # =====================================================================
        # Workflow Metrics
        # =====================================================================
        self.alerts_created = Counter(
            "referral_alerts_created_total",
            "Alerts persisted by type and severity",
            labelnames=["alert_type", "severity"],
        )

        self.alerts_suppressed = Counter(
            "referral_alerts_suppressed_total",
            "Alerts suppressed by an active rule cooldown",
            labelnames=["rule_id"],
        )

        self.alert_action_failures = Counter(
            "referral_alert_action_failures_total",
            "Alert actions that failed to execute",
            labelnames=["action"],
        )

        self.case_transitions = Counter(
            "referral_case_transitions_total",
            "Review case status transitions",
            labelnames=["status"],
        )

        self.enforcement_actions = Counter(
            "referral_enforcement_actions_total",
            "Enforcement actions taken",
            labelnames=["action"],
        )

        # =====================================================================
        # Notification / Scheduler Metrics
        # =====================================================================
        self.notifications_total = Counter(
            "referral_notifications_total",
            "Notification delivery outcomes",
            labelnames=["channel", "status"],
        )

        self.scheduler_ticks = Counter(
            "referral_scheduler_ticks_total",
            "Scheduler ticks completed",
        )

        self.scheduler_failures = Counter(
            "referral_scheduler_failures_total",
            "Scheduler task failures by task",
            labelnames=["task"],
        )

        self.scheduler_running = Gauge(
            "referral_scheduler_running",
            "Whether the notification scheduler is running (1) or stopped (0)",
        )

        # =====================================================================
        # System Metrics
        # =====================================================================
        self.store_latency = Histogram(
            "referral_store_latency_ms",
            "Signal store operation latency in milliseconds",
            labelnames=["operation"],
            buckets=[1, 2, 5, 10, 20, 50, 100],
        )

        self.component_health = Gauge(
            "referral_component_health",
            "Component health status (1=healthy, 0=unhealthy)",
            labelnames=["component"],
        )


# Global metrics instance
metrics = RiskMetrics()


def setup_metrics() -> None:
    """
    Setup Prometheus metrics server.

    Starts HTTP server on configured port to expose metrics.
    """
    if settings.metrics_enabled:
        try:
            start_http_server(settings.metrics_port)
            logger.info("Metrics server started on port %d", settings.metrics_port)
        except Exception as e:
            logger.warning("Failed to start metrics server: %s", e)
