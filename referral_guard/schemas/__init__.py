"""Pydantic schemas for the referral risk engine."""
from .attempts import DeviceFingerprint, RegistrationAttempt, UserRecord
from .results import (
    RiskLevel,
    FraudActionType,
    FraudAction,
    DetectionResult,
    Decision,
    RiskDecision,
)
from .alerts import (
    AlertType,
    AlertSeverity,
    AlertStatus,
    AlertActionType,
    AlertRule,
    AlertDraft,
    AnomalyAlert,
    AlertEvidence,
    VelocityEvidence,
    DeviationEvidence,
    NetworkEvidence,
    BehaviorEvidence,
    TERMINAL_ALERT_STATUSES,
    ACTIVE_ALERT_STATUSES,
)
from .behavior import PatternType, BehaviorPattern, BehaviorAnalysis
from .cases import (
    CaseType,
    CasePriority,
    CaseStatus,
    DecisionAction,
    DECISION_STATUS,
    ReviewDecision,
    ReviewCase,
    ReviewEvidence,
    DetectionEvidence,
    AlertReferenceEvidence,
    BehaviorSnapshotEvidence,
    ManualNoteEvidence,
    TERMINAL_CASE_STATUSES,
    OPEN_CASE_STATUSES,
)
from .accounts import (
    ALL_FEATURES,
    AccountFreeze,
    UserBan,
    RecoveryStatus,
    RewardRecovery,
    AccountStatus,
    SuspiciousActivityType,
    SuspiciousActivity,
)
from .notifications import (
    NotificationChannelType,
    NotificationStatus,
    NotificationType,
    NotificationRequest,
    Notification,
    InviteCode,
)
from .requests import (
    RegistrationAssessmentRequest,
    InvitationAssessmentRequest,
    ResolveAlertRequest,
    AssignCaseRequest,
    EscalateCaseRequest,
)

__all__ = [
    # Attempts
    "DeviceFingerprint",
    "RegistrationAttempt",
    "UserRecord",
    # Results
    "RiskLevel",
    "FraudActionType",
    "FraudAction",
    "DetectionResult",
    "Decision",
    "RiskDecision",
    # Alerts
    "AlertType",
    "AlertSeverity",
    "AlertStatus",
    "AlertActionType",
    "AlertRule",
    "AlertDraft",
    "AnomalyAlert",
    "AlertEvidence",
    "VelocityEvidence",
    "DeviationEvidence",
    "NetworkEvidence",
    "BehaviorEvidence",
    "TERMINAL_ALERT_STATUSES",
    "ACTIVE_ALERT_STATUSES",
    # Behavior
    "PatternType",
    "BehaviorPattern",
    "BehaviorAnalysis",
    # Cases
    "CaseType",
    "CasePriority",
    "CaseStatus",
    "DecisionAction",
    "DECISION_STATUS",
    "ReviewDecision",
    "ReviewCase",
    "ReviewEvidence",
    "DetectionEvidence",
    "AlertReferenceEvidence",
    "BehaviorSnapshotEvidence",
    "ManualNoteEvidence",
    "TERMINAL_CASE_STATUSES",
    "OPEN_CASE_STATUSES",
    # Accounts
    "ALL_FEATURES",
    "AccountFreeze",
    "UserBan",
    "RecoveryStatus",
    "RewardRecovery",
    "AccountStatus",
    "SuspiciousActivityType",
    "SuspiciousActivity",
    # Notifications
    "NotificationChannelType",
    "NotificationStatus",
    "NotificationType",
    "NotificationRequest",
    "Notification",
    "InviteCode",
    # API requests
    "RegistrationAssessmentRequest",
    "InvitationAssessmentRequest",
    "ResolveAlertRequest",
    "AssignCaseRequest",
    "EscalateCaseRequest",
]
