"""Domain exceptions raised by the risk engine."""


class RiskEngineError(Exception):
    """Base class for engine errors surfaced to callers."""
    pass


class AlertNotFoundError(RiskEngineError):
    """Raised when an alert id does not exist."""
    pass


class CaseNotFoundError(RiskEngineError):
    """Raised when a review case id does not exist."""
    pass


class InvalidTransitionError(RiskEngineError):
    """Raised when a review case cannot move to the requested state."""

    def __init__(self, case_id: str, current: str, requested: str):
        self.case_id = case_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Review case {case_id} cannot move from {current} to {requested}"
        )


class NotificationDeliveryError(RiskEngineError):
    """Raised by a channel when a notification could not be delivered."""
    pass
