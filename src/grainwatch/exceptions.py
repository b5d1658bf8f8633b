"""Grainwatch exception hierarchy.

All Grainwatch-specific exceptions inherit from GrainwatchError.
"""


class GrainwatchError(Exception):
    """Base exception for all Grainwatch errors."""


class TriggerConfigError(GrainwatchError):
    """Raised when a stored trigger cannot be turned into a valid Trigger.

    Bad input is normally rejected by pydantic at save time; this covers
    rows that were written by another process or an older schema.
    """

    def __init__(self, trigger_id: str, reason: str) -> None:
        self.trigger_id = trigger_id
        self.reason = reason
        super().__init__(f"Trigger {trigger_id} is misconfigured: {reason}")


class TriggerNotFoundError(GrainwatchError):
    """Raised when a trigger id lookup fails."""

    def __init__(self, trigger_id: str) -> None:
        self.trigger_id = trigger_id
        super().__init__(f"Trigger not found: {trigger_id}")


class AlertNotFoundError(GrainwatchError):
    """Raised when an alert id lookup fails."""

    def __init__(self, alert_id: str) -> None:
        self.alert_id = alert_id
        super().__init__(f"Alert not found: {alert_id}")


class InvalidTransitionError(GrainwatchError):
    """Raised when an alert status change is not allowed.

    Nothing is written when this is raised.
    """

    def __init__(self, alert_id: str, current: str, requested: str) -> None:
        self.alert_id = alert_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Alert {alert_id} cannot move from {current} to {requested}"
        )


class DuplicateOpenAlertError(GrainwatchError):
    """Raised when a second non-terminal alert would share a dedup key."""

    def __init__(self, trigger_id: str | None, cell_id: str | None) -> None:
        self.trigger_id = trigger_id
        self.cell_id = cell_id
        super().__init__(
            f"An unresolved alert already exists for trigger={trigger_id} cell={cell_id}"
        )


class UnknownSensorError(GrainwatchError):
    """Raised when an ingested record names a sensor that is not provisioned."""

    def __init__(self, identifier: str) -> None:
        self.identifier = identifier
        super().__init__(f"Unknown sensor: {identifier}")


class ChannelError(GrainwatchError):
    """Raised by a notification channel when delivery fails.

    ``retryable`` tells the dispatcher's retry wrapper whether another
    attempt can succeed.
    """

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        self.retryable = retryable
        super().__init__(message)


class RetryExhaustedError(GrainwatchError):
    """All retry attempts failed."""

    def __init__(self, attempts: int, last_error: BaseException | None = None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        detail = f"{type(last_error).__name__}: {last_error}" if last_error else "operation reported failure"
        super().__init__(f"All {attempts} attempts failed. Last error: {detail}")


class UserNotFoundError(GrainwatchError):
    """Raised when an alert is assigned to a user that does not exist."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")
