"""Grainwatch: trigger evaluation and alert lifecycle for grain storage.

Sensor readings from storage cells are evaluated against user-defined
triggers; alerts are opened, deduplicated and resolved, and notification
actions are handed off once per firing.
"""

from grainwatch._version import __version__

# Core entry point
from grainwatch.grainwatch import Grainwatch

# Trigger models
from grainwatch.models.trigger import (
    Action,
    ActionType,
    ChangeCondition,
    ChangeDirection,
    Condition,
    ConditionLogic,
    EmailAction,
    MetricType,
    NotificationTemplate,
    Operator,
    PushAction,
    ScopeType,
    Severity,
    SmsAction,
    ThresholdCondition,
    Trigger,
    WebhookAction,
    parse_trigger,
)

# Alerts
from grainwatch.models.alert import (
    AlertEventInfo,
    AlertInfo,
    AlertQuery,
    AlertStatus,
    LabelRef,
    parse_statuses,
)

# Readings and topology
from grainwatch.models.reading import IngestRecord, IngestResult, Reading
from grainwatch.models.topology import (
    Cell,
    CellLocation,
    CommodityType,
    Compound,
    Organization,
    Sensor,
    Site,
    User,
)

# Evaluation results
from grainwatch.models.evaluation import EvaluationResult, FiringContext, OpenOutcome

# Configuration
from grainwatch.models.config import GrainwatchConfig, RetryConfig

# Notification
from grainwatch.notify.channels import LoggingChannel, NotificationChannel, WebhookChannel

# Exceptions
from grainwatch.exceptions import (
    AlertNotFoundError,
    ChannelError,
    DuplicateOpenAlertError,
    GrainwatchError,
    InvalidTransitionError,
    RetryExhaustedError,
    TriggerConfigError,
    TriggerNotFoundError,
    UnknownSensorError,
    UserNotFoundError,
)

__all__ = [
    "__version__",
    # Core
    "Grainwatch",
    # Triggers
    "Action",
    "ActionType",
    "ChangeCondition",
    "ChangeDirection",
    "Condition",
    "ConditionLogic",
    "EmailAction",
    "MetricType",
    "NotificationTemplate",
    "Operator",
    "PushAction",
    "ScopeType",
    "Severity",
    "SmsAction",
    "ThresholdCondition",
    "Trigger",
    "WebhookAction",
    "parse_trigger",
    # Alerts
    "AlertEventInfo",
    "AlertInfo",
    "AlertQuery",
    "AlertStatus",
    "LabelRef",
    "parse_statuses",
    # Readings and topology
    "IngestRecord",
    "IngestResult",
    "Reading",
    "Cell",
    "CellLocation",
    "CommodityType",
    "Compound",
    "Organization",
    "Sensor",
    "Site",
    "User",
    # Evaluation
    "EvaluationResult",
    "FiringContext",
    "OpenOutcome",
    # Configuration
    "GrainwatchConfig",
    "RetryConfig",
    # Notification
    "LoggingChannel",
    "NotificationChannel",
    "WebhookChannel",
    # Exceptions
    "AlertNotFoundError",
    "ChannelError",
    "DuplicateOpenAlertError",
    "GrainwatchError",
    "InvalidTransitionError",
    "RetryExhaustedError",
    "TriggerConfigError",
    "TriggerNotFoundError",
    "UnknownSensorError",
    "UserNotFoundError",
]
