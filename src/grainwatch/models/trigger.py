"""Trigger domain models.

A Trigger is a stored rule: scope + conditions + combination logic +
notification actions + severity. Conditions and actions are discriminated
unions keyed on ``type`` so that a THRESHOLD condition can never carry
change fields (and vice versa) and a WEBHOOK action can never be missing
its URL. All invariants are checked at construction time.
"""

from __future__ import annotations

import enum
import uuid
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator


class ScopeType(str, enum.Enum):
    """Topology level a trigger applies to."""

    ALL = "ALL"
    ORGANIZATION = "ORGANIZATION"
    SITE = "SITE"
    COMPOUND = "COMPOUND"
    CELL = "CELL"


class MetricType(str, enum.Enum):
    TEMPERATURE = "TEMPERATURE"
    HUMIDITY = "HUMIDITY"
    EMC = "EMC"


class Operator(str, enum.Enum):
    ABOVE = "ABOVE"
    BELOW = "BELOW"
    EQUALS = "EQUALS"
    BETWEEN = "BETWEEN"


class ChangeDirection(str, enum.Enum):
    INCREASE = "INCREASE"
    DECREASE = "DECREASE"
    ANY = "ANY"


class ConditionLogic(str, enum.Enum):
    AND = "AND"
    OR = "OR"


class Severity(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ActionType(str, enum.Enum):
    EMAIL = "EMAIL"
    SMS = "SMS"
    PUSH = "PUSH"
    WEBHOOK = "WEBHOOK"


METRIC_UNITS: dict[MetricType, str] = {
    MetricType.TEMPERATURE: "°C",
    MetricType.HUMIDITY: "%",
    MetricType.EMC: "%",
}


def metric_unit(metric: MetricType) -> str:
    """Display unit for a metric."""
    return METRIC_UNITS.get(metric, "")


def _new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------


class ThresholdCondition(BaseModel):
    """Compare the latest value of a metric against a fixed bound."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["THRESHOLD"] = "THRESHOLD"
    id: str = Field(default_factory=_new_id)
    metric: MetricType
    operator: Operator
    value: float
    secondary_value: Optional[float] = None

    @model_validator(mode="after")
    def _check_between(self) -> ThresholdCondition:
        if self.operator is Operator.BETWEEN:
            if self.secondary_value is None:
                raise ValueError("BETWEEN requires secondary_value")
            if not self.secondary_value > self.value:
                raise ValueError("BETWEEN requires secondary_value > value")
        elif self.secondary_value is not None:
            raise ValueError(f"secondary_value is only valid for BETWEEN, not {self.operator.value}")
        return self


class ChangeCondition(BaseModel):
    """Compare the latest value against the value ``time_window_hours`` ago."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["CHANGE"] = "CHANGE"
    id: str = Field(default_factory=_new_id)
    metric: MetricType
    change_direction: ChangeDirection
    change_amount: float = Field(ge=0)
    time_window_hours: float = Field(gt=0)


Condition = Annotated[
    Union[ThresholdCondition, ChangeCondition],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

DEFAULT_LOCALE = "en"


class NotificationTemplate(BaseModel):
    """Per-locale subject and body. A plain string is stored under ``en``."""

    model_config = ConfigDict(frozen=True)

    subject: Optional[dict[str, str]] = None
    body: dict[str, str]

    @field_validator("subject", "body", mode="before")
    @classmethod
    def _coerce_plain_text(cls, v: object) -> object:
        if isinstance(v, str):
            return {DEFAULT_LOCALE: v}
        return v

    @field_validator("body")
    @classmethod
    def _body_not_empty(cls, v: dict[str, str]) -> dict[str, str]:
        if not v or not any(text.strip() for text in v.values()):
            raise ValueError("template body is required")
        return v


class _TemplatedAction(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    template: NotificationTemplate
    recipients: list[str] = Field(default_factory=list)
    locale: Optional[str] = None


class EmailAction(_TemplatedAction):
    type: Literal["EMAIL"] = "EMAIL"


class SmsAction(_TemplatedAction):
    type: Literal["SMS"] = "SMS"


class PushAction(_TemplatedAction):
    type: Literal["PUSH"] = "PUSH"


class WebhookAction(BaseModel):
    """POST the firing context as JSON to ``webhook_url``."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["WEBHOOK"] = "WEBHOOK"
    webhook_url: str = Field(min_length=1)
    recipients: list[str] = Field(default_factory=list)
    locale: Optional[str] = None

    @field_validator("webhook_url")
    @classmethod
    def _http_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("webhook_url must be an http(s) URL")
        return v


Action = Annotated[
    Union[EmailAction, SmsAction, PushAction, WebhookAction],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Trigger
# ---------------------------------------------------------------------------

_SCOPE_FIELDS: dict[ScopeType, str] = {
    ScopeType.SITE: "site_id",
    ScopeType.COMPOUND: "compound_id",
    ScopeType.CELL: "cell_id",
}


class Trigger(BaseModel):
    """A user-defined alerting rule.

    ``organization_id`` is the owning organization (``None`` for a global
    trigger) and doubles as the scope id when ``scope_type`` is
    ORGANIZATION. At most one of ``site_id`` / ``compound_id`` /
    ``cell_id`` may be set, and only the one matching ``scope_type``.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    scope_type: ScopeType
    organization_id: Optional[str] = None
    site_id: Optional[str] = None
    compound_id: Optional[str] = None
    cell_id: Optional[str] = None
    commodity_type_id: Optional[str] = None
    condition_logic: ConditionLogic = ConditionLogic.AND
    conditions: list[Condition] = Field(min_length=1)
    actions: list[Action] = Field(min_length=1)
    severity: Severity
    is_active: bool = True

    @model_validator(mode="after")
    def _check_scope(self) -> Trigger:
        if self.scope_type is ScopeType.ORGANIZATION and not self.organization_id:
            raise ValueError("ORGANIZATION scope requires organization_id")
        expected = _SCOPE_FIELDS.get(self.scope_type)
        for scope, field_name in _SCOPE_FIELDS.items():
            present = getattr(self, field_name) is not None
            if field_name == expected and not present:
                raise ValueError(f"{scope.value} scope requires {field_name}")
            if field_name != expected and present:
                raise ValueError(
                    f"{field_name} is not allowed for {self.scope_type.value} scope"
                )
        return self

    @property
    def scope_id(self) -> str | None:
        """The id the scope is anchored on (``None`` for ALL)."""
        if self.scope_type is ScopeType.ALL:
            return None
        if self.scope_type is ScopeType.ORGANIZATION:
            return self.organization_id
        return getattr(self, _SCOPE_FIELDS[self.scope_type])

    @property
    def metrics(self) -> frozenset[MetricType]:
        """Every metric referenced by at least one condition."""
        return frozenset(c.metric for c in self.conditions)

    def change_windows(self) -> dict[MetricType, float]:
        """Longest CHANGE window in hours, per metric."""
        windows: dict[MetricType, float] = {}
        for condition in self.conditions:
            if isinstance(condition, ChangeCondition):
                current = windows.get(condition.metric, 0.0)
                windows[condition.metric] = max(current, condition.time_window_hours)
        return windows


_trigger_adapter = TypeAdapter(Trigger)


def parse_trigger(data: dict) -> Trigger:
    """Validate a raw dict into a Trigger. Raises pydantic.ValidationError."""
    return _trigger_adapter.validate_python(data)
