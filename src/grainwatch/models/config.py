"""Configuration models for Grainwatch.

GrainwatchConfig holds process-wide settings. RetryConfig controls the
backoff used for notification hand-off.
"""

from __future__ import annotations

import os
from typing import Optional

from pydantic import BaseModel, Field, model_validator

_ENV_PREFIX = "GRAINWATCH_"


class RetryConfig(BaseModel):
    """Capped exponential backoff: delay before retry k is
    ``min(base_delay * backoff ** k, max_delay)``.
    """

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=0.25, ge=0)
    backoff: float = Field(default=2.0, ge=1)
    max_delay: float = Field(default=2.0, ge=0)

    @model_validator(mode="after")
    def _cap_not_below_base(self) -> RetryConfig:
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        return self


class GrainwatchConfig(BaseModel):
    """Process-wide configuration."""

    db_path: str = ":memory:"
    db_url: Optional[str] = None
    retention_days: int = Field(default=90, ge=1)
    default_locale: str = "en"
    trigger_refresh_seconds: float = Field(default=30.0, ge=0)
    refire_cooldown_seconds: float = Field(default=0.0, ge=0)
    evaluation_workers: int = Field(default=4, ge=1)
    dispatch_workers: int = Field(default=4, ge=1)
    sweep_interval_seconds: float = Field(default=300.0, gt=0)
    dispatch_retry: RetryConfig = Field(default_factory=RetryConfig)

    @classmethod
    def from_env(cls, **overrides: object) -> GrainwatchConfig:
        """Build a config from ``GRAINWATCH_*`` environment variables.

        ``GRAINWATCH_DB`` maps to ``db_path``; every other field maps to its
        upper-cased name (``GRAINWATCH_RETENTION_DAYS``...). Retry settings
        use ``GRAINWATCH_RETRY_MAX_ATTEMPTS`` and friends. Explicit keyword
        overrides win over the environment.
        """
        values: dict[str, object] = {}
        if os.environ.get(f"{_ENV_PREFIX}DB"):
            values["db_path"] = os.environ[f"{_ENV_PREFIX}DB"]
        for name in cls.model_fields:
            if name == "dispatch_retry":
                continue
            raw = os.environ.get(f"{_ENV_PREFIX}{name.upper()}")
            if raw is not None:
                values[name] = raw

        retry: dict[str, str] = {}
        for name in RetryConfig.model_fields:
            raw = os.environ.get(f"{_ENV_PREFIX}RETRY_{name.upper()}")
            if raw is not None:
                retry[name] = raw
        if retry:
            values["dispatch_retry"] = retry

        values.update(overrides)
        return cls.model_validate(values)
