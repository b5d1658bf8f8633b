"""Condition evaluation.

Pure functions: no storage, no clock. The engine fetches the readings and
passes them in, which keeps every comparison testable in isolation.
"""

from __future__ import annotations

import math
from typing import Iterable, Optional

from grainwatch.models.reading import Reading
from grainwatch.models.trigger import (
    ChangeCondition,
    ChangeDirection,
    Condition,
    ConditionLogic,
    Operator,
    ThresholdCondition,
)


def evaluate_threshold(condition: ThresholdCondition, value: float) -> bool:
    """Compare *value* against a fixed bound. BETWEEN is inclusive."""
    op = condition.operator
    if op is Operator.ABOVE:
        return value > condition.value
    if op is Operator.BELOW:
        return value < condition.value
    if op is Operator.EQUALS:
        return value == condition.value
    if op is Operator.BETWEEN:
        upper = condition.secondary_value
        return upper is not None and condition.value <= value <= upper
    return False


def evaluate_change(condition: ChangeCondition, latest: float, historical: float) -> bool:
    """Compare the change ``latest - historical`` against ``change_amount``."""
    delta = latest - historical
    direction = condition.change_direction
    if direction is ChangeDirection.INCREASE:
        return delta >= condition.change_amount
    if direction is ChangeDirection.DECREASE:
        return -delta >= condition.change_amount
    return abs(delta) >= condition.change_amount


def evaluate_condition(
    condition: Condition,
    latest: Optional[Reading],
    historical: Optional[Reading] = None,
) -> bool:
    """Evaluate one condition against the cell's readings.

    Args:
        condition: A THRESHOLD or CHANGE condition.
        latest: Most recent reading for the condition's metric.
        historical: For CHANGE, the reading ``time_window_hours`` before
            *latest*. Ignored for THRESHOLD.

    Returns:
        False whenever a required reading is missing or NaN.
    """
    if latest is None or math.isnan(latest.value):
        return False
    if isinstance(condition, ThresholdCondition):
        return evaluate_threshold(condition, latest.value)
    if historical is None or math.isnan(historical.value):
        return False
    return evaluate_change(condition, latest.value, historical.value)


def combine(logic: ConditionLogic, results: Iterable[bool]) -> bool:
    """AND: every result true (and at least one). OR: any result true."""
    values = list(results)
    if logic is ConditionLogic.OR:
        return any(values)
    return bool(values) and all(values)
