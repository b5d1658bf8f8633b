"""Trigger evaluation package -- scopes, conditions, catalog and engine.

Provides the pure condition evaluator, the scope resolver, the cached
trigger catalog and the TriggerEngine that ties them to the alert
lifecycle.
"""

from grainwatch.triggers.catalog import TriggerCatalog
from grainwatch.triggers.conditions import combine, evaluate_condition
from grainwatch.triggers.engine import TriggerEngine
from grainwatch.triggers.scope import ScopeResolver

__all__ = [
    "TriggerCatalog",
    "TriggerEngine",
    "ScopeResolver",
    "combine",
    "evaluate_condition",
]
