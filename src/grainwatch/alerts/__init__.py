"""Alert lifecycle package."""

from grainwatch.alerts.lifecycle import AlertLifecycleManager

__all__ = ["AlertLifecycleManager"]
