"""Notification package -- template rendering, channels and dispatch."""

from grainwatch.notify.channels import LoggingChannel, NotificationChannel, WebhookChannel
from grainwatch.notify.dispatcher import DispatchStats, NotificationDispatcher
from grainwatch.notify.templates import pick_locale, render

__all__ = [
    "DispatchStats",
    "LoggingChannel",
    "NotificationChannel",
    "NotificationDispatcher",
    "WebhookChannel",
    "pick_locale",
    "render",
]
