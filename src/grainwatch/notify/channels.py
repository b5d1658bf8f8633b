"""Notification channels.

The dispatcher hands rendered payloads to a NotificationChannel; concrete
email/SMS/push delivery lives outside Grainwatch. Two channels ship here:

- LoggingChannel: logs and keeps every payload (useful in tests and dry runs).
- WebhookChannel: POSTs WEBHOOK payloads as JSON with httpx.

A channel returns True on delivery. It may return False or raise
ChannelError; the dispatcher's retry wrapper treats both as failures.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import httpx

from grainwatch.exceptions import ChannelError
from grainwatch.models.trigger import ActionType

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


@runtime_checkable
class NotificationChannel(Protocol):
    """Delivery interface for one or more action types."""

    def send(
        self, channel_type: ActionType, payload: dict[str, Any], recipients: list[str]
    ) -> bool: ...


@dataclass(frozen=True)
class SentMessage:
    channel_type: ActionType
    payload: dict[str, Any]
    recipients: tuple[str, ...]


class LoggingChannel:
    """Log every notification and keep it in ``sent``."""

    def __init__(self, level: int = logging.INFO) -> None:
        self._level = level
        self._lock = threading.Lock()
        self.sent: list[SentMessage] = []

    def send(
        self, channel_type: ActionType, payload: dict[str, Any], recipients: list[str]
    ) -> bool:
        logger.log(
            self._level,
            "[%s] to=%s subject=%r body=%r",
            channel_type.value,
            ",".join(recipients) or "-",
            payload.get("subject"),
            payload.get("body"),
        )
        with self._lock:
            self.sent.append(SentMessage(channel_type, dict(payload), tuple(recipients)))
        return True


def _is_retryable(exc: BaseException) -> bool:
    """Retryable: 429, 5xx, connection errors and timeouts."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in _RETRYABLE_STATUS_CODES
    return isinstance(exc, httpx.TransportError)


class WebhookChannel:
    """POST WEBHOOK payloads to their ``webhook_url``.

    Usage::

        with WebhookChannel() as channel:
            gw = Grainwatch.open("grain.db", channels={ActionType.WEBHOOK: channel})
    """

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)

    def send(
        self, channel_type: ActionType, payload: dict[str, Any], recipients: list[str]
    ) -> bool:
        url = payload.get("webhook_url")
        if not url:
            raise ChannelError("webhook payload has no webhook_url", retryable=False)
        body = {k: v for k, v in payload.items() if k != "webhook_url"}
        if recipients:
            body["recipients"] = list(recipients)

        try:
            response = self._client.post(url, json=body)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ChannelError(
                f"webhook POST to {url} failed: {exc}", retryable=_is_retryable(exc)
            ) from exc
        return True

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> WebhookChannel:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
