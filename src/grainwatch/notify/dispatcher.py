"""NotificationDispatcher -- render actions and hand them to channels.

Called by the trigger engine exactly once per newly opened alert. Each
action is rendered synchronously (so template variables are frozen at
firing time) and delivered on a thread pool through ``retry_call``.
Delivery failures are logged and counted; they never touch the alert.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional

from grainwatch.exceptions import ChannelError, RetryExhaustedError
from grainwatch.models.config import RetryConfig
from grainwatch.models.trigger import DEFAULT_LOCALE, ActionType, WebhookAction
from grainwatch.notify.templates import pick_locale, render
from grainwatch.retry import retry_call

if TYPE_CHECKING:
    from grainwatch.models.alert import AlertInfo
    from grainwatch.models.evaluation import FiringContext
    from grainwatch.models.trigger import Action, Trigger
    from grainwatch.notify.channels import NotificationChannel

logger = logging.getLogger(__name__)


@dataclass
class DispatchStats:
    """Running delivery counters. Thread-safe via ``incr``."""

    sent: int = 0
    failed: int = 0
    skipped: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def incr(self, name: str) -> None:
        with self._lock:
            setattr(self, name, getattr(self, name) + 1)


class NotificationDispatcher:
    """Fan out trigger actions to registered channels.

    Args:
        channels: Channel per action type. Actions without a channel are
            counted as skipped.
        retry: Backoff policy applied to each delivery.
        executor: Pool for deliveries. One is created (and owned) if omitted.
        max_workers: Size of the owned pool.
        default_locale: Locale used when an action names none.
        sleep: Injected into the retry wrapper for tests.
    """

    def __init__(
        self,
        channels: Mapping[ActionType, NotificationChannel],
        *,
        retry: Optional[RetryConfig] = None,
        executor: Optional[Executor] = None,
        max_workers: int = 4,
        default_locale: str = DEFAULT_LOCALE,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._channels = dict(channels)
        self._retry = retry or RetryConfig()
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="grainwatch-notify"
        )
        self._default_locale = default_locale
        self._sleep = sleep
        self._pending: set[Future] = set()
        self._pending_lock = threading.Lock()
        self.stats = DispatchStats()

    def register(self, action_type: ActionType, channel: NotificationChannel) -> None:
        self._channels[ActionType(action_type)] = channel

    def build_payload(
        self, action: Action, alert: AlertInfo, context: FiringContext
    ) -> dict[str, Any]:
        """Render one action into the dict handed to its channel."""
        variables = context.variables()
        if isinstance(action, WebhookAction):
            return {
                "webhook_url": action.webhook_url,
                "alert_id": alert.id,
                "trigger_id": context.trigger_id,
                "variables": variables,
            }
        locale = action.locale or self._default_locale
        subject = pick_locale(action.template.subject, locale, self._default_locale)
        body = pick_locale(action.template.body, locale, self._default_locale) or ""
        return {
            "alert_id": alert.id,
            "trigger_id": context.trigger_id,
            "subject": render(subject, variables) if subject is not None else None,
            "body": render(body, variables),
        }

    def dispatch(
        self, trigger: Trigger, alert: AlertInfo, context: FiringContext
    ) -> list[Future]:
        """Queue every action of *trigger* for delivery. Returns the futures."""
        futures: list[Future] = []
        for action in trigger.actions:
            action_type = ActionType(action.type)
            channel = self._channels.get(action_type)
            if channel is None:
                logger.debug(
                    "No channel for %s; skipping action of trigger %s",
                    action_type.value, trigger.id,
                )
                self.stats.incr("skipped")
                continue

            payload = self.build_payload(action, alert, context)
            future = self._executor.submit(
                self._deliver, channel, action_type, payload, list(action.recipients), alert.id
            )
            with self._pending_lock:
                self._pending.add(future)
            future.add_done_callback(self._forget)
            futures.append(future)
        return futures

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for in-flight deliveries. Returns False on timeout."""
        with self._pending_lock:
            pending = set(self._pending)
        if not pending:
            return True
        _, not_done = wait_futures(pending, timeout=timeout)
        return not not_done

    def close(self, wait: bool = True) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    def _forget(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def _deliver(
        self,
        channel: NotificationChannel,
        action_type: ActionType,
        payload: dict[str, Any],
        recipients: list[str],
        alert_id: str,
    ) -> bool:
        try:
            retry_call(
                channel.send,
                action_type,
                payload,
                recipients,
                config=self._retry,
                sleep=self._sleep,
            )
        except (RetryExhaustedError, ChannelError) as exc:
            logger.error("%s notification for alert %s failed: %s", action_type.value, alert_id, exc)
            self.stats.incr("failed")
            return False
        except Exception:
            logger.exception("%s channel crashed for alert %s", action_type.value, alert_id)
            self.stats.incr("failed")
            raise
        self.stats.incr("sent")
        return True
