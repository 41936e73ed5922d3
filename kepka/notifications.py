"""
Realtime event fan-out and templated user notifications.

``EventBroadcaster`` pushes named events to per-user channels. Subscribers are
asyncio queues owned by WebSocket handlers; publishers may run on any thread.
The Redis implementation relays pub/sub messages into the local hub so every
API process delivers to its own connected clients.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import threading
from collections import defaultdict, deque
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Iterable, Optional, Protocol

import redis
import requests
from redis import exceptions as redis_exceptions

logger = logging.getLogger(__name__)


def channel_name(user_id: str) -> str:
    return f"user-{user_id}"


@dataclass
class Subscription:
    user_id: str
    queue: asyncio.Queue
    loop: asyncio.AbstractEventLoop


class EventBroadcaster(Protocol):
    def start(self) -> None:
        ...

    def stop(self) -> None:
        ...

    def publish(self, user_id: str, event: str, payload: dict) -> None:
        ...

    def subscribe(self, user_id: str) -> Subscription:
        ...

    def unsubscribe(self, subscription: Subscription) -> None:
        ...


class InMemoryBroadcaster:
    """In-process hub. Also the local delivery layer for RedisBroadcaster."""

    def __init__(self, history_size: int = 1000):
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[Subscription]] = defaultdict(list)
        # Most recent (user_id, message) pairs, handy for tests and debugging.
        self.history: deque[tuple[str, dict]] = deque(maxlen=history_size)
        self.running = False

    def start(self) -> None:
        self.running = True

    def stop(self) -> None:
        self.running = False
        with self._lock:
            self._subscribers.clear()

    def publish(self, user_id: str, event: str, payload: dict) -> None:
        message = {"event": event, "data": payload}
        self.history.append((user_id, message))
        self._deliver(user_id, message)

    def events_for(self, user_id: str) -> list[dict]:
        return [message for uid, message in self.history if uid == user_id]

    def subscribe(self, user_id: str) -> Subscription:
        """Register a queue for ``user_id``; must be called from a running loop."""
        subscription = Subscription(
            user_id=user_id, queue=asyncio.Queue(), loop=asyncio.get_running_loop()
        )
        with self._lock:
            self._subscribers[user_id].append(subscription)
        logger.debug("Subscribed to %s", channel_name(user_id))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscribers.get(subscription.user_id, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscribers.pop(subscription.user_id, None)

    def _deliver(self, user_id: str, message: dict) -> None:
        with self._lock:
            subscribers = list(self._subscribers.get(user_id, []))
        for subscription in subscribers:
            try:
                subscription.loop.call_soon_threadsafe(
                    subscription.queue.put_nowait, message
                )
            except RuntimeError:
                # Event loop already closed; the socket is gone.
                self.unsubscribe(subscription)


class RedisBroadcaster(InMemoryBroadcaster):
    """Publishes through Redis pub/sub and relays received messages locally."""

    def __init__(self, url: str, channel_prefix: str = "kepka:", **kwargs):
        super().__init__(**kwargs)
        self.url = url
        self.channel_prefix = channel_prefix
        self.client = redis.Redis.from_url(url)
        self._pubsub = None
        self._thread = None

    def start(self) -> None:
        if self.running:
            return
        self._pubsub = self.client.pubsub(ignore_subscribe_messages=True)
        self._pubsub.psubscribe(**{f"{self.channel_prefix}user-*": self._on_message})
        self._thread = self._pubsub.run_in_thread(sleep_time=0.1, daemon=True)
        super().start()
        logger.info("Realtime relay subscribed on %suser-*", self.channel_prefix)

    def stop(self) -> None:
        if self._thread is not None:
            self._thread.stop()
            self._thread = None
        if self._pubsub is not None:
            self._pubsub.close()
            self._pubsub = None
        super().stop()

    def publish(self, user_id: str, event: str, payload: dict) -> None:
        message = {"event": event, "data": payload}
        self.history.append((user_id, message))
        try:
            self.client.publish(
                f"{self.channel_prefix}{channel_name(user_id)}",
                json.dumps({"user_id": user_id, **message}, default=str),
            )
        except redis_exceptions.RedisError:
            # Realtime delivery is best effort; fall back to local clients only.
            logger.exception("Redis publish failed for %s", channel_name(user_id))
            self._deliver(user_id, message)

    def _on_message(self, raw: dict) -> None:
        try:
            body = json.loads(raw["data"])
            user_id = body.pop("user_id")
        except (KeyError, TypeError, ValueError):
            logger.warning("Dropping malformed realtime message on %s", raw.get("channel"))
            return
        self._deliver(user_id, body)


# Notifications


class NotificationError(Exception):
    pass


@dataclass(frozen=True)
class Template:
    subject: str
    content: str
    type: str = "email"


@dataclass
class RenderedMessage:
    subject: str
    content: str
    type: str


DEFAULT_TEMPLATES = {
    "user_signup": Template(
        subject="Welcome to Kepka!",
        content=(
            "Hello {{name}}, welcome to the Kepka platform! "
            "Your account has been created successfully."
        ),
    ),
    "token_created": Template(
        subject="Token Created Successfully",
        content=(
            "Your token {{token_name}} ({{symbol}}) has been created successfully "
            "with {{total_supply}} total supply."
        ),
    ),
    "payment_success": Template(
        subject="Payment Successful",
        content=(
            "Your payment of ${{amount}} has been processed successfully. "
            "Transaction ID: {{transaction_id}}"
        ),
    ),
    "security_alert": Template(
        subject="Security Alert",
        content=(
            "Security alert for your account: {{alert_message}}. If this wasn't you, "
            "please contact support immediately."
        ),
    ),
    "password_reset": Template(
        subject="Reset your Kepka password",
        content="Use this link to reset your password: {{reset_url}}",
    ),
}

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")

Channel = Callable[[RenderedMessage, str], None]


@dataclass
class Notifier:
    """Renders named templates and hands them to named delivery channels."""

    http_timeout: float = 5.0
    session: Optional[requests.Session] = None
    templates: dict[str, Template] = field(default_factory=lambda: dict(DEFAULT_TEMPLATES))
    channels: dict[str, Channel] = field(default_factory=dict)

    def __post_init__(self):
        if self.session is None:
            self.session = requests.Session()
        self.channels.setdefault("email", self._send_email)
        self.channels.setdefault("webhook", self._send_webhook)

    def add_channel(self, name: str, handler: Channel) -> None:
        self.channels[name] = handler
        logger.info("Notification channel added: %s", name)

    def add_template(self, name: str, template: Template) -> None:
        self.templates[name] = template
        logger.info("Notification template added: %s", name)

    def render(self, template_name: str, data: dict[str, Any]) -> RenderedMessage:
        template = self.templates.get(template_name)
        if template is None:
            raise NotificationError(f"Notification template not found: {template_name}")

        def substitute(match: re.Match) -> str:
            key = match.group(1)
            return str(data[key]) if key in data else match.group(0)

        return RenderedMessage(
            subject=template.subject,
            content=_PLACEHOLDER.sub(substitute, template.content),
            type=template.type,
        )

    def send(
        self, channel_name: str, template_name: str, data: dict, recipient: str
    ) -> RenderedMessage:
        channel = self.channels.get(channel_name)
        if channel is None:
            raise NotificationError(f"Notification channel not found: {channel_name}")
        message = self.render(template_name, data)
        channel(message, recipient)
        logger.info("Notification %s sent via %s to %s", template_name, channel_name, recipient)
        return message

    def broadcast(
        self, template_name: str, data: dict, recipients: Iterable[tuple[str, str]]
    ) -> None:
        for channel_name, recipient in recipients:
            self.send(channel_name, template_name, data, recipient)

    def notify(self, template_name: str, data: dict, recipient: Optional[str]) -> bool:
        """Best-effort email notification used by request handlers."""
        if not recipient:
            return False
        try:
            self.send("email", template_name, data, recipient)
            return True
        except NotificationError:
            logger.exception("Notification %s to %s failed", template_name, recipient)
            return False

    def _send_email(self, message: RenderedMessage, recipient: str) -> None:
        # No mail transport is configured; the log line is the delivery.
        logger.info("Email to %s: %s", recipient, message.subject)

    def _send_webhook(self, message: RenderedMessage, url: str) -> None:
        try:
            response = self.session.post(url, json=asdict(message), timeout=self.http_timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise NotificationError(f"Webhook delivery to {url} failed") from exc
