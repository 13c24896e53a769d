"""
Per-user notification topics

Live delivery of notifications to connected clients. Every user has one
topic; a message is ``{"type": "notification" | "read", "data": {...}}``.

- InMemoryNotificationBroker: single process (development, tests)
- RedisNotificationBroker: Redis Pub/Sub, fans out across instances.
  Channel: notifications:user:{user_id}
"""

from __future__ import annotations

import json
import logging
import queue
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from django.conf import settings  # type: ignore
from django.utils.module_loading import import_string  # type: ignore

logger = logging.getLogger(__name__)


def user_topic(user_id) -> str:
    return f"notifications:user:{user_id}"


class Subscription(ABC):
    """Handle returned by ``NotificationBroker.subscribe``; close it when done."""

    @abstractmethod
    def get(self, timeout: float) -> Optional[Dict[str, Any]]:
        """Next message, or None if nothing arrived within ``timeout`` seconds."""

    @abstractmethod
    def close(self) -> None:
        ...

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class NotificationBroker(ABC):
    @abstractmethod
    def publish(self, user_id, message: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def subscribe(self, user_id) -> Subscription:
        ...


class _QueueSubscription(Subscription):
    def __init__(self, broker: "InMemoryNotificationBroker", topic: str):
        self._broker = broker
        self._topic = topic
        self.queue: "queue.Queue[Dict[str, Any]]" = queue.Queue()

    def get(self, timeout: float) -> Optional[Dict[str, Any]]:
        try:
            return self.queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        self._broker._detach(self._topic, self)


class InMemoryNotificationBroker(NotificationBroker):
    """Thread-safe fan-out to subscribers of the same process.

    ``published`` keeps every message per topic so tests can inspect it.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: Dict[str, List[_QueueSubscription]] = {}
        self.published: Dict[str, List[Dict[str, Any]]] = {}

    def publish(self, user_id, message: Dict[str, Any]) -> None:
        topic = user_topic(user_id)
        with self._lock:
            self.published.setdefault(topic, []).append(message)
            subscribers = list(self._subscribers.get(topic, []))
        for subscription in subscribers:
            subscription.queue.put(message)

    def subscribe(self, user_id) -> Subscription:
        topic = user_topic(user_id)
        subscription = _QueueSubscription(self, topic)
        with self._lock:
            self._subscribers.setdefault(topic, []).append(subscription)
        return subscription

    def messages_for(self, user_id) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self.published.get(user_topic(user_id), []))

    def _detach(self, topic: str, subscription: _QueueSubscription) -> None:
        with self._lock:
            subscribers = self._subscribers.get(topic, [])
            if subscription in subscribers:
                subscribers.remove(subscription)


class _RedisSubscription(Subscription):
    def __init__(self, pubsub, channel: str):
        self._pubsub = pubsub
        self._channel = channel

    def get(self, timeout: float) -> Optional[Dict[str, Any]]:
        message = self._pubsub.get_message(ignore_subscribe_messages=True, timeout=timeout)
        if not message or message.get("type") != "message":
            return None
        try:
            return json.loads(message["data"])
        except (TypeError, ValueError) as e:
            logger.warning(f"Dropping malformed message on {self._channel}: {e}")
            return None

    def close(self) -> None:
        try:
            self._pubsub.unsubscribe(self._channel)
        finally:
            self._pubsub.close()
        logger.debug(f"Unsubscribed from {self._channel}")


class RedisNotificationBroker(NotificationBroker):
    def __init__(self, url: Optional[str] = None, client=None):
        if client is None:
            import redis

            client = redis.Redis.from_url(
                url or settings.NOTIFICATIONS_REDIS_URL,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_keepalive=True,
            )
        self._client = client

    def publish(self, user_id, message: Dict[str, Any]) -> None:
        channel = user_topic(user_id)
        self._client.publish(channel, json.dumps(message, default=str))
        logger.debug(f"Published {message.get('type')} to {channel}")

    def subscribe(self, user_id) -> Subscription:
        channel = user_topic(user_id)
        pubsub = self._client.pubsub()
        pubsub.subscribe(channel)
        logger.debug(f"Subscribed to {channel}")
        return _RedisSubscription(pubsub, channel)


_default_broker: Optional[NotificationBroker] = None
_default_lock = threading.Lock()


def get_notification_broker() -> NotificationBroker:
    """Broker configured by settings.NOTIFICATIONS_BROKER_CLASS (one per process)."""
    global _default_broker
    with _default_lock:
        if _default_broker is None:
            broker_class = import_string(
                getattr(
                    settings,
                    "NOTIFICATIONS_BROKER_CLASS",
                    "apps.notifications.broker.InMemoryNotificationBroker",
                )
            )
            _default_broker = broker_class()
        return _default_broker


def reset_notification_broker() -> None:
    global _default_broker
    with _default_lock:
        _default_broker = None
