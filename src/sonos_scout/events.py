"""
In-process publish/subscribe used to fan out roster and media-state changes.
"""
from collections.abc import Callable
from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

EventHandler = Callable[[Any], None]


class EventTopic(str, Enum):
    DEVICES = "devices"  # payload: list[Device]
    MEDIA_INFO = "media-info"  # payload: MediaInfo


class EventBus:
    """
    Dispatches published payloads to the handlers subscribed to a topic.

    Handlers run synchronously, in subscription order. A failing handler is
    logged and does not stop the remaining handlers.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = {}
        self.logger = logger.bind(component="EventBus")

    def subscribe(self, topic: EventTopic | str, handler: EventHandler) -> None:
        self._subscribers.setdefault(_topic_key(topic), []).append(handler)
        self.logger.debug("Handler subscribed", topic=_topic_key(topic), handler=repr(handler))

    def unsubscribe(self, topic: EventTopic | str, handler: EventHandler) -> None:
        handlers = self._subscribers.get(_topic_key(topic), [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, topic: EventTopic | str, payload: Any) -> None:
        key = _topic_key(topic)
        for handler in list(self._subscribers.get(key, [])):
            try:
                handler(payload)
            except Exception as e:
                self.logger.exception("Event handler failed", topic=key, handler=repr(handler), error=str(e))

    def subscriber_count(self, topic: EventTopic | str) -> int:
        return len(self._subscribers.get(_topic_key(topic), []))


def _topic_key(topic: EventTopic | str) -> str:
    return topic.value if isinstance(topic, EventTopic) else topic
