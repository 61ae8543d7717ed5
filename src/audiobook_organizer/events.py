"""Synchronous publish/subscribe event bus with last-value replay.

Components receive an EventBus instance at construction and report progress
through it; nothing imports a global bus.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from loguru import logger

log = logger.bind(stage="events")

Handler = Callable[[Any], Any]


class FileEvents:
    SCAN_STARTED = "file:scan:started"
    SCAN_PROGRESS = "file:scan:progress"
    SCAN_COMPLETED = "file:scan:completed"
    SCAN_FAILED = "file:scan:failed"

    PROCESSING_STARTED = "file:processing:started"
    PROCESSING_COMPLETED = "file:processing:completed"
    PROCESSING_FAILED = "file:processing:failed"
    PROCESSING_PHASE = "file:processing:phase"

    ORGANIZED = "file:organized"


class BatchEvents:
    STARTED = "file:batch:started"
    PROGRESS = "file:batch:progress"
    COMPLETED = "file:batch:completed"
    FAILED = "file:batch:failed"
    STATE_CHANGED = "orchestrator:state"


class MetadataEvents:
    LOOKUP_STARTED = "metadata:lookup:started"
    LOOKUP_COMPLETED = "metadata:lookup:completed"
    LOOKUP_FAILED = "metadata:lookup:failed"

    SEARCH_STARTED = "metadata:search:started"
    SEARCH_COMPLETED = "metadata:search:completed"
    SEARCH_FAILED = "metadata:search:failed"


@dataclass
class _Subscription:
    subscription_id: str
    event_name: str
    handler: Handler
    once: bool


class EventBus:
    """Publish/subscribe dispatcher.

    Each event name keeps its most recent payload. Handlers run in
    subscription order; a handler that raises is logged and does not stop
    the others.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[_Subscription]] = {}
        self._subscriptions: dict[str, _Subscription] = {}
        self._last_events: dict[str, Any] = {}
        self._counter = 0

    def subscribe(
        self,
        event_name: str,
        handler: Handler,
        *,
        once: bool = False,
        immediate: bool = False,
    ) -> str:
        """Register `handler` for `event_name` and return a subscription id.

        With immediate=True and a retained payload, the handler is replayed
        with that payload on the next loop iteration (inline, after
        registration, when no event loop is running).
        """
        if not event_name:
            raise ValueError("Event name cannot be empty")
        if not callable(handler):
            raise TypeError("Event handler must be callable")

        self._counter += 1
        sub = _Subscription(
            subscription_id=f"sub_{self._counter}",
            event_name=event_name,
            handler=handler,
            once=once,
        )
        self._handlers.setdefault(event_name, []).append(sub)
        self._subscriptions[sub.subscription_id] = sub
        log.debug(f"Subscribed to {event_name} ({sub.subscription_id}, once={once})")

        if immediate and event_name in self._last_events:
            payload = self._last_events[event_name]
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                self._replay(sub, payload)
            else:
                loop.call_soon(self._replay, sub, payload)

        return sub.subscription_id

    def subscribe_once(self, event_name: str, handler: Handler, *, immediate: bool = False) -> str:
        return self.subscribe(event_name, handler, once=True, immediate=immediate)

    def unsubscribe(self, subscription_id: str) -> bool:
        sub = self._subscriptions.pop(subscription_id, None)
        if sub is None:
            log.warning(f"Attempted to unsubscribe unknown subscription: {subscription_id}")
            return False

        handlers = self._handlers.get(sub.event_name, [])
        handlers[:] = [h for h in handlers if h.subscription_id != subscription_id]
        if not handlers:
            self._handlers.pop(sub.event_name, None)
        log.debug(f"Unsubscribed from {sub.event_name} ({subscription_id})")
        return True

    def emit(self, event_name: str, data: Any = None) -> int:
        """Deliver `data` to every handler of `event_name`.

        Returns the number of handlers the event was dispatched to.
        """
        if not event_name:
            raise ValueError("Event name cannot be empty")

        self._last_events[event_name] = data

        # Snapshot so handlers may (un)subscribe while we iterate
        handlers = list(self._handlers.get(event_name, []))
        if not handlers:
            log.trace(f"Event emitted with no subscribers: {event_name}")
            return 0

        log.trace(f"Emitting {event_name} to {len(handlers)} handler(s)")
        dispatched = 0
        for sub in handlers:
            if sub.once:
                # Already consumed, e.g. by an emit from inside another handler
                if sub.subscription_id not in self._subscriptions:
                    continue
                self.unsubscribe(sub.subscription_id)
            self._invoke(sub, data)
            dispatched += 1
        return dispatched

    def last_event(self, event_name: str) -> Any:
        return self._last_events.get(event_name)

    def has_subscribers(self, event_name: str) -> bool:
        return bool(self._handlers.get(event_name))

    def subscriber_count(self, event_name: str) -> int:
        return len(self._handlers.get(event_name, []))

    def clear_event(self, event_name: str) -> int:
        """Remove every subscriber of one event. Returns how many were removed."""
        handlers = self._handlers.pop(event_name, [])
        for sub in handlers:
            self._subscriptions.pop(sub.subscription_id, None)
        return len(handlers)

    def clear_all(self) -> int:
        total = sum(len(h) for h in self._handlers.values())
        self._handlers.clear()
        self._subscriptions.clear()
        log.debug(f"Cleared all event subscribers ({total})")
        return total

    def shutdown(self) -> None:
        self.clear_all()
        self._last_events.clear()

    # -- internals --

    def _invoke(self, sub: _Subscription, data: Any) -> None:
        try:
            sub.handler(data)
        except Exception as e:
            log.error(f"Error in handler {sub.subscription_id} for {sub.event_name}: {e!r}")

    def _replay(self, sub: _Subscription, data: Any) -> None:
        # Subscription may have been removed before the replay ran
        if sub.subscription_id not in self._subscriptions:
            return
        if sub.once:
            self.unsubscribe(sub.subscription_id)
        self._invoke(sub, data)
