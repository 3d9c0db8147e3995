"""
Event Bus

In-process publish/subscribe. Delivery is synchronous and in subscription
order; there is no persistence, replay or cross-process delivery.
"""

import asyncio
import inspect
import threading
from dataclasses import dataclass
from typing import Any, Callable, Union

import structlog

from soc_automation.events.types import WILDCARD
from soc_automation.store.models import Event

logger = structlog.get_logger(__name__)

EventHandler = Callable[[Event], Any]
EventSelector = Union[str, Callable[[Event], bool], None]


@dataclass(eq=False)
class _Subscription:
    selector: EventSelector
    handler: EventHandler

    def matches(self, event: Event) -> bool:
        if self.selector is None or self.selector == WILDCARD:
            return True
        if isinstance(self.selector, str):
            return self.selector == event.type
        return bool(self.selector(event))


class EventBus:
    """
    Synchronous in-process event bus.

    Handlers may be plain functions or coroutine functions; coroutines are
    scheduled as tasks on the running loop. A failing handler is logged and
    does not affect other subscribers.
    """

    def __init__(self) -> None:
        self._subscriptions: list[_Subscription] = []
        self._lock = threading.Lock()
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, selector: EventSelector, handler: EventHandler) -> Callable[[], None]:
        """
        Subscribe a handler.

        Args:
            selector: Event type name, ``"*"``/None for every event, or a
                predicate over the event.
            handler: Called with each matching event.

        Returns:
            Callable that removes the subscription.
        """
        subscription = _Subscription(selector, handler)
        with self._lock:
            self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            with self._lock:
                if subscription in self._subscriptions:
                    self._subscriptions.remove(subscription)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, event: Event) -> int:
        """
        Deliver an event to every matching subscriber.

        Returns:
            Number of handlers the event was delivered to.
        """
        with self._lock:
            subscriptions = list(self._subscriptions)

        logger.debug(
            "Publishing event",
            event_type=event.type,
            entity_id=event.entity_id,
            organization_id=event.organization_id,
        )

        delivered = 0
        for subscription in subscriptions:
            try:
                if not subscription.matches(event):
                    continue
                result = subscription.handler(event)
                if inspect.isawaitable(result):
                    self._schedule(result, event)
                delivered += 1
            except Exception:
                logger.exception(
                    "Event handler failed",
                    event_type=event.type,
                    handler=getattr(subscription.handler, "__qualname__", repr(subscription.handler)),
                )
        return delivered

    def _schedule(self, awaitable: Any, event: Event) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.error("Async handler dropped: no running event loop", event_type=event.type)
            return

        task = asyncio.ensure_future(awaitable, loop=loop)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._task_done(t, event))

    def _task_done(self, task: asyncio.Task, event: Event) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Async event handler failed",
                event_type=event.type,
                error=str(exc),
                exc_info=exc,
            )

    async def drain(self) -> None:
        """Wait for scheduled async handlers to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
