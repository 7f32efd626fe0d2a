"""Synchronous publish/subscribe fan-out."""

from __future__ import annotations

import logging
from typing import Any, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _Subscription(Generic[T]):
    __slots__ = ("callback", "active")

    def __init__(self, callback: Callable[[T], Any]) -> None:
        self.callback = callback
        self.active = True


class ChangeBus(Generic[T]):
    """Callbacks run in registration order on the publishing thread.

    Unsubscribing from inside a callback is allowed. A subscription removed
    while a notification is in flight is skipped for the rest of that pass.
    """

    def __init__(self, name: str = "change") -> None:
        self.name = name
        self._subscriptions: list[_Subscription[T]] = []

    def subscribe(self, callback: Callable[[T], Any]) -> Callable[[], None]:
        subscription = _Subscription(callback)
        self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            subscription.active = False
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return unsubscribe

    def notify(self, event: T) -> int:
        """Deliver an event; return how many subscribers were called."""
        delivered = 0
        for subscription in list(self._subscriptions):
            if not subscription.active:
                continue
            delivered += 1
            try:
                subscription.callback(event)
            except Exception:
                logger.exception("Subscriber of %s bus failed", self.name)
        return delivered

    def __len__(self) -> int:
        return len(self._subscriptions)
