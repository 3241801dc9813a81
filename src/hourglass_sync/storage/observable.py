"""Observable wrapper around a local key-value store.

Every successful mutation is published to in-process listeners and to a
:class:`TabBus` shared by all clients ("tabs") that write the same underlying
store.  Listeners decide from ``origin_id`` whether an event is their own.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

from hourglass_sync.errors import StorageUnavailable
from hourglass_sync.storage.local_store import KeyValueStore

logger = logging.getLogger(__name__)


class MutationOp(StrEnum):
    """Kind of store mutation."""

    WRITE = "write"
    REMOVE = "remove"


@dataclass(frozen=True)
class MutationEvent:
    """A completed mutation of one key."""

    key: str
    op: MutationOp
    origin_id: str


MutationListener = Callable[[MutationEvent], None]


class TabBus:
    """Broadcast channel connecting every client that shares one store.

    Stands in for the browser's cross-tab storage events: a publish reaches
    every subscriber, including the publisher.
    """

    def __init__(self) -> None:
        self._subscribers: list[MutationListener] = []

    def subscribe(self, listener: MutationListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._subscribers.append(listener)

        def _unsubscribe() -> None:
            if listener in self._subscribers:
                self._subscribers.remove(listener)

        return _unsubscribe

    def publish(self, event: MutationEvent) -> None:
        for listener in list(self._subscribers):
            try:
                listener(event)
            except Exception:
                logger.warning("Tab bus listener failed for %s", event.key, exc_info=True)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


class ObservableStore:
    """Store wrapper that publishes mutations and absorbs storage failures.

    ``write`` and ``remove`` return ``False`` instead of raising when the
    underlying store reports :class:`StorageUnavailable`.
    """

    def __init__(
        self,
        store: KeyValueStore,
        origin_id: str,
        *,
        bus: TabBus | None = None,
    ) -> None:
        self._store = store
        self._origin_id = origin_id
        self._bus = bus
        self._listeners: list[MutationListener] = []

    @property
    def origin_id(self) -> str:
        return self._origin_id

    @property
    def bus(self) -> TabBus | None:
        return self._bus

    @property
    def inner(self) -> KeyValueStore:
        """The wrapped store; mutating it directly bypasses observation."""
        return self._store

    def add_listener(self, listener: MutationListener) -> Callable[[], None]:
        """Register a same-tab listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def read(self, key: str) -> str | None:
        return self._store.read(key)

    def read_or_default(self, key: str, default: str | None = None) -> str | None:
        """Read a key, falling back to ``default`` when absent or unreadable."""
        try:
            value = self._store.read(key)
        except StorageUnavailable:
            logger.warning("Local store unavailable reading %s, using default", key)
            return default
        return default if value is None else value

    def keys(self) -> list[str]:
        return self._store.keys()

    def snapshot(self) -> dict[str, str]:
        return self._store.snapshot()

    def write(self, key: str, value: str) -> bool:
        try:
            self._store.write(key, value)
        except StorageUnavailable as e:
            logger.warning("Local write of %s failed: %s", key, e)
            return False
        self._emit(MutationEvent(key=key, op=MutationOp.WRITE, origin_id=self._origin_id))
        return True

    def remove(self, key: str) -> bool:
        """Remove ``key``; removing an absent key succeeds without an event."""
        try:
            if self._store.read(key) is None:
                return True
            self._store.remove(key)
        except StorageUnavailable as e:
            logger.warning("Local remove of %s failed: %s", key, e)
            return False
        self._emit(MutationEvent(key=key, op=MutationOp.REMOVE, origin_id=self._origin_id))
        return True

    def _emit(self, event: MutationEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.warning("Store listener failed for %s", event.key, exc_info=True)
        if self._bus is not None:
            self._bus.publish(event)
