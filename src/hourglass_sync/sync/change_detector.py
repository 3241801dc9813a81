"""Classify local store mutations and trigger upload scheduling."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from hourglass_sync.core.document import is_sync_relevant
from hourglass_sync.storage.observable import MutationEvent, ObservableStore

logger = logging.getLogger(__name__)


class ChangeDetector:
    """Watch one client's store and call ``on_relevant`` for sync-relevant mutations.

    Only mutations made through this client's own store schedule anything.
    Mutations other clients publish on the shared tab bus are informational:
    they are counted and handed to ``on_foreign`` but never schedule an
    upload here, so N open clients produce one upload per change, not N.
    """

    def __init__(
        self,
        store: ObservableStore,
        on_relevant: Callable[[MutationEvent], None],
        *,
        on_foreign: Callable[[MutationEvent], None] | None = None,
        predicate: Callable[[str], bool] = is_sync_relevant,
    ) -> None:
        self._store = store
        self._on_relevant = on_relevant
        self._on_foreign = on_foreign
        self._predicate = predicate
        self._detach: list[Callable[[], None]] = []
        self._suspended = 0
        self.relevant_count = 0
        self.ignored_count = 0
        self.foreign_count = 0

    @property
    def attached(self) -> bool:
        return bool(self._detach)

    def attach(self) -> None:
        """Start observing the store and the tab bus."""
        if self._detach:
            return
        self._detach.append(self._store.add_listener(self._handle_local))
        if self._store.bus is not None:
            self._detach.append(self._store.bus.subscribe(self._handle_bus))

    def detach(self) -> None:
        """Stop observing."""
        for undo in self._detach:
            undo()
        self._detach.clear()

    @contextmanager
    def suspended(self) -> Iterator[None]:
        """Ignore local mutations made inside the block (e.g. applying a pull)."""
        self._suspended += 1
        try:
            yield
        finally:
            self._suspended -= 1

    def _handle_local(self, event: MutationEvent) -> None:
        if self._suspended:
            return
        if not self._predicate(event.key):
            self.ignored_count += 1
            return
        self.relevant_count += 1
        logger.debug("Sync-relevant %s of %s", event.op, event.key)
        self._on_relevant(event)

    def _handle_bus(self, event: MutationEvent) -> None:
        # Own events already arrived through the store listener
        if event.origin_id == self._store.origin_id:
            return
        if not self._predicate(event.key):
            return
        self.foreign_count += 1
        logger.debug("Client %s changed %s", event.origin_id, event.key)
        if self._on_foreign is not None:
            self._on_foreign(event)
