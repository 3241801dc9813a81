"""Local notification signals for independently rendered views."""

from __future__ import annotations

import logging
from collections.abc import Callable

from hourglass_sync.sync.protocol import SyncSignal

logger = logging.getLogger(__name__)

SignalHandler = Callable[[SyncSignal], None]


class SignalBus:
    """Dispatch :class:`SyncSignal` notifications to registered handlers.

    Handlers are registered per signal, or for every signal with ``"*"``.
    A failing handler is logged and does not stop the others.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[SignalHandler]] = {}

    def on(self, signal: SyncSignal | str, handler: SignalHandler) -> None:
        """Register a handler for a signal (or ``"*"`` for all)."""
        self._handlers.setdefault(str(signal), []).append(handler)

    def off(self, signal: SyncSignal | str, handler: SignalHandler | None = None) -> None:
        """Unregister one handler, or all handlers of a signal if ``handler`` is None."""
        key = str(signal)
        if key not in self._handlers:
            return
        if handler is None:
            del self._handlers[key]
        else:
            self._handlers[key] = [h for h in self._handlers[key] if h != handler]

    def emit(self, signal: SyncSignal) -> None:
        handlers = [*self._handlers.get(str(signal), []), *self._handlers.get("*", [])]
        for handler in handlers:
            try:
                handler(signal)
            except Exception:
                logger.warning("Signal handler error for '%s'", signal, exc_info=True)
