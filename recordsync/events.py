"""
Event signals for observers of the sync core.

Observers (the presentation layer, the HTTP surface) connect handlers to
a Signal and refresh their view of the local store when it fires.

Invariants:
    - Handlers run in connection order, synchronously with emit()
    - A failing handler is logged and never breaks the emitter
    - Connecting the same handler twice has no effect

How to change safely:
    - Add new signals to SyncEvents, keep existing names stable
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

Handler = Callable[..., Any]


class Signal:
    """A named list of handlers.

    Example:
        >>> events = SyncEvents()
        >>> events.records_changed.connect(lambda report: refresh())
        >>> events.records_changed.emit(report)
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._handlers: list[Handler] = []

    def connect(self, handler: Handler) -> Handler:
        """Register a handler. Returns it so this can be used as a decorator."""
        if handler not in self._handlers:
            self._handlers.append(handler)
        return handler

    def disconnect(self, handler: Handler) -> None:
        """Remove a handler if connected."""
        if handler in self._handlers:
            self._handlers.remove(handler)

    def emit(self, *args: Any, **kwargs: Any) -> int:
        """Call every handler.

        Returns:
            Number of handlers that completed without raising
        """
        delivered = 0
        for handler in list(self._handlers):
            try:
                handler(*args, **kwargs)
                delivered += 1
            except Exception as e:
                logger.warning(
                    f"Event handler failed: {e}",
                    extra={"signal": self.name},
                    exc_info=True,
                )
        return delivered

    def __len__(self) -> int:
        return len(self._handlers)


class SyncEvents:
    """All signals raised by the sync core.

    Attributes:
        records_changed: A merge save committed writes (MergeReport)
        share_accepted: A share was accepted and imported (AcceptanceResult)
        share_failed: Share acceptance failed (AcceptanceResult)
        pending_share_received: A share reference was parked (ShareReference)
    """

    def __init__(self) -> None:
        self.records_changed = Signal("didImportRecords")
        self.share_accepted = Signal("didAcceptShare")
        self.share_failed = Signal("shareAcceptanceFailed")
        self.pending_share_received = Signal("pendingShareReceived")
