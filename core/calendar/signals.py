# SPDX-License-Identifier: Apache-2.0
"""
Lightweight observer channels.

``Signal`` mirrors the connect/disconnect/emit surface of a Qt signal so that
managers and adapters can publish lifecycle notifications without a GUI
toolkit. Delivery is synchronous, in connection order, on the caller's
thread (the event loop thread in practice).
"""

import logging
from typing import Any, Callable, List

logger = logging.getLogger('calendarhub.calendar.signals')


class Signal:
    """A list of subscribers notified in order by ``emit``."""

    def __init__(self, *arg_types: type, name: str = ""):
        self.arg_types = arg_types
        self.name = name
        self._slots: List[Callable[..., Any]] = []

    def connect(self, slot: Callable[..., Any]) -> None:
        """Subscribe ``slot``; connecting the same callable twice is a no-op."""
        if slot not in self._slots:
            self._slots.append(slot)

    def disconnect(self, slot: Callable[..., Any] = None) -> bool:
        """
        Unsubscribe ``slot``, or every subscriber when omitted.

        Returns:
            True if anything was removed
        """
        if slot is None:
            removed = bool(self._slots)
            self._slots.clear()
            return removed
        try:
            self._slots.remove(slot)
        except ValueError:
            return False
        return True

    def emit(self, *args: Any) -> None:
        """
        Deliver ``args`` to every subscriber.

        A failing subscriber is logged and skipped; the rest still run.
        """
        for slot in list(self._slots):
            try:
                slot(*args)
            except Exception as e:
                logger.error(
                    "Signal %s subscriber %r failed: %s",
                    self.name or '<anonymous>', slot, e, exc_info=True
                )

    @property
    def receiver_count(self) -> int:
        return len(self._slots)

    def __repr__(self) -> str:
        return f"<Signal {self.name or '?'} receivers={len(self._slots)}>"
