"""Graceful shutdown coordinator.

Tracks the in-flight reconciliation run and lets it wind down (up to a
timeout) before the process exits.  The shutdown flag is also the
run's cancellation event: once shutdown starts, the run aborts at its
next CA call or poll wait and reports the rest as cancelled.

Usage::

    coordinator = ShutdownCoordinator(graceful_timeout=30)

    with coordinator.track("reconcile"):
        engine.run(cancel=coordinator.cancel_event)

    coordinator.initiate()  # waits for tracked runs to finish
"""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections import Counter
from contextlib import contextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Generator
    from types import FrameType

log = logging.getLogger(__name__)


class ShutdownCoordinator:
    """Cancels and waits for tracked runs when the process is asked to stop."""

    def __init__(self, graceful_timeout: int = 30) -> None:
        self._graceful_timeout = graceful_timeout
        self._cancel = threading.Event()
        self._running: Counter[str] = Counter()
        self._idle = threading.Condition()

    @property
    def is_shutting_down(self) -> bool:
        return self._cancel.is_set()

    @property
    def cancel_event(self) -> threading.Event:
        """Event set when shutdown starts; pass it as a run's ``cancel``."""
        return self._cancel

    @property
    def in_flight_count(self) -> int:
        with self._idle:
            return sum(self._running.values())

    def running(self) -> list[str]:
        """Names of the tracked operations still in progress."""
        with self._idle:
            return sorted(self._running.elements())

    @contextmanager
    def track(self, name: str) -> Generator[None, None, None]:
        """Count *name* as in flight for the duration of the block."""
        if self._cancel.is_set():
            log.warning("'%s' started after shutdown began; it will be cancelled", name)

        with self._idle:
            self._running[name] += 1
        try:
            yield
        finally:
            with self._idle:
                self._running[name] -= 1
                if self._running[name] <= 0:
                    del self._running[name]
                if not self._running:
                    self._idle.notify_all()

    def initiate(self) -> None:
        """Set the cancel flag, then wait up to ``graceful_timeout`` for tracked runs."""
        if self._cancel.is_set():
            return
        self._cancel.set()
        log.info("Shutting down; cancelling in-flight reconciliation")

        deadline = time.monotonic() + self._graceful_timeout
        with self._idle:
            finished = self._idle.wait_for(
                lambda: not self._running,
                timeout=max(0.0, deadline - time.monotonic()),
            )
            if finished:
                log.info("In-flight runs finished")
            else:
                log.warning(
                    "Shutdown timeout expired; still running: %s",
                    ", ".join(sorted(self._running.elements())),
                )

    def register_signals(self) -> None:
        """Route SIGTERM and SIGINT to :meth:`initiate`.  Main thread only."""
        try:
            signal.signal(signal.SIGTERM, self._on_signal)
            signal.signal(signal.SIGINT, self._on_signal)
        except (ValueError, OSError):
            log.debug("Signal handlers not installed (not on the main thread)")

    def _on_signal(self, signum: int, frame: FrameType | None) -> None:
        log.info("Received %s", signal.Signals(signum).name)
        # initiate() blocks, so it must not run inside the handler.
        threading.Thread(target=self.initiate, name="certbind-shutdown", daemon=True).start()
