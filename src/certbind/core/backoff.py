"""Bounded polling schedule for ACME resources.

ACME servers may send ``Retry-After`` on authorization and order
responses (RFC 8555 §7.5.1, §7.4).  When present it is honoured, kept
between the configured initial and maximum intervals; otherwise the delay grows
exponentially from the initial interval.  Every wait is clipped to an
overall deadline so polling can never hang.

Usage::

    schedule = PollSchedule(timeout=120, initial_interval=1, max_interval=10)
    while True:
        authz = client.get_authorization(url)
        if authz.is_terminal:
            break
        if not schedule.wait(client.last_retry_after):
            raise AuthorizationTimeoutError(...)
"""

from __future__ import annotations

import email.utils
import logging
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from certbind.core.errors import CancellationError

if TYPE_CHECKING:
    import threading
    from collections.abc import Callable

log = logging.getLogger(__name__)


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """Parse a ``Retry-After`` header into seconds.

    Accepts both forms from RFC 9110 §10.2.3: a non-negative number of
    seconds or an HTTP date.  Returns ``None`` when the header is absent
    or unparseable; past dates yield ``0.0``.
    """
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        log.debug("Ignoring unparseable Retry-After header: %r", value)
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    now = now or datetime.now(UTC)
    return max(0.0, (when - now).total_seconds())


class PollSchedule:
    """Delay calculator and sleeper bounded by a wall-clock deadline.

    Parameters
    ----------
    timeout:
        Overall seconds allowed from construction until the deadline.
    initial_interval:
        First delay when the server gives no hint.
    max_interval:
        Upper bound for any single delay, hinted or not.
    cancel:
        Optional event; when set, the schedule raises
        :class:`CancellationError` instead of sleeping.
    clock:
        Monotonic clock (injectable for tests).
    sleep:
        Sleep function (injectable for tests).  Defaults to waiting on
        *cancel* so a cancellation wakes the sleeper immediately.

    """

    def __init__(
        self,
        *,
        timeout: float,
        initial_interval: float,
        max_interval: float,
        cancel: threading.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._clock = clock
        self._deadline = clock() + timeout
        self._initial = initial_interval
        self._max = max_interval
        self._cancel = cancel
        self._sleep = sleep
        self.attempts = 0

    @property
    def remaining(self) -> float:
        """Seconds left until the deadline (never negative)."""
        return max(0.0, self._deadline - self._clock())

    @property
    def expired(self) -> bool:
        return self.remaining <= 0

    def next_delay(self, retry_after: str | None = None) -> float:
        """Return the delay before the next attempt, without sleeping."""
        hinted = parse_retry_after(retry_after)
        if hinted is not None:
            # A zero or past hint never polls faster than the initial interval.
            return min(max(hinted, self._initial), self._max)
        return min(self._initial * (2**self.attempts), self._max)

    def wait(self, retry_after: str | None = None) -> bool:
        """Sleep until the next attempt.

        Returns ``False`` without sleeping when the deadline has passed,
        ``True`` once it is time to poll again.
        """
        self.check_cancelled()
        remaining = self.remaining
        if remaining <= 0:
            return False

        delay = min(self.next_delay(retry_after), remaining)
        self.attempts += 1
        log.debug(
            "Poll attempt %d: waiting %.2fs (%.1fs left)",
            self.attempts,
            delay,
            remaining,
        )
        if delay > 0:
            if self._sleep is not None:
                self._sleep(delay)
            elif self._cancel is not None:
                self._cancel.wait(delay)
            else:
                time.sleep(delay)
        self.check_cancelled()
        return True

    def check_cancelled(self) -> None:
        if self._cancel is not None and self._cancel.is_set():
            msg = "run cancelled while polling"
            raise CancellationError(msg)
