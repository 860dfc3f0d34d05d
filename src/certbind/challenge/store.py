"""Challenge response stores: in-memory and database-backed.

Both map a request path to the exact body the CA must receive, with a
per-entry expiry.  A miss returns ``None``; a backend failure raises
:class:`~certbind.core.errors.ChallengeStoreError` so callers can tell
"not published" from "could not look".
"""

from __future__ import annotations

import abc
import logging
import threading
import time
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from certbind.core.errors import ChallengeStoreError

if TYPE_CHECKING:
    from collections.abc import Callable

    from pypgkit import Database

    from certbind.config.settings import ChallengeStoreSettings

log = logging.getLogger(__name__)


class ChallengeStore(abc.ABC):
    """Key/value store for published challenge responses."""

    @abc.abstractmethod
    def put(self, path: str, value: str, ttl_seconds: int) -> None:
        """Store *value* under *path*, replacing any previous value."""

    @abc.abstractmethod
    def get(self, path: str) -> str | None:
        """Return the live value for *path*, or ``None`` when absent or expired."""

    def gc(self) -> int:
        """Drop expired entries; return how many were removed."""
        return 0


class InMemoryChallengeStore(ChallengeStore):
    """Thread-safe dict with per-entry expiry (single-process deployments)."""

    def __init__(
        self,
        *,
        gc_interval_seconds: int = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._gc_interval = gc_interval_seconds
        self._last_cleanup = clock()

    def put(self, path: str, value: str, ttl_seconds: int) -> None:
        now = self._clock()
        with self._lock:
            self._maybe_cleanup(now)
            self._entries[path] = (value, now + ttl_seconds)

    def get(self, path: str) -> str | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(path)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= now:
                del self._entries[path]
                return None
            return value

    def gc(self) -> int:
        now = self._clock()
        with self._lock:
            return self._purge(now)

    def _maybe_cleanup(self, now: float) -> None:
        if now - self._last_cleanup < self._gc_interval:
            return
        self._purge(now)

    def _purge(self, now: float) -> int:
        self._last_cleanup = now
        expired = [path for path, (_, expires_at) in self._entries.items() if expires_at <= now]
        for path in expired:
            del self._entries[path]
        return len(expired)


class DatabaseChallengeStore(ChallengeStore):
    """Challenge responses in PostgreSQL, shared by every worker.

    Uses ``INSERT ... ON CONFLICT DO UPDATE`` so republishing a path
    overwrites it.  Reads filter on ``expires_at``; :meth:`gc` deletes
    the rows reads would ignore.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    def put(self, path: str, value: str, ttl_seconds: int) -> None:
        expires_at = datetime.now(UTC) + timedelta(seconds=ttl_seconds)
        try:
            self._db.execute(
                "INSERT INTO challenge_responses (path, value, expires_at) "
                "VALUES (%s, %s, %s) "
                "ON CONFLICT (path) "
                "DO UPDATE SET value = EXCLUDED.value, expires_at = EXCLUDED.expires_at",
                (path, value, expires_at),
            )
        except Exception as exc:  # noqa: BLE001
            msg = f"could not store challenge response for {path}: {exc}"
            raise ChallengeStoreError(msg, retryable=True) from exc

    def get(self, path: str) -> str | None:
        try:
            return self._db.fetch_value(
                "SELECT value FROM challenge_responses WHERE path = %s AND expires_at > %s",
                (path, datetime.now(UTC)),
            )
        except Exception as exc:  # noqa: BLE001
            msg = f"could not read challenge response for {path}: {exc}"
            raise ChallengeStoreError(msg, retryable=True) from exc

    def gc(self) -> int:
        """Delete expired challenge responses. Returns rows deleted."""
        try:
            return self._db.execute(
                "DELETE FROM challenge_responses WHERE expires_at <= %s",
                (datetime.now(UTC),),
            )
        except Exception as exc:  # noqa: BLE001
            msg = f"could not purge expired challenge responses: {exc}"
            raise ChallengeStoreError(msg, retryable=True) from exc


def create_challenge_store(
    settings: ChallengeStoreSettings,
    db: Database | None = None,
) -> ChallengeStore:
    """Factory: create the challenge store selected by config."""
    if settings.backend == "database":
        if db is not None:
            log.info("Using database-backed challenge store")
            return DatabaseChallengeStore(db)
        log.warning(
            "challenges.store.backend is 'database' but no database is "
            "available; falling back to the in-memory store",
        )
    else:
        log.info("Using in-memory challenge store")
    return InMemoryChallengeStore(gc_interval_seconds=settings.gc_interval_seconds)
