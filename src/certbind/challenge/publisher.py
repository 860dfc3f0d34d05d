"""HTTP-01 challenge publication.

The authorization flow publishes ``token.thumbprint`` under
``/.well-known/acme-challenge/<token>``; the challenge route looks it
up when the CA comes to fetch it.  Publisher and route share one
:class:`ChallengeStore`.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from certbind.config.settings import CHALLENGE_PATH_PREFIX
from certbind.core.errors import ChallengeStoreError, PublishError

if TYPE_CHECKING:
    from certbind.challenge.store import ChallengeStore

log = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600


class ChallengePublisher:
    """Publishes and serves challenge responses through a store.

    Parameters
    ----------
    store:
        Backend shared with the HTTP challenge route.
    prefix:
        URL path prefix the CA fetches under.
    ttl_seconds:
        How long a published value stays retrievable.

    """

    def __init__(
        self,
        store: ChallengeStore,
        prefix: str = CHALLENGE_PATH_PREFIX,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ) -> None:
        self._store = store
        self._prefix = prefix
        self._ttl = ttl_seconds

    @property
    def prefix(self) -> str:
        return self._prefix

    def challenge_path(self, token: str) -> str:
        return f"{self._prefix}{token}"

    def publish(self, path: str, value: str) -> None:
        """Make *value* retrievable at *path*, overwriting any earlier value.

        Raises
        ------
        PublishError
            If *path* is outside the challenge prefix or the store fails.

        """
        token = path[len(self._prefix) :] if path.startswith(self._prefix) else ""
        if not token or "/" in token:
            msg = f"refusing to publish outside {self._prefix}: {path}"
            raise PublishError(msg)
        try:
            self._store.put(path, value, self._ttl)
        except ChallengeStoreError as exc:
            raise PublishError(exc.detail, retryable=exc.retryable) from exc
        log.debug("Published challenge response at %s", path)

    def lookup(self, path: str) -> str | None:
        """Return the value at *path*; ``None`` means not published.

        Store failures propagate as :class:`ChallengeStoreError`.
        """
        return self._store.get(path)
