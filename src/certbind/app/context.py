"""Dependency container for certbind.

Created once at startup and stored on the Flask app via
``app.extensions["container"]``; the CLI builds one directly for
``certbind run``.  Accessible from any request context with
:func:`get_container`.

Usage::

    from certbind.app.context import get_container

    report = get_container().run_reconciliation()
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from flask import current_app

from certbind.challenge.publisher import ChallengePublisher
from certbind.core.errors import ChallengeStoreError
from certbind.services.issuance import IssuanceFlow
from certbind.services.reconcile import ReconciliationEngine

if TYPE_CHECKING:
    from datetime import datetime

    from pypgkit import Database

    from certbind.app.shutdown import ShutdownCoordinator
    from certbind.challenge.store import ChallengeStore
    from certbind.config.settings import CertbindSettings
    from certbind.registry.base import CertificateRegistry
    from certbind.services.reconcile import CertificateIssuer, Report

log = logging.getLogger(__name__)


class Container:
    """Application-wide dependency container.

    Parameters
    ----------
    settings:
        The typed settings tree.
    store:
        Challenge response store shared by the publisher and the
        challenge route.
    registry:
        Domain/certificate registry backend.
    shutdown:
        Coordinator whose flag cancels an in-flight run.
    issuer:
        Certificate issuer; defaults to an :class:`IssuanceFlow` built
        from *settings*.

    """

    def __init__(
        self,
        settings: CertbindSettings,
        *,
        store: ChallengeStore,
        registry: CertificateRegistry,
        shutdown: ShutdownCoordinator,
        issuer: CertificateIssuer | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.publisher = ChallengePublisher(
            store,
            prefix=settings.challenges.path_prefix,
            ttl_seconds=settings.challenges.store.ttl_seconds,
        )
        self.registry = registry
        self.shutdown = shutdown
        self.issuer: CertificateIssuer = issuer or IssuanceFlow(
            settings.acme,
            settings.issuance,
            self.publisher,
        )
        self.engine = ReconciliationEngine(self.issuer, registry, settings.renewal)
        # Held for the duration of a reconciliation run.
        self.run_lock = threading.Lock()

    def run_reconciliation(self, now: datetime | None = None) -> Report:
        """Run one reconciliation, cancellable through the shutdown coordinator.

        The caller is expected to hold :attr:`run_lock`.
        """
        with self.shutdown.track("reconcile"):
            report = self.engine.run(now=now, cancel=self.shutdown.cancel_event)

        try:
            removed = self.store.gc()
        except ChallengeStoreError as exc:
            log.warning("Challenge store cleanup failed: %s", exc)
        else:
            if removed:
                log.debug("Removed %d expired challenge responses", removed)
        return report


def build_container(
    settings: CertbindSettings,
    *,
    database: Database | None = None,
    shutdown: ShutdownCoordinator | None = None,
) -> Container:
    """Wire the default store, registry and issuer from *settings*."""
    from certbind.app.shutdown import ShutdownCoordinator  # noqa: PLC0415
    from certbind.challenge.store import create_challenge_store  # noqa: PLC0415
    from certbind.registry import load_registry  # noqa: PLC0415

    return Container(
        settings,
        store=create_challenge_store(settings.challenges.store, database),
        registry=load_registry(settings.registry),
        shutdown=shutdown or ShutdownCoordinator(graceful_timeout=settings.server.graceful_timeout),
    )


def get_container() -> Container:
    """Return the :class:`Container` from the current Flask app."""
    container = current_app.extensions.get("container")
    if container is None:
        msg = "Dependency container not available -- was create_app() given a container?"
        raise RuntimeError(msg)
    return container
