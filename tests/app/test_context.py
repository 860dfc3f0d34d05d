"""Tests for the dependency container."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from certbind.app.context import Container, build_container, get_container
from certbind.challenge.store import InMemoryChallengeStore
from certbind.core.errors import ChallengeStoreError
from certbind.registry import AppEngineRegistry
from certbind.services.issuance import IssuanceFlow
from tests.services.conftest import domain, issued


def test_run_reconciliation_collects_expired_responses(
    container, fake_registry, fake_issuer, monkeypatch
):
    fake_registry.domains = [domain("b.example")]
    fake_issuer.obtain_certificate.return_value = issued("b.example")
    gc = MagicMock(wraps=container.store.gc)
    container.store.put("/stale", "value", ttl_seconds=-1)
    monkeypatch.setattr(container.store, "gc", gc)

    report = container.run_reconciliation()

    assert report.ok
    gc.assert_called_once_with()
    assert "/stale" not in container.store._entries
    assert container.shutdown.in_flight_count == 0


def test_run_reconciliation_passes_cancel_event(container):
    container.engine = MagicMock()
    container.run_reconciliation()
    _, kwargs = container.engine.run.call_args
    assert kwargs["cancel"] is container.shutdown.cancel_event


def test_store_cleanup_failure_is_not_fatal(container, monkeypatch):
    def broken():
        raise ChallengeStoreError("gone")

    monkeypatch.setattr(container.store, "gc", broken)
    assert container.run_reconciliation().ok


def test_default_issuer(settings, fake_registry):
    from certbind.app.shutdown import ShutdownCoordinator

    built = Container(
        settings,
        store=InMemoryChallengeStore(),
        registry=fake_registry,
        shutdown=ShutdownCoordinator(),
    )
    assert isinstance(built.issuer, IssuanceFlow)


def test_build_container(settings):
    built = build_container(settings)
    assert isinstance(built.registry, AppEngineRegistry)
    assert isinstance(built.store, InMemoryChallengeStore)
    assert built.publisher.prefix == settings.challenges.path_prefix


def test_get_container_outside_app(app):
    with app.app_context():
        assert get_container() is app.extensions["container"]
    with app.app_context(), patch.dict(app.extensions, clear=True):
        with pytest.raises(RuntimeError, match="container not available"):
            get_container()
