"""Flask application factory for certbind.

Usage::

    from certbind.app import create_app
    from certbind.config import get_config

    app = create_app(config=get_config())
"""

from __future__ import annotations

import atexit
import logging
from typing import TYPE_CHECKING

from flask import Flask, jsonify

from certbind.core.errors import ChallengeStoreError

if TYPE_CHECKING:
    from flask.typing import ResponseReturnValue
    from pypgkit import Database

    from certbind.app.context import Container
    from certbind.config.certbind_config import CertbindConfig

log = logging.getLogger(__name__)

# Looked up by /healthz to exercise the challenge store.
_HEALTH_PROBE_PATH = "/.well-known/acme-challenge/__certbind_health__"


def create_app(
    config: CertbindConfig | None = None,
    container: Container | None = None,
    database: Database | None = None,
) -> Flask:
    """Create and configure the certbind Flask application.

    Parameters
    ----------
    config:
        Loaded :class:`CertbindConfig`.  Falls back to :func:`get_config`
        when ``None``.
    container:
        Pre-built dependency container (tests inject fakes here).  When
        ``None`` one is built from the settings.
    database:
        Initialised :class:`Database`, required only by the
        ``database`` challenge store backend.

    Returns
    -------
    Flask
        Fully configured WSGI application.

    """
    if config is None:
        from certbind.config import get_config  # noqa: PLC0415

        config = get_config()

    settings = config.settings

    app = Flask("certbind")
    app.config["CERTBIND_SETTINGS"] = settings
    app.config["CERTBIND_CONFIG"] = config

    # -- Dependency container -----------------------------------------------
    if container is None:
        from certbind.app.context import build_container  # noqa: PLC0415

        container = build_container(settings, database=database)
    app.extensions["container"] = container

    # -- Graceful shutdown coordinator --------------------------------------
    shutdown_coordinator = container.shutdown
    app.extensions["shutdown_coordinator"] = shutdown_coordinator
    atexit.register(shutdown_coordinator.initiate)

    # -- Error handlers (RFC 7807) ------------------------------------------
    from certbind.app.errors import register_error_handlers  # noqa: PLC0415

    register_error_handlers(app)

    # -- Request lifecycle hooks --------------------------------------------
    from certbind.app.middleware import register_request_hooks  # noqa: PLC0415

    register_request_hooks(app)

    # -- Infrastructure endpoints -------------------------------------------
    _register_health(app)

    # -- Challenge responder and trigger ------------------------------------
    from certbind.api import register_blueprints  # noqa: PLC0415

    register_blueprints(app)

    log.info("Flask application created")
    return app


# ---------------------------------------------------------------------------
# Infrastructure endpoints
# ---------------------------------------------------------------------------


def _register_health(app: Flask) -> None:
    """Register ``/livez`` and ``/healthz`` probes."""
    from certbind import __version__  # noqa: PLC0415

    @app.route("/livez")
    def livez() -> ResponseReturnValue:
        """Return minimal liveness probe."""
        return jsonify({"alive": True, "version": __version__}), 200

    @app.route("/healthz")
    def healthz() -> ResponseReturnValue:
        """Return health status including challenge store reachability."""
        result: dict = {"status": "ok", "version": __version__}
        checks: dict = {}

        container = app.extensions["container"]

        try:
            container.store.get(_HEALTH_PROBE_PATH)
            checks["challenge_store"] = "ok"
        except ChallengeStoreError:
            checks["challenge_store"] = "error"
            result["status"] = "degraded"

        checks["reconciliation"] = "running" if container.run_lock.locked() else "idle"
        result["checks"] = checks
        result["shutting_down"] = container.shutdown.is_shutting_down

        code = 200 if result["status"] == "ok" else 503
        return jsonify(result), code
