"""Programmatic gunicorn runner for certbind.

Starts gunicorn with the ``server`` section of the certbind config, so
no separate gunicorn config file is needed.

Usage::

    from certbind.server.gunicorn_app import run_gunicorn

    run_gunicorn(flask_app, settings.server)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from flask import Flask

    from certbind.config.settings import ServerSettings

log = logging.getLogger(__name__)


def run_gunicorn(app: Flask, settings: ServerSettings) -> None:
    """Serve *app* with gunicorn until the master process exits.

    Raises :class:`RuntimeError` if gunicorn cannot be imported (it
    does not run on Windows).
    """
    try:
        from gunicorn.app.base import BaseApplication  # noqa: PLC0415
    except ImportError as exc:
        msg = "gunicorn is not available on this platform; use --dev for the Flask development server"
        raise RuntimeError(msg) from exc

    class _App(BaseApplication):
        def __init__(self, flask_app: Flask, server: ServerSettings) -> None:
            self.application = flask_app
            self._server = server
            super().__init__()

        def load_config(self) -> None:
            s = self._server
            self.cfg.set("bind", f"{s.bind}:{s.port}")
            self.cfg.set("workers", s.workers)
            self.cfg.set("threads", s.threads)
            self.cfg.set("worker_class", s.worker_class)
            # A trigger request runs a whole reconciliation.
            self.cfg.set("timeout", s.timeout)
            self.cfg.set("graceful_timeout", s.graceful_timeout)
            self.cfg.set("keepalive", s.keepalive)
            self.cfg.set("accesslog", None)

        def load(self) -> Flask:
            return self.application

    log.info(
        "Starting gunicorn on %s:%s (%d workers x %d threads, %s, timeout %ds)",
        settings.bind,
        settings.port,
        settings.workers,
        settings.threads,
        settings.worker_class,
        settings.timeout,
    )
    _App(app, settings).run()
