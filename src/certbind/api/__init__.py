"""HTTP surface: challenge responder and reconciliation trigger.

Call :func:`register_blueprints` during application startup.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from flask import Flask

log = logging.getLogger(__name__)


def register_blueprints(app: Flask) -> None:
    """Mount the challenge and trigger blueprints.

    Reads ``challenges.path_prefix`` and ``trigger.path`` from the
    app's settings.
    """
    settings = app.config["CERTBIND_SETTINGS"]

    from certbind.api.challenge_routes import challenge_bp  # noqa: PLC0415
    from certbind.api.trigger import trigger_bp  # noqa: PLC0415

    app.register_blueprint(
        challenge_bp,
        url_prefix=settings.challenges.path_prefix.rstrip("/"),
    )
    app.register_blueprint(trigger_bp, url_prefix=settings.trigger.path.rstrip("/"))

    log.info(
        "Routes mounted: challenges at %s, trigger at %s",
        settings.challenges.path_prefix,
        settings.trigger.path,
    )
