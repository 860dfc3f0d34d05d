"""Reconciliation trigger endpoint.

``GET|POST {trigger.path}`` runs one reconciliation synchronously and
returns the plain-text progress report.  The status is 200 when every
attempted domain succeeded and 500 otherwise.  Only one run may be in
progress per process; a concurrent request gets 409, and a request
during shutdown gets 503.
"""

from __future__ import annotations

import logging

from flask import Blueprint, make_response

from certbind.api.auth import require_trigger_access
from certbind.app.context import get_container
from certbind.app.errors import RUN_IN_PROGRESS, UNAVAILABLE, Problem
from certbind.core.errors import RegistryError
from certbind.services.hints import with_hint

log = logging.getLogger(__name__)

trigger_bp = Blueprint("trigger", __name__)


def _text(body: str, status: int):
    response = make_response(body, status)
    response.headers["Content-Type"] = "text/plain; charset=utf-8"
    response.headers["Cache-Control"] = "no-store"
    return response


@trigger_bp.route("", methods=["GET", "POST"], strict_slashes=False)
def trigger_reconciliation():
    container = get_container()
    admitted_by = require_trigger_access(container.settings.trigger)

    if container.shutdown.is_shutting_down:
        raise Problem(UNAVAILABLE, "Server is shutting down", status=503)

    if not container.run_lock.acquire(blocking=False):
        raise Problem(
            RUN_IN_PROGRESS,
            "A reconciliation run is already in progress",
            status=409,
            headers={"Retry-After": "60"},
        )

    try:
        log.info("Reconciliation triggered (%s)", admitted_by)
        try:
            report = container.run_reconciliation()
        except RegistryError as exc:
            log.error("Reconciliation aborted: %s", exc)
            return _text(with_hint(str(exc), container.engine.hint(exc)) + "\n", 500)
    finally:
        container.run_lock.release()

    return _text(report.render(), 200 if report.ok else 500)
