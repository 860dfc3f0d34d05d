"""Flask request lifecycle hooks.

* Request ID generation / passthrough (``X-Request-ID``)
* Request classification: CA challenge fetch, reconciliation trigger, other
* ``Cache-Control: no-store`` on every challenge and trigger response,
  problems included, so the App Engine edge never caches them
* Structured access logging, tagged with the request kind (and the
  token for challenge fetches)
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING
from uuid import uuid4

from flask import current_app, g, request

if TYPE_CHECKING:
    from flask import Flask, Response

access_log = logging.getLogger("certbind.access")

KIND_CHALLENGE = "challenge"
KIND_TRIGGER = "trigger"
KIND_OTHER = "other"

_UNCACHEABLE = frozenset({KIND_CHALLENGE, KIND_TRIGGER})


def classify_request(path: str, challenge_prefix: str, trigger_path: str) -> tuple[str, str | None]:
    """Return ``(kind, token)`` for *path*; *token* is set for challenge fetches only."""
    if path.startswith(challenge_prefix):
        token = path[len(challenge_prefix):]
        return KIND_CHALLENGE, token or None
    if path.rstrip("/") == trigger_path.rstrip("/"):
        return KIND_TRIGGER, None
    return KIND_OTHER, None


def register_request_hooks(app: Flask) -> None:
    """Register before/after request hooks for ID tracking, classification and access logging."""

    @app.before_request
    def _before_request() -> None:
        g.request_id = request.headers.get("X-Request-ID") or uuid4().hex
        g.start_time = time.monotonic()
        settings = current_app.config["CERTBIND_SETTINGS"]
        g.request_kind, g.challenge_token = classify_request(
            request.path,
            settings.challenges.path_prefix,
            settings.trigger.path,
        )

    @app.after_request
    def _after_request(response: Response) -> Response:
        response.headers["X-Content-Type-Options"] = "nosniff"

        request_id = getattr(g, "request_id", None)
        if request_id:
            response.headers["X-Request-ID"] = request_id

        kind = getattr(g, "request_kind", KIND_OTHER)
        if kind in _UNCACHEABLE:
            response.headers["Cache-Control"] = "no-store"

        status = response.status_code
        duration_ms = _elapsed_ms()
        level = (
            logging.WARNING
            if 400 <= status < 500
            else logging.ERROR
            if status >= 500
            else logging.INFO
        )
        extra = {
            "method": request.method,
            "path": request.path,
            "status": status,
            "duration_ms": round(duration_ms, 1),
            "kind": kind,
        }
        token = getattr(g, "challenge_token", None)
        if token:
            extra["token"] = token
        access_log.log(
            level,
            "%s %s %s %s %.1fms",
            kind,
            request.method,
            request.path,
            status,
            duration_ms,
            extra=extra,
        )
        return response


def _elapsed_ms() -> float:
    start = getattr(g, "start_time", None)
    if start is None:
        return 0.0
    return (time.monotonic() - start) * 1000
