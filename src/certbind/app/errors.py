"""RFC 7807 Problem Details for the HTTP surface.

Provides :class:`Problem`, an exception that renders itself as an
``application/problem+json`` response, and the Flask error-handler
registration function.

Usage::

    raise Problem(FORBIDDEN, "trigger requires the cron header", 403)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from flask import jsonify
from werkzeug.exceptions import HTTPException

if TYPE_CHECKING:
    from flask import Flask, Response

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Problem types
# ---------------------------------------------------------------------------
_P = "urn:certbind:error:"

FORBIDDEN = _P + "forbidden"
RUN_IN_PROGRESS = _P + "runInProgress"
CHALLENGE_STORE = _P + "challengeStore"
SERVER_INTERNAL = _P + "serverInternal"
UNAVAILABLE = _P + "unavailable"

PROBLEM_CONTENT_TYPE = "application/problem+json"


class Problem(Exception):
    """An RFC 7807 *problem details* object that doubles as an exception.

    Parameters
    ----------
    error_type:
        A URN string (one of the constants above) or ``"about:blank"``
        for generic HTTP errors.
    detail:
        Human-readable explanation of the problem.
    status:
        HTTP status code (default 400).
    title:
        Short summary.
    headers:
        Extra HTTP headers for the response.

    """

    def __init__(
        self,
        error_type: str,
        detail: str,
        status: int = 400,
        *,
        title: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.error_type = error_type
        self.detail = detail
        self.status = status
        self.title = title
        self.extra_headers = headers or {}
        super().__init__(detail)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "type": self.error_type,
            "detail": self.detail,
            "status": self.status,
        }
        if self.title is not None:
            body["title"] = self.title
        return body

    def to_response(self) -> Response:
        resp = jsonify(self.to_dict())
        resp.status_code = self.status
        resp.headers["Content-Type"] = PROBLEM_CONTENT_TYPE
        resp.headers["Cache-Control"] = "no-store"
        for key, value in self.extra_headers.items():
            resp.headers[key] = value
        return resp


def register_error_handlers(app: Flask) -> None:
    """Attach handlers that produce RFC 7807 responses for all errors."""

    @app.errorhandler(Problem)
    def _handle_problem(exc: Problem) -> Response:
        return exc.to_response()

    @app.errorhandler(HTTPException)
    def _handle_http_exception(exc: HTTPException) -> Response:
        problem = Problem(
            "about:blank",
            exc.description or "An error occurred",
            exc.code or 500,
            title=exc.name,
        )
        return problem.to_response()

    @app.errorhandler(Exception)
    def _handle_unhandled(exc: Exception) -> Response:
        log.exception("Unhandled exception during request")
        problem = Problem(
            SERVER_INTERNAL,
            "An unexpected internal error occurred",
            500,
        )
        return problem.to_response()
