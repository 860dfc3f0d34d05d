"""HTTP-01 challenge responder.

``GET {challenges.path_prefix}<token>`` returns the key authorization
published for that token, verbatim, as ``text/plain``.  Unknown tokens
get a 404 problem.
"""

from __future__ import annotations

import logging

from flask import Blueprint, make_response

from certbind.app.context import get_container
from certbind.app.errors import CHALLENGE_STORE, Problem
from certbind.core.errors import ChallengeStoreError

log = logging.getLogger(__name__)

challenge_bp = Blueprint("challenge", __name__)


@challenge_bp.route("/<token>", methods=["GET"])
def serve_challenge(token: str):
    container = get_container()
    path = container.publisher.challenge_path(token)

    try:
        value = container.publisher.lookup(path)
    except ChallengeStoreError as exc:
        log.error("Challenge store lookup failed for %s: %s", path, exc)
        raise Problem(CHALLENGE_STORE, "Challenge store unavailable", status=500) from exc

    if value is None:
        raise Problem("about:blank", f"No challenge response for token {token}", status=404)

    response = make_response(value, 200)
    response.headers["Content-Type"] = "text/plain"
    response.headers["Cache-Control"] = "no-store"
    return response
