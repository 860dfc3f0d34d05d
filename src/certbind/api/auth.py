"""Access control for the reconciliation trigger.

Two ways in:

* the scheduler header (``X-Appengine-Cron`` by default), which the
  App Engine front end strips from external requests, honoured when
  ``trigger.trust_cron_header`` is set;
* a bearer token signed with ``trigger.token_secret``
  (:class:`itsdangerous.URLSafeTimedSerializer`), minted with
  ``certbind token``.

Anything else gets a 403 problem and an audit record.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from flask import request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from certbind.app.errors import FORBIDDEN, Problem
from certbind.logging import audit

if TYPE_CHECKING:
    from certbind.config.settings import TriggerSettings

log = logging.getLogger(__name__)

_SALT = "certbind.trigger"
_SUBJECT = "reconcile"


def create_trigger_token(secret: str) -> str:
    """Create a signed bearer token for the trigger endpoint."""
    serializer = URLSafeTimedSerializer(secret, salt=_SALT)
    return serializer.dumps({"sub": _SUBJECT})


def verify_trigger_token(token: str, secret: str, max_age: int) -> bool:
    """Return ``True`` if *token* was signed with *secret* and is not expired."""
    serializer = URLSafeTimedSerializer(secret, salt=_SALT)
    try:
        payload: Any = serializer.loads(token, max_age=max_age)
    except SignatureExpired:
        log.info("Trigger token expired")
        return False
    except BadSignature:
        return False
    return isinstance(payload, dict) and payload.get("sub") == _SUBJECT


def require_trigger_access(settings: TriggerSettings) -> str:
    """Raise a 403 :class:`Problem` unless the request may start a run.

    Returns how the caller was admitted (``"cron"`` or ``"token"``).
    """
    if settings.trust_cron_header and request.headers.get(settings.cron_header):
        return "cron"

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer ") and settings.token_secret:
        if verify_trigger_token(
            auth_header[7:],
            settings.token_secret,
            settings.token_max_age_seconds,
        ):
            return "token"
        reason = "invalid or expired token"
    elif auth_header:
        reason = "unsupported authorization"
    else:
        reason = "not called by the scheduler"

    audit.trigger_denied(request.remote_addr, reason)
    raise Problem(
        FORBIDDEN,
        f"Reconciliation may only be started by the scheduler or with a valid token ({reason})",
        status=403,
    )
