"""Audit events for certificate lifecycle changes.

All events go to the ``certbind.audit`` logger with a stable
``event_id`` field so they can be filtered downstream.  Extra fields
are passed through :func:`~certbind.logging.sanitize.sanitize_for_logs`
first, so a stray PEM or JWK never lands in the audit trail.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from certbind.logging.sanitize import sanitize_for_logs

if TYPE_CHECKING:
    from datetime import datetime

audit_log = logging.getLogger("certbind.audit")


def _emit(
    event_id: str,
    message: str,
    *args: Any,  # noqa: ANN401
    severity: str = "INFO",
    **extra: Any,  # noqa: ANN401
) -> None:
    data: dict[str, object] = {
        "event_id": event_id,
        "severity": severity,
    }
    data.update(sanitize_for_logs(extra))
    level = getattr(logging, severity.upper(), logging.INFO)
    audit_log.log(level, message, *args, extra=data)


def certificate_issued(domain: str, certificate_id: str, not_after: datetime | None) -> None:
    """A new certificate was created and bound to *domain*."""
    _emit(
        "certbind.audit.certificate_issued",
        "Certificate %s issued for %s",
        certificate_id,
        domain,
        domain=domain,
        certificate_id=certificate_id,
        not_after=not_after.isoformat() if not_after else None,
    )


def certificate_renewed(domain: str, certificate_id: str, not_after: datetime | None) -> None:
    _emit(
        "certbind.audit.certificate_renewed",
        "Certificate %s renewed for %s",
        certificate_id,
        domain,
        domain=domain,
        certificate_id=certificate_id,
        not_after=not_after.isoformat() if not_after else None,
    )


def issuance_failed(domain: str, action: str, error_kind: str, detail: str) -> None:
    _emit(
        "certbind.audit.issuance_failed",
        "Could not %s certificate for %s: %s",
        action,
        domain,
        detail,
        severity="WARNING",
        domain=domain,
        action=action,
        error_kind=error_kind,
    )


def trigger_denied(client_ip: str | None, reason: str) -> None:
    """A request to the reconciliation trigger was refused."""
    _emit(
        "certbind.audit.trigger_denied",
        "Trigger denied for %s: %s",
        client_ip or "-",
        reason,
        severity="WARNING",
        reason=reason,
    )
