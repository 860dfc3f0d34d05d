"""Enumerated types shared across the issuance pipeline.

All enums inherit from ``StrEnum`` so their ``.value`` is the plain
string the ACME server or the report uses.
"""

from __future__ import annotations

from enum import StrEnum

# ---------------------------------------------------------------------------
# ACME resources (RFC 8555 §7.1.6)
# ---------------------------------------------------------------------------


class AuthorizationStatus(StrEnum):
    PENDING = "pending"
    VALID = "valid"
    INVALID = "invalid"
    DEACTIVATED = "deactivated"
    EXPIRED = "expired"
    REVOKED = "revoked"


class OrderStatus(StrEnum):
    PENDING = "pending"
    READY = "ready"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"


class ChallengeType(StrEnum):
    HTTP_01 = "http-01"
    DNS_01 = "dns-01"
    TLS_ALPN_01 = "tls-alpn-01"


# ---------------------------------------------------------------------------
# Authorization flow
# ---------------------------------------------------------------------------


class AuthorizationFlowState(StrEnum):
    REQUESTED = "requested"
    CHALLENGE_SELECTED = "challenge_selected"
    PUBLISHED = "published"
    SUBMITTED = "submitted"
    POLLING = "polling"
    VALID = "valid"
    INVALID = "invalid"
    TIMED_OUT = "timed_out"


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


class Action(StrEnum):
    ISSUE = "issue"
    RENEW = "renew"
    NONE = "none"


class OutcomeStatus(StrEnum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"
