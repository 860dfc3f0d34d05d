"""Redaction of key material before it reaches a log line.

Issued private keys and certificates pass through the reconciliation
engine as PEM strings; account keys appear as JWKs in ACME requests.
:func:`sanitize_for_logs` keeps the PEM block type and JWK metadata
and replaces the rest with ``[REDACTED]``.
"""

from __future__ import annotations

import re
from typing import Any

_JWK_SECRET_FIELDS = frozenset({"n", "e", "d", "p", "q", "dp", "dq", "qi"})

_PEM_BODY_RE = re.compile(
    r"(-----BEGIN [A-Z0-9 ]+-----)"
    r"([\s\S]*?)"
    r"(-----END [A-Z0-9 ]+-----)",
)

REDACTED = "[REDACTED]"


def sanitize_jwk(jwk: dict) -> dict:
    """Return a copy of *jwk* with key material replaced."""
    return {key: REDACTED if key in _JWK_SECRET_FIELDS else value for key, value in jwk.items()}


def sanitize_pem(pem: str) -> str:
    """Replace the body of every PEM block, keeping the BEGIN/END markers."""
    return _PEM_BODY_RE.sub(lambda m: f"{m.group(1)}\n{REDACTED}\n{m.group(3)}", pem)


def sanitize_for_logs(data: Any) -> Any:  # noqa: ANN401
    """Recursively redact JWKs and PEM blocks in *data*.

    Dicts carrying a ``kty`` member are treated as JWKs.  Anything
    else passes through unchanged.
    """
    if isinstance(data, dict):
        if "kty" in data:
            return sanitize_jwk(data)
        return {k: sanitize_for_logs(v) for k, v in data.items()}

    if isinstance(data, (list, tuple)):
        return type(data)(sanitize_for_logs(item) for item in data)

    if isinstance(data, str) and "-----BEGIN " in data:
        return sanitize_pem(data)

    return data
