"""ACME (RFC 8555) client used by the issuance flow."""

from certbind.acme.client import AcmeClient, Authorization, Challenge, Order

__all__ = ["AcmeClient", "Authorization", "Challenge", "Order"]
