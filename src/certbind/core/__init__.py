"""Shared primitives: error hierarchy, enums, JWS helpers and backoff."""
