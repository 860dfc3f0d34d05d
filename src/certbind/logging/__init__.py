"""Logging subsystem for certbind.

Public API::

    from certbind.logging import configure_logging

    configure_logging(settings.logging)
"""

from certbind.logging.setup import configure_logging, domain_context

__all__ = ["configure_logging", "domain_context"]
