"""Domain and certificate registry backends.

Usage::

    from certbind.registry import load_registry

    registry = load_registry(settings.registry)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from certbind.registry.appengine import AppEngineRegistry
from certbind.registry.base import CertificateRecord, CertificateRegistry, DomainRecord

if TYPE_CHECKING:
    from certbind.config.settings import RegistrySettings

_BACKENDS: dict[str, type[CertificateRegistry]] = {
    "appengine": AppEngineRegistry,
}


def load_registry(settings: RegistrySettings) -> CertificateRegistry:
    """Instantiate the registry backend named by ``registry.backend``."""
    try:
        backend_cls = _BACKENDS[settings.backend]
    except KeyError:
        msg = f"Unknown registry backend '{settings.backend}'. Known: {sorted(_BACKENDS)}"
        raise ValueError(msg) from None
    return backend_cls(settings)


__all__ = [
    "AppEngineRegistry",
    "CertificateRecord",
    "CertificateRegistry",
    "DomainRecord",
    "load_registry",
]
