"""Domain and certificate registry abstraction.

The registry is the hosting platform's view of custom domains and
their certificates.  The reconciliation engine reads both listings at
the start of a run and writes back only after a fully successful
issuance.  Every failure is a :class:`~certbind.core.errors.RegistryError`
naming the operation and, where there is one, the domain.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime


@dataclass(frozen=True)
class DomainRecord:
    """A custom domain mapped to the application.

    ``certificate_id`` is the bound certificate, if any.  ``managed``
    marks a platform-managed certificate binding with no id of ours.
    """

    domain: str
    certificate_id: str | None = None
    managed: bool = False

    @property
    def is_bound(self) -> bool:
        return self.certificate_id is not None or self.managed


@dataclass(frozen=True)
class CertificateRecord:
    """A certificate uploaded to the platform."""

    id: str
    display_name: str
    domain_names: tuple[str, ...]
    expire_time: datetime

    @property
    def domain(self) -> str | None:
        """The domain a renewal is issued for (the first listed name)."""
        return self.domain_names[0] if self.domain_names else None


class CertificateRegistry(abc.ABC):
    """Remote store of domain mappings and certificates."""

    @abc.abstractmethod
    def list_domains(self) -> list[DomainRecord]:
        """All custom domains, in the platform's listing order."""

    @abc.abstractmethod
    def list_certificates(self) -> list[CertificateRecord]:
        """All uploaded certificates, in the platform's listing order."""

    @abc.abstractmethod
    def create_certificate(
        self,
        display_name: str,
        certificate_pem: str,
        private_key_pem: str,
    ) -> str:
        """Upload a new certificate and return its id."""

    @abc.abstractmethod
    def bind_certificate(self, domain: str, certificate_id: str) -> None:
        """Point *domain*'s mapping at *certificate_id*."""

    @abc.abstractmethod
    def update_certificate(
        self,
        certificate_id: str,
        certificate_pem: str,
        private_key_pem: str,
    ) -> None:
        """Replace the raw data of an existing certificate in place."""

    def service_account(self) -> str | None:
        """Identity the registry calls run as, for remediation hints."""
        return None

    def project_id(self) -> str | None:
        return None
