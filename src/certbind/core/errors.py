"""Error taxonomy for certificate acquisition and reconciliation.

Every failure raised by the issuance pipeline is a :class:`CertbindError`
subclass.  The reconciliation engine catches :class:`CertbindError` per
domain, records it in the run report and moves on; anything else is a
programming error and propagates.

Usage::

    raise AuthorizationTimeoutError("authorization still pending", domain="a.example")
"""

from __future__ import annotations


class CertbindError(Exception):
    """Base class for all certbind failures.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.
    domain:
        The domain the failure concerns, when known.
    retryable:
        Whether the failure is transient (informational only; nothing
        in a run retries on its own).

    """

    def __init__(
        self,
        detail: str,
        *,
        domain: str | None = None,
        retryable: bool = False,
    ) -> None:
        self.detail = detail
        self.domain = domain
        self.retryable = retryable
        super().__init__(detail)

    @property
    def kind(self) -> str:
        """Short name of the error class, used in reports and logs."""
        return type(self).__name__

    def __str__(self) -> str:
        if self.domain:
            return f"{self.domain}: {self.detail}"
        return self.detail


class KeyGenerationError(CertbindError):
    """RSA key generation failed."""


class RequestBuildError(CertbindError):
    """The certificate signing request could not be built."""


class AccountRegistrationError(CertbindError):
    """The CA refused or failed the account registration."""


class NoSupportedChallengeError(CertbindError):
    """The CA offered no ``http-01`` challenge for the domain."""


class PublishError(CertbindError):
    """The challenge response could not be published."""


class AuthorizationFailedError(CertbindError):
    """The CA marked the authorization invalid or rejected a step."""


class AuthorizationTimeoutError(CertbindError):
    """The authorization did not reach a terminal state before the deadline."""


class CertificateCreationError(CertbindError):
    """Finalizing the order or downloading the certificate failed."""


class RegistryError(CertbindError):
    """A call to the domain/certificate registry failed.

    ``operation`` names the registry call (``list_domains``,
    ``create_certificate``, ...).
    """

    def __init__(
        self,
        detail: str,
        *,
        operation: str = "",
        domain: str | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(detail, domain=domain, retryable=retryable)
        self.operation = operation

    def __str__(self) -> str:
        prefix = f"{self.operation}: " if self.operation else ""
        if self.domain:
            return f"{prefix}{self.domain}: {self.detail}"
        return f"{prefix}{self.detail}"


class CancellationError(CertbindError):
    """The run was cancelled before this work item completed."""


class ChallengeStoreError(CertbindError):
    """The challenge value store failed (distinct from a cache miss)."""


class UnexpectedError(CertbindError):
    """An unclassified failure while handling one item, recorded so the run can go on."""


class AcmeError(CertbindError):
    """An ACME request failed.

    Wraps an RFC 7807 problem document returned by the CA, or a
    transport failure (``status`` 0).  Flows translate it into the
    taxonomy error matching the step that failed.

    Parameters
    ----------
    detail:
        The problem ``detail`` or transport error text.
    error_type:
        The problem ``type`` URN, e.g.
        ``urn:ietf:params:acme:error:rateLimited``.
    status:
        HTTP status code, ``0`` when no response was received.
    retryable:
        Overrides the status-derived default; problem documents carry
        no HTTP status once the ACME library has parsed them.

    """

    def __init__(
        self,
        detail: str,
        *,
        error_type: str = "",
        status: int = 0,
        domain: str | None = None,
        retryable: bool | None = None,
    ) -> None:
        if retryable is None:
            retryable = status == 0 or status >= 500 or status == 429
        super().__init__(detail, domain=domain, retryable=retryable)
        self.error_type = error_type
        self.status = status

    def __str__(self) -> str:
        parts = [self.detail]
        if self.error_type:
            parts.append(f"({self.error_type})")
        if self.status:
            parts.append(f"[HTTP {self.status}]")
        return " ".join(parts)
