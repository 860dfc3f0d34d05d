"""Certificate issuance for a single domain.

:meth:`IssuanceFlow.obtain_certificate` runs the whole ACME exchange:
CSR, throwaway account, authorization, finalize, download.  Each call
uses a brand-new account key that is discarded when the call returns;
nothing is persisted.
"""

from __future__ import annotations

import logging
import time
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from cryptography.hazmat.primitives.serialization import Encoding

from certbind.acme.client import AcmeClient
from certbind.core.backoff import PollSchedule
from certbind.core.errors import (
    AccountRegistrationError,
    AcmeError,
    CertificateCreationError,
)
from certbind.core.types import OrderStatus
from certbind.issuance.csr import (
    IssuedCertificate,
    build_csr,
    encode_certificate_chain,
    encode_private_key,
    generate_rsa_key,
    leaf_not_after,
    normalize_domain,
    split_pem_chain,
)
from certbind.services.authorization import AuthorizationFlow

if TYPE_CHECKING:
    import threading
    from collections.abc import Callable

    from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

    from certbind.acme.client import Order
    from certbind.challenge.publisher import ChallengePublisher
    from certbind.config.settings import AcmeSettings, IssuanceSettings
    from certbind.services.authorization import AcmeSession

    ClientFactory = Callable[
        [str, RSAPrivateKey, AcmeSettings, "threading.Event | None"],
        AcmeSession,
    ]

log = logging.getLogger(__name__)


class IssuanceFlow:
    """Obtains certificates from the configured CA.

    Parameters
    ----------
    acme:
        ``acme`` settings: directory, contact, polling bounds.
    issuance:
        ``issuance`` settings: requested validity.
    publisher:
        Challenge publisher shared with the HTTP challenge route.
    account_key_factory:
        Produces the account key for each call.
    client_factory:
        Builds the ACME session around an account key; defaults to
        :class:`~certbind.acme.client.AcmeClient` on the ``acme`` library.

    """

    def __init__(
        self,
        acme: AcmeSettings,
        issuance: IssuanceSettings,
        publisher: ChallengePublisher,
        *,
        account_key_factory: Callable[[], RSAPrivateKey] = generate_rsa_key,
        client_factory: ClientFactory = AcmeClient,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._acme = acme
        self._issuance = issuance
        self._publisher = publisher
        self._account_key_factory = account_key_factory
        self._client_factory = client_factory
        self._clock = clock
        self._sleep = sleep

    def obtain_certificate(
        self,
        domain: str,
        cancel: threading.Event | None = None,
    ) -> IssuedCertificate:
        """Issue a certificate for *domain*.

        Raises
        ------
        RequestBuildError, KeyGenerationError
            The CSR or a key could not be produced.
        AccountRegistrationError
            The CA refused the throwaway account.
        NoSupportedChallengeError, PublishError, AuthorizationFailedError,
        AuthorizationTimeoutError
            Propagated unchanged from the authorization flow.
        CertificateCreationError
            Finalizing, polling or downloading failed.
        CancellationError
            *cancel* was set while the call was in progress.

        """
        name = normalize_domain(domain)
        cert_key, csr = build_csr(name)

        account_key = self._account_key_factory()
        client = self._client_factory(self._acme.directory_url, account_key, self._acme, cancel)
        try:
            client.register(self._acme.contact_email, agree_tos=self._acme.agree_tos)
        except AcmeError as exc:
            msg = f"account registration failed: {exc}"
            raise AccountRegistrationError(msg, domain=domain, retryable=exc.retryable) from exc

        not_before, not_after = self._validity_window()
        flow = AuthorizationFlow(
            client,
            self._publisher,
            self._acme.poll,
            cancel=cancel,
            clock=self._clock,
            sleep=self._sleep,
        )
        result = flow.authorize(name, not_before=not_before, not_after=not_after)

        chain = self._finalize_and_download(
            client,
            result.order,
            csr.public_bytes(Encoding.PEM),
            domain,
            cancel,
        )

        log.info("Obtained certificate for %s (%d certificates in chain)", domain, len(chain))
        return IssuedCertificate(
            domain=domain,
            certificate_chain=tuple(chain),
            certificate_pem=encode_certificate_chain(chain),
            private_key_pem=encode_private_key(cert_key),
            not_after=leaf_not_after(chain),
        )

    def _validity_window(self) -> tuple[datetime | None, datetime | None]:
        if not self._issuance.request_validity_period:
            return None, None
        not_before = datetime.now(UTC)
        return not_before, not_before + timedelta(days=self._issuance.validity_days)

    def _finalize_and_download(
        self,
        client: AcmeSession,
        order: Order,
        csr_pem: bytes,
        domain: str,
        cancel: threading.Event | None,
    ) -> list[bytes]:
        schedule = PollSchedule(
            timeout=self._acme.poll.order_timeout_seconds,
            initial_interval=self._acme.poll.initial_interval_seconds,
            max_interval=self._acme.poll.max_interval_seconds,
            cancel=cancel,
            clock=self._clock,
            sleep=self._sleep,
        )
        try:
            # The order moves to "ready" once its authorization is valid.
            order = self._wait_for_order(client, order, schedule, domain, OrderStatus.PENDING)
            if order.status == OrderStatus.READY:
                order = client.finalize(order, csr_pem)
            order = self._wait_for_order(client, order, schedule, domain, OrderStatus.PROCESSING)
            if not order.is_valid:
                detail = (order.error or {}).get("detail") or f"order is {order.status}"
                raise CertificateCreationError(str(detail), domain=domain)
            if not order.certificate:
                msg = "valid order carries no certificate URL"
                raise CertificateCreationError(msg, domain=domain)
            body = client.download_certificate(order.certificate)
        except AcmeError as exc:
            msg = f"certificate creation failed: {exc}"
            raise CertificateCreationError(msg, domain=domain, retryable=exc.retryable) from exc

        try:
            return split_pem_chain(body)
        except ValueError as exc:
            msg = f"CA returned an unreadable certificate chain: {exc}"
            raise CertificateCreationError(msg, domain=domain) from exc

    def _wait_for_order(
        self,
        client: AcmeSession,
        order: Order,
        schedule: PollSchedule,
        domain: str,
        waiting_status: OrderStatus,
    ) -> Order:
        while order.status == waiting_status:
            if not schedule.wait(client.last_retry_after):
                msg = (
                    f"order still {order.status} after "
                    f"{self._acme.poll.order_timeout_seconds:g}s"
                )
                raise CertificateCreationError(msg, domain=domain, retryable=True)
            order = client.get_order(order.url)
        return order
