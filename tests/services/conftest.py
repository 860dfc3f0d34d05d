"""Fakes shared by the service-layer tests."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest

from certbind.acme.client import Authorization, Challenge, Order
from certbind.challenge.publisher import ChallengePublisher
from certbind.challenge.store import InMemoryChallengeStore
from certbind.config.settings import PollSettings
from certbind.issuance.csr import IssuedCertificate
from certbind.registry.base import CertificateRecord, CertificateRegistry, DomainRecord

DOMAIN = "www.example.com"
ORDER_URL = "https://ca.test/order/1"
AUTHZ_URL = "https://ca.test/authz/1"
CHALL_URL = "https://ca.test/chall/1"
CERT_URL = "https://ca.test/cert/1"
TOKEN = "tok-123"


def make_authz(status="pending", challenges=None, domain=DOMAIN, error=None):
    if challenges is None:
        challenges = (
            Challenge(type="dns-01", url="https://ca.test/chall/dns", token="dns", status="pending"),
            Challenge(type="http-01", url=CHALL_URL, token=TOKEN, status="pending", error=error),
        )
    return Authorization(url=AUTHZ_URL, identifier=domain, status=status, challenges=tuple(challenges))


def make_order(status="pending", certificate=None, error=None):
    return Order(
        url=ORDER_URL,
        status=status,
        identifiers=(DOMAIN,),
        authorizations=(AUTHZ_URL,),
        finalize=f"{ORDER_URL}/finalize",
        certificate=certificate,
        error=error,
    )


class FakeAcmeSession:
    """Scripted ACME session.

    ``authorizations`` and ``orders`` are consumed one per
    ``get_authorization`` / ``get_order`` call; the last entry repeats.
    """

    def __init__(self, *, authorizations=None, orders=None, pem_chain=b"", finalized=None):
        self.authorizations = list(authorizations or [make_authz("pending"), make_authz("valid")])
        self.orders = list(orders or [make_order("ready"), make_order("valid", certificate=CERT_URL)])
        self.finalized = finalized or make_order("processing")
        self.pem_chain = pem_chain
        self.last_retry_after: str | None = None
        self.calls: list[tuple] = []
        self.errors: dict[str, Exception] = {}

    def _call(self, name, *args):
        self.calls.append((name, *args))
        if name in self.errors:
            raise self.errors[name]

    def _next(self, items):
        return items.pop(0) if len(items) > 1 else items[0]

    def register(self, contact_email=None, *, agree_tos=True):
        self._call("register", contact_email, agree_tos)
        return "https://ca.test/acct/1"

    def new_order(self, domain, *, not_before=None, not_after=None):
        self._call("new_order", domain, not_before, not_after)
        return make_order("pending")

    def get_order(self, url):
        self._call("get_order", url)
        return self._next(self.orders)

    def get_authorization(self, url):
        self._call("get_authorization", url)
        return self._next(self.authorizations)

    def answer_challenge(self, challenge):
        self._call("answer_challenge", challenge.url)
        return Challenge(type="http-01", url=challenge.url, token=TOKEN, status="processing")

    def finalize(self, order, csr_pem):
        self._call("finalize", order.url, csr_pem)
        return self.finalized

    def download_certificate(self, url):
        self._call("download_certificate", url)
        return self.pem_chain

    def key_authorization(self, token):
        return f"{token}.thumbprint"

    def names(self):
        return [c[0] for c in self.calls]


class FakeRegistry(CertificateRegistry):
    """In-memory registry recording every write."""

    def __init__(self, domains=(), certificates=()):
        self.domains = list(domains)
        self.certificates = list(certificates)
        self.created: list[tuple[str, str, str]] = []
        self.bound: list[tuple[str, str]] = []
        self.updated: list[tuple[str, str, str]] = []
        self.fail: dict[str, Exception] = {}
        self._next_id = 100

    def _maybe_fail(self, operation):
        if operation in self.fail:
            raise self.fail[operation]

    def list_domains(self):
        self._maybe_fail("list_domains")
        return list(self.domains)

    def list_certificates(self):
        self._maybe_fail("list_certificates")
        return list(self.certificates)

    def create_certificate(self, display_name, certificate_pem, private_key_pem):
        self._maybe_fail("create_certificate")
        self._next_id += 1
        self.created.append((display_name, certificate_pem, private_key_pem))
        return str(self._next_id)

    def bind_certificate(self, domain, certificate_id):
        self._maybe_fail("bind_certificate")
        self.bound.append((domain, certificate_id))

    def update_certificate(self, certificate_id, certificate_pem, private_key_pem):
        self._maybe_fail("update_certificate")
        self.updated.append((certificate_id, certificate_pem, private_key_pem))

    def project_id(self):
        return "demo-project"

    def service_account(self):
        return "demo-project@appspot.gserviceaccount.com"


@pytest.fixture()
def poll_settings() -> PollSettings:
    return PollSettings(
        initial_interval_seconds=1.0,
        max_interval_seconds=4.0,
        authorization_timeout_seconds=10.0,
        order_timeout_seconds=10.0,
    )


@pytest.fixture()
def publisher() -> ChallengePublisher:
    return ChallengePublisher(InMemoryChallengeStore(), ttl_seconds=60)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


def issued(domain=DOMAIN, not_after=datetime(2024, 9, 1, tzinfo=UTC)) -> IssuedCertificate:
    return IssuedCertificate(
        domain=domain,
        certificate_chain=(b"der",),
        certificate_pem=f"PEM({domain})",
        private_key_pem=f"KEY({domain})",
        not_after=not_after,
    )


def domain(name, certificate_id=None):
    return DomainRecord(domain=name, certificate_id=certificate_id)


def certificate(cert_id, name, expire_time):
    return CertificateRecord(
        id=cert_id,
        display_name=name,
        domain_names=(name,) if name else (),
        expire_time=expire_time,
    )


@pytest.fixture()
def issuer():
    """MagicMock issuer returning :func:`issued` for the requested domain."""
    mock = MagicMock()
    mock.obtain_certificate.side_effect = lambda d, cancel=None: issued(d)
    return mock
