r"""ACME session for the single-domain HTTP-01 flow.

One :class:`AcmeClient` wraps one account key against one directory.
JWS signing, the nonce pool and the ``badNonce`` retry belong to
:mod:`acme.client`; this module drives the library one request at a
time so the flows can check for cancellation and pace their polling
between calls.

Library message objects are turned into the small frozen resources
below.  Problem documents, transport failures and undecodable bodies
all come back as :class:`~certbind.core.errors.AcmeError`; the flows
translate them into the step-specific error kinds.

Usage::

    client = AcmeClient(directory_url, account_key, settings.acme)
    client.register(contact_email="ops@example.com")
    order = client.new_order("a.example")
"""

from __future__ import annotations

import http.client
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

import josepy
import requests
from acme import challenges, messages
from acme import client as acme_client
from acme import errors as acme_errors
from acme import fields as acme_fields

from certbind.core.errors import AcmeError, CancellationError
from certbind.core.types import AuthorizationStatus, ChallengeType, OrderStatus

if TYPE_CHECKING:
    import threading
    from collections.abc import Generator

    from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

    from certbind.config.settings import AcmeSettings

log = logging.getLogger(__name__)

_TERMINAL_AUTHZ = frozenset(
    {
        AuthorizationStatus.VALID,
        AuthorizationStatus.INVALID,
        AuthorizationStatus.DEACTIVATED,
        AuthorizationStatus.EXPIRED,
        AuthorizationStatus.REVOKED,
    }
)
_RETRYABLE_PROBLEMS = frozenset({"rateLimited", "serverInternal"})


def _problem(error: messages.Error | None) -> dict | None:
    if error is None:
        return None
    return {"type": error.typ or "", "detail": error.detail or ""}


def _status(status: messages.Status | None) -> str:
    return status.name if status is not None else ""


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Challenge:
    """An ACME challenge object (RFC 8555 §7.1.5)."""

    type: str
    url: str
    token: str
    status: str
    error: dict | None = None
    body: messages.ChallengeBody | None = field(default=None, compare=False, repr=False)

    @classmethod
    def from_body(cls, challb: messages.ChallengeBody) -> Challenge:
        chall = challb.chall
        if isinstance(chall, challenges.UnrecognizedChallenge):
            typ = str(chall.jobj.get("type", ""))
            token = str(chall.jobj.get("token", ""))
        else:
            typ = chall.typ
            token = (
                chall.encode("token")
                if isinstance(chall, challenges.KeyAuthorizationChallenge)
                else ""
            )
        return cls(
            type=typ,
            url=challb.uri or "",
            token=token,
            status=_status(challb.status),
            error=_problem(challb.error),
            body=challb,
        )


@dataclass(frozen=True)
class Authorization:
    """An ACME authorization object (RFC 8555 §7.1.4)."""

    url: str
    identifier: str
    status: str
    challenges: tuple[Challenge, ...] = ()
    expires: str | None = None

    @classmethod
    def from_message(cls, url: str, authz: messages.Authorization) -> Authorization:
        return cls(
            url=url,
            identifier=authz.identifier.value if authz.identifier else "",
            status=_status(authz.status),
            challenges=tuple(Challenge.from_body(c) for c in authz.challenges or ()),
            expires=authz.expires.isoformat() if authz.expires else None,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in _TERMINAL_AUTHZ

    def http01(self) -> Challenge | None:
        """Return the first ``http-01`` challenge, or ``None``."""
        for challenge in self.challenges:
            if challenge.type == ChallengeType.HTTP_01:
                return challenge
        return None

    def error_detail(self) -> str | None:
        """The ``detail`` of the first challenge error the CA reported."""
        for challenge in self.challenges:
            if challenge.error:
                detail = challenge.error.get("detail") or challenge.error.get("type")
                if detail:
                    return str(detail)
        return None


@dataclass(frozen=True)
class Order:
    """An ACME order object (RFC 8555 §7.1.3)."""

    url: str
    status: str
    identifiers: tuple[str, ...] = ()
    authorizations: tuple[str, ...] = ()
    finalize: str = ""
    certificate: str | None = None
    error: dict | None = field(default=None, compare=False)

    @classmethod
    def from_message(cls, url: str, body: messages.Order) -> Order:
        return cls(
            url=url,
            status=_status(body.status),
            identifiers=tuple(i.value for i in body.identifiers or ()),
            authorizations=tuple(body.authorizations or ()),
            finalize=body.finalize or "",
            certificate=body.certificate,
            error=_problem(body.error),
        )

    @property
    def is_valid(self) -> bool:
        return self.status == OrderStatus.VALID


class _NewOrder(messages.NewOrder):
    """``newOrder`` payload with the optional RFC 8555 validity window."""

    not_before: datetime = acme_fields.rfc3339("notBefore", omitempty=True)
    not_after: datetime = acme_fields.rfc3339("notAfter", omitempty=True)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class AcmeClient:
    """ACME client bound to one account key.

    Parameters
    ----------
    directory_url:
        URL of the CA's directory resource.
    account_key:
        RSA key identifying the ACME account.
    settings:
        ``acme`` section settings (timeout, user agent, CA trust).
    cancel:
        Optional event checked before every request; once set, requests
        raise :class:`CancellationError`.

    """

    def __init__(
        self,
        directory_url: str,
        account_key: RSAPrivateKey,
        settings: AcmeSettings,
        cancel: threading.Event | None = None,
    ) -> None:
        self._directory_url = directory_url
        self._settings = settings
        self._cancel = cancel
        self._jwk = josepy.JWKRSA(key=account_key)
        self._net = acme_client.ClientNetwork(
            self._jwk,
            user_agent=settings.user_agent,
            verify_ssl=settings.ca_cert_path or True,
            timeout=settings.timeout_seconds,
        )
        self._client: acme_client.ClientV2 | None = None
        self.account_url: str | None = None
        self.last_retry_after: str | None = None

    def _check_cancelled(self) -> None:
        if self._cancel is not None and self._cancel.is_set():
            msg = "run cancelled before ACME request"
            raise CancellationError(msg)

    @contextmanager
    def _exchange(self, action: str) -> Generator[None, None, None]:
        """Check for cancellation, then map failures inside the block to :class:`AcmeError`."""
        self._check_cancelled()
        log.debug("ACME %s", action)
        try:
            yield
        except messages.Error as exc:
            raise AcmeError(
                exc.detail or exc.description or f"{action} rejected",
                error_type=exc.typ or "",
                retryable=exc.code in _RETRYABLE_PROBLEMS,
            ) from exc
        except acme_errors.Error as exc:
            msg = f"{action} failed: {str(exc) or type(exc).__name__}"
            raise AcmeError(msg) from exc
        except (requests.RequestException, http.client.HTTPException, OSError) as exc:
            msg = f"Failed to reach CA during {action}: {exc}"
            raise AcmeError(msg) from exc
        except (josepy.DeserializationError, ValueError) as exc:
            msg = f"CA returned an unreadable response to {action}: {exc}"
            raise AcmeError(msg, retryable=False) from exc

    def _acme(self) -> acme_client.ClientV2:
        """Fetch (once) the directory and return the library client."""
        if self._client is None:
            directory = messages.Directory.from_json(self._net.get(self._directory_url).json())
            self._client = acme_client.ClientV2(directory, self._net)
        return self._client

    def _post_as_get(self, url: str) -> requests.Response:
        response = self._acme()._post_as_get(url)  # noqa: SLF001
        self.last_retry_after = response.headers.get("Retry-After")
        return response

    # -- account ------------------------------------------------------------

    def register(self, contact_email: str | None = None, *, agree_tos: bool = True) -> str:
        """Create (or look up) the account for this key; return its URL."""
        self.account_url = None
        with self._exchange("register account"):
            regr = self._acme().new_account(
                messages.NewRegistration.from_data(
                    email=contact_email,
                    terms_of_service_agreed=agree_tos,
                )
            )
        if not regr.uri:
            msg = "newAccount response carries no Location header"
            raise AcmeError(msg, retryable=False)
        self.account_url = regr.uri
        log.debug("ACME account registered at %s", self.account_url)
        return self.account_url

    def _require_account(self) -> None:
        if self.account_url is None:
            msg = "ACME account not registered; call register() first"
            raise AcmeError(msg, retryable=False)

    # -- orders & authorizations -------------------------------------------

    def new_order(
        self,
        domain: str,
        *,
        not_before: datetime | None = None,
        not_after: datetime | None = None,
    ) -> Order:
        """Create an order for the single DNS identifier *domain*."""
        self._require_account()
        payload = _NewOrder(
            identifiers=(messages.Identifier(typ=messages.IDENTIFIER_FQDN, value=domain),),
            not_before=not_before,
            not_after=not_after,
        )
        with self._exchange("create order"):
            acme = self._acme()
            response = acme._post(acme.directory["newOrder"], payload)  # noqa: SLF001
            body = messages.Order.from_json(response.json())
        location = response.headers.get("Location")
        if not location:
            msg = "newOrder response carries no Location header"
            raise AcmeError(msg, retryable=False)
        return Order.from_message(location, body)

    def get_order(self, url: str) -> Order:
        self._require_account()
        with self._exchange("fetch order"):
            return Order.from_message(url, messages.Order.from_json(self._post_as_get(url).json()))

    def get_authorization(self, url: str) -> Authorization:
        self._require_account()
        with self._exchange("fetch authorization"):
            response = self._post_as_get(url)
            return Authorization.from_message(
                url, messages.Authorization.from_json(response.json())
            )

    def answer_challenge(self, challenge: Challenge) -> Challenge:
        """Tell the CA that *challenge* is ready to be validated."""
        self._require_account()
        if challenge.body is None:
            msg = f"challenge {challenge.url} was not fetched from the CA"
            raise AcmeError(msg, retryable=False)
        challb = challenge.body
        with self._exchange("answer challenge"):
            challr = self._acme().answer_challenge(challb, challb.chall.response(self._jwk))
            return Challenge.from_body(challr.body)

    def finalize(self, order: Order, csr_pem: bytes) -> Order:
        """Submit the PEM CSR to the order's finalize URL."""
        self._require_account()
        orderr = messages.OrderResource(
            body=messages.Order(finalize=order.finalize),
            uri=order.url,
            csr_pem=csr_pem,
        )
        with self._exchange("finalize order"):
            orderr = self._acme().begin_finalization(orderr)
            self.last_retry_after = None
            return Order.from_message(order.url, orderr.body)

    def download_certificate(self, url: str) -> bytes:
        """Fetch the PEM chain from the order's certificate URL."""
        self._require_account()
        with self._exchange("download certificate"):
            return self._post_as_get(url).content

    # -- HTTP-01 ------------------------------------------------------------

    @property
    def thumbprint(self) -> str:
        """RFC 7638 thumbprint of the account key, base64url without padding."""
        return josepy.b64encode(self._jwk.thumbprint()).decode("ascii")

    def key_authorization(self, token: str) -> str:
        return f"{token}.{self.thumbprint}"
