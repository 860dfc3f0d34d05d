"""Domain authorization via HTTP-01.

Drives one domain through::

    REQUESTED -> CHALLENGE_SELECTED -> PUBLISHED -> SUBMITTED -> POLLING
              -> VALID | INVALID | TIMED_OUT

Every transition is logged at DEBUG and the final state is kept on the
returned :class:`AuthorizationResult`.  Nothing here retries: a failed
step raises the matching error and the caller decides what to do.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from certbind.core.backoff import PollSchedule
from certbind.core.errors import (
    AcmeError,
    AuthorizationFailedError,
    AuthorizationTimeoutError,
    NoSupportedChallengeError,
)
from certbind.core.types import AuthorizationFlowState, AuthorizationStatus

if TYPE_CHECKING:
    import threading
    from collections.abc import Callable
    from datetime import datetime

    from certbind.acme.client import Authorization, Challenge, Order
    from certbind.challenge.publisher import ChallengePublisher
    from certbind.config.settings import PollSettings

log = logging.getLogger(__name__)


class AcmeSession(Protocol):
    """The slice of :class:`~certbind.acme.client.AcmeClient` the flows use."""

    last_retry_after: str | None

    def register(self, contact_email: str | None = None, *, agree_tos: bool = True) -> str: ...

    def new_order(
        self,
        domain: str,
        *,
        not_before: datetime | None = None,
        not_after: datetime | None = None,
    ) -> Order: ...

    def get_order(self, url: str) -> Order: ...

    def get_authorization(self, url: str) -> Authorization: ...

    def answer_challenge(self, challenge: Challenge) -> Challenge: ...

    def finalize(self, order: Order, csr_pem: bytes) -> Order: ...

    def download_certificate(self, url: str) -> bytes: ...

    def key_authorization(self, token: str) -> str: ...


@dataclass(frozen=True)
class AuthorizationResult:
    """Outcome of a successful authorization."""

    domain: str
    state: AuthorizationFlowState
    order: Order
    authorization: Authorization
    challenge: Challenge | None = None
    reused: bool = False


class AuthorizationFlow:
    """Proves control of one domain to the CA.

    Parameters
    ----------
    client:
        A registered ACME session.
    publisher:
        Where challenge responses are published for the CA to fetch.
    poll:
        Polling bounds; ``authorization_timeout_seconds`` is the deadline.
    cancel:
        Optional run-wide cancellation event.

    """

    def __init__(
        self,
        client: AcmeSession,
        publisher: ChallengePublisher,
        poll: PollSettings,
        *,
        cancel: threading.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._client = client
        self._publisher = publisher
        self._poll = poll
        self._cancel = cancel
        self._clock = clock
        self._sleep = sleep
        self.state: AuthorizationFlowState | None = None

    def _enter(self, state: AuthorizationFlowState, domain: str) -> None:
        log.debug("Authorization %s: %s -> %s", domain, self.state, state)
        self.state = state

    def authorize(
        self,
        domain: str,
        *,
        not_before: datetime | None = None,
        not_after: datetime | None = None,
    ) -> AuthorizationResult:
        """Run the authorization for *domain* and return the order to finalize."""
        self.state = None

        # -- REQUESTED --
        self._enter(AuthorizationFlowState.REQUESTED, domain)
        try:
            order = self._client.new_order(domain, not_before=not_before, not_after=not_after)
            if not order.authorizations:
                msg = "order carries no authorization"
                raise AuthorizationFailedError(msg, domain=domain)
            authz = self._client.get_authorization(order.authorizations[0])
        except AcmeError as exc:
            self._enter(AuthorizationFlowState.INVALID, domain)
            msg = f"could not request authorization: {exc}"
            raise AuthorizationFailedError(msg, domain=domain, retryable=exc.retryable) from exc

        if authz.status == AuthorizationStatus.VALID:
            log.info("Authorization for %s is already valid, reusing it", domain)
            self._enter(AuthorizationFlowState.VALID, domain)
            return AuthorizationResult(
                domain=domain,
                state=AuthorizationFlowState.VALID,
                order=order,
                authorization=authz,
                reused=True,
            )

        # -- CHALLENGE_SELECTED --
        challenge = authz.http01()
        if challenge is None:
            offered = ", ".join(c.type for c in authz.challenges) or "none"
            msg = f"CA offered no http-01 challenge (offered: {offered})"
            raise NoSupportedChallengeError(msg, domain=domain)
        self._enter(AuthorizationFlowState.CHALLENGE_SELECTED, domain)

        # -- PUBLISHED --
        path = self._publisher.challenge_path(challenge.token)
        self._publisher.publish(path, self._client.key_authorization(challenge.token))
        self._enter(AuthorizationFlowState.PUBLISHED, domain)

        # -- SUBMITTED --
        try:
            self._client.answer_challenge(challenge)
        except AcmeError as exc:
            self._enter(AuthorizationFlowState.INVALID, domain)
            msg = f"CA rejected the challenge answer: {exc}"
            raise AuthorizationFailedError(msg, domain=domain, retryable=exc.retryable) from exc
        self._enter(AuthorizationFlowState.SUBMITTED, domain)

        # -- POLLING --
        self._enter(AuthorizationFlowState.POLLING, domain)
        authz = self._poll_until_terminal(domain, authz)

        if authz.status != AuthorizationStatus.VALID:
            self._enter(AuthorizationFlowState.INVALID, domain)
            detail = authz.error_detail() or f"authorization is {authz.status}"
            raise AuthorizationFailedError(detail, domain=domain)

        self._enter(AuthorizationFlowState.VALID, domain)
        return AuthorizationResult(
            domain=domain,
            state=AuthorizationFlowState.VALID,
            order=order,
            authorization=authz,
            challenge=challenge,
        )

    def _poll_until_terminal(self, domain: str, authz: Authorization) -> Authorization:
        schedule = PollSchedule(
            timeout=self._poll.authorization_timeout_seconds,
            initial_interval=self._poll.initial_interval_seconds,
            max_interval=self._poll.max_interval_seconds,
            cancel=self._cancel,
            clock=self._clock,
            sleep=self._sleep,
        )
        retry_after = self._client.last_retry_after
        while True:
            if not schedule.wait(retry_after):
                self._enter(AuthorizationFlowState.TIMED_OUT, domain)
                msg = (
                    f"authorization still {authz.status} after "
                    f"{self._poll.authorization_timeout_seconds:g}s"
                )
                raise AuthorizationTimeoutError(msg, domain=domain, retryable=True)
            try:
                authz = self._client.get_authorization(authz.url)
            except AcmeError as exc:
                self._enter(AuthorizationFlowState.INVALID, domain)
                msg = f"could not poll authorization: {exc}"
                raise AuthorizationFailedError(
                    msg, domain=domain, retryable=exc.retryable
                ) from exc
            if authz.is_terminal:
                return authz
            retry_after = self._client.last_retry_after
