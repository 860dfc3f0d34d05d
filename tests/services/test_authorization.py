"""Unit tests for certbind.services.authorization -- the HTTP-01 state machine."""

from __future__ import annotations

import threading

import pytest

from certbind.core.errors import (
    AcmeError,
    AuthorizationFailedError,
    AuthorizationTimeoutError,
    CancellationError,
    NoSupportedChallengeError,
    PublishError,
)
from certbind.core.types import AuthorizationFlowState
from certbind.services.authorization import AuthorizationFlow

from tests.services.conftest import (
    AUTHZ_URL,
    CHALL_URL,
    DOMAIN,
    TOKEN,
    FakeAcmeSession,
    make_authz,
)


@pytest.fixture()
def make_flow(publisher, poll_settings, clock):
    def make(session, cancel=None, pub=None):
        return AuthorizationFlow(
            session,
            pub or publisher,
            poll_settings,
            cancel=cancel,
            clock=clock,
            sleep=clock.sleep,
        )

    return make


class TestHappyPath:
    def test_pending_to_valid(self, make_flow, publisher):
        session = FakeAcmeSession()
        flow = make_flow(session)
        result = flow.authorize(DOMAIN)

        assert result.state == AuthorizationFlowState.VALID
        assert flow.state == AuthorizationFlowState.VALID
        assert result.reused is False
        assert result.challenge.token == TOKEN
        assert result.authorization.status == "valid"
        assert session.names() == [
            "new_order",
            "get_authorization",
            "answer_challenge",
            "get_authorization",
        ]

    def test_publishes_before_answering(self, make_flow, publisher):
        seen = {}

        class Session(FakeAcmeSession):
            def answer_challenge(self, challenge):
                seen["value"] = publisher.lookup(publisher.challenge_path(TOKEN))
                return super().answer_challenge(challenge)

        make_flow(Session()).authorize(DOMAIN)
        assert seen["value"] == f"{TOKEN}.thumbprint"

    def test_answers_the_http01_challenge(self, make_flow):
        session = FakeAcmeSession()
        make_flow(session).authorize(DOMAIN)
        assert ("answer_challenge", CHALL_URL) in session.calls

    def test_already_valid_is_reused(self, make_flow, publisher):
        session = FakeAcmeSession(authorizations=[make_authz("valid")])
        result = make_flow(session).authorize(DOMAIN)
        assert result.reused is True
        assert result.state == AuthorizationFlowState.VALID
        assert "answer_challenge" not in session.names()
        assert publisher.lookup(publisher.challenge_path(TOKEN)) is None

    def test_validity_window_passed_to_order(self, make_flow, now):
        session = FakeAcmeSession()
        make_flow(session).authorize(DOMAIN, not_before=now, not_after=now)
        assert session.calls[0] == ("new_order", DOMAIN, now, now)


class TestPolling:
    def test_polls_with_backoff(self, make_flow, clock):
        session = FakeAcmeSession(
            authorizations=[make_authz("pending")] * 3 + [make_authz("valid")],
        )
        make_flow(session).authorize(DOMAIN)
        assert clock.sleeps == [1.0, 2.0, 4.0]

    def test_honours_retry_after(self, make_flow, clock):
        session = FakeAcmeSession()
        session.last_retry_after = "3"
        make_flow(session).authorize(DOMAIN)
        assert clock.sleeps == [3.0]

    def test_times_out(self, make_flow, clock):
        session = FakeAcmeSession(authorizations=[make_authz("pending")])
        flow = make_flow(session)
        with pytest.raises(AuthorizationTimeoutError, match="still pending after 10s") as exc_info:
            flow.authorize(DOMAIN)
        assert flow.state == AuthorizationFlowState.TIMED_OUT
        assert exc_info.value.domain == DOMAIN
        assert exc_info.value.retryable is True
        assert sum(clock.sleeps) == pytest.approx(10.0)

    def test_cancelled_while_polling(self, make_flow):
        cancel = threading.Event()

        class Session(FakeAcmeSession):
            def get_authorization(self, url):
                authz = super().get_authorization(url)
                if self.names().count("get_authorization") == 2:
                    cancel.set()
                return authz

        session = Session(authorizations=[make_authz("pending")])
        with pytest.raises(CancellationError):
            make_flow(session, cancel=cancel).authorize(DOMAIN)


class TestFailures:
    def test_invalid_authorization_carries_ca_detail(self, make_flow):
        error = {"type": "urn:ietf:params:acme:error:unauthorized", "detail": "404 fetching token"}
        session = FakeAcmeSession(
            authorizations=[make_authz("pending"), make_authz("invalid", error=error)],
        )
        flow = make_flow(session)
        with pytest.raises(AuthorizationFailedError, match="404 fetching token"):
            flow.authorize(DOMAIN)
        assert flow.state == AuthorizationFlowState.INVALID

    def test_invalid_without_detail(self, make_flow):
        session = FakeAcmeSession(authorizations=[make_authz("pending"), make_authz("expired")])
        with pytest.raises(AuthorizationFailedError, match="authorization is expired"):
            make_flow(session).authorize(DOMAIN)

    def test_no_http01_challenge(self, make_flow):
        from certbind.acme.client import Challenge

        dns_only = [Challenge(type="dns-01", url="u", token="t", status="pending")]
        session = FakeAcmeSession(authorizations=[make_authz("pending", challenges=dns_only)])
        with pytest.raises(NoSupportedChallengeError, match="offered: dns-01"):
            make_flow(session).authorize(DOMAIN)
        assert "answer_challenge" not in session.names()

    def test_new_order_rejected(self, make_flow):
        session = FakeAcmeSession()
        session.errors["new_order"] = AcmeError("rate limited", status=429)
        with pytest.raises(AuthorizationFailedError, match="rate limited") as exc_info:
            make_flow(session).authorize(DOMAIN)
        assert exc_info.value.retryable is True

    def test_answer_rejected(self, make_flow):
        session = FakeAcmeSession()
        session.errors["answer_challenge"] = AcmeError("malformed", status=400)
        with pytest.raises(AuthorizationFailedError, match="rejected the challenge"):
            make_flow(session).authorize(DOMAIN)

    def test_publish_failure_stops_before_answer(self, make_flow, publisher):
        class BrokenPublisher(type(publisher)):
            def publish(self, path, value):
                raise PublishError("store down")

        session = FakeAcmeSession()
        flow = make_flow(session, pub=BrokenPublisher(publisher._store))
        with pytest.raises(PublishError):
            flow.authorize(DOMAIN)
        assert "answer_challenge" not in session.names()
        assert flow.state == AuthorizationFlowState.CHALLENGE_SELECTED

    def test_polls_the_authorization_url(self, make_flow):
        session = FakeAcmeSession()
        make_flow(session).authorize(DOMAIN)
        assert session.calls[-1] == ("get_authorization", AUTHZ_URL)
