"""Unit tests for certbind.acme.client -- the session over the ``acme`` library.

``ClientNetwork`` and ``ClientV2`` are replaced with mocks; the
responses they hand back are decoded by the real :mod:`acme.messages`.
"""

from __future__ import annotations

import dataclasses
import http.client
import json
import threading
from datetime import UTC, datetime
from unittest.mock import MagicMock, patch

import josepy
import pytest
import requests
from acme import challenges, messages
from acme import errors as acme_errors
from cryptography.hazmat.primitives.asymmetric import rsa

from certbind.acme.client import AcmeClient, Challenge, Order
from certbind.core.errors import AcmeError, CancellationError

DIRECTORY_URL = "https://ca.test/directory"
DIRECTORY = {
    "newNonce": "https://ca.test/new-nonce",
    "newAccount": "https://ca.test/new-acct",
    "newOrder": "https://ca.test/new-order",
}
ACCOUNT_URL = "https://ca.test/acct/1"
ORDER_URL = "https://ca.test/order/1"
AUTHZ_URL = "https://ca.test/authz/1"
CHALL_URL = "https://ca.test/chall/1"
FINALIZE_URL = "https://ca.test/order/1/finalize"
TOKEN = josepy.b64encode(b"\x01" * 32).decode("ascii")


def _order_json(status="pending", **extra):
    data = {
        "status": status,
        "identifiers": [{"type": "dns", "value": "a.example"}],
        "authorizations": [AUTHZ_URL],
        "finalize": FINALIZE_URL,
    }
    data.update(extra)
    return data


def _authz_json(status="pending", error=None):
    http01 = {"type": "http-01", "url": CHALL_URL, "token": TOKEN, "status": "pending"}
    if error:
        http01["error"] = error
    return {
        "status": status,
        "identifier": {"type": "dns", "value": "a.example"},
        "challenges": [
            {"type": "dns-01", "url": "https://ca.test/chall/dns", "token": TOKEN, "status": "pending"},
            http01,
            {"type": "carrier-pigeon-01", "url": "https://ca.test/chall/bird", "status": "pending"},
        ],
    }


def _response(body=None, headers=None, content=b""):
    resp = MagicMock()
    resp.json.return_value = body
    resp.headers = headers or {}
    resp.content = content
    return resp


@pytest.fixture(scope="module")
def account_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture()
def network():
    with patch("certbind.acme.client.acme_client.ClientNetwork") as cls:
        cls.return_value.get.return_value = _response(DIRECTORY)
        yield cls


@pytest.fixture()
def acme(network):
    with patch("certbind.acme.client.acme_client.ClientV2") as cls:
        instance = cls.return_value
        instance.directory = DIRECTORY
        instance.new_account.return_value = MagicMock(uri=ACCOUNT_URL)
        instance.class_ = cls
        yield instance


@pytest.fixture()
def client(account_key, settings, acme):
    return AcmeClient(DIRECTORY_URL, account_key, settings.acme)


@pytest.fixture()
def registered(client):
    client.register("ops@example.com")
    return client


# ---------------------------------------------------------------------------
# Construction and account registration
# ---------------------------------------------------------------------------


class TestRegister:
    def test_network_uses_settings(self, client, network, settings):
        kwargs = network.call_args.kwargs
        assert isinstance(network.call_args.args[0], josepy.JWKRSA)
        assert kwargs["user_agent"] == settings.acme.user_agent
        assert kwargs["timeout"] == settings.acme.timeout_seconds
        assert kwargs["verify_ssl"] is True

    def test_custom_ca_bundle_used_for_verification(self, account_key, settings, network):
        acme_settings = dataclasses.replace(settings.acme, ca_cert_path="/etc/ssl/test-ca.pem")
        AcmeClient(DIRECTORY_URL, account_key, acme_settings)
        assert network.call_args.kwargs["verify_ssl"] == "/etc/ssl/test-ca.pem"

    def test_returns_account_url(self, client, acme):
        assert client.register("ops@example.com") == ACCOUNT_URL
        assert client.account_url == ACCOUNT_URL
        (registration,) = acme.new_account.call_args.args
        assert registration.terms_of_service_agreed is True
        assert "mailto:ops@example.com" in registration.contact

    def test_without_contact(self, client, acme):
        client.register()
        (registration,) = acme.new_account.call_args.args
        assert not registration.contact

    def test_directory_fetched_once(self, registered, acme, network):
        acme._post_as_get.return_value = _response(_order_json())
        registered.get_order(ORDER_URL)
        registered.get_order(ORDER_URL)
        network.return_value.get.assert_called_once_with(DIRECTORY_URL)
        acme.class_.assert_called_once()

    def test_missing_location_is_error(self, client, acme):
        acme.new_account.return_value = MagicMock(uri=None)
        with pytest.raises(AcmeError, match="Location"):
            client.register()
        assert client.account_url is None

    def test_requests_need_an_account(self, client, acme):
        with pytest.raises(AcmeError, match="not registered"):
            client.get_order(ORDER_URL)
        acme._post_as_get.assert_not_called()


# ---------------------------------------------------------------------------
# Orders, authorizations and challenges
# ---------------------------------------------------------------------------


class TestOrders:
    def test_new_order_posts_single_dns_identifier(self, registered, acme):
        acme._post.return_value = _response(_order_json(), headers={"Location": ORDER_URL})
        order = registered.new_order("a.example")

        url, payload = acme._post.call_args.args
        assert url == DIRECTORY["newOrder"]
        body = json.loads(payload.json_dumps())
        assert body["identifiers"] == [{"type": "dns", "value": "a.example"}]
        assert "notBefore" not in body
        assert "notAfter" not in body
        assert order.url == ORDER_URL
        assert order.status == "pending"
        assert order.authorizations == (AUTHZ_URL,)
        assert order.finalize == FINALIZE_URL

    def test_new_order_with_validity_window(self, registered, acme):
        acme._post.return_value = _response(_order_json(), headers={"Location": ORDER_URL})
        start = datetime(2024, 6, 1, 12, 0, 0, tzinfo=UTC)
        registered.new_order("a.example", not_before=start, not_after=start)
        body = json.loads(acme._post.call_args.args[1].json_dumps())
        assert body["notBefore"].startswith("2024-06-01T12:00:00")
        assert body["notAfter"].startswith("2024-06-01T12:00:00")

    def test_new_order_without_location_is_error(self, registered, acme):
        acme._post.return_value = _response(_order_json())
        with pytest.raises(AcmeError, match="Location"):
            registered.new_order("a.example")

    def test_get_order_records_retry_after(self, registered, acme):
        acme._post_as_get.return_value = _response(
            _order_json("valid", certificate="https://ca.test/cert/1"),
            headers={"Retry-After": "3"},
        )
        order = registered.get_order(ORDER_URL)
        assert order.is_valid
        assert order.certificate == "https://ca.test/cert/1"
        assert registered.last_retry_after == "3"

    def test_order_error_kept(self, registered, acme):
        problem = {"type": "urn:ietf:params:acme:error:badCSR", "detail": "key too small"}
        acme._post_as_get.return_value = _response(_order_json("invalid", error=problem))
        order = registered.get_order(ORDER_URL)
        assert order.error == {"type": problem["type"], "detail": "key too small"}

    def test_finalize_hands_csr_to_library(self, registered, acme):
        acme.begin_finalization.return_value = messages.OrderResource(
            body=messages.Order.from_json(_order_json("processing")),
            uri=ORDER_URL,
        )
        ready = Order(url=ORDER_URL, status="ready", finalize=FINALIZE_URL)
        order = registered.finalize(ready, b"-----BEGIN CERTIFICATE REQUEST-----")

        (orderr,) = acme.begin_finalization.call_args.args
        assert orderr.body.finalize == FINALIZE_URL
        assert orderr.uri == ORDER_URL
        assert orderr.csr_pem == b"-----BEGIN CERTIFICATE REQUEST-----"
        assert order.status == "processing"
        assert order.url == ORDER_URL

    def test_download_returns_body(self, registered, acme):
        acme._post_as_get.return_value = _response(content=b"PEM CHAIN")
        assert registered.download_certificate("https://ca.test/cert/1") == b"PEM CHAIN"


class TestAuthorizations:
    def test_challenges_decoded(self, registered, acme):
        acme._post_as_get.return_value = _response(_authz_json(), headers={"Retry-After": "2"})
        authz = registered.get_authorization(AUTHZ_URL)

        assert authz.url == AUTHZ_URL
        assert authz.identifier == "a.example"
        assert authz.status == "pending"
        assert not authz.is_terminal
        assert [c.type for c in authz.challenges] == ["dns-01", "http-01", "carrier-pigeon-01"]
        http01 = authz.http01()
        assert http01.url == CHALL_URL
        assert http01.token == TOKEN
        assert registered.last_retry_after == "2"

    def test_challenge_error_detail(self, registered, acme):
        error = {"type": "urn:ietf:params:acme:error:connection", "detail": "connection refused"}
        acme._post_as_get.return_value = _response(_authz_json("invalid", error=error))
        authz = registered.get_authorization(AUTHZ_URL)
        assert authz.is_terminal
        assert authz.error_detail() == "connection refused"

    def test_answer_challenge_sends_key_authorization(self, registered, acme):
        acme._post_as_get.return_value = _response(_authz_json())
        challenge = registered.get_authorization(AUTHZ_URL).http01()
        answered = dict(_authz_json()["challenges"][1], status="processing")
        acme.answer_challenge.return_value = MagicMock(
            body=messages.ChallengeBody.from_json(answered),
        )

        result = registered.answer_challenge(challenge)

        challb, response = acme.answer_challenge.call_args.args
        assert challb is challenge.body
        assert response.key_authorization == registered.key_authorization(TOKEN)
        assert result.status == "processing"

    def test_answer_needs_a_fetched_challenge(self, registered, acme):
        challenge = Challenge(type="http-01", url=CHALL_URL, token=TOKEN, status="pending")
        with pytest.raises(AcmeError, match="not fetched"):
            registered.answer_challenge(challenge)
        acme.answer_challenge.assert_not_called()

    def test_key_authorization_matches_library(self, registered, account_key):
        expected = challenges.HTTP01(token=b"\x01" * 32).key_authorization(
            josepy.JWKRSA(key=account_key),
        )
        assert registered.key_authorization(TOKEN) == expected


# ---------------------------------------------------------------------------
# Failures and cancellation
# ---------------------------------------------------------------------------


class TestFailures:
    def test_rate_limited_problem_is_retryable(self, client, acme):
        acme.new_account.side_effect = messages.Error(
            typ="urn:ietf:params:acme:error:rateLimited",
            detail="too many registrations",
        )
        with pytest.raises(AcmeError) as exc_info:
            client.register()
        assert exc_info.value.detail == "too many registrations"
        assert exc_info.value.error_type.endswith(":rateLimited")
        assert exc_info.value.retryable is True

    def test_malformed_problem_is_final(self, registered, acme):
        acme._post.side_effect = messages.Error(
            typ="urn:ietf:params:acme:error:rejectedIdentifier",
            detail="forbidden name",
        )
        with pytest.raises(AcmeError, match="forbidden name") as exc_info:
            registered.new_order("a.example")
        assert exc_info.value.retryable is False

    def test_connection_error_wrapped(self, registered, acme):
        acme._post_as_get.side_effect = requests.ConnectionError("connection refused")
        with pytest.raises(AcmeError, match="Failed to reach CA") as exc_info:
            registered.get_authorization(AUTHZ_URL)
        assert exc_info.value.retryable is True

    def test_truncated_response_wrapped(self, registered, acme):
        acme._post_as_get.side_effect = http.client.IncompleteRead(b"PEM", 100)
        with pytest.raises(AcmeError, match="Failed to reach CA"):
            registered.download_certificate("https://ca.test/cert/1")

    def test_unreadable_body_wrapped(self, registered, acme):
        resp = _response()
        resp.json.side_effect = ValueError("Expecting value")
        acme._post_as_get.return_value = resp
        with pytest.raises(AcmeError, match="unreadable") as exc_info:
            registered.get_order(ORDER_URL)
        assert exc_info.value.retryable is False

    def test_library_client_error_wrapped(self, registered, acme):
        acme._post_as_get.return_value = _response(_authz_json())
        challenge = registered.get_authorization(AUTHZ_URL).http01()
        acme.answer_challenge.side_effect = acme_errors.ClientError('"up" Link header missing')
        with pytest.raises(AcmeError, match="answer challenge failed"):
            registered.answer_challenge(challenge)

    def test_cancelled_before_request(self, account_key, settings, acme, network):
        cancel = threading.Event()
        cancel.set()
        client = AcmeClient(DIRECTORY_URL, account_key, settings.acme, cancel=cancel)
        with pytest.raises(CancellationError):
            client.register()
        network.return_value.get.assert_not_called()
        acme.new_account.assert_not_called()
