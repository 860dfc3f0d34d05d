r"""App Engine Admin API registry backend.

Talks to the Admin API v1 over HTTPS:

- ``GET  apps/{app}/domainMappings``            list custom domains
- ``GET  apps/{app}/authorizedCertificates``    list certificates
- ``POST apps/{app}/authorizedCertificates``    upload a certificate
- ``PATCH apps/{app}/domainMappings/{domain}?updateMask=ssl_settings.certificate_id``
- ``PATCH apps/{app}/authorizedCertificates/{id}?updateMask=certificate_raw_data``

Listings follow ``nextPageToken`` until exhausted.  Calls authenticate
with ``registry.access_token`` when configured, otherwise with a token
for the default service account from the metadata server, cached until
shortly before it expires.
"""

from __future__ import annotations

import contextlib
import http.client
import json
import logging
import re
import threading
import time
import urllib.error
import urllib.parse
import urllib.request
from datetime import datetime
from typing import TYPE_CHECKING, Any

from certbind.core.errors import RegistryError
from certbind.registry.base import CertificateRecord, CertificateRegistry, DomainRecord

if TYPE_CHECKING:
    from certbind.config.settings import RegistrySettings

log = logging.getLogger(__name__)

_TOKEN_REFRESH_MARGIN_SECONDS = 60
_MAX_ERROR_BODY = 500
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def parse_rfc3339(value: str) -> datetime:
    """Parse an RFC 3339 timestamp such as ``2017-06-01T12:00:00.123456789Z``.

    Fractional seconds beyond microseconds are truncated.
    """
    return datetime.fromisoformat(_FRACTION_RE.sub(r"\1", value))


def _api_error_message(body: str) -> str:
    """Extract ``error.message`` from a Google API error body."""
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        return body[:_MAX_ERROR_BODY]
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        return str(data["error"].get("message") or body[:_MAX_ERROR_BODY])
    return body[:_MAX_ERROR_BODY]


class AppEngineRegistry(CertificateRegistry):
    """Registry backed by the App Engine Admin API."""

    def __init__(self, settings: RegistrySettings) -> None:
        self._settings = settings
        self._base = f"{settings.api_base_url.rstrip('/')}/apps/{urllib.parse.quote(settings.app_id)}"
        self._token: str | None = settings.access_token
        self._token_expires_at: float | None = None
        self._token_lock = threading.Lock()
        self._service_account: str | None = settings.service_account

    # -- auth ---------------------------------------------------------------

    def _metadata_get(self, path: str) -> bytes:
        req = urllib.request.Request(
            f"{self._settings.metadata_url.rstrip('/')}/{path}",
            headers={"Metadata-Flavor": "Google"},
        )
        with urllib.request.urlopen(req, timeout=self._settings.timeout_seconds) as resp:  # noqa: S310
            return resp.read()

    def _access_token(self) -> str:
        if self._settings.access_token:
            return self._settings.access_token
        with self._token_lock:
            now = time.monotonic()
            if (
                self._token is not None
                and self._token_expires_at is not None
                and now < self._token_expires_at
            ):
                return self._token
            try:
                data = json.loads(
                    self._metadata_get("instance/service-accounts/default/token"),
                )
                token = str(data["access_token"])
                expires_in = float(data.get("expires_in", 0))
            except (
                urllib.error.URLError,
                http.client.HTTPException,
                OSError,
                ValueError,
                KeyError,
                TypeError,
            ) as exc:
                msg = f"could not obtain an access token from the metadata server: {exc}"
                raise RegistryError(msg, operation="authenticate", retryable=True) from exc
            self._token = token
            self._token_expires_at = now + max(0.0, expires_in - _TOKEN_REFRESH_MARGIN_SECONDS)
            log.debug("Fetched registry access token (expires in %ss)", expires_in)
            return self._token

    def service_account(self) -> str | None:
        """Default service account email, looked up once from the metadata server."""
        if self._service_account is None:
            try:
                self._service_account = (
                    self._metadata_get("instance/service-accounts/default/email")
                    .decode("utf-8")
                    .strip()
                )
            except (urllib.error.URLError, http.client.HTTPException, OSError) as exc:
                log.debug("Service account lookup failed: %s", exc)
                return None
        return self._service_account

    def project_id(self) -> str | None:
        return self._settings.app_id or None

    # -- transport ----------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        domain: str | None = None,
        query: dict[str, str] | None = None,
        body: dict | None = None,
    ) -> dict[str, Any]:
        url = f"{self._base}/{path}"
        if query:
            url = f"{url}?{urllib.parse.urlencode(query)}"
        headers = {
            "Authorization": f"Bearer {self._access_token()}",
            "Accept": "application/json",
        }
        data = None
        if body is not None:
            data = json.dumps(body).encode("utf-8")
            headers["Content-Type"] = "application/json"
        req = urllib.request.Request(url, data=data, method=method, headers=headers)

        log.debug("Registry %s %s", method, url)
        try:
            with urllib.request.urlopen(req, timeout=self._settings.timeout_seconds) as resp:  # noqa: S310
                raw = resp.read()
        except urllib.error.HTTPError as exc:
            text = ""
            with contextlib.suppress(OSError):
                text = exc.read().decode("utf-8", errors="replace")
            message = _api_error_message(text) or f"HTTP {exc.code}"
            raise RegistryError(
                f"HTTP {exc.code}: {message}",
                operation=operation,
                domain=domain,
                retryable=exc.code >= 500 or exc.code == 429,
            ) from exc
        except (urllib.error.URLError, http.client.HTTPException, OSError) as exc:
            msg = f"failed to reach registry: {exc}"
            raise RegistryError(msg, operation=operation, domain=domain, retryable=True) from exc

        if not raw:
            return {}
        try:
            payload = json.loads(raw.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            msg = f"registry returned invalid JSON: {exc}"
            raise RegistryError(msg, operation=operation, domain=domain) from exc
        if not isinstance(payload, dict):
            msg = f"registry returned a JSON {type(payload).__name__}, expected an object"
            raise RegistryError(msg, operation=operation, domain=domain)
        return payload

    def _list(self, path: str, key: str, operation: str) -> list[dict]:
        items: list[dict] = []
        page_token: str | None = None
        while True:
            query = {"pageToken": page_token} if page_token else None
            page = self._request("GET", path, operation=operation, query=query)
            items.extend(page.get(key, []))
            page_token = page.get("nextPageToken")
            if not page_token:
                return items

    # -- CertificateRegistry ------------------------------------------------

    def list_domains(self) -> list[DomainRecord]:
        records = []
        for item in self._list("domainMappings", "domainMappings", "list_domains"):
            if not item.get("id"):
                msg = "domain mapping without an id"
                raise RegistryError(msg, operation="list_domains")
            ssl_settings = item.get("sslSettings")
            certificate_id = (ssl_settings or {}).get("certificateId") or None
            records.append(
                DomainRecord(
                    domain=item["id"],
                    certificate_id=certificate_id,
                    managed=ssl_settings is not None and certificate_id is None,
                ),
            )
        return records

    def list_certificates(self) -> list[CertificateRecord]:
        records = []
        for item in self._list("authorizedCertificates", "certificates", "list_certificates"):
            names = tuple(item.get("domainNames", []))
            try:
                certificate_id = str(item["id"])
                expire_time = parse_rfc3339(item["expireTime"])
            except (KeyError, ValueError) as exc:
                msg = f"certificate {item.get('id')} is malformed: {exc}"
                raise RegistryError(
                    msg,
                    operation="list_certificates",
                    domain=names[0] if names else None,
                ) from exc
            records.append(
                CertificateRecord(
                    id=certificate_id,
                    display_name=item.get("displayName", ""),
                    domain_names=names,
                    expire_time=expire_time,
                ),
            )
        return records

    def create_certificate(
        self,
        display_name: str,
        certificate_pem: str,
        private_key_pem: str,
    ) -> str:
        created = self._request(
            "POST",
            "authorizedCertificates",
            operation="create_certificate",
            domain=display_name,
            body={
                "displayName": display_name,
                "certificateRawData": {
                    "publicCertificate": certificate_pem,
                    "privateKey": private_key_pem,
                },
            },
        )
        certificate_id = created.get("id")
        if not certificate_id:
            msg = "registry did not return the new certificate id"
            raise RegistryError(msg, operation="create_certificate", domain=display_name)
        log.info("Uploaded certificate %s for %s", certificate_id, display_name)
        return str(certificate_id)

    def bind_certificate(self, domain: str, certificate_id: str) -> None:
        self._request(
            "PATCH",
            f"domainMappings/{urllib.parse.quote(domain)}",
            operation="bind_certificate",
            domain=domain,
            query={"updateMask": "ssl_settings.certificate_id"},
            body={"sslSettings": {"certificateId": certificate_id}},
        )
        log.info("Bound certificate %s to %s", certificate_id, domain)

    def update_certificate(
        self,
        certificate_id: str,
        certificate_pem: str,
        private_key_pem: str,
    ) -> None:
        self._request(
            "PATCH",
            f"authorizedCertificates/{urllib.parse.quote(certificate_id)}",
            operation="update_certificate",
            query={"updateMask": "certificate_raw_data"},
            body={
                "certificateRawData": {
                    "publicCertificate": certificate_pem,
                    "privateKey": private_key_pem,
                },
            },
        )
        log.info("Replaced raw data of certificate %s", certificate_id)
