"""Certificate key and signing-request construction.

Every certificate gets its own freshly generated RSA key; the platform
accepts RSA keys only, so the algorithm and size are fixed.  The
helpers at the bottom convert between the DER certificates the CA
returns and the PEM text the registry expects.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from certbind.core.errors import KeyGenerationError, RequestBuildError

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

log = logging.getLogger(__name__)

RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537

_MAX_DOMAIN_LENGTH = 253
_LABEL_RE = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")


@dataclass(frozen=True)
class IssuedCertificate:
    """A certificate obtained from the CA, ready for the registry.

    Attributes
    ----------
    domain:
        The single DNS name the certificate covers.
    certificate_chain:
        DER certificates, leaf first.
    certificate_pem:
        The chain as concatenated PEM ``CERTIFICATE`` blocks.
    private_key_pem:
        The certificate key as PEM ``RSA PRIVATE KEY``.
    not_after:
        Leaf expiry, when the leaf could be parsed.

    """

    domain: str
    certificate_chain: tuple[bytes, ...]
    certificate_pem: str
    private_key_pem: str
    not_after: datetime | None = None


def normalize_domain(domain: str) -> str:
    """Return *domain* as the lower-case ASCII (IDNA) name the CA and CSR use.

    Raises :class:`RequestBuildError` when it is empty or not a DNS name.
    """
    name = (domain or "").strip().rstrip(".").lower()
    if not name:
        msg = "domain name is empty"
        raise RequestBuildError(msg, domain=domain)
    if len(name) > _MAX_DOMAIN_LENGTH:
        msg = f"domain name exceeds {_MAX_DOMAIN_LENGTH} characters"
        raise RequestBuildError(msg, domain=domain)
    try:
        ascii_name = name.encode("idna").decode("ascii")
    except UnicodeError as exc:
        msg = f"domain name is not a valid DNS name: {exc}"
        raise RequestBuildError(msg, domain=domain) from exc
    labels = ascii_name.split(".")
    if any(not _LABEL_RE.match(label) for label in labels):
        msg = f"domain name {domain!r} is not a valid DNS name"
        raise RequestBuildError(msg, domain=domain)
    return ascii_name


def generate_rsa_key() -> RSAPrivateKey:
    """Generate a 2048-bit RSA key with public exponent 65537."""
    try:
        return rsa.generate_private_key(
            public_exponent=RSA_PUBLIC_EXPONENT,
            key_size=RSA_KEY_SIZE,
        )
    except (ValueError, TypeError, MemoryError) as exc:
        msg = f"RSA key generation failed: {exc}"
        raise KeyGenerationError(msg) from exc


def build_csr(domain: str) -> tuple[RSAPrivateKey, x509.CertificateSigningRequest]:
    """Generate a key and a CSR for *domain*, signed with that key.

    The CSR names *domain* both as the subject common name and as the
    only subjectAltName entry.

    Raises
    ------
    RequestBuildError
        If *domain* is empty or not a DNS name, or signing fails.
    KeyGenerationError
        If the key could not be generated.

    """
    name = normalize_domain(domain)
    key = generate_rsa_key()
    try:
        csr = (
            x509.CertificateSigningRequestBuilder()
            .subject_name(
                x509.Name(
                    [
                        x509.NameAttribute(NameOID.COMMON_NAME, name),
                    ]
                )
            )
            .add_extension(
                x509.SubjectAlternativeName(
                    [
                        x509.DNSName(name),
                    ]
                ),
                critical=False,
            )
            .sign(key, hashes.SHA256())
        )
    except (ValueError, TypeError) as exc:
        msg = f"CSR signing failed: {exc}"
        raise RequestBuildError(msg, domain=domain) from exc

    log.debug("Built CSR for %s", name)
    return key, csr


# ---------------------------------------------------------------------------
# PEM transport encoding
# ---------------------------------------------------------------------------


def encode_certificate_chain(ders: Sequence[bytes]) -> str:
    """Encode DER certificates as concatenated PEM blocks, order preserved."""
    blocks = []
    for der in ders:
        cert = x509.load_der_x509_certificate(der)
        blocks.append(cert.public_bytes(serialization.Encoding.PEM).decode("ascii"))
    return "".join(blocks)


def encode_private_key(key: RSAPrivateKey) -> str:
    """Encode *key* as unencrypted PKCS#1 PEM (``RSA PRIVATE KEY``)."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def decode_certificate_chain(pem: str) -> list[bytes]:
    """Inverse of :func:`encode_certificate_chain`."""
    return [
        cert.public_bytes(serialization.Encoding.DER)
        for cert in x509.load_pem_x509_certificates(pem.encode("ascii"))
    ]


def decode_private_key(pem: str) -> RSAPrivateKey:
    key = serialization.load_pem_private_key(pem.encode("ascii"), password=None)
    if not isinstance(key, rsa.RSAPrivateKey):
        msg = f"expected an RSA private key, got {type(key).__name__}"
        raise TypeError(msg)
    return key


def split_pem_chain(body: bytes | str) -> list[bytes]:
    """Parse an ``application/pem-certificate-chain`` body into DER certificates.

    Raises :class:`ValueError` when the body holds no certificate.
    """
    if isinstance(body, str):
        body = body.encode("ascii")
    certs = x509.load_pem_x509_certificates(body)
    return [cert.public_bytes(serialization.Encoding.DER) for cert in certs]


def leaf_not_after(chain: Sequence[bytes]) -> datetime | None:
    """Expiry of the first certificate in *chain*, if there is one."""
    if not chain:
        return None
    return x509.load_der_x509_certificate(chain[0]).not_valid_after_utc
