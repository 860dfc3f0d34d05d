"""Root conftest for the certbind test suite."""

from __future__ import annotations

import sys
from datetime import UTC, datetime
from pathlib import Path

import pytest
import yaml

# ---------------------------------------------------------------------------
# Make ``src/`` importable without installing the package
# ---------------------------------------------------------------------------
_SRC = str(Path(__file__).resolve().parent.parent / "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)


# ---------------------------------------------------------------------------
# Minimal config data shared by multiple test modules
# ---------------------------------------------------------------------------


@pytest.fixture()
def minimal_config_data() -> dict:
    """Return a dict containing the minimum required config fields."""
    return {
        "acme": {"contact_email": "ops@example.com"},
        "registry": {"app_id": "demo-project", "access_token": "test-token"},
        "trigger": {"token_secret": "0123456789abcdef0123"},
    }


@pytest.fixture()
def tmp_config_file(tmp_path: Path, minimal_config_data: dict) -> Path:
    """Write *minimal_config_data* to a temp YAML file and return its path."""
    cfg = tmp_path / "config.yaml"
    cfg.write_text(
        yaml.safe_dump(minimal_config_data, default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )
    return cfg


@pytest.fixture()
def settings(minimal_config_data: dict):
    """Typed settings built from *minimal_config_data* (no singleton)."""
    from certbind.config.certbind_config import CertbindConfig

    return CertbindConfig.from_dict(minimal_config_data)


@pytest.fixture()
def now() -> datetime:
    return datetime(2024, 6, 1, 12, 0, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Config singleton cleanup -- autouse so every test gets a fresh slate
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def fresh_config():
    """Reset the CertbindConfig singleton before and after every test."""
    from certbind.config.certbind_config import CertbindConfig

    CertbindConfig.reset()
    yield
    CertbindConfig.reset()


# ---------------------------------------------------------------------------
# Certificates
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def cert_factory():
    """Return ``make(domain, not_after) -> (pem_chain, key)`` building self-signed certs."""
    from datetime import timedelta

    from cryptography import x509
    from cryptography.hazmat.primitives import hashes, serialization
    from cryptography.hazmat.primitives.asymmetric import rsa
    from cryptography.x509.oid import NameOID

    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    def make(domain: str = "www.example.com", not_after: datetime | None = None):
        not_after = not_after or datetime(2030, 1, 1, tzinfo=UTC)
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domain)])
        cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(not_after - timedelta(days=90))
            .not_valid_after(not_after)
            .add_extension(x509.SubjectAlternativeName([x509.DNSName(domain)]), critical=False)
            .sign(key, hashes.SHA256())
        )
        return cert.public_bytes(serialization.Encoding.PEM).decode("ascii"), key

    return make


@pytest.fixture(autouse=True)
def _restore_certbind_loggers():
    """Undo ``configure_logging`` so caplog sees certbind records in every test."""
    import logging

    yield
    for name in ("certbind", "certbind.audit", "certbind.access"):
        logger = logging.getLogger(name)
        logger.handlers.clear()
        logger.propagate = True
        logger.disabled = False
        logger.setLevel(logging.NOTSET)


# ---------------------------------------------------------------------------
# Flask app wired to in-memory fakes
# ---------------------------------------------------------------------------


@pytest.fixture()
def fake_registry():
    from tests.services.conftest import FakeRegistry

    return FakeRegistry()


@pytest.fixture()
def fake_issuer():
    from unittest.mock import MagicMock

    return MagicMock()


@pytest.fixture()
def container(tmp_config_file, fake_registry, fake_issuer):
    from certbind.app.context import Container
    from certbind.app.shutdown import ShutdownCoordinator
    from certbind.challenge.store import InMemoryChallengeStore
    from certbind.config import CertbindConfig

    return Container(
        CertbindConfig(config_file=tmp_config_file).settings,
        store=InMemoryChallengeStore(),
        registry=fake_registry,
        shutdown=ShutdownCoordinator(graceful_timeout=1),
        issuer=fake_issuer,
    )


@pytest.fixture()
def app(container):
    from certbind.app import create_app
    from certbind.config import get_config

    flask_app = create_app(config=get_config(), container=container)
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture()
def client(app):
    return app.test_client()
