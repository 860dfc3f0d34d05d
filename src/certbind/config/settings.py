"""Typed, frozen dataclasses for every configuration section.

This module is the **single source of truth** for default values.
Defaults in ``schema.json`` are informational; these builders are
what the application reads.

Access pattern::

    from certbind.config import get_config

    acme = get_config().settings.acme
    print(acme.directory_url)
"""

from __future__ import annotations

from dataclasses import dataclass

LETSENCRYPT_DIRECTORY_URL = "https://acme-v02.api.letsencrypt.org/directory"
CHALLENGE_PATH_PREFIX = "/.well-known/acme-challenge/"

# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ServerSettings:
    """HTTP server configuration (bind address, workers, threads, timeouts)."""

    bind: str
    port: int
    workers: int
    threads: int
    worker_class: str
    timeout: int
    graceful_timeout: int
    keepalive: int


def _build_server(data: dict | None) -> ServerSettings:
    d = data or {}
    return ServerSettings(
        bind=d.get("bind", "0.0.0.0"),  # noqa: S104
        port=d.get("port", 8080),
        workers=d.get("workers", 1),
        # Challenge fetches are served while a triggered run holds a thread.
        threads=d.get("threads", 4),
        worker_class=d.get("worker_class", "gthread"),
        # A reconciliation run happens inside the trigger request.
        timeout=d.get("timeout", 600),
        graceful_timeout=d.get("graceful_timeout", 30),
        keepalive=d.get("keepalive", 2),
    )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuditLogSettings:
    """Audit log output settings (file, rotation)."""

    enabled: bool
    file: str | None
    max_file_size_bytes: int
    backup_count: int


@dataclass(frozen=True)
class LoggingSettings:
    """Application logging configuration (level, format, audit)."""

    level: str
    format: str
    audit: AuditLogSettings


def _build_logging(data: dict | None) -> LoggingSettings:
    d = data or {}
    a = d.get("audit") or {}
    return LoggingSettings(
        level=d.get("level", "INFO"),
        format=d.get("format", "text"),
        audit=AuditLogSettings(
            enabled=a.get("enabled", True),
            file=a.get("file"),
            max_file_size_bytes=a.get("max_file_size_bytes", 10485760),
            backup_count=a.get("backup_count", 5),
        ),
    )


# ---------------------------------------------------------------------------
# ACME
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PollSettings:
    """Polling bounds for authorizations and orders."""

    initial_interval_seconds: float
    max_interval_seconds: float
    authorization_timeout_seconds: float
    order_timeout_seconds: float


@dataclass(frozen=True)
class AcmeSettings:
    """Certificate authority endpoint and client behaviour."""

    directory_url: str
    agree_tos: bool
    contact_email: str | None
    user_agent: str
    timeout_seconds: int
    ca_cert_path: str | None
    poll: PollSettings


def _build_acme(data: dict | None) -> AcmeSettings:
    d = data or {}
    p = d.get("poll") or {}
    return AcmeSettings(
        directory_url=d.get("directory_url", LETSENCRYPT_DIRECTORY_URL),
        agree_tos=d.get("agree_tos", True),
        contact_email=d.get("contact_email"),
        user_agent=d.get("user_agent", "certbind/1.0"),
        timeout_seconds=d.get("timeout_seconds", 30),
        ca_cert_path=d.get("ca_cert_path"),
        poll=PollSettings(
            initial_interval_seconds=p.get("initial_interval_seconds", 1.0),
            max_interval_seconds=p.get("max_interval_seconds", 10.0),
            authorization_timeout_seconds=p.get("authorization_timeout_seconds", 120.0),
            order_timeout_seconds=p.get("order_timeout_seconds", 120.0),
        ),
    )


# ---------------------------------------------------------------------------
# Issuance & renewal
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IssuanceSettings:
    """Certificate request parameters."""

    validity_days: int
    request_validity_period: bool


def _build_issuance(data: dict | None) -> IssuanceSettings:
    d = data or {}
    return IssuanceSettings(
        validity_days=d.get("validity_days", 90),
        request_validity_period=d.get("request_validity_period", False),
    )


@dataclass(frozen=True)
class RenewalSettings:
    """Renewal window configuration."""

    renew_before_days: int


def _build_renewal(data: dict | None) -> RenewalSettings:
    d = data or {}
    return RenewalSettings(
        renew_before_days=d.get("renew_before_days", 30),
    )


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChallengeStoreSettings:
    """Backend for published challenge responses."""

    backend: str
    ttl_seconds: int
    gc_interval_seconds: int


@dataclass(frozen=True)
class ChallengeSettings:
    """HTTP-01 challenge publication."""

    path_prefix: str
    store: ChallengeStoreSettings


def _build_challenges(data: dict | None) -> ChallengeSettings:
    d = data or {}
    s = d.get("store") or {}
    return ChallengeSettings(
        path_prefix=d.get("path_prefix", CHALLENGE_PATH_PREFIX),
        store=ChallengeStoreSettings(
            backend=s.get("backend", "memory"),
            ttl_seconds=s.get("ttl_seconds", 3600),
            gc_interval_seconds=s.get("gc_interval_seconds", 300),
        ),
    )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RegistrySettings:
    """Domain mapping / certificate registry (App Engine Admin API)."""

    backend: str
    app_id: str
    api_base_url: str
    access_token: str | None
    metadata_url: str
    service_account: str | None
    timeout_seconds: int


def _build_registry(data: dict | None) -> RegistrySettings:
    d = data or {}
    return RegistrySettings(
        backend=d.get("backend", "appengine"),
        app_id=d.get("app_id", ""),
        api_base_url=d.get("api_base_url", "https://appengine.googleapis.com/v1"),
        access_token=d.get("access_token"),
        metadata_url=d.get(
            "metadata_url",
            "http://metadata.google.internal/computeMetadata/v1",
        ),
        service_account=d.get("service_account"),
        timeout_seconds=d.get("timeout_seconds", 30),
    )


# ---------------------------------------------------------------------------
# Trigger endpoint
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TriggerSettings:
    """Access control for the reconciliation trigger endpoint."""

    path: str
    trust_cron_header: bool
    cron_header: str
    token_secret: str | None
    token_max_age_seconds: int


def _build_trigger(data: dict | None) -> TriggerSettings:
    d = data or {}
    return TriggerSettings(
        path=d.get("path", "/.well-known/letsencrypt"),
        trust_cron_header=d.get("trust_cron_header", True),
        cron_header=d.get("cron_header", "X-Appengine-Cron"),
        token_secret=d.get("token_secret"),
        token_max_age_seconds=d.get("token_max_age_seconds", 86400),
    )


# ---------------------------------------------------------------------------
# Database (challenge store backend only)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseSettings:
    """PostgreSQL connection and pool settings."""

    host: str
    port: int
    database: str
    user: str
    password: str
    sslmode: str
    min_connections: int
    max_connections: int
    connection_timeout: float
    auto_setup: bool


def _build_database(data: dict | None) -> DatabaseSettings:
    d = data or {}
    return DatabaseSettings(
        host=d.get("host", "localhost"),
        port=d.get("port", 5432),
        database=d.get("database", "certbind"),
        user=d.get("user", "certbind"),
        password=d.get("password", ""),
        sslmode=d.get("sslmode", "prefer"),
        min_connections=d.get("min_connections", 1),
        max_connections=d.get("max_connections", 5),
        connection_timeout=d.get("connection_timeout", 10.0),
        auto_setup=d.get("auto_setup", True),
    )


# ---------------------------------------------------------------------------
# Root settings aggregate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CertbindSettings:
    server: ServerSettings
    logging: LoggingSettings
    acme: AcmeSettings
    issuance: IssuanceSettings
    renewal: RenewalSettings
    challenges: ChallengeSettings
    registry: RegistrySettings
    trigger: TriggerSettings
    database: DatabaseSettings


def build_settings(data: dict) -> CertbindSettings:
    """Build the full typed settings tree from raw config data.

    Called once during :class:`CertbindConfig` initialization after
    schema validation and environment-variable resolution.
    """
    return CertbindSettings(
        server=_build_server(data.get("server")),
        logging=_build_logging(data.get("logging")),
        acme=_build_acme(data.get("acme")),
        issuance=_build_issuance(data.get("issuance")),
        renewal=_build_renewal(data.get("renewal")),
        challenges=_build_challenges(data.get("challenges")),
        registry=_build_registry(data.get("registry")),
        trigger=_build_trigger(data.get("trigger")),
        database=_build_database(data.get("database")),
    )
