"""certbind configuration loader.

Lifecycle::

    # 1. CLI creates the singleton (once, at startup)
    CertbindConfig(config_file="/etc/certbind/config.yaml")

    # 2. Any module retrieves it afterwards
    from certbind.config import get_config
    cfg = get_config()
    cfg.settings.acme.directory_url  # typed access

    # 3. Dynamic access
    cfg.get("registry.app_id", default="")
"""

from __future__ import annotations

import copy
import json
import logging
import os
import re
from pathlib import Path
from typing import Any

import jsonschema
import yaml

from certbind.config.settings import CertbindSettings, build_settings

_SCHEMA_PATH = Path(__file__).parent / "schema.json"

_ENV_RE = re.compile(
    r"^\$\{([^}:]+?)(?::-(.*))?\}$",
    re.DOTALL,
)

_MIN_TOKEN_SECRET_LENGTH = 16
# Validity the platform accepts for ACME-issued certificates.
_MAX_VALIDITY_DAYS = 90

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Module-level singleton reference
# ---------------------------------------------------------------------------
_instance: CertbindConfig | None = None


def get_config() -> CertbindConfig:
    """Return the initialised configuration singleton.

    Raises :class:`RuntimeError` if :class:`CertbindConfig` has not been
    created yet (i.e. the CLI entry point has not run).
    """
    if _instance is None:
        msg = (
            "Configuration not initialised. "
            "CertbindConfig must be created with config_file= before calling get_config()."
        )
        raise RuntimeError(msg)
    return _instance


# ---------------------------------------------------------------------------
# Validation error collector
# ---------------------------------------------------------------------------


class ConfigValidationError(Exception):
    """Raised when schema or cross-field validation finds problems."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        body = "\n".join(f"  - {e}" for e in errors)
        super().__init__(f"Configuration validation failed:\n{body}")


# ---------------------------------------------------------------------------
# Environment variable resolution
# ---------------------------------------------------------------------------


def _resolve_value(value: str, path: str) -> Any:  # noqa: ANN401
    """Replace ``${VAR}`` or ``${VAR:-default}`` with the env var value."""
    match = _ENV_RE.match(value)
    if match is None:
        return value
    var_name = match.group(1)
    fallback = match.group(2)
    resolved = os.environ.get(var_name)
    if resolved is not None:
        return _coerce_scalar(resolved)
    if fallback is not None:
        return _coerce_scalar(fallback)
    raise ConfigValidationError(
        [
            f"Environment variable '${{{var_name}}}' referenced "
            f"at '{path}' is not set and has no default",
        ],
    )


def _resolve_env_vars(
    data: Any,  # noqa: ANN401
    path: str = "",
) -> None:
    """Walk *data* in-place and resolve ``${VAR}``/``${VAR:-default}`` strings."""
    if isinstance(data, dict):
        for key in data:
            child_path = f"{path}.{key}" if path else key
            if isinstance(data[key], str):
                data[key] = _resolve_value(data[key], child_path)
            elif isinstance(data[key], (dict, list)):
                _resolve_env_vars(data[key], child_path)
    elif isinstance(data, list):
        for idx, item in enumerate(data):
            child_path = f"{path}[{idx}]"
            if isinstance(item, str):
                data[idx] = _resolve_value(item, child_path)
            elif isinstance(item, (dict, list)):
                _resolve_env_vars(item, child_path)


def _coerce_scalar(value: str) -> Any:  # noqa: ANN401
    """Reparse a substituted value as a YAML scalar.

    ``port: ${PORT:-8080}`` resolves to the string ``"8080"``; reparsing
    lets the schema see an integer.  Only substituted values go through
    here, literal strings in the file are left alone.
    """
    if not value:
        return value
    try:
        parsed = yaml.safe_load(value)
    except yaml.YAMLError:
        return value
    if isinstance(parsed, (bool, int, float)):
        return parsed
    return value


def _read_file(path: Path) -> dict:
    try:
        with path.open(encoding="utf-8") as f:
            if path.suffix in {".yaml", ".yml"}:
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except OSError as exc:
        raise ConfigValidationError([f"Cannot read config file {path}: {exc}"]) from exc
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigValidationError([f"Cannot parse config file {path}: {exc}"]) from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigValidationError(
            [f"Config file {path} must contain a mapping at the top level"],
        )
    return data


def _load_schema() -> dict:
    with _SCHEMA_PATH.open(encoding="utf-8") as f:
        return json.load(f)


def _schema_errors(data: dict, schema: dict) -> list[str]:
    validator = jsonschema.Draft202012Validator(schema)
    errors = []
    for err in sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.path]):
        location = ".".join(str(p) for p in err.absolute_path) or "<root>"
        errors.append(f"{location}: {err.message}")
    return errors


# ---------------------------------------------------------------------------
# Config class
# ---------------------------------------------------------------------------


class CertbindConfig:
    """Central configuration for certbind.

    The JSON schema is bundled at ``config/schema.json``; users supply
    only ``config_file``.  After construction the typed settings tree is
    available at :pyattr:`settings` and the raw dict via
    :pyattr:`data` / :pymeth:`get`.
    """

    def __init__(self, *, config_file: str | Path) -> None:
        global _instance  # noqa: PLW0603

        path = Path(config_file)
        data = _read_file(path)
        data = self._prepare(data)
        data["_source"] = str(path)

        self._data = data
        self._settings: CertbindSettings = build_settings(data)
        _instance = self

    # -- loading ------------------------------------------------------------

    @classmethod
    def _prepare(cls, data: dict) -> dict:
        """Resolve env vars, validate against the schema, run cross-field checks.

        Env-var resolution runs **before** schema validation so that
        substituted values (e.g. ``${LOG_LEVEL:-INFO}``) are checked
        against enum constraints in the schema.
        """
        data = copy.deepcopy(data)
        _resolve_env_vars(data)

        errors = _schema_errors(data, _load_schema())
        if errors:
            raise ConfigValidationError(errors)
        cls.additional_checks(data)
        return data

    # -- typed access -------------------------------------------------------

    @property
    def settings(self) -> CertbindSettings:
        """Fully-typed, frozen settings tree."""
        return self._settings

    @property
    def data(self) -> dict:
        return self._data

    def get(self, dotted: str, default: Any = None) -> Any:  # noqa: ANN401
        """Look up a raw value by dot-path, e.g. ``"acme.poll.max_interval_seconds"``."""
        node: Any = self._data
        for part in dotted.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    # -- cross-field validation ---------------------------------------------

    @staticmethod
    def additional_checks(data: dict) -> None:
        """Semantic and cross-field validation.

        Runs after schema validation passes.  Warnings are logged;
        errors are collected and raised together.
        """
        errors: list[str] = []
        warnings: list[str] = []

        server = data.get("server") or {}
        acme = data.get("acme") or {}
        poll = acme.get("poll") or {}
        issuance = data.get("issuance") or {}
        renewal = data.get("renewal") or {}
        challenges = data.get("challenges") or {}
        store = challenges.get("store") or {}
        registry = data.get("registry") or {}
        trigger = data.get("trigger") or {}
        database = data.get("database") or {}

        # -- ACME --
        directory_url = acme.get("directory_url", "")
        if directory_url and not directory_url.startswith("https://"):
            warnings.append(
                f"acme.directory_url ({directory_url}) is not https; "
                "only use this against a local test CA",
            )
        if not acme.get("agree_tos", True):
            errors.append(
                "acme.agree_tos must be true; the CA refuses accounts "
                "that do not agree to its terms of service",
            )

        initial = poll.get("initial_interval_seconds", 1.0)
        maximum = poll.get("max_interval_seconds", 10.0)
        if initial > maximum:
            errors.append(
                f"acme.poll.initial_interval_seconds ({initial}) must be <= "
                f"acme.poll.max_interval_seconds ({maximum})",
            )

        # -- Issuance / renewal --
        validity = issuance.get("validity_days", _MAX_VALIDITY_DAYS)
        renew_before = renewal.get("renew_before_days", 30)
        if renew_before >= validity:
            errors.append(
                f"renewal.renew_before_days ({renew_before}) must be < "
                f"issuance.validity_days ({validity}); every certificate "
                "would be renewed on every run",
            )

        # -- Challenges --
        prefix = challenges.get("path_prefix", "/.well-known/acme-challenge/")
        if not prefix.startswith("/") or not prefix.endswith("/"):
            errors.append(
                f"challenges.path_prefix must start and end with '/' (got '{prefix}')",
            )
        workers = server.get("workers", 1)
        if store.get("backend", "memory") == "memory" and workers > 1:
            errors.append(
                "challenges.store.backend is 'memory' with "
                f"server.workers={workers}; the CA's challenge fetch may land "
                "on a worker that never saw the published value. "
                "Use 'database' or a single worker.",
            )
        if server.get("worker_class", "gthread") == "sync" and workers == 1:
            errors.append(
                "server.worker_class 'sync' with a single worker cannot answer "
                "the CA's challenge fetch while a triggered run holds it; "
                "use 'gthread' or more workers.",
            )
        if store.get("backend") == "database" and not database.get("database"):
            errors.append(
                "database.database is required when challenges.store.backend is 'database'",
            )

        # -- Registry --
        if registry.get("backend", "appengine") == "appengine" and not registry.get("app_id"):
            errors.append(
                "registry.app_id is required when registry.backend is 'appengine'",
            )

        # -- Trigger --
        token_secret = trigger.get("token_secret") or ""
        if token_secret and len(token_secret) < _MIN_TOKEN_SECRET_LENGTH:
            errors.append(
                "trigger.token_secret is too short "
                f"({len(token_secret)} chars), minimum "
                f"{_MIN_TOKEN_SECRET_LENGTH} characters required",
            )
        if not token_secret and not trigger.get("trust_cron_header", True):
            warnings.append(
                "trigger.trust_cron_header is false and no trigger.token_secret "
                "is set; the trigger endpoint will refuse every request",
            )
        trigger_path = trigger.get("path", "/.well-known/letsencrypt")
        if trigger_path.startswith(prefix):
            errors.append(
                f"trigger.path ({trigger_path!r}) must not live under "
                f"challenges.path_prefix ({prefix!r})",
            )

        # -- Server --
        server_timeout = server.get("timeout", 600)
        budget = poll.get("authorization_timeout_seconds", 120.0) + poll.get(
            "order_timeout_seconds", 120.0
        )
        if server_timeout < budget:
            warnings.append(
                f"server.timeout ({server_timeout}) is shorter than one "
                f"issuance's polling budget ({budget:g}s); the trigger "
                "request may be killed mid-run",
            )

        # -- Database --
        min_conn = database.get("min_connections", 1)
        max_conn = database.get("max_connections", 5)
        if min_conn > max_conn:
            errors.append(
                f"database.min_connections ({min_conn}) must be <= "
                f"database.max_connections ({max_conn})",
            )

        for w in warnings:
            log.warning("Config warning: %s", w)

        if errors:
            raise ConfigValidationError(errors)

    # -- helpers ------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict) -> CertbindSettings:
        """Validate *data* and build settings without touching the singleton."""
        return build_settings(cls._prepare(data))

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton -- testing only."""
        global _instance  # noqa: PLW0603
        _instance = None

    def __repr__(self) -> str:
        source = self._data.get("_source", "?")
        return f"<CertbindConfig config_file={source}>"
