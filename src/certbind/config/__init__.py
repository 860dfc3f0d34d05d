"""Configuration subsystem for certbind.

Public API::

    from certbind.config import get_config, CertbindConfig

    # At startup (CLI only):
    CertbindConfig(config_file="config.yaml")

    # Everywhere else:
    cfg = get_config()
    days = cfg.settings.renewal.renew_before_days
"""

from certbind.config.certbind_config import (
    CertbindConfig,
    ConfigValidationError,
    get_config,
)
from certbind.config.settings import (
    AcmeSettings,
    AuditLogSettings,
    CertbindSettings,
    ChallengeSettings,
    ChallengeStoreSettings,
    DatabaseSettings,
    IssuanceSettings,
    LoggingSettings,
    PollSettings,
    RegistrySettings,
    RenewalSettings,
    ServerSettings,
    TriggerSettings,
    build_settings,
)

__all__ = [
    "AcmeSettings",
    "AuditLogSettings",
    # Core
    "CertbindConfig",
    # Root
    "CertbindSettings",
    "ChallengeSettings",
    "ChallengeStoreSettings",
    "ConfigValidationError",
    "DatabaseSettings",
    "IssuanceSettings",
    "LoggingSettings",
    "PollSettings",
    "RegistrySettings",
    "RenewalSettings",
    # Sections
    "ServerSettings",
    "TriggerSettings",
    "build_settings",
    "get_config",
]
