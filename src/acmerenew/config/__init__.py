"""Configuration subsystem for acmerenew.

Public API::

    from acmerenew.config import AcmerenewConfig

    config = AcmerenewConfig(config_file="renew.yaml")
    threshold = config.settings.renewal.threshold_days   # typed access
    custom = config.get("challenge.publisher_config.x")   # dynamic dot-path
"""

from acmerenew.config.acmerenew_config import (
    AcmerenewConfig,
    ConfigValidationError,
)
from acmerenew.config.settings import (
    AcmeSettings,
    AcmerenewSettings,
    CertificateSettings,
    ChallengeSettings,
    InstallSettings,
    LoggingSettings,
    PollingSettings,
    ReloadSettings,
    RenewalSettings,
    TrustSettings,
    build_settings,
)

__all__ = [
    "AcmeSettings",
    # Core
    "AcmerenewConfig",
    # Root
    "AcmerenewSettings",
    # Sections
    "CertificateSettings",
    "ChallengeSettings",
    "ConfigValidationError",
    "InstallSettings",
    "LoggingSettings",
    "PollingSettings",
    "ReloadSettings",
    "RenewalSettings",
    "TrustSettings",
    "build_settings",
]
