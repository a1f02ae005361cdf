"""Typed, frozen dataclasses for every configuration section.

This module is the **single source of truth** for default values.
JSON Schema defaults exist only for documentation; these builders
are what the application actually reads.

Access pattern::

    from acmerenew.config import AcmerenewConfig

    settings = AcmerenewConfig(config_file="renew.yaml").settings
    print(settings.certificate.common_name, settings.install.dir)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# ---------------------------------------------------------------------------
# Certificate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CertificateSettings:
    """What to certify and the file stem to install it under."""

    common_name: str
    sans: tuple[str, ...]
    service_name: str


def _build_certificate(data: dict | None) -> CertificateSettings:
    d = data or {}
    return CertificateSettings(
        common_name=d["common_name"],
        sans=tuple(d.get("sans", [])),
        service_name=d["service_name"],
    )


# ---------------------------------------------------------------------------
# ACME
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AcmeSettings:
    """CA directory, account key and HTTP client settings."""

    directory_url: str
    account_key_path: str
    contact_email: str | None
    ca_bundle: str | None
    verify_ssl: bool
    timeout_seconds: int
    user_agent: str


def _build_acme(data: dict | None) -> AcmeSettings:
    d = data or {}
    return AcmeSettings(
        directory_url=d["directory_url"],
        account_key_path=d["account_key_path"],
        contact_email=d.get("contact_email"),
        ca_bundle=d.get("ca_bundle"),
        verify_ssl=d.get("verify_ssl", True),
        timeout_seconds=d.get("timeout_seconds", 30),
        user_agent=d.get("user_agent", "acmerenew"),
    )


# ---------------------------------------------------------------------------
# Challenge publication
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChallengeSettings:
    """How http-01 responses are published."""

    publisher: str
    webroot: str | None
    publisher_config: dict[str, Any] = field(default_factory=dict)


def _build_challenge(data: dict | None) -> ChallengeSettings:
    d = data or {}
    return ChallengeSettings(
        publisher=d.get("publisher", "webroot"),
        webroot=d.get("webroot"),
        publisher_config=dict(d.get("publisher_config") or {}),
    )


# ---------------------------------------------------------------------------
# Polling
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PollingSettings:
    """Backoff and deadlines for the validation and finalize loops."""

    initial_delay_seconds: float
    max_delay_seconds: float
    backoff_factor: float
    validation_timeout_seconds: float
    finalization_timeout_seconds: float
    run_timeout_seconds: float


def _build_polling(data: dict | None) -> PollingSettings:
    d = data or {}
    return PollingSettings(
        initial_delay_seconds=d.get("initial_delay_seconds", 2),
        max_delay_seconds=d.get("max_delay_seconds", 30),
        backoff_factor=d.get("backoff_factor", 2),
        validation_timeout_seconds=d.get("validation_timeout_seconds", 300),
        finalization_timeout_seconds=d.get("finalization_timeout_seconds", 300),
        run_timeout_seconds=d.get("run_timeout_seconds", 900),
    )


# ---------------------------------------------------------------------------
# Install
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InstallSettings:
    """Output directory, ownership and permissions."""

    dir: str
    owner: str | None
    group: str | None
    key_mode: int
    file_mode: int


def _parse_mode(value: str | int) -> int:
    if isinstance(value, int):
        return value
    return int(value, 8)


def _build_install(data: dict | None) -> InstallSettings:
    d = data or {}
    return InstallSettings(
        dir=d["dir"],
        owner=d.get("owner"),
        group=d.get("group"),
        key_mode=_parse_mode(d.get("key_mode", "0400")),
        file_mode=_parse_mode(d.get("file_mode", "0644")),
    )


# ---------------------------------------------------------------------------
# Renewal
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RenewalSettings:
    threshold_days: int
    force: bool


def _build_renewal(data: dict | None) -> RenewalSettings:
    d = data or {}
    return RenewalSettings(
        threshold_days=d.get("threshold_days", 30),
        force=d.get("force", False),
    )


# ---------------------------------------------------------------------------
# Collaborators: CA trust bootstrap and service reload
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TrustSettings:
    """Optional CA root to install into the OS trust store before issuing."""

    root_url: str | None
    root_fingerprint: str | None
    name: str
    trust_dir: str
    update_command: tuple[str, ...]
    verify_ssl: bool


def _build_trust(data: dict | None) -> TrustSettings:
    d = data or {}
    return TrustSettings(
        root_url=d.get("root_url"),
        root_fingerprint=d.get("root_fingerprint"),
        name=d.get("name", "acme-root"),
        trust_dir=d.get("trust_dir", "/usr/local/share/ca-certificates"),
        update_command=tuple(d.get("update_command", ["update-ca-certificates"])),
        verify_ssl=d.get("verify_ssl", True),
    )


@dataclass(frozen=True)
class ReloadSettings:
    """Service to reload when the installed files change."""

    service: str | None
    command: tuple[str, ...]
    timeout_seconds: int


def _build_reload(data: dict | None) -> ReloadSettings:
    d = data or {}
    return ReloadSettings(
        service=d.get("service"),
        command=tuple(d.get("command", ["systemctl", "reload-or-restart", "{service}"])),
        timeout_seconds=d.get("timeout_seconds", 60),
    )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoggingSettings:
    """Application logging configuration (level, format)."""

    level: str
    format: str


def _build_logging(data: dict | None) -> LoggingSettings:
    d = data or {}
    return LoggingSettings(
        level=d.get("level", "INFO"),
        format=d.get("format", "json"),
    )


# ---------------------------------------------------------------------------
# Root settings aggregate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AcmerenewSettings:
    certificate: CertificateSettings
    acme: AcmeSettings
    challenge: ChallengeSettings
    polling: PollingSettings
    install: InstallSettings
    renewal: RenewalSettings
    trust: TrustSettings
    reload: ReloadSettings
    logging: LoggingSettings


def build_settings(data: dict) -> AcmerenewSettings:
    """Build the full typed settings tree from raw config data.

    Called once during :class:`AcmerenewConfig` initialization after
    schema validation and environment-variable resolution.
    """
    return AcmerenewSettings(
        certificate=_build_certificate(data.get("certificate")),
        acme=_build_acme(data.get("acme")),
        challenge=_build_challenge(data.get("challenge")),
        polling=_build_polling(data.get("polling")),
        install=_build_install(data.get("install")),
        renewal=_build_renewal(data.get("renewal")),
        trust=_build_trust(data.get("trust")),
        reload=_build_reload(data.get("reload")),
        logging=_build_logging(data.get("logging")),
    )
