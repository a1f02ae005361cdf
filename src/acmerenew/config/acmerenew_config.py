"""acmerenew configuration loader.

Lifecycle::

    # 1. CLI loads the file once, at startup
    config = AcmerenewConfig(config_file="/etc/acmerenew/example.yaml")

    # 2. The typed tree is passed explicitly to whoever needs it
    RenewalService(config.settings, ...)

    # 3. Dynamic access for extensions
    config.get("challenge.publisher_config.deploy_script")

Loading is: read YAML/JSON → resolve ``${VAR}`` references → JSON
Schema validation (bundled ``schema.json``) → cross-field
:meth:`AcmerenewConfig.additional_checks` → :func:`build_settings`.
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import jsonschema
import yaml

from acmerenew.config.settings import AcmerenewSettings, build_settings
from acmerenew.core.errors import ConfigurationError

_SCHEMA_PATH = Path(__file__).parent / "schema.json"

_ENV_RE = re.compile(
    r"^\$\{([^}:]+?)(?::-(.*))?\}$",
    re.DOTALL,
)

_KNOWN_PUBLISHERS = frozenset({"webroot", "callback"})

_LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})

_OTHER_BITS = 0o007

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Validation error collector
# ---------------------------------------------------------------------------


class ConfigValidationError(ConfigurationError):
    """Raised when schema or cross-field validation finds problems."""

    def __init__(self, errors: list[str]) -> None:
        """Store *errors* and build a human-readable message."""
        self.errors = errors
        body = "\n".join(f"  - {e}" for e in errors)
        super().__init__(f"Configuration validation failed:\n{body}", stage="config")


# ---------------------------------------------------------------------------
# Environment variable resolution
# ---------------------------------------------------------------------------


def _resolve_value(value: str, path: str) -> str:
    """Replace ``${VAR}`` or ``${VAR:-default}`` with env var value."""
    match = _ENV_RE.match(value)
    if match is None:
        return value
    var_name = match.group(1)
    fallback = match.group(2)
    resolved = os.environ.get(var_name)
    if resolved is not None:
        return resolved
    if fallback is not None:
        return fallback
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


def _schema() -> dict:
    with _SCHEMA_PATH.open(encoding="utf-8") as f:
        return json.load(f)


# ---------------------------------------------------------------------------
# Config class
# ---------------------------------------------------------------------------


class AcmerenewConfig:
    """Validated configuration for one certificate service.

    After construction the typed settings tree is available at
    :pyattr:`settings` and the raw dict via :pyattr:`data` /
    :pymeth:`get`.
    """

    def __init__(self, *, config_file: str | Path) -> None:
        """Load, resolve, validate and materialise *config_file*.

        Raises
        ------
        ConfigValidationError
            If the file is missing, unparseable, fails schema validation,
            or fails cross-field checks.

        """
        self._data = self._load(Path(config_file))
        self._finish()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AcmerenewConfig:
        """Build a config from an in-memory mapping (tests, embedding)."""
        obj = cls.__new__(cls)
        obj._data = json.loads(json.dumps(data))  # deep copy  # noqa: SLF001
        _resolve_env_vars(obj._data)  # noqa: SLF001
        obj._finish()  # noqa: SLF001
        return obj

    def _finish(self) -> None:
        self._validate_schema()
        self.additional_checks()
        self._settings: AcmerenewSettings = build_settings(self._data)

    # -- lifecycle ----------------------------------------------------------

    @staticmethod
    def _load(path: Path) -> dict[str, Any]:
        """Load config file then resolve ``${VAR}`` env-var references.

        Runs env-var resolution **before** schema validation so that
        substituted values (e.g. ``${LOG_LEVEL:-INFO}``) are checked
        against enum constraints in the schema.
        """
        try:
            with path.open(encoding="utf-8") as f:
                if path.suffix in (".yaml", ".yml"):
                    data = yaml.safe_load(f)
                else:
                    data = json.load(f)
        except FileNotFoundError as exc:
            raise ConfigValidationError([f"configuration file not found: {path}"]) from exc
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as exc:
            raise ConfigValidationError([f"cannot read {path}: {exc}"]) from exc

        if not isinstance(data, dict):
            raise ConfigValidationError([f"{path} must contain a mapping at the top level"])
        data["_source"] = str(path)
        _resolve_env_vars(data)
        return data

    def _validate_schema(self) -> None:
        validator = jsonschema.Draft202012Validator(_schema())
        errors = sorted(validator.iter_errors(self._data), key=lambda e: [str(p) for p in e.path])
        if errors:
            raise ConfigValidationError(
                [f"{'.'.join(str(p) for p in e.path) or '<root>'}: {e.message}" for e in errors],
            )

    # -- typed access -------------------------------------------------------

    @property
    def data(self) -> dict[str, Any]:
        return self._data

    @property
    def settings(self) -> AcmerenewSettings:
        """Fully-typed, frozen settings tree."""
        return self._settings

    def get(self, dotted: str, default: Any = None) -> Any:  # noqa: ANN401
        """Return the raw value at a dot-separated path, or *default*."""
        node: Any = self._data
        for part in dotted.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    # -- cross-field validation ---------------------------------------------

    def additional_checks(self) -> None:  # noqa: C901, PLR0912
        """Semantic & cross-field validation.

        Runs after schema validation passes, so required keys exist and
        have the right types.
        """
        errors: list[str] = []
        warnings: list[str] = []

        cert = self._data.get("certificate") or {}
        acme = self._data.get("acme") or {}
        challenge = self._data.get("challenge") or {}
        polling = self._data.get("polling") or {}
        install = self._data.get("install") or {}
        trust = self._data.get("trust") or {}
        reload_cfg = self._data.get("reload") or {}

        # -- certificate --
        common_name = cert.get("common_name", "").strip().rstrip(".").lower()
        sans = [s.strip().rstrip(".").lower() for s in cert.get("sans", [])]
        if common_name and common_name not in sans:
            warnings.append(
                f"certificate.common_name '{common_name}' is not listed in "
                "certificate.sans; it will be added implicitly",
            )
        for san in sans:
            if san.startswith("*."):
                errors.append(
                    f"certificate.sans contains wildcard '{san}'; wildcard names "
                    "require dns-01, which is not supported",
                )

        # -- acme --
        url = urlparse(acme.get("directory_url", ""))
        if url.scheme == "http" and url.hostname not in _LOCAL_HOSTS:
            warnings.append(
                f"acme.directory_url uses plain http for non-local host '{url.hostname}'",
            )
        if not acme.get("verify_ssl", True):
            warnings.append("acme.verify_ssl is false; the CA certificate will not be verified")

        # -- challenge --
        publisher = challenge.get("publisher", "webroot")
        if publisher not in _KNOWN_PUBLISHERS and not publisher.startswith("ext:"):
            errors.append(
                f"challenge.publisher '{publisher}' is unknown. "
                f"Known publishers: {sorted(_KNOWN_PUBLISHERS)}. "
                "Use 'ext:package.module.PublisherClass' for custom publishers.",
            )
        if publisher == "webroot" and not challenge.get("webroot"):
            errors.append("challenge.webroot is required when challenge.publisher is 'webroot'")
        if publisher == "callback":
            pub_cfg = challenge.get("publisher_config") or {}
            for key in ("deploy_script", "cleanup_script"):
                if not pub_cfg.get(key):
                    errors.append(
                        f"challenge.publisher_config.{key} is required "
                        "when challenge.publisher is 'callback'",
                    )

        # -- polling --
        initial = polling.get("initial_delay_seconds", 2)
        cap = polling.get("max_delay_seconds", 30)
        if initial > cap:
            errors.append(
                f"polling.initial_delay_seconds ({initial}) must be <= "
                f"polling.max_delay_seconds ({cap})",
            )
        run_timeout = polling.get("run_timeout_seconds", 900)
        for key in ("validation_timeout_seconds", "finalization_timeout_seconds"):
            stage_timeout = polling.get(key, 300)
            if stage_timeout > run_timeout:
                warnings.append(
                    f"polling.{key} ({stage_timeout}) exceeds "
                    f"polling.run_timeout_seconds ({run_timeout}); the run "
                    "ceiling will cut the stage short",
                )

        # -- install --
        key_mode = install.get("key_mode", "0400")
        if int(key_mode, 8) & _OTHER_BITS:
            errors.append(
                f"install.key_mode ({key_mode}) must not grant access to other users",
            )
        file_mode = install.get("file_mode", "0644")
        if int(key_mode, 8) & ~int(file_mode, 8):
            warnings.append(
                f"install.key_mode ({key_mode}) grants bits that install.file_mode "
                f"({file_mode}) does not; the key should be the most restrictive file",
            )

        # -- trust --
        fingerprint = trust.get("root_fingerprint")
        if fingerprint and not re.fullmatch(r"[0-9a-fA-F:]{64,95}", fingerprint):
            errors.append("trust.root_fingerprint must be a hex SHA-256 fingerprint")
        if trust.get("root_url") and not trust.get("verify_ssl", True) and not fingerprint:
            errors.append(
                "trust.verify_ssl is false but trust.root_fingerprint is not set; "
                "the downloaded root would be trusted blindly",
            )

        # -- reload --
        command = reload_cfg.get("command")
        if reload_cfg.get("service") is None and command and "{service}" in " ".join(command):
            warnings.append(
                "reload.command references {service} but reload.service is not set; "
                "no reload will be performed",
            )

        for w in warnings:
            log.warning("Config warning: %s", w)

        if errors:
            raise ConfigValidationError(errors)

    def __repr__(self) -> str:
        """Return a developer-friendly representation."""
        source = self._data.get("_source", "?")
        return f"<AcmerenewConfig config_file={source}>"
