"""CA root bootstrap into the OS trust store.

Private ACME CAs (step-ca and friends) serve their directory over TLS
signed by a root the host does not trust yet.  Before the first ACME
request the root is fetched, optionally pinned by its SHA-256
fingerprint, written to ``{trust_dir}/{name}.crt`` and the store's
update command (``update-ca-certificates``) is run.
"""

from __future__ import annotations

import contextlib
import logging
import os
import ssl
import subprocess
import tempfile
import urllib.error
import urllib.request
from pathlib import Path
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization

from acmerenew.core.errors import TrustBootstrapError

if TYPE_CHECKING:
    from collections.abc import Callable

    from acmerenew.config.settings import TrustSettings

log = logging.getLogger(__name__)

_FETCH_TIMEOUT = 30
_UPDATE_TIMEOUT = 120
_ROOT_MODE = 0o644


def normalize_fingerprint(value: str) -> str:
    """Lower-case hex without separators."""
    return value.replace(":", "").strip().lower()


def fingerprint(cert: x509.Certificate) -> str:
    return cert.fingerprint(hashes.SHA256()).hex()


def parse_root(data: bytes) -> x509.Certificate:
    """Parse a root certificate served as PEM or DER.

    Raises
    ------
    TrustBootstrapError
        If *data* is neither.

    """
    try:
        if b"-----BEGIN CERTIFICATE-----" in data:
            return x509.load_pem_x509_certificate(data)
        return x509.load_der_x509_certificate(data)
    except ValueError as exc:
        msg = f"Downloaded root is not a certificate: {exc}"
        raise TrustBootstrapError(msg, stage="trust") from exc


class TrustBootstrapper:
    """Fetch, verify and install the CA root described by *settings*.

    Parameters
    ----------
    settings:
        The ``trust`` configuration section.
    opener:
        Pre-built :class:`urllib.request.OpenerDirector` (tests).
    runner:
        Replacement for :func:`subprocess.run` (tests).

    """

    def __init__(
        self,
        settings: TrustSettings,
        *,
        opener: urllib.request.OpenerDirector | None = None,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self.settings = settings
        self._opener = opener
        self._runner = runner

    @property
    def enabled(self) -> bool:
        return bool(self.settings.root_url)

    @property
    def target(self) -> Path:
        return Path(self.settings.trust_dir) / f"{self.settings.name}.crt"

    def _build_opener(self) -> urllib.request.OpenerDirector:
        ctx = ssl.create_default_context()
        if not self.settings.verify_ssl:
            # Only allowed with a pinned fingerprint (enforced by config checks).
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
        return urllib.request.build_opener(urllib.request.HTTPSHandler(context=ctx))

    def fetch(self) -> x509.Certificate:
        """Download the root and check it against the pinned fingerprint."""
        url = self.settings.root_url
        opener = self._opener or self._build_opener()
        try:
            with opener.open(url, timeout=_FETCH_TIMEOUT) as resp:
                data = resp.read()
        except (urllib.error.URLError, OSError) as exc:
            msg = f"Cannot fetch CA root from {url}: {exc}"
            raise TrustBootstrapError(msg, stage="trust") from exc

        cert = parse_root(data)
        actual = fingerprint(cert)
        if self.settings.root_fingerprint:
            expected = normalize_fingerprint(self.settings.root_fingerprint)
            if actual != expected:
                msg = (
                    f"CA root from {url} has SHA-256 fingerprint {actual}, "
                    f"expected {expected}"
                )
                raise TrustBootstrapError(msg, stage="trust")
        log.info("Fetched CA root %s (sha256 %s)", cert.subject.rfc4514_string(), actual)
        return cert

    def _write(self, pem: bytes) -> None:
        target = self.target
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", dir=target.parent)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(pem)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, _ROOT_MODE)
            os.replace(tmp_name, target)
        finally:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp_name)

    def _update_store(self) -> None:
        command = list(self.settings.update_command)
        if not command:
            return
        try:
            self._runner(
                command,
                check=True,
                timeout=_UPDATE_TIMEOUT,
                capture_output=True,
                text=True,
            )
        except subprocess.CalledProcessError as exc:
            msg = f"{command[0]} exited with status {exc.returncode}: {(exc.stderr or '').strip()}"
            raise TrustBootstrapError(msg, stage="trust") from exc
        except (subprocess.TimeoutExpired, OSError) as exc:
            msg = f"Cannot run {command[0]}: {exc}"
            raise TrustBootstrapError(msg, stage="trust") from exc
        log.info("Updated OS trust store with %s", command[0])

    def bootstrap(self) -> bool:
        """Install the root if it is missing or different.

        Returns whether the trust store was changed.  A no-op when no
        ``root_url`` is configured.
        """
        if not self.enabled:
            return False

        pem = self.fetch().public_bytes(serialization.Encoding.PEM)
        try:
            if self.target.read_bytes() == pem:
                log.debug("CA root %s already installed", self.target)
                return False
        except FileNotFoundError:
            pass
        except OSError as exc:
            log.warning("Cannot read %s, reinstalling: %s", self.target, exc)

        try:
            self._write(pem)
        except OSError as exc:
            msg = f"Cannot write CA root to {self.target}: {exc}"
            raise TrustBootstrapError(msg, stage="trust") from exc
        log.info("Installed CA root at %s", self.target)
        self._update_store()
        return True
