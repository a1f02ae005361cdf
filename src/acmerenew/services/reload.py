"""Service reload after a certificate change.

A reload that fails after new files were installed leaves a marker next
to them; the next run sees the marker and retries the reload even when
the certificate itself needs no renewal.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING

from acmerenew.core.errors import ServiceReloadError

if TYPE_CHECKING:
    from collections.abc import Callable

    from acmerenew.config.settings import ReloadSettings

log = logging.getLogger(__name__)


def pending_marker(install_dir: str | Path, service_name: str) -> Path:
    """Path of the marker recording a reload still owed for *service_name*."""
    return Path(install_dir) / f".{service_name}.reload-pending"


class ServiceReloader:
    """Run ``reload.command`` with ``{service}`` substituted.

    Parameters
    ----------
    settings:
        The ``reload`` configuration section.
    marker:
        File that records a reload still owed after a failure; see
        :func:`pending_marker`.  ``None`` disables the bookkeeping.
    runner:
        Replacement for :func:`subprocess.run` (tests).

    """

    def __init__(
        self,
        settings: ReloadSettings,
        *,
        marker: Path | None = None,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self.settings = settings
        self.marker = marker
        self._runner = runner

    @property
    def enabled(self) -> bool:
        return bool(self.settings.service)

    @property
    def pending(self) -> bool:
        return self.marker is not None and self.marker.exists()

    def command(self) -> list[str]:
        return [part.format(service=self.settings.service) for part in self.settings.command]

    def reload_if_needed(self, *, changed: bool) -> bool:
        """Reload when files changed now or an earlier reload failed.

        The marker is written before the reload is attempted and removed
        only once it succeeds.

        Raises
        ------
        ServiceReloadError
            With ``installed=changed`` and ``reload_pending`` set when the
            marker will make the next run retry.

        """
        if not self.enabled:
            if changed:
                log.info("No reload.service configured; skipping reload")
            return False
        if not changed and not self.pending:
            return False
        if not changed:
            log.info("Retrying reload of %s left pending by an earlier run", self.settings.service)

        if changed and self.marker is not None:
            try:
                self.marker.touch()
            except OSError as exc:
                log.warning("Cannot write reload marker %s: %s", self.marker, exc)
        try:
            self.reload()
        except ServiceReloadError as exc:
            exc.installed = changed
            exc.reload_pending = self.pending
            raise
        if self.marker is not None:
            self.marker.unlink(missing_ok=True)
        return True

    def reload(self) -> bool:
        """Reload the service; return ``False`` when none is configured.

        Raises
        ------
        ServiceReloadError
            If the command fails, times out or cannot be started.

        """
        if not self.enabled:
            log.info("No reload.service configured; skipping reload")
            return False

        argv = self.command()
        log.info("Reloading %s: %s", self.settings.service, " ".join(argv))
        try:
            self._runner(
                argv,
                check=True,
                timeout=self.settings.timeout_seconds,
                capture_output=True,
                text=True,
            )
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or "").strip()
            msg = f"{' '.join(argv)} exited with status {exc.returncode}: {stderr}"
            raise ServiceReloadError(msg) from exc
        except subprocess.TimeoutExpired as exc:
            msg = f"{' '.join(argv)} timed out after {self.settings.timeout_seconds}s"
            raise ServiceReloadError(msg) from exc
        except OSError as exc:
            msg = f"Cannot run {argv[0]}: {exc}"
            raise ServiceReloadError(msg) from exc
        return True
