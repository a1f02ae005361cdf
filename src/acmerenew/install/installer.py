"""Atomic installation of the five certificate output files.

Each file is compared byte-for-byte with what is on disk and only
rewritten when it differs.  A write goes to a temporary file in the
target directory, is fsynced, gets its mode and ownership, and is then
moved into place with :func:`os.replace`; the temporary file is removed
on every failure path.

Files are processed in the order key, csr, cert, chain, fullchain.  If
a write fails, files already replaced stay replaced and the rest keep
their previous content; :class:`~acmerenew.core.errors.InstallError`
lists what was written so a rerun (which diffs again) can finish the
job.
"""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from acmerenew.core.errors import InstallError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from acmerenew.config.settings import InstallSettings

log = logging.getLogger(__name__)

LOGICAL_FILES: tuple[str, ...] = ("key", "csr", "cert", "chain", "fullchain")

_SUFFIXES = {
    "key": ".key",
    "csr": ".csr",
    "cert": ".crt",
    "chain": "-chain.crt",
    "fullchain": "-fullchain.crt",
}

_DIR_MODE = 0o755


def output_paths(directory: str | Path, service_name: str) -> dict[str, Path]:
    """Map logical names to ``{directory}/{service_name}{suffix}``."""
    base = Path(directory)
    return {name: base / f"{service_name}{_SUFFIXES[name]}" for name in LOGICAL_FILES}


def _read_existing(path: Path) -> bytes | None:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None


def _fsync_dir(directory: Path) -> None:
    fd = os.open(directory, os.O_DIRECTORY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class Installer:
    """Writes a service's key, CSR and certificate files.

    Parameters
    ----------
    service_name:
        File stem for the five outputs.
    key_mode:
        Permission bits for the private key (default owner read-only).
    file_mode:
        Permission bits for the CSR and certificate files.

    """

    def __init__(
        self,
        service_name: str,
        *,
        key_mode: int = 0o400,
        file_mode: int = 0o644,
    ) -> None:
        self.service_name = service_name
        self.key_mode = key_mode
        self.file_mode = file_mode

    @classmethod
    def from_settings(cls, service_name: str, settings: InstallSettings) -> Installer:
        return cls(service_name, key_mode=settings.key_mode, file_mode=settings.file_mode)

    def paths(self, directory: str | Path) -> dict[str, Path]:
        return output_paths(directory, self.service_name)

    def _mode_for(self, name: str) -> int:
        return self.key_mode if name == "key" else self.file_mode

    def _write_atomic(
        self,
        path: Path,
        data: bytes,
        *,
        mode: int,
        owner: str | None,
        group: str | None,
    ) -> None:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp, mode)
            if owner or group:
                shutil.chown(tmp, user=owner, group=group)
            os.replace(tmp, path)
        finally:
            with contextlib.suppress(FileNotFoundError):
                tmp.unlink()

    def install(
        self,
        files: Mapping[str, bytes],
        directory: str | Path,
        *,
        owner: str | None = None,
        group: str | None = None,
    ) -> bool:
        """Install *files* into *directory*; return whether anything changed.

        Parameters
        ----------
        files:
            Logical name (``key``, ``csr``, ``cert``, ``chain``,
            ``fullchain``) to content.
        directory:
            Target directory, created when missing.
        owner, group:
            Optional ownership applied to every written file.

        Raises
        ------
        InstallError
            On an unknown logical name or any I/O, permission or
            ownership failure.  ``written`` lists the paths already
            replaced.

        """
        unknown = sorted(set(files) - set(LOGICAL_FILES))
        if unknown:
            msg = f"Unknown output file(s) {unknown}; expected a subset of {list(LOGICAL_FILES)}"
            raise InstallError(msg)

        target_dir = Path(directory)
        try:
            target_dir.mkdir(mode=_DIR_MODE, parents=True, exist_ok=True)
        except OSError as exc:
            msg = f"Cannot create install directory {target_dir}: {exc}"
            raise InstallError(msg) from exc

        paths = self.paths(target_dir)
        written: list[str] = []
        for name in LOGICAL_FILES:
            if name not in files:
                continue
            path = paths[name]
            data = files[name]
            try:
                if _read_existing(path) == data:
                    log.debug("%s unchanged, skipping", path)
                    continue
                self._write_atomic(
                    path,
                    data,
                    mode=self._mode_for(name),
                    owner=owner,
                    group=group,
                )
            except (OSError, LookupError) as exc:
                msg = f"Failed to install {path}: {exc}"
                raise InstallError(msg, written=written) from exc
            written.append(str(path))
            log.info("Installed %s (mode %o)", path, self._mode_for(name))

        if written:
            try:
                _fsync_dir(target_dir)
            except OSError as exc:
                log.warning("Could not fsync %s: %s", target_dir, exc)
        else:
            log.info("All files in %s already up to date", target_dir)
        return bool(written)
