"""Webroot http-01 publisher (RFC 8555 §8.3).

Writes ``{webroot}/.well-known/acme-challenge/{token}`` for a web
server that already serves *webroot* on port 80.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any

from acmerenew.challenge.base import WELL_KNOWN_PATH, ChallengePublisher
from acmerenew.core.errors import ChallengePublishError, ConfigurationError

log = logging.getLogger(__name__)

# RFC 8555 §8.1: tokens are base64url, so anything else could escape
# the challenge directory.
_TOKEN_RE = re.compile(r"^[A-Za-z0-9_-]+$")

_DIR_MODE = 0o755
_FILE_MODE = 0o644


def _check_token(token: str) -> None:
    if not _TOKEN_RE.match(token or ""):
        msg = f"Refusing to publish challenge with non-base64url token {token!r}"
        raise ChallengePublishError(msg, stage="publish")


class WebrootPublisher(ChallengePublisher):
    """Publish challenge responses as files under a webroot.

    Parameters
    ----------
    webroot:
        Directory served by the web server at ``/``.
    config:
        Unused; accepted for registry symmetry.

    """

    name = "webroot"

    def __init__(self, webroot: str | Path, config: dict[str, Any] | None = None) -> None:
        super().__init__(config)
        if not webroot:
            msg = "webroot publisher requires challenge.webroot"
            raise ConfigurationError(msg)
        self.webroot = Path(webroot)
        self.challenge_dir = self.webroot / WELL_KNOWN_PATH

    def path_for(self, token: str) -> Path:
        return self.challenge_dir / token

    def publish(self, *, token: str, key_authorization: str, identifier: str) -> None:
        _check_token(token)
        path = self.path_for(token)
        try:
            self.challenge_dir.mkdir(mode=_DIR_MODE, parents=True, exist_ok=True)
            path.write_text(key_authorization, encoding="ascii")
            os.chmod(path, _FILE_MODE)
        except OSError as exc:
            msg = f"Cannot write challenge file {path}: {exc}"
            raise ChallengePublishError(msg, stage="publish", identifier=identifier) from exc
        log.info("Published http-01 challenge for %s at %s", identifier, path)

    def unpublish(self, *, token: str, identifier: str) -> None:
        _check_token(token)
        path = self.path_for(token)
        try:
            path.unlink()
        except FileNotFoundError:
            log.debug("Challenge file %s already absent", path)
            return
        except OSError as exc:
            msg = f"Cannot remove challenge file {path}: {exc}"
            raise ChallengePublishError(msg, stage="cleanup", identifier=identifier) from exc
        log.info("Removed http-01 challenge for %s", identifier)
