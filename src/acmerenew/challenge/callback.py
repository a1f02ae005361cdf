"""Script-driven http-01 publisher.

For setups where the challenge files cannot be written locally (a
load balancer, a remote web tier), deploy and cleanup are delegated to
operator scripts:

- ``deploy_script <identifier> <token> <key_authorization>``
- ``cleanup_script <identifier> <token>``

Both are run without a shell; a non-zero exit is a failure.
"""

from __future__ import annotations

import logging
import subprocess
from typing import Any

from acmerenew.challenge.base import ChallengePublisher
from acmerenew.core.errors import ChallengePublishError, ConfigurationError

log = logging.getLogger(__name__)

_DEFAULT_SCRIPT_TIMEOUT = 60


class CallbackPublisher(ChallengePublisher):
    """Publish challenge responses through external scripts.

    Required config keys: ``deploy_script`` and ``cleanup_script``.
    Optional: ``script_timeout`` in seconds (default 60).
    """

    name = "callback"

    def __init__(self, config: dict[str, Any] | None = None) -> None:
        super().__init__(config)
        self.deploy_script = self.config.get("deploy_script")
        self.cleanup_script = self.config.get("cleanup_script")
        if not self.deploy_script:
            msg = "callback publisher requires 'deploy_script' in publisher_config"
            raise ConfigurationError(msg)
        if not self.cleanup_script:
            msg = "callback publisher requires 'cleanup_script' in publisher_config"
            raise ConfigurationError(msg)
        self.script_timeout = self.config.get("script_timeout", _DEFAULT_SCRIPT_TIMEOUT)

    def _run(self, argv: list[str], *, stage: str, identifier: str) -> None:
        try:
            subprocess.run(  # noqa: S603
                argv,
                check=True,
                timeout=self.script_timeout,
                capture_output=True,
                text=True,
            )
        except subprocess.CalledProcessError as exc:
            msg = f"{argv[0]} exited with status {exc.returncode}: {(exc.stderr or '').strip()}"
            raise ChallengePublishError(msg, stage=stage, identifier=identifier) from exc
        except subprocess.TimeoutExpired as exc:
            msg = f"{argv[0]} timed out after {self.script_timeout}s"
            raise ChallengePublishError(msg, stage=stage, identifier=identifier) from exc
        except OSError as exc:
            msg = f"Cannot run {argv[0]}: {exc}"
            raise ChallengePublishError(msg, stage=stage, identifier=identifier) from exc

    def publish(self, *, token: str, key_authorization: str, identifier: str) -> None:
        log.info("HTTP deploy: %s %s via %s", token, identifier, self.deploy_script)
        self._run(
            [self.deploy_script, identifier, token, key_authorization],
            stage="publish",
            identifier=identifier,
        )

    def unpublish(self, *, token: str, identifier: str) -> None:
        log.info("HTTP cleanup: %s %s via %s", token, identifier, self.cleanup_script)
        self._run(
            [self.cleanup_script, identifier, token],
            stage="cleanup",
            identifier=identifier,
        )
