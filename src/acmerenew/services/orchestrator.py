"""Renewal orchestration for one certificate service.

Sequences inspect → decide → key → CSR → ACME → install and reports
a :class:`RunOutcome`.  Nothing touches the network or the install
directory unless the renewal policy says to act, and the installer only
runs once a complete chain is in hand, so a failed renewal leaves the
previously installed files exactly as they were.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from acmerenew.acme.client import AcmeClient
from acmerenew.acme.engine import AcmeEngine, build_account
from acmerenew.acme.polling import BackoffPolicy, Poller
from acmerenew.challenge.registry import load_publisher
from acmerenew.core.jws import load_account_key
from acmerenew.install.installer import Installer
from acmerenew.models.request import CertificateRequest
from acmerenew.pki.inspector import inspect, load_leaf
from acmerenew.pki.keys import build_signing_request, ensure_key, key_to_pem
from acmerenew.renewal.policy import renewal_reason

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from acmerenew.config.settings import AcmerenewSettings
    from acmerenew.models.certificate import ExistingCertificate

log = logging.getLogger(__name__)

ACTION_SKIPPED = "skipped"
ACTION_ISSUED = "issued"


@dataclass(frozen=True)
class RunOutcome:
    """Result of one run; ``changed`` drives the service reload."""

    changed: bool
    action: str
    reason: str | None = None
    not_after: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "changed": self.changed,
            "action": self.action,
            "reason": self.reason,
            "not_after": self.not_after.isoformat() if self.not_after else None,
        }


@dataclass(frozen=True)
class Decision:
    """What the renewal policy concluded about the installed certificate."""

    existing: ExistingCertificate | None
    reason: str | None

    @property
    def renew(self) -> bool:
        return self.reason is not None


def default_engine_factory(settings: AcmerenewSettings) -> AcmeEngine:
    """Build the production engine: urllib client, configured publisher, real clock."""
    key = load_account_key(settings.acme.account_key_path)
    account = build_account(
        settings.acme.directory_url,
        key,
        contact_email=settings.acme.contact_email,
    )
    return AcmeEngine(
        client=AcmeClient.from_settings(settings.acme),
        account=account,
        publisher=load_publisher(settings.challenge),
        poller=Poller(BackoffPolicy.from_settings(settings.polling)),
        polling=settings.polling,
    )


class RenewalService:
    """Issue or renew the certificate described by *settings*.

    Parameters
    ----------
    settings:
        Validated configuration.
    force:
        Renew regardless of the installed certificate (``--force``);
        combined with ``renewal.force``.
    engine_factory:
        Builds the :class:`AcmeEngine`; only called when acting.
    before_issue:
        Called once a renewal is decided, before the engine is built
        (CA trust bootstrap).  Never called on a skipped run.
    now:
        Clock for the expiry comparison.

    """

    def __init__(
        self,
        settings: AcmerenewSettings,
        *,
        force: bool = False,
        engine_factory: Callable[[AcmerenewSettings], AcmeEngine] | None = None,
        before_issue: Callable[[], object] | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings
        self.force = force or settings.renewal.force
        self.request = CertificateRequest.create(
            settings.certificate.common_name,
            settings.certificate.sans,
            settings.certificate.service_name,
        )
        self.installer = Installer.from_settings(self.request.service_name, settings.install)
        self._engine_factory = engine_factory or default_engine_factory
        self._before_issue = before_issue
        self._now = now or (lambda: datetime.now(UTC))

    @property
    def paths(self) -> dict[str, Path]:
        return self.installer.paths(self.settings.install.dir)

    def inspect(self) -> ExistingCertificate | None:
        return inspect(self.paths["cert"], key_path=self.paths["key"])

    def decide(self) -> Decision:
        """Inspect the installed files and apply the renewal policy."""
        existing = self.inspect()
        reason = renewal_reason(
            existing,
            self.request.sans,
            self.settings.renewal.threshold_days,
            self.force,
            now=self._now(),
        )
        if reason is None and existing is not None and existing.key_matches is False:
            reason = "installed key does not belong to the installed certificate"
        return Decision(existing=existing, reason=reason)

    def _may_reuse_key(self, existing: ExistingCertificate | None) -> bool:
        if self.force:
            return False
        return existing is None or existing.sans == self.request.sans

    def run(self) -> RunOutcome:
        """Renew if needed.

        Raises
        ------
        AcmerenewError
            Any failure, unchanged; the previously installed files are
            intact unless the error is an ``InstallError``.

        """
        decision = self.decide()
        if not decision.renew:
            not_after = decision.existing.not_after if decision.existing else None
            log.info(
                "Certificate for %s is current (expires %s); nothing to do",
                self.request.common_name,
                not_after.isoformat() if not_after else "?",
            )
            return RunOutcome(changed=False, action=ACTION_SKIPPED, not_after=not_after)

        log.info("Renewing certificate for %s: %s", self.request.common_name, decision.reason)
        material = ensure_key(
            self.paths["key"],
            reuse=self._may_reuse_key(decision.existing),
        )
        csr = build_signing_request(material, self.request)

        if self._before_issue is not None:
            self._before_issue()
        engine = self._engine_factory(self.settings)
        chain = engine.issue(self.request, csr)

        changed = self.installer.install(
            {
                "key": key_to_pem(material.key),
                "csr": csr.pem,
                "cert": chain.leaf,
                "chain": chain.chain,
                "fullchain": chain.fullchain,
            },
            self.settings.install.dir,
            owner=self.settings.install.owner,
            group=self.settings.install.group,
        )
        not_after = load_leaf(chain.leaf).not_valid_after_utc
        log.info(
            "Installed certificate for %s, valid until %s (changed=%s)",
            self.request.common_name,
            not_after.isoformat(),
            changed,
        )
        return RunOutcome(
            changed=changed,
            action=ACTION_ISSUED,
            reason=decision.reason,
            not_after=not_after,
        )
