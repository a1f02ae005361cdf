"""Run subcommand: renewal (with trust bootstrap when acting), reload.

Usage::

    acmerenew -c config.yaml run [--force] [--no-reload]
"""

from __future__ import annotations

import logging

from acmerenew.cli.main import print_result
from acmerenew.services.orchestrator import RenewalService
from acmerenew.services.reload import ServiceReloader, pending_marker
from acmerenew.services.trust import TrustBootstrapper

log = logging.getLogger(__name__)


def run_renewal(config, args) -> None:
    """Renew the configured certificate and reload the service on change.

    The CA root is only fetched once a renewal is decided, so a run with
    nothing to do stays off the network.  A reload that failed on an
    earlier run is retried here even when nothing was renewed.
    """
    settings = config.settings
    force = args.force or getattr(args, "run_force", False)

    trust = TrustBootstrapper(settings.trust)
    outcome = RenewalService(settings, force=force, before_issue=trust.bootstrap).run()
    result = outcome.to_dict()

    reloaded = False
    if not getattr(args, "no_reload", False):
        reloader = ServiceReloader(
            settings.reload,
            marker=pending_marker(settings.install.dir, settings.certificate.service_name),
        )
        reloaded = reloader.reload_if_needed(changed=outcome.changed)
    result["reloaded"] = reloaded
    print_result(result)
