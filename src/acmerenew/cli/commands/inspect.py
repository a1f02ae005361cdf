"""Inspect subcommand: show the installed certificate.

Usage::

    acmerenew -c config.yaml inspect
"""

from __future__ import annotations

from acmerenew.cli.main import print_result
from acmerenew.services.orchestrator import RenewalService


def run_inspect(config, args) -> None:  # noqa: ARG001
    """Print SANs, expiry and key-match state of the installed certificate."""
    service = RenewalService(config.settings)
    paths = service.paths
    existing = service.inspect()
    if existing is None:
        print_result({"installed": False, "path": str(paths["cert"])})
        return
    print_result(
        {
            "installed": True,
            "path": str(paths["cert"]),
            "sans": sorted(existing.sans),
            "not_after": existing.not_after.isoformat(),
            "key_matches": existing.key_matches,
        },
    )
