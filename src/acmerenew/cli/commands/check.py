"""Check subcommand: report the renewal decision without acting."""

from __future__ import annotations

from acmerenew.cli.main import print_result
from acmerenew.services.orchestrator import RenewalService


def run_check(config, args) -> None:
    service = RenewalService(config.settings, force=args.force)
    decision = service.decide()
    existing = decision.existing
    print_result(
        {
            "renew": decision.renew,
            "reason": decision.reason,
            "not_after": existing.not_after.isoformat() if existing else None,
        },
    )
