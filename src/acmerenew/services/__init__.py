"""Run-level services: renewal orchestration and its collaborators."""

from acmerenew.services.orchestrator import Decision, RenewalService, RunOutcome
from acmerenew.services.reload import ServiceReloader
from acmerenew.services.trust import TrustBootstrapper

__all__ = [
    "Decision",
    "RenewalService",
    "RunOutcome",
    "ServiceReloader",
    "TrustBootstrapper",
]
