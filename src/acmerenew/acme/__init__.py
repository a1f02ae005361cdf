"""ACME v2 client side: transport, polling and the protocol engine."""

from acmerenew.acme.client import AcmeClient, AcmeResponse
from acmerenew.acme.engine import AcmeEngine, build_account
from acmerenew.acme.polling import BackoffPolicy, Deadline, Poller

__all__ = [
    "AcmeClient",
    "AcmeEngine",
    "AcmeResponse",
    "BackoffPolicy",
    "Deadline",
    "Poller",
    "build_account",
]
