"""Certificate key, CSR and certificate inspection helpers."""

from acmerenew.pki.inspector import inspect, split_pem_chain
from acmerenew.pki.keys import build_signing_request, ensure_key, key_to_pem

__all__ = [
    "build_signing_request",
    "ensure_key",
    "inspect",
    "key_to_pem",
    "split_pem_chain",
]
