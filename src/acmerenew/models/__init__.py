"""Value objects for certificate requests, installed certificates and
ACME resources.

All models are frozen dataclasses.  Use :func:`dataclasses.replace`
for modifications (copy-on-write).
"""

from acmerenew.models.account import AcmeAccount
from acmerenew.models.certificate import (
    ExistingCertificate,
    IssuedChain,
    KeyMaterial,
    SigningRequest,
)
from acmerenew.models.order import AcmeAuthorization, AcmeChallenge, AcmeOrder, Identifier
from acmerenew.models.request import CertificateRequest

__all__ = [
    "AcmeAccount",
    "AcmeAuthorization",
    "AcmeChallenge",
    "AcmeOrder",
    "CertificateRequest",
    "ExistingCertificate",
    "Identifier",
    "IssuedChain",
    "KeyMaterial",
    "SigningRequest",
]
