"""Key, CSR and certificate value objects."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric import ec


@dataclass(frozen=True)
class KeyMaterial:
    """The certificate's private key.

    ``reused`` is ``True`` when the key was loaded from the install
    directory instead of being generated for this run.
    """

    key: ec.EllipticCurvePrivateKey = field(repr=False)
    reused: bool = False


@dataclass(frozen=True)
class SigningRequest:
    """A PKCS#10 CSR in both encodings plus the SANs it carries."""

    der: bytes
    pem: bytes
    common_name: str
    sans: tuple[str, ...]


@dataclass(frozen=True)
class ExistingCertificate:
    """Read-only snapshot of the installed certificate.

    ``key_matches`` is ``None`` when no key file was inspected or
    present, otherwise whether the installed key belongs to the
    certificate.
    """

    sans: frozenset[str]
    not_after: datetime
    key_matches: bool | None = None


@dataclass(frozen=True)
class IssuedChain:
    """Certificate chain downloaded from the CA."""

    leaf: bytes
    chain: bytes

    @property
    def fullchain(self) -> bytes:
        """Leaf followed by the intermediates."""
        return self.leaf + self.chain
