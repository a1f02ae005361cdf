"""Certificate key generation and CSR construction.

Boundary: this module owns the certificate's own key and CSR.  The
account key (JWK, JWS) lives in :mod:`acmerenew.core.jws`.
"""

from __future__ import annotations

import ipaddress
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from acmerenew.core.errors import CsrBuildError, KeyGenerationError
from acmerenew.models.certificate import KeyMaterial, SigningRequest
from acmerenew.models.request import is_ip

if TYPE_CHECKING:
    from acmerenew.models.request import CertificateRequest

log = logging.getLogger(__name__)

_MAX_CN_LENGTH = 64
"""RFC 5280 upper bound for the commonName attribute."""


def generate_key() -> ec.EllipticCurvePrivateKey:
    """Generate a fresh ECDSA P-256 key.

    Raises
    ------
    KeyGenerationError
        If the crypto backend fails.

    """
    try:
        return ec.generate_private_key(ec.SECP256R1())
    except Exception as exc:  # noqa: BLE001
        msg = f"Failed to generate ECDSA P-256 key: {exc}"
        raise KeyGenerationError(msg, stage="key") from exc


def _load_reusable_key(path: Path) -> ec.EllipticCurvePrivateKey | None:
    """Return the P-256 key at *path*, or ``None`` if it cannot be reused."""
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as exc:
        log.warning("Cannot read existing key %s (%s); generating a new one", path, exc)
        return None

    try:
        key = serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError) as exc:
        log.warning("Existing key %s is not a usable PEM key (%s); generating a new one", path, exc)
        return None

    if not isinstance(key, ec.EllipticCurvePrivateKey) or key.curve.name != "secp256r1":
        log.warning("Existing key %s is not an ECDSA P-256 key; generating a new one", path)
        return None
    return key


def ensure_key(path: str | Path, *, reuse: bool) -> KeyMaterial:
    """Load the installed key when reuse is permitted, else generate one.

    Parameters
    ----------
    path:
        Location of the installed ``{service}.key`` file.
    reuse:
        Whether the current renewal may keep the existing key.  The
        orchestrator forbids reuse when renewal is forced or the SAN
        set changed.

    Returns
    -------
    KeyMaterial
        The key and whether it was reused.  Nothing is written to disk;
        the Installer persists the key.

    """
    key_path = Path(path)
    if reuse:
        existing = _load_reusable_key(key_path)
        if existing is not None:
            log.info("Reusing existing certificate key %s", key_path)
            return KeyMaterial(key=existing, reused=True)

    log.info("Generating new ECDSA P-256 certificate key")
    return KeyMaterial(key=generate_key(), reused=False)


def key_to_pem(key: ec.EllipticCurvePrivateKey) -> bytes:
    """Serialise *key* as unencrypted PKCS#8 PEM."""
    try:
        return key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    except Exception as exc:  # noqa: BLE001
        msg = f"Failed to serialise certificate key: {exc}"
        raise KeyGenerationError(msg, stage="key") from exc


def _general_name(name: str) -> x509.GeneralName:
    if is_ip(name):
        return x509.IPAddress(ipaddress.ip_address(name))
    return x509.DNSName(name)


def build_signing_request(
    material: KeyMaterial,
    request: CertificateRequest,
) -> SigningRequest:
    """Build a CSR whose SAN extension lists exactly ``request.sans``.

    The subject carries the common name; SANs are emitted common name
    first, then sorted, so two runs with the same input produce the same
    extension.

    Raises
    ------
    CsrBuildError
        If the SAN set is empty or a name is rejected by the builder.

    """
    if not request.sans:
        msg = "Cannot build a CSR without subject alternative names"
        raise CsrBuildError(msg, stage="csr")

    sans = request.sorted_sans
    subject_attrs = []
    if len(request.common_name) <= _MAX_CN_LENGTH:
        subject_attrs.append(x509.NameAttribute(NameOID.COMMON_NAME, request.common_name))
    else:
        log.warning(
            "Common name %s exceeds %d characters; leaving subject empty",
            request.common_name,
            _MAX_CN_LENGTH,
        )

    try:
        builder = (
            x509.CertificateSigningRequestBuilder()
            .subject_name(x509.Name(subject_attrs))
            .add_extension(
                x509.SubjectAlternativeName([_general_name(n) for n in sans]),
                critical=False,
            )
        )
        csr = builder.sign(material.key, hashes.SHA256())
    except (ValueError, TypeError) as exc:
        msg = f"Failed to build CSR for {request.common_name}: {exc}"
        raise CsrBuildError(msg, stage="csr", identifier=request.common_name) from exc

    return SigningRequest(
        der=csr.public_bytes(serialization.Encoding.DER),
        pem=csr.public_bytes(serialization.Encoding.PEM),
        common_name=request.common_name,
        sans=sans,
    )
