"""Read-only inspection of installed certificates.

Nothing here raises for a missing or broken file: an unreadable
certificate simply means "needs issuance".
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import ExtensionOID

from acmerenew.core.errors import AcmeProtocolError
from acmerenew.models.certificate import ExistingCertificate, IssuedChain
from acmerenew.models.request import normalize_name

log = logging.getLogger(__name__)

_PEM_CERT_RE = re.compile(
    rb"-----BEGIN CERTIFICATE-----\r?\n.+?\r?\n-----END CERTIFICATE-----\r?\n?",
    re.DOTALL,
)


def extract_sans(cert: x509.Certificate) -> frozenset[str]:
    """Return the DNS names and IP addresses from the SAN extension."""
    try:
        ext = cert.extensions.get_extension_for_oid(
            ExtensionOID.SUBJECT_ALTERNATIVE_NAME,
        )
    except x509.ExtensionNotFound:
        return frozenset()

    names: set[str] = set()
    for name in ext.value:
        if isinstance(name, x509.DNSName):
            names.add(normalize_name(name.value))
        elif isinstance(name, x509.IPAddress):
            names.add(str(name.value))
    return frozenset(names)


def _public_bytes(public_key) -> bytes:
    return public_key.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def _key_matches(cert: x509.Certificate, key_path: Path) -> bool | None:
    """Compare the key file's public key with the certificate's."""
    try:
        data = key_path.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as exc:
        log.warning("Cannot read key %s for comparison: %s", key_path, exc)
        return False
    try:
        key = serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError) as exc:
        log.warning("Key %s is not a usable PEM key: %s", key_path, exc)
        return False
    return _public_bytes(key.public_key()) == _public_bytes(cert.public_key())


def inspect(
    path: str | Path,
    *,
    key_path: str | Path | None = None,
) -> ExistingCertificate | None:
    """Return a snapshot of the certificate at *path*, or ``None``.

    Parameters
    ----------
    path:
        PEM file holding the leaf certificate (a full chain is fine; the
        first certificate is used).
    key_path:
        Optional private key file.  When given, ``key_matches`` records
        whether it belongs to the certificate.

    """
    cert_path = Path(path)
    try:
        data = cert_path.read_bytes()
    except FileNotFoundError:
        log.info("No certificate at %s", cert_path)
        return None
    except OSError as exc:
        log.warning("Cannot read certificate %s: %s", cert_path, exc)
        return None

    try:
        cert = load_leaf(data)
    except AcmeProtocolError as exc:
        log.warning("Cannot parse certificate %s: %s", cert_path, exc.detail)
        return None

    key_matches = _key_matches(cert, Path(key_path)) if key_path is not None else None
    return ExistingCertificate(
        sans=extract_sans(cert),
        not_after=cert.not_valid_after_utc,
        key_matches=key_matches,
    )


# ---------------------------------------------------------------------------
# Chain helpers
# ---------------------------------------------------------------------------


def split_pem_chain(data: bytes) -> list[bytes]:
    """Split a PEM bundle into its certificates, each newline-terminated."""
    blocks = []
    for match in _PEM_CERT_RE.finditer(data):
        block = match.group(0).replace(b"\r\n", b"\n")
        if not block.endswith(b"\n"):
            block += b"\n"
        blocks.append(block)
    return blocks


def load_leaf(data: bytes) -> x509.Certificate:
    """Parse the first certificate of a PEM bundle.

    Raises
    ------
    AcmeProtocolError
        If *data* contains no parseable certificate.

    """
    blocks = split_pem_chain(data)
    if not blocks:
        msg = "no PEM certificate found"
        raise AcmeProtocolError(msg)
    try:
        return x509.load_pem_x509_certificate(blocks[0])
    except ValueError as exc:
        msg = f"invalid PEM certificate: {exc}"
        raise AcmeProtocolError(msg) from exc


def chain_from_pem(data: bytes) -> IssuedChain:
    """Split a ``application/pem-certificate-chain`` body into leaf and chain.

    Raises
    ------
    AcmeProtocolError
        If the body has no certificate or the leaf does not parse.

    """
    blocks = split_pem_chain(data)
    if not blocks:
        msg = "CA returned a certificate download with no PEM certificates"
        raise AcmeProtocolError(msg, stage="download")
    try:
        x509.load_pem_x509_certificate(blocks[0])
    except ValueError as exc:
        msg = f"CA returned an unparseable leaf certificate: {exc}"
        raise AcmeProtocolError(msg, stage="download") from exc
    return IssuedChain(leaf=blocks[0], chain=b"".join(blocks[1:]))
