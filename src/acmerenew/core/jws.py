"""JWS signing and JWK utilities for the ACME client (RFC 7515 / 7517 / 7638).

Uses the ``cryptography`` library directly -- no josepy dependency.
Only the pieces an ACME client needs are implemented: turning the
account key into a public JWK, computing its thumbprint, and producing
JWS Flattened JSON Serialization request bodies (RFC 8555 §6.2).

Security note:
    This module handles raw cryptographic operations.  Changes should
    be reviewed carefully for signature encoding (ECDSA signatures are
    raw ``r || s``, not DER) and key-policy enforcement.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
from pathlib import Path
from typing import Any

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa, utils

from acmerenew.core.errors import AccountError

log = logging.getLogger(__name__)

# --- Constants -----------------------------------------------------------

_MIN_RSA_KEY_SIZE = 2048
"""Smallest RSA account key the client will sign with."""

AccountKey = ec.EllipticCurvePrivateKey | rsa.RSAPrivateKey

# Curve name -> (JWK crv, JWA alg, hash, coordinate size)
_EC_PARAMS: dict[str, tuple[str, str, hashes.HashAlgorithm, int]] = {
    "secp256r1": ("P-256", "ES256", hashes.SHA256(), 32),
    "secp384r1": ("P-384", "ES384", hashes.SHA384(), 48),
}


# --- Base64url helpers (RFC 7515 S2) -------------------------------------


def b64url_encode(b: bytes) -> str:
    """Encode bytes to base64url without padding.

    Parameters
    ----------
    b:
        Raw bytes to encode.

    Returns
    -------
    str
        Base64url-encoded string.

    """
    return base64.urlsafe_b64encode(b).rstrip(b"=").decode("ascii")


def b64url_decode(s: str) -> bytes:
    """Decode a base64url string (no padding required)."""
    remainder = len(s) % 4
    if remainder:
        s += "=" * (4 - remainder)
    return base64.urlsafe_b64decode(s)


def _b64url_json(obj: Any) -> str:  # noqa: ANN401
    return b64url_encode(json.dumps(obj, separators=(",", ":")).encode("utf-8"))


# --- Account key ---------------------------------------------------------


def load_account_key(path: str | Path) -> AccountKey:
    """Load and police the externally supplied account key.

    Parameters
    ----------
    path:
        PEM file holding an unencrypted EC (P-256 / P-384) or RSA
        (>= 2048 bit) private key.

    Raises
    ------
    AccountError
        If the file is missing, unreadable, encrypted, or holds a key
        type the client cannot sign with.

    """
    key_path = Path(path)
    try:
        data = key_path.read_bytes()
    except OSError as exc:
        msg = f"Cannot read account key '{key_path}': {exc}"
        raise AccountError(msg, stage="account") from exc

    try:
        key = serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError) as exc:
        msg = f"Account key '{key_path}' is not a usable PEM private key: {exc}"
        raise AccountError(msg, stage="account") from exc

    if isinstance(key, ec.EllipticCurvePrivateKey):
        if key.curve.name not in _EC_PARAMS:
            msg = (
                f"Account key '{key_path}' uses unsupported curve {key.curve.name}; "
                f"supported: P-256, P-384"
            )
            raise AccountError(msg, stage="account")
        return key
    if isinstance(key, rsa.RSAPrivateKey):
        if key.key_size < _MIN_RSA_KEY_SIZE:
            msg = (
                f"Account key '{key_path}' is RSA-{key.key_size}; "
                f"at least {_MIN_RSA_KEY_SIZE} bits are required"
            )
            raise AccountError(msg, stage="account")
        return key

    msg = f"Account key '{key_path}' has unsupported type {type(key).__name__}"
    raise AccountError(msg, stage="account")


def public_jwk(key: AccountKey) -> dict[str, str]:
    """Return the public JWK (RFC 7517) for *key*."""
    if isinstance(key, ec.EllipticCurvePrivateKey):
        crv, _alg, _hash, size = _EC_PARAMS[key.curve.name]
        nums = key.public_key().public_numbers()
        return {
            "kty": "EC",
            "crv": crv,
            "x": b64url_encode(nums.x.to_bytes(size, "big")),
            "y": b64url_encode(nums.y.to_bytes(size, "big")),
        }
    nums_rsa = key.public_key().public_numbers()
    e_len = (nums_rsa.e.bit_length() + 7) // 8
    n_len = (nums_rsa.n.bit_length() + 7) // 8
    return {
        "kty": "RSA",
        "e": b64url_encode(nums_rsa.e.to_bytes(e_len, "big")),
        "n": b64url_encode(nums_rsa.n.to_bytes(n_len, "big")),
    }


def signing_algorithm(key: AccountKey) -> str:
    """Return the JWA ``alg`` name used for *key*."""
    if isinstance(key, ec.EllipticCurvePrivateKey):
        return _EC_PARAMS[key.curve.name][1]
    return "RS256"


# --- Thumbprint / key authorization -------------------------------------


def compute_thumbprint(jwk_dict: dict[str, Any]) -> str:
    """Compute the RFC 7638 JWK Thumbprint using SHA-256.

    Construct the canonical JSON representation with required members
    in lexicographic order, then return the base64url-encoded SHA-256
    hash.

    Parameters
    ----------
    jwk_dict:
        The JWK dictionary.

    Returns
    -------
    str
        Base64url-encoded thumbprint.

    """
    kty = jwk_dict.get("kty")

    if kty == "RSA":
        canonical = {
            "e": jwk_dict["e"],
            "kty": "RSA",
            "n": jwk_dict["n"],
        }
    elif kty == "EC":
        canonical = {
            "crv": jwk_dict["crv"],
            "kty": "EC",
            "x": jwk_dict["x"],
            "y": jwk_dict["y"],
        }
    else:
        msg = f"Cannot compute thumbprint for kty '{kty}'"
        raise AccountError(msg, stage="account")

    # RFC 7638 requires members in lexicographic order, no whitespace
    canonical_json = json.dumps(
        canonical,
        sort_keys=True,
        separators=(",", ":"),
    )
    digest = hashlib.sha256(canonical_json.encode("utf-8")).digest()
    return b64url_encode(digest)


def key_authorization(token: str, jwk_dict: dict[str, Any]) -> str:
    """Compute the key authorization string: ``token.thumbprint``.

    Parameters
    ----------
    token:
        The challenge token.
    jwk_dict:
        The account's public JWK dictionary.

    Returns
    -------
    str
        The key authorization string.

    """
    thumbprint = compute_thumbprint(jwk_dict)
    return f"{token}.{thumbprint}"


# --- Signing -------------------------------------------------------------


def _sign(key: AccountKey, signing_input: bytes) -> bytes:
    if isinstance(key, ec.EllipticCurvePrivateKey):
        _crv, _alg, hash_alg, size = _EC_PARAMS[key.curve.name]
        der_sig = key.sign(signing_input, ec.ECDSA(hash_alg))
        r, s = utils.decode_dss_signature(der_sig)
        return r.to_bytes(size, "big") + s.to_bytes(size, "big")
    return key.sign(signing_input, padding.PKCS1v15(), hashes.SHA256())


def sign_request(
    key: AccountKey,
    payload: Any,  # noqa: ANN401
    *,
    url: str,
    nonce: str,
    kid: str | None = None,
) -> dict[str, str]:
    """Build a JWS Flattened JSON Serialization body for an ACME POST.

    Parameters
    ----------
    key:
        The account private key.
    payload:
        JSON-serialisable payload, or ``None`` for POST-as-GET
        (RFC 8555 §6.3), which is encoded as an empty string.
    url:
        The request URL, bound into the protected header.
    nonce:
        A fresh ``Replay-Nonce`` from the CA.
    kid:
        The account URL.  When ``None`` the public ``jwk`` is embedded
        instead (only valid for ``newAccount``).

    Returns
    -------
    dict
        ``{"protected": ..., "payload": ..., "signature": ...}``

    """
    protected: dict[str, Any] = {
        "alg": signing_algorithm(key),
        "nonce": nonce,
        "url": url,
    }
    if kid is not None:
        protected["kid"] = kid
    else:
        protected["jwk"] = public_jwk(key)

    protected_b64 = _b64url_json(protected)
    payload_b64 = "" if payload is None else _b64url_json(payload)
    signing_input = f"{protected_b64}.{payload_b64}".encode("ascii")
    return {
        "protected": protected_b64,
        "payload": payload_b64,
        "signature": b64url_encode(_sign(key, signing_input)),
    }
