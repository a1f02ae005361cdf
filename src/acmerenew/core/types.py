"""Enumerated ACME resource types (RFC 8555 §7.1).

All enums inherit from ``StrEnum`` so their ``.value`` is the exact
string the CA sends.  :func:`parse_status` is the only way a raw CA
status string becomes an enum member; an unknown value raises
:class:`~acmerenew.core.errors.AcmeProtocolError` instead of leaking
through as a free-form string.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TypeVar

from acmerenew.core.errors import AcmeProtocolError

# ---------------------------------------------------------------------------
# Order
# ---------------------------------------------------------------------------


class OrderStatus(StrEnum):
    PENDING = "pending"
    READY = "ready"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class AuthorizationStatus(StrEnum):
    PENDING = "pending"
    VALID = "valid"
    INVALID = "invalid"
    DEACTIVATED = "deactivated"
    EXPIRED = "expired"
    REVOKED = "revoked"


# ---------------------------------------------------------------------------
# Challenge
# ---------------------------------------------------------------------------


class ChallengeStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


class IdentifierType(StrEnum):
    DNS = "dns"
    IP = "ip"


# ---------------------------------------------------------------------------
# Challenge types
# ---------------------------------------------------------------------------


class ChallengeType(StrEnum):
    HTTP_01 = "http-01"
    DNS_01 = "dns-01"
    TLS_ALPN_01 = "tls-alpn-01"


_E = TypeVar("_E", OrderStatus, AuthorizationStatus, ChallengeStatus)


def parse_status(enum_cls: type[_E], raw: object, *, resource: str) -> _E:
    """Convert a CA-supplied status string into *enum_cls*.

    Raises
    ------
    AcmeProtocolError
        If *raw* is missing or not a member of *enum_cls*.

    """
    try:
        return enum_cls(raw)
    except ValueError:
        known = ", ".join(s.value for s in enum_cls)
        msg = f"CA returned unknown {resource} status {raw!r} (known: {known})"
        raise AcmeProtocolError(msg, stage=resource) from None
