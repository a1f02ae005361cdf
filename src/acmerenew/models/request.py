"""CertificateRequest value object."""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from acmerenew.core.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Iterable

_SERVICE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def normalize_name(name: str) -> str:
    """Lower-case a DNS name and drop a trailing dot; canonicalise IPs."""
    value = name.strip().rstrip(".").lower()
    try:
        return str(ipaddress.ip_address(value))
    except ValueError:
        return value


def is_ip(name: str) -> bool:
    try:
        ipaddress.ip_address(name)
    except ValueError:
        return False
    return True


@dataclass(frozen=True)
class CertificateRequest:
    """What to certify, and under which file stem to install it.

    Build instances with :meth:`create` so names are normalised and the
    common name is always part of ``sans``.
    """

    common_name: str
    sans: frozenset[str]
    service_name: str

    @classmethod
    def create(
        cls,
        common_name: str,
        sans: Iterable[str],
        service_name: str,
    ) -> CertificateRequest:
        """Validate and normalise the request.

        Raises
        ------
        ConfigurationError
            If the common name or service name is empty or malformed,
            or the SAN set is empty.

        """
        cn = normalize_name(common_name or "")
        if not cn:
            msg = "certificate.common_name must not be empty"
            raise ConfigurationError(msg)
        names = {normalize_name(s) for s in sans if s and s.strip()}
        if not names:
            msg = "certificate.sans must contain at least one name"
            raise ConfigurationError(msg)
        names.add(cn)
        if not service_name or not _SERVICE_NAME_RE.match(service_name):
            msg = (
                f"certificate.service_name {service_name!r} is not a valid file stem "
                "(letters, digits, '.', '_' and '-')"
            )
            raise ConfigurationError(msg)
        return cls(common_name=cn, sans=frozenset(names), service_name=service_name)

    @property
    def sorted_sans(self) -> tuple[str, ...]:
        """SANs in a stable order (common name first, then sorted)."""
        rest = sorted(self.sans - {self.common_name})
        if self.common_name in self.sans:
            return (self.common_name, *rest)
        return tuple(rest)
