"""ACME order, authorization and challenge snapshots.

Each class has a ``from_json`` constructor that turns a CA response
body into a typed snapshot; statuses go through
:func:`~acmerenew.core.types.parse_status` so an unknown value is an
error, not a string.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from acmerenew.core.errors import AcmeProtocolError
from acmerenew.core.types import (
    AuthorizationStatus,
    ChallengeStatus,
    ChallengeType,
    IdentifierType,
    OrderStatus,
    parse_status,
)


@dataclass(frozen=True)
class Identifier:
    """ACME identifier value object."""

    type: IdentifierType
    value: str

    def to_json(self) -> dict[str, str]:
        return {"type": self.type.value, "value": self.value}

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> Identifier:
        try:
            return cls(type=IdentifierType(data["type"]), value=data["value"])
        except (KeyError, TypeError, ValueError) as exc:
            msg = f"CA returned malformed identifier {data!r}"
            raise AcmeProtocolError(msg) from exc


@dataclass(frozen=True)
class AcmeChallenge:
    type: str
    url: str
    token: str
    status: ChallengeStatus
    error: dict | None = None

    @property
    def is_http01(self) -> bool:
        return self.type == ChallengeType.HTTP_01.value

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> AcmeChallenge:
        try:
            return cls(
                type=data["type"],
                url=data["url"],
                token=data.get("token", ""),
                status=parse_status(ChallengeStatus, data.get("status"), resource="challenge"),
                error=data.get("error"),
            )
        except (KeyError, TypeError) as exc:
            msg = f"CA returned malformed challenge {data!r}"
            raise AcmeProtocolError(msg, stage="challenge") from exc


@dataclass(frozen=True)
class AcmeAuthorization:
    url: str
    identifier: Identifier
    status: AuthorizationStatus
    challenges: tuple[AcmeChallenge, ...] = ()
    wildcard: bool = False

    def http01(self) -> AcmeChallenge | None:
        """Return the http-01 challenge, or ``None`` if none is offered."""
        for challenge in self.challenges:
            if challenge.is_http01:
                return challenge
        return None

    def problem(self) -> dict | None:
        """Return the first challenge error the CA attached, if any."""
        for challenge in self.challenges:
            if challenge.error:
                return challenge.error
        return None

    @classmethod
    def from_json(cls, url: str, data: dict[str, Any]) -> AcmeAuthorization:
        try:
            return cls(
                url=url,
                identifier=Identifier.from_json(data["identifier"]),
                status=parse_status(
                    AuthorizationStatus,
                    data.get("status"),
                    resource="authorization",
                ),
                challenges=tuple(AcmeChallenge.from_json(c) for c in data.get("challenges", [])),
                wildcard=bool(data.get("wildcard", False)),
            )
        except (KeyError, TypeError) as exc:
            msg = f"CA returned malformed authorization at {url}"
            raise AcmeProtocolError(msg, stage="authorization") from exc


@dataclass(frozen=True)
class AcmeOrder:
    url: str
    status: OrderStatus
    identifiers: tuple[Identifier, ...]
    authorizations: tuple[str, ...]
    finalize_url: str
    certificate_url: str | None = None
    error: dict | None = None

    @classmethod
    def from_json(cls, url: str, data: dict[str, Any]) -> AcmeOrder:
        try:
            return cls(
                url=url,
                status=parse_status(OrderStatus, data.get("status"), resource="order"),
                identifiers=tuple(Identifier.from_json(i) for i in data["identifiers"]),
                authorizations=tuple(data["authorizations"]),
                finalize_url=data["finalize"],
                certificate_url=data.get("certificate"),
                error=data.get("error"),
            )
        except (KeyError, TypeError) as exc:
            msg = f"CA returned malformed order at {url}: missing {exc}"
            raise AcmeProtocolError(msg, stage="order") from exc
