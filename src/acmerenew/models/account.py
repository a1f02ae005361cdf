"""ACME account reference."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from acmerenew.core.jws import AccountKey


@dataclass(frozen=True)
class AcmeAccount:
    """Externally supplied account key bound to one CA directory.

    ``kid`` is the account URL returned by ``newAccount``; it is
    ``None`` until the engine has bound the account.
    """

    directory_url: str
    key: AccountKey
    jwk: dict
    thumbprint: str
    kid: str | None = None
    contact: tuple[str, ...] = ()
