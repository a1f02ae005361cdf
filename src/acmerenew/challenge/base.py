"""Abstract base class for http-01 challenge publishers.

A publisher makes ``GET /.well-known/acme-challenge/{token}`` on every
requested name answer with the key authorization, and withdraws it
afterwards.  All publishers (built-in and custom) inherit from
:class:`ChallengePublisher`.
"""

from __future__ import annotations

import abc
import logging
from typing import Any, ClassVar

log = logging.getLogger(__name__)

WELL_KNOWN_PATH = ".well-known/acme-challenge"


class ChallengePublisher(abc.ABC):
    """Base class for all challenge publishers.

    Parameters
    ----------
    config:
        Publisher-specific settings (``challenge.publisher_config``).

    """

    name: ClassVar[str] = "publisher"

    def __init__(self, config: dict[str, Any] | None = None) -> None:
        self.config = config or {}

    @abc.abstractmethod
    def publish(self, *, token: str, key_authorization: str, identifier: str) -> None:
        """Serve *key_authorization* for *token*.

        Must raise :class:`~acmerenew.core.errors.ChallengePublishError`
        on failure.

        Parameters
        ----------
        token:
            The challenge token (last path segment of the well-known URL).
        key_authorization:
            ``token + "." + thumbprint``; the exact response body.
        identifier:
            The name being validated.

        """

    @abc.abstractmethod
    def unpublish(self, *, token: str, identifier: str) -> None:
        """Withdraw the response for *token*.

        Must be idempotent: withdrawing a token that is not published is
        not an error.
        """
