"""Error taxonomy for acmerenew.

Every failure that leaves the library is one of the classes below.  Each
carries a human-readable ``detail``, a ``retryable`` hint used by the
polling loops, optional ``stage`` / ``identifier`` context, and a distinct
``exit_code`` that the CLI uses so schedulers can tell failures apart.

Usage::

    raise ChallengeRejectedError(
        "urn:ietf:params:acme:error:unauthorized: 404 from webroot",
        stage="validate",
        identifier="www.example.com",
    )
"""

from __future__ import annotations

from typing import Any, ClassVar

# ---------------------------------------------------------------------------
# RFC 8555 §6.7: ACME error-type URNs the client reacts to
# ---------------------------------------------------------------------------
_P = "urn:ietf:params:acme:error:"

BAD_NONCE = _P + "badNonce"
RATE_LIMITED = _P + "rateLimited"
SERVER_INTERNAL = _P + "serverInternal"


class AcmerenewError(Exception):
    """Base class for all acmerenew failures.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.
    retryable:
        Whether the failure is transient and the operation may be retried.
    stage:
        Issuance stage in which the failure happened (``account``,
        ``order``, ``validate``, ``finalize``, ``install``, ...).
    identifier:
        The SAN the failure relates to, when there is one.

    """

    exit_code: ClassVar[int] = 1
    kind: ClassVar[str] = "error"

    def __init__(
        self,
        detail: str,
        *,
        retryable: bool = False,
        stage: str | None = None,
        identifier: str | None = None,
    ) -> None:
        self.detail = detail
        self.retryable = retryable
        self.stage = stage
        self.identifier = identifier
        super().__init__(detail)

    def describe(self) -> str:
        """Return a one-line message naming the error kind and context."""
        parts = [type(self).__name__]
        if self.stage:
            parts.append(f"stage={self.stage}")
        if self.identifier:
            parts.append(f"identifier={self.identifier}")
        return f"{' '.join(parts)}: {self.detail}"

    def to_dict(self) -> dict[str, Any]:
        """Structured form used by the CLI's JSON result line."""
        return {
            "error": type(self).__name__,
            "detail": self.detail,
            "stage": self.stage,
            "identifier": self.identifier,
        }


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(AcmerenewError):
    """Missing or invalid required input; nothing was attempted."""

    exit_code = 2


# ---------------------------------------------------------------------------
# Key / CSR
# ---------------------------------------------------------------------------


class KeyGenerationError(AcmerenewError):
    """The private key could not be generated, loaded, or serialised."""

    exit_code = 3


class CsrBuildError(AcmerenewError):
    """The certificate signing request could not be built."""

    exit_code = 4


# ---------------------------------------------------------------------------
# ACME protocol
# ---------------------------------------------------------------------------


class AccountError(AcmerenewError):
    """Binding the account key to the CA failed."""

    exit_code = 5


class UnsupportedChallengeError(AcmerenewError):
    """The CA offered no http-01 challenge for an authorization."""

    exit_code = 6


class ChallengePublishError(AcmerenewError):
    """The challenge response could not be published or withdrawn."""

    exit_code = 14


class ChallengeRejectedError(AcmerenewError):
    """The CA permanently rejected an authorization or the order.

    ``problem`` holds the CA's RFC 7807 problem document when present.
    """

    exit_code = 7

    def __init__(
        self,
        detail: str,
        *,
        problem: dict[str, Any] | None = None,
        stage: str | None = None,
        identifier: str | None = None,
    ) -> None:
        self.problem = problem
        super().__init__(detail, retryable=False, stage=stage, identifier=identifier)


class ValidationTimeoutError(AcmerenewError):
    """Authorizations did not become valid before the deadline."""

    exit_code = 8


class FinalizationTimeoutError(AcmerenewError):
    """The order did not become valid before the deadline."""

    exit_code = 9


class AcmeProtocolError(AcmerenewError):
    """The CA answered with something the client cannot interpret."""

    exit_code = 11


class AcmeServerError(AcmeProtocolError):
    """The CA answered with an RFC 7807 problem document.

    Parameters
    ----------
    problem_type:
        The problem ``type`` URN (``urn:ietf:params:acme:error:...``).
    status:
        HTTP status code of the response.
    retry_after:
        Seconds from the ``Retry-After`` header, if the CA sent one.

    """

    def __init__(  # noqa: PLR0913
        self,
        detail: str,
        *,
        problem_type: str = "",
        status: int = 0,
        problem: dict[str, Any] | None = None,
        retry_after: float | None = None,
        stage: str | None = None,
        identifier: str | None = None,
    ) -> None:
        self.problem_type = problem_type
        self.status = status
        self.problem = problem or {}
        self.retry_after = retry_after
        retryable = (
            status >= 500  # noqa: PLR2004
            or problem_type in (RATE_LIMITED, BAD_NONCE, SERVER_INTERNAL)
        )
        super().__init__(detail, retryable=retryable, stage=stage, identifier=identifier)


class AcmeTransportError(AcmeProtocolError):
    """The CA could not be reached (connection, TLS, timeout)."""

    def __init__(self, detail: str, *, stage: str | None = None) -> None:
        super().__init__(detail, retryable=True, stage=stage)


# ---------------------------------------------------------------------------
# Install and collaborators
# ---------------------------------------------------------------------------


class InstallError(AcmerenewError):
    """Writing the output files failed.

    ``written`` lists the paths that were already replaced before the
    failure, so an operator can see what changed.
    """

    exit_code = 10

    def __init__(self, detail: str, *, written: list[str] | None = None) -> None:
        self.written = list(written or [])
        super().__init__(detail, stage="install")

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["written"] = self.written
        return data


class TrustBootstrapError(AcmerenewError):
    """The CA root certificate could not be fetched or installed."""

    exit_code = 12


class ServiceReloadError(AcmerenewError):
    """The web server could not be reloaded after a change.

    ``installed`` is set when this run replaced the certificate files
    before the reload failed; ``reload_pending`` when a later run will
    retry the reload.
    """

    exit_code = 13

    def __init__(
        self,
        detail: str,
        *,
        stage: str | None = "reload",
        installed: bool = False,
        reload_pending: bool = False,
    ) -> None:
        self.installed = installed
        self.reload_pending = reload_pending
        super().__init__(detail, stage=stage)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["installed"] = self.installed
        data["reload_pending"] = self.reload_pending
        return data
