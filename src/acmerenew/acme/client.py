"""ACME v2 HTTP client (RFC 8555 §6, §7.1, §7.2).

Thin transport used by the protocol engine: directory discovery, a
small ``Replay-Nonce`` pool, JWS-signed POST and POST-as-GET requests,
and translation of RFC 7807 problem documents into
:class:`~acmerenew.core.errors.AcmeServerError`.

Built on ``urllib.request`` with an explicit :class:`ssl.SSLContext`, so
a private CA bundle (step-ca, internal PKI) can be pinned per client.
The client holds no account state; callers pass the
:class:`~acmerenew.models.AcmeAccount` on every signed request.
"""

from __future__ import annotations

import contextlib
import email.utils
import json
import logging
import ssl
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from acmerenew.core.errors import (
    BAD_NONCE,
    AcmeProtocolError,
    AcmeServerError,
    AcmeTransportError,
)
from acmerenew.core.jws import sign_request
from acmerenew.logging.sanitize import sanitize_for_logs

if TYPE_CHECKING:
    from acmerenew.config.settings import AcmeSettings
    from acmerenew.models.account import AcmeAccount

log = logging.getLogger(__name__)

JOSE_CONTENT_TYPE = "application/jose+json"
PROBLEM_CONTENT_TYPE = "application/problem+json"
PEM_CHAIN_CONTENT_TYPE = "application/pem-certificate-chain"

_MAX_ERROR_BODY = 4096
_NONCE_POOL_SIZE = 4


@dataclass(frozen=True)
class AcmeResponse:
    """A CA response with the headers the protocol cares about."""

    status: int
    url: str
    body: bytes
    headers: dict[str, str] = field(default_factory=dict)

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    @property
    def location(self) -> str | None:
        return self.header("Location")

    @property
    def retry_after(self) -> float | None:
        return parse_retry_after(self.header("Retry-After"))

    def json(self) -> dict[str, Any]:
        """Decode the body as a JSON object.

        Raises
        ------
        AcmeProtocolError
            If the body is not a JSON object.

        """
        try:
            data = json.loads(self.body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            msg = f"CA returned invalid JSON from {self.url}: {exc}"
            raise AcmeProtocolError(msg) from exc
        if not isinstance(data, dict):
            msg = f"CA returned a JSON {type(data).__name__} from {self.url}, expected an object"
            raise AcmeProtocolError(msg)
        return data


def parse_retry_after(value: str | None) -> float | None:
    """Parse a ``Retry-After`` header (delta-seconds or HTTP-date)."""
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - datetime.now(UTC)).total_seconds())


def _lower_headers(headers: Any) -> dict[str, str]:  # noqa: ANN401
    if headers is None:
        return {}
    return {k.lower(): v for k, v in headers.items()}


class AcmeClient:
    """Blocking ACME transport bound to one directory URL.

    Parameters
    ----------
    directory_url:
        The CA's ACME directory.
    timeout:
        Per-request socket timeout in seconds.
    ca_bundle:
        Optional PEM bundle used instead of the system trust store.
    verify_ssl:
        Disable certificate verification (test CAs only).
    user_agent:
        ``User-Agent`` header value (RFC 8555 §6.1 asks clients to send one).
    opener:
        Pre-built :class:`urllib.request.OpenerDirector`; mainly for tests.

    """

    def __init__(  # noqa: PLR0913
        self,
        directory_url: str,
        *,
        timeout: float = 30,
        ca_bundle: str | None = None,
        verify_ssl: bool = True,
        user_agent: str = "acmerenew",
        opener: urllib.request.OpenerDirector | None = None,
    ) -> None:
        self.directory_url = directory_url
        self._timeout = timeout
        self._user_agent = user_agent
        self._opener = opener or self._build_opener(ca_bundle, verify_ssl=verify_ssl)
        self._directory: dict[str, Any] | None = None
        self._nonces: list[str] = []

    @classmethod
    def from_settings(cls, settings: AcmeSettings) -> AcmeClient:
        return cls(
            settings.directory_url,
            timeout=settings.timeout_seconds,
            ca_bundle=settings.ca_bundle,
            verify_ssl=settings.verify_ssl,
            user_agent=settings.user_agent,
        )

    @staticmethod
    def _build_opener(
        ca_bundle: str | None,
        *,
        verify_ssl: bool,
    ) -> urllib.request.OpenerDirector:
        ctx = ssl.create_default_context(cafile=ca_bundle)
        if not verify_ssl:
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
        return urllib.request.build_opener(urllib.request.HTTPSHandler(context=ctx))

    # -- raw HTTP -----------------------------------------------------------

    def _request(
        self,
        method: str,
        url: str,
        *,
        data: bytes | None = None,
        headers: dict[str, str] | None = None,
        stage: str | None = None,
    ) -> AcmeResponse:
        req = urllib.request.Request(url, data=data, method=method)
        req.add_header("User-Agent", self._user_agent)
        for name, value in (headers or {}).items():
            req.add_header(name, value)

        try:
            resp = self._opener.open(req, timeout=self._timeout)
        except urllib.error.HTTPError as exc:
            body = b""
            with contextlib.suppress(OSError):
                body = exc.read()[:_MAX_ERROR_BODY]
            response = AcmeResponse(
                status=exc.code,
                url=url,
                body=body,
                headers=_lower_headers(exc.headers),
            )
            self._remember_nonce(response)
            raise self._problem(response, stage=stage) from exc
        except (urllib.error.URLError, OSError) as exc:
            msg = f"Failed to reach CA at {url}: {exc}"
            raise AcmeTransportError(msg, stage=stage) from exc

        with contextlib.closing(resp):
            try:
                body = resp.read()
            except OSError as exc:
                msg = f"Error reading CA response from {url}: {exc}"
                raise AcmeTransportError(msg, stage=stage) from exc
            response = AcmeResponse(
                status=resp.status,
                url=url,
                body=body,
                headers=_lower_headers(resp.headers),
            )
        self._remember_nonce(response)
        return response

    @staticmethod
    def _problem(response: AcmeResponse, *, stage: str | None) -> AcmeServerError:
        problem: dict[str, Any] = {}
        with contextlib.suppress(AcmeProtocolError):
            problem = response.json()
        problem_type = str(problem.get("type", ""))
        detail = problem.get("detail") or response.body.decode("utf-8", errors="replace")[:500]
        msg = f"CA returned HTTP {response.status} for {response.url}"
        if problem_type:
            msg += f" ({problem_type})"
        if detail:
            msg += f": {detail}"
        return AcmeServerError(
            msg,
            problem_type=problem_type,
            status=response.status,
            problem=problem,
            retry_after=response.retry_after,
            stage=stage,
        )

    def _remember_nonce(self, response: AcmeResponse) -> None:
        nonce = response.header("Replay-Nonce")
        if nonce and len(self._nonces) < _NONCE_POOL_SIZE:
            self._nonces.append(nonce)

    # -- directory / nonce --------------------------------------------------

    def directory(self) -> dict[str, Any]:
        """Fetch (once) and return the ACME directory object."""
        if self._directory is None:
            response = self._request("GET", self.directory_url, stage="directory")
            self._directory = response.json()
            log.debug("ACME directory %s: %s", self.directory_url, sorted(self._directory))
        return self._directory

    def endpoint(self, name: str) -> str:
        """Return the URL of directory resource *name* (``newOrder`` ...)."""
        url = self.directory().get(name)
        if not isinstance(url, str) or not url:
            msg = f"ACME directory {self.directory_url} has no '{name}' endpoint"
            raise AcmeProtocolError(msg, stage="directory")
        return url

    def new_nonce(self) -> str:
        """Return a fresh nonce, from the pool or via ``newNonce``."""
        if self._nonces:
            return self._nonces.pop()
        response = self._request("HEAD", self.endpoint("newNonce"), stage="nonce")
        nonce = response.header("Replay-Nonce")
        if not nonce:
            msg = "CA newNonce response carried no Replay-Nonce header"
            raise AcmeProtocolError(msg, stage="nonce")
        self._nonces.clear()
        return nonce

    # -- signed requests ----------------------------------------------------

    def post(  # noqa: PLR0913
        self,
        url: str,
        payload: Any,  # noqa: ANN401
        *,
        account: AcmeAccount,
        use_jwk: bool = False,
        accept: str | None = None,
        stage: str | None = None,
    ) -> AcmeResponse:
        """Send a JWS-signed POST; ``payload=None`` means POST-as-GET.

        A ``badNonce`` rejection is retried once with a fresh nonce, as
        RFC 8555 §6.5 expects clients to do.

        Parameters
        ----------
        url:
            Target URL.
        payload:
            JSON payload, or ``None`` for POST-as-GET.
        account:
            The account whose key signs the request.
        use_jwk:
            Embed the public JWK instead of ``kid`` (``newAccount`` only).
        accept:
            Optional ``Accept`` header (certificate download).
        stage:
            Issuance stage recorded on raised errors.

        """
        kid = None if use_jwk else account.kid
        if not use_jwk and kid is None:
            msg = "Account is not bound yet; call newAccount first"
            raise AcmeProtocolError(msg, stage=stage)

        headers = {"Content-Type": JOSE_CONTENT_TYPE}
        if accept:
            headers["Accept"] = accept

        log.debug(
            "ACME POST %s payload=%s",
            url,
            sanitize_for_logs(payload) if payload is not None else "<post-as-get>",
        )
        for attempt in (1, 2):
            body = sign_request(
                account.key,
                payload,
                url=url,
                nonce=self.new_nonce(),
                kid=kid,
            )
            try:
                return self._request(
                    "POST",
                    url,
                    data=json.dumps(body).encode("utf-8"),
                    headers=headers,
                    stage=stage,
                )
            except AcmeServerError as exc:
                if exc.problem_type == BAD_NONCE and attempt == 1:
                    log.info("CA rejected nonce for %s; retrying with a fresh one", url)
                    continue
                raise
        msg = f"CA rejected two consecutive nonces for {url}"  # pragma: no cover
        raise AcmeProtocolError(msg, stage=stage)  # pragma: no cover

    def post_as_get(
        self,
        url: str,
        *,
        account: AcmeAccount,
        accept: str | None = None,
        stage: str | None = None,
    ) -> AcmeResponse:
        """Fetch a resource with POST-as-GET (RFC 8555 §6.3)."""
        return self.post(url, None, account=account, accept=accept, stage=stage)
