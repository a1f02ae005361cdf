"""ACME protocol engine: one order from creation to a downloaded chain.

Drives RFC 8555 §7 for http-01 only::

    bind account → newOrder → fetch authorizations → publish all
    challenges → respond to each → poll authorizations → (cleanup)
    → wait ready → finalize → poll order → download chain

The engine owns no global state: the HTTP client, the publisher and the
:class:`~acmerenew.acme.polling.Poller` (with its clock and sleep) are
passed in, so a fake CA can drive it end to end.

Usage::

    engine = AcmeEngine(client, account, publisher, poller, settings.polling)
    chain = engine.issue(request, csr)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from acmerenew.acme.client import PEM_CHAIN_CONTENT_TYPE
from acmerenew.core.errors import (
    AccountError,
    AcmeProtocolError,
    AcmerenewError,
    ChallengeRejectedError,
    FinalizationTimeoutError,
    UnsupportedChallengeError,
    ValidationTimeoutError,
)
from acmerenew.core.jws import b64url_encode, compute_thumbprint, key_authorization, public_jwk
from acmerenew.core.state import (
    AUTHORIZATION_TRANSITIONS,
    CHALLENGE_TRANSITIONS,
    ORDER_TRANSITIONS,
    advance,
)
from acmerenew.core.types import AuthorizationStatus, IdentifierType, OrderStatus
from acmerenew.models.account import AcmeAccount
from acmerenew.models.order import AcmeAuthorization, AcmeChallenge, AcmeOrder, Identifier
from acmerenew.models.request import is_ip
from acmerenew.pki.inspector import chain_from_pem

if TYPE_CHECKING:
    from acmerenew.acme.client import AcmeClient
    from acmerenew.acme.polling import Deadline, Poller
    from acmerenew.challenge.base import ChallengePublisher
    from acmerenew.config.settings import PollingSettings
    from acmerenew.core.jws import AccountKey
    from acmerenew.models.certificate import IssuedChain, SigningRequest
    from acmerenew.models.request import CertificateRequest

log = logging.getLogger(__name__)

# Authorization states that abort the order.
_REJECTED_AUTHZ = frozenset(
    {
        AuthorizationStatus.INVALID,
        AuthorizationStatus.EXPIRED,
        AuthorizationStatus.DEACTIVATED,
        AuthorizationStatus.REVOKED,
    }
)


def build_account(
    directory_url: str,
    key: AccountKey,
    *,
    contact_email: str | None = None,
) -> AcmeAccount:
    """Wrap an account key in an unbound :class:`AcmeAccount`."""
    jwk = public_jwk(key)
    contact = (f"mailto:{contact_email}",) if contact_email else ()
    return AcmeAccount(
        directory_url=directory_url,
        key=key,
        jwk=jwk,
        thumbprint=compute_thumbprint(jwk),
        contact=contact,
    )


@dataclass(frozen=True)
class _Published:
    token: str
    identifier: str


def _problem_detail(problem: dict | None) -> str:
    if not problem:
        return "no problem detail provided by the CA"
    ptype = problem.get("type", "")
    detail = problem.get("detail", "")
    return f"{ptype}: {detail}" if ptype and detail else (ptype or detail)


class AcmeEngine:
    """Runs a single issuance against an ACME directory.

    Parameters
    ----------
    client:
        Transport bound to the CA directory.
    account:
        Account key wrapper; bound lazily by :meth:`bind_account`.
    publisher:
        Makes http-01 responses reachable and withdraws them.
    poller:
        Backoff/deadline helper (owns ``sleep`` and ``clock``).
    polling:
        Stage and run timeouts.

    """

    def __init__(
        self,
        client: AcmeClient,
        account: AcmeAccount,
        publisher: ChallengePublisher,
        poller: Poller,
        polling: PollingSettings,
    ) -> None:
        self.client = client
        self.account = account
        self.publisher = publisher
        self.poller = poller
        self.polling = polling
        self._run_deadline: Deadline | None = None

    # -- deadlines ----------------------------------------------------------

    def _run(self) -> Deadline:
        if self._run_deadline is None:
            self._run_deadline = self.poller.deadline(self.polling.run_timeout_seconds)
        return self._run_deadline

    def _stage(self, seconds: float) -> Deadline:
        return self.poller.deadline(seconds, parent=self._run())

    # -- 1. account ---------------------------------------------------------

    def bind_account(self) -> AcmeAccount:
        """Register the account key, or find the existing registration.

        ``200`` (already registered) and ``201`` (created) both succeed;
        the ``Location`` header becomes the account ``kid``.

        Raises
        ------
        AccountError
            If the CA refuses the key or omits the account URL.

        """
        if self.account.kid:
            return self.account

        payload: dict = {"termsOfServiceAgreed": True}
        if self.account.contact:
            payload["contact"] = list(self.account.contact)

        try:
            response = self.poller.call(
                lambda: self.client.post(
                    self.client.endpoint("newAccount"),
                    payload,
                    account=self.account,
                    use_jwk=True,
                    stage="account",
                ),
                deadline=self._run(),
                what="account registration",
            )
        except AcmeProtocolError as exc:
            msg = f"Account binding failed: {exc.detail}"
            raise AccountError(msg, stage="account") from exc

        kid = response.location
        if not kid:
            msg = "CA accepted the account key but returned no account URL (Location header)"
            raise AccountError(msg, stage="account")

        self.account = replace(self.account, kid=kid)
        if response.status == 200:  # noqa: PLR2004
            log.info("Using existing ACME account %s", kid)
        else:
            log.info("Registered new ACME account %s", kid)
        return self.account

    # -- 2. order -----------------------------------------------------------

    def create_order(self, request: CertificateRequest) -> AcmeOrder:
        """Submit one identifier per SAN and return the new order."""
        identifiers = [
            Identifier(
                type=IdentifierType.IP if is_ip(name) else IdentifierType.DNS,
                value=name,
            ).to_json()
            for name in request.sorted_sans
        ]
        response = self.poller.call(
            lambda: self.client.post(
                self.client.endpoint("newOrder"),
                {"identifiers": identifiers},
                account=self.account,
                stage="order",
            ),
            deadline=self._run(),
            what="order creation",
        )
        if not response.location:
            msg = "CA created an order but returned no order URL (Location header)"
            raise AcmeProtocolError(msg, stage="order")

        order = AcmeOrder.from_json(response.location, response.json())
        ordered = {i.value for i in order.identifiers}
        if ordered != set(request.sans):
            msg = (
                f"CA order identifiers {sorted(ordered)} do not match the "
                f"requested names {sorted(request.sans)}"
            )
            raise AcmeProtocolError(msg, stage="order")
        if order.status == OrderStatus.INVALID:
            msg = f"CA created order {order.url} in state invalid: {_problem_detail(order.error)}"
            raise ChallengeRejectedError(msg, problem=order.error, stage="order")
        if order.status not in (OrderStatus.PENDING, OrderStatus.READY):
            msg = f"CA returned order {order.url} in unexpected state {order.status.value}"
            raise AcmeProtocolError(msg, stage="order")

        log.info(
            "Created order %s for %s (status %s, %d authorizations)",
            order.url,
            ", ".join(request.sorted_sans),
            order.status.value,
            len(order.authorizations),
        )
        return order

    def fetch_order(self, url: str) -> tuple[AcmeOrder, float | None]:
        response = self.client.post_as_get(url, account=self.account, stage="order")
        return AcmeOrder.from_json(url, response.json()), response.retry_after

    def fetch_authorization(self, url: str) -> tuple[AcmeAuthorization, float | None]:
        response = self.client.post_as_get(url, account=self.account, stage="authorization")
        return AcmeAuthorization.from_json(url, response.json()), response.retry_after

    # -- 3. challenge selection ---------------------------------------------

    @staticmethod
    def select_challenges(
        authorizations: list[AcmeAuthorization],
    ) -> list[tuple[AcmeAuthorization, AcmeChallenge]]:
        """Pick the http-01 challenge of every authorization still pending.

        Raises
        ------
        UnsupportedChallengeError
            If a pending authorization offers no http-01 challenge.
        ChallengeRejectedError
            If an authorization is already in a failed state.

        """
        selected = []
        for authz in authorizations:
            name = authz.identifier.value
            if authz.status == AuthorizationStatus.VALID:
                log.info("Authorization for %s is already valid, skipping challenge", name)
                continue
            if authz.status in _REJECTED_AUTHZ:
                msg = (
                    f"Authorization for {name} is {authz.status.value}: "
                    f"{_problem_detail(authz.problem())}"
                )
                raise ChallengeRejectedError(
                    msg,
                    problem=authz.problem(),
                    stage="authorize",
                    identifier=name,
                )
            challenge = authz.http01()
            if challenge is None:
                offered = ", ".join(sorted(c.type for c in authz.challenges)) or "none"
                msg = f"CA offered no http-01 challenge for {name} (offered: {offered})"
                raise UnsupportedChallengeError(msg, stage="authorize", identifier=name)
            selected.append((authz, challenge))
        return selected

    # -- 4-7. publish, respond, poll, cleanup -------------------------------

    def _publish_all(
        self,
        selected: list[tuple[AcmeAuthorization, AcmeChallenge]],
        published: list[_Published],
    ) -> None:
        for authz, challenge in selected:
            name = authz.identifier.value
            self.publisher.publish(
                token=challenge.token,
                key_authorization=key_authorization(challenge.token, self.account.jwk),
                identifier=name,
            )
            published.append(_Published(token=challenge.token, identifier=name))

    def _respond(self, authz: AcmeAuthorization, challenge: AcmeChallenge) -> None:
        self.poller.call(
            lambda: self.client.post(
                challenge.url,
                {},
                account=self.account,
                stage="validate",
            ),
            deadline=self._run(),
            what=f"challenge response for {authz.identifier.value}",
        )
        log.info("Asked CA to validate %s", authz.identifier.value)

    def _cleanup(self, published: list[_Published]) -> None:
        for item in published:
            try:
                self.publisher.unpublish(token=item.token, identifier=item.identifier)
            except AcmerenewError as exc:
                log.error(  # noqa: TRY400
                    "Failed to remove challenge for %s: %s",
                    item.identifier,
                    exc.detail,
                )
            except Exception:
                log.exception("Failed to remove challenge for %s", item.identifier)

    def _wait_for_authorizations(self, pending: list[AcmeAuthorization]) -> None:
        """Poll *pending* in rounds until all are valid.

        Raises
        ------
        ChallengeRejectedError
            As soon as any authorization reaches a failed state.
        ValidationTimeoutError
            If the validation deadline passes first.

        """
        statuses = {a.url: a.status for a in pending}
        names = {a.url: a.identifier.value for a in pending}
        challenges = {a.url: a.http01().status for a in pending if a.http01() is not None}

        def poll_round() -> tuple[bool, float | None]:
            hint: float | None = None
            for url in [u for u, s in statuses.items() if s != AuthorizationStatus.VALID]:
                authz, retry_after = self.fetch_authorization(url)
                if retry_after is not None:
                    hint = max(hint or 0.0, retry_after)
                challenge = authz.http01()
                if challenge is not None and url in challenges:
                    challenges[url] = advance(
                        "challenge",
                        names[url],
                        challenges[url],
                        challenge.status,
                        CHALLENGE_TRANSITIONS,
                    )
                statuses[url] = advance(
                    "authorization",
                    names[url],
                    statuses[url],
                    authz.status,
                    AUTHORIZATION_TRANSITIONS,
                )
                if authz.status in _REJECTED_AUTHZ:
                    problem = authz.problem()
                    msg = (
                        f"CA rejected authorization for {names[url]} "
                        f"({authz.status.value}): {_problem_detail(problem)}"
                    )
                    raise ChallengeRejectedError(
                        msg,
                        problem=problem,
                        stage="validate",
                        identifier=names[url],
                    )
            return all(s == AuthorizationStatus.VALID for s in statuses.values()), hint

        self.poller.poll(
            poll_round,
            bool,
            deadline=self._stage(self.polling.validation_timeout_seconds),
            what="authorizations of " + ", ".join(sorted(names.values())),
            on_timeout=ValidationTimeoutError,
            stage="validate",
        )
        log.info("All authorizations valid: %s", ", ".join(sorted(names.values())))

    def authorize(self, order: AcmeOrder) -> None:
        """Satisfy every authorization of *order* via http-01.

        All challenges are published before the CA is asked to validate
        any of them; every published challenge is withdrawn afterwards,
        whatever the outcome.
        """
        authorizations = [
            self.poller.call(
                lambda url=url: self.fetch_authorization(url)[0],
                deadline=self._run(),
                what=f"authorization {url}",
            )
            for url in order.authorizations
        ]
        selected = self.select_challenges(authorizations)
        if not selected:
            return

        published: list[_Published] = []
        try:
            self._publish_all(selected, published)
            for authz, challenge in selected:
                self._respond(authz, challenge)
            self._wait_for_authorizations([authz for authz, _ in selected])
        finally:
            self._cleanup(published)

    # -- 8. finalize --------------------------------------------------------

    def _reject_order(self, order: AcmeOrder, stage: str) -> ChallengeRejectedError:
        msg = f"CA marked order {order.url} invalid: {_problem_detail(order.error)}"
        return ChallengeRejectedError(msg, problem=order.error, stage=stage)

    def _poll_order(  # noqa: PLR0913
        self,
        order: AcmeOrder,
        targets: frozenset[OrderStatus],
        *,
        seconds: float,
        on_timeout: type[AcmerenewError],
        stage: str,
    ) -> AcmeOrder:
        current = {"order": order}

        def fetch() -> tuple[AcmeOrder, float | None]:
            latest, retry_after = self.fetch_order(order.url)
            advance(
                "order",
                order.url,
                current["order"].status,
                latest.status,
                ORDER_TRANSITIONS,
            )
            current["order"] = latest
            if latest.status == OrderStatus.INVALID:
                raise self._reject_order(latest, stage)
            return latest, retry_after

        if order.status in targets:
            return order
        return self.poller.poll(
            fetch,
            lambda o: o.status in targets,
            deadline=self._stage(seconds),
            what=f"order {order.url}",
            on_timeout=on_timeout,
            stage=stage,
        )

    def finalize(self, order: AcmeOrder, csr: SigningRequest) -> AcmeOrder:
        """Submit *csr* once the order is ready and wait for ``valid``.

        Raises
        ------
        ChallengeRejectedError
            If the order becomes invalid.
        ValidationTimeoutError
            If the order never becomes ready.
        FinalizationTimeoutError
            If the order never becomes valid after finalize.

        """
        order = self._poll_order(
            order,
            frozenset({OrderStatus.READY}),
            seconds=self.polling.validation_timeout_seconds,
            on_timeout=ValidationTimeoutError,
            stage="validate",
        )

        response = self.poller.call(
            lambda: self.client.post(
                order.finalize_url,
                {"csr": b64url_encode(csr.der)},
                account=self.account,
                stage="finalize",
            ),
            deadline=self._run(),
            what="finalize",
        )
        finalized = AcmeOrder.from_json(order.url, response.json())
        advance("order", order.url, order.status, finalized.status, ORDER_TRANSITIONS)
        if finalized.status == OrderStatus.INVALID:
            raise self._reject_order(finalized, "finalize")
        log.info("Submitted CSR for order %s", order.url)

        order = self._poll_order(
            finalized,
            frozenset({OrderStatus.VALID}),
            seconds=self.polling.finalization_timeout_seconds,
            on_timeout=FinalizationTimeoutError,
            stage="finalize",
        )
        if not order.certificate_url:
            msg = f"Order {order.url} is valid but has no certificate URL"
            raise AcmeProtocolError(msg, stage="finalize")
        return order

    # -- 9. download --------------------------------------------------------

    def download(self, order: AcmeOrder) -> IssuedChain:
        """Fetch and split the PEM chain of a valid order."""
        if order.status != OrderStatus.VALID or not order.certificate_url:
            msg = f"Order {order.url} is {order.status.value}; nothing to download"
            raise AcmeProtocolError(msg, stage="download")
        url = order.certificate_url
        response = self.poller.call(
            lambda: self.client.post_as_get(
                url,
                account=self.account,
                accept=PEM_CHAIN_CONTENT_TYPE,
                stage="download",
            ),
            deadline=self._run(),
            what="certificate download",
        )
        chain = chain_from_pem(response.body)
        log.info("Downloaded certificate chain from %s", url)
        return chain

    # -- whole run ----------------------------------------------------------

    def issue(self, request: CertificateRequest, csr: SigningRequest) -> IssuedChain:
        """Run the full protocol for *request* and return the issued chain."""
        if set(csr.sans) != set(request.sans):
            msg = "CSR names do not match the certificate request"
            raise AcmeProtocolError(msg, stage="order")
        self._run_deadline = None
        self.bind_account()
        order = self.create_order(request)
        if order.status == OrderStatus.PENDING:
            self.authorize(order)
        order = self.finalize(order, csr)
        return self.download(order)
