"""ACME resource state machines as observed by a client (RFC 8555 §7.1.6).

Defines the status transitions the engine accepts when it re-reads an
order, authorization or challenge.  A client observes snapshots, so a
fast CA may skip an intermediate state (``ready`` straight to ``valid``
after finalize); the tables allow exactly those skips and nothing else.

Usage::

    from acmerenew.core.state import ORDER_TRANSITIONS, advance
    from acmerenew.core.types import OrderStatus

    status = advance("order", url, OrderStatus.PENDING, OrderStatus.READY,
                     ORDER_TRANSITIONS)
"""

from __future__ import annotations

import logging

from acmerenew.core.errors import AcmeProtocolError
from acmerenew.core.types import (
    AuthorizationStatus,
    ChallengeStatus,
    OrderStatus,
)

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Order: pending → ready/invalid, ready → processing/valid/invalid,
#        processing → valid/invalid.  valid & invalid are terminal.
# ---------------------------------------------------------------------------

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.READY, OrderStatus.INVALID}),
    OrderStatus.READY: frozenset(
        {OrderStatus.PROCESSING, OrderStatus.VALID, OrderStatus.INVALID},
    ),
    OrderStatus.PROCESSING: frozenset({OrderStatus.VALID, OrderStatus.INVALID}),
    OrderStatus.VALID: frozenset(),
    OrderStatus.INVALID: frozenset(),
}

# ---------------------------------------------------------------------------
# Authorization: pending → any terminal, valid → deactivated/revoked/expired.
# ---------------------------------------------------------------------------

AUTHORIZATION_TRANSITIONS: dict[AuthorizationStatus, frozenset[AuthorizationStatus]] = {
    AuthorizationStatus.PENDING: frozenset(
        {
            AuthorizationStatus.VALID,
            AuthorizationStatus.INVALID,
            AuthorizationStatus.DEACTIVATED,
            AuthorizationStatus.EXPIRED,
            AuthorizationStatus.REVOKED,
        }
    ),
    AuthorizationStatus.VALID: frozenset(
        {
            AuthorizationStatus.DEACTIVATED,
            AuthorizationStatus.REVOKED,
            AuthorizationStatus.EXPIRED,
        }
    ),
    AuthorizationStatus.INVALID: frozenset(),
    AuthorizationStatus.DEACTIVATED: frozenset(),
    AuthorizationStatus.EXPIRED: frozenset(),
    AuthorizationStatus.REVOKED: frozenset(),
}

# ---------------------------------------------------------------------------
# Challenge: pending → processing/valid/invalid,
#            processing → valid/invalid/pending (CA retry)
# ---------------------------------------------------------------------------

CHALLENGE_TRANSITIONS: dict[ChallengeStatus, frozenset[ChallengeStatus]] = {
    ChallengeStatus.PENDING: frozenset(
        {ChallengeStatus.PROCESSING, ChallengeStatus.VALID, ChallengeStatus.INVALID},
    ),
    ChallengeStatus.PROCESSING: frozenset(
        {
            ChallengeStatus.VALID,
            ChallengeStatus.INVALID,
            ChallengeStatus.PENDING,  # retry
        }
    ),
    ChallengeStatus.VALID: frozenset(),
    ChallengeStatus.INVALID: frozenset(),
}


def assert_transition(
    current: OrderStatus | AuthorizationStatus | ChallengeStatus,
    target: OrderStatus | AuthorizationStatus | ChallengeStatus,
    table: dict,
) -> None:
    """Raise :class:`ValueError` if *current* → *target* is not allowed.

    Parameters
    ----------
    current:
        The last observed status of the resource.
    target:
        The newly observed status.
    table:
        One of :data:`ORDER_TRANSITIONS`, :data:`AUTHORIZATION_TRANSITIONS`,
        or :data:`CHALLENGE_TRANSITIONS`.

    """
    allowed = table.get(current)
    if allowed is None:
        msg = f"Unknown status {current!r}"
        raise ValueError(msg)
    if target not in allowed:
        msg = (
            f"Invalid transition {current.value!r} -> {target.value!r}; "
            f"allowed targets: {sorted(s.value for s in allowed) or '(terminal)'}"
        )
        raise ValueError(
            msg,
        )


def log_transition(
    resource_type: str,
    resource_id,
    from_status,
    to_status,
    *,
    reason: str | None = None,
) -> None:
    """Emit a structured log entry for an observed state transition.

    Parameters
    ----------
    resource_type:
        ``"order"``, ``"authorization"``, or ``"challenge"``.
    resource_id:
        The resource URL (or identifier for authorizations).
    from_status:
        The previous status value.
    to_status:
        The new status value.
    reason:
        Optional human-readable reason for the transition.

    """
    extra = {
        "event": "state_transition",
        "resource_type": resource_type,
        "resource_id": str(resource_id),
        "from_status": from_status.value if hasattr(from_status, "value") else str(from_status),
        "to_status": to_status.value if hasattr(to_status, "value") else str(to_status),
    }
    if reason:
        extra["reason"] = reason
    log.info(
        "%s %s: %s -> %s%s",
        resource_type,
        resource_id,
        extra["from_status"],
        extra["to_status"],
        f" ({reason})" if reason else "",
        extra=extra,
    )


def advance(
    resource_type: str,
    resource_id,
    current,
    target,
    table: dict,
    *,
    reason: str | None = None,
):
    """Record an observed status change and return the new status.

    Unchanged statuses are returned silently.  A change the table does
    not allow means the CA is misbehaving and is raised as
    :class:`AcmeProtocolError`.
    """
    if current == target:
        return target
    try:
        assert_transition(current, target, table)
    except ValueError as exc:
        msg = f"{resource_type} {resource_id}: {exc}"
        raise AcmeProtocolError(msg, stage=resource_type) from exc
    log_transition(resource_type, resource_id, current, target, reason=reason)
    return target
