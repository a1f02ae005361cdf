"""Renewal policy: decide whether a run must act.

Pure functions only; the caller supplies the inspected certificate and
the clock, so the decision is trivially testable.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from acmerenew.core.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Set

    from acmerenew.models.certificate import ExistingCertificate


def renewal_reason(
    existing: ExistingCertificate | None,
    requested_sans: Set[str],
    threshold_days: int,
    force: bool,  # noqa: FBT001
    *,
    now: datetime | None = None,
) -> str | None:
    """Return why a renewal is needed, or ``None`` to skip.

    Rules are evaluated in order: forced, no certificate, SAN mismatch,
    inside the renewal window.

    Raises
    ------
    ConfigurationError
        If *threshold_days* is negative.

    """
    if threshold_days < 0:
        msg = f"renewal threshold must be >= 0 days (got {threshold_days})"
        raise ConfigurationError(msg)

    if force:
        return "renewal forced"
    if existing is None:
        return "no existing certificate"
    if set(existing.sans) != set(requested_sans):
        added = sorted(set(requested_sans) - set(existing.sans))
        removed = sorted(set(existing.sans) - set(requested_sans))
        return f"SAN set changed (added {added}, removed {removed})"

    current = now or datetime.now(UTC)
    remaining = existing.not_after - current
    if remaining < timedelta(days=threshold_days):
        return (
            f"certificate expires {existing.not_after.isoformat()}, "
            f"within {threshold_days} day renewal window"
        )
    return None


def should_renew(
    existing: ExistingCertificate | None,
    requested_sans: Set[str],
    threshold_days: int,
    force: bool,  # noqa: FBT001
    *,
    now: datetime | None = None,
) -> bool:
    """Return ``True`` when a new certificate must be issued."""
    return (
        renewal_reason(existing, requested_sans, threshold_days, force, now=now) is not None
    )
