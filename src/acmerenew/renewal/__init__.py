"""Renewal decision."""

from acmerenew.renewal.policy import renewal_reason, should_renew

__all__ = ["renewal_reason", "should_renew"]
