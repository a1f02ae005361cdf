"""Unit tests for acmerenew.core.types."""

from __future__ import annotations

import pytest

from acmerenew.core.errors import AcmeProtocolError
from acmerenew.core.types import (
    AuthorizationStatus,
    ChallengeStatus,
    ChallengeType,
    OrderStatus,
    parse_status,
)


class TestEnums:
    def test_values_match_wire_strings(self):
        assert OrderStatus.PROCESSING == "processing"
        assert AuthorizationStatus.DEACTIVATED.value == "deactivated"
        assert ChallengeType.HTTP_01.value == "http-01"

    def test_order_statuses(self):
        assert {s.value for s in OrderStatus} == {
            "pending",
            "ready",
            "processing",
            "valid",
            "invalid",
        }


class TestParseStatus:
    def test_known_status(self):
        assert parse_status(OrderStatus, "ready", resource="order") is OrderStatus.READY

    @pytest.mark.parametrize("raw", ["bogus", None, 3, ""])
    def test_unknown_status_is_protocol_error(self, raw):
        with pytest.raises(AcmeProtocolError, match="unknown challenge status") as exc_info:
            parse_status(ChallengeStatus, raw, resource="challenge")
        assert exc_info.value.stage == "challenge"
