"""Unit tests for acmerenew.core.state: observed ACME state machines."""

from __future__ import annotations

import logging

import pytest

from acmerenew.core.errors import AcmeProtocolError
from acmerenew.core.state import (
    AUTHORIZATION_TRANSITIONS,
    CHALLENGE_TRANSITIONS,
    ORDER_TRANSITIONS,
    advance,
    assert_transition,
    log_transition,
)
from acmerenew.core.types import (
    AuthorizationStatus,
    ChallengeStatus,
    OrderStatus,
)

# ---------------------------------------------------------------------------
# TestOrderTransitions
# ---------------------------------------------------------------------------


class TestOrderTransitions:
    @pytest.mark.parametrize(
        "current,target",
        [
            (OrderStatus.PENDING, OrderStatus.READY),
            (OrderStatus.PENDING, OrderStatus.INVALID),
            (OrderStatus.READY, OrderStatus.PROCESSING),
            (OrderStatus.READY, OrderStatus.VALID),  # fast CA skips processing
            (OrderStatus.READY, OrderStatus.INVALID),
            (OrderStatus.PROCESSING, OrderStatus.VALID),
            (OrderStatus.PROCESSING, OrderStatus.INVALID),
        ],
    )
    def test_valid_transitions(self, current, target):
        assert_transition(current, target, ORDER_TRANSITIONS)  # no exception

    @pytest.mark.parametrize("terminal", [OrderStatus.VALID, OrderStatus.INVALID])
    def test_terminal_states_reject_everything(self, terminal):
        for target in OrderStatus:
            if target == terminal:
                continue
            with pytest.raises(ValueError, match="Invalid transition"):
                assert_transition(terminal, target, ORDER_TRANSITIONS)

    def test_pending_cannot_jump_to_valid(self):
        with pytest.raises(ValueError, match="Invalid transition"):
            assert_transition(OrderStatus.PENDING, OrderStatus.VALID, ORDER_TRANSITIONS)

    def test_unknown_status(self):
        with pytest.raises(ValueError, match="Unknown status"):
            assert_transition("bogus", OrderStatus.VALID, ORDER_TRANSITIONS)

    def test_every_status_has_an_entry(self):
        assert set(ORDER_TRANSITIONS) == set(OrderStatus)


# ---------------------------------------------------------------------------
# TestAuthorizationTransitions
# ---------------------------------------------------------------------------


class TestAuthorizationTransitions:
    @pytest.mark.parametrize(
        "current,target",
        [
            (AuthorizationStatus.PENDING, AuthorizationStatus.VALID),
            (AuthorizationStatus.PENDING, AuthorizationStatus.INVALID),
            (AuthorizationStatus.PENDING, AuthorizationStatus.DEACTIVATED),
            (AuthorizationStatus.PENDING, AuthorizationStatus.EXPIRED),
            (AuthorizationStatus.PENDING, AuthorizationStatus.REVOKED),
            (AuthorizationStatus.VALID, AuthorizationStatus.DEACTIVATED),
            (AuthorizationStatus.VALID, AuthorizationStatus.EXPIRED),
        ],
    )
    def test_valid_transitions(self, current, target):
        assert_transition(current, target, AUTHORIZATION_TRANSITIONS)

    @pytest.mark.parametrize(
        "terminal",
        [
            AuthorizationStatus.INVALID,
            AuthorizationStatus.DEACTIVATED,
            AuthorizationStatus.EXPIRED,
            AuthorizationStatus.REVOKED,
        ],
    )
    def test_terminal_states(self, terminal):
        for target in AuthorizationStatus:
            if target == terminal:
                continue
            with pytest.raises(ValueError, match="Invalid transition"):
                assert_transition(terminal, target, AUTHORIZATION_TRANSITIONS)

    def test_every_status_has_an_entry(self):
        assert set(AUTHORIZATION_TRANSITIONS) == set(AuthorizationStatus)


# ---------------------------------------------------------------------------
# TestChallengeTransitions
# ---------------------------------------------------------------------------


class TestChallengeTransitions:
    @pytest.mark.parametrize(
        "current,target",
        [
            (ChallengeStatus.PENDING, ChallengeStatus.PROCESSING),
            (ChallengeStatus.PROCESSING, ChallengeStatus.VALID),
            (ChallengeStatus.PROCESSING, ChallengeStatus.INVALID),
            (ChallengeStatus.PROCESSING, ChallengeStatus.PENDING),  # retry
        ],
    )
    def test_valid_transitions(self, current, target):
        assert_transition(current, target, CHALLENGE_TRANSITIONS)

    @pytest.mark.parametrize("terminal", [ChallengeStatus.VALID, ChallengeStatus.INVALID])
    def test_terminal_states(self, terminal):
        for target in ChallengeStatus:
            if target == terminal:
                continue
            with pytest.raises(ValueError, match="Invalid transition"):
                assert_transition(terminal, target, CHALLENGE_TRANSITIONS)


# ---------------------------------------------------------------------------
# TestLogTransition
# ---------------------------------------------------------------------------


class TestLogTransition:
    def test_emits_structured_log(self, caplog):
        with caplog.at_level(logging.INFO, logger="acmerenew.core.state"):
            log_transition("order", "https://ca/order/1", OrderStatus.PENDING, OrderStatus.READY)
        assert "https://ca/order/1" in caplog.text
        assert "pending -> ready" in caplog.text
        record = caplog.records[-1]
        assert record.event == "state_transition"
        assert record.to_status == "ready"

    def test_reason_included(self, caplog):
        with caplog.at_level(logging.INFO, logger="acmerenew.core.state"):
            log_transition(
                "authorization",
                "www.example.com",
                AuthorizationStatus.PENDING,
                AuthorizationStatus.INVALID,
                reason="challenge failed",
            )
        assert "challenge failed" in caplog.text

    def test_non_enum_status(self, caplog):
        with caplog.at_level(logging.INFO, logger="acmerenew.core.state"):
            log_transition("challenge", "id1", "old_status", "new_status")
        assert "old_status" in caplog.text
        assert "new_status" in caplog.text


# ---------------------------------------------------------------------------
# TestAdvance
# ---------------------------------------------------------------------------


class TestAdvance:
    def test_unchanged_status_is_silent(self, caplog):
        with caplog.at_level(logging.INFO, logger="acmerenew.core.state"):
            result = advance(
                "order",
                "o1",
                OrderStatus.PENDING,
                OrderStatus.PENDING,
                ORDER_TRANSITIONS,
            )
        assert result is OrderStatus.PENDING
        assert caplog.records == []

    def test_allowed_change_is_logged(self, caplog):
        with caplog.at_level(logging.INFO, logger="acmerenew.core.state"):
            result = advance(
                "order",
                "o1",
                OrderStatus.READY,
                OrderStatus.PROCESSING,
                ORDER_TRANSITIONS,
            )
        assert result is OrderStatus.PROCESSING
        assert "ready -> processing" in caplog.text

    def test_disallowed_change_is_protocol_error(self):
        with pytest.raises(AcmeProtocolError, match="Invalid transition") as exc_info:
            advance("order", "o1", OrderStatus.VALID, OrderStatus.PENDING, ORDER_TRANSITIONS)
        assert exc_info.value.stage == "order"
