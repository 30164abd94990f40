"""Unit tests for lifecycle statuses and StatusStateMachine.

Tests cover:
- Every (from, to) pair against the documented transition tables
- Terminal-state restrictions
- Status predicates
- Happy-path transaction workflow
"""

import itertools

import pytest

from positionledger.services.ledger.exceptions import InvalidStateTransition
from positionledger.services.ledger.status import (
    HOLDING_TRANSITIONS,
    PORTFOLIO_TRANSITIONS,
    TRANSACTION_TRANSITIONS,
    HoldingStatus,
    PortfolioStatus,
    StatusStateMachine,
    TransactionStatus,
)

EXPECTED_HOLDING_SUCCESSORS = {
    HoldingStatus.WATCHING: {HoldingStatus.ACTIVE, HoldingStatus.ARCHIVED, HoldingStatus.INACTIVE},
    HoldingStatus.INACTIVE: {HoldingStatus.ACTIVE, HoldingStatus.ARCHIVED, HoldingStatus.CLOSED},
    HoldingStatus.SUSPENDED: {HoldingStatus.ACTIVE, HoldingStatus.INACTIVE, HoldingStatus.RESTRICTED},
    HoldingStatus.ON_HOLD: {HoldingStatus.ACTIVE, HoldingStatus.UNDER_REVIEW, HoldingStatus.ERROR},
    HoldingStatus.PARTIAL_CLOSE: {HoldingStatus.ACTIVE, HoldingStatus.CLOSED, HoldingStatus.LIQUIDATING},
    HoldingStatus.LIQUIDATING: {HoldingStatus.CLOSED, HoldingStatus.ACTIVE, HoldingStatus.ERROR},
    HoldingStatus.TRANSFER_PENDING: {HoldingStatus.ACTIVE, HoldingStatus.ERROR, HoldingStatus.CLOSED},
    HoldingStatus.RESTRICTED: {HoldingStatus.ACTIVE, HoldingStatus.SUSPENDED, HoldingStatus.DELISTED},
    HoldingStatus.DELISTED: {HoldingStatus.CLOSED, HoldingStatus.ARCHIVED},
    HoldingStatus.UNDER_REVIEW: {HoldingStatus.ACTIVE, HoldingStatus.SUSPENDED, HoldingStatus.ERROR},
    HoldingStatus.CORPORATE_ACTION: {HoldingStatus.ACTIVE, HoldingStatus.UNDER_REVIEW},
    HoldingStatus.ERROR: {HoldingStatus.ACTIVE, HoldingStatus.UNDER_REVIEW, HoldingStatus.ON_HOLD},
    HoldingStatus.CLOSED: {HoldingStatus.ACTIVE},
    HoldingStatus.ARCHIVED: {HoldingStatus.ACTIVE},
}


def _expected(table, from_status, to_status) -> bool:
    return from_status == to_status or to_status in table[from_status]


class TestHoldingTransitions:
    """Test the holding lifecycle table."""

    @pytest.mark.parametrize(
        "from_status,to_status",
        list(itertools.product(HoldingStatus, HoldingStatus)),
        ids=lambda s: s.value,
    )
    def test_every_pair_matches_table(self, from_status, to_status):
        """Test can_transition agrees with the static table for every pair."""
        assert StatusStateMachine.can_transition(from_status, to_status) == _expected(
            HOLDING_TRANSITIONS, from_status, to_status
        )

    def test_table_covers_every_status(self):
        """Test every holding status has a row."""
        assert set(HOLDING_TRANSITIONS) == set(HoldingStatus)

    @pytest.mark.parametrize("from_status", list(EXPECTED_HOLDING_SUCCESSORS), ids=lambda s: s.value)
    def test_successor_sets(self, from_status):
        """Test non-ACTIVE rows have exactly the documented successors."""
        assert StatusStateMachine.allowed_transitions(from_status) == EXPECTED_HOLDING_SUCCESSORS[from_status]

    @pytest.mark.parametrize("to_status", list(HoldingStatus), ids=lambda s: s.value)
    def test_active_reaches_everything(self, to_status):
        """Test ACTIVE may move to any status."""
        assert StatusStateMachine.can_transition(HoldingStatus.ACTIVE, to_status)

    @pytest.mark.parametrize("terminal", [HoldingStatus.CLOSED, HoldingStatus.ARCHIVED], ids=lambda s: s.value)
    def test_terminal_only_returns_to_active(self, terminal):
        """Test CLOSED and ARCHIVED can only go back to ACTIVE."""
        reachable = {s for s in HoldingStatus if s != terminal and StatusStateMachine.can_transition(terminal, s)}
        assert reachable == {HoldingStatus.ACTIVE}

    def test_closed_cannot_be_archived(self):
        """Test the terminal restriction applies between terminal states too."""
        assert not StatusStateMachine.can_transition(HoldingStatus.CLOSED, HoldingStatus.ARCHIVED)


class TestPortfolioTransitions:
    """Test the portfolio lifecycle table."""

    @pytest.mark.parametrize(
        "from_status,to_status",
        list(itertools.product(PortfolioStatus, PortfolioStatus)),
        ids=lambda s: s.value,
    )
    def test_every_pair_matches_table(self, from_status, to_status):
        """Test can_transition agrees with the static table for every pair."""
        assert StatusStateMachine.can_transition(from_status, to_status) == _expected(
            PORTFOLIO_TRANSITIONS, from_status, to_status
        )

    @pytest.mark.parametrize("terminal", [PortfolioStatus.CLOSED, PortfolioStatus.ARCHIVED], ids=lambda s: s.value)
    def test_terminal_only_returns_to_active(self, terminal):
        """Test CLOSED and ARCHIVED portfolios can only be reactivated."""
        assert StatusStateMachine.allowed_transitions(terminal) == {PortfolioStatus.ACTIVE}

    def test_modification_statuses(self):
        """Test ACTIVE, INACTIVE and PENDING allow modification."""
        allowed = {s for s in PortfolioStatus if s.allows_modifications}
        assert allowed == {PortfolioStatus.ACTIVE, PortfolioStatus.INACTIVE, PortfolioStatus.PENDING}

    def test_only_active_allows_transactions(self):
        """Test only ACTIVE portfolios accept transactions."""
        assert [s for s in PortfolioStatus if s.allows_transactions] == [PortfolioStatus.ACTIVE]

    def test_final_statuses(self):
        """Test CLOSED and ARCHIVED are final."""
        assert {s for s in PortfolioStatus if s.is_final} == {PortfolioStatus.CLOSED, PortfolioStatus.ARCHIVED}


class TestTransactionTransitions:
    """Test the transaction lifecycle table."""

    @pytest.mark.parametrize(
        "from_status,to_status",
        list(itertools.product(TransactionStatus, TransactionStatus)),
        ids=lambda s: s.value,
    )
    def test_every_pair_matches_table(self, from_status, to_status):
        """Test can_transition agrees with the static table for every pair."""
        assert StatusStateMachine.can_transition(from_status, to_status) == _expected(
            TRANSACTION_TRANSITIONS, from_status, to_status
        )

    @pytest.mark.parametrize(
        "terminal",
        [
            TransactionStatus.SETTLED,
            TransactionStatus.CANCELLED,
            TransactionStatus.FAILED,
            TransactionStatus.REJECTED,
            TransactionStatus.TIMEOUT,
            TransactionStatus.REVERSED,
        ],
        ids=lambda s: s.value,
    )
    def test_terminal_only_reverses(self, terminal):
        """Test terminal transaction statuses may only move to REVERSING."""
        assert terminal.is_final
        assert StatusStateMachine.allowed_transitions(terminal) == {TransactionStatus.REVERSING}

    def test_happy_path(self):
        """Test next_transaction_status walks PENDING to SETTLED."""
        status = TransactionStatus.PENDING
        path = [status]
        while status != TransactionStatus.SETTLED:
            nxt = StatusStateMachine.next_transaction_status(status)
            assert StatusStateMachine.can_transition(status, nxt)
            status = nxt
            path.append(status)

        assert path == [
            TransactionStatus.PENDING,
            TransactionStatus.VALIDATING,
            TransactionStatus.SUBMITTED,
            TransactionStatus.EXECUTING,
            TransactionStatus.EXECUTED,
            TransactionStatus.SETTLING,
            TransactionStatus.SETTLED,
        ]

    def test_next_status_of_final_is_itself(self):
        """Test final statuses have no happy-path successor."""
        assert StatusStateMachine.next_transaction_status(TransactionStatus.SETTLED) == TransactionStatus.SETTLED
        assert StatusStateMachine.next_transaction_status(TransactionStatus.FAILED) == TransactionStatus.FAILED

    def test_reversal_path(self):
        """Test REVERSING advances to REVERSED."""
        assert StatusStateMachine.next_transaction_status(TransactionStatus.REVERSING) == TransactionStatus.REVERSED

    def test_requires_action_is_not_a_dead_end(self):
        """Test REQUIRES_ACTION can be resolved."""
        assert StatusStateMachine.allowed_transitions(TransactionStatus.REQUIRES_ACTION) == {
            TransactionStatus.VALIDATING,
            TransactionStatus.CANCELLED,
        }

    def test_predicates(self):
        """Test transaction status predicates."""
        assert TransactionStatus.EXECUTED.is_completed
        assert TransactionStatus.SETTLED.affects_positions
        assert not TransactionStatus.PENDING.affects_positions
        assert TransactionStatus.PENDING.can_be_cancelled
        assert not TransactionStatus.EXECUTED.can_be_cancelled
        assert TransactionStatus.REVERSED.is_failed
        assert TransactionStatus.TIMEOUT.requires_attention


class TestStateMachineValidation:
    """Test validate() and type handling."""

    def test_validate_returns_target(self):
        """Test a legal transition returns the target status."""
        assert StatusStateMachine.validate(HoldingStatus.ACTIVE, HoldingStatus.CLOSED) == HoldingStatus.CLOSED

    def test_validate_raises_with_context(self):
        """Test an illegal transition raises InvalidStateTransition with from/to."""
        with pytest.raises(InvalidStateTransition) as exc_info:
            StatusStateMachine.validate(HoldingStatus.CLOSED, HoldingStatus.SUSPENDED)

        error = exc_info.value
        assert error.entity == "holding"
        assert error.from_status == HoldingStatus.CLOSED
        assert error.to_status == HoldingStatus.SUSPENDED
        assert error.code == "INVALID_STATE_TRANSITION"

    def test_same_status_is_allowed(self):
        """Test staying in a status is always legal."""
        for status in TransactionStatus:
            assert StatusStateMachine.can_transition(status, status)

    def test_cross_lifecycle_pair_is_rejected(self):
        """Test statuses from different lifecycles never transition, even with equal values."""
        assert HoldingStatus.ARCHIVED.value == PortfolioStatus.ARCHIVED.value
        assert not StatusStateMachine.can_transition(HoldingStatus.ACTIVE, PortfolioStatus.ARCHIVED)

    def test_unknown_status_type_raises(self):
        """Test non-status input raises TypeError."""
        with pytest.raises(TypeError):
            StatusStateMachine.can_transition("active", "closed")


class TestHoldingPredicates:
    """Test holding status predicates."""

    def test_buying_and_selling(self):
        """Test ACTIVE and WATCHING allow buying; only ACTIVE allows selling."""
        assert {s for s in HoldingStatus if s.allows_buying} == {HoldingStatus.ACTIVE, HoldingStatus.WATCHING}
        assert {s for s in HoldingStatus if s.allows_selling} == {HoldingStatus.ACTIVE}

    def test_position_predicates(self):
        """Test position-related predicates."""
        assert HoldingStatus.ACTIVE.is_active_position
        assert not HoldingStatus.WATCHING.has_position
        assert not HoldingStatus.CLOSED.has_position
        assert HoldingStatus.SUSPENDED.has_position

    def test_attention_and_restrictions(self):
        """Test attention and restriction predicates."""
        assert HoldingStatus.DELISTED.requires_attention
        assert HoldingStatus.DELISTED.has_restrictions
        assert HoldingStatus.LIQUIDATING.is_processing
        assert not HoldingStatus.ARCHIVED.is_viewable
