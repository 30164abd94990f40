"""Lifecycle statuses and the shared transition tables.

Holding, portfolio and transaction lifecycles are each described by a static
``from -> {to, ...}`` map. A single ``StatusStateMachine.can_transition``
answers for all three; staying in the same status is always allowed.
"""

from enum import Enum
from typing import Mapping, TypeVar, Union

from positionledger.services.ledger.exceptions import InvalidStateTransition


class HoldingStatus(str, Enum):
    """Lifecycle status of a holding."""

    ACTIVE = "active"
    CLOSED = "closed"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    WATCHING = "watching"
    ARCHIVED = "archived"
    PARTIAL_CLOSE = "partial_close"
    LIQUIDATING = "liquidating"
    TRANSFER_PENDING = "transfer_pending"
    ON_HOLD = "on_hold"
    RESTRICTED = "restricted"
    DELISTED = "delisted"
    UNDER_REVIEW = "under_review"
    CORPORATE_ACTION = "corporate_action"
    ERROR = "error"

    @property
    def is_final(self) -> bool:
        return self in HOLDING_FINAL_STATUSES

    @property
    def is_active_position(self) -> bool:
        return self in HOLDING_ACTIVE_POSITION_STATUSES

    @property
    def has_position(self) -> bool:
        return self not in HOLDING_NON_POSITION_STATUSES

    @property
    def allows_buying(self) -> bool:
        return self in (HoldingStatus.ACTIVE, HoldingStatus.WATCHING)

    @property
    def allows_selling(self) -> bool:
        return self is HoldingStatus.ACTIVE

    @property
    def requires_attention(self) -> bool:
        return self in HOLDING_ATTENTION_STATUSES

    @property
    def is_processing(self) -> bool:
        return self in HOLDING_PROCESSING_STATUSES

    @property
    def has_restrictions(self) -> bool:
        return self in HOLDING_RESTRICTED_STATUSES

    @property
    def is_viewable(self) -> bool:
        return self is not HoldingStatus.ARCHIVED


class PortfolioStatus(str, Enum):
    """Lifecycle status of a portfolio."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"
    SUSPENDED = "suspended"
    CLOSING = "closing"
    CLOSED = "closed"
    PENDING = "pending"
    UNDER_REVIEW = "under_review"

    @property
    def is_final(self) -> bool:
        return self in PORTFOLIO_FINAL_STATUSES

    @property
    def allows_modifications(self) -> bool:
        return self in (PortfolioStatus.ACTIVE, PortfolioStatus.INACTIVE, PortfolioStatus.PENDING)

    @property
    def allows_transactions(self) -> bool:
        return self is PortfolioStatus.ACTIVE

    @property
    def is_viewable(self) -> bool:
        return self is not PortfolioStatus.SUSPENDED


class TransactionStatus(str, Enum):
    """Lifecycle status of a transaction."""

    PENDING = "pending"
    VALIDATING = "validating"
    SUBMITTED = "submitted"
    EXECUTING = "executing"
    EXECUTED = "executed"
    SETTLING = "settling"
    SETTLED = "settled"
    CANCELLED = "cancelled"
    FAILED = "failed"
    REJECTED = "rejected"
    TIMEOUT = "timeout"
    ON_HOLD = "on_hold"
    PARTIALLY_FILLED = "partially_filled"
    REVERSING = "reversing"
    REVERSED = "reversed"
    REQUIRES_ACTION = "requires_action"

    @property
    def is_final(self) -> bool:
        return self in TRANSACTION_FINAL_STATUSES

    @property
    def is_completed(self) -> bool:
        return self in (TransactionStatus.EXECUTED, TransactionStatus.SETTLED)

    @property
    def is_failed(self) -> bool:
        return self in TRANSACTION_FAILURE_STATUSES

    @property
    def affects_positions(self) -> bool:
        return self.is_completed

    @property
    def can_be_cancelled(self) -> bool:
        return self in (
            TransactionStatus.PENDING,
            TransactionStatus.VALIDATING,
            TransactionStatus.SUBMITTED,
            TransactionStatus.ON_HOLD,
        )

    @property
    def requires_attention(self) -> bool:
        return self in (
            TransactionStatus.FAILED,
            TransactionStatus.REJECTED,
            TransactionStatus.ON_HOLD,
            TransactionStatus.REQUIRES_ACTION,
            TransactionStatus.TIMEOUT,
        )


HOLDING_FINAL_STATUSES = frozenset({HoldingStatus.CLOSED, HoldingStatus.ARCHIVED})
HOLDING_NON_POSITION_STATUSES = frozenset({HoldingStatus.WATCHING, HoldingStatus.CLOSED, HoldingStatus.ARCHIVED})
HOLDING_ACTIVE_POSITION_STATUSES = frozenset(
    {
        HoldingStatus.ACTIVE,
        HoldingStatus.PARTIAL_CLOSE,
        HoldingStatus.LIQUIDATING,
        HoldingStatus.TRANSFER_PENDING,
        HoldingStatus.ON_HOLD,
        HoldingStatus.CORPORATE_ACTION,
    }
)
HOLDING_ATTENTION_STATUSES = frozenset(
    {
        HoldingStatus.ERROR,
        HoldingStatus.UNDER_REVIEW,
        HoldingStatus.ON_HOLD,
        HoldingStatus.CORPORATE_ACTION,
        HoldingStatus.DELISTED,
    }
)
HOLDING_PROCESSING_STATUSES = frozenset(
    {
        HoldingStatus.PARTIAL_CLOSE,
        HoldingStatus.LIQUIDATING,
        HoldingStatus.TRANSFER_PENDING,
        HoldingStatus.UNDER_REVIEW,
    }
)
HOLDING_RESTRICTED_STATUSES = frozenset(
    {HoldingStatus.SUSPENDED, HoldingStatus.RESTRICTED, HoldingStatus.DELISTED, HoldingStatus.ON_HOLD}
)

# ACTIVE may move anywhere; final statuses may only be reactivated.
HOLDING_TRANSITIONS: Mapping[HoldingStatus, frozenset[HoldingStatus]] = {
    HoldingStatus.ACTIVE: frozenset(HoldingStatus),
    HoldingStatus.WATCHING: frozenset({HoldingStatus.ACTIVE, HoldingStatus.ARCHIVED, HoldingStatus.INACTIVE}),
    HoldingStatus.INACTIVE: frozenset({HoldingStatus.ACTIVE, HoldingStatus.ARCHIVED, HoldingStatus.CLOSED}),
    HoldingStatus.SUSPENDED: frozenset({HoldingStatus.ACTIVE, HoldingStatus.INACTIVE, HoldingStatus.RESTRICTED}),
    HoldingStatus.ON_HOLD: frozenset({HoldingStatus.ACTIVE, HoldingStatus.UNDER_REVIEW, HoldingStatus.ERROR}),
    HoldingStatus.PARTIAL_CLOSE: frozenset({HoldingStatus.ACTIVE, HoldingStatus.CLOSED, HoldingStatus.LIQUIDATING}),
    HoldingStatus.LIQUIDATING: frozenset({HoldingStatus.CLOSED, HoldingStatus.ACTIVE, HoldingStatus.ERROR}),
    HoldingStatus.TRANSFER_PENDING: frozenset({HoldingStatus.ACTIVE, HoldingStatus.ERROR, HoldingStatus.CLOSED}),
    HoldingStatus.RESTRICTED: frozenset({HoldingStatus.ACTIVE, HoldingStatus.SUSPENDED, HoldingStatus.DELISTED}),
    HoldingStatus.DELISTED: frozenset({HoldingStatus.CLOSED, HoldingStatus.ARCHIVED}),
    HoldingStatus.UNDER_REVIEW: frozenset({HoldingStatus.ACTIVE, HoldingStatus.SUSPENDED, HoldingStatus.ERROR}),
    HoldingStatus.CORPORATE_ACTION: frozenset({HoldingStatus.ACTIVE, HoldingStatus.UNDER_REVIEW}),
    HoldingStatus.ERROR: frozenset({HoldingStatus.ACTIVE, HoldingStatus.UNDER_REVIEW, HoldingStatus.ON_HOLD}),
    HoldingStatus.CLOSED: frozenset({HoldingStatus.ACTIVE}),
    HoldingStatus.ARCHIVED: frozenset({HoldingStatus.ACTIVE}),
}

PORTFOLIO_FINAL_STATUSES = frozenset({PortfolioStatus.CLOSED, PortfolioStatus.ARCHIVED})

PORTFOLIO_TRANSITIONS: Mapping[PortfolioStatus, frozenset[PortfolioStatus]] = {
    PortfolioStatus.ACTIVE: frozenset(
        {
            PortfolioStatus.INACTIVE,
            PortfolioStatus.SUSPENDED,
            PortfolioStatus.CLOSING,
            PortfolioStatus.CLOSED,
            PortfolioStatus.ARCHIVED,
            PortfolioStatus.UNDER_REVIEW,
        }
    ),
    PortfolioStatus.INACTIVE: frozenset({PortfolioStatus.ACTIVE, PortfolioStatus.ARCHIVED, PortfolioStatus.CLOSING}),
    PortfolioStatus.PENDING: frozenset(
        {PortfolioStatus.ACTIVE, PortfolioStatus.INACTIVE, PortfolioStatus.UNDER_REVIEW, PortfolioStatus.ARCHIVED}
    ),
    PortfolioStatus.SUSPENDED: frozenset({PortfolioStatus.ACTIVE, PortfolioStatus.UNDER_REVIEW, PortfolioStatus.CLOSING}),
    PortfolioStatus.UNDER_REVIEW: frozenset({PortfolioStatus.ACTIVE, PortfolioStatus.SUSPENDED, PortfolioStatus.INACTIVE}),
    PortfolioStatus.CLOSING: frozenset({PortfolioStatus.CLOSED, PortfolioStatus.ACTIVE}),
    PortfolioStatus.CLOSED: frozenset({PortfolioStatus.ACTIVE}),
    PortfolioStatus.ARCHIVED: frozenset({PortfolioStatus.ACTIVE}),
}

TRANSACTION_FAILURE_STATUSES = frozenset(
    {
        TransactionStatus.CANCELLED,
        TransactionStatus.FAILED,
        TransactionStatus.REJECTED,
        TransactionStatus.TIMEOUT,
        TransactionStatus.REVERSED,
    }
)
TRANSACTION_FINAL_STATUSES = TRANSACTION_FAILURE_STATUSES | {TransactionStatus.SETTLED}

_TO_REVERSING = frozenset({TransactionStatus.REVERSING})

TRANSACTION_TRANSITIONS: Mapping[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset(
        {TransactionStatus.VALIDATING, TransactionStatus.CANCELLED, TransactionStatus.ON_HOLD}
    ),
    TransactionStatus.VALIDATING: frozenset(
        {TransactionStatus.SUBMITTED, TransactionStatus.REJECTED, TransactionStatus.ON_HOLD}
    ),
    TransactionStatus.SUBMITTED: frozenset(
        {TransactionStatus.EXECUTING, TransactionStatus.CANCELLED, TransactionStatus.TIMEOUT}
    ),
    TransactionStatus.EXECUTING: frozenset(
        {
            TransactionStatus.EXECUTED,
            TransactionStatus.PARTIALLY_FILLED,
            TransactionStatus.FAILED,
            TransactionStatus.TIMEOUT,
        }
    ),
    TransactionStatus.EXECUTED: frozenset({TransactionStatus.SETTLING, TransactionStatus.REVERSING}),
    TransactionStatus.SETTLING: frozenset({TransactionStatus.SETTLED, TransactionStatus.FAILED}),
    TransactionStatus.PARTIALLY_FILLED: frozenset(
        {TransactionStatus.EXECUTED, TransactionStatus.CANCELLED, TransactionStatus.FAILED}
    ),
    TransactionStatus.ON_HOLD: frozenset(
        {TransactionStatus.VALIDATING, TransactionStatus.CANCELLED, TransactionStatus.REQUIRES_ACTION}
    ),
    # Not terminal: a resolved action resumes validation or is cancelled
    TransactionStatus.REQUIRES_ACTION: frozenset({TransactionStatus.VALIDATING, TransactionStatus.CANCELLED}),
    TransactionStatus.REVERSING: frozenset({TransactionStatus.REVERSED, TransactionStatus.FAILED}),
    TransactionStatus.SETTLED: _TO_REVERSING,
    TransactionStatus.CANCELLED: _TO_REVERSING,
    TransactionStatus.FAILED: _TO_REVERSING,
    TransactionStatus.REJECTED: _TO_REVERSING,
    TransactionStatus.TIMEOUT: _TO_REVERSING,
    TransactionStatus.REVERSED: _TO_REVERSING,
}

TRANSACTION_HAPPY_PATH: Mapping[TransactionStatus, TransactionStatus] = {
    TransactionStatus.PENDING: TransactionStatus.VALIDATING,
    TransactionStatus.VALIDATING: TransactionStatus.SUBMITTED,
    TransactionStatus.SUBMITTED: TransactionStatus.EXECUTING,
    TransactionStatus.EXECUTING: TransactionStatus.EXECUTED,
    TransactionStatus.EXECUTED: TransactionStatus.SETTLING,
    TransactionStatus.SETTLING: TransactionStatus.SETTLED,
    TransactionStatus.REVERSING: TransactionStatus.REVERSED,
}

AnyStatus = Union[HoldingStatus, PortfolioStatus, TransactionStatus]
StatusT = TypeVar("StatusT", HoldingStatus, PortfolioStatus, TransactionStatus)

_TABLES: dict[type, tuple[str, Mapping]] = {
    HoldingStatus: ("holding", HOLDING_TRANSITIONS),
    PortfolioStatus: ("portfolio", PORTFOLIO_TRANSITIONS),
    TransactionStatus: ("transaction", TRANSACTION_TRANSITIONS),
}


class StatusStateMachine:
    """
    Transition validation shared by all three lifecycles.

    Pure functions over the static tables above; holds no state.

    Example:
        >>> StatusStateMachine.can_transition(HoldingStatus.CLOSED, HoldingStatus.ACTIVE)
        True
        >>> StatusStateMachine.can_transition(HoldingStatus.CLOSED, HoldingStatus.ARCHIVED)
        False
    """

    @staticmethod
    def can_transition(from_status: AnyStatus, to_status: AnyStatus) -> bool:
        """
        Check whether ``from_status -> to_status`` is a legal transition.

        Statuses from different lifecycles never transition into each other.

        Raises:
            TypeError: If ``from_status`` is not a known lifecycle status
        """
        if type(from_status) not in _TABLES:
            raise TypeError(f"Unknown status type: {type(from_status).__name__}")
        if type(to_status) is not type(from_status):
            return False
        if from_status == to_status:
            return True
        _, table = _TABLES[type(from_status)]
        return to_status in table.get(from_status, frozenset())

    @staticmethod
    def allowed_transitions(from_status: AnyStatus) -> frozenset:
        """Successor statuses reachable from ``from_status`` (excluding itself)."""
        if type(from_status) not in _TABLES:
            raise TypeError(f"Unknown status type: {type(from_status).__name__}")
        _, table = _TABLES[type(from_status)]
        return frozenset(status for status in table.get(from_status, frozenset()) if status != from_status)

    @classmethod
    def validate(cls, from_status: StatusT, to_status: StatusT) -> StatusT:
        """
        Return ``to_status`` if the transition is legal.

        Raises:
            InvalidStateTransition: If the transition is not allowed
        """
        if not cls.can_transition(from_status, to_status):
            entity, _ = _TABLES[type(from_status)]
            raise InvalidStateTransition(entity, from_status, to_status)
        return to_status

    @staticmethod
    def next_transaction_status(status: TransactionStatus) -> TransactionStatus:
        """Canonical happy-path successor; final and special states map to themselves."""
        return TRANSACTION_HAPPY_PATH.get(status, status)
