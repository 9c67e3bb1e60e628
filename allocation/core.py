"""
Core types and pure functions for the allocation ledger.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only token ledger access
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError, AllocationError and the domain error kinds
4. Type aliases: BalanceMap, UnitState
5. Helpers: amount coercion, state freezing

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_EVEN, getcontext
from enum import Enum
import copy
from typing import (
    Dict, List, Set, Optional, Any, Protocol,
    Tuple, runtime_checkable,
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Stake amounts and weights are exact Decimals. Weight grows as
# rate * blocks * staked, so precision must cover the product of three
# large integers without rounding.
#
# PRECONDITION: No other code should modify the global Decimal context.
#
_ALLOCATION_DECIMAL_CONTEXT = getcontext()
_ALLOCATION_DECIMAL_CONTEXT.prec = 50
_ALLOCATION_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for token issuance. Exempt from balance validation.
SYSTEM_WALLET = "system"

# Wallet that custodies staked tokens unless the master is given another one.
DEFAULT_MASTER_ADDRESS = "allocation_master"

UNIT_TYPE_STAKE_TOKEN = "STAKE_TOKEN"

# Quantities with absolute value below this threshold are treated as zero.
QUANTITY_EPSILON = Decimal("1e-18")

ZERO = Decimal("0")


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from unit symbol to quantity held in a single wallet.
BalanceMap = Dict[str, Decimal]

# Internal state for a unit (issuer, allowances, ...).
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to token ledger state.

    Token builders accept a LedgerView to declare that they only read state.
    The Ledger class implements this protocol but also provides mutation
    methods. For testing, FakeView provides a truly immutable implementation.
    """

    @property
    def current_block(self) -> int:
        """Return the current logical block number."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Return the balance of a unit in a wallet (Decimal("0") if none)."""
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a copy of the unit's internal state."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a given symbol."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the ledger.
    REJECTED: Transaction failed validation (insufficient balance,
              unregistered wallet, stale unit state).
    """
    APPLIED = "applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"           # Account-initiated (approve, direct transfer)
    CONTRACT = "contract"                 # Allocation master custody movements
    SYSTEM = "system"                     # Issuance and initial setup


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when operating on a unit that has not been registered with the ledger."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when operating on a wallet that has not been registered with the ledger."""
    pass


class AllocationError(LedgerError):
    """
    Base exception for allocation master failures.

    Recoverable errors can be retried with corrected input. A non-recoverable
    error signals a sequencing fault in the host environment.
    """
    recoverable = True


class Unauthorized(AllocationError):
    """Raised when a non-owner calls an administrative operation."""
    pass


class TrackNotFound(AllocationError):
    """Raised when a track id does not name an existing track."""
    pass


class TrackDisabled(AllocationError):
    """Raised when staking into a disabled track."""
    pass


class CapExceeded(AllocationError):
    """Raised when a stake would push a track's total above its max stakes."""
    pass


class InsufficientStake(AllocationError):
    """Raised when unstaking more than the account has staked."""
    pass


class TransferFailed(AllocationError):
    """Raised when the underlying token movement is rejected."""
    pass


class InvalidOrdering(AllocationError):
    """Raised when a checkpoint would be appended before the latest entry."""
    recoverable = False


class InvalidQueryTime(AllocationError):
    """Raised for a negative query block or accrual backwards from a baseline."""
    pass


# ============================================================================
# AMOUNT HELPERS
# ============================================================================

def to_decimal(value: Any) -> Decimal:
    """Convert an int/str/float/Decimal to Decimal via its string form."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_amount(value: Any, what: str = "amount") -> Decimal:
    """
    Coerce a token amount and require it to be finite and strictly positive.

    Raises:
        ValueError: If the amount is NaN, infinite, zero or negative.
    """
    amount = to_decimal(value)
    if amount.is_nan() or amount.is_infinite():
        raise ValueError(f"{what} must be finite, got {amount}")
    if amount < QUANTITY_EPSILON:
        raise ValueError(f"{what} must be positive, got {amount}")
    return amount


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Identifier of the specific source (master address, account)
        unit_symbol: Symbol of the token involved (if applicable)
        event_type: Specific event (e.g., "STAKE", "UNSTAKE", "APPROVE")
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# UNIT STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Record of a unit state change with complete before/after snapshots.

    old_state is checked against the live state at execution time, so a
    change built from a stale view is rejected instead of overwriting.
    """
    unit: str
    old_state: Any
    new_state: Any


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of tokens between two wallets.

    Attributes:
        quantity: The amount to transfer (must be finite and positive).
        unit_symbol: The token symbol being transferred.
        source: The wallet ID debited.
        dest: The wallet ID credited.
        contract_id: Identifier of the operation generating this move.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if self.quantity.is_infinite() or self.quantity.is_nan():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if self.quantity < QUANTITY_EPSILON:
            raise ValueError("Move quantity must be positive")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction specification before execution - represents INTENT.

    Built by the token functions and submitted to Ledger.execute(), which
    validates it and records a Transaction.

    Attributes:
        moves: Tuple of token transfers between wallets
        state_changes: Tuple of unit state changes (with old_state and new_state)
        origin: Who/what created this transaction and why
        block: Block at which the pending transaction was built
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    block: int

    def is_empty(self) -> bool:
        """Return True if this pending transaction has no moves and no state deltas."""
        return not self.moves and not self.state_changes

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves and state deltas.

    State snapshots are deep-copied so later mutation of the caller's dicts
    cannot leak into the pending transaction.

    Example:
        tx = build_transaction(ledger, [
            Move(Decimal("100"), "TEST", "alice", "bob", "payment_001")
        ])
        ledger.execute(tx)
    """
    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.CONTRACT,
            source_id="contract",
        )

    copied_changes: Tuple[UnitStateChange, ...] = ()
    if state_changes:
        copied_changes = tuple(
            UnitStateChange(
                unit=sc.unit,
                old_state=copy.deepcopy(sc.old_state),
                new_state=copy.deepcopy(sc.new_state),
            )
            for sc in state_changes
        )

    return PendingTransaction(
        moves=tuple(moves),
        state_changes=copied_changes,
        origin=origin,
        block=view.current_block,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Attributes:
        moves: Tuple of token transfers
        state_changes: Tuple of unit state changes
        origin: Who/what created this transaction and why
        block: Block at which the PendingTransaction was built
        ledger_name: Name of the ledger that executed this
        execution_block: Block at which this was executed and logged
        sequence_number: Monotonic sequence within the ledger
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    block: int
    ledger_name: str
    execution_block: int
    sequence_number: int

    def __post_init__(self):
        if not self.moves and not self.state_changes:
            raise ValueError("Transaction must have moves or state_changes")

    def __repr__(self) -> str:
        moves = ", ".join(repr(m) for m in self.moves) or "no moves"
        return (
            f"Transaction(#{self.sequence_number}, block={self.execution_block}, "
            f"{self.origin}, {moves}, {len(self.state_changes)} deltas)"
        )


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a state dict to a tuple of (key, value) pairs sorted by key."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    """Convert a frozen state representation back to a mutable dict."""
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a token (asset type) in the ledger.

    Attributes:
        symbol: Short identifier for the token (e.g., "TEST").
        name: Human-readable name.
        unit_type: Category of the unit (STAKE_TOKEN).
        min_balance: Minimum allowed balance in any non-system wallet.
        _frozen_state: Internal frozen state representation.
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """The unit's state as a new dict (mutating it does not touch the unit)."""
        return _thaw_state(self._frozen_state)

