"""
Core types and pure functions for the micro-lending ledger.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only ledger access, SmartContract for lifecycle hooks
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError, LendingError and their error codes
4. Type aliases: Positions, BalanceMap, UnitState
5. Unit factories: the registry currency

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.

Time is measured in blocks. Every view exposes the current block height and
every transaction records the height at which it was built.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_DOWN, getcontext
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Set, Optional, Callable, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable,
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Balances and interest are Decimal. The global context is configured once at
# import so every calculation rounds the same way.
#
# PRECONDITION: No other code should modify the global Decimal context.
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 50
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance and redemption of the registry currency.
# The system wallet is exempt from balance validation.
SYSTEM_WALLET = "system"

# Unit type constants (strings, not enum).
UNIT_TYPE_CASH = "CASH"
UNIT_TYPE_LOAN = "LOAN"
UNIT_TYPE_LENDING_REGISTRY = "LENDING_REGISTRY"

# Quantities with absolute value below this threshold are treated as zero.
QUANTITY_EPSILON = Decimal("1e-12")

# Registry balances never go below zero.
DEFAULT_CASH_MIN_BALANCE = Decimal("0")

DECIMAL_ROUNDING = {
    'CASH': ROUND_HALF_EVEN,
    'LOAN': ROUND_DOWN,
}


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, Decimal]

# Mapping from unit symbol to quantity held in a single wallet.
BalanceMap = Dict[str, Decimal]

# Internal state for a unit: loan terms, lifecycle fields, registry tables.
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Transaction builders, lifecycle contracts and queries accept a LedgerView
    to declare that they only read. The Ledger class implements this protocol
    but also provides mutation methods; tests use FakeView, which cannot be
    mutated at all.
    """

    @property
    def block_height(self) -> int:
        """Return the current block height of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Return the balance of a unit in a wallet."""
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """
        Return a copy of the unit's internal state.

        Mutating the returned dictionary never affects the ledger.
        """
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit across all wallets."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...

    def list_units(self) -> List[str]:
        """Return all registered unit symbols, sorted."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a given symbol."""
        ...


class SmartContract(Protocol):
    """
    Protocol for lifecycle-aware contracts.

    A contract inspects one unit at a given block height and returns a
    PendingTransaction describing what should happen, or an empty one.
    """

    def check_lifecycle(
        self,
        view: LedgerView,
        symbol: str,
        block_height: int,
    ) -> 'PendingTransaction':
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the ledger.
    ALREADY_APPLIED: Transaction intent was previously processed (idempotent behavior).
    REJECTED: Transaction failed validation (balance constraints, transfer
              rules, unregistered units or wallets, future block).
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated, for the audit trail."""
    USER_ACTION = "user_action"           # Borrower, lender or owner call
    CONTRACT = "contract"                 # Unit contract
    LIFECYCLE = "lifecycle"               # Automatic lifecycle event (default)
    SYSTEM = "system"                     # Issuance, redemption, deployment


class ErrorCode(str, Enum):
    """Reason codes reported to callers for failed registry calls."""
    INSUFFICIENT_CREDIT_SCORE = "ERR_INSUFFICIENT_CREDIT_SCORE"
    LOAN_NOT_FOUND = "ERR_LOAN_NOT_FOUND"
    LOAN_NOT_PENDING = "ERR_LOAN_NOT_PENDING"
    LOAN_NOT_ACTIVE = "ERR_LOAN_NOT_ACTIVE"
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    INSUFFICIENT_FUNDS = "ERR_INSUFFICIENT_FUNDS"
    INVALID_LOAN_TERMS = "ERR_INVALID_LOAN_TERMS"
    INVALID_CREDIT_SCORE = "ERR_INVALID_CREDIT_SCORE"
    CREDIT_SCORE_NOT_FOUND = "ERR_CREDIT_SCORE_NOT_FOUND"
    INVALID_AMOUNT = "ERR_INVALID_AMOUNT"
    UNKNOWN_CONTRACT = "ERR_UNKNOWN_CONTRACT"
    UNKNOWN_FUNCTION = "ERR_UNKNOWN_FUNCTION"
    BAD_ARGUMENTS = "ERR_BAD_ARGUMENTS"
    LEDGER_ERROR = "ERR_LEDGER"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    code = ErrorCode.LEDGER_ERROR


class InsufficientFunds(LedgerError):
    """Raised when a move would take a wallet balance below the unit's minimum."""
    code = ErrorCode.INSUFFICIENT_FUNDS


class BalanceConstraintViolation(LedgerError):
    """Raised when a move would violate a unit's min/max balance constraints."""
    pass


class TransferRuleViolation(LedgerError):
    """Raised when a move violates the unit's transfer rule."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when operating on a unit that has not been registered."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when operating on a wallet that has not been registered."""
    pass


class LendingError(LedgerError):
    """Base exception for rejected registry operations."""
    pass


class InsufficientCreditScore(LendingError):
    """Borrower has no credit score or one below the configured threshold."""
    code = ErrorCode.INSUFFICIENT_CREDIT_SCORE


class LoanNotFound(LendingError):
    code = ErrorCode.LOAN_NOT_FOUND


class LoanNotPending(LendingError):
    code = ErrorCode.LOAN_NOT_PENDING


class LoanNotActive(LendingError):
    code = ErrorCode.LOAN_NOT_ACTIVE


class Unauthorized(LendingError):
    """Caller identity is not allowed to perform the operation."""
    code = ErrorCode.UNAUTHORIZED


class InvalidLoanTerms(LendingError):
    code = ErrorCode.INVALID_LOAN_TERMS


class InvalidCreditScore(LendingError):
    code = ErrorCode.INVALID_CREDIT_SCORE


class CreditScoreNotFound(LendingError):
    code = ErrorCode.CREDIT_SCORE_NOT_FOUND


class InvalidAmount(LendingError):
    code = ErrorCode.INVALID_AMOUNT


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Identifier of the specific source (caller identity, contract name)
        unit_symbol: Symbol of the unit that triggered this (if applicable)
        event_type: Operation name (e.g., "request-loan", "DEFAULT")
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
    Complete before/after snapshot of one unit's state.

    old_state is restored by clone_at(); new_state is applied by execute().
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Return {field: (old, new)} for every field that differs."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        return {
            key: (old.get(key), new.get(key))
            for key in set(old) | set(new)
            if old.get(key) != new.get(key)
        }


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    Attributes:
        quantity: The amount to transfer (Decimal, finite, non-zero).
        unit_symbol: The unit being transferred (e.g., "STX").
        source: The wallet ID debited.
        dest: The wallet ID credited.
        contract_id: Identifier of the operation generating this move.
        metadata: Optional additional information about the move.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    metadata: Optional[Dict[str, Any]] = None

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
        if abs(self.quantity) < QUANTITY_EPSILON:
            raise ValueError("Move quantity is effectively zero")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


def _normalize_decimal(d: Decimal) -> str:
    """Canonical string for a Decimal: Decimal("1.0") and Decimal("1.00") both give "1"."""
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Independent of dict insertion order and of Decimal exponent.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return _canonicalize(value.value)
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    if isinstance(value, (set, frozenset)):
        serialized = ",".join(_canonicalize(item) for item in sorted(value, key=str))
        return f"<{serialized}>"
    return f"R:{repr(value)}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
    units_to_create: Tuple['Unit', ...] = (),
) -> str:
    """
    Deterministic content hash of a transaction's intent.

    Based only on moves, state changes, origin and created units, never on
    the block height. Used by the ledger to reject duplicate submissions.
    """
    sorted_moves = sorted(
        moves,
        key=lambda m: (_normalize_decimal(m.quantity), m.unit_symbol, m.source, m.dest, m.contract_id)
    )

    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.unit_symbol:
        content_parts.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")

    for unit in sorted(units_to_create, key=lambda u: u.symbol):
        content_parts.append(f"unit_create:{unit.symbol}|{unit.unit_type}|{_canonicalize(unit.state)}")

    for m in sorted_moves:
        qty = _normalize_decimal(m.quantity)
        content_parts.append(f"move:{qty}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}")

    for sc in sorted(state_changes, key=lambda s: s.unit):
        content_parts.append(
            f"state_change:{sc.unit}|{_canonicalize(sc.old_state)}|{_canonicalize(sc.new_state)}"
        )

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction before execution - represents INTENT.

    Built by the loan and credit builders and submitted to Ledger.execute(),
    which turns it into a Transaction record or rejects it as a whole.

    Attributes:
        moves: Value transfers between wallets
        state_changes: Unit state changes (with old_state and new_state)
        origin: Who/what created this transaction and why
        block_height: Block height at which the intent was built
        units_to_create: Units to register before moves are applied
        intent_id: Content-addressable hash of the intent (auto-computed)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    block_height: int
    units_to_create: Tuple['Unit', ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(
                self.moves, self.state_changes, self.origin, self.units_to_create
            )
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """Return True if there is nothing to apply."""
        return not self.moves and not self.state_changes and not self.units_to_create

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple['Unit', ...]] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves and state deltas.

    State snapshots are deep-copied so later mutation of the caller's dicts
    cannot alter the recorded intent.

    Example:
        old_state = view.get_unit_state("LOAN_0")
        new_state = {**old_state, 'status': LoanStatus.ACTIVE.value}
        changes = [UnitStateChange("LOAN_0", old_state, new_state)]
        return build_transaction(view, moves, changes)
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
        block_height=view.block_height,
        units_to_create=units_to_create or (),
    )


def empty_pending_transaction(view: LedgerView) -> PendingTransaction:
    """Create a PendingTransaction with nothing in it."""
    return PendingTransaction(
        moves=(),
        state_changes=(),
        origin=TransactionOrigin(OriginType.CONTRACT, "noop"),
        block_height=view.block_height,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Attributes:
        moves: Value transfers between wallets
        state_changes: Unit state changes (with old_state and new_state)
        origin: Who/what created this transaction and why
        block_height: Block height at which the PendingTransaction was built
        intent_id: Content hash from PendingTransaction (for idempotency)
        exec_id: Unique execution identifier (ledger + sequence + block)
        ledger_name: Name of the ledger that executed this
        execution_block: Block height at which it was applied
        sequence_number: Monotonic sequence within the ledger
        contract_ids: Contract IDs from moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    block_height: int
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_block: int
    sequence_number: int
    units_to_create: Tuple['Unit', ...] = ()
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves and not self.state_changes and not self.units_to_create:
            raise ValueError("Transaction must have moves, state_changes, or units_to_create")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        lines = [
            f"Transaction {self.exec_id}",
            f"  intent_id : {self.intent_id}",
            f"  block     : {self.block_height} (executed at {self.execution_block})",
            f"  sequence  : {self.sequence_number}",
            f"  origin    : {self.origin}",
        ]
        for unit in self.units_to_create:
            lines.append(f"  + unit {unit.symbol} ({unit.name})")
        for i, move in enumerate(self.moves):
            lines.append(f"  [{i}] {move.quantity} {move.unit_symbol}: {move.source} → {move.dest}")
        for sc in self.state_changes:
            for field_name, (old_val, new_val) in sorted(sc.changed_fields().items()):
                lines.append(f"  {sc.unit}.{field_name}: {old_val!r} → {new_val!r}")
        return "\n".join(lines)


# Type alias for transfer rule functions.
# Transfer rules validate moves and raise TransferRuleViolation if invalid.
TransferRule = Callable[[LedgerView, Move], None]


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a state dict into sorted (key, value) pairs for storage on a frozen Unit."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    return copy.deepcopy(dict(frozen_state))


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a unit held on the ledger.

    A unit is either a fungible currency (the registry balances) or a
    single-instance record whose state is the payload (loan records, the
    registry table).

    Attributes:
        symbol: Short identifier (e.g., "STX", "LOAN_0").
        name: Human-readable name.
        unit_type: Category (CASH, LOAN, LENDING_REGISTRY).
        min_balance: Minimum allowed balance in any non-system wallet.
        max_balance: Maximum allowed balance in any non-system wallet.
        decimal_places: Rounding precision (None = no rounding).
        transfer_rule: Optional function validating moves of this unit.
        _frozen_state: Frozen state representation.
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    transfer_rule: Optional[TransferRule] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """The unit's state as a fresh mutable dictionary."""
        return _thaw_state(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        """Round a value to this unit's decimal precision."""
        if self.decimal_places is None:
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        quantizer = Decimal(10) ** -self.decimal_places
        rounding_mode = DECIMAL_ROUNDING.get(self.unit_type, ROUND_HALF_EVEN)
        return value.quantize(quantizer, rounding=rounding_mode)


# ============================================================================
# TRANSFER RULES
# ============================================================================

def non_transferable_rule(view: LedgerView, move: Move) -> None:
    """
    Record units never move between user wallets.

    Only issuance from, and extinguishment to, the system wallet is allowed.
    """
    if SYSTEM_WALLET not in (move.source, move.dest):
        raise TransferRuleViolation(
            f"{move.unit_symbol} is not transferable: {move.source} → {move.dest}"
        )


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def currency(symbol: str, name: str, decimal_places: int = 0) -> Unit:
    """
    Create the registry currency unit.

    Amounts are integers of the smallest currency unit by default, and
    wallets cannot be overdrawn.
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_CASH,
        decimal_places=decimal_places,
        min_balance=DEFAULT_CASH_MIN_BALANCE,
        _frozen_state=_freeze_state({'issuer': SYSTEM_WALLET}),
    )
