"""
loan.py - Loan Record Units

=== LOAN MODEL ===

A loan record is a single-instance unit (symbol LOAN_{id}) whose state holds
the terms and the lifecycle fields. The record itself is issued to the
borrower when the loan is requested and extinguished when it is repaid, so
the borrower's position in LOAN_{id} is the open liability.

When a loan is requested:
    1. LOAN_{id} created with status PENDING
    2. Record moves system -> borrower
    3. Registry next_loan_id advances

When a loan is funded:
    1. Principal moves lender -> borrower
    2. status PENDING -> ACTIVE, lender and repayment amount recorded

When a loan is repaid:
    1. Principal + interest moves borrower -> lender
    2. Record moves borrower -> system (extinguished)
    3. status ACTIVE -> REPAID

An ACTIVE loan whose term (plus grace) has elapsed is marked DEFAULTED by
loan_contract(). REPAID and DEFAULTED are terminal.

=== PURE FUNCTIONS ===

    calculate_interest(amount, rate, denominator) -> Decimal
    calculate_repayment_amount(amount, rate, denominator) -> Decimal
    validate_loan_terms(...) -> None

All builders take a LedgerView and return a PendingTransaction; they raise a
LendingError instead of building anything that would break a rule.
"""
from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_EVEN
from enum import Enum
from typing import Any, Dict, List, Optional

from ..config import RegistryConfig
from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType,
    build_transaction, empty_pending_transaction, non_transferable_rule,
    SYSTEM_WALLET, UNIT_TYPE_LOAN,
    InsufficientCreditScore, InsufficientFunds, InvalidLoanTerms,
    LoanNotActive, LoanNotPending, Unauthorized,
    _freeze_state,
)
from .registry_state import load_registry, reject_system_wallet


LOAN_SYMBOL_PREFIX = "LOAN_"


# =============================================================================
# ENUMS
# =============================================================================

class LoanStatus(str, Enum):
    """Status of a loan record."""
    PENDING = "PENDING"       # Requested, waiting for a lender
    ACTIVE = "ACTIVE"         # Funded, principal with the borrower
    REPAID = "REPAID"         # Principal and interest returned, closed
    DEFAULTED = "DEFAULTED"   # Term elapsed without repayment, closed


_TRANSITIONS = {
    LoanStatus.PENDING: frozenset({LoanStatus.ACTIVE}),
    LoanStatus.ACTIVE: frozenset({LoanStatus.REPAID, LoanStatus.DEFAULTED}),
    LoanStatus.REPAID: frozenset(),
    LoanStatus.DEFAULTED: frozenset(),
}

TERMINAL_STATUSES = frozenset({LoanStatus.REPAID, LoanStatus.DEFAULTED})


def can_transition(current: LoanStatus, target: LoanStatus) -> bool:
    """Return True if a loan may move directly from current to target."""
    return target in _TRANSITIONS[LoanStatus(current)]


# =============================================================================
# LOAN RECORD
# =============================================================================

@dataclass(frozen=True, slots=True)
class LoanRecord:
    """
    Immutable snapshot of one loan.

    Terms (borrower, amount, interest_rate, duration_blocks, purpose) are
    fixed at request time. lender, funded_at and repayment_amount are set on
    funding; repaid_at or defaulted_at when the loan closes.
    """
    loan_id: int
    borrower: str
    amount: int
    interest_rate: int
    duration_blocks: int
    purpose: str
    status: LoanStatus
    credit_score: int
    requested_at: int
    lender: Optional[str] = None
    funded_at: Optional[int] = None
    repayment_amount: Optional[Decimal] = None
    repaid_at: Optional[int] = None
    defaulted_at: Optional[int] = None

    @property
    def symbol(self) -> str:
        return loan_symbol(self.loan_id)

    @property
    def due_block(self) -> Optional[int]:
        """Block height by which an ACTIVE loan must be repaid."""
        if self.funded_at is None:
            return None
        return self.funded_at + self.duration_blocks

    @property
    def is_closed(self) -> bool:
        return self.status in TERMINAL_STATUSES


def loan_symbol(loan_id: int) -> str:
    return f"{LOAN_SYMBOL_PREFIX}{loan_id}"


def load_loan(view: LedgerView, symbol: str) -> LoanRecord:
    """
    Read a loan unit's state as a LoanRecord.

    Example:
        record = load_loan(view, "LOAN_0")
        record.status  # LoanStatus.PENDING
    """
    raw = view.get_unit_state(symbol)
    repayment = raw.get('repayment_amount')
    return LoanRecord(
        loan_id=raw['loan_id'],
        borrower=raw['borrower'],
        amount=raw['amount'],
        interest_rate=raw['interest_rate'],
        duration_blocks=raw['duration_blocks'],
        purpose=raw['purpose'],
        status=LoanStatus(raw['status']),
        credit_score=raw['credit_score'],
        requested_at=raw['requested_at'],
        lender=raw.get('lender'),
        funded_at=raw.get('funded_at'),
        repayment_amount=Decimal(str(repayment)) if repayment is not None else None,
        repaid_at=raw.get('repaid_at'),
        defaulted_at=raw.get('defaulted_at'),
    )


def to_state_dict(record: LoanRecord) -> Dict[str, Any]:
    """Inverse of load_loan(): the dict stored as the unit's state."""
    return {
        'loan_id': record.loan_id,
        'borrower': record.borrower,
        'amount': record.amount,
        'interest_rate': record.interest_rate,
        'duration_blocks': record.duration_blocks,
        'purpose': record.purpose,
        'status': LoanStatus(record.status).value,
        'credit_score': record.credit_score,
        'requested_at': record.requested_at,
        'lender': record.lender,
        'funded_at': record.funded_at,
        'repayment_amount': record.repayment_amount,
        'repaid_at': record.repaid_at,
        'defaulted_at': record.defaulted_at,
    }


# =============================================================================
# PURE FUNCTIONS
# =============================================================================

def calculate_interest(amount: int, interest_rate: int, rate_denominator: int) -> Decimal:
    """
    Flat interest over the loan term.

    interest = amount * interest_rate / rate_denominator, rounded to whole
    currency units with banker's rounding.

    Example:
        1000 at 500 bps -> 50
    """
    if amount <= 0 or interest_rate <= 0:
        return Decimal("0")
    raw = Decimal(amount) * Decimal(interest_rate) / Decimal(rate_denominator)
    return raw.quantize(Decimal("1"), rounding=ROUND_HALF_EVEN)


def calculate_repayment_amount(amount: int, interest_rate: int, rate_denominator: int) -> Decimal:
    """Principal plus flat interest."""
    return Decimal(amount) + calculate_interest(amount, interest_rate, rate_denominator)


def validate_loan_terms(
    amount: int,
    interest_rate: int,
    duration_blocks: int,
    purpose: str,
    max_purpose_length: int,
) -> None:
    """
    Check request arguments.

    Raises:
        InvalidLoanTerms: amount or duration not a positive integer, negative
            rate, purpose not ASCII or longer than max_purpose_length
    """
    for name, value in (('amount', amount), ('interest_rate', interest_rate),
                        ('duration_blocks', duration_blocks)):
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidLoanTerms(f"{name} must be an integer, got {value!r}")
    if amount <= 0:
        raise InvalidLoanTerms(f"amount must be positive, got {amount}")
    if interest_rate < 0:
        raise InvalidLoanTerms(f"interest_rate cannot be negative, got {interest_rate}")
    if duration_blocks <= 0:
        raise InvalidLoanTerms(f"duration_blocks must be positive, got {duration_blocks}")
    if not isinstance(purpose, str) or not purpose.isascii():
        raise InvalidLoanTerms("purpose must be ASCII text")
    if len(purpose) > max_purpose_length:
        raise InvalidLoanTerms(
            f"purpose longer than {max_purpose_length} characters ({len(purpose)})"
        )


# =============================================================================
# LOAN UNIT FACTORY
# =============================================================================

def create_loan_unit(
    loan_id: int,
    borrower: str,
    amount: int,
    interest_rate: int,
    duration_blocks: int,
    purpose: str,
    credit_score: int,
    requested_at: int,
) -> Unit:
    """
    Create a PENDING loan record unit.

    The record can only be held by its borrower, and only ever moves to or
    from the system wallet.
    """
    if loan_id < 0:
        raise ValueError(f"loan_id cannot be negative, got {loan_id}")
    if not borrower or not borrower.strip():
        raise ValueError("borrower cannot be empty")

    record = LoanRecord(
        loan_id=loan_id,
        borrower=borrower,
        amount=amount,
        interest_rate=interest_rate,
        duration_blocks=duration_blocks,
        purpose=purpose,
        status=LoanStatus.PENDING,
        credit_score=credit_score,
        requested_at=requested_at,
    )
    return Unit(
        symbol=loan_symbol(loan_id),
        name=f"Loan {loan_id}: {amount} to {borrower}",
        unit_type=UNIT_TYPE_LOAN,
        min_balance=Decimal("0"),
        max_balance=Decimal("1"),
        decimal_places=0,
        transfer_rule=non_transferable_rule,
        _frozen_state=_freeze_state(to_state_dict(record)),
    )


# =============================================================================
# TRANSACTION BUILDERS
# =============================================================================

def _transition(view: LedgerView, symbol: str, updates: Dict[str, Any]) -> UnitStateChange:
    old_state = view.get_unit_state(symbol)
    new_status = updates.get('status')
    if new_status is not None and not can_transition(LoanStatus(old_state['status']), new_status):
        raise ValueError(f"{symbol}: illegal transition {old_state['status']} -> {new_status}")
    new_state = {**old_state, **updates}
    if new_status is not None:
        new_state['status'] = LoanStatus(new_status).value
    return UnitStateChange(unit=symbol, old_state=old_state, new_state=new_state)


def compute_loan_request(
    view: LedgerView,
    registry_symbol: str,
    borrower: str,
    amount: int,
    interest_rate: int,
    duration_blocks: int,
    purpose: str,
    config: RegistryConfig,
) -> PendingTransaction:
    """
    Build the request-loan transaction.

    Creates LOAN_{next_loan_id}, issues the record to the borrower and
    advances the registry's next_loan_id.

    Raises:
        Unauthorized: borrower is the system wallet
        InvalidLoanTerms: bad arguments
        InsufficientCreditScore: borrower unscored or below config.min_credit_score
    """
    reject_system_wallet(borrower, "a borrower")
    validate_loan_terms(amount, interest_rate, duration_blocks, purpose, config.max_purpose_length)

    registry = load_registry(view, registry_symbol)
    score = registry.credit_scores.get(borrower)
    if score is None:
        raise InsufficientCreditScore(f"{borrower} has no credit score")
    if score < config.min_credit_score:
        raise InsufficientCreditScore(
            f"{borrower} credit score {score} below required {config.min_credit_score}"
        )

    loan_id = registry.next_loan_id
    loan_unit = create_loan_unit(
        loan_id=loan_id,
        borrower=borrower,
        amount=amount,
        interest_rate=interest_rate,
        duration_blocks=duration_blocks,
        purpose=purpose,
        credit_score=score,
        requested_at=view.block_height,
    )

    old_registry = view.get_unit_state(registry_symbol)
    new_registry = {**old_registry, 'next_loan_id': loan_id + 1}

    moves = [
        Move(
            quantity=Decimal("1"),
            unit_symbol=loan_unit.symbol,
            source=SYSTEM_WALLET,
            dest=borrower,
            contract_id=f"request_{loan_unit.symbol}_record",
        ),
    ]
    state_changes = [UnitStateChange(registry_symbol, old_registry, new_registry)]
    origin = TransactionOrigin(OriginType.USER_ACTION, borrower, loan_unit.symbol, "request-loan")

    return build_transaction(view, moves, state_changes, origin, units_to_create=(loan_unit,))


def compute_funding(
    view: LedgerView,
    symbol: str,
    lender: str,
    config: RegistryConfig,
) -> PendingTransaction:
    """
    Build the fund-loan transaction.

    Raises:
        LoanNotPending: loan is not PENDING
        Unauthorized: lender is the borrower or the system wallet
        InsufficientFunds: lender balance below the principal
    """
    record = load_loan(view, symbol)
    if record.status != LoanStatus.PENDING:
        raise LoanNotPending(f"{symbol} is {record.status.value}, not PENDING")
    if lender == record.borrower:
        raise Unauthorized(f"{lender} cannot fund their own loan {symbol}")
    reject_system_wallet(lender, "a lender")

    available = _balance_or_zero(view, lender, config.currency)
    if available < record.amount:
        raise InsufficientFunds(
            f"Lender {lender} has insufficient {config.currency}: {available} < {record.amount}"
        )

    repayment = calculate_repayment_amount(record.amount, record.interest_rate, config.rate_denominator)
    change = _transition(view, symbol, {
        'status': LoanStatus.ACTIVE,
        'lender': lender,
        'funded_at': view.block_height,
        'repayment_amount': repayment,
    })
    moves = [
        Move(
            quantity=Decimal(record.amount),
            unit_symbol=config.currency,
            source=lender,
            dest=record.borrower,
            contract_id=f"fund_{symbol}_principal",
        ),
    ]
    origin = TransactionOrigin(OriginType.USER_ACTION, lender, symbol, "fund-loan")
    return build_transaction(view, moves, [change], origin)


def compute_repayment(
    view: LedgerView,
    symbol: str,
    caller: str,
    config: RegistryConfig,
) -> PendingTransaction:
    """
    Build the repay-loan transaction.

    The caller check comes first, so a caller other than the borrower is
    always Unauthorized whatever the loan status.

    Raises:
        Unauthorized: caller is not the borrower
        LoanNotActive: loan is not ACTIVE
        InsufficientFunds: borrower cannot cover principal + interest
    """
    record = load_loan(view, symbol)
    if caller != record.borrower:
        raise Unauthorized(f"{caller} is not the borrower of {symbol}")
    if record.status != LoanStatus.ACTIVE:
        raise LoanNotActive(f"{symbol} is {record.status.value}, not ACTIVE")

    due = record.repayment_amount
    if due is None:
        due = calculate_repayment_amount(record.amount, record.interest_rate, config.rate_denominator)
    available = _balance_or_zero(view, record.borrower, config.currency)
    if available < due:
        raise InsufficientFunds(
            f"Borrower {record.borrower} has insufficient {config.currency}: {available} < {due}"
        )

    change = _transition(view, symbol, {
        'status': LoanStatus.REPAID,
        'repaid_at': view.block_height,
    })
    moves = [
        Move(
            quantity=due,
            unit_symbol=config.currency,
            source=record.borrower,
            dest=record.lender,
            contract_id=f"repay_{symbol}_settlement",
        ),
        Move(
            quantity=Decimal("1"),
            unit_symbol=symbol,
            source=record.borrower,
            dest=SYSTEM_WALLET,
            contract_id=f"repay_{symbol}_record",
        ),
    ]
    origin = TransactionOrigin(OriginType.USER_ACTION, caller, symbol, "repay-loan")
    return build_transaction(view, moves, [change], origin)


def compute_default(
    view: LedgerView,
    symbol: str,
    grace_blocks: int = 0,
) -> PendingTransaction:
    """
    Mark an overdue ACTIVE loan as DEFAULTED.

    Returns an empty PendingTransaction if the loan is not ACTIVE or the
    current block is not past due_block + grace_blocks.
    """
    record = load_loan(view, symbol)
    if record.status != LoanStatus.ACTIVE:
        return empty_pending_transaction(view)
    if view.block_height <= record.due_block + grace_blocks:
        return empty_pending_transaction(view)

    change = _transition(view, symbol, {
        'status': LoanStatus.DEFAULTED,
        'defaulted_at': view.block_height,
    })
    origin = TransactionOrigin(OriginType.LIFECYCLE, "loan_contract", symbol, "DEFAULT")
    return build_transaction(view, [], [change], origin)


# =============================================================================
# LIFECYCLE CONTRACT
# =============================================================================

def loan_contract(
    view: LedgerView,
    symbol: str,
    block_height: int,
    grace_blocks: int = 0,
) -> PendingTransaction:
    """
    SmartContract interface for loan records with LifecycleEngine.

    Detects defaults; everything else about a loan is driven by calls.
    """
    state = view.get_unit_state(symbol)
    if LoanStatus(state['status']) in TERMINAL_STATUSES:
        return empty_pending_transaction(view)
    return compute_default(view, symbol, grace_blocks)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _balance_or_zero(view: LedgerView, wallet: str, unit_symbol: str) -> Decimal:
    if wallet not in view.list_wallets():
        return Decimal("0")
    return view.get_balance(wallet, unit_symbol)


def list_loan_symbols(view: LedgerView) -> List[str]:
    """All loan unit symbols, ordered by loan id."""
    symbols = [s for s in view.list_units() if view.get_unit(s).unit_type == UNIT_TYPE_LOAN]
    return sorted(symbols, key=lambda s: view.get_unit_state(s)['loan_id'])


def get_open_loans(view: LedgerView, wallet: str) -> List[str]:
    """Loan records currently held by a wallet (requested or active, not closed)."""
    return [
        symbol for symbol in list_loan_symbols(view)
        if view.get_positions(symbol).get(wallet, Decimal("0")) > 0
        and LoanStatus(view.get_unit_state(symbol)['status']) not in TERMINAL_STATUSES
    ]
