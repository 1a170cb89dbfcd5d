"""
registry_state.py - Lending Registry Unit

The registry unit is the single record holding the registry-wide tables:

    owner          identity fixed at deployment, allowed to set credit scores
    next_loan_id   id the next request-loan call will receive
    nonce          count of owner and balance operations, so that repeating
                   the same deposit or score update is a new intent
    credit_scores  user -> score

Balances themselves are ordinary ledger balances of the registry currency;
deposits issue from, and withdrawals redeem to, the system wallet.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from ..config import RegistryConfig
from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType,
    build_transaction,
    SYSTEM_WALLET, UNIT_TYPE_LENDING_REGISTRY,
    InsufficientFunds, InvalidAmount, InvalidCreditScore, Unauthorized,
    _freeze_state,
)


@dataclass(frozen=True, slots=True)
class RegistryState:
    """Typed snapshot of the registry unit's state."""
    owner: str
    next_loan_id: int
    nonce: int
    credit_scores: Mapping[str, int] = field(default_factory=dict)


def create_registry_unit(symbol: str, owner: str) -> Unit:
    """
    Create the registry unit with empty tables.

    The unit is never held by any wallet; only its state matters.
    """
    if not owner or not owner.strip():
        raise ValueError("owner cannot be empty")
    return Unit(
        symbol=symbol,
        name=f"Lending registry {symbol}",
        unit_type=UNIT_TYPE_LENDING_REGISTRY,
        min_balance=Decimal("0"),
        max_balance=Decimal("0"),
        decimal_places=0,
        _frozen_state=_freeze_state({
            'owner': owner,
            'next_loan_id': 0,
            'nonce': 0,
            'credit_scores': {},
        }),
    )


def load_registry(view: LedgerView, symbol: str) -> RegistryState:
    raw = view.get_unit_state(symbol)
    return RegistryState(
        owner=raw['owner'],
        next_loan_id=raw.get('next_loan_id', 0),
        nonce=raw.get('nonce', 0),
        credit_scores=dict(raw.get('credit_scores', {})),
    )


def get_credit_score(view: LedgerView, symbol: str, user: str) -> Optional[int]:
    """Score for user, or None if the owner never set one."""
    return load_registry(view, symbol).credit_scores.get(user)


def reject_system_wallet(identity: str, role: str) -> None:
    """
    Raises:
        Unauthorized: identity is the reserved system wallet
    """
    if identity == SYSTEM_WALLET:
        raise Unauthorized(f"{SYSTEM_WALLET!r} is reserved and cannot act as {role}")


def _bump_nonce(view: LedgerView, symbol: str, **updates: Any) -> UnitStateChange:
    old_state = view.get_unit_state(symbol)
    new_state = {**old_state, **updates, 'nonce': old_state.get('nonce', 0) + 1}
    return UnitStateChange(unit=symbol, old_state=old_state, new_state=new_state)


def compute_score_update(
    view: LedgerView,
    symbol: str,
    user: str,
    new_score: int,
    caller: str,
    config: RegistryConfig,
) -> PendingTransaction:
    """
    Build the update-credit-score transaction.

    Raises:
        Unauthorized: caller is not the registry owner
                      or user is the system wallet
        InvalidCreditScore: score not an integer in [config.min_score, config.max_score]
    """
    registry = load_registry(view, symbol)
    if caller != registry.owner:
        raise Unauthorized(f"{caller} is not the registry owner")
    reject_system_wallet(user, "a scored user")
    if isinstance(new_score, bool) or not isinstance(new_score, int):
        raise InvalidCreditScore(f"score must be an integer, got {new_score!r}")
    if not config.min_score <= new_score <= config.max_score:
        raise InvalidCreditScore(
            f"score {new_score} outside [{config.min_score}, {config.max_score}]"
        )
    if not user or not user.strip():
        raise InvalidCreditScore("user cannot be empty")

    scores: Dict[str, int] = dict(registry.credit_scores)
    scores[user] = new_score
    change = _bump_nonce(view, symbol, credit_scores=scores)
    origin = TransactionOrigin(OriginType.USER_ACTION, caller, symbol, "update-credit-score")
    return build_transaction(view, [], [change], origin)


def _validate_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(f"amount must be a positive integer, got {amount!r}")


def compute_deposit(
    view: LedgerView,
    symbol: str,
    user: str,
    amount: int,
    config: RegistryConfig,
) -> PendingTransaction:
    """Issue amount of the registry currency to user."""
    _validate_amount(amount)
    reject_system_wallet(user, "a depositor")
    nonce = load_registry(view, symbol).nonce
    moves = [
        Move(
            quantity=Decimal(amount),
            unit_symbol=config.currency,
            source=SYSTEM_WALLET,
            dest=user,
            contract_id=f"deposit_{user}_{nonce}",
        ),
    ]
    origin = TransactionOrigin(OriginType.SYSTEM, user, config.currency, "deposit")
    return build_transaction(view, moves, [_bump_nonce(view, symbol)], origin)


def compute_withdrawal(
    view: LedgerView,
    symbol: str,
    user: str,
    amount: int,
    config: RegistryConfig,
) -> PendingTransaction:
    """
    Redeem amount of the registry currency from user.

    Raises:
        Unauthorized: user is the system wallet
        InsufficientFunds: user balance below amount
    """
    _validate_amount(amount)
    reject_system_wallet(user, "a withdrawer")
    balance = Decimal("0")
    if user in view.list_wallets():
        balance = view.get_balance(user, config.currency)
    if balance < amount:
        raise InsufficientFunds(f"{user} has insufficient {config.currency}: {balance} < {amount}")

    nonce = load_registry(view, symbol).nonce
    moves = [
        Move(
            quantity=Decimal(amount),
            unit_symbol=config.currency,
            source=user,
            dest=SYSTEM_WALLET,
            contract_id=f"withdraw_{user}_{nonce}",
        ),
    ]
    origin = TransactionOrigin(OriginType.SYSTEM, user, config.currency, "withdraw")
    return build_transaction(view, moves, [_bump_nonce(view, symbol)], origin)
