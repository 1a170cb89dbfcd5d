"""
registry.py - LoanRegistry

The public face of the micro-lending system: loan requests, funding,
repayment, credit scores and balances, all stored on one Ledger.

Each mutating operation follows the same shape:
    1. A pure builder in microlending.units checks every rule against a
       read-only view and raises a LendingError on the first violation
    2. The resulting PendingTransaction is executed atomically

Nothing is written before step 2, so a failed call leaves no trace.
"""

from __future__ import annotations
from decimal import Decimal
from functools import partial
from typing import Any, Dict, List, Optional

from .config import RegistryConfig
from .core import (
    PendingTransaction, Transaction, ExecuteResult,
    LedgerError, LoanNotFound, CreditScoreNotFound,
    SYSTEM_WALLET, UNIT_TYPE_LOAN,
    currency,
)
from .ledger import Ledger
from .lifecycle_engine import LifecycleEngine
from .units.loan import (
    LoanRecord, LoanStatus,
    LOAN_SYMBOL_PREFIX, loan_symbol, load_loan, list_loan_symbols,
    calculate_repayment_amount,
    compute_loan_request, compute_funding, compute_repayment,
    loan_contract,
)
from .units.registry_state import (
    create_registry_unit, load_registry,
    compute_score_update, compute_deposit, compute_withdrawal,
)


DEFAULT_CONTRACT_NAME = "micro-lending"


class LoanRegistry:
    """
    In-memory loan registry with credit gating and balance settlement.

    The owner in config is fixed at deployment; it is the only identity
    allowed to update credit scores.

    Thread Safety:
        Not thread-safe. Each operation is atomic with respect to the ledger;
        concurrent callers must serialize access.

    Example:
        registry = LoanRegistry(RegistryConfig(owner="deployer"))
        registry.update_credit_score("alice", 720, caller="deployer")
        loan_id = registry.request_loan("alice", 1000, 500, 144, "Business expansion")
        registry.deposit("bob", 5000)
        registry.fund_loan(loan_id, lender="bob")
    """

    def __init__(
        self,
        config: RegistryConfig,
        name: str = DEFAULT_CONTRACT_NAME,
        initial_block: int = 0,
        verbose: bool = False,
    ):
        self.config = config
        self.name = name
        self.verbose = verbose
        self.registry_symbol = name.upper().replace("-", "_")
        if self.registry_symbol == config.currency:
            raise ValueError(f"registry name {name!r} collides with currency {config.currency!r}")
        if self.registry_symbol.startswith(LOAN_SYMBOL_PREFIX):
            raise ValueError(f"registry name {name!r} collides with loan symbols {LOAN_SYMBOL_PREFIX}*")

        self.ledger = Ledger(name, initial_block=initial_block, verbose=verbose)
        self.ledger.register_unit(currency(config.currency, config.currency_name))
        self.ledger.register_unit(create_registry_unit(self.registry_symbol, config.owner))

        self.engine = LifecycleEngine(self.ledger)
        if config.enforce_defaults:
            self.engine.register(
                UNIT_TYPE_LOAN,
                partial(loan_contract, grace_blocks=config.default_grace_blocks),
            )

    # ========================================================================
    # PROPERTIES
    # ========================================================================

    @property
    def owner(self) -> str:
        return self.config.owner

    @property
    def block_height(self) -> int:
        return self.ledger.block_height

    # ========================================================================
    # MUTATING OPERATIONS
    # ========================================================================

    def request_loan(
        self,
        borrower: str,
        amount: int,
        interest_rate: int,
        duration_blocks: int,
        purpose: str,
    ) -> int:
        """
        Open a PENDING loan request and return its id.

        Ids are sequential from 0.

        Raises:
            InvalidLoanTerms: bad amount, rate, duration or purpose
            InsufficientCreditScore: borrower unscored or below the threshold
        """
        loan_id = load_registry(self.ledger, self.registry_symbol).next_loan_id
        pending = compute_loan_request(
            self.ledger, self.registry_symbol, borrower,
            amount, interest_rate, duration_blocks, purpose, self.config,
        )
        self._submit(pending, borrower)
        self._log(f"request-loan by {borrower}: {loan_symbol(loan_id)} for {amount}")
        return loan_id

    def fund_loan(self, loan_id: int, lender: str) -> bool:
        """
        Fund a PENDING loan: principal moves lender -> borrower, status ACTIVE.

        Raises:
            LoanNotFound, LoanNotPending, Unauthorized, InsufficientFunds
        """
        symbol = self._loan_symbol(loan_id)
        pending = compute_funding(self.ledger, symbol, lender, self.config)
        self._submit(pending, lender)
        self._log(f"fund-loan {symbol} by {lender}")
        return True

    def repay_loan(self, loan_id: int, caller: str) -> bool:
        """
        Repay an ACTIVE loan: principal + interest moves borrower -> lender,
        status REPAID.

        Raises:
            LoanNotFound, Unauthorized, LoanNotActive, InsufficientFunds
        """
        symbol = self._loan_symbol(loan_id)
        pending = compute_repayment(self.ledger, symbol, caller, self.config)
        self._submit(pending)
        self._log(f"repay-loan {symbol} by {caller}")
        return True

    def update_credit_score(self, user: str, new_score: int, caller: str) -> bool:
        """
        Set a user's credit score. Owner only.

        Raises:
            Unauthorized: caller is not the owner
            InvalidCreditScore: score out of the configured bounds
        """
        pending = compute_score_update(
            self.ledger, self.registry_symbol, user, new_score, caller, self.config
        )
        self._submit(pending)
        self._log(f"update-credit-score {user} -> {new_score}")
        return True

    def deposit(self, user: str, amount: int) -> bool:
        """Credit user with newly issued currency."""
        pending = compute_deposit(self.ledger, self.registry_symbol, user, amount, self.config)
        self._submit(pending, user)
        self._log(f"deposit {amount} {self.config.currency} to {user}")
        return True

    def withdraw(self, user: str, amount: int) -> bool:
        """
        Debit user and redeem the currency.

        Raises:
            InsufficientFunds: balance below amount
        """
        pending = compute_withdrawal(self.ledger, self.registry_symbol, user, amount, self.config)
        self._submit(pending)
        self._log(f"withdraw {amount} {self.config.currency} from {user}")
        return True

    def advance_block(self, block_height: int) -> List[Transaction]:
        """
        Move to a later block and run lifecycle contracts (loan defaults).

        Returns:
            Transactions produced by the lifecycle engine
        """
        return self.engine.step(block_height)

    # ========================================================================
    # READ-ONLY OPERATIONS
    # ========================================================================

    def get_loan(self, loan_id: int) -> LoanRecord:
        """
        Raises:
            LoanNotFound: no loan with this id
        """
        return load_loan(self.ledger, self._loan_symbol(loan_id))

    def get_credit_score(self, user: str) -> int:
        """
        Raises:
            CreditScoreNotFound: the owner never scored this user
        """
        score = load_registry(self.ledger, self.registry_symbol).credit_scores.get(user)
        if score is None:
            raise CreditScoreNotFound(f"No credit score for {user}")
        return score

    def get_user_balance(self, user: str) -> int:
        """
        Balance of the registry currency in whole units.

        0 for unknown users and for the system wallet, whose negative
        balance is the issued supply rather than a holding.
        """
        if user == SYSTEM_WALLET or not self.ledger.is_registered(user):
            return 0
        return int(self.ledger.get_balance(user, self.config.currency))

    def get_loan_count(self) -> int:
        return load_registry(self.ledger, self.registry_symbol).next_loan_id

    def list_loans(
        self,
        borrower: Optional[str] = None,
        status: Optional[LoanStatus] = None,
    ) -> List[LoanRecord]:
        """All loans in id order, optionally filtered by borrower and status."""
        records = [load_loan(self.ledger, s) for s in list_loan_symbols(self.ledger)]
        if borrower is not None:
            records = [r for r in records if r.borrower == borrower]
        if status is not None:
            records = [r for r in records if r.status == LoanStatus(status)]
        return records

    def quote_repayment(self, loan_id: int) -> int:
        """Principal + interest the borrower owes (or would owe once funded)."""
        record = self.get_loan(loan_id)
        if record.repayment_amount is not None:
            return int(record.repayment_amount)
        return int(calculate_repayment_amount(
            record.amount, record.interest_rate, self.config.rate_denominator
        ))

    def verify_balances(self) -> Dict[str, Any]:
        """
        Double-entry check: every unit nets to zero across all wallets.

        Currency is issued by the system wallet, so user balances always
        equal the negated system balance.
        """
        expected = {symbol: Decimal("0") for symbol in self.ledger.list_units()}
        return self.ledger.verify_double_entry(expected)

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _loan_symbol(self, loan_id: int) -> str:
        if isinstance(loan_id, bool) or not isinstance(loan_id, int) or loan_id < 0:
            raise LoanNotFound(f"Invalid loan id {loan_id!r}")
        symbol = loan_symbol(loan_id)
        if not self.ledger.has_unit(symbol):
            raise LoanNotFound(f"Loan {loan_id} not found")
        return symbol

    def _submit(self, pending: PendingTransaction, *wallets: str) -> None:
        """
        Register any new wallets the transaction credits, then execute it.

        Wallets registered here are removed again if the ledger rejects it.
        """
        registered = []
        for wallet in wallets:
            if not self.ledger.is_registered(wallet):
                registered.append(self.ledger.register_wallet(wallet))
        result = self.ledger.execute(pending)
        if result == ExecuteResult.REJECTED:
            for wallet in registered:
                self.ledger.unregister_wallet(wallet)
            raise LedgerError(f"Ledger rejected {pending.origin}")

    def _log(self, message: str) -> None:
        if self.verbose:
            print(f"[{self.name}] {message}")
