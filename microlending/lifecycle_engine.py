"""
lifecycle_engine.py - Lifecycle Engine

Advances the ledger's block height and polls the smart contract registered
for each unit type.

Execution order each step():
1. Advance ledger block height
2. Poll every unit's contract, in symbol order
3. Repeat until no contract fires (cascading effects)

The transaction log is the audit trail - no separate event status tracking.
"""

from __future__ import annotations
from typing import Dict, Iterable, List, Optional

from .core import (
    PendingTransaction, Transaction,
    ExecuteResult, LedgerError,
    SmartContract,
)
from .ledger import Ledger


class LifecycleEngine:
    """
    Block-driven smart contract polling over a Ledger.

    Example:
        engine = LifecycleEngine(ledger)
        engine.register(UNIT_TYPE_LOAN, loan_contract)
        engine.step(1_000)
    """

    def __init__(
        self,
        ledger: Ledger,
        contracts: Optional[Dict[str, SmartContract]] = None,
    ):
        """
        Args:
            ledger: The ledger to operate on
            contracts: Smart contracts for polling (unit_type -> contract)
        """
        self.ledger = ledger
        self.contracts: Dict[str, SmartContract] = contracts or {}
        self.max_passes = 10  # Safety limit for cascading events
        self.verbose = ledger.verbose

    def register(self, unit_type: str, contract: SmartContract) -> None:
        """
        Register a smart contract for a unit type.

        The contract is either a callable (view, symbol, block_height) or an
        object with check_lifecycle(view, symbol, block_height).
        """
        self.contracts[unit_type] = contract

    def step(self, block_height: int) -> List[Transaction]:
        """
        Advance to block_height and execute everything the contracts produce.

        Returns:
            Transactions executed during this step
        """
        self.ledger.advance_block(block_height)
        executed: List[Transaction] = []

        for _ in range(self.max_passes):
            pass_executed = self._process_smart_contracts(block_height)
            executed.extend(pass_executed)
            if not pass_executed:
                break

        return executed

    def _process_smart_contracts(self, block_height: int) -> List[Transaction]:
        executed: List[Transaction] = []

        for symbol in self.ledger.list_units():
            unit = self.ledger.units[symbol]
            contract = self.contracts.get(unit.unit_type)
            if not contract:
                continue

            if hasattr(contract, 'check_lifecycle'):
                pending = contract.check_lifecycle(self.ledger, symbol, block_height)
            else:
                pending = contract(self.ledger, symbol, block_height)

            if not isinstance(pending, PendingTransaction):
                raise LedgerError(
                    f"Contract for {symbol} must return PendingTransaction, got {type(pending)}"
                )
            if pending.is_empty():
                continue

            if self.verbose:
                print(f"[LIFECYCLE] {symbol} at block {block_height}: {pending.origin}")

            exec_result = self.ledger.execute(pending)
            if exec_result == ExecuteResult.REJECTED:
                raise LedgerError(f"Lifecycle event failed for {symbol}: contract execution rejected")
            if exec_result == ExecuteResult.APPLIED:
                executed.append(self.ledger.transaction_log[-1])

        return executed

    def run(self, block_heights: Iterable[int]) -> List[Transaction]:
        """Step through a sequence of block heights."""
        all_transactions: List[Transaction] = []
        for height in block_heights:
            all_transactions.extend(self.step(height))
        return all_transactions
