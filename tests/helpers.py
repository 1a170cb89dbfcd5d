"""
helpers.py - Shared constants and helpers for registry tests

Identities, raw unit states for FakeView tests and a snapshot of everything
observable about a registry, for before/after comparison.
"""

from typing import Any, Dict

from microlending import LoanRegistry, LoanStatus


OWNER = "deployer"
BORROWER = "alice"
LENDER = "bob"
OTHER = "carol"

REGISTRY_SYMBOL = "MICRO_LENDING"

# Stacks addresses for the call surface
DEPLOYER_ADDRESS = "ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM"
BORROWER_ADDRESS = "ST2CY5V39NHDPWSXMW9QDT3HC3GD6Q6XX4CFRK9AG"
LENDER_ADDRESS = "ST2JHG361ZXG51QTKY2NQCVBPPRRE2KZB1HR05NNC"
CONTRACT_NAME = "micro-lending"


def snapshot(registry: LoanRegistry) -> Dict[str, Any]:
    """Everything observable about a registry's ledger."""
    ledger = registry.ledger
    return {
        'block_height': ledger.block_height,
        'wallets': sorted(ledger.list_wallets()),
        'units': ledger.list_units(),
        'balances': {
            w: {u: b for u, b in ledger.get_wallet_balances(w).items() if b != 0}
            for w in sorted(ledger.list_wallets())
        },
        'states': {u: ledger.get_unit_state(u) for u in ledger.list_units()},
        'log_length': len(ledger.transaction_log),
    }


def loan_state(
    loan_id: int = 0,
    borrower: str = BORROWER,
    status: LoanStatus = LoanStatus.PENDING,
    **overrides: Any,
) -> Dict[str, Any]:
    """Raw loan unit state for FakeView tests."""
    state = {
        'loan_id': loan_id,
        'borrower': borrower,
        'amount': 1000,
        'interest_rate': 500,
        'duration_blocks': 144,
        'purpose': "Business expansion",
        'status': status.value,
        'credit_score': 750,
        'requested_at': 0,
        'lender': None,
        'funded_at': None,
        'repayment_amount': None,
        'repaid_at': None,
        'defaulted_at': None,
    }
    state.update(overrides)
    return state


def registry_state(scores: Dict[str, int] = None, next_loan_id: int = 0, nonce: int = 0) -> Dict[str, Any]:
    """Raw registry unit state for FakeView tests."""
    return {
        'owner': OWNER,
        'next_loan_id': next_loan_id,
        'nonce': nonce,
        'credit_scores': dict(scores or {}),
    }
