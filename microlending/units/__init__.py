"""
Units module - records held on the lending ledger.

- Loan record units with their lifecycle builders
- The registry unit holding owner, id counter and credit scores

All unit factories and related functions are re-exported here for convenience.
"""

from .registry_state import (
    RegistryState,
    create_registry_unit,
    load_registry,
    get_credit_score,
    reject_system_wallet,
    compute_score_update,
    compute_deposit,
    compute_withdrawal,
)

from .loan import (
    LoanStatus,
    LoanRecord,
    TERMINAL_STATUSES,
    can_transition,
    loan_symbol,
    load_loan,
    to_state_dict,
    calculate_interest,
    calculate_repayment_amount,
    validate_loan_terms,
    create_loan_unit,
    compute_loan_request,
    compute_funding,
    compute_repayment,
    compute_default,
    loan_contract,
    list_loan_symbols,
    get_open_loans,
)

__all__ = [
    # Registry unit
    'RegistryState', 'create_registry_unit', 'load_registry', 'get_credit_score', 'reject_system_wallet',
    'compute_score_update', 'compute_deposit', 'compute_withdrawal',
    # Loans
    'LoanStatus', 'LoanRecord', 'TERMINAL_STATUSES', 'can_transition',
    'loan_symbol', 'load_loan', 'to_state_dict',
    'calculate_interest', 'calculate_repayment_amount', 'validate_loan_terms',
    'create_loan_unit', 'compute_loan_request', 'compute_funding',
    'compute_repayment', 'compute_default', 'loan_contract',
    'list_loan_symbols', 'get_open_loans',
]
