"""
microlending - Micro-Lending Registry

Loan requests, funding and repayment gated by owner-assigned credit scores,
settled on an in-memory double-entry ledger.

Usage:
    from microlending import LoanRegistry, RegistryConfig

    registry = LoanRegistry(RegistryConfig(owner="deployer"))
    registry.update_credit_score("alice", 750, caller="deployer")

    loan_id = registry.request_loan("alice", 1000, 500, 144, "Business expansion")

    # Lender needs a balance before funding
    registry.deposit("bob", 5000)
    registry.fund_loan(loan_id, lender="bob")

    # Borrower repays principal + interest (1000 + 5%)
    registry.deposit("alice", 50)
    registry.repay_loan(loan_id, caller="alice")

    registry.get_user_balance("bob")  # Decimal('5050')

Call surface with typed values:
    from microlending import Client, uint, string_ascii

    client = Client()
    client.deploy(DEPLOYER, "micro-lending")
    client.call_public(DEPLOYER, "micro-lending", "request-loan",
                       [uint(1000), uint(500), uint(144), string_ascii("Business expansion")],
                       sender=BORROWER)
"""

# Core types
from .core import (
    LedgerView,
    SmartContract,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    empty_pending_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    ErrorCode,
    LedgerError,
    InsufficientFunds,
    BalanceConstraintViolation,
    TransferRuleViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    LendingError,
    InsufficientCreditScore,
    LoanNotFound,
    LoanNotPending,
    LoanNotActive,
    Unauthorized,
    InvalidLoanTerms,
    InvalidCreditScore,
    CreditScoreNotFound,
    InvalidAmount,
    non_transferable_rule,
    currency,
    SYSTEM_WALLET,
    UNIT_TYPE_CASH,
    UNIT_TYPE_LOAN,
    UNIT_TYPE_LENDING_REGISTRY,
)

# Ledger
from .ledger import Ledger

# Lifecycle engine
from .lifecycle_engine import LifecycleEngine

# Configuration
from .config import RegistryConfig

# Units
from .units import (
    LoanStatus,
    LoanRecord,
    RegistryState,
    calculate_interest,
    calculate_repayment_amount,
    loan_contract,
)

# Registry
from .registry import LoanRegistry, DEFAULT_CONTRACT_NAME

# Call surface
from .values import UInt, Principal, StringAscii, uint, principal, string_ascii, to_python
from .client import Client, ContractRegistry, CallResult, CallFailed, list_functions

__version__ = "1.0.0"

__all__ = [
    # Core
    'LedgerView', 'SmartContract', 'Move', 'Transaction', 'PendingTransaction',
    'TransactionOrigin', 'OriginType', 'build_transaction', 'empty_pending_transaction',
    'Unit', 'UnitStateChange', 'ExecuteResult', 'ErrorCode',
    'non_transferable_rule', 'currency',
    'SYSTEM_WALLET', 'UNIT_TYPE_CASH', 'UNIT_TYPE_LOAN', 'UNIT_TYPE_LENDING_REGISTRY',
    # Exceptions
    'LedgerError', 'InsufficientFunds', 'BalanceConstraintViolation',
    'TransferRuleViolation', 'UnitNotRegistered', 'WalletNotRegistered',
    'LendingError', 'InsufficientCreditScore', 'LoanNotFound', 'LoanNotPending',
    'LoanNotActive', 'Unauthorized', 'InvalidLoanTerms', 'InvalidCreditScore',
    'CreditScoreNotFound', 'InvalidAmount',
    # Ledger and engine
    'Ledger', 'LifecycleEngine',
    # Configuration
    'RegistryConfig',
    # Units
    'LoanStatus', 'LoanRecord', 'RegistryState',
    'calculate_interest', 'calculate_repayment_amount', 'loan_contract',
    # Registry
    'LoanRegistry', 'DEFAULT_CONTRACT_NAME',
    # Call surface
    'UInt', 'Principal', 'StringAscii', 'uint', 'principal', 'string_ascii', 'to_python',
    'Client', 'ContractRegistry', 'CallResult', 'CallFailed', 'list_functions',
]
