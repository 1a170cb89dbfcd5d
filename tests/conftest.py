"""
conftest.py - Shared pytest fixtures for registry tests

Provides common fixtures used across unit, conformance and integration tests:
- Registries at each stage of a loan (empty, scored, pending, active)
- Ledgers with the registry currency for low-level tests
- A client with a deployed registry
- FakeView snapshots for builder tests
"""

import pytest
from decimal import Decimal

from microlending import (
    Ledger, LoanRegistry, RegistryConfig, Client,
    LoanStatus, currency,
)
from microlending.units import create_registry_unit

from tests.fake_view import FakeView
from tests.helpers import (
    OWNER, BORROWER, LENDER, REGISTRY_SYMBOL,
    DEPLOYER_ADDRESS, CONTRACT_NAME,
    loan_state, registry_state,
)


# =============================================================================
# REGISTRY FIXTURES
# =============================================================================

@pytest.fixture
def config():
    """Default configuration owned by OWNER."""
    return RegistryConfig(owner=OWNER)


@pytest.fixture
def registry(config):
    """Freshly deployed registry: no scores, no balances, no loans."""
    return LoanRegistry(config, verbose=False)


@pytest.fixture
def scored_registry(registry):
    """Borrower scored 750, lender holding 5000."""
    registry.update_credit_score(BORROWER, 750, caller=OWNER)
    registry.deposit(LENDER, 5000)
    return registry


@pytest.fixture
def pending_loan(scored_registry):
    """Registry with loan 0 PENDING: 1000 at 500 bps over 144 blocks."""
    loan_id = scored_registry.request_loan(BORROWER, 1000, 500, 144, "Business expansion")
    return scored_registry, loan_id


@pytest.fixture
def active_loan(pending_loan):
    """Registry with loan 0 funded by LENDER."""
    registry, loan_id = pending_loan
    registry.fund_loan(loan_id, LENDER)
    return registry, loan_id


# =============================================================================
# LEDGER FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Fresh ledger with no registrations."""
    return Ledger("test", verbose=False, test_mode=True)


@pytest.fixture
def cash_ledger():
    """Ledger with STX, the registry unit and two wallets."""
    ledger = Ledger("test", verbose=False, test_mode=True)
    ledger.register_unit(currency("STX", "Stacks Token"))
    ledger.register_unit(create_registry_unit(REGISTRY_SYMBOL, OWNER))
    ledger.register_wallet(BORROWER)
    ledger.register_wallet(LENDER)
    return ledger


@pytest.fixture
def funded_ledger(cash_ledger):
    """Cash ledger with lender holding 5000 STX."""
    cash_ledger.set_balance(LENDER, "STX", Decimal("5000"))
    return cash_ledger


# =============================================================================
# CLIENT FIXTURES
# =============================================================================

@pytest.fixture
def client():
    """Client with the registry deployed at (DEPLOYER_ADDRESS, CONTRACT_NAME)."""
    client = Client()
    client.deploy(DEPLOYER_ADDRESS, CONTRACT_NAME)
    return client


# =============================================================================
# FAKE VIEW FIXTURES
# =============================================================================

@pytest.fixture
def pending_view():
    """FakeView with a scored borrower, a funded lender and LOAN_0 PENDING."""
    return FakeView(
        balances={
            BORROWER: {"LOAN_0": Decimal("1")},
            LENDER: {"STX": Decimal("5000")},
        },
        states={
            REGISTRY_SYMBOL: registry_state({BORROWER: 750}, next_loan_id=1),
            "LOAN_0": loan_state(),
        },
        block_height=10,
    )


@pytest.fixture
def active_view():
    """FakeView with LOAN_0 ACTIVE, funded at block 10, borrower able to repay."""
    return FakeView(
        balances={
            BORROWER: {"LOAN_0": Decimal("1"), "STX": Decimal("1050")},
            LENDER: {"STX": Decimal("4000")},
        },
        states={
            REGISTRY_SYMBOL: registry_state({BORROWER: 750}, next_loan_id=1),
            "LOAN_0": loan_state(
                status=LoanStatus.ACTIVE,
                lender=LENDER,
                funded_at=10,
                repayment_amount=Decimal("1050"),
            ),
        },
        block_height=100,
    )
