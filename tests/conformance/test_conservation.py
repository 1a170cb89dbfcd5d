"""
Conservation Conformance Tests

INVARIANT: Currency is only issued by deposit and redeemed by withdraw.

    ∀ unit U:
        Σ balance(w, U) over all wallets w (system wallet included) = 0

    Σ balance(user, STX) over user wallets = Σ deposits - Σ withdrawals

Funding and repayment only move currency between users. Loan record units
are issued one per loan and held by the borrower until repayment.
"""

import pytest
from decimal import Decimal
from hypothesis import given, settings

from microlending import SYSTEM_WALLET, LoanStatus

from tests.helpers import BORROWER, LENDER
from .strategies import operation_lists, new_registry, apply


def user_balances(registry):
    ledger = registry.ledger
    return {
        w: ledger.get_balance(w, registry.config.currency)
        for w in ledger.list_wallets() if w != SYSTEM_WALLET
    }


class TestConservationProperties:
    """Property-based conservation tests."""

    @given(operation_lists)
    @settings(max_examples=150, deadline=None)
    def test_every_unit_nets_to_zero(self, history):
        registry = new_registry()
        for op in history:
            apply(registry, op)
            result = registry.verify_balances()
            assert result['valid'], result['discrepancies']

    @given(operation_lists)
    @settings(max_examples=150, deadline=None)
    def test_user_total_tracks_deposits_and_withdrawals(self, history):
        """
        PROPERTY: Only deposit and withdraw change the users' combined balance.
        """
        registry = new_registry()
        issued = Decimal("0")
        for op in history:
            if not apply(registry, op):
                continue
            if op[0] == "deposit":
                issued += op[2]
            elif op[0] == "withdraw":
                issued -= op[2]
            assert sum(user_balances(registry).values(), Decimal("0")) == issued

    @given(operation_lists)
    @settings(max_examples=150, deadline=None)
    def test_balances_never_negative(self, history):
        registry = new_registry()
        for op in history:
            apply(registry, op)
            for wallet, balance in user_balances(registry).items():
                assert balance >= 0, f"{wallet} went negative: {balance}"

    @given(operation_lists)
    @settings(max_examples=100, deadline=None)
    def test_record_held_by_borrower_until_repaid(self, history):
        registry = new_registry()
        for op in history:
            apply(registry, op)

        for loan in registry.list_loans():
            held = registry.ledger.get_balance(loan.borrower, loan.symbol)
            expected = Decimal("0") if loan.status == LoanStatus.REPAID else Decimal("1")
            assert held == expected
            assert registry.ledger.total_supply(loan.symbol) == 0


class TestConservationExamples:
    """Explicit money-flow examples."""

    def test_full_cycle(self, active_loan):
        registry, loan_id = active_loan
        assert registry.get_user_balance(BORROWER) == Decimal("1000")
        assert registry.get_user_balance(LENDER) == Decimal("4000")

        registry.deposit(BORROWER, 50)
        registry.repay_loan(loan_id, BORROWER)

        assert registry.get_user_balance(BORROWER) == Decimal("0")
        assert registry.get_user_balance(LENDER) == Decimal("5050")
        assert registry.ledger.get_balance(SYSTEM_WALLET, "STX") == Decimal("-5050")
        assert registry.verify_balances()['valid']

    def test_request_moves_no_currency(self, scored_registry):
        before = user_balances(scored_registry)
        scored_registry.request_loan(BORROWER, 1000, 500, 144, "x")
        after = user_balances(scored_registry)
        assert after[LENDER] == before[LENDER]
        assert after[BORROWER] == Decimal("0")

    def test_default_moves_no_currency(self, active_loan):
        registry, _ = active_loan
        before = user_balances(registry)
        registry.advance_block(1_000)
        assert user_balances(registry) == before

    def test_supplies_reported(self, active_loan):
        registry, _ = active_loan
        supplies = registry.verify_balances()['supplies']
        assert set(supplies) == {"STX", "MICRO_LENDING", "LOAN_0"}
        assert all(s == 0 for s in supplies.values())


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
