"""
Atomicity Conformance Tests

INVARIANT: A registry call applies completely or not at all.

    ∀ call C, registry R:
        C raises ⟹ observable state of R after C = state of R before C

No wallet is registered, no balance moves, no loan id is consumed and no
transaction is logged by a call that fails.
"""

import pytest
from hypothesis import given, settings

from microlending import (
    LoanRegistry, RegistryConfig, LoanStatus, LedgerError,
    InsufficientCreditScore, LoanNotFound, LoanNotPending, LoanNotActive,
    Unauthorized, InsufficientFunds, InvalidLoanTerms,
)

from tests.helpers import OWNER, BORROWER, LENDER, OTHER, snapshot
from .strategies import operations, operation_lists, new_registry, apply


class TestAtomicityProperties:
    """Property-based atomicity tests."""

    @given(operation_lists, operations)
    @settings(max_examples=150, deadline=None)
    def test_failed_call_leaves_no_trace(self, history, op):
        """
        PROPERTY: After any history, a refused call changes nothing.
        """
        registry = new_registry()
        for past in history:
            apply(registry, past)

        before = snapshot(registry)
        if not apply(registry, op):
            assert snapshot(registry) == before

    @given(operation_lists)
    @settings(max_examples=100, deadline=None)
    def test_successful_call_logs_at_most_one_transaction(self, history):
        """
        PROPERTY: Every accepted call (other than a block advance) is one
        ledger transaction.
        """
        registry = new_registry()
        for op in history:
            before = len(registry.ledger.transaction_log)
            applied = apply(registry, op)
            after = len(registry.ledger.transaction_log)
            if not applied:
                assert after == before
            elif op[0] != "advance":
                assert after == before + 1


class TestAtomicityExamples:
    """Each refusal from the error catalogue, checked against a snapshot."""

    @pytest.fixture
    def registry(self):
        registry = LoanRegistry(RegistryConfig(owner=OWNER))
        registry.update_credit_score(BORROWER, 750, caller=OWNER)
        registry.deposit(LENDER, 800)
        registry.request_loan(BORROWER, 1000, 500, 144, "too big for bob")
        registry.request_loan(BORROWER, 500, 500, 144, "affordable")
        return registry

    def _refused(self, registry, error, call):
        before = snapshot(registry)
        with pytest.raises(error):
            call()
        assert snapshot(registry) == before

    def test_low_score_request(self, registry):
        registry.update_credit_score(OTHER, 699, caller=OWNER)
        self._refused(
            registry, InsufficientCreditScore,
            lambda: registry.request_loan(OTHER, 100, 100, 10, "x"),
        )
        assert registry.get_loan_count() == 2

    def test_unscored_request_does_not_register_wallet(self, registry):
        self._refused(
            registry, InsufficientCreditScore,
            lambda: registry.request_loan("dave", 100, 100, 10, "x"),
        )
        assert not registry.ledger.is_registered("dave")

    def test_bad_terms(self, registry):
        self._refused(
            registry, InvalidLoanTerms,
            lambda: registry.request_loan(BORROWER, 0, 100, 10, "x"),
        )

    def test_unknown_loan(self, registry):
        self._refused(registry, LoanNotFound, lambda: registry.fund_loan(7, LENDER))

    def test_underfunded_lender(self, registry):
        self._refused(registry, InsufficientFunds, lambda: registry.fund_loan(0, LENDER))
        assert registry.get_loan(0).status == LoanStatus.PENDING

    def test_self_funding(self, registry):
        registry.deposit(BORROWER, 1000)
        self._refused(registry, Unauthorized, lambda: registry.fund_loan(1, BORROWER))

    def test_double_funding(self, registry):
        registry.fund_loan(1, LENDER)
        self._refused(registry, LoanNotPending, lambda: registry.fund_loan(1, LENDER))

    def test_repay_pending(self, registry):
        self._refused(registry, LoanNotActive, lambda: registry.repay_loan(1, BORROWER))

    def test_repay_by_stranger(self, registry):
        registry.fund_loan(1, LENDER)
        self._refused(registry, Unauthorized, lambda: registry.repay_loan(1, OTHER))

    def test_repay_short_of_interest(self, registry):
        registry.fund_loan(1, LENDER)
        self._refused(registry, InsufficientFunds, lambda: registry.repay_loan(1, BORROWER))
        assert registry.get_loan(1).status == LoanStatus.ACTIVE

    def test_score_update_by_non_owner(self, registry):
        self._refused(
            registry, Unauthorized,
            lambda: registry.update_credit_score(BORROWER, 850, caller=BORROWER),
        )
        assert registry.get_credit_score(BORROWER) == 750

    def test_all_refusals_are_ledger_errors(self, registry):
        with pytest.raises(LedgerError):
            registry.fund_loan(0, LENDER)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
