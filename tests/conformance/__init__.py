"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the lending registry.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Balances are issued and moved, never created
2. atomicity.py - Every call applies completely or leaves no trace
3. idempotency.py - Duplicate execution handling
4. determinism.py - Reproducible behavior
5. state_machine.py - Loan status only moves forward

These tests use hypothesis for property-based testing over random
sequences of registry calls.
"""
