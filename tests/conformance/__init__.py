"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of a vesting sale held in the
Ledger. Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Double-entry accounting and allocation bookkeeping
2. atomicity.py - All-or-nothing sale operations
3. idempotency.py - Duplicate execution handling
4. vesting.py - Unlock monotonicity and withdrawal bounds

These tests use hypothesis for property-based testing.
"""
