"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the ledger rules.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - The total money supply never changes
2. atomicity.py - Rejected transactions, blocks and certificate batches change nothing
3. idempotency.py - Resubmission, re-delegation and register/deregister round trips
4. determinism.py - Identical inputs produce identical states; replay reproduces state
5. canonicalization.py - Content-addressed transaction identity
6. temporal.py - Slots, epoch boundaries, expiry and retirement timing

These tests use hypothesis for property-based testing.
"""
