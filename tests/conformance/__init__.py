"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the lending core.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. rewards.py - Reward accumulator properties (no source, proportionality, round trip)
2. atomicity.py - Rejected operations and failed payouts leave no trace
3. conservation.py - Token conservation and pool cash agreement with the ledger
4. idempotency.py - Duplicate transfer handling and touch idempotence

These tests use hypothesis for property-based testing.
"""
