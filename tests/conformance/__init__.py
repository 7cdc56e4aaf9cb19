"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the collar protocol on the ledger.

The tests are organized by invariant:
1. conservation.py - Locked funds and token supplies are never created or lost
2. atomicity.py - Protocol operations are all-or-nothing
3. idempotency.py - Retried operations never pay out twice

These tests use hypothesis for property-based testing.
"""
