"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the engine.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. test_conservation.py - Custody and supply match the recorded positions
2. test_atomicity.py - All-or-nothing operation semantics
3. test_solvency.py - Health factor invariant, monotonicity, liquidation
4. test_concurrency.py - Serialized writers, consistent readers, reentrancy

These tests use hypothesis for property-based testing.
"""
