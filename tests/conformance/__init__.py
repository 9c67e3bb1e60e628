"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the allocation master.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. checkpoint_ordering.py - Append-only, block-ordered history
2. atomicity.py - Rejected operations change nothing
3. conservation.py - Token supply and stake/weight accounting identities
4. weight_monotonicity.py - Weight never decreases without an emergency exit
5. roll_over.py - Participation markers are bounded and idempotent

These tests use hypothesis for property-based testing.
"""
