"""
Checkpoint Ordering Conformance Tests

INVARIANT: Checkpoint history is append-only and ordered by block.

    ∀ sequence S, ∀ i < j:
        S[i].at < S[j].at

A second mutation in the same block replaces that block's entry, and an
append before the latest entry is refused without touching the store.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from decimal import Decimal

from allocation import InvalidOrdering, TrackCheckpoint, UserCheckpoint

from tests.helpers import ACCOUNTS, make_master, apply_operation, operations


def assert_strictly_ordered(sequence):
    blocks = [cp.at for cp in sequence]
    assert blocks == sorted(set(blocks))


class TestOrderingProperties:

    @given(operations)
    @settings(max_examples=50, deadline=None)
    def test_histories_strictly_ordered(self, ops):
        """
        PROPERTY: Every track and user sequence has strictly increasing blocks.
        """
        master, track_id, _ = make_master(max_stakes=1000)
        for op in ops:
            apply_operation(master, track_id, op)

        assert_strictly_ordered(master.checkpoints.track_history(track_id))
        for account in ACCOUNTS:
            assert_strictly_ordered(master.checkpoints.user_history(track_id, account))

    @given(operations)
    @settings(max_examples=50, deadline=None)
    def test_at_most_one_checkpoint_per_block(self, ops):
        """
        PROPERTY: A sequence never holds more entries than blocks elapsed.
        """
        master, track_id, _ = make_master(max_stakes=1000)
        for op in ops:
            apply_operation(master, track_id, op)

        blocks = master.current_block + 1
        assert master.track_checkpoint_count(track_id) <= blocks
        for account in ACCOUNTS:
            assert master.user_checkpoint_count(track_id, account) <= blocks

    @given(st.integers(min_value=1, max_value=50), st.integers(min_value=1, max_value=50))
    @settings(max_examples=50, deadline=None)
    def test_out_of_order_commit_refused(self, latest, gap):
        """
        PROPERTY: Committing before the latest entry raises and changes nothing.
        """
        master, track_id, _ = make_master(initial_block=latest)
        master.ledger.mine(gap)
        master.bump_sale_counter(master.owner, track_id)
        before = master.checkpoints.track_history(track_id)

        stale = TrackCheckpoint(at=latest, total_staked=Decimal("1"), total_stake_weight=Decimal("0"), sale_counter=9)
        user = UserCheckpoint(at=latest + gap, staked=Decimal("1"), stake_weight=Decimal("0"), rounds_participated=0)
        with pytest.raises(InvalidOrdering):
            master.checkpoints.commit(track_id, stale, "alice", user)

        assert master.checkpoints.track_history(track_id) == before
        assert master.checkpoints.user_history(track_id, "alice") == ()


class TestOrderingExamples:

    def test_invalid_ordering_is_not_recoverable(self):
        assert InvalidOrdering.recoverable is False

    def test_same_block_replaces(self):
        master, track_id, _ = make_master()
        master.bump_sale_counter(master.owner, track_id)
        master.bump_sale_counter(master.owner, track_id)
        assert master.track_checkpoint_count(track_id) == 1
        assert master.track_checkpoint(track_id, 0).sale_counter == 2
