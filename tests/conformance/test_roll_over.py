"""
Roll-over Conformance Tests

INVARIANT: Participation markers never run ahead of the track, and rolling
over twice is the same as rolling over once.

    ∀ account a, ∀ track T:
        roundsParticipated(a) ≤ saleCounter(T)
    activeRollOver(a); activeRollOver(a) ≡ activeRollOver(a)
"""

from hypothesis import given, settings
from hypothesis import strategies as st

from tests.helpers import ACCOUNTS, make_master, apply_operation, operations


class TestRollOverProperties:

    @given(operations)
    @settings(max_examples=50, deadline=None)
    def test_rounds_bounded_by_sale_counter(self, ops):
        """
        PROPERTY: After every operation, no account has participated in more
        rounds than the track has run.
        """
        master, track_id, _ = make_master(max_stakes=1000)
        for op in ops:
            apply_operation(master, track_id, op)
            counter = master.get_track(track_id).sale_counter
            for account in ACCOUNTS:
                if master.user_checkpoint_count(track_id, account):
                    latest = master.user_checkpoint(track_id, account, -1)
                    assert latest.rounds_participated <= counter

    @given(operations, st.sampled_from(ACCOUNTS), st.integers(min_value=0, max_value=5))
    @settings(max_examples=50, deadline=None)
    def test_second_roll_over_is_noop(self, ops, account, gap):
        """
        PROPERTY: Once an account is current, rolling over again writes
        nothing and changes no reading.
        """
        master, track_id, _ = make_master(max_stakes=1000)
        for op in ops:
            apply_operation(master, track_id, op)

        master.active_roll_over(track_id, account)
        master.ledger.mine(gap)
        history = master.checkpoints.user_history(track_id, account)
        weight = master.get_user_stake_weight(track_id, account)

        assert master.active_roll_over(track_id, account) is False
        assert master.checkpoints.user_history(track_id, account) == history
        assert master.get_user_stake_weight(track_id, account) == weight

    @given(operations, st.sampled_from(ACCOUNTS))
    @settings(max_examples=50, deadline=None)
    def test_roll_over_preserves_stake_and_weight(self, ops, account):
        """
        PROPERTY: Rolling over changes only the participation marker.
        """
        master, track_id, _ = make_master(max_stakes=1000)
        for op in ops:
            apply_operation(master, track_id, op)
        master.bump_sale_counter(master.owner, track_id)
        master.ledger.mine()

        staked = master.get_user_staked(track_id, account)
        weight = master.get_user_stake_weight(track_id, account)
        assert master.active_roll_over(track_id, account) is True
        assert master.get_user_staked(track_id, account) == staked
        assert master.get_user_stake_weight(track_id, account) == weight
        assert master.user_checkpoint(track_id, account, -1).rounds_participated == \
            master.get_track(track_id).sale_counter
