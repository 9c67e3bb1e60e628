"""
checkpoints.py - Append-only checkpoint history

Every stake, unstake, emergency withdrawal, roll-over and sale-counter bump
leaves a snapshot behind. Snapshots are immutable; a sequence only grows,
except that a second mutation in the same block replaces that block's entry.

Two pure functions carry the whole contract:
    append_checkpoint(sequence, checkpoint)     - ordered append / same-block coalesce
    lookup_at_or_before(sequence, at, empty)    - O(log n) point-in-time read

CheckpointStore keys sequences by track and by (track, account).
"""

from __future__ import annotations
from bisect import bisect_right
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple, TypeVar, Union

from .core import InvalidOrdering, ZERO


@dataclass(frozen=True, slots=True)
class TrackCheckpoint:
    """
    Track-level aggregate at block `at`.

    Attributes:
        at: Block of the snapshot
        total_staked: Sum of all accounts' stake at `at`
        total_stake_weight: Aggregate weight baseline at `at` (no accrual after `at`)
        sale_counter: Track's sale counter at `at`
    """
    at: int
    total_staked: Decimal
    total_stake_weight: Decimal
    sale_counter: int

    @property
    def accrual_basis(self) -> Tuple[Decimal, Decimal]:
        """(staked, weight baseline) for the accrual engine."""
        return self.total_staked, self.total_stake_weight


@dataclass(frozen=True, slots=True)
class UserCheckpoint:
    """
    Account-level state on one track at block `at`.

    Attributes:
        at: Block of the snapshot
        staked: Account's stake at `at`
        stake_weight: Account's weight baseline at `at`
        rounds_participated: Sale rounds the account has rolled its stake into
    """
    at: int
    staked: Decimal
    stake_weight: Decimal
    rounds_participated: int

    @property
    def accrual_basis(self) -> Tuple[Decimal, Decimal]:
        """(staked, weight baseline) for the accrual engine."""
        return self.staked, self.stake_weight


Checkpoint = Union[TrackCheckpoint, UserCheckpoint]
C = TypeVar("C", TrackCheckpoint, UserCheckpoint)

# Returned for reads before the first entry: nothing staked, nothing accrued.
EMPTY_TRACK_CHECKPOINT = TrackCheckpoint(at=0, total_staked=ZERO, total_stake_weight=ZERO, sale_counter=0)
EMPTY_USER_CHECKPOINT = UserCheckpoint(at=0, staked=ZERO, stake_weight=ZERO, rounds_participated=0)


# =============================================================================
# PURE SEQUENCE OPERATIONS
# =============================================================================

def check_appendable(sequence: Sequence[Checkpoint], at: int) -> None:
    """
    Raise InvalidOrdering if a checkpoint at `at` cannot be appended.

    Raises:
        InvalidOrdering: If `at` is negative or before the latest entry.
    """
    if at < 0:
        raise InvalidOrdering(f"checkpoint block must be non-negative, got {at}")
    if sequence and at < sequence[-1].at:
        raise InvalidOrdering(
            f"checkpoint at block {at} precedes latest entry at block {sequence[-1].at}"
        )


def append_checkpoint(sequence: List[C], checkpoint: C) -> bool:
    """
    Append `checkpoint`, or replace the latest entry if it shares its block.

    Returns:
        True if the sequence grew, False if the latest entry was replaced.

    Raises:
        InvalidOrdering: If checkpoint.at precedes the latest entry.
    """
    check_appendable(sequence, checkpoint.at)
    if sequence and sequence[-1].at == checkpoint.at:
        sequence[-1] = checkpoint
        return False
    sequence.append(checkpoint)
    return True


def lookup_at_or_before(sequence: Sequence[C], at: int, empty: C) -> C:
    """
    Latest checkpoint with block <= `at`, by binary search.

    Returns `empty` when the sequence is empty or `at` precedes its first entry.
    """
    index = bisect_right(sequence, at, key=lambda cp: cp.at)
    if index == 0:
        return empty
    return sequence[index - 1]


# =============================================================================
# STORE
# =============================================================================

class CheckpointStore:
    """
    Checkpoint sequences per track and per (track, account).

    Reads hand out tuples; commit() is the only writer.
    """

    def __init__(self):
        self._tracks: Dict[int, List[TrackCheckpoint]] = {}
        self._users: Dict[Tuple[int, str], List[UserCheckpoint]] = {}

    def track_history(self, track_id: int) -> Tuple[TrackCheckpoint, ...]:
        return tuple(self._tracks.get(track_id, ()))

    def user_history(self, track_id: int, account: str) -> Tuple[UserCheckpoint, ...]:
        return tuple(self._users.get((track_id, account), ()))

    def track_count(self, track_id: int) -> int:
        return len(self._tracks.get(track_id, ()))

    def user_count(self, track_id: int, account: str) -> int:
        return len(self._users.get((track_id, account), ()))

    def latest_track(self, track_id: int) -> TrackCheckpoint:
        sequence = self._tracks.get(track_id)
        return sequence[-1] if sequence else EMPTY_TRACK_CHECKPOINT

    def latest_user(self, track_id: int, account: str) -> UserCheckpoint:
        sequence = self._users.get((track_id, account))
        return sequence[-1] if sequence else EMPTY_USER_CHECKPOINT

    def track_at(self, track_id: int, at: int) -> TrackCheckpoint:
        return lookup_at_or_before(self._tracks.get(track_id, ()), at, EMPTY_TRACK_CHECKPOINT)

    def user_at(self, track_id: int, account: str, at: int) -> UserCheckpoint:
        return lookup_at_or_before(self._users.get((track_id, account), ()), at, EMPTY_USER_CHECKPOINT)

    def accounts(self, track_id: int) -> List[str]:
        """Accounts with at least one checkpoint on the track, sorted."""
        return sorted(
            account for (tid, account), sequence in self._users.items()
            if tid == track_id and sequence
        )

    def commit(
        self,
        track_id: int,
        track_checkpoint: Optional[TrackCheckpoint] = None,
        account: Optional[str] = None,
        user_checkpoint: Optional[UserCheckpoint] = None,
    ) -> None:
        """
        Append a track and/or user checkpoint as one unit.

        Both orderings are checked before either sequence is touched, so an
        InvalidOrdering leaves the store unchanged.
        """
        if track_checkpoint is not None:
            check_appendable(self._tracks.get(track_id, ()), track_checkpoint.at)
        if user_checkpoint is not None:
            check_appendable(self._users.get((track_id, account), ()), user_checkpoint.at)
        if track_checkpoint is not None:
            append_checkpoint(self._tracks.setdefault(track_id, []), track_checkpoint)
        if user_checkpoint is not None:
            append_checkpoint(self._users.setdefault((track_id, account), []), user_checkpoint)
