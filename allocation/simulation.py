"""
simulation.py - Block-by-block allocation scenarios

Drives an AllocationMaster through a scripted list of rows, one block per
row, and records what each user and the track look like after every block.

Processing order within a row (all in the same block):
1. Disable track
2. Bump sale counter (as the owner)
3. Active roll-overs
4. Emergency withdrawals
5. Stakes (approve then stake) and unstakes (negative amounts)

Then the row is snapshotted at the current block and one block is mined.
Operations the master rejects are recorded on the output row instead of
aborting the run, the same way a reverted transaction leaves the block intact.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .core import AllocationError, ZERO, to_decimal
from .master import AllocationMaster
from .token import StakeToken


@dataclass(frozen=True, slots=True)
class SimInputRow:
    """
    One block of scripted activity.

    stake_amounts, emergency_withdraws and active_roll_overs are indexed
    like the simulator's users; shorter tuples leave later users idle.
    """
    stake_amounts: Tuple[Decimal, ...] = ()
    bump_sale_counter: bool = False
    disable_track: bool = False
    emergency_withdraws: Tuple[bool, ...] = ()
    active_roll_overs: Tuple[bool, ...] = ()
    label: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'stake_amounts', tuple(to_decimal(a) for a in self.stake_amounts))
        object.__setattr__(self, 'emergency_withdraws', tuple(self.emergency_withdraws))
        object.__setattr__(self, 'active_roll_overs', tuple(self.active_roll_overs))


@dataclass(frozen=True, slots=True)
class UserSnapshot:
    """A user's latest checkpoint, live weight, and wallet balance."""
    account: str
    stake: Decimal
    weight: Decimal
    sale_count: int
    balance: Decimal


@dataclass(frozen=True, slots=True)
class SimOutputRow:
    """State of the track and every simulated user at the end of a block."""
    block: int
    label: Optional[str]
    users: Tuple[UserSnapshot, ...]
    total_staked: Decimal
    total_weight: Decimal
    track_sale_count: int
    track_max_stakes: Optional[Decimal]
    rejections: Tuple[str, ...] = ()


class AllocationSimulator:
    """
    Runs SimInputRows against one track of an AllocationMaster.

    Example:
        sim = AllocationSimulator(master, track_id, ["alice", "bob"])
        rows = sim.run([
            SimInputRow(stake_amounts=(100, 0)),
            SimInputRow(),
            SimInputRow(stake_amounts=(-50, 20)),
        ])
    """

    def __init__(self, master: AllocationMaster, track_id: int, users: Sequence[str]):
        self.master = master
        self.track_id = track_id
        self.users: Tuple[str, ...] = tuple(users)
        self.token = StakeToken(master.ledger, master.get_track(track_id).stake_token)

    def _attempt(self, rejections: List[str], operation: str, call, *args) -> None:
        try:
            call(*args)
        except AllocationError as e:
            rejections.append(f"{operation}: {type(e).__name__}: {e}")

    def step(self, row: SimInputRow) -> SimOutputRow:
        """Apply one row at the current block, snapshot it, and mine a block."""
        master = self.master
        rejections: List[str] = []

        if row.disable_track:
            self._attempt(rejections, "disable_track", master.disable_track, master.owner, self.track_id)

        if row.bump_sale_counter:
            self._attempt(rejections, "bump_sale_counter", master.bump_sale_counter, master.owner, self.track_id)

        for user, roll in zip(self.users, row.active_roll_overs):
            if roll:
                self._attempt(rejections, f"active_roll_over[{user}]", master.active_roll_over, self.track_id, user)

        for user, withdraw in zip(self.users, row.emergency_withdraws):
            if withdraw:
                self._attempt(
                    rejections, f"emergency_withdraw[{user}]", master.emergency_withdraw, self.track_id, user
                )

        for user, amount in zip(self.users, row.stake_amounts):
            if amount > ZERO:
                self._attempt(rejections, f"approve[{user}]", self.token.approve, user, master.address, amount)
                self._attempt(rejections, f"stake[{user}]", master.stake, self.track_id, user, amount)
            elif amount < ZERO:
                self._attempt(rejections, f"unstake[{user}]", master.unstake, self.track_id, user, -amount)

        output = self.snapshot(row.label, tuple(rejections))
        master.ledger.mine()
        return output

    def snapshot(self, label: Optional[str] = None, rejections: Tuple[str, ...] = ()) -> SimOutputRow:
        """Record the track and users at the current block without mining."""
        master = self.master
        block = master.current_block
        users = []
        for user in self.users:
            count = master.user_checkpoint_count(self.track_id, user)
            checkpoint = master.user_checkpoint(self.track_id, user, count - 1) if count else None
            users.append(UserSnapshot(
                account=user,
                stake=checkpoint.staked if checkpoint else ZERO,
                weight=master.get_user_stake_weight(self.track_id, user, block),
                sale_count=checkpoint.rounds_participated if checkpoint else 0,
                balance=self.token.balance_of(user),
            ))
        track = master.get_track(self.track_id)
        return SimOutputRow(
            block=block,
            label=label,
            users=tuple(users),
            total_staked=master.get_total_staked(self.track_id, block),
            total_weight=master.get_total_stake_weight(self.track_id, block),
            track_sale_count=track.sale_counter,
            track_max_stakes=track.max_stakes,
            rejections=rejections,
        )

    def run(self, rows: Sequence[SimInputRow]) -> List[SimOutputRow]:
        return [self.step(row) for row in rows]


def simulate(
    master: AllocationMaster,
    track_id: int,
    users: Sequence[str],
    rows: Sequence[SimInputRow],
) -> List[SimOutputRow]:
    """Run `rows` against a track and return one output row per block."""
    return AllocationSimulator(master, track_id, users).run(rows)


def to_arrays(rows: Sequence[SimOutputRow]) -> Dict[str, np.ndarray]:
    """
    Column view of a simulation for analysis and plotting.

    Keys: block, total_staked, total_weight, track_sale_count, and per user i
    user{i}_stake, user{i}_weight, user{i}_sale_count, user{i}_balance.
    Amounts are float64; counts and blocks are int64.
    """
    columns: Dict[str, np.ndarray] = {
        'block': np.array([r.block for r in rows], dtype=np.int64),
        'total_staked': np.array([float(r.total_staked) for r in rows], dtype=np.float64),
        'total_weight': np.array([float(r.total_weight) for r in rows], dtype=np.float64),
        'track_sale_count': np.array([r.track_sale_count for r in rows], dtype=np.int64),
    }
    n_users = len(rows[0].users) if rows else 0
    for i in range(n_users):
        columns[f'user{i}_stake'] = np.array([float(r.users[i].stake) for r in rows], dtype=np.float64)
        columns[f'user{i}_weight'] = np.array([float(r.users[i].weight) for r in rows], dtype=np.float64)
        columns[f'user{i}_sale_count'] = np.array([r.users[i].sale_count for r in rows], dtype=np.int64)
        columns[f'user{i}_balance'] = np.array([float(r.users[i].balance) for r in rows], dtype=np.float64)
    return columns
