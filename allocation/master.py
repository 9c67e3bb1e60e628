"""
master.py - Allocation Master

Multi-track, time-weighted staking ledger. Accounts stake a track's token
and accrue weight linearly in amount staked times blocks staked; the owner
runs sale rounds per track; accounts roll their participation forward.

Flow of every mutating call:
    1. TrackRegistry gates on existence, enabled state and ownership
    2. New checkpoints are computed from the latest ones via weight.weight_at
    3. Checkpoint ordering is verified before any token moves
    4. The token transfer executes on the Ledger (TransferFailed on rejection)
    5. Checkpoints are committed

A failure at any step leaves balances and checkpoints untouched.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from .checkpoints import (
    CheckpointStore, TrackCheckpoint, UserCheckpoint, check_appendable,
)
from .core import (
    AllocationError, CapExceeded, InsufficientStake, InvalidQueryTime,
    TrackDisabled, TransactionOrigin, OriginType,
    DEFAULT_MASTER_ADDRESS, ZERO,
    to_amount,
)
from .ledger import Ledger
from .token import StakeToken
from .tracks import Track, TrackRegistry
from .weight import weight_at


class AllocationMaster:
    """
    Staking ledger over a token Ledger.

    The master custodies staked tokens in its own wallet (`address`) and reads
    the logical block from the ledger's clock. The owner is fixed at
    construction and is the only identity allowed to add, disable, or bump
    the sale counter of tracks.

    Example:
        ledger = Ledger("chain", verbose=False)
        ledger.register_unit(create_stake_token("TEST", "test token"))
        master = AllocationMaster(ledger, owner="owner")
        track_id = master.add_track("owner", "TEST Track", "TEST", 1, max_stakes=1000)

        token = StakeToken(ledger, "TEST")
        token.approve("alice", master.address, 100)
        master.stake(track_id, "alice", 100)
        ledger.mine(10)
        master.get_user_stake_weight(track_id, "alice")   # Decimal("1000")
    """

    def __init__(
        self,
        ledger: Ledger,
        owner: str,
        address: str = DEFAULT_MASTER_ADDRESS,
        verbose: Optional[bool] = None,
        forfeit_weight_on_emergency: bool = True,
    ):
        """
        Create an allocation master.

        Args:
            ledger: Token ledger holding balances and the block clock
            owner: Administrative identity
            address: Wallet custodying staked tokens (registered if needed)
            verbose: Status output (default: follow the ledger)
            forfeit_weight_on_emergency: emergency_withdraw zeroes accrued
                weight; when False the account keeps it as a frozen baseline
        """
        self.ledger = ledger
        self.address = address
        self.registry = TrackRegistry(owner)
        self.checkpoints = CheckpointStore()
        self.verbose = ledger.verbose if verbose is None else verbose
        self.forfeit_weight_on_emergency = forfeit_weight_on_emergency
        if not ledger.is_registered(address):
            ledger.register_wallet(address)

    @property
    def owner(self) -> str:
        return self.registry.owner

    @property
    def current_block(self) -> int:
        return self.ledger.current_block

    def _log(self, message: str) -> None:
        if self.verbose:
            print(message)

    def _reject(self, operation: str, error: AllocationError) -> AllocationError:
        self._log(f"✗ {operation} REJECTED: {error}")
        return error

    def _token(self, track: Track) -> StakeToken:
        return StakeToken(self.ledger, track.stake_token)

    def _origin(self, track: Track, event_type: str) -> TransactionOrigin:
        return TransactionOrigin(OriginType.CONTRACT, self.address, track.stake_token, event_type)

    def _resolve_at(self, at: Optional[int]) -> int:
        if at is None:
            return self.ledger.current_block
        if at < 0:
            raise InvalidQueryTime(f"query block must be non-negative, got {at}")
        return at

    # ========================================================================
    # TRACK REGISTRY (administrative)
    # ========================================================================

    def add_track(
        self,
        sender: str,
        name: str,
        stake_token: str,
        weight_accrual_rate,
        max_stakes=None,
    ) -> int:
        """
        Create a track and return its id.

        Raises:
            Unauthorized: If sender is not the owner
            UnitNotRegistered: If stake_token is not a ledger unit
            ValueError: On an empty name or a negative rate or cap
        """
        try:
            self.registry.only_owner(sender)
        except AllocationError as e:
            raise self._reject("ADD_TRACK", e)
        self.ledger.get_unit(stake_token)
        track = self.registry.add(sender, name, stake_token, weight_accrual_rate, max_stakes)
        self._log(
            f"📝 Track {track.id}: {track.name} [{track.stake_token}] "
            f"rate={track.weight_accrual_rate} max={track.max_stakes}"
        )
        return track.id

    def disable_track(self, sender: str, track_id: int) -> None:
        """
        Stop accepting new stakes on a track. Idempotent.

        Existing stakes keep accruing weight and can still be withdrawn.
        """
        try:
            self.registry.disable(sender, track_id)
        except AllocationError as e:
            raise self._reject("DISABLE_TRACK", e)
        self._log(f"✓ DISABLE_TRACK track={track_id} block={self.current_block}")

    def bump_sale_counter(self, sender: str, track_id: int) -> int:
        """
        Close the current sale round of a track and return the new counter.

        Appends a track checkpoint carrying the new counter and the aggregate
        stake and weight as of the current block.
        """
        block = self.ledger.current_block
        try:
            track = self.registry.preview_bump(sender, track_id)
            latest = self.checkpoints.latest_track(track_id)
            checkpoint = TrackCheckpoint(
                at=block,
                total_staked=latest.total_staked,
                total_stake_weight=weight_at(latest, block, track.weight_accrual_rate),
                sale_counter=track.sale_counter,
            )
            self.checkpoints.commit(track_id, track_checkpoint=checkpoint)
        except AllocationError as e:
            raise self._reject("BUMP_SALE_COUNTER", e)
        self.registry.store(track)
        self._log(f"✓ BUMP_SALE_COUNTER track={track_id} counter={track.sale_counter} block={block}")
        return track.sale_counter

    # ========================================================================
    # STAKE LEDGER (account operations)
    # ========================================================================

    def _next_checkpoints(
        self,
        track: Track,
        account: str,
        staked_delta: Decimal,
        block: int,
    ) -> Tuple[TrackCheckpoint, UserCheckpoint]:
        """Checkpoints after adding `staked_delta` (may be negative) at `block`."""
        rate = track.weight_accrual_rate
        track_cp = self.checkpoints.latest_track(track.id)
        user_cp = self.checkpoints.latest_user(track.id, account)
        new_user = UserCheckpoint(
            at=block,
            staked=user_cp.staked + staked_delta,
            stake_weight=weight_at(user_cp, block, rate),
            rounds_participated=user_cp.rounds_participated,
        )
        new_track = TrackCheckpoint(
            at=block,
            total_staked=track_cp.total_staked + staked_delta,
            total_stake_weight=weight_at(track_cp, block, rate),
            sale_counter=track.sale_counter,
        )
        return new_track, new_user

    def _check_ordering(self, track_id: int, account: str, block: int) -> None:
        check_appendable(self.checkpoints.track_history(track_id), block)
        check_appendable(self.checkpoints.user_history(track_id, account), block)

    def stake(self, track_id: int, account: str, amount) -> None:
        """
        Pull `amount` of the track's token from `account` and stake it.

        The account must have approved the master's address for at least
        `amount` beforehand.

        Raises:
            TrackNotFound: If the track does not exist
            TrackDisabled: If the track no longer accepts stakes
            CapExceeded: If the track total would exceed max_stakes
            TransferFailed: If balance or allowance is insufficient
            ValueError: If amount is not positive
        """
        amount = to_amount(amount)
        block = self.ledger.current_block
        try:
            track = self.registry.get(track_id)
            if not track.enabled:
                raise TrackDisabled(f"Track {track_id} is disabled")
            new_track, new_user = self._next_checkpoints(track, account, amount, block)
            if track.max_stakes is not None and new_track.total_staked > track.max_stakes:
                raise CapExceeded(
                    f"Track {track_id}: total {new_track.total_staked} would exceed max {track.max_stakes}"
                )
            self._check_ordering(track_id, account, block)
            self._token(track).transfer_from(
                self.address, account, self.address, amount, self._origin(track, "STAKE")
            )
        except AllocationError as e:
            raise self._reject("STAKE", e)
        self.checkpoints.commit(track_id, new_track, account, new_user)
        self._log(f"✓ STAKE track={track_id} {account} +{amount} staked={new_user.staked} block={block}")

    def unstake(self, track_id: int, account: str, amount) -> None:
        """
        Return `amount` of staked tokens to `account`.

        Allowed on disabled tracks. Weight accrued so far is kept.

        Raises:
            TrackNotFound: If the track does not exist
            InsufficientStake: If amount exceeds the account's stake
            TransferFailed: If the master cannot pay out
            ValueError: If amount is not positive
        """
        amount = to_amount(amount)
        block = self.ledger.current_block
        try:
            track = self.registry.get(track_id)
            staked = self.checkpoints.latest_user(track_id, account).staked
            if amount > staked:
                raise InsufficientStake(
                    f"Track {track_id}: {account} has {staked} staked, cannot unstake {amount}"
                )
            new_track, new_user = self._next_checkpoints(track, account, -amount, block)
            self._check_ordering(track_id, account, block)
            self._token(track).transfer(self.address, account, amount, self._origin(track, "UNSTAKE"))
        except AllocationError as e:
            raise self._reject("UNSTAKE", e)
        self.checkpoints.commit(track_id, new_track, account, new_user)
        self._log(f"✓ UNSTAKE track={track_id} {account} -{amount} staked={new_user.staked} block={block}")

    def emergency_withdraw(self, track_id: int, account: str) -> Decimal:
        """
        Return the account's entire stake and forfeit all its accrued weight.

        With forfeit_weight_on_emergency off, the accrued weight is kept as a
        baseline that no longer grows. Works on disabled tracks.
        rounds_participated is left as it was. Returns the amount paid out; a
        call that would change nothing returns Decimal("0") and writes nothing.

        Raises:
            TrackNotFound: If the track does not exist
            TransferFailed: If the master cannot pay out
        """
        block = self.ledger.current_block
        try:
            track = self.registry.get(track_id)
            rate = track.weight_accrual_rate
            user_cp = self.checkpoints.latest_user(track_id, account)
            accrued = weight_at(user_cp, block, rate)
            forfeited = accrued if self.forfeit_weight_on_emergency else ZERO
            amount = user_cp.staked
            if amount == ZERO and forfeited == ZERO:
                return ZERO
            track_cp = self.checkpoints.latest_track(track_id)
            new_user = UserCheckpoint(
                at=block,
                staked=ZERO,
                stake_weight=accrued - forfeited,
                rounds_participated=user_cp.rounds_participated,
            )
            new_track = TrackCheckpoint(
                at=block,
                total_staked=track_cp.total_staked - amount,
                total_stake_weight=weight_at(track_cp, block, rate) - forfeited,
                sale_counter=track.sale_counter,
            )
            self._check_ordering(track_id, account, block)
            if amount > ZERO:
                self._token(track).transfer(
                    self.address, account, amount, self._origin(track, "EMERGENCY_WITHDRAW")
                )
        except AllocationError as e:
            raise self._reject("EMERGENCY_WITHDRAW", e)
        self.checkpoints.commit(track_id, new_track, account, new_user)
        self._log(
            f"✓ EMERGENCY_WITHDRAW track={track_id} {account} -{amount} "
            f"forfeited_weight={forfeited} block={block}"
        )
        return amount

    # ========================================================================
    # SALE-ROUND COORDINATOR
    # ========================================================================

    def active_roll_over(self, track_id: int, account: str) -> bool:
        """
        Carry the account's stake and weight into the track's current round.

        Sets rounds_participated to the track's sale counter, keeping stake
        and accrued weight as they are. Returns False (and writes nothing)
        if the account is already current.
        """
        block = self.ledger.current_block
        try:
            track = self.registry.get(track_id)
            user_cp = self.checkpoints.latest_user(track_id, account)
            if user_cp.rounds_participated >= track.sale_counter:
                return False
            new_user = UserCheckpoint(
                at=block,
                staked=user_cp.staked,
                stake_weight=weight_at(user_cp, block, track.weight_accrual_rate),
                rounds_participated=track.sale_counter,
            )
            self.checkpoints.commit(track_id, account=account, user_checkpoint=new_user)
        except AllocationError as e:
            raise self._reject("ACTIVE_ROLL_OVER", e)
        self._log(
            f"✓ ACTIVE_ROLL_OVER track={track_id} {account} rounds={new_user.rounds_participated} block={block}"
        )
        return True

    # ========================================================================
    # QUERIES (read-only)
    # ========================================================================

    def track_count(self) -> int:
        return len(self.registry)

    def get_track(self, track_id: int) -> Track:
        return self.registry.get(track_id)

    def track_max_stakes(self, track_id: int) -> Optional[Decimal]:
        return self.registry.get(track_id).max_stakes

    def track_checkpoint_count(self, track_id: int) -> int:
        self.registry.get(track_id)
        return self.checkpoints.track_count(track_id)

    def track_checkpoint(self, track_id: int, index: int) -> TrackCheckpoint:
        """
        Track checkpoint by position; negative indexes count from the end.

        Raises:
            TrackNotFound: If the track does not exist
            IndexError: If `index` is outside the track's history
        """
        self.registry.get(track_id)
        history = self.checkpoints.track_history(track_id)
        if not -len(history) <= index < len(history):
            raise IndexError(f"Track {track_id} has {len(history)} checkpoints, no index {index}")
        return history[index]

    def user_checkpoint_count(self, track_id: int, account: str) -> int:
        self.registry.get(track_id)
        return self.checkpoints.user_count(track_id, account)

    def user_checkpoint(self, track_id: int, account: str, index: int) -> UserCheckpoint:
        """
        User checkpoint by position; negative indexes count from the end.

        Raises:
            TrackNotFound: If the track does not exist
            IndexError: If `index` is outside the account's history
        """
        self.registry.get(track_id)
        history = self.checkpoints.user_history(track_id, account)
        if not -len(history) <= index < len(history):
            raise IndexError(
                f"{account} has {len(history)} checkpoints on track {track_id}, no index {index}"
            )
        return history[index]

    def accounts(self, track_id: int) -> List[str]:
        self.registry.get(track_id)
        return self.checkpoints.accounts(track_id)

    def get_user_stake_weight(self, track_id: int, account: str, at: Optional[int] = None) -> Decimal:
        """Account's weight at block `at` (default: current block)."""
        track = self.registry.get(track_id)
        at = self._resolve_at(at)
        checkpoint = self.checkpoints.user_at(track_id, account, at)
        return weight_at(checkpoint, at, track.weight_accrual_rate)

    def get_total_stake_weight(self, track_id: int, at: Optional[int] = None) -> Decimal:
        """Track's aggregate weight at block `at` (default: current block)."""
        track = self.registry.get(track_id)
        at = self._resolve_at(at)
        checkpoint = self.checkpoints.track_at(track_id, at)
        return weight_at(checkpoint, at, track.weight_accrual_rate)

    def get_user_staked(self, track_id: int, account: str, at: Optional[int] = None) -> Decimal:
        self.registry.get(track_id)
        return self.checkpoints.user_at(track_id, account, self._resolve_at(at)).staked

    def get_total_staked(self, track_id: int, at: Optional[int] = None) -> Decimal:
        self.registry.get(track_id)
        return self.checkpoints.track_at(track_id, self._resolve_at(at)).total_staked

    def verify_stake_identity(self, track_id: int, at: Optional[int] = None) -> Dict[str, Any]:
        """
        Audit the track's accounting identities at block `at`.

        totalStaked must equal the sum of account stakes, and total weight must
        equal the sum of account weights.

        Returns:
            Dict with keys:
            - 'valid': bool
            - 'total_staked' / 'sum_staked': Decimal
            - 'total_weight' / 'sum_weight': Decimal
            - 'discrepancies': List[Dict] with 'field', 'expected', 'actual'

        Example:
            report = master.verify_stake_identity(track_id)
            assert report['valid'], report['discrepancies']
        """
        at = self._resolve_at(at)
        accounts = self.accounts(track_id)
        total_staked = self.get_total_staked(track_id, at)
        total_weight = self.get_total_stake_weight(track_id, at)
        sum_staked = sum((self.get_user_staked(track_id, a, at) for a in accounts), ZERO)
        sum_weight = sum((self.get_user_stake_weight(track_id, a, at) for a in accounts), ZERO)

        discrepancies = []
        if total_staked != sum_staked:
            discrepancies.append({'field': 'staked', 'expected': sum_staked, 'actual': total_staked})
        if total_weight != sum_weight:
            discrepancies.append({'field': 'weight', 'expected': sum_weight, 'actual': total_weight})

        return {
            'valid': len(discrepancies) == 0,
            'total_staked': total_staked,
            'sum_staked': sum_staked,
            'total_weight': total_weight,
            'sum_weight': sum_weight,
            'discrepancies': discrepancies,
        }
