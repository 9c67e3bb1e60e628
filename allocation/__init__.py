"""
allocation - Time-weighted Staking Allocation Ledger

Tracks of staked tokens, linearly accruing stake weight, checkpointed history,
sale-round bookkeeping and an emergency exit, on top of a double-entry token
ledger.

Usage:
    from allocation import Ledger, AllocationMaster, StakeToken, create_stake_token

    ledger = Ledger("chain", verbose=False)
    ledger.register_unit(create_stake_token("TEST", "test token"))
    ledger.register_wallet("alice")

    token = StakeToken(ledger, "TEST")
    token.mint("alice", 1000)

    master = AllocationMaster(ledger, owner="owner")
    track_id = master.add_track("owner", "TEST Track", "TEST", 1, max_stakes=1000)

    token.approve("alice", master.address, 100)
    master.stake(track_id, "alice", 100)
    ledger.mine(10)
    master.get_user_stake_weight(track_id, "alice")   # Decimal("1000")
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    LedgerError,
    UnitNotRegistered,
    WalletNotRegistered,
    AllocationError,
    Unauthorized,
    TrackNotFound,
    TrackDisabled,
    CapExceeded,
    InsufficientStake,
    TransferFailed,
    InvalidOrdering,
    InvalidQueryTime,
    SYSTEM_WALLET,
    DEFAULT_MASTER_ADDRESS,
    UNIT_TYPE_STAKE_TOKEN,
)

# Token ledger
from .ledger import Ledger

# Stake token
from .token import (
    StakeToken,
    create_stake_token,
    mint,
    approve,
    transfer,
    transfer_from,
    balance_of,
    allowance,
)

# Checkpoints and weight
from .checkpoints import (
    TrackCheckpoint,
    UserCheckpoint,
    CheckpointStore,
    EMPTY_TRACK_CHECKPOINT,
    EMPTY_USER_CHECKPOINT,
    append_checkpoint,
    lookup_at_or_before,
)
from .weight import accrue, weight_at

# Tracks and the master
from .tracks import Track, TrackRegistry
from .master import AllocationMaster

# Simulation
from .simulation import (
    SimInputRow,
    SimOutputRow,
    UserSnapshot,
    AllocationSimulator,
    simulate,
    to_arrays,
)
