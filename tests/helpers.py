"""
helpers.py - Shared constants and helpers for allocation tests
"""

from decimal import Decimal
from typing import Dict, Iterable, Tuple

from hypothesis import strategies as st

from allocation import (
    Ledger, AllocationMaster, StakeToken, AllocationError,
    create_stake_token,
)


OWNER = "owner"
NON_OWNER = "mallory"
ACCOUNTS = ("alice", "bob", "charlie")
STARTING_SUPPLY = Decimal("21000000")


def make_ledger(initial_block: int = 0, symbol: str = "TEST") -> Ledger:
    """Quiet ledger with one stake token and the owner plus ACCOUNTS registered."""
    ledger = Ledger("test", initial_block=initial_block, verbose=False, test_mode=True)
    ledger.register_unit(create_stake_token(symbol, "test token"))
    for wallet in (OWNER, NON_OWNER) + ACCOUNTS:
        ledger.register_wallet(wallet)
    return ledger


def fund(token: StakeToken, amounts: Dict[str, Decimal]) -> None:
    """Mint tokens to each wallet through the issuance path."""
    for wallet, amount in amounts.items():
        token.mint(wallet, amount)


def make_master(initial_block: int = 0, rate=1, max_stakes=None) -> Tuple[AllocationMaster, int, StakeToken]:
    """Funded ledger, a quiet master and one track: (master, track_id, token)."""
    ledger = make_ledger(initial_block)
    token = StakeToken(ledger, "TEST")
    fund(token, {a: Decimal("10000") for a in ACCOUNTS})
    master = AllocationMaster(ledger, owner=OWNER, verbose=False)
    track_id = master.add_track(OWNER, "TEST Track", "TEST", rate, max_stakes=max_stakes)
    return master, track_id, token


def approve_and_stake(master: AllocationMaster, track_id: int, account: str, amount) -> None:
    """Approve the master for `amount` and stake it, like a wallet would."""
    token = StakeToken(master.ledger, master.get_track(track_id).stake_token)
    token.approve(account, master.address, amount)
    master.stake(track_id, account, amount)


def checkpoint_snapshot(master: AllocationMaster, track_id: int, accounts: Iterable[str]) -> Tuple:
    """Every checkpoint of a track and its accounts, for before/after comparisons."""
    return (
        master.checkpoints.track_history(track_id),
        tuple(master.checkpoints.user_history(track_id, a) for a in accounts),
    )


def balance_snapshot(ledger: Ledger, symbol: str = "TEST") -> Dict[str, Decimal]:
    return {w: ledger.balances[w].get(symbol, Decimal("0")) for w in sorted(ledger.registered_wallets)}


# =============================================================================
# RANDOM OPERATION SEQUENCES (property tests)
# =============================================================================

OPERATIONS = ("stake", "unstake", "emergency_withdraw", "active_roll_over", "bump_sale_counter", "mine")

operation = st.tuples(
    st.sampled_from(OPERATIONS),
    st.integers(min_value=0, max_value=len(ACCOUNTS) - 1),
    st.integers(min_value=1, max_value=600),
)
operations = st.lists(operation, max_size=30)


def apply_operation(master: AllocationMaster, track_id: int, op: Tuple[str, int, int]) -> bool:
    """Apply one generated operation; False if the master rejected it."""
    kind, index, amount = op
    account = ACCOUNTS[index]
    try:
        if kind == "stake":
            approve_and_stake(master, track_id, account, amount)
        elif kind == "unstake":
            master.unstake(track_id, account, amount)
        elif kind == "emergency_withdraw":
            master.emergency_withdraw(track_id, account)
        elif kind == "active_roll_over":
            master.active_roll_over(track_id, account)
        elif kind == "bump_sale_counter":
            master.bump_sale_counter(OWNER, track_id)
        else:
            master.ledger.mine(amount % 5)
    except AllocationError:
        return False
    return True
