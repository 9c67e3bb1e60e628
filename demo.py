#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Learn the Allocation Master Step by Step

A walk through the staking ledger. Each step builds on the previous one.
Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:  Foundation    - The token ledger, the stake token, the master and a track
  4-5:  Stake Weight  - Staking, weight accrual, unstaking, historical reads
  6-7:  Guard Rails   - Rejections, atomicity, disabled tracks
  8-9:  Sale Rounds   - Bumping the counter, rolling over, emergency exit
  10:   Simulation    - Block-by-block run with the weight curve and checkpoints

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from decimal import Decimal
import sys

from allocation import (
    Ledger, AllocationMaster, StakeToken, create_stake_token,
    SimInputRow, simulate,
    AllocationError, SYSTEM_WALLET,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    owner: str = "owner"
    accounts: tuple = ("alice", "bob", "charlie")
    starting_balance: Decimal = Decimal("10000")

    # Track parameters
    weight_accrual_rate: Decimal = Decimal("1")
    max_stakes: Decimal = Decimal("1000")

    # Simulation (amounts in wei, rate 1e9 per block)
    sim_rate: Decimal = Decimal("1000000000")
    sim_supply: Decimal = Decimal("21000000") * Decimal(10) ** 18
    sim_stakes: tuple = (
        "1000000000", "0", "0", "0", "0",
        "50000000000", "0", "0",
        "-50000000000", "0", "0",
        "2500000000", "0", "0", "0", "0", "0",
    )


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def try_call(label: str, call, *args):
    """Run a master call and report a rejection instead of raising."""
    try:
        result = call(*args)
        print(f"  {label}: ok -> {result}")
    except AllocationError as e:
        print(f"  {label}: {type(e).__name__} ({e})")


# ============================================================================
# PHASE 1: FOUNDATION (Steps 1-3)
# ============================================================================

def step_01_token_ledger():
    """Create the token ledger and register the stake token."""
    step_header(1, "The Token Ledger",
        "Tokens live in wallets on a double-entry ledger with a block clock.")

    ledger = Ledger("chain", verbose=True, test_mode=False)
    ledger.register_unit(create_stake_token("TEST", "test token"))
    for wallet in (CONFIG.owner,) + CONFIG.accounts:
        ledger.register_wallet(wallet)

    section_header("Initial State")
    print(f"Current block:      {ledger.current_block}")
    print(f"Registered wallets: {sorted(ledger.registered_wallets)}")
    print(f"Registered units:   {ledger.list_units()}")
    return ledger


def step_02_mint(ledger: Ledger):
    """Issue tokens to each account."""
    step_header(2, "Minting the Stake Token",
        "Issuance moves tokens out of the system wallet, so the sum stays zero.")

    token = StakeToken(ledger, "TEST")
    for account in CONFIG.accounts:
        token.mint(account, CONFIG.starting_balance)

    section_header("Balances")
    for wallet in (SYSTEM_WALLET,) + CONFIG.accounts:
        print(f"  {wallet:<10} {ledger.get_balance(wallet, 'TEST')}")
    ledger.verbose = False
    return token


def step_03_master(ledger: Ledger):
    """Deploy the allocation master and add a capped track."""
    step_header(3, "The Allocation Master",
        "Tracks are independent staking pools created by the owner.")

    master = AllocationMaster(ledger, owner=CONFIG.owner, verbose=True)
    track_id = master.add_track(
        CONFIG.owner, "TEST Track", "TEST", CONFIG.weight_accrual_rate, max_stakes=CONFIG.max_stakes
    )
    track = master.get_track(track_id)
    print(f"\n  id={track.id} name={track.name!r} rate={track.weight_accrual_rate} "
          f"max={track.max_stakes} enabled={track.enabled} sale_counter={track.sale_counter}")
    return master, track_id


# ============================================================================
# PHASE 2: STAKE WEIGHT (Steps 4-5)
# ============================================================================

def step_04_stake_and_accrue(master: AllocationMaster, token: StakeToken, track_id: int):
    """Stake, mine blocks, and watch weight grow."""
    step_header(4, "Stake Weight Accrues",
        "Weight grows by rate x staked per block; checkpoints freeze what was earned.")

    token.approve("alice", master.address, 100)
    master.stake(track_id, "alice", 100)
    print(f"\n  block {master.current_block}: weight {master.get_user_stake_weight(track_id, 'alice')}")
    master.ledger.mine(10)
    print(f"  block {master.current_block}: weight {master.get_user_stake_weight(track_id, 'alice')}")
    master.unstake(track_id, "alice", 50)
    master.ledger.mine(10)
    print(f"  block {master.current_block}: weight {master.get_user_stake_weight(track_id, 'alice')}"
          f" (staked {master.get_user_staked(track_id, 'alice')})")


def step_05_history(master: AllocationMaster, track_id: int):
    """Read weight at past blocks."""
    step_header(5, "Reading the Past",
        "Any block can be queried; the answer comes from the checkpoint at or before it.")

    for at in (0, 5, 10, 15, 20):
        print(f"  at block {at:>2}: staked={master.get_user_staked(track_id, 'alice', at):>4} "
              f"weight={master.get_user_stake_weight(track_id, 'alice', at)}")

    section_header("User Checkpoints")
    for i in range(master.user_checkpoint_count(track_id, "alice")):
        print(f"  {master.user_checkpoint(track_id, 'alice', i)}")


# ============================================================================
# PHASE 3: GUARD RAILS (Steps 6-7)
# ============================================================================

def step_06_rejections(master: AllocationMaster, token: StakeToken, track_id: int):
    """Operations that fail leave nothing behind."""
    step_header(6, "Rejections Are Atomic",
        "A failed call moves no tokens and writes no checkpoints.")

    before = token.balance_of("bob")
    try_call("stake without approval", master.stake, track_id, "bob", 10)
    token.approve("bob", master.address, 2000)
    try_call("stake over the cap", master.stake, track_id, "bob", 2000)
    try_call("unstake more than staked", master.unstake, track_id, "alice", 500)
    try_call("non-owner adds a track", master.add_track, "bob", "Rogue", "TEST", 1)
    print(f"\n  bob's balance unchanged: {token.balance_of('bob') == before}")
    print(f"  bob's checkpoints:       {master.user_checkpoint_count(track_id, 'bob')}")
    token.approve("bob", master.address, 0)


def step_07_disabled_track(master: AllocationMaster, token: StakeToken):
    """Disabled tracks refuse stakes but let everyone out."""
    step_header(7, "Disabling a Track",
        "Once disabled, stakes fail; unstakes and emergency withdrawals still work.")

    closed = master.add_track(CONFIG.owner, "Closing Track", "TEST", 1)
    token.approve("bob", master.address, 40)
    master.stake(closed, "bob", 40)
    master.disable_track(CONFIG.owner, closed)
    token.approve("bob", master.address, 5)
    try_call("stake on disabled track", master.stake, closed, "bob", 5)
    try_call("unstake on disabled track", master.unstake, closed, "bob", 40)
    token.approve("bob", master.address, 0)


# ============================================================================
# PHASE 4: SALE ROUNDS (Steps 8-9)
# ============================================================================

def step_08_sale_round(master: AllocationMaster, token: StakeToken, track_id: int):
    """Close a round and let an account roll over."""
    step_header(8, "Sale Rounds",
        "The owner closes a round; accounts opt in to carry their stake forward.")

    token.approve("charlie", master.address, 200)
    master.stake(track_id, "charlie", 200)
    master.ledger.mine(5)
    master.bump_sale_counter(CONFIG.owner, track_id)
    master.ledger.mine()
    try_call("alice rolls over", master.active_roll_over, track_id, "alice")
    try_call("alice rolls over again", master.active_roll_over, track_id, "alice")

    section_header("Participation")
    counter = master.get_track(track_id).sale_counter
    for account in ("alice", "charlie"):
        rounds = master.user_checkpoint(track_id, account, -1).rounds_participated
        print(f"  {account:<8} rounds={rounds} / sale_counter={counter}")


def step_09_emergency(master: AllocationMaster, token: StakeToken, track_id: int):
    """Leave immediately at the cost of all accrued weight."""
    step_header(9, "Emergency Withdrawal",
        "The whole stake comes back; the accrued weight is forfeited.")

    weight = master.get_user_stake_weight(track_id, "charlie")
    amount = master.emergency_withdraw(track_id, "charlie")
    print(f"\n  returned {amount}, forfeited weight {weight}")
    print(f"  charlie weight now:  {master.get_user_stake_weight(track_id, 'charlie')}")
    print(f"  charlie balance now: {token.balance_of('charlie')}")

    report = master.verify_stake_identity(track_id)
    print(f"\n  stake identity valid: {report['valid']} "
          f"(total {report['total_staked']} = sum {report['sum_staked']})")
    supply = CONFIG.starting_balance * len(CONFIG.accounts)
    print(f"  double entry valid:   {master.ledger.verify_double_entry({'TEST': supply})['valid']}")


# ============================================================================
# PHASE 5: SIMULATION (Step 10)
# ============================================================================

def step_10_simulation():
    """Replay the block-by-block accrual scenario."""
    step_header(10, "Block-by-Block Simulation",
        "Script stakes per block and read back the weight curve.")

    ledger = Ledger("sim", verbose=False)
    ledger.register_unit(create_stake_token("TEST", "test token"))
    ledger.register_wallet(CONFIG.owner)
    StakeToken(ledger, "TEST").mint(CONFIG.owner, CONFIG.sim_supply)
    master = AllocationMaster(ledger, owner=CONFIG.owner)
    track_id = master.add_track(CONFIG.owner, "TEST Track", "TEST", CONFIG.sim_rate)

    rows = simulate(
        master, track_id, [CONFIG.owner],
        [SimInputRow(stake_amounts=(Decimal(s),)) for s in CONFIG.sim_stakes],
    )

    section_header("Simulation data")
    for row in rows:
        user = row.users[0]
        print(f"Block {row.block:>2} | User stake {user.stake:>12} | "
              f"User weight {user.weight:>24} | Total weight {row.total_weight:>24}")

    section_header("Track checkpoints")
    for i in range(master.track_checkpoint_count(track_id)):
        cp = master.track_checkpoint(track_id, i)
        print(f"Block {cp.at:>2} | Total staked {cp.total_staked:>12} | "
              f"Total stake weight {cp.total_stake_weight}")


def main():
    """Run the complete tutorial."""
    print("=" * 70)
    print("       ALLOCATION MASTER - INTERACTIVE TUTORIAL")
    print("=" * 70)

    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")

    wait_for_enter()

    ledger = step_01_token_ledger()
    wait_for_enter()

    token = step_02_mint(ledger)
    wait_for_enter()

    master, track_id = step_03_master(ledger)
    wait_for_enter()

    step_04_stake_and_accrue(master, token, track_id)
    wait_for_enter()

    step_05_history(master, track_id)
    wait_for_enter()

    step_06_rejections(master, token, track_id)
    wait_for_enter()

    step_07_disabled_track(master, token)
    wait_for_enter()

    step_08_sale_round(master, token, track_id)
    wait_for_enter()

    step_09_emergency(master, token, track_id)
    wait_for_enter()

    step_10_simulation()

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - See allocation/master.py for the operations
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
