"""
test_ledger.py - Unit tests for ledger.py

Tests:
- Ledger creation and the block clock
- Wallet and unit registration
- Balance reads and test-mode balance setting
- Transaction execution (validation, rejection, stale state)
- Supply and conservation checks
"""

import pytest
from decimal import Decimal

from allocation import (
    Ledger, Move, ExecuteResult, UnitStateChange, build_transaction,
    create_stake_token, mint, transfer, approve,
    LedgerError, WalletNotRegistered, UnitNotRegistered,
    SYSTEM_WALLET,
)


@pytest.fixture
def chain():
    ledger = Ledger("chain", verbose=False, test_mode=True)
    ledger.register_unit(create_stake_token("TEST", "test token"))
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")
    return ledger


class TestLedgerCreation:

    def test_defaults(self):
        ledger = Ledger("chain", verbose=False)
        assert ledger.current_block == 0
        assert ledger.is_registered(SYSTEM_WALLET)
        assert ledger.transaction_log == []

    def test_initial_block(self):
        assert Ledger("chain", initial_block=42, verbose=False).current_block == 42

    def test_negative_initial_block(self):
        with pytest.raises(ValueError):
            Ledger("chain", initial_block=-1, verbose=False)


class TestBlockClock:

    def test_mine(self, chain):
        assert chain.mine() == 1
        assert chain.mine(10) == 11
        assert chain.current_block == 11

    def test_mine_zero_blocks(self, chain):
        chain.mine(5)
        assert chain.mine(0) == 5

    def test_mine_negative(self, chain):
        with pytest.raises(ValueError):
            chain.mine(-1)

    def test_advance_block_cannot_go_backwards(self, chain):
        chain.advance_block(10)
        with pytest.raises(ValueError):
            chain.advance_block(9)
        assert chain.current_block == 10


class TestRegistration:

    def test_duplicate_wallet(self, chain):
        with pytest.raises(ValueError):
            chain.register_wallet("alice")

    def test_duplicate_unit(self, chain):
        with pytest.raises(ValueError):
            chain.register_unit(create_stake_token("TEST", "again"))

    def test_list_wallets_and_units(self, chain):
        assert {"alice", "bob", SYSTEM_WALLET} <= chain.list_wallets()
        assert chain.list_units() == ["TEST"]

    def test_unknown_lookups(self, chain):
        with pytest.raises(WalletNotRegistered):
            chain.get_balance("nobody", "TEST")
        with pytest.raises(UnitNotRegistered):
            chain.get_balance("alice", "NOPE")
        with pytest.raises(UnitNotRegistered):
            chain.get_unit("NOPE")
        with pytest.raises(UnitNotRegistered):
            chain.get_unit_state("NOPE")


class TestBalances:

    def test_new_wallet_has_zero(self, chain):
        assert chain.get_balance("alice", "TEST") == Decimal("0")

    def test_set_balance_in_test_mode(self, chain):
        chain.set_balance("alice", "TEST", 500)
        assert chain.get_balance("alice", "TEST") == Decimal("500")
        assert chain.get_wallet_balances("alice") == {"TEST": Decimal("500")}

    def test_set_balance_outside_test_mode(self):
        ledger = Ledger("prod", verbose=False)
        ledger.register_unit(create_stake_token("TEST", "test token"))
        ledger.register_wallet("alice")
        with pytest.raises(LedgerError):
            ledger.set_balance("alice", "TEST", 1)

    def test_unit_state_is_a_copy(self, chain):
        state = chain.get_unit_state("TEST")
        state['allowances']['alice'] = {'bob': Decimal("1")}
        assert chain.get_unit_state("TEST")['allowances'] == {}


class TestExecute:

    def test_mint_and_transfer(self, chain):
        assert chain.execute(mint(chain, "TEST", "alice", 100)) == ExecuteResult.APPLIED
        assert chain.execute(transfer(chain, "TEST", "alice", "bob", 30)) == ExecuteResult.APPLIED
        assert chain.get_balance("alice", "TEST") == Decimal("70")
        assert chain.get_balance("bob", "TEST") == Decimal("30")
        assert len(chain.transaction_log) == 2

    def test_identical_transfers_both_apply(self, chain):
        chain.execute(mint(chain, "TEST", "alice", 100))
        chain.execute(transfer(chain, "TEST", "alice", "bob", 10))
        chain.execute(transfer(chain, "TEST", "alice", "bob", 10))
        assert chain.get_balance("bob", "TEST") == Decimal("20")

    def test_overdraft_rejected(self, chain):
        chain.execute(mint(chain, "TEST", "alice", 5))
        result = chain.execute(transfer(chain, "TEST", "alice", "bob", 6))
        assert result == ExecuteResult.REJECTED
        assert "alice" in chain.last_rejection
        assert chain.get_balance("alice", "TEST") == Decimal("5")
        assert len(chain.transaction_log) == 1

    def test_unregistered_wallet_rejected(self, chain):
        pending = build_transaction(chain, [Move(Decimal("1"), "TEST", SYSTEM_WALLET, "ghost", "m")])
        assert chain.execute(pending) == ExecuteResult.REJECTED
        assert "ghost" in chain.last_rejection

    def test_future_block_rejected(self, chain):
        chain.mine(5)
        pending = mint(chain, "TEST", "alice", 1)
        fresh = Ledger("other", verbose=False)
        fresh.register_unit(create_stake_token("TEST", "test token"))
        fresh.register_wallet("alice")
        assert fresh.execute(pending) == ExecuteResult.REJECTED
        assert fresh.last_rejection == "future block"

    def test_all_or_nothing(self, chain):
        chain.execute(mint(chain, "TEST", "alice", 10))
        pending = build_transaction(chain, [
            Move(Decimal("5"), "TEST", "alice", "bob", "ok"),
            Move(Decimal("50"), "TEST", "alice", "bob", "too_much"),
        ])
        assert chain.execute(pending) == ExecuteResult.REJECTED
        assert chain.get_balance("alice", "TEST") == Decimal("10")
        assert chain.get_balance("bob", "TEST") == Decimal("0")

    def test_stale_state_rejected(self, chain):
        first = approve(chain, "TEST", "alice", "bob", 10)
        second = approve(chain, "TEST", "alice", "bob", 20)
        assert chain.execute(first) == ExecuteResult.APPLIED
        assert chain.execute(second) == ExecuteResult.REJECTED
        assert chain.last_rejection == "stale state for TEST"
        assert chain.get_unit_state("TEST")['allowances'] == {'alice': {'bob': Decimal("10")}}

    def test_state_change_for_unknown_unit(self, chain):
        pending = build_transaction(chain, [], [UnitStateChange("NOPE", None, {'x': 1})])
        assert chain.execute(pending) == ExecuteResult.REJECTED

    def test_empty_transaction_is_noop(self, chain):
        assert chain.execute(build_transaction(chain, [])) == ExecuteResult.APPLIED
        assert chain.transaction_log == []

    def test_transaction_records_block(self, chain):
        chain.mine(7)
        chain.execute(mint(chain, "TEST", "alice", 1))
        tx = chain.transaction_log[-1]
        assert tx.block == 7
        assert tx.execution_block == 7
        assert tx.ledger_name == "chain"


class TestSupply:

    def test_total_supply_excludes_system(self, chain):
        chain.execute(mint(chain, "TEST", "alice", 100))
        chain.execute(mint(chain, "TEST", "bob", 50))
        assert chain.total_supply("TEST") == Decimal("150")
        assert chain.get_balance(SYSTEM_WALLET, "TEST") == Decimal("-150")

    def test_verify_double_entry(self, chain):
        chain.execute(mint(chain, "TEST", "alice", 100))
        chain.execute(transfer(chain, "TEST", "alice", "bob", 40))
        report = chain.verify_double_entry({"TEST": Decimal("100")})
        assert report['valid'], report['discrepancies']
        assert report['supplies'] == {"TEST": Decimal("100")}

    def test_verify_double_entry_flags_supply_mismatch(self, chain):
        chain.execute(mint(chain, "TEST", "alice", 100))
        report = chain.verify_double_entry({"TEST": Decimal("99")})
        assert not report['valid']

    def test_verify_double_entry_flags_set_balance(self, chain):
        chain.set_balance("alice", "TEST", 3)
        assert not chain.verify_double_entry()['valid']


class TestAuditTrail:

    def test_sequence_numbers_are_monotonic(self, chain):
        chain.execute(mint(chain, "TEST", "alice", 100))
        chain.execute(transfer(chain, "TEST", "alice", "bob", 10))
        chain.execute(transfer(chain, "TEST", "alice", "bob", 10))
        assert [tx.sequence_number for tx in chain.transaction_log] == [0, 1, 2]

    def test_rejected_transaction_takes_no_sequence_number(self, chain):
        chain.execute(mint(chain, "TEST", "alice", 5))
        assert chain.execute(transfer(chain, "TEST", "alice", "bob", 6)) == ExecuteResult.REJECTED
        chain.execute(transfer(chain, "TEST", "alice", "bob", 5))
        assert [tx.sequence_number for tx in chain.transaction_log] == [0, 1]
        assert "#1" in repr(chain.transaction_log[-1])

    def test_wallet_balances(self, chain):
        chain.execute(mint(chain, "TEST", "alice", 5))
        assert chain.get_wallet_balances("alice") == {"TEST": Decimal("5")}
        with pytest.raises(WalletNotRegistered):
            chain.get_wallet_balances("ghost")
