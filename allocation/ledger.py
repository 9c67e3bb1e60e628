"""
ledger.py - Stateful Double-Entry Token Ledger

The Ledger holds every token balance the allocation master touches. It is the
only module that mutates token state, ensuring controlled and auditable changes.

Key responsibilities:
    - Implements LedgerView protocol for safe read-only access by pure functions
    - Executes transactions atomically (all moves succeed or all fail)
    - Maintains wallet balances and token unit definitions (including allowances)
    - Owns the logical block clock shared with the allocation master
    - Always validates and always logs - no exceptions
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import replace
from typing import Dict, List, Set, Optional, Tuple, Any
import copy
from decimal import Decimal

from .core import (
    # Types
    Transaction, Unit,
    PendingTransaction,
    ExecuteResult,
    UnitState, BalanceMap,
    # Constants
    SYSTEM_WALLET,
    # Exceptions
    LedgerError, UnitNotRegistered, WalletNotRegistered,
    # Helper functions
    _freeze_state, to_decimal,
)


class Ledger:
    """
    Double-entry token ledger with full validation and audit trail.

    Implements the LedgerView protocol, allowing the ledger to be passed to pure
    token builders that access only read-only methods.

    Design Principles:
        - Always validates: every transaction is checked against registration,
          balance floors and the current unit state.
        - Always logs: every applied transaction is recorded in transaction_log.

    Thread Safety:
        Not thread-safe. Operations are totally ordered by the caller.

    Example:
        ledger = Ledger("chain")
        ledger.register_unit(create_stake_token("TEST", "test token"))
        ledger.register_wallet("alice")
        ledger.execute(mint(ledger, "TEST", "alice", Decimal("1000")))
        ledger.mine()
    """

    def __init__(
        self,
        name: str,
        initial_block: int = 0,
        verbose: bool = True,
        test_mode: bool = False
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_block: Starting block number (default: 0)
            verbose: Enable status output (default: True)
            test_mode: Allow set_balance() calls (default: False)
        """
        if initial_block < 0:
            raise ValueError(f"initial_block must be non-negative, got {initial_block}")
        self.name = name
        self.balances: Dict[str, Dict[str, Decimal]] = {}
        self.units: Dict[str, Unit] = {}
        self.registered_wallets: Set[str] = set()
        self.transaction_log: List[Transaction] = []
        self.last_rejection: Optional[str] = None
        self._current_block: int = initial_block
        self.verbose = verbose
        self._test_mode = test_mode
        self._next_sequence: int = 0

        # Auto-register the system wallet (used for token issuance)
        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(lambda: Decimal("0"))

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_block(self) -> int:
        """Current logical block number."""
        return self._current_block

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Get the balance of a specific unit in a wallet.

        Raises:
            WalletNotRegistered: If wallet is not registered
            UnitNotRegistered: If unit is not registered
        """
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return self.balances[wallet_id].get(unit_symbol, Decimal("0"))

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """
        Get a deep copy of a unit's internal state.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return copy.deepcopy(self.units[unit_symbol].state)

    def list_wallets(self) -> Set[str]:
        """List all registered wallet IDs."""
        return self.registered_wallets.copy()

    def list_units(self) -> List[str]:
        """List all registered unit symbols."""
        return sorted(self.units.keys())

    def get_unit(self, symbol: str) -> Unit:
        """Return the Unit object for a given symbol."""
        if symbol not in self.units:
            raise UnitNotRegistered(f"Unit {symbol} not registered")
        return self.units[symbol]

    def get_wallet_balances(self, wallet_id: str) -> BalanceMap:
        """Get all balances for a wallet."""
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        return dict(self.balances[wallet_id])

    def total_supply(self, unit_symbol: str) -> Decimal:
        """
        Total of a unit across all non-system wallets.

        Issuance debits SYSTEM_WALLET, so this equals the amount minted so far.
        Wallets are sorted before summation for a deterministic order.
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return sum(
            (self.balances[w].get(unit_symbol, Decimal("0"))
             for w in sorted(self.registered_wallets) if w != SYSTEM_WALLET),
            Decimal("0"),
        )

    def verify_double_entry(
        self,
        expected_supplies: Dict[str, Decimal] = None,
    ) -> Dict[str, Any]:
        """
        Verify that conservation holds for all units.

        For every unit, the sum over all wallets including SYSTEM_WALLET must be
        exactly zero, and, when expected_supplies is given, the circulating
        supply must match the expected value.

        Returns:
            Dict with keys:
            - 'valid': bool - True if all conservation laws hold
            - 'supplies': Dict[str, Decimal] - circulating supply per unit
            - 'discrepancies': List[Dict] - details of any violations

        Example:
            result = ledger.verify_double_entry({"TEST": Decimal("21000000")})
            assert result['valid'], result['discrepancies']
        """
        supplies = {}
        discrepancies = []

        for unit_symbol in self.units:
            circulating = self.total_supply(unit_symbol)
            supplies[unit_symbol] = circulating

            net = circulating + self.balances[SYSTEM_WALLET].get(unit_symbol, Decimal("0"))
            if net != 0:
                discrepancies.append({
                    'unit': unit_symbol,
                    'expected': Decimal("0"),
                    'actual': net,
                    'difference': abs(net),
                    'error': 'net balance not zero',
                })

            if expected_supplies and unit_symbol in expected_supplies:
                expected = to_decimal(expected_supplies[unit_symbol])
                if circulating != expected:
                    discrepancies.append({
                        'unit': unit_symbol,
                        'expected': expected,
                        'actual': circulating,
                        'difference': abs(circulating - expected),
                    })

        if expected_supplies:
            for unit_symbol, expected in expected_supplies.items():
                if unit_symbol not in supplies:
                    discrepancies.append({
                        'unit': unit_symbol,
                        'expected': expected,
                        'actual': Decimal("0"),
                        'difference': abs(to_decimal(expected)),
                        'error': 'unit not registered',
                    })

        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    def is_registered(self, wallet_id: str) -> bool:
        """Check if a wallet is registered."""
        return wallet_id in self.registered_wallets

    # ========================================================================
    # BLOCK CLOCK
    # ========================================================================

    def advance_block(self, new_block: int) -> None:
        """
        Advance the logical clock to a new block.

        Raises:
            ValueError: If new_block is before the current block
        """
        if new_block < self._current_block:
            raise ValueError(
                f"Cannot move time backwards: {new_block} < {self._current_block}"
            )
        self._current_block = new_block

    def mine(self, blocks: int = 1) -> int:
        """Advance the clock by `blocks` and return the new block number."""
        if blocks < 0:
            raise ValueError(f"Cannot mine a negative number of blocks: {blocks}")
        self.advance_block(self._current_block + blocks)
        return self._current_block

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a new wallet in the ledger.

        Raises:
            ValueError: If wallet is already registered
        """
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = defaultdict(lambda: Decimal("0"))
        return wallet_id

    def register_unit(self, unit: Unit) -> None:
        """
        Register a new token unit in the ledger.

        Raises:
            ValueError: If unit symbol is already registered
        """
        if unit.symbol in self.units:
            raise ValueError(f"Unit {unit.symbol} already registered")
        self.units[unit.symbol] = unit
        if self.verbose:
            print(f"📝 Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}]")

    def set_balance(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """
        Set a wallet's balance for a unit directly.

        WARNING: Bypasses double-entry accounting; only available in test mode.

        Raises:
            LedgerError: If called when test_mode is False
        """
        if not self._test_mode:
            raise LedgerError(
                "set_balance() is disabled in production mode. "
                "Use mint() and execute() to modify balances. "
                "Set test_mode=True when creating Ledger for testing."
            )
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        quantity = to_decimal(quantity)
        self.balances[wallet_id][unit_symbol] = quantity

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction atomically.

        All moves and state changes are validated first; nothing is applied
        unless everything is valid.

        Returns:
            ExecuteResult.APPLIED if successful
            ExecuteResult.REJECTED if validation failed (reason in last_rejection)
        """
        if pending.is_empty():
            return ExecuteResult.APPLIED

        valid, reason = self._validate_pending(pending)
        if not valid:
            self.last_rejection = reason
            if self.verbose:
                print(f"✗ REJECTED: {reason}")
            return ExecuteResult.REJECTED

        sequence = self._next_sequence
        self._next_sequence += 1

        tx = Transaction(
            moves=pending.moves,
            state_changes=pending.state_changes,
            origin=pending.origin,
            block=pending.block,
            ledger_name=self.name,
            execution_block=self._current_block,
            sequence_number=sequence,
        )

        self._execute_moves(tx.moves)

        # Unit is frozen: swap in a new Unit carrying the new state
        for sc in tx.state_changes:
            old_unit = self.units[sc.unit]
            new_state = copy.deepcopy(sc.new_state if isinstance(sc.new_state, dict) else {})
            self.units[sc.unit] = replace(old_unit, _frozen_state=_freeze_state(new_state))

        self.transaction_log.append(tx)
        self.last_rejection = None

        if self.verbose:
            print(f"✓ APPLIED: {tx!r}")
        return ExecuteResult.APPLIED

    def _validate_pending(self, pending: PendingTransaction) -> Tuple[bool, str]:
        """
        Validate pending transaction against all constraints.

        Checks performed:
        1. Block check (transaction must not be built for a future block)
        2. Unit and wallet registration
        3. State changes: unit registered and old_state matches current state
        4. Balance floors (min_balance per unit)

        Returns:
            (success, reason); reason is empty on success
        """
        if pending.block > self._current_block:
            return False, "future block"

        for move in pending.moves:
            if move.unit_symbol not in self.units:
                return False, f"unit not registered: {move.unit_symbol}"
            if not self.is_registered(move.source):
                return False, f"wallet not registered: {move.source}"
            if not self.is_registered(move.dest):
                return False, f"wallet not registered: {move.dest}"

        for sc in pending.state_changes:
            if sc.unit not in self.units:
                return False, f"unit not registered: {sc.unit}"
            if sc.old_state is not None and sc.old_state != self.units[sc.unit].state:
                return False, f"stale state for {sc.unit}"

        net: Dict[Tuple[str, str], Decimal] = {}
        for move in pending.moves:
            key_src = (move.source, move.unit_symbol)
            key_dst = (move.dest, move.unit_symbol)
            net[key_src] = net.get(key_src, Decimal("0")) - move.quantity
            net[key_dst] = net.get(key_dst, Decimal("0")) + move.quantity

        # SYSTEM_WALLET is exempt: it is the issuance source
        for (wallet, unit_sym), delta in net.items():
            if wallet == SYSTEM_WALLET:
                continue

            current = self.balances[wallet][unit_sym]
            unit = self.units[unit_sym]
            proposed = current + delta

            if proposed < unit.min_balance:
                return False, f"{wallet} {unit_sym}: {proposed} < min {unit.min_balance}"

        return True, ""

    def _execute_moves(self, moves) -> None:
        """Apply moves to balances."""
        for move in moves:
            self.balances[move.source][move.unit_symbol] -= move.quantity
            self.balances[move.dest][move.unit_symbol] += move.quantity
