"""
token.py - Fungible Stake Token

=== TOKEN MODEL ===

A stake token is a Unit on the double-entry Ledger:
    - balances live in ledger wallets (min_balance = 0, no overdrafts)
    - issuance moves tokens out of SYSTEM_WALLET
    - allowances live in the unit state

State format:
    issuer: str
    allowances: {owner: {spender: Decimal}}

Because allowances are unit state, transfer_from carries the allowance
decrement as a UnitStateChange next to the Move. The ledger applies both or
neither, and rejects the pair if the allowance changed since it was read.

=== PURE FUNCTIONS ===

    mint / approve / transfer / transfer_from  (view, ...) -> PendingTransaction
    balance_of / allowance                      (view, ...) -> Decimal

StakeToken binds these to a Ledger and raises TransferFailed whenever the
ledger rejects the resulting transaction.
"""
from __future__ import annotations
from decimal import Decimal
from typing import Dict, Optional

from .core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    ExecuteResult, TransactionOrigin, OriginType,
    TransferFailed, WalletNotRegistered,
    UNIT_TYPE_STAKE_TOKEN, SYSTEM_WALLET, ZERO,
    build_transaction, to_amount, to_decimal, _freeze_state,
)
from .ledger import Ledger


def create_stake_token(
    symbol: str,
    name: str,
    issuer: str = SYSTEM_WALLET,
) -> Unit:
    """
    Create a fungible stake token unit.

    Args:
        symbol: Token symbol (e.g., "TEST").
        name: Human-readable name (e.g., "test token").
        issuer: Recorded issuer identity.
    """
    if not symbol or not symbol.strip():
        raise ValueError("Token symbol cannot be empty")
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_STAKE_TOKEN,
        min_balance=Decimal("0"),
        _frozen_state=_freeze_state({'issuer': issuer, 'allowances': {}}),
    )


# =============================================================================
# READS
# =============================================================================

def balance_of(view: LedgerView, symbol: str, wallet: str) -> Decimal:
    """Token balance of a wallet; unknown wallets hold nothing."""
    try:
        return to_decimal(view.get_balance(wallet, symbol))
    except WalletNotRegistered:
        return ZERO


def allowance(view: LedgerView, symbol: str, owner: str, spender: str) -> Decimal:
    """Amount `spender` may still pull from `owner`."""
    allowances: Dict[str, Dict[str, Decimal]] = view.get_unit_state(symbol).get('allowances', {})
    return to_decimal(allowances.get(owner, {}).get(spender, ZERO))


def _with_allowance(state: dict, owner: str, spender: str, amount: Decimal) -> dict:
    allowances = {o: dict(s) for o, s in state.get('allowances', {}).items()}
    allowances.setdefault(owner, {})[spender] = amount
    return {**state, 'allowances': allowances}


# =============================================================================
# TRANSACTION BUILDERS
# =============================================================================

def mint(view: LedgerView, symbol: str, to: str, amount) -> PendingTransaction:
    """Issue `amount` new tokens to `to` (debits SYSTEM_WALLET)."""
    amount = to_amount(amount)
    return build_transaction(
        view,
        [Move(amount, symbol, SYSTEM_WALLET, to, f"mint:{symbol}:{to}")],
        origin=TransactionOrigin(OriginType.SYSTEM, "issuance", symbol, "MINT"),
    )


def approve(view: LedgerView, symbol: str, owner: str, spender: str, amount) -> PendingTransaction:
    """
    Set the allowance of `spender` over `owner`'s tokens to `amount`.

    The new value replaces any previous allowance; zero revokes it.
    """
    amount = to_decimal(amount)
    if amount.is_nan() or amount.is_infinite() or amount < 0:
        raise ValueError(f"allowance must be a finite non-negative amount, got {amount}")
    old_state = view.get_unit_state(symbol)
    new_state = _with_allowance(old_state, owner, spender, amount)
    return build_transaction(
        view,
        [],
        [UnitStateChange(unit=symbol, old_state=old_state, new_state=new_state)],
        origin=TransactionOrigin(OriginType.USER_ACTION, owner, symbol, "APPROVE"),
    )


def transfer(
    view: LedgerView,
    symbol: str,
    source: str,
    dest: str,
    amount,
    origin: Optional[TransactionOrigin] = None,
) -> PendingTransaction:
    """Move `amount` from `source` to `dest`; the ledger rejects overdrafts."""
    amount = to_amount(amount)
    if origin is None:
        origin = TransactionOrigin(OriginType.USER_ACTION, source, symbol, "TRANSFER")
    return build_transaction(
        view,
        [Move(amount, symbol, source, dest, f"transfer:{symbol}:{source}:{dest}")],
        origin=origin,
    )


def transfer_from(
    view: LedgerView,
    symbol: str,
    spender: str,
    owner: str,
    dest: str,
    amount,
    origin: Optional[TransactionOrigin] = None,
) -> PendingTransaction:
    """
    Pull `amount` from `owner` to `dest` on `spender`'s allowance.

    Raises:
        TransferFailed: If the allowance does not cover the amount.
    """
    amount = to_amount(amount)
    approved = allowance(view, symbol, owner, spender)
    if approved < amount:
        raise TransferFailed(
            f"{symbol}: allowance {approved} of {spender} over {owner} is below {amount}"
        )
    old_state = view.get_unit_state(symbol)
    new_state = _with_allowance(old_state, owner, spender, approved - amount)
    if origin is None:
        origin = TransactionOrigin(OriginType.CONTRACT, spender, symbol, "TRANSFER_FROM")
    return build_transaction(
        view,
        [Move(amount, symbol, owner, dest, f"transfer_from:{symbol}:{spender}:{owner}")],
        [UnitStateChange(unit=symbol, old_state=old_state, new_state=new_state)],
        origin=origin,
    )


# =============================================================================
# LEDGER-BOUND FACADE
# =============================================================================

class StakeToken:
    """
    A stake token bound to a ledger, exposing the approve / transferFrom /
    balanceOf surface the allocation master consumes.

    Every mutating call executes immediately; a rejected execution raises
    TransferFailed and leaves the ledger unchanged.
    """

    def __init__(self, ledger: Ledger, symbol: str):
        ledger.get_unit(symbol)
        self.ledger = ledger
        self.symbol = symbol

    def __repr__(self) -> str:
        return f"StakeToken({self.symbol} on {self.ledger.name})"

    def _execute(self, pending: PendingTransaction) -> None:
        if self.ledger.execute(pending) == ExecuteResult.REJECTED:
            raise TransferFailed(f"{self.symbol}: {self.ledger.last_rejection}")

    def balance_of(self, wallet: str) -> Decimal:
        return balance_of(self.ledger, self.symbol, wallet)

    def allowance(self, owner: str, spender: str) -> Decimal:
        return allowance(self.ledger, self.symbol, owner, spender)

    def total_supply(self) -> Decimal:
        return self.ledger.total_supply(self.symbol)

    def mint(self, to: str, amount) -> None:
        self._execute(mint(self.ledger, self.symbol, to, amount))

    def approve(self, owner: str, spender: str, amount) -> None:
        self._execute(approve(self.ledger, self.symbol, owner, spender, amount))

    def transfer(self, source: str, dest: str, amount, origin: Optional[TransactionOrigin] = None) -> None:
        self._execute(transfer(self.ledger, self.symbol, source, dest, amount, origin))

    def transfer_from(
        self,
        spender: str,
        owner: str,
        dest: str,
        amount,
        origin: Optional[TransactionOrigin] = None,
    ) -> None:
        self._execute(transfer_from(self.ledger, self.symbol, spender, owner, dest, amount, origin))
