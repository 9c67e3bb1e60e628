"""
weight.py - Linear stake-weight accrual

Weight accrues continuously in proportion to the amount staked:

    weight(at) = baseline + rate * (at - since) * staked

A checkpoint freezes everything accrued up to its block into `baseline`, so
changing `staked` later never rewrites weight that was already earned.
"""

from __future__ import annotations
from decimal import Decimal

from .checkpoints import Checkpoint
from .core import InvalidQueryTime, to_decimal


def accrue(weight: Decimal, staked: Decimal, since: int, at: int, rate: Decimal) -> Decimal:
    """
    Weight at block `at` given a baseline `weight` frozen at block `since`.

    Raises:
        InvalidQueryTime: If `at` is before `since`.
    """
    if at < since:
        raise InvalidQueryTime(f"cannot accrue weight backwards from block {since} to {at}")
    if at == since:
        return weight
    return weight + to_decimal(rate) * (at - since) * staked


def weight_at(checkpoint: Checkpoint, at: int, rate: Decimal) -> Decimal:
    """
    Weight implied by a track or user checkpoint at block `at`.

    Raises:
        InvalidQueryTime: If `at` is before checkpoint.at.
    """
    staked, baseline = checkpoint.accrual_basis
    return accrue(baseline, staked, checkpoint.at, at, rate)
