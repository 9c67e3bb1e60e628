"""
conftest.py - Shared pytest fixtures for allocation tests

Provides common fixtures used across unit, functional and conformance tests:
- Token ledgers (empty, with a stake token, with funded accounts)
- Allocation masters with a ready track
"""

import pytest
from decimal import Decimal

from allocation import Ledger, AllocationMaster, StakeToken

from tests.helpers import (
    OWNER, ACCOUNTS, STARTING_SUPPLY,
    make_ledger, fund,
)


# =============================================================================
# LEDGER FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Fresh ledger with no registrations."""
    return Ledger("test", verbose=False, test_mode=True)


@pytest.fixture
def ledger():
    """Ledger with the TEST token and registered wallets, nothing minted."""
    return make_ledger()


@pytest.fixture
def token(ledger):
    """TEST token with the starting supply minted to the owner and 10,000 to each account."""
    token = StakeToken(ledger, "TEST")
    fund(token, {OWNER: STARTING_SUPPLY})
    fund(token, {a: Decimal("10000") for a in ACCOUNTS})
    return token


# =============================================================================
# ALLOCATION FIXTURES
# =============================================================================

@pytest.fixture
def master(ledger, token):
    """Allocation master owned by OWNER with no tracks."""
    return AllocationMaster(ledger, owner=OWNER, verbose=False)


@pytest.fixture
def track_id(master):
    """Track with rate 1 and a 1000-token cap."""
    return master.add_track(OWNER, "TEST Track", "TEST", 1, max_stakes=1000)


@pytest.fixture
def uncapped_track_id(master):
    """Track with rate 1 and no cap."""
    return master.add_track(OWNER, "Open Track", "TEST", 1)
