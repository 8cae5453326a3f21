"""
conftest.py - Shared pytest fixtures for vesting sale tests

Provides common fixtures used across unit, functional and conformance tests:
- Basic ledgers (empty, with tokens)
- Sale ledgers (pending, started, with a purchase)
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from vesting_sale import Ledger, token

from tests.sale_setup import (
    MONTH, START_TIME, OWNER, SOLD, STABLE, build_sale_ledger,
)


# =============================================================================
# BASIC LEDGER FIXTURES
# =============================================================================

@pytest.fixture
def ledger():
    """Empty ledger at the reference start time."""
    return Ledger("test", initial_time=START_TIME, verbose=False)


@pytest.fixture
def token_ledger(ledger):
    """Ledger with VORPAL and USDC registered and alice/bob wallets."""
    ledger.register_unit(token(SOLD, "Vorpal"))
    ledger.register_unit(token(STABLE, "USD Coin"))
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")
    return ledger


# =============================================================================
# SALE FIXTURES
# =============================================================================

@pytest.fixture
def pending_sale():
    """(ledger, sale) with the reference sale deployed but not started."""
    return build_sale_ledger()


@pytest.fixture
def started_sale(pending_sale):
    """(ledger, sale) with the reference sale started at START_TIME."""
    ledger, sale = pending_sale
    sale.start_sale(OWNER)
    return ledger, sale


@pytest.fixture
def multi_buyer_sale():
    """(ledger, sale) started, with alice and bob each holding 1000 USDC."""
    ledger, sale = build_sale_ledger(buyers={
        OWNER: Decimal("1000"),
        "alice": Decimal("1000"),
        "bob": Decimal("1000"),
    })
    sale.start_sale(OWNER)
    return ledger, sale


@pytest.fixture
def bought_sale(started_sale):
    """(ledger, sale) where owner bought 50 USDC worth (20,000 VORPAL)."""
    ledger, sale = started_sale
    sale.buy_tokens(OWNER, Decimal("50"))
    return ledger, sale


@pytest.fixture
def finished_sale(bought_sale):
    """(ledger, sale) finished one month after the start."""
    ledger, sale = bought_sale
    ledger.advance_time(START_TIME + timedelta(seconds=MONTH))
    sale.finish_sale(OWNER)
    return ledger, sale
