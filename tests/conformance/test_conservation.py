"""
Conservation Conformance Tests

INVARIANT: No sale operation creates or destroys value.

    ∀ unit U: Σ balances(U) over all wallets (system included) = 0

    total_units_remaining + Σ allocations = sale_amount

The second law holds for every sequence of purchases, successful or not.
"""

from hypothesis import given, settings
from hypothesis import strategies as st
from decimal import Decimal
from datetime import timedelta

from vesting_sale import SaleAllocationExceeded, ScheduleAlreadyExists

from tests.sale_setup import (
    MONTH, START_TIME, OWNER, TREASURY, SOLD, STABLE, build_sale_ledger,
)


BUYERS = ["alice", "bob", "carol", "dave"]


def _purchases():
    return st.lists(
        st.tuples(st.sampled_from(BUYERS), st.integers(min_value=100, max_value=5000)),
        min_size=1,
        max_size=8,
    )


class TestConservationProperties:
    """Property-based conservation tests."""

    @given(purchases=_purchases(), sale_units=st.integers(min_value=400, max_value=60000))
    @settings(max_examples=50, deadline=None)
    def test_allocations_never_exceed_sale_amount(self, purchases, sale_units):
        """
        PROPERTY: remaining + allocated == sale_amount, and remaining >= 0,
        after any sequence of purchase attempts.
        """
        ledger, sale = build_sale_ledger(
            buyers={b: Decimal("100") for b in BUYERS},
            sale_amount=Decimal(sale_units),
        )
        sale.start_sale(OWNER)

        for buyer, cents in purchases:
            try:
                sale.buy_tokens(buyer, Decimal(cents) / 100)
            except (SaleAllocationExceeded, ScheduleAlreadyExists):
                pass

            state = sale.state
            allocated = sum(
                (s.total_allocated for s in state.schedules.values()), Decimal("0")
            )
            assert state.total_units_remaining >= 0
            assert state.total_units_remaining + allocated == Decimal(sale_units)

    @given(purchases=_purchases())
    @settings(max_examples=30, deadline=None)
    def test_stable_asset_is_conserved(self, purchases):
        """
        PROPERTY: Every unit of stable asset paid is in custody, and every
        unit's supply across all wallets stays zero.
        """
        ledger, sale = build_sale_ledger(buyers={b: Decimal("100") for b in BUYERS})
        sale.start_sale(OWNER)

        paid = Decimal("0")
        for buyer, cents in purchases:
            amount = Decimal(cents) / 100
            try:
                sale.buy_tokens(buyer, amount)
                paid += amount
            except ScheduleAlreadyExists:
                pass

        assert ledger.get_balance(sale.custody_wallet, STABLE) == paid
        buyer_total = sum((ledger.get_balance(b, STABLE) for b in BUYERS), Decimal("0"))
        assert buyer_total + paid == Decimal("100") * len(BUYERS)
        assert ledger.verify_double_entry()["valid"]


    @given(tenths_of_micro=st.integers(min_value=10_000_000, max_value=100_000_000))
    @settings(max_examples=50, deadline=None)
    def test_buyer_pays_exactly_what_custody_receives(self, tenths_of_micro):
        """
        PROPERTY: With a 6-decimal stable asset, a purchase either moves the
        same quantity out of the buyer and into custody, or moves nothing.
        """
        ledger, sale = build_sale_ledger(stable_decimals=6)
        sale.start_sale(OWNER)
        amount = Decimal(tenths_of_micro).scaleb(-7)

        try:
            sale.buy_tokens(OWNER, amount)
        except ValueError:
            assert amount != amount.quantize(Decimal("0.000001"))

        paid = Decimal("1000") - ledger.get_balance(OWNER, STABLE)
        assert ledger.get_balance(sale.custody_wallet, STABLE) == paid
        assert paid in (Decimal("0"), amount)
        assert ledger.verify_double_entry()["valid"]


class TestConservationExamples:

    def test_full_lifecycle_conserves_every_unit(self):
        ledger, sale = build_sale_ledger(buyers={"alice": Decimal("100"), "bob": Decimal("100")})
        sale.start_sale(OWNER)
        sale.buy_tokens("alice", Decimal("50"))
        sale.buy_tokens("bob", Decimal("2.5"))
        ledger.advance_time(START_TIME + timedelta(seconds=MONTH))
        sale.finish_sale(OWNER)
        sale.withdraw_remaining(OWNER, TREASURY)
        sale.withdraw_collected_stable_asset(OWNER, TREASURY)
        ledger.advance_time(START_TIME + timedelta(seconds=10 * MONTH))
        sale.withdraw_tokens("alice", Decimal("20000"))
        sale.withdraw_tokens("bob", Decimal("1000"))

        result = ledger.verify_double_entry()
        assert result["valid"], result["unbalanced"]
        assert ledger.get_balance(sale.custody_wallet, SOLD) == Decimal("0")
        assert ledger.get_balance(sale.custody_wallet, STABLE) == Decimal("0")
        assert ledger.get_balance(TREASURY, STABLE) == Decimal("52.5")
