"""
test_vesting_schedule.py - Unit tests for vesting schedule accounting

Tests:
- VestingSchedule validation and properties
- Fixed-point helpers
- calculate_allocation: pricing, flooring, minimum purchase
- calculate_unlocked_amount: lock, linear unlock, no clamping
- calculate_withdrawal: check order and all-or-nothing release
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from vesting_sale import (
    VestingSchedule, MIN_PURCHASE,
    InsufficientAmount, StillLocked, TooManyRequested, NotEnoughUnlocked,
    calculate_allocation, calculate_unlocked_amount, calculate_withdrawal,
    create_schedule, to_base_units, from_base_units,
)
from vesting_sale.schedule import schedule_from_dict, schedule_to_dict
from tests.sale_setup import MONTH, PRICE


T0 = datetime(2025, 1, 1)
FIVE_MONTHS = 5 * MONTH


def _schedule(total="20000", remaining=None, lock=0, vesting=FIVE_MONTHS):
    schedule = create_schedule(Decimal(total), T0, lock, vesting)
    if remaining is not None:
        schedule = VestingSchedule(
            total_allocated=schedule.total_allocated,
            units_remaining=Decimal(remaining),
            unlock_start=schedule.unlock_start,
            unlock_end=schedule.unlock_end,
        )
    return schedule


# ============================================================================
# VestingSchedule
# ============================================================================

class TestVestingSchedule:

    def test_create_schedule(self):
        schedule = create_schedule(Decimal("1000"), T0, MONTH, FIVE_MONTHS)
        assert schedule.total_allocated == Decimal("1000")
        assert schedule.units_remaining == Decimal("1000")
        assert schedule.unlock_start == T0 + timedelta(seconds=MONTH)
        assert schedule.unlock_end == T0 + timedelta(seconds=MONTH + FIVE_MONTHS)
        assert schedule.vesting_period == FIVE_MONTHS

    def test_remaining_above_total_raises(self):
        with pytest.raises(ValueError, match="units_remaining must be within"):
            VestingSchedule(Decimal("10"), Decimal("11"), T0, T0 + timedelta(days=1))

    def test_negative_remaining_raises(self):
        with pytest.raises(ValueError, match="units_remaining must be within"):
            VestingSchedule(Decimal("10"), Decimal("-1"), T0, T0 + timedelta(days=1))

    def test_end_before_start_raises(self):
        with pytest.raises(ValueError, match="cannot precede"):
            VestingSchedule(Decimal("10"), Decimal("10"), T0, T0 - timedelta(days=1))

    def test_is_exhausted(self):
        assert not _schedule().is_exhausted
        assert _schedule(remaining="0").is_exhausted

    def test_dict_adapters(self):
        schedule = _schedule(remaining="5")
        raw = schedule_to_dict(schedule)
        assert raw['units_remaining'] == Decimal("5")
        assert raw['unlock_start'] == T0
        assert schedule_from_dict(raw) == schedule


# ============================================================================
# Fixed-point helpers
# ============================================================================

class TestBaseUnits:

    def test_to_base_units(self):
        assert to_base_units(Decimal("1.5"), 6) == 1_500_000

    def test_to_base_units_truncates(self):
        assert to_base_units(Decimal("0.0000009"), 6) == 0

    def test_from_base_units(self):
        assert from_base_units(1_500_000, 6) == Decimal("1.5")


# ============================================================================
# calculate_allocation
# ============================================================================

class TestCalculateAllocation:

    def test_reference_price(self):
        assert calculate_allocation(Decimal("2.5"), PRICE) == Decimal("1000")

    def test_larger_purchase(self):
        assert calculate_allocation(Decimal("50"), PRICE) == Decimal("20000")

    def test_minimum_purchase(self):
        assert MIN_PURCHASE == Decimal("1")
        assert calculate_allocation(Decimal("1"), PRICE) == Decimal("400")

    def test_below_minimum_raises(self):
        with pytest.raises(InsufficientAmount):
            calculate_allocation(Decimal("0.5"), PRICE)

    def test_floors_to_whole_units(self):
        assert calculate_allocation(Decimal("1.0001"), PRICE) == Decimal("400")

    def test_independent_of_stable_precision(self):
        assert calculate_allocation(Decimal("2.5"), PRICE, stable_decimals=6) == Decimal("1000")

    def test_price_above_amount_floors_to_zero(self):
        assert calculate_allocation(Decimal("1"), 10 ** 22) == Decimal("0")


# ============================================================================
# calculate_unlocked_amount
# ============================================================================

class TestCalculateUnlockedAmount:

    def test_before_unlock_start_raises(self):
        schedule = _schedule(lock=MONTH)
        with pytest.raises(StillLocked):
            calculate_unlocked_amount(schedule, T0 + timedelta(seconds=MONTH - 1))

    def test_nothing_unlocked_at_start(self):
        assert calculate_unlocked_amount(_schedule(), T0) == Decimal("0")

    def test_linear_unlock_after_two_months(self):
        unlocked = calculate_unlocked_amount(_schedule(), T0 + timedelta(seconds=2 * MONTH))
        rate = to_base_units(Decimal("20000"), 18) // FIVE_MONTHS
        assert unlocked == from_base_units(2 * MONTH * rate, 18)
        assert Decimal("7999.99") < unlocked <= Decimal("8000")

    def test_partial_seconds_are_ignored(self):
        schedule = _schedule(total="1000", vesting=1000)
        now = T0 + timedelta(seconds=1, milliseconds=900)
        assert calculate_unlocked_amount(schedule, now) == Decimal("1")

    def test_exact_rate_unlocks_everything_at_end(self):
        schedule = _schedule(total="1000", vesting=1000)
        assert calculate_unlocked_amount(schedule, schedule.unlock_end) == Decimal("1000")

    def test_not_clamped_after_unlock_end(self):
        schedule = _schedule()
        unlocked = calculate_unlocked_amount(schedule, T0 + timedelta(seconds=2 * FIVE_MONTHS))
        assert unlocked > schedule.total_allocated

    def test_lock_period_shifts_unlock(self):
        schedule = _schedule(total="1000", lock=500, vesting=1000)
        assert calculate_unlocked_amount(schedule, T0 + timedelta(seconds=750)) == Decimal("250")


# ============================================================================
# calculate_withdrawal
# ============================================================================

class TestCalculateWithdrawal:

    def test_full_unlock_zeroes_remaining(self):
        schedule = _schedule()
        updated = calculate_withdrawal(schedule, Decimal("10"), T0 + timedelta(seconds=2 * FIVE_MONTHS))
        assert updated.units_remaining == Decimal("0")
        assert updated.total_allocated == Decimal("20000")
        assert schedule.units_remaining == Decimal("20000")

    @pytest.mark.parametrize("amount", [Decimal("1"), Decimal("19999.5"), Decimal("20000")])
    def test_whole_remaining_balance_released_whatever_the_amount(self, amount):
        updated = calculate_withdrawal(_schedule(), amount, T0 + timedelta(seconds=2 * FIVE_MONTHS))
        assert updated.units_remaining == Decimal("0")
        assert updated.is_exhausted

    def test_too_many_checked_before_lock(self):
        schedule = _schedule(lock=MONTH)
        with pytest.raises(TooManyRequested):
            calculate_withdrawal(schedule, Decimal("20001"), T0)

    def test_still_locked(self):
        schedule = _schedule(lock=MONTH)
        with pytest.raises(StillLocked):
            calculate_withdrawal(schedule, Decimal("10"), T0)

    def test_partial_unlock_raises(self):
        with pytest.raises(NotEnoughUnlocked):
            calculate_withdrawal(_schedule(), Decimal("10"), T0 + timedelta(seconds=2 * MONTH))

    def test_unlock_end_with_floored_rate_raises(self):
        schedule = _schedule()
        with pytest.raises(NotEnoughUnlocked):
            calculate_withdrawal(schedule, Decimal("10"), schedule.unlock_end)

    def test_exhausted_schedule_raises(self):
        schedule = _schedule(remaining="0")
        with pytest.raises(NotEnoughUnlocked, match="no units remaining"):
            calculate_withdrawal(schedule, Decimal("10"), T0 + timedelta(seconds=2 * FIVE_MONTHS))

    def test_amount_equal_to_allocation_allowed(self):
        schedule = _schedule(total="1000", vesting=1000)
        updated = calculate_withdrawal(schedule, Decimal("1000"), schedule.unlock_end)
        assert updated.is_exhausted
