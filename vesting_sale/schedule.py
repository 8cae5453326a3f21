"""
schedule.py - Vesting Ledger: per-participant schedules and unlock accounting

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASS:
   - VestingSchedule: one participant's allocation, remaining units and
     unlock window. Every change produces a NEW instance.

2. PURE CALCULATION FUNCTIONS (calculate_*):
   - All inputs explicit, no LedgerView, no hidden state
   - calculate_allocation: tendered stable amount -> whole sold units
   - calculate_unlocked_amount: linear unlock at a point in time
   - calculate_withdrawal: gate a withdrawal and return the new schedule

3. ADAPTERS (schedule_from_dict / schedule_to_dict):
   - Convert between VestingSchedule and the plain dicts kept in the sale
     unit's state

Fixed-point arithmetic:
    Quantities are Decimal in whole units. Divisions that must floor are done
    on integer base units (quantity * 10**decimal_places), so

        allocation = floor(amount_base * PRICE_SCALE / (price_per_unit * 10**stable_decimals))
        rate       = total_allocated_base // vesting_period_seconds
        unlocked   = elapsed_seconds * rate

    reproduce integer token arithmetic exactly. The unlocked amount is NOT
    clamped: after unlock_end it can exceed total_allocated, and callers
    must treat units_remaining as the ceiling.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_DOWN
from typing import Dict, Any

from .core import (
    StillLocked, TooManyRequested, NotEnoughUnlocked, InsufficientAmount,
    DEFAULT_TOKEN_DECIMALS,
)


# Price basis: price_per_unit is stable base units per whole sold unit, / 1e18
PRICE_SCALE = 10 ** 18

# Smallest purchase, in whole stable units. Anything less could floor to zero.
MIN_PURCHASE = Decimal("1")

_ONE_SECOND = timedelta(seconds=1)


@dataclass(frozen=True, slots=True)
class VestingSchedule:
    """
    Immutable snapshot of one participant's vesting schedule.

    Invariants: 0 <= units_remaining <= total_allocated and
    unlock_start <= unlock_end.
    """
    total_allocated: Decimal     # Units granted by the purchase
    units_remaining: Decimal     # Units not yet withdrawn
    unlock_start: datetime       # Purchase time + lock period
    unlock_end: datetime         # unlock_start + vesting period

    def __post_init__(self):
        if not isinstance(self.total_allocated, Decimal):
            object.__setattr__(self, 'total_allocated', Decimal(str(self.total_allocated)))
        if not isinstance(self.units_remaining, Decimal):
            object.__setattr__(self, 'units_remaining', Decimal(str(self.units_remaining)))
        if self.units_remaining < 0 or self.units_remaining > self.total_allocated:
            raise ValueError(
                f"units_remaining must be within [0, {self.total_allocated}], "
                f"got {self.units_remaining}"
            )
        if self.unlock_end < self.unlock_start:
            raise ValueError("unlock_end cannot precede unlock_start")

    @property
    def vesting_period(self) -> int:
        """Length of the unlock window in whole seconds."""
        return (self.unlock_end - self.unlock_start) // _ONE_SECOND

    @property
    def is_exhausted(self) -> bool:
        return self.units_remaining <= 0


# ============================================================================
# FIXED-POINT HELPERS
# ============================================================================

def to_base_units(quantity: Decimal, decimal_places: int) -> int:
    """Whole-unit Decimal -> integer base units, truncating below precision."""
    scaled = quantity.scaleb(decimal_places)
    return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def from_base_units(base_units: int, decimal_places: int) -> Decimal:
    """Integer base units -> whole-unit Decimal."""
    return Decimal(base_units).scaleb(-decimal_places)


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_allocation(
    amount: Decimal,
    price_per_unit: int,
    stable_decimals: int = DEFAULT_TOKEN_DECIMALS,
) -> Decimal:
    """
    Convert a tendered stable amount into whole sold units.

    PURE FUNCTION - All inputs explicit.

    Args:
        amount: Stable asset tendered, in whole stable units
        price_per_unit: Stable base units per sold unit, 1e18 fixed point
        stable_decimals: Native precision of the stable asset

    Returns:
        Whole sold units, floored.

    Raises:
        InsufficientAmount: If amount is below MIN_PURCHASE.

    Example:
        # price 2.5e15 means 0.0025 stable per unit
        calculate_allocation(Decimal("2.5"), 2_500_000_000_000_000)  # Decimal("1000")
    """
    if amount < MIN_PURCHASE:
        raise InsufficientAmount(f"purchase of {amount} is below the minimum of {MIN_PURCHASE}")
    amount_base = to_base_units(amount, stable_decimals)
    whole_units = (amount_base * PRICE_SCALE) // (price_per_unit * 10 ** stable_decimals)
    return Decimal(whole_units)


def create_schedule(
    total_allocated: Decimal,
    now: datetime,
    lock_period: int,
    vesting_period: int,
) -> VestingSchedule:
    """A fresh schedule: nothing withdrawn, unlock window starting after the lock."""
    unlock_start = now + timedelta(seconds=lock_period)
    return VestingSchedule(
        total_allocated=total_allocated,
        units_remaining=total_allocated,
        unlock_start=unlock_start,
        unlock_end=unlock_start + timedelta(seconds=vesting_period),
    )


def calculate_unlocked_amount(
    schedule: VestingSchedule,
    now: datetime,
    decimal_places: int = DEFAULT_TOKEN_DECIMALS,
) -> Decimal:
    """
    Units unlocked by a schedule at time now.

    PURE FUNCTION - All inputs explicit.

    rate is total_allocated (in base units) floor-divided by the vesting
    period, multiplied by whole seconds elapsed since unlock_start. Not
    clamped to total_allocated.

    Raises:
        StillLocked: If now is before unlock_start.
    """
    if now < schedule.unlock_start:
        raise StillLocked(f"locked until {schedule.unlock_start}")
    rate = to_base_units(schedule.total_allocated, decimal_places) // schedule.vesting_period
    elapsed = (now - schedule.unlock_start) // _ONE_SECOND
    return from_base_units(elapsed * rate, decimal_places)


def calculate_withdrawal(
    schedule: VestingSchedule,
    amount: Decimal,
    now: datetime,
    decimal_places: int = DEFAULT_TOKEN_DECIMALS,
) -> VestingSchedule:
    """
    Gate a withdrawal and return the schedule after it.

    PURE FUNCTION - All inputs explicit.

    A withdrawal is allowed only once the ENTIRE remaining balance has
    unlocked, and then zeroes units_remaining whatever amount was requested.
    The requested amount is only bounded by total_allocated.

    Raises:
        TooManyRequested: If amount exceeds total_allocated.
        StillLocked: If now is before unlock_start.
        NotEnoughUnlocked: If the schedule is exhausted, or less than
                           units_remaining has unlocked.
    """
    if amount > schedule.total_allocated:
        raise TooManyRequested(
            f"requested {amount}, allocation is {schedule.total_allocated}"
        )
    unlocked = calculate_unlocked_amount(schedule, now, decimal_places)
    if schedule.is_exhausted:
        raise NotEnoughUnlocked("schedule has no units remaining")
    if unlocked < schedule.units_remaining:
        raise NotEnoughUnlocked(
            f"unlocked {unlocked} is below remaining {schedule.units_remaining}"
        )
    # The whole remaining balance is released, whatever amount was requested.
    return replace(schedule, units_remaining=Decimal("0"))


# ============================================================================
# ADAPTERS
# ============================================================================

def schedule_from_dict(raw: Dict[str, Any]) -> VestingSchedule:
    return VestingSchedule(
        total_allocated=Decimal(str(raw['total_allocated'])),
        units_remaining=Decimal(str(raw['units_remaining'])),
        unlock_start=raw['unlock_start'],
        unlock_end=raw['unlock_end'],
    )


def schedule_to_dict(schedule: VestingSchedule) -> Dict[str, Any]:
    return {
        'total_allocated': schedule.total_allocated,
        'units_remaining': schedule.units_remaining,
        'unlock_start': schedule.unlock_start,
        'unlock_end': schedule.unlock_end,
    }
