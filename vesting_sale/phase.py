"""
phase.py - Sale Phase Controller

Three-state lifecycle gating every sale operation:

    PENDING --start--> STARTED --finish--> FINISHED

No transition leads back. The transition functions are pure: they take the
current SaleState and return a new one, raising before anything changes.
"""

from __future__ import annotations
from dataclasses import replace
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING

from .core import PhaseError, SaleNotYetEnded

if TYPE_CHECKING:
    from .sale import SaleConfig, SaleState


class SalePhase(Enum):
    """Sale lifecycle phase. Values are the numeric status codes."""
    PENDING = 0
    STARTED = 1
    FINISHED = 2


def require_phase(actual: SalePhase, expected: SalePhase) -> None:
    """
    Raises:
        PhaseError: If actual is not expected.
    """
    if actual is not expected:
        raise PhaseError(expected, actual)


def calculate_start(config: SaleConfig, state: SaleState, now: datetime) -> SaleState:
    """
    Move a PENDING sale to STARTED and fix its end time.

    PURE FUNCTION - All inputs explicit.

    Returns:
        New SaleState with phase STARTED and sale_end = now + sale_length.

    Raises:
        PhaseError: If the sale is not PENDING.
    """
    if state.phase is SalePhase.PENDING:
        return replace(
            state,
            phase=SalePhase.STARTED,
            sale_end=now + timedelta(seconds=config.sale_length),
        )
    elif state.phase is SalePhase.STARTED or state.phase is SalePhase.FINISHED:
        raise PhaseError(SalePhase.PENDING, state.phase)
    raise ValueError(f"unknown sale phase {state.phase!r}")


def calculate_finish(state: SaleState, now: datetime) -> SaleState:
    """
    Move a STARTED sale to FINISHED once its sale window has passed.

    PURE FUNCTION - All inputs explicit.

    Raises:
        PhaseError: If the sale is not STARTED.
        SaleNotYetEnded: If now is before sale_end.
    """
    if state.phase is SalePhase.STARTED:
        if now < state.sale_end:
            raise SaleNotYetEnded(f"sale ends at {state.sale_end}, now is {now}")
        return replace(state, phase=SalePhase.FINISHED)
    elif state.phase is SalePhase.PENDING or state.phase is SalePhase.FINISHED:
        raise PhaseError(SalePhase.STARTED, state.phase)
    raise ValueError(f"unknown sale phase {state.phase!r}")
