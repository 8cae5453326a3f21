"""
sale.py - Settlement Surface for a vesting token sale

Buyers exchange a stable asset for an allocation of a sold asset, claimable
after a lock period and unlocking linearly over a vesting period.

ARCHITECTURE:
=============

1. FROZEN DATACLASSES:
   - SaleConfig: fixed at deployment (price, amounts, periods, assets)
   - SaleState: phase, sale_end, units remaining, schedules

2. ADAPTERS (load_vesting_sale / to_state_dict):
   - The sale lives in the ledger as a VESTING_SALE unit; its frozen state
     dict is the entire durable state. These are the only places that
     translate between that dict and the typed dataclasses.

3. COMPUTE FUNCTIONS (compute_*):
   - Take (view, symbol, caller, ...) and return a PendingTransaction that
     carries both the asset moves and the sale state change. Every check
     runs before the transaction is built, and Ledger.execute() applies all
     of it or none of it.

4. HISTORY (sale_history / sale_state_at):
   - Rebuild past SaleStates from the state changes in the transaction log.

5. VestingSale:
   - Owns the ledger access for one sale behind a single lock and raises
     TransferFailed when the ledger rejects a transaction.

Operation order: phase check, then access check, then schedule accounting,
then asset moves.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, Any, List, Mapping, Optional, Tuple
import threading

from .core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, Transaction, OriginType, ExecuteResult, UnitState,
    UNIT_TYPE_VESTING_SALE, QUANTITY_EPSILON,
    SaleError, TooManyRequested, InsufficientAmount,
    SaleAllocationExceeded, ScheduleAlreadyExists, TransferFailed,
    build_transaction, _freeze_state,
)
from .access import AccessGuard, SingleAdministrator, require_administrator
from .phase import SalePhase, require_phase, calculate_start, calculate_finish
from .schedule import (
    VestingSchedule,
    calculate_allocation, calculate_unlocked_amount, calculate_withdrawal,
    create_schedule, schedule_from_dict, schedule_to_dict,
)
from .ledger import Ledger


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class SaleConfig:
    """
    Immutable sale terms, set at deployment.

    price_per_unit is stable base units per whole sold unit with a 1e18
    denominator (2_500_000_000_000_000 is 0.0025 stable per unit).
    sale_amount is in whole sold units; periods are in seconds.
    """
    sold_asset: str
    stable_asset: str
    price_per_unit: int
    sale_amount: Decimal
    sale_length: int
    lock_period: int
    vesting_period: int

    def __post_init__(self):
        if not isinstance(self.sale_amount, Decimal):
            object.__setattr__(self, 'sale_amount', Decimal(str(self.sale_amount)))
        if not self.sold_asset or not self.stable_asset:
            raise ValueError("sold_asset and stable_asset cannot be empty")
        if self.sold_asset == self.stable_asset:
            raise ValueError("sold_asset and stable_asset must be different")
        if self.price_per_unit <= 0:
            raise ValueError(f"price_per_unit must be positive, got {self.price_per_unit}")
        if self.sale_amount <= 0:
            raise ValueError(f"sale_amount must be positive, got {self.sale_amount}")
        if self.sale_length < 0:
            raise ValueError(f"sale_length cannot be negative, got {self.sale_length}")
        if self.lock_period < 0:
            raise ValueError(f"lock_period cannot be negative, got {self.lock_period}")
        if self.vesting_period <= 0:
            raise ValueError(f"vesting_period must be positive, got {self.vesting_period}")


@dataclass(frozen=True, slots=True)
class SaleState:
    """
    Immutable snapshot of the sale's mutable state.

    nonce counts applied sale operations, so that two otherwise identical
    operations never share a transaction intent.
    """
    phase: SalePhase
    sale_end: Optional[datetime]
    total_units_remaining: Decimal
    schedules: Mapping[str, VestingSchedule]
    nonce: int = 0


# ============================================================================
# SALE CREATION
# ============================================================================

def create_vesting_sale(
    symbol: str,
    name: str,
    config: SaleConfig,
    administrator: str,
    custody_wallet: Optional[str] = None,
) -> Unit:
    """
    Create the unit that holds a vesting sale's state.

    The sale starts PENDING with the whole sale_amount remaining. The unit
    itself is never held by any wallet; assets sit in custody_wallet.

    Args:
        symbol: Sale identifier (e.g., "SEED_SALE")
        name: Human-readable name
        config: Sale terms
        administrator: Wallet allowed to start, finish and sweep the sale
        custody_wallet: Wallet holding sold and collected assets
                        (default: the sale symbol)

    Raises:
        ValueError: If administrator is empty or equals the custody wallet.

    Example:
        config = SaleConfig("VORPAL", "USDC", 2_500_000_000_000_000,
                            Decimal("42000000"), MONTH, 0, 5 * MONTH)
        ledger.register_unit(create_vesting_sale("SEED", "Seed Sale", config, "owner"))
    """
    custody_wallet = custody_wallet or symbol
    if not administrator or not administrator.strip():
        raise ValueError("administrator cannot be empty")
    if administrator == custody_wallet:
        raise ValueError("administrator and custody_wallet must be different")

    state = SaleState(
        phase=SalePhase.PENDING,
        sale_end=None,
        total_units_remaining=config.sale_amount,
        schedules={},
    )
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_VESTING_SALE,
        _frozen_state=_freeze_state({
            **to_state_dict(config, state),
            'custody_wallet': custody_wallet,
            'administrator': administrator,
        }),
    )


# ============================================================================
# ADAPTERS
# ============================================================================

def load_vesting_sale(view: LedgerView, symbol: str) -> Tuple[SaleConfig, SaleState]:
    """
    Load a sale from ledger state as typed frozen dataclasses.

    The only function that reads sale state from a LedgerView.
    """
    return sale_from_state(view.get_unit_state(symbol))


def sale_from_state(raw: UnitState) -> Tuple[SaleConfig, SaleState]:
    """Typed config and state from a sale unit's state dict (current or logged)."""
    config = SaleConfig(
        sold_asset=raw['sold_asset'],
        stable_asset=raw['stable_asset'],
        price_per_unit=raw['price_per_unit'],
        sale_amount=Decimal(str(raw['sale_amount'])),
        sale_length=raw['sale_length'],
        lock_period=raw['lock_period'],
        vesting_period=raw['vesting_period'],
    )
    state = SaleState(
        phase=SalePhase(raw['phase']),
        sale_end=raw.get('sale_end'),
        total_units_remaining=Decimal(str(raw['total_units_remaining'])),
        schedules={
            participant: schedule_from_dict(entry)
            for participant, entry in raw.get('schedules', {}).items()
        },
        nonce=raw.get('nonce', 0),
    )
    return config, state


def to_state_dict(config: SaleConfig, state: SaleState) -> Dict[str, Any]:
    """
    Convert typed dataclasses back to a state dict for ledger storage.

    Keys the sale does not own (custody_wallet, administrator) are merged
    in by the caller.
    """
    return {
        'sold_asset': config.sold_asset,
        'stable_asset': config.stable_asset,
        'price_per_unit': config.price_per_unit,
        'sale_amount': config.sale_amount,
        'sale_length': config.sale_length,
        'lock_period': config.lock_period,
        'vesting_period': config.vesting_period,
        'phase': state.phase.value,
        'sale_end': state.sale_end,
        'total_units_remaining': state.total_units_remaining,
        'schedules': {
            participant: schedule_to_dict(schedule)
            for participant, schedule in state.schedules.items()
        },
        'nonce': state.nonce,
    }


def _decimals(view: LedgerView, unit_symbol: str) -> int:
    places = view.get_unit(unit_symbol).decimal_places
    return 0 if places is None else places


def _to_decimal(value, label: str) -> Decimal:
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    if not value.is_finite():
        raise ValueError(f"{label} must be finite, got {value}")
    return value


def _require_precision(view: LedgerView, unit_symbol: str, amount: Decimal, label: str) -> None:
    unit = view.get_unit(unit_symbol)
    if not unit.is_representable(amount):
        raise ValueError(
            f"{label} {amount} has more than {unit.decimal_places} decimal places of {unit_symbol}"
        )


def _build_sale_transaction(
    view: LedgerView,
    symbol: str,
    raw: Dict[str, Any],
    config: SaleConfig,
    new_state: SaleState,
    moves: List[Move],
    origin: TransactionOrigin,
) -> PendingTransaction:
    new_raw = {
        **raw,
        **to_state_dict(config, replace(new_state, nonce=new_state.nonce + 1)),
    }
    change = UnitStateChange(unit=symbol, old_state=raw, new_state=new_raw)
    return build_transaction(view, moves, [change], origin)


# ============================================================================
# ADMINISTRATOR OPERATIONS
# ============================================================================

def compute_start_sale(
    view: LedgerView,
    symbol: str,
    caller: str,
    guard: AccessGuard,
) -> PendingTransaction:
    """
    Open the sale: PENDING -> STARTED, sale_end = now + sale_length.

    Raises:
        PhaseError: If the sale is not PENDING.
        Unauthorized: If caller is not the administrator.
    """
    raw = view.get_unit_state(symbol)
    config, state = load_vesting_sale(view, symbol)
    require_phase(state.phase, SalePhase.PENDING)
    require_administrator(guard, caller)

    new_state = calculate_start(config, state, view.current_time)
    origin = TransactionOrigin(OriginType.ADMINISTRATOR, caller, symbol, "START_SALE")
    return _build_sale_transaction(view, symbol, raw, config, new_state, [], origin)


def compute_finish_sale(
    view: LedgerView,
    symbol: str,
    caller: str,
    guard: AccessGuard,
) -> PendingTransaction:
    """
    Close the sale: STARTED -> FINISHED, once sale_end has passed.

    Raises:
        PhaseError: If the sale is not STARTED.
        Unauthorized: If caller is not the administrator.
        SaleNotYetEnded: If now is before sale_end.
    """
    raw = view.get_unit_state(symbol)
    config, state = load_vesting_sale(view, symbol)
    require_phase(state.phase, SalePhase.STARTED)
    require_administrator(guard, caller)

    new_state = calculate_finish(state, view.current_time)
    origin = TransactionOrigin(OriginType.ADMINISTRATOR, caller, symbol, "FINISH_SALE")
    return _build_sale_transaction(view, symbol, raw, config, new_state, [], origin)


def compute_withdraw_remaining(
    view: LedgerView,
    symbol: str,
    caller: str,
    guard: AccessGuard,
    to: str,
) -> PendingTransaction:
    """
    Sweep the unsold allocation to `to` after the sale has finished.

    Moves total_units_remaining sold units out of custody. The counter is
    NOT zeroed, so a repeated sweep moves the same quantity again and is
    bounded only by what custody actually holds.

    Raises:
        PhaseError: If the sale is not FINISHED.
        Unauthorized: If caller is not the administrator.
    """
    raw = view.get_unit_state(symbol)
    config, state = load_vesting_sale(view, symbol)
    require_phase(state.phase, SalePhase.FINISHED)
    require_administrator(guard, caller)

    moves = []
    if state.total_units_remaining > QUANTITY_EPSILON:
        moves.append(Move(
            quantity=state.total_units_remaining,
            unit_symbol=config.sold_asset,
            source=raw['custody_wallet'],
            dest=to,
            contract_id=f'{symbol}_withdraw_remaining',
        ))
    origin = TransactionOrigin(OriginType.ADMINISTRATOR, caller, symbol, "WITHDRAW_REMAINING")
    return _build_sale_transaction(view, symbol, raw, config, state, moves, origin)


def compute_withdraw_collected_stable_asset(
    view: LedgerView,
    symbol: str,
    caller: str,
    guard: AccessGuard,
    to: str,
) -> PendingTransaction:
    """
    Sweep the entire stable balance held in custody to `to`.

    Raises:
        PhaseError: If the sale is not FINISHED.
        Unauthorized: If caller is not the administrator.
    """
    raw = view.get_unit_state(symbol)
    config, state = load_vesting_sale(view, symbol)
    require_phase(state.phase, SalePhase.FINISHED)
    require_administrator(guard, caller)

    collected = view.get_balance(raw['custody_wallet'], config.stable_asset)
    moves = []
    if collected > QUANTITY_EPSILON:
        moves.append(Move(
            quantity=collected,
            unit_symbol=config.stable_asset,
            source=raw['custody_wallet'],
            dest=to,
            contract_id=f'{symbol}_withdraw_stable',
        ))
    origin = TransactionOrigin(OriginType.ADMINISTRATOR, caller, symbol, "WITHDRAW_STABLE")
    return _build_sale_transaction(view, symbol, raw, config, state, moves, origin)


# ============================================================================
# PARTICIPANT OPERATIONS
# ============================================================================

def compute_buy_tokens(
    view: LedgerView,
    symbol: str,
    buyer: str,
    amount: Decimal,
) -> PendingTransaction:
    """
    Buy an allocation with `amount` of the stable asset.

    Pulls amount from the buyer into custody, writes the buyer's schedule
    (unlock_start = now + lock_period) and decrements total_units_remaining
    by the allocation, all in one transaction.

    Raises:
        ValueError: If amount is not a finite number, or has more decimal
                    places than the stable asset.
        PhaseError: If the sale is not STARTED.
        InsufficientAmount: If amount is below the minimum or buys nothing.
        ScheduleAlreadyExists: If the buyer still has units in a schedule.
        SaleAllocationExceeded: If the allocation exceeds what is left.

    Example:
        # 2.5 USDC at 0.0025 USDC per unit
        tx = compute_buy_tokens(ledger, "SEED", "alice", Decimal("2.5"))
        ledger.execute(tx)
        get_schedule(ledger, "SEED", "alice").total_allocated  # Decimal("1000")
    """
    amount = _to_decimal(amount, "amount")
    raw = view.get_unit_state(symbol)
    config, state = load_vesting_sale(view, symbol)
    _require_precision(view, config.stable_asset, amount, "amount")
    require_phase(state.phase, SalePhase.STARTED)

    allocated = calculate_allocation(
        amount, config.price_per_unit, _decimals(view, config.stable_asset)
    )
    if allocated <= 0:
        raise InsufficientAmount(f"{amount} {config.stable_asset} buys no units")

    existing = state.schedules.get(buyer)
    if existing is not None and not existing.is_exhausted:
        raise ScheduleAlreadyExists(
            f"{buyer} still has {existing.units_remaining} units in a schedule"
        )
    if allocated > state.total_units_remaining:
        raise SaleAllocationExceeded(
            f"allocation {allocated} exceeds {state.total_units_remaining} units left"
        )

    now = view.current_time
    schedules = dict(state.schedules)
    schedules[buyer] = create_schedule(
        allocated, now, config.lock_period, config.vesting_period
    )
    new_state = replace(
        state,
        total_units_remaining=state.total_units_remaining - allocated,
        schedules=schedules,
    )
    moves = [Move(
        quantity=amount,
        unit_symbol=config.stable_asset,
        source=buyer,
        dest=raw['custody_wallet'],
        contract_id=f'{symbol}_buy',
    )]
    origin = TransactionOrigin(OriginType.PARTICIPANT, buyer, symbol, "BUY_TOKENS")
    return _build_sale_transaction(view, symbol, raw, config, new_state, moves, origin)


def compute_withdraw_tokens(
    view: LedgerView,
    symbol: str,
    participant: str,
    amount: Decimal,
) -> PendingTransaction:
    """
    Withdraw `amount` sold units from the participant's schedule.

    Allowed only once everything still remaining has unlocked; the schedule
    is then zeroed and `amount` moves from custody to the participant.

    Raises:
        ValueError: If amount is not positive, or has more decimal places
                    than the sold asset.
        TooManyRequested: If amount exceeds the allocation (or there is none).
        StillLocked: If the lock period has not elapsed.
        NotEnoughUnlocked: If remaining units are not all unlocked, or the
                           schedule is already exhausted.
    """
    amount = _to_decimal(amount, "amount")
    if amount <= 0:
        raise ValueError(f"amount must be positive, got {amount}")
    raw = view.get_unit_state(symbol)
    config, state = load_vesting_sale(view, symbol)
    _require_precision(view, config.sold_asset, amount, "amount")

    schedule = state.schedules.get(participant)
    if schedule is None:
        raise TooManyRequested(f"{participant} has no allocation")

    updated = calculate_withdrawal(
        schedule, amount, view.current_time, _decimals(view, config.sold_asset)
    )
    schedules = dict(state.schedules)
    schedules[participant] = updated
    new_state = replace(state, schedules=schedules)
    moves = [Move(
        quantity=amount,
        unit_symbol=config.sold_asset,
        source=raw['custody_wallet'],
        dest=participant,
        contract_id=f'{symbol}_withdraw',
    )]
    origin = TransactionOrigin(OriginType.PARTICIPANT, participant, symbol, "WITHDRAW_TOKENS")
    return _build_sale_transaction(view, symbol, raw, config, new_state, moves, origin)


# ============================================================================
# QUERIES
# ============================================================================

def get_schedule(view: LedgerView, symbol: str, participant: str) -> Optional[VestingSchedule]:
    """The participant's schedule, or None if they never bought."""
    _, state = load_vesting_sale(view, symbol)
    return state.schedules.get(participant)


def get_unlocked_amount(view: LedgerView, symbol: str, participant: str) -> Decimal:
    """
    Units unlocked for the participant right now (unclamped).

    Raises:
        StillLocked: If the participant's lock period has not elapsed.
    """
    config, state = load_vesting_sale(view, symbol)
    schedule = state.schedules.get(participant)
    if schedule is None:
        return Decimal("0")
    return calculate_unlocked_amount(
        schedule, view.current_time, _decimals(view, config.sold_asset)
    )


# ============================================================================
# HISTORY
# ============================================================================

@dataclass(frozen=True, slots=True)
class SaleEvent:
    """One applied sale operation and the sale state it left behind."""
    sequence_number: int
    time: datetime
    operation: str
    caller: str
    state: SaleState


def sale_history(transactions: List[Transaction], symbol: str) -> List[SaleEvent]:
    """
    Every applied operation on the sale, oldest first.

    Built from the state changes recorded in a transaction log, so it
    covers only what went through Ledger.execute.
    """
    events = []
    for tx in transactions:
        for sc in tx.state_changes:
            if sc.unit != symbol:
                continue
            events.append(SaleEvent(
                sequence_number=tx.sequence_number,
                time=tx.execution_time,
                operation=tx.origin.event_type or "",
                caller=tx.origin.source_id,
                state=sale_from_state(sc.new_state)[1],
            ))
    return events


def sale_state_at(ledger: Ledger, symbol: str, when: datetime) -> SaleState:
    """
    The sale state as it stood at `when`.

    Operations applied at exactly `when` are included. Before the first
    operation this is the state the sale was deployed with.

    Raises:
        ValueError: If when is after the ledger's current time.
    """
    if when > ledger.current_time:
        raise ValueError(f"{when} is after the ledger's current time {ledger.current_time}")
    _, state = load_vesting_sale(ledger, symbol)
    deployed = None
    for tx in reversed(ledger.transaction_log):
        for sc in tx.state_changes:
            if sc.unit != symbol:
                continue
            if tx.execution_time <= when:
                return sale_from_state(sc.new_state)[1]
            deployed = sc.old_state
    return state if deployed is None else sale_from_state(deployed)[1]


# ============================================================================
# SETTLEMENT SURFACE
# ============================================================================

class VestingSale:
    """
    Serialized entry points for one sale registered in a ledger.

    Every call holds one lock across load -> compute -> execute, so no other
    caller can change the sale between the read and the write. A rejected
    transaction raises TransferFailed; nothing has changed in that case.

    Example:
        sale = VestingSale.deploy(ledger, "SEED", "Seed Sale", config, "owner")
        sale.start_sale("owner")
        sale.buy_tokens("alice", Decimal("50"))
    """

    def __init__(self, ledger: Ledger, symbol: str, guard: Optional[AccessGuard] = None):
        self.ledger = ledger
        self.symbol = symbol
        raw = ledger.get_unit_state(symbol)
        self.guard = guard or SingleAdministrator(raw['administrator'])
        self.custody_wallet = raw['custody_wallet']
        self._lock = threading.RLock()

    @classmethod
    def deploy(
        cls,
        ledger: Ledger,
        symbol: str,
        name: str,
        config: SaleConfig,
        administrator: str,
        custody_wallet: Optional[str] = None,
        guard: Optional[AccessGuard] = None,
    ) -> VestingSale:
        """Register the sale unit (and its custody wallet if new) and wrap it."""
        unit = create_vesting_sale(symbol, name, config, administrator, custody_wallet)
        custody = unit.state['custody_wallet']
        ledger.register_unit(unit)
        if not ledger.is_registered(custody):
            ledger.register_wallet(custody)
        return cls(ledger, symbol, guard)

    def _submit(self, event: str, compute, *args) -> None:
        with self._lock:
            try:
                pending = compute(self.ledger, self.symbol, *args)
            except SaleError as e:
                if self.ledger.verbose:
                    print(f"✗ {self.symbol} {event}: {type(e).__name__}: {e}")
                raise
            result = self.ledger.execute(pending)
            if result != ExecuteResult.APPLIED:
                raise TransferFailed(f"{self.symbol} {event}: ledger returned {result.value}")

    # Administrator operations

    def start_sale(self, caller: str) -> None:
        self._submit("start_sale", compute_start_sale, caller, self.guard)

    def finish_sale(self, caller: str) -> None:
        self._submit("finish_sale", compute_finish_sale, caller, self.guard)

    def withdraw_remaining(self, caller: str, to: str) -> None:
        self._submit("withdraw_remaining", compute_withdraw_remaining, caller, self.guard, to)

    def withdraw_collected_stable_asset(self, caller: str, to: str) -> None:
        self._submit(
            "withdraw_collected_stable_asset",
            compute_withdraw_collected_stable_asset, caller, self.guard, to,
        )

    # Participant operations

    def buy_tokens(self, caller: str, amount: Decimal) -> None:
        self._submit("buy_tokens", compute_buy_tokens, caller, amount)

    def withdraw_tokens(self, caller: str, amount: Decimal) -> None:
        self._submit("withdraw_tokens", compute_withdraw_tokens, caller, amount)

    # Queries

    def get_schedule(self, participant: str) -> Optional[VestingSchedule]:
        with self._lock:
            return get_schedule(self.ledger, self.symbol, participant)

    def get_unlocked_amount(self, participant: str) -> Decimal:
        with self._lock:
            return get_unlocked_amount(self.ledger, self.symbol, participant)

    def history(self) -> List[SaleEvent]:
        with self._lock:
            return sale_history(self.ledger.transaction_log, self.symbol)

    def state_at(self, when: datetime) -> SaleState:
        with self._lock:
            return sale_state_at(self.ledger, self.symbol, when)

    @property
    def config(self) -> SaleConfig:
        with self._lock:
            return load_vesting_sale(self.ledger, self.symbol)[0]

    @property
    def state(self) -> SaleState:
        with self._lock:
            return load_vesting_sale(self.ledger, self.symbol)[1]

    @property
    def phase(self) -> SalePhase:
        return self.state.phase

    @property
    def status(self) -> int:
        """Numeric phase code: 0 pending, 1 started, 2 finished."""
        return self.phase.value

    @property
    def sale_end(self) -> Optional[datetime]:
        return self.state.sale_end

    @property
    def total_units_remaining(self) -> Decimal:
        return self.state.total_units_remaining
