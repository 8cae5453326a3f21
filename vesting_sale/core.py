"""
Core types for the vesting sale ledger.

Everything a sale operation produces is data: a PendingTransaction made of
token Moves and one UnitStateChange to the sale unit. The Ledger decides
whether that data is applied; nothing in this module touches ledger state.

Contents:
1. LedgerView: the read-only surface sale functions are written against
2. Errors: LedgerError and the SaleError family
3. Moves, state changes and transactions (intent vs. fact)
4. Unit and the token() factory
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_EVEN, getcontext
from enum import Enum
import copy
import hashlib
from typing import Dict, List, Optional, Any, Protocol, Tuple, runtime_checkable


# ============================================================================
# DECIMAL CONTEXT
# ============================================================================
#
# 50 significant digits covers an 18-decimal token amount in the billions.
# Sale arithmetic that divides goes through integer base units instead.
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 50
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Issuer of every token. Its balances go negative as tokens are minted, so
# each token's balances across all wallets always sum to zero.
SYSTEM_WALLET = "system"

UNIT_TYPE_TOKEN = "TOKEN"
UNIT_TYPE_VESTING_SALE = "VESTING_SALE"

# Smallest quantity a Move may carry.
QUANTITY_EPSILON = Decimal("1e-18")

DEFAULT_TOKEN_DECIMALS = 18

UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    What a sale operation may read from the ledger.

    The compute_* functions take a LedgerView, never a Ledger, so they
    cannot mutate anything. Ledger satisfies it, and so does the FakeView
    used by the unit tests.
    """

    @property
    def current_time(self) -> datetime:
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Balance of a unit in a wallet, Decimal("0") if none is held."""
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """A copy of the unit's state dict; for a sale, its whole durable state."""
        ...

    def get_unit(self, symbol: str) -> Unit:
        """The registered Unit, for its precision."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    What Ledger.execute did with a PendingTransaction.

    APPLIED: every move and state change took effect.
    ALREADY_APPLIED: the same intent was applied before; nothing changed.
    REJECTED: a check failed; nothing changed.
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Who asked for a transaction."""
    PARTICIPANT = "participant"       # buy / withdraw
    ADMINISTRATOR = "administrator"   # start, finish, sweeps
    ISSUER = "issuer"                 # minting from SYSTEM_WALLET


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for ledger and sale errors."""
    pass


class UnitNotRegistered(LedgerError):
    pass


class WalletNotRegistered(LedgerError):
    pass


class SaleError(LedgerError):
    """Base exception for sale and vesting failures. None of these are retried."""
    pass


class PhaseError(SaleError):
    """The operation is not allowed in the sale's current phase."""

    def __init__(self, expected, actual):
        self.expected = expected
        self.actual = actual
        super().__init__(f"sale phase is {actual.name}, expected {expected.name}")


class Unauthorized(SaleError):
    """Caller is not the sale administrator."""
    pass


class SaleNotYetEnded(SaleError):
    """finish_sale before sale_end."""
    pass


class InsufficientAmount(SaleError):
    """Purchase below the minimum, or too small to buy a single unit."""
    pass


class TooManyRequested(SaleError):
    """Withdrawal larger than the participant's allocation."""
    pass


class NotEnoughUnlocked(SaleError):
    """The schedule's remaining units have not all unlocked, or none remain."""
    pass


class StillLocked(SaleError):
    """The lock period has not elapsed."""
    pass


class SaleAllocationExceeded(SaleError):
    """Purchase would allocate more units than the sale has left."""
    pass


class ScheduleAlreadyExists(SaleError):
    """Participant still holds unwithdrawn units from an earlier purchase."""
    pass


class TransferFailed(SaleError):
    """The ledger refused the transaction carrying a sale operation."""
    pass


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Audit record of who asked for a transaction and which operation it is.

    Attributes:
        origin_type: Participant, administrator or issuer
        source_id: The calling wallet
        unit_symbol: The sale the operation belongs to, if any
        event_type: Operation name, e.g. "BUY_TOKENS"
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        text = f"{self.origin_type.value}:{self.source_id}"
        if self.unit_symbol:
            text += f" on {self.unit_symbol}"
        if self.event_type:
            text += f" [{self.event_type}]"
        return f"Origin({text})"


# ============================================================================
# MOVES AND STATE CHANGES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    Transfer of `quantity` of one token from source to dest.

    contract_id tags the sale operation that produced the move, e.g.
    "SEED_buy" or "SEED_withdraw_stable".
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str

    def __post_init__(self):
        for label in ('source', 'dest', 'unit_symbol', 'contract_id'):
            value = getattr(self, label)
            if not value or not value.strip():
                raise ValueError(f"Move {label} cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if not self.quantity.is_finite():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if self.quantity < QUANTITY_EPSILON:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Replacement of a unit's state.

    old_state is the snapshot the change was computed from. The ledger
    refuses the change unless the unit still holds exactly that snapshot,
    so two operations computed from the same sale state cannot both apply.
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """{field: (old, new)} for every field whose value differs."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        return {
            key: (old.get(key), new.get(key))
            for key in sorted(old.keys() | new.keys())
            if old.get(key) != new.get(key)
        }


# ============================================================================
# CANONICAL FORM AND INTENT HASHING
# ============================================================================

def _canonicalize(value: Any) -> str:
    """
    Stable text form of a state value.

    Dict order and Decimal exponent do not matter: {"a": Decimal("1.0")}
    and {"a": Decimal("1")} canonicalize identically.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return f"D:{value.normalize():f}"
    if isinstance(value, Enum):
        return f"E:{type(value).__name__}.{value.name}"
    if isinstance(value, (int, float, str)):
        return f"{type(value).__name__[0].upper()}:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, dict):
        pairs = sorted((str(k), _canonicalize(v)) for k, v in value.items())
        return "{" + ",".join(f"{k}={v}" for k, v in pairs) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(item) for item in value) + "]"
    return f"R:{value!r}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
) -> str:
    """
    Content hash of what a transaction does and who asked for it.

    Execution details (time, sequence) are not part of it. Sale state
    carries a nonce, so repeating an operation never repeats an intent.
    """
    parts = [
        _canonicalize([origin.origin_type, origin.source_id, origin.unit_symbol, origin.event_type])
    ]
    parts.extend(sorted(
        _canonicalize([m.quantity, m.unit_symbol, m.source, m.dest, m.contract_id])
        for m in moves
    ))
    parts.extend(sorted(
        _canonicalize([sc.unit, sc.old_state, sc.new_state])
        for sc in state_changes
    ))
    return hashlib.sha256("|".join(parts).encode()).hexdigest()[:16]


# ============================================================================
# TRANSACTIONS
# ============================================================================

@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A sale operation as INTENT: moves plus state changes, not yet applied.

    intent_id is derived from the content when not given.
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            object.__setattr__(
                self, 'intent_id',
                _compute_intent_id(self.moves, self.state_changes, self.origin),
            )

    def __repr__(self) -> str:
        return (f"PendingTransaction({len(self.moves)} moves, "
                f"{len(self.state_changes)} state changes, {self.origin})")


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
) -> PendingTransaction:
    """
    Assemble a PendingTransaction stamped with the view's current time.

    State snapshots are deep-copied, so the caller may keep mutating its
    own dicts. Without an origin the transaction is attributed to the
    issuer (SYSTEM_WALLET).

    Example:
        tx = build_transaction(ledger, [
            Move(Decimal("1000"), "USDC", SYSTEM_WALLET, "alice", "mint_alice")
        ])
        ledger.execute(tx)
    """
    if origin is None:
        origin = TransactionOrigin(OriginType.ISSUER, SYSTEM_WALLET)
    changes = tuple(
        UnitStateChange(sc.unit, copy.deepcopy(sc.old_state), copy.deepcopy(sc.new_state))
        for sc in state_changes or ()
    )
    return PendingTransaction(
        moves=tuple(moves),
        state_changes=changes,
        origin=origin,
        timestamp=view.current_time,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An applied transaction as FACT, as kept in Ledger.transaction_log.

    Attributes:
        moves, state_changes, origin, timestamp, intent_id: from the
            PendingTransaction
        sequence_number: Position in the ledger's log, from 0
        execution_time: Ledger time when it was applied
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    sequence_number: int
    execution_time: datetime

    def __post_init__(self):
        if not self.moves and not self.state_changes:
            raise ValueError("Transaction must have moves or state_changes")

    @property
    def exec_id(self) -> str:
        return f"{self.sequence_number:06d}-{self.intent_id}"

    def __repr__(self) -> str:
        width = 100
        rule = "─" * width

        def row(text: str) -> str:
            text = text if len(text) <= width else text[:width - 3] + "..."
            return f"│{text.ljust(width)}│"

        lines = [
            "",
            f"┌{rule}┐",
            row(f" #{self.exec_id}  {self.origin}"),
            row(f"   at {self.execution_time}  (built {self.timestamp})"),
            f"├{rule}┤",
        ]
        lines.extend(
            row(f"   {m.quantity} {m.unit_symbol}: {m.source} → {m.dest}  ({m.contract_id})")
            for m in self.moves
        )
        for sc in self.state_changes:
            lines.append(row(f"   [{sc.unit}]"))
            lines.extend(
                row(f"      {name}: {old!r} → {new!r}")
                for name, (old, new) in sc.changed_fields().items()
            )
        lines.append(f"└{rule}┘")
        return "\n".join(lines)


# ============================================================================
# UNITS
# ============================================================================

def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    return tuple(sorted((state or {}).items()))


@dataclass(frozen=True, slots=True)
class Unit:
    """
    A registered asset or sale.

    Tokens carry balances and a precision; quantities finer than
    decimal_places are refused by the ledger. A VESTING_SALE unit carries
    no balances and keeps the sale's state in _frozen_state.
    """
    symbol: str
    name: str
    unit_type: str
    decimal_places: Optional[int] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        return dict(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        """Truncate value to decimal_places (unchanged when there is no precision)."""
        if self.decimal_places is None:
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        return value.quantize(Decimal(1).scaleb(-self.decimal_places), rounding=ROUND_DOWN)

    def is_representable(self, value: Decimal) -> bool:
        """True if value has no digits beyond decimal_places."""
        return self.round(value) == value


def token(symbol: str, name: str, decimal_places: int = DEFAULT_TOKEN_DECIMALS) -> Unit:
    """
    A fungible token (the sold asset or the stable asset).

    Wallets other than SYSTEM_WALLET can never hold a negative balance.

    Example:
        ledger.register_unit(token("USDC", "USD Coin", decimal_places=6))
    """
    if not symbol or not symbol.strip():
        raise ValueError("symbol cannot be empty")
    if decimal_places < 0:
        raise ValueError(f"decimal_places cannot be negative, got {decimal_places}")
    return Unit(symbol=symbol, name=name, unit_type=UNIT_TYPE_TOKEN, decimal_places=decimal_places)
