"""
ledger.py - Double-entry asset ledger holding token balances and sale state

The Ledger is the only mutable object in the package. Sale operations hand
it a PendingTransaction; execute() checks the whole transaction and then
applies all of it, or refuses and changes nothing.

Checks made before anything is applied:
    - the transaction is not from the ledger's future
    - every unit and wallet it touches is registered
    - every quantity fits its token's precision
    - no wallet other than SYSTEM_WALLET ends up negative
    - every state change was computed from the unit's current state
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Set
import copy

from .core import (
    Transaction, Unit, PendingTransaction, ExecuteResult, UnitState,
    SYSTEM_WALLET, UNIT_TYPE_TOKEN,
    UnitNotRegistered, WalletNotRegistered,
    _freeze_state, _canonicalize,
)


class Ledger:
    """
    Balances, unit states and the log of applied transactions.

    Implements LedgerView, so it can be passed straight to compute_*.
    Not thread-safe on its own; VestingSale serializes its callers.

    Example:
        ledger = Ledger("main", initial_time=datetime(2025, 1, 1))
        ledger.register_unit(token("USDC", "USD Coin", decimal_places=6))
        ledger.register_wallet("alice")
        ledger.execute(build_transaction(ledger, [
            Move(Decimal("1000"), "USDC", SYSTEM_WALLET, "alice", "mint_alice")
        ]))
    """

    def __init__(self, name: str, initial_time: Optional[datetime] = None, verbose: bool = True):
        """
        Args:
            name: Ledger identifier
            initial_time: Starting logical time (default: 1970-01-01)
            verbose: Print each applied transaction and each rejection
        """
        self.name = name
        self.verbose = verbose
        self.units: Dict[str, Unit] = {}
        self.registered_wallets: Set[str] = {SYSTEM_WALLET}
        self.balances: Dict[str, Dict[str, Decimal]] = defaultdict(lambda: defaultdict(Decimal))
        self.transaction_log: List[Transaction] = []
        self._applied_intents: Set[str] = set()
        self._current_time = initial_time or datetime(1970, 1, 1)

    # ========================================================================
    # READS (LedgerView)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        return self._current_time

    def get_unit(self, symbol: str) -> Unit:
        if symbol not in self.units:
            raise UnitNotRegistered(f"Unit {symbol} not registered")
        return self.units[symbol]

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Raises:
            WalletNotRegistered, UnitNotRegistered
        """
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        self.get_unit(unit_symbol)
        return self.balances[wallet_id][unit_symbol]

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Deep copy of the unit's state; mutating it changes nothing."""
        return copy.deepcopy(self.get_unit(unit_symbol).state)

    def is_registered(self, wallet_id: str) -> bool:
        return wallet_id in self.registered_wallets

    # ========================================================================
    # CONSERVATION
    # ========================================================================

    def total_supply(self, unit_symbol: str) -> Decimal:
        """
        Sum of a token over every wallet, SYSTEM_WALLET included.

        Issuance debits SYSTEM_WALLET, so this is zero unless value was
        created or destroyed.
        """
        self.get_unit(unit_symbol)
        return sum(
            (self.balances[wallet][unit_symbol] for wallet in sorted(self.registered_wallets)),
            Decimal("0"),
        )

    def verify_double_entry(self) -> Dict[str, Any]:
        """
        Check that every token's total supply is zero.

        Returns:
            {'valid': bool, 'supplies': {token: supply},
             'unbalanced': {token: supply} for every non-zero supply}
        """
        supplies = {
            symbol: self.total_supply(symbol)
            for symbol, unit in sorted(self.units.items())
            if unit.unit_type == UNIT_TYPE_TOKEN
        }
        unbalanced = {symbol: supply for symbol, supply in supplies.items() if supply != 0}
        return {'valid': not unbalanced, 'supplies': supplies, 'unbalanced': unbalanced}

    # ========================================================================
    # TIME AND REGISTRATION
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(f"Cannot move time backwards: {new_time} < {self._current_time}")
        self._current_time = new_time

    def register_wallet(self, wallet_id: str) -> str:
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        return wallet_id

    def register_unit(self, unit: Unit) -> None:
        if unit.symbol in self.units:
            raise ValueError(f"Unit {unit.symbol} already registered")
        self.units[unit.symbol] = unit
        if self.verbose:
            print(f"📝 Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}]")

    # ========================================================================
    # EXECUTION
    # ========================================================================

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Apply a PendingTransaction atomically.

        A transaction with no moves and no state changes is APPLIED without
        being logged. An intent that was applied before is not applied again.

        Returns:
            ExecuteResult.APPLIED, ALREADY_APPLIED or REJECTED
        """
        if not pending.moves and not pending.state_changes:
            return ExecuteResult.APPLIED

        if pending.intent_id in self._applied_intents:
            if self.verbose:
                print(f"⚠️  ALREADY_APPLIED: intent_id={pending.intent_id}")
            return ExecuteResult.ALREADY_APPLIED

        reason = self._rejection_reason(pending)
        if reason:
            if self.verbose:
                print(f"✗ REJECTED: {reason}")
            return ExecuteResult.REJECTED

        for move in pending.moves:
            self.balances[move.source][move.unit_symbol] -= move.quantity
            self.balances[move.dest][move.unit_symbol] += move.quantity
        for sc in pending.state_changes:
            self.units[sc.unit] = replace(
                self.units[sc.unit], _frozen_state=_freeze_state(copy.deepcopy(sc.new_state))
            )

        tx = Transaction(
            moves=pending.moves,
            state_changes=pending.state_changes,
            origin=pending.origin,
            timestamp=pending.timestamp,
            intent_id=pending.intent_id,
            sequence_number=len(self.transaction_log),
            execution_time=self._current_time,
        )
        self.transaction_log.append(tx)
        self._applied_intents.add(pending.intent_id)

        if self.verbose:
            print(repr(tx))
            print("✓ APPLIED")
        return ExecuteResult.APPLIED

    def _rejection_reason(self, pending: PendingTransaction) -> Optional[str]:
        """Why pending cannot be applied, or None if it can."""
        if pending.timestamp > self._current_time:
            return "future timestamp"

        net: Dict[tuple, Decimal] = defaultdict(Decimal)
        for move in pending.moves:
            unit = self.units.get(move.unit_symbol)
            if unit is None:
                return f"unit not registered: {move.unit_symbol}"
            if unit.unit_type != UNIT_TYPE_TOKEN:
                return f"{move.unit_symbol} is not a token"
            for wallet in (move.source, move.dest):
                if wallet not in self.registered_wallets:
                    return f"wallet not registered: {wallet}"
            if not unit.is_representable(move.quantity):
                return f"{move.quantity} {move.unit_symbol} is finer than {unit.decimal_places} decimal places"
            net[move.source, move.unit_symbol] -= move.quantity
            net[move.dest, move.unit_symbol] += move.quantity

        for (wallet, symbol), delta in net.items():
            if wallet == SYSTEM_WALLET:
                continue
            proposed = self.balances[wallet][symbol] + delta
            if proposed < 0:
                return f"{wallet} {symbol}: balance would be {proposed}"

        for sc in pending.state_changes:
            if sc.unit not in self.units:
                return f"unit not registered: {sc.unit}"
            if _canonicalize(sc.old_state) != _canonicalize(self.units[sc.unit].state):
                return f"stale state for {sc.unit}"

        return None
