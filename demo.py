#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: A Vesting Token Sale Step by Step

Walks one sale through its whole life on a verbose ledger, so every
transaction is printed as it is applied or rejected. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:   Setup          - Tokens, wallets, deploying and funding the sale
  4-6:   Selling        - Starting, buying, what gets rejected and why
  7-9:   Vesting        - Linear unlock, the all-or-nothing withdrawal
  10-11: Closing        - Finishing the sale, sweeping custody
  12:    History        - past sale states, conservation

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import sys

from vesting_sale import (
    Ledger, Move, build_transaction, token,
    SYSTEM_WALLET, TransactionOrigin, OriginType,
    SaleConfig, VestingSale, SaleError,
)


MONTH = 30 * 24 * 3600


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)

    # Sale terms
    price_per_unit: int = 2_500_000_000_000_000      # 0.0025 USDC per VORPAL
    sale_amount: Decimal = Decimal("42000000")
    sale_length: int = MONTH
    lock_period: int = 0
    vesting_period: int = 5 * MONTH

    # Initial funding
    alice_usdc: Decimal = Decimal("1000")
    bob_usdc: Decimal = Decimal("10")

    # Purchases
    alice_purchase: Decimal = Decimal("50")
    bob_purchase: Decimal = Decimal("2.5")


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    """Print a section header within a step."""
    print(f"\n--- {text} ---\n")


def attempt(label: str, operation, *args):
    """Run a sale operation that is expected to fail and show the error."""
    print(f">>> {label}")
    try:
        operation(*args)
    except (SaleError, ValueError) as e:
        print(f"    raised {type(e).__name__}: {e}")
    else:
        print("    succeeded")


# ============================================================================
# PHASE 1: SETUP (Steps 1-3)
# ============================================================================

def step_01_tokens_and_wallets():
    """Create the ledger, both tokens and the participants."""
    step_header(1, "Tokens and Wallets",
        "Everything the sale touches lives in one double-entry ledger.")

    print("""
    Two fungible tokens take part in the sale:

    1. VORPAL - the SOLD asset, held in the sale's custody wallet
    2. USDC   - the STABLE asset buyers pay with

    VORPAL has 18 decimal places and USDC has 6, like the real token.
    Neither can go negative outside the system wallet.
    """)

    ledger = Ledger("tutorial", initial_time=CONFIG.start_time, verbose=True)
    ledger.register_unit(token("VORPAL", "Vorpal"))
    ledger.register_unit(token("USDC", "USD Coin", decimal_places=6))
    for wallet in ("owner", "alice", "bob", "treasury"):
        ledger.register_wallet(wallet)

    print(f"\nRegistered wallets: {sorted(ledger.registered_wallets)}")
    print(f"Registered units:   {sorted(ledger.units)}")
    return ledger


def step_02_deploy_sale(ledger: Ledger) -> VestingSale:
    """Deploy the sale as a unit whose state is the sale's state."""
    step_header(2, "Deploying the Sale",
        "A sale is a VESTING_SALE unit; its state dict is all the sale knows.")

    config = SaleConfig(
        sold_asset="VORPAL",
        stable_asset="USDC",
        price_per_unit=CONFIG.price_per_unit,
        sale_amount=CONFIG.sale_amount,
        sale_length=CONFIG.sale_length,
        lock_period=CONFIG.lock_period,
        vesting_period=CONFIG.vesting_period,
    )
    print('>>> sale = VestingSale.deploy(ledger, "SEED", "Seed Sale", config, "owner")')
    sale = VestingSale.deploy(ledger, "SEED", "Seed Sale", config, "owner")

    section_header("Initial Sale State")
    print(f"Phase:            {sale.phase.name} (status {sale.status})")
    print(f"Units remaining:  {sale.total_units_remaining}")
    print(f"Custody wallet:   {sale.custody_wallet}")
    print(f"Administrator:    {sale.guard}")
    return sale


def step_03_fund(ledger: Ledger, sale: VestingSale):
    """Issue the sale amount into custody and USDC to buyers."""
    step_header(3, "Funding",
        "Issuance is an ordinary transaction from SYSTEM_WALLET.")

    origin = TransactionOrigin(OriginType.ISSUER, "issuer", event_type="ISSUANCE")
    ledger.execute(build_transaction(ledger, [
        Move(CONFIG.sale_amount, "VORPAL", SYSTEM_WALLET, sale.custody_wallet, "mint_sale"),
        Move(CONFIG.alice_usdc, "USDC", SYSTEM_WALLET, "alice", "mint_alice"),
        Move(CONFIG.bob_usdc, "USDC", SYSTEM_WALLET, "bob", "mint_bob"),
    ], origin=origin))


# ============================================================================
# PHASE 2: SELLING (Steps 4-6)
# ============================================================================

def step_04_start(ledger: Ledger, sale: VestingSale):
    """Only the administrator can open the sale, and only once."""
    step_header(4, "Starting the Sale",
        "PENDING -> STARTED fixes sale_end = now + sale_length.")

    attempt('sale.buy_tokens("alice", 2.5)   # still PENDING', sale.buy_tokens, "alice", Decimal("2.5"))
    attempt('sale.start_sale("alice")        # not the administrator', sale.start_sale, "alice")

    print('\n>>> sale.start_sale("owner")')
    sale.start_sale("owner")
    print(f"\nPhase: {sale.phase.name}, sale ends {sale.sale_end}")


def step_05_buy(ledger: Ledger, sale: VestingSale):
    """A purchase moves USDC into custody and writes a vesting schedule."""
    step_header(5, "Buying",
        "Payment and schedule are one transaction; VORPAL stays in custody.")

    print(f'>>> sale.buy_tokens("alice", {CONFIG.alice_purchase})')
    sale.buy_tokens("alice", CONFIG.alice_purchase)
    print(f'>>> sale.buy_tokens("bob", {CONFIG.bob_purchase})')
    sale.buy_tokens("bob", CONFIG.bob_purchase)

    section_header("Schedules")
    for buyer in ("alice", "bob"):
        schedule = sale.get_schedule(buyer)
        print(f"{buyer:6} allocated {schedule.total_allocated}, "
              f"unlocks {schedule.unlock_start} -> {schedule.unlock_end}")
    print(f"\nUnits remaining: {sale.total_units_remaining}")
    print(f"USDC in custody: {ledger.get_balance(sale.custody_wallet, 'USDC')}")


def step_06_rejections(ledger: Ledger, sale: VestingSale):
    """Every failed check leaves the ledger exactly as it was."""
    step_header(6, "Rejected Purchases",
        "Errors are raised before anything changes.")

    log_length = len(ledger.transaction_log)
    attempt('sale.buy_tokens("bob", 0.5)     # below the minimum', sale.buy_tokens, "bob", Decimal("0.5"))
    attempt('sale.buy_tokens("alice", 1)     # already has a schedule', sale.buy_tokens, "alice", Decimal("1"))
    attempt('sale.buy_tokens("treasury", 1)  # holds no USDC', sale.buy_tokens, "treasury", Decimal("1"))
    attempt('sale.buy_tokens("bob", 1.0000001) # finer than USDC allows', sale.buy_tokens, "bob", Decimal("1.0000001"))
    print(f"\nTransaction log grew by {len(ledger.transaction_log) - log_length}")


# ============================================================================
# PHASE 3: VESTING (Steps 7-9)
# ============================================================================

def step_07_unlock(ledger: Ledger, sale: VestingSale):
    """Unlocking is linear in whole seconds and not capped."""
    step_header(7, "Linear Unlock",
        "unlocked = seconds since unlock_start * floor(allocation / vesting_period)")

    for months in (0, 1, 2, 5, 10):
        now = CONFIG.start_time + timedelta(seconds=months * MONTH)
        if now > ledger.current_time:
            ledger.advance_time(now)
        print(f"After {months:2} months: alice has {sale.get_unlocked_amount('alice'):.6f} unlocked")

    print("""
    Note the unlocked amount keeps growing past the allocation: the cap is
    units_remaining, which the withdrawal checks against.
    """)


def step_08_withdraw(ledger: Ledger, sale: VestingSale):
    """A withdrawal needs everything remaining to be unlocked."""
    step_header(8, "Withdrawing",
        "One withdrawal releases the schedule; the requested amount is paid.")

    print('>>> sale.withdraw_tokens("alice", 20000)')
    sale.withdraw_tokens("alice", Decimal("20000"))
    print(f"\nalice VORPAL: {ledger.get_balance('alice', 'VORPAL')}")
    print(f"alice units remaining: {sale.get_schedule('alice').units_remaining}")


def step_09_second_withdrawal(ledger: Ledger, sale: VestingSale):
    """An exhausted schedule cannot be withdrawn from again."""
    step_header(9, "No Second Withdrawal",
        "units_remaining is zero, so nothing more is released.")

    attempt('sale.withdraw_tokens("alice", 1)', sale.withdraw_tokens, "alice", Decimal("1"))
    attempt('sale.withdraw_tokens("bob", 5000)   # more than allocated', sale.withdraw_tokens, "bob", Decimal("5000"))


# ============================================================================
# PHASE 4: CLOSING (Steps 10-11)
# ============================================================================

def step_10_finish(ledger: Ledger, sale: VestingSale):
    """Finish the sale once its window has passed."""
    step_header(10, "Finishing the Sale",
        "STARTED -> FINISHED, after sale_end, by the administrator.")

    print('>>> sale.finish_sale("owner")')
    sale.finish_sale("owner")
    print(f"\nPhase: {sale.phase.name} (status {sale.status})")


def step_11_sweep(ledger: Ledger, sale: VestingSale):
    """Sweep unsold VORPAL and collected USDC to the treasury."""
    step_header(11, "Sweeping Custody",
        "Unsold units and collected payments leave custody for the treasury.")

    print('>>> sale.withdraw_remaining("owner", "treasury")')
    sale.withdraw_remaining("owner", "treasury")
    print('>>> sale.withdraw_collected_stable_asset("owner", "treasury")')
    sale.withdraw_collected_stable_asset("owner", "treasury")

    section_header("Balances")
    for wallet in ("treasury", sale.custody_wallet, "alice", "bob"):
        print(f"{wallet:9} VORPAL {ledger.get_balance(wallet, 'VORPAL'):>12}  "
              f"USDC {ledger.get_balance(wallet, 'USDC'):>8}")

    section_header("Key Insight")
    print("""
    Custody still holds bob's 1000 VORPAL: the sweep only moves what was
    never sold. bob can still withdraw them at any time.
    """)


# ============================================================================
# PHASE 5: HISTORY (Step 12)
# ============================================================================

def step_12_history(ledger: Ledger, sale: VestingSale):
    """Rebuild past sale states from the log and check conservation."""
    step_header(12, "History and Conservation",
        "Every sale state change is in the log, and every token sums to zero.")

    section_header("Sale History")
    for event in sale.history():
        print(f"#{event.sequence_number:<3} {event.time}  {event.operation:<32} "
              f"by {event.caller:<9} remaining {event.state.total_units_remaining}")

    past = sale.state_at(CONFIG.start_time)
    print(f"\nAt the start: phase {past.phase.name}, schedules {sorted(past.schedules)}")

    result = ledger.verify_double_entry()
    print(f"Supplies: {result['supplies']}")
    print(f"Conservation holds: {result['valid']}")


def main():
    """Run the complete tutorial."""
    print("=" * 70)
    print("       VESTING SALE - INTERACTIVE TUTORIAL")
    print("=" * 70)

    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")

    wait_for_enter()

    ledger = step_01_tokens_and_wallets()
    wait_for_enter()

    sale = step_02_deploy_sale(ledger)
    wait_for_enter()

    step_03_fund(ledger, sale)
    wait_for_enter()

    step_04_start(ledger, sale)
    wait_for_enter()

    step_05_buy(ledger, sale)
    wait_for_enter()

    step_06_rejections(ledger, sale)
    wait_for_enter()

    step_07_unlock(ledger, sale)
    wait_for_enter()

    step_08_withdraw(ledger, sale)
    wait_for_enter()

    step_09_second_withdrawal(ledger, sale)
    wait_for_enter()

    step_10_finish(ledger, sale)
    wait_for_enter()

    step_11_sweep(ledger, sale)
    wait_for_enter()

    step_12_history(ledger, sale)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - See vesting_sale/sale.py for the settlement operations
      - See vesting_sale/schedule.py for the unlock arithmetic
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
