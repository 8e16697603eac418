#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Learn the Ledger Rules Step by Step

This is a pedagogical demonstration of how the proof-of-stake ledger works.
Each step builds on the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:   Foundation      - Genesis, the first transaction, conservation
  4-6:   Core Mechanics  - Rejections, atomic blocks, idempotency
  7-9:   Staking         - Pools, delegation, epoch boundaries and rewards
  10:    Determinism     - Replaying the chain from genesis

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from fractions import Fraction
from typing import Dict, Optional, Sequence
import sys

from posledger import (
    Addr, Chain, DeRegKey, Delegate, KeyPair, PParams, PoolParams,
    RegKey, RegPool, Tx, TxOut, TxWits, describe_failure, sign_tx,
)
from posledger.deposits import tx_deposits, tx_key_refunds
from posledger.rules.utxow import required_signers


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    alice_initial: int = 20_000
    bob_initial: int = 15_000
    operator_initial: int = 5_000
    reserves: int = 1_000_000

    fee: int = 200
    pool_cost: int = 20
    pool_margin: Fraction = Fraction(1, 20)
    blocks_per_epoch: int = 5


CONFIG = DemoConfig()

PPARAMS = PParams(
    minfee_b=100,
    key_deposit=100,
    key_min_refund=Fraction(1, 4),
    key_decay_rate=Fraction(1, 1000),
    pool_deposit=250,
    pool_min_refund=Fraction(1, 4),
    pool_decay_rate=Fraction(1, 1000),
    n_opt=2,
    rho=Fraction(1, 100),
    tau=Fraction(1, 5),
    slots_per_epoch=100,
)

KEYS = {name: KeyPair.from_seed(f"demo-{name}") for name in ("alice", "bob", "operator")}
BY_HASH = {kp.key_hash: kp for kp in KEYS.values()}

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


def kh(name: str) -> str:
    return KEYS[name].key_hash


def build(
    chain: Chain,
    owner: str,
    outputs: Sequence[TxOut] = (),
    certs: Sequence = (),
    withdrawals: Optional[Dict[str, int]] = None,
    staked: bool = False,
) -> TxWits:
    """
    A balanced, fully witnessed transaction spending everything owner holds.

    The change returns to owner after the outputs, the fee and any deposits.
    """
    inputs = chain.outputs_of(kh(owner))
    withdrawals = withdrawals or {}
    draft = Tx(inputs, outputs, CONFIG.fee, chain.current_slot + 50, certs, withdrawals)
    change = (
        sum(o.coin for o in inputs.values())
        + tx_key_refunds(chain.pparams, chain.dstate.stake_keys, chain.current_slot, draft)
        + sum(withdrawals.values())
        - sum(o.coin for o in outputs)
        - CONFIG.fee
        - tx_deposits(chain.pparams, chain.pstate.stake_pools, draft)
    )
    stake = kh(owner) if staked else None
    body = Tx(
        inputs,
        list(outputs) + [TxOut(Addr(kh(owner), stake), change)],
        CONFIG.fee,
        draft.ttl,
        certs,
        withdrawals,
    )
    return sign_tx(body, [BY_HASH[h] for h in sorted(required_signers(chain.utxo, body))])


def show_pots(chain: Chain):
    breakdown = chain.verify_conservation()['breakdown']
    for pot, amount in breakdown.items():
        print(f"  {pot:<12} {amount:>12,}")
    print(f"  {'TOTAL':<12} {sum(breakdown.values()):>12,}")


# ============================================================================
# PHASE 1: FOUNDATION (Steps 1-3)
# ============================================================================

def step_01_genesis() -> Chain:
    """Create a chain and inspect its genesis state."""
    step_header(1, "Genesis",
        "Understand that every Coin in existence is accounted for from slot 0.")

    print("""
    A chain starts with:

    1. GENESIS OUTPUTS - unspent outputs owned by payment keys
    2. RESERVES        - Coin not yet in circulation, released as rewards
    3. PARAMETERS      - fees, deposits, and the reward formula's constants
    """)

    print(">>> chain = Chain('tutorial', PPARAMS, genesis_outputs, reserves=1_000_000)")
    chain = Chain(
        "tutorial",
        PPARAMS,
        [
            TxOut(Addr(kh("alice")), CONFIG.alice_initial),
            TxOut(Addr(kh("bob")), CONFIG.bob_initial),
            TxOut(Addr(kh("operator")), CONFIG.operator_initial),
        ],
        reserves=CONFIG.reserves,
        verbose=True,
    )

    section_header("Initial State")
    print(f"Slot / epoch:  {chain.current_slot} / {chain.current_epoch}")
    print(f"Total supply:  {chain.total_supply:,}")
    print(f"UTxO entries:  {len(chain.utxo)}")
    return chain


def step_02_first_transaction(chain: Chain) -> Chain:
    step_header(2, "The First Transaction",
        "Spend an output, pay a fee, and receive change.")

    txw = build(chain, "alice", [TxOut(Addr(kh("bob")), 3_000)])
    print(f"Inputs:   {len(txw.body.inputs)}")
    print(f"Outputs:  {[o.coin for o in txw.body.outputs]}")
    print(f"Fee:      {txw.body.fee}")
    print(f"Tx id:    {txw.tx_id[:16]}...")
    chain.submit(txw)

    section_header("Balances")
    for name in KEYS:
        print(f"  {name:<10} {chain.coin_of(kh(name)):>8,}")
    return chain


def step_03_conservation(chain: Chain) -> Chain:
    step_header(3, "Conservation",
        "See that the fee moved into the fee pot and nothing was created.")
    show_pots(chain)
    result = chain.verify_conservation()
    print(f"\nConservation holds: {result['valid']}")
    return chain


# ============================================================================
# PHASE 2: CORE MECHANICS (Steps 4-6)
# ============================================================================

def step_04_rejection(chain: Chain) -> Chain:
    step_header(4, "A Rejected Transaction",
        "Read the failure path from LEDGER down to the failing predicate.")

    inputs = chain.outputs_of(kh("bob"))
    total = sum(o.coin for o in inputs.values())
    body = Tx(inputs, [TxOut(Addr(kh("bob")), total)], CONFIG.fee, chain.current_slot + 50)
    # signed by the wrong key and does not balance
    result = chain.submit(sign_tx(body, [KEYS["alice"]]))

    section_header("Failures")
    print(f"Result: {result.value}")
    for failure in chain.last_failures:
        print(f"  {describe_failure(failure)}")
    return chain


def step_05_atomic_block(chain: Chain) -> Chain:
    step_header(5, "Atomic Blocks",
        "A block with one bad transaction changes nothing at all.")

    chain.advance_slot(chain.current_slot + 1)
    good = build(chain, "bob", [TxOut(Addr(kh("alice")), 500)])
    bad = sign_tx(good.body, [KEYS["operator"]])
    before = chain.state

    result = chain.submit_block([good, bad])
    print(f"Block result:   {result.value}")
    print(f"State changed:  {chain.state is not before}")
    return chain


def step_06_idempotency(chain: Chain) -> Chain:
    step_header(6, "Idempotency",
        "Resubmitting an applied transaction is detected and ignored.")

    txw = build(chain, "bob", [TxOut(Addr(kh("alice")), 500)])
    print(f"First submit:   {chain.submit(txw).value}")
    print(f"Second submit:  {chain.submit(txw).value}")
    print(f"Log entries:    {len(chain.transaction_log)}")
    return chain


# ============================================================================
# PHASE 3: STAKING (Steps 7-9)
# ============================================================================

def step_07_pool_and_delegation(chain: Chain) -> Chain:
    step_header(7, "Stake Pools and Delegation",
        "Register a pool, then register stake keys and delegate to it.")

    params = PoolParams(
        pool_id=kh("operator"),
        pledge=0,
        cost=CONFIG.pool_cost,
        margin=CONFIG.pool_margin,
    )
    chain.submit(build(chain, "operator", staked=True, certs=[
        RegKey(kh("operator")),
        RegPool(params),
        Delegate(kh("operator"), kh("operator")),
    ]))
    for name in ("alice", "bob"):
        chain.submit(build(chain, name, staked=True, certs=[
            RegKey(kh(name)),
            Delegate(kh(name), kh("operator")),
        ]))

    section_header("Delegation State")
    print(f"Registered keys:  {len(chain.dstate.stake_keys)}")
    print(f"Registered pools: {len(chain.pstate.stake_pools)}")
    print(f"Deposit pot:      {chain.utxo_state.deposits:,}")
    return chain


def step_08_epoch_boundary(chain: Chain) -> Chain:
    step_header(8, "Crossing an Epoch Boundary",
        "Watch fees, decayed deposits and monetary expansion become rewards.")

    for _ in range(CONFIG.blocks_per_epoch):
        chain.record_block(kh("operator"))
    spe = chain.pparams.slots_per_epoch
    (summary,) = chain.advance_slot((chain.current_epoch + 1) * spe)

    section_header("Epoch Summary")
    print(f"Expansion:     {summary.expansion:,}")
    print(f"Treasury cut:  {summary.treasury_cut:,}")
    print(f"Available:     {summary.available:,}")
    print(f"Paid:          {summary.paid:,}")

    section_header("Reward Balances")
    for name in KEYS:
        print(f"  {name:<10} {chain.reward_balance(kh(name)):>8,}")
    show_pots(chain)
    return chain


def step_09_withdraw_and_leave(chain: Chain) -> Chain:
    step_header(9, "Withdrawing and Deregistering",
        "Collect rewards and the decayed key deposit in one transaction.")

    earned = chain.reward_balance(kh("alice"))
    before = chain.coin_of(kh("alice"))
    chain.submit(build(
        chain, "alice",
        certs=[DeRegKey(kh("alice"))],
        withdrawals={kh("alice"): earned},
    ))
    print(f"Withdrawn:  {earned:,}")
    print(f"Balance:    {before:,} -> {chain.coin_of(kh('alice')):,}")
    print(f"Still registered: {kh('alice') in chain.dstate.stake_keys}")
    return chain


# ============================================================================
# PHASE 4: DETERMINISM (Step 10)
# ============================================================================

def step_10_replay(chain: Chain) -> Chain:
    step_header(10, "Replay",
        "Re-running every accepted input from genesis reproduces the state.")

    chain.verbose = False
    replayed = chain.replay()
    print(f"Journaled transactions: {len(chain.transaction_log)}")
    print(f"Epochs crossed:         {len(chain.epoch_log)}")
    print(f"States identical:       {replayed.state == chain.state}")
    return chain


def main(quick: bool = False):
    """Run the complete tutorial."""
    global QUICK_MODE
    QUICK_MODE = QUICK_MODE or quick

    print("=" * 70)
    print("       POSLEDGER - INTERACTIVE TUTORIAL")
    print("=" * 70)

    steps = [
        step_02_first_transaction,
        step_03_conservation,
        step_04_rejection,
        step_05_atomic_block,
        step_06_idempotency,
        step_07_pool_and_delegation,
        step_08_epoch_boundary,
        step_09_withdraw_and_leave,
        step_10_replay,
    ]
    chain = step_01_genesis()
    wait_for_enter()
    for step in steps:
        chain = step(chain)
        wait_for_enter()

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    You've learned:
      - Every Coin is accounted for: outputs, pots, reserves, rewards
      - Transactions and blocks are atomic; resubmission is idempotent
      - Epoch boundaries turn fees and expansion into stake-weighted rewards
      - The chain is a deterministic function of its inputs

    Next steps:
      - Read posledger/rules/*.py for the individual rules
      - Run tests: pytest tests/
    """)
    return chain


if __name__ == "__main__":
    main()
