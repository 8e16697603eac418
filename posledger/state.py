"""
state.py - Ledger State Records

Every record here is a frozen dataclass whose maps are read-only
MappingProxyType views over private dicts. Transition rules never modify a
record: they build fresh dicts and return a new record, so a post-state never
aliases the pre-state it was computed from.

Nesting:
    EpochState
      +- AccountState      (treasury, reserves, reward_pool)
      +- LedgerState
      |    +- UTxOState    (utxo, deposits, fees)
      |    +- DPState
      |         +- DState  (stake_keys, rewards, delegations, ptrs)
      |         +- PState  (stake_pools, pool_params, retiring, avgs)
      +- PParams
"""

from __future__ import annotations
from dataclasses import dataclass, field
from fractions import Fraction
from types import MappingProxyType
from typing import Iterable, Mapping

from .core import (
    Coin, Epoch, KeyHash, Slot, GENESIS_ID,
    validate_coin,
)
from .pparams import PParams
from .tx import PoolParams, Ptr, Tx, TxIn, TxOut


UTxO = Mapping[TxIn, TxOut]


def frozen_map(data=None) -> Mapping:
    """Read-only snapshot of a mapping (the argument is copied)."""
    return MappingProxyType(dict(data or {}))


# ============================================================================
# UTXO HELPERS
# ============================================================================

def balance(utxo: UTxO) -> Coin:
    """Total Coin held by a set of outputs."""
    return sum(out.coin for out in utxo.values())


def txouts(tx: Tx) -> dict:
    """Outputs created by tx, keyed by their new TxIns."""
    return {TxIn(tx.tx_id, ix): out for ix, out in enumerate(tx.outputs)}


def utxo_restrict(utxo: UTxO, txins: Iterable[TxIn]) -> dict:
    """Entries of utxo whose key is in txins."""
    return {i: utxo[i] for i in txins if i in utxo}


def utxo_exclude(utxo: UTxO, txins: Iterable[TxIn]) -> dict:
    """Entries of utxo whose key is not in txins."""
    excluded = frozenset(txins)
    return {i: o for i, o in utxo.items() if i not in excluded}


# ============================================================================
# STATE RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class UTxOState:
    """Unspent outputs plus the deposit and fee pots."""
    utxo: Mapping[TxIn, TxOut] = field(default_factory=frozen_map)
    deposits: Coin = 0
    fees: Coin = 0

    def __post_init__(self):
        object.__setattr__(self, 'utxo', frozen_map(self.utxo))
        validate_coin(self.deposits, "deposits")
        validate_coin(self.fees, "fees")


@dataclass(frozen=True, slots=True)
class DState:
    """
    Delegation state.

    Attributes:
        stake_keys: Registered stake credential -> registration slot
        rewards: Reward account balance per registered credential
        delegations: Credential -> pool it delegates to
        ptrs: Certificate pointer -> credential it registered
    """
    stake_keys: Mapping[KeyHash, Slot] = field(default_factory=frozen_map)
    rewards: Mapping[KeyHash, Coin] = field(default_factory=frozen_map)
    delegations: Mapping[KeyHash, KeyHash] = field(default_factory=frozen_map)
    ptrs: Mapping[Ptr, KeyHash] = field(default_factory=frozen_map)

    def __post_init__(self):
        for name in ('stake_keys', 'rewards', 'delegations', 'ptrs'):
            object.__setattr__(self, name, frozen_map(getattr(self, name)))
        for account, amount in self.rewards.items():
            validate_coin(amount, f"reward balance of {account}")


@dataclass(frozen=True, slots=True)
class PState:
    """
    Pool state.

    Attributes:
        stake_pools: Registered pool -> original registration slot
        pool_params: Pool -> current parameters
        retiring: Pool -> epoch at which it retires
        avgs: Pool -> performance moving average
    """
    stake_pools: Mapping[KeyHash, Slot] = field(default_factory=frozen_map)
    pool_params: Mapping[KeyHash, PoolParams] = field(default_factory=frozen_map)
    retiring: Mapping[KeyHash, Epoch] = field(default_factory=frozen_map)
    avgs: Mapping[KeyHash, Fraction] = field(default_factory=frozen_map)

    def __post_init__(self):
        for name in ('stake_pools', 'pool_params', 'retiring', 'avgs'):
            object.__setattr__(self, name, frozen_map(getattr(self, name)))


@dataclass(frozen=True, slots=True)
class DPState:
    dstate: DState = field(default_factory=DState)
    pstate: PState = field(default_factory=PState)


@dataclass(frozen=True, slots=True)
class AccountState:
    """The pots outside the UTxO: treasury, reserves and undistributed rewards."""
    treasury: Coin = 0
    reserves: Coin = 0
    reward_pool: Coin = 0

    def __post_init__(self):
        validate_coin(self.treasury, "treasury")
        validate_coin(self.reserves, "reserves")
        validate_coin(self.reward_pool, "reward_pool")


@dataclass(frozen=True, slots=True)
class LedgerState:
    utxo_state: UTxOState = field(default_factory=UTxOState)
    dpstate: DPState = field(default_factory=DPState)

    @property
    def dstate(self) -> DState:
        return self.dpstate.dstate

    @property
    def pstate(self) -> PState:
        return self.dpstate.pstate


@dataclass(frozen=True, slots=True)
class EpochState:
    account: AccountState
    ledger: LedgerState
    pparams: PParams


# ============================================================================
# GENESIS AND CONSERVATION
# ============================================================================

def genesis_utxo(outputs: Iterable[TxOut]) -> dict:
    """Genesis outputs are referenced as (GENESIS_ID, position)."""
    return {TxIn(GENESIS_ID, ix): out for ix, out in enumerate(outputs)}


def genesis_state(
    pparams: PParams,
    outputs: Iterable[TxOut],
    reserves: Coin,
    treasury: Coin = 0,
) -> EpochState:
    """
    Initial state of a chain.

    No keys or pools are registered and the deposit, fee and reward pots are
    empty; the whole money supply is in the genesis outputs, the reserves
    and the treasury.
    """
    return EpochState(
        account=AccountState(treasury=treasury, reserves=reserves),
        ledger=LedgerState(utxo_state=UTxOState(utxo=genesis_utxo(outputs))),
        pparams=pparams,
    )


def circulation(utxo: UTxO) -> Coin:
    return balance(utxo)


def total_value(state: EpochState) -> Coin:
    """
    Sum of every Coin-valued field of the state.

    Constant across every transition; this is the total money supply.
    """
    us = state.ledger.utxo_state
    acnt = state.account
    return (
        circulation(us.utxo)
        + us.deposits
        + us.fees
        + acnt.treasury
        + acnt.reserves
        + acnt.reward_pool
        + sum(state.ledger.dstate.rewards.values())
    )
