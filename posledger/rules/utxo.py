"""
utxo.py - The UTXO rule

Validates one transaction body against the UTxO state and applies it:
spent inputs are removed, new outputs added, the fee accumulated in the fee
pot and the deposit pot adjusted for new deposits and refunds.

Every predicate is evaluated; a rejected transaction reports all of the
failures that hold, in a fixed order.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Mapping, Tuple

from ..core import (
    Coin, KeyHash, Slot,
    PredicateFailure, Validity, check, combine, coin_sub,
)
from ..deposits import tx_deposits, tx_key_refunds
from ..pparams import PParams
from ..state import UTxOState, balance, txouts, utxo_exclude, utxo_restrict
from ..tx import Tx, TxIn, min_fee, tx_size


# ============================================================================
# FAILURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class BadInputsUTxO(PredicateFailure):
    """Inputs that do not reference an unspent output."""
    rule = "UTXO"
    bad_inputs: Tuple[TxIn, ...]


@dataclass(frozen=True, slots=True)
class ExpiredUTxO(PredicateFailure):
    rule = "UTXO"
    ttl: Slot
    slot: Slot


@dataclass(frozen=True, slots=True)
class InputSetEmptyUTxO(PredicateFailure):
    rule = "UTXO"


@dataclass(frozen=True, slots=True)
class FeeTooSmallUTxO(PredicateFailure):
    rule = "UTXO"
    needed: Coin
    given: Coin


@dataclass(frozen=True, slots=True)
class ValueNotConservedUTxO(PredicateFailure):
    rule = "UTXO"
    consumed: Coin
    produced: Coin


@dataclass(frozen=True, slots=True)
class IncorrectRewardsUTxO(PredicateFailure):
    """Withdrawals naming an unknown account or not matching its balance."""
    rule = "UTXO"
    accounts: Tuple[KeyHash, ...]


@dataclass(frozen=True, slots=True)
class MaxTxSizeUTxO(PredicateFailure):
    rule = "UTXO"
    size: int
    max_size: int


# ============================================================================
# ENVIRONMENT
# ============================================================================

@dataclass(frozen=True, slots=True)
class UtxoEnv:
    """
    Read-only context of the UTXO rule.

    Attributes:
        slot: Current slot
        pparams: Protocol parameters
        stake_keys: Registered stake keys (for refunds)
        stake_pools: Registered pools (for deposits of new pools)
        rewards: Reward balances (for withdrawals)
    """
    slot: Slot
    pparams: PParams
    stake_keys: Mapping[KeyHash, Slot]
    stake_pools: Mapping[KeyHash, Slot]
    rewards: Mapping[KeyHash, Coin]


# ============================================================================
# BALANCE
# ============================================================================

def consumed(env: UtxoEnv, utxo, tx: Tx) -> Coin:
    """Value going into the transaction: spent outputs, key refunds, withdrawals."""
    return (
        balance(utxo_restrict(utxo, tx.inputs))
        + tx_key_refunds(env.pparams, env.stake_keys, env.slot, tx)
        + sum(tx.withdrawals.values())
    )


def produced(env: UtxoEnv, tx: Tx) -> Coin:
    """Value coming out of the transaction: new outputs, fee, new deposits."""
    return (
        sum(out.coin for out in tx.outputs)
        + tx.fee
        + tx_deposits(env.pparams, env.stake_pools, tx)
    )


# ============================================================================
# RULE
# ============================================================================

def utxo_validity(env: UtxoEnv, state: UTxOState, tx: Tx) -> Validity:
    """Evaluate every UTXO predicate for tx."""
    bad = tuple(sorted(i for i in tx.inputs if i not in state.utxo))
    wrong_withdrawals = tuple(sorted(
        account for account, amount in tx.withdrawals.items()
        if env.rewards.get(account) != amount
    ))
    size = tx_size(tx)
    needed = min_fee(env.pparams, tx)
    value_in = consumed(env, state.utxo, tx)
    value_out = produced(env, tx)

    return combine([
        check(not bad, BadInputsUTxO(bad)),
        check(tx.ttl >= env.slot, ExpiredUTxO(tx.ttl, env.slot)),
        check(bool(tx.inputs), InputSetEmptyUTxO()),
        check(tx.fee >= needed, FeeTooSmallUTxO(needed, tx.fee)),
        check(value_in == value_out, ValueNotConservedUTxO(value_in, value_out)),
        check(not wrong_withdrawals, IncorrectRewardsUTxO(wrong_withdrawals)),
        check(size <= env.pparams.max_tx_size, MaxTxSizeUTxO(size, env.pparams.max_tx_size)),
    ])


def apply_utxo(env: UtxoEnv, state: UTxOState, tx: Tx) -> UTxOState:
    """
    Apply a transaction body to the UTxO state.

    Raises:
        TransitionFailure: With every UTXO failure that holds
    """
    utxo_validity(env, state, tx).require()

    new_utxo = utxo_exclude(state.utxo, tx.inputs)
    new_utxo.update(txouts(tx))
    deposits = coin_sub(
        state.deposits + tx_deposits(env.pparams, env.stake_pools, tx),
        tx_key_refunds(env.pparams, env.stake_keys, env.slot, tx),
        "deposit pot",
    )
    return UTxOState(utxo=new_utxo, deposits=deposits, fees=state.fees + tx.fee)
