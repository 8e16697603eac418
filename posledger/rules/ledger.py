"""
ledger.py - LEDGER and LEDGERS

LEDGER processes one witnessed transaction: UTXOW against the UTxO state and
DELEGT against the delegation state. Both observe the same pre-state and
both are always evaluated, so a transaction can be rejected with witness,
UTxO and certificate failures at once, each tagged with its origin.

LEDGERS applies the transactions of one slot in order.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Sequence

from ..core import Ix, PredicateFailure, Slot, TransitionFailure, attempt, embed
from ..crypto import Verifier, verify as ed25519_verify
from ..pparams import PParams
from ..state import LedgerState
from ..tx import TxWits
from .deleg import DelegsEnv, apply_delegt
from .utxo import UtxoEnv
from .utxow import apply_utxow


@dataclass(frozen=True, slots=True)
class LedgerEnv:
    """
    Context of a transaction.

    Attributes:
        slot: Current slot
        tx_ix: Position of the transaction within the slot
        pparams: Protocol parameters
        verify: Signature verification function
    """
    slot: Slot
    tx_ix: Ix
    pparams: PParams
    verify: Verifier = field(default=ed25519_verify, compare=False)


@dataclass(frozen=True, slots=True)
class LedgersEnv:
    slot: Slot
    pparams: PParams
    verify: Verifier = field(default=ed25519_verify, compare=False)


@dataclass(frozen=True, slots=True)
class UtxowFailure(PredicateFailure):
    rule = "LEDGER"
    failure: PredicateFailure


@dataclass(frozen=True, slots=True)
class DelegtFailure(PredicateFailure):
    rule = "LEDGER"
    failure: PredicateFailure


@dataclass(frozen=True, slots=True)
class LedgerFailure(PredicateFailure):
    """Failure of the transaction at position tx_ix."""
    rule = "LEDGERS"
    failure: PredicateFailure
    tx_ix: Ix


def apply_ledger(env: LedgerEnv, state: LedgerState, txw: TxWits) -> LedgerState:
    """
    Apply one witnessed transaction.

    Raises:
        TransitionFailure: Wrapped UTXOW failures, then wrapped DELEGT failures
    """
    tx = txw.body
    dstate = state.dstate
    pstate = state.pstate

    utxo_env = UtxoEnv(
        slot=env.slot,
        pparams=env.pparams,
        stake_keys=dstate.stake_keys,
        stake_pools=pstate.stake_pools,
        rewards=dstate.rewards,
    )
    delegs_env = DelegsEnv(slot=env.slot, tx_ix=env.tx_ix, pparams=env.pparams)

    utxo_state, utxow_result = attempt(
        embed, UtxowFailure, apply_utxow, utxo_env, state.utxo_state, txw, env.verify
    )
    dpstate, delegt_result = attempt(
        embed, DelegtFailure, apply_delegt, delegs_env, state.dpstate, tx
    )
    (utxow_result + delegt_result).require()
    return LedgerState(utxo_state=utxo_state, dpstate=dpstate)


def apply_ledgers(env: LedgersEnv, state: LedgerState, txs: Sequence[TxWits]) -> LedgerState:
    """
    Apply the transactions of one slot in order.

    The first failing transaction aborts the whole sequence; its failures
    are tagged with its position.
    """
    for tx_ix, txw in enumerate(txs):
        tx_env = LedgerEnv(slot=env.slot, tx_ix=tx_ix, pparams=env.pparams, verify=env.verify)
        try:
            state = apply_ledger(tx_env, state, txw)
        except TransitionFailure as exc:
            raise TransitionFailure(LedgerFailure(f, tx_ix) for f in exc.failures) from exc
    return state
