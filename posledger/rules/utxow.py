"""
utxow.py - The UTXOW rule (UTXO with witnesses)

Adds three witness checks on top of UTXO:
    - every supplied signature verifies against the body id
    - every required signer supplied a witness
    - no witness was supplied by a key that is not required

The witness checks and the wrapped UTXO failures are all reported together.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Tuple

from ..core import (
    KeyHash, PredicateFailure, Validity,
    attempt, check, combine,
)
from ..crypto import Verifier, verify as ed25519_verify
from ..state import UTxO, UTxOState
from ..tx import Tx, TxWits
from .utxo import UtxoEnv, apply_utxo


@dataclass(frozen=True, slots=True)
class InvalidWitnessesUTXOW(PredicateFailure):
    """Key hashes of witnesses whose signature does not verify."""
    rule = "UTXOW"
    key_hashes: Tuple[KeyHash, ...]


@dataclass(frozen=True, slots=True)
class MissingWitnessesUTXOW(PredicateFailure):
    rule = "UTXOW"
    key_hashes: Tuple[KeyHash, ...]


@dataclass(frozen=True, slots=True)
class UnneededWitnessesUTXOW(PredicateFailure):
    rule = "UTXOW"
    key_hashes: Tuple[KeyHash, ...]


@dataclass(frozen=True, slots=True)
class UtxoFailure(PredicateFailure):
    """A UTXO failure seen through UTXOW."""
    rule = "UTXOW"
    failure: PredicateFailure


def required_signers(utxo: UTxO, tx: Tx) -> frozenset:
    """
    Key hashes that must sign tx.

    The payment keys of the spent outputs, the withdrawn reward accounts and
    the authors of the certificates. Inputs that do not exist require no
    signature (they are reported by UTXO instead).
    """
    signers = set()
    for txin in tx.inputs:
        out = utxo.get(txin)
        if out is not None:
            signers.add(out.addr.payment)
    signers.update(tx.withdrawals)
    signers.update(cert.author for cert in tx.certs)
    return frozenset(signers)


def witness_validity(
    utxo: UTxO,
    txw: TxWits,
    verify: Verifier = ed25519_verify,
) -> Validity:
    body = txw.body
    message = body.signing_message
    invalid = tuple(sorted(
        w.key_hash for w in txw.wits
        if not verify(w.vkey, message, w.signature)
    ))
    required = required_signers(utxo, body)
    supplied = txw.signers()
    missing = tuple(sorted(required - supplied))
    unneeded = tuple(sorted(supplied - required))
    return combine([
        check(not invalid, InvalidWitnessesUTXOW(invalid)),
        check(not missing, MissingWitnessesUTXOW(missing)),
        check(not unneeded, UnneededWitnessesUTXOW(unneeded)),
    ])


def apply_utxow(
    env: UtxoEnv,
    state: UTxOState,
    txw: TxWits,
    verify: Verifier = ed25519_verify,
) -> UTxOState:
    """
    Apply a witnessed transaction to the UTxO state.

    Args:
        env: UTXO environment
        state: UTxO state before the transaction
        txw: Body and witnesses
        verify: Signature verification function

    Raises:
        TransitionFailure: Witness failures first, then wrapped UTXO failures
    """
    witnesses = witness_validity(state.utxo, txw, verify)
    new_state, utxo_result = attempt(apply_utxo, env, state, txw.body)
    wrapped = Validity(tuple(UtxoFailure(f) for f in utxo_result.failures))
    (witnesses + wrapped).require()
    return new_state
