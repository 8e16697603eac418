"""
tx.py - Transactions, Certificates and Witnesses

Immutable value types for everything a transaction carries:
    - Addresses: base addresses (Addr) and pointer addresses (PtrAddr)
    - TxIn / TxOut: output references and outputs
    - DCert: the delegation certificate variants
    - Tx: the transaction body, identified by the hash of its content
    - Wit / TxWits: signatures over the body id

A transaction body is never modified after construction. Its tx_id is
derived from the canonical serialization of the body, so a witness is bound
to exactly one body.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from fractions import Fraction
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Tuple, Union

from .core import (
    Coin, Epoch, Ix, KeyHash, Slot, TxId,
    canonical_bytes, unit_interval, validate_coin,
)
from .crypto import KeyPair, hash_bytes, hash_key
from .pparams import PParams


def _require_key_hash(value: KeyHash, name: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} must be a non-empty key hash")


# ============================================================================
# ADDRESSES
# ============================================================================

@dataclass(frozen=True, slots=True, order=True)
class Ptr:
    """Location of a RegKey certificate: (slot, transaction index, certificate index)."""
    slot: Slot
    tx_ix: Ix
    cert_ix: Ix

    def __post_init__(self):
        if self.slot < 0 or self.tx_ix < 0 or self.cert_ix < 0:
            raise ValueError(f"Pointer components must be non-negative, got {self}")


@dataclass(frozen=True, slots=True)
class Addr:
    """
    Base address: a payment key plus an optional stake credential.

    Outputs at an address without a stake credential hold value that never
    counts towards any pool's stake.
    """
    payment: KeyHash
    stake: Optional[KeyHash] = None

    def __post_init__(self):
        _require_key_hash(self.payment, "Addr payment")
        if self.stake is not None:
            _require_key_hash(self.stake, "Addr stake")


@dataclass(frozen=True, slots=True)
class PtrAddr:
    """
    Pointer address: the stake credential is named indirectly by the
    position of the certificate that registered it.
    """
    payment: KeyHash
    ptr: Ptr

    def __post_init__(self):
        _require_key_hash(self.payment, "PtrAddr payment")


Address = Union[Addr, PtrAddr]


# ============================================================================
# OUTPUTS
# ============================================================================

@dataclass(frozen=True, slots=True, order=True)
class TxIn:
    """Reference to output number `index` of transaction `tx_id`."""
    tx_id: TxId
    index: Ix

    def __post_init__(self):
        if not self.tx_id:
            raise ValueError("TxIn tx_id cannot be empty")
        if self.index < 0:
            raise ValueError(f"TxIn index must be non-negative, got {self.index}")

    def __repr__(self) -> str:
        return f"TxIn({self.tx_id[:8]}#{self.index})"


@dataclass(frozen=True, slots=True)
class TxOut:
    addr: Address
    coin: Coin

    def __post_init__(self):
        if not isinstance(self.addr, (Addr, PtrAddr)):
            raise ValueError(f"TxOut addr must be an address, got {type(self.addr).__name__}")
        validate_coin(self.coin, "TxOut coin")


# ============================================================================
# CERTIFICATES
# ============================================================================

@dataclass(frozen=True, slots=True)
class PoolParams:
    """
    Parameters a stake pool operator declares on registration.

    Attributes:
        pool_id: Key hash of the pool's operator key
        pledge: Stake the operator promises to delegate to the pool
        cost: Fixed cost taken from the pool reward each epoch
        margin: Share of the remaining reward taken by the operator, in [0, 1]
        reward_account: Stake credential receiving the operator's rewards
            (defaults to pool_id)
    """
    pool_id: KeyHash
    pledge: Coin
    cost: Coin
    margin: Fraction
    reward_account: Optional[KeyHash] = None

    def __post_init__(self):
        _require_key_hash(self.pool_id, "PoolParams pool_id")
        validate_coin(self.pledge, "PoolParams pledge")
        validate_coin(self.cost, "PoolParams cost")
        object.__setattr__(self, 'margin', unit_interval(self.margin, "PoolParams margin"))
        if self.reward_account is None:
            object.__setattr__(self, 'reward_account', self.pool_id)
        _require_key_hash(self.reward_account, "PoolParams reward_account")


@dataclass(frozen=True, slots=True)
class DCert:
    """Base type of delegation certificates; each variant names its `author`."""


@dataclass(frozen=True, slots=True)
class RegKey(DCert):
    credential: KeyHash

    def __post_init__(self):
        _require_key_hash(self.credential, "RegKey credential")

    @property
    def author(self) -> KeyHash:
        return self.credential


@dataclass(frozen=True, slots=True)
class DeRegKey(DCert):
    credential: KeyHash

    def __post_init__(self):
        _require_key_hash(self.credential, "DeRegKey credential")

    @property
    def author(self) -> KeyHash:
        return self.credential


@dataclass(frozen=True, slots=True)
class Delegate(DCert):
    delegator: KeyHash
    pool: KeyHash

    def __post_init__(self):
        _require_key_hash(self.delegator, "Delegate delegator")
        _require_key_hash(self.pool, "Delegate pool")

    @property
    def author(self) -> KeyHash:
        return self.delegator


@dataclass(frozen=True, slots=True)
class RegPool(DCert):
    params: PoolParams

    @property
    def author(self) -> KeyHash:
        return self.params.pool_id


@dataclass(frozen=True, slots=True)
class RetirePool(DCert):
    pool_id: KeyHash
    epoch: Epoch

    def __post_init__(self):
        _require_key_hash(self.pool_id, "RetirePool pool_id")
        if self.epoch < 0:
            raise ValueError(f"RetirePool epoch must be non-negative, got {self.epoch}")

    @property
    def author(self) -> KeyHash:
        return self.pool_id


# ============================================================================
# TRANSACTION BODY
# ============================================================================

@dataclass(frozen=True, slots=True, eq=False)
class Tx:
    """
    A transaction body.

    Attributes:
        inputs: Outputs being spent
        outputs: New outputs, indexed by position
        fee: Fee paid to the fee pot
        ttl: Last slot in which the transaction may be applied
        certs: Certificates, applied in order
        withdrawals: Reward account -> amount withdrawn (must be the full balance)
        tx_id: Hash of the body content (auto-computed)

    Two bodies are equal exactly when their tx_ids are equal.
    """
    inputs: frozenset
    outputs: Tuple[TxOut, ...]
    fee: Coin
    ttl: Slot
    certs: Tuple[DCert, ...] = ()
    withdrawals: Mapping[KeyHash, Coin] = field(default_factory=dict)
    tx_id: TxId = field(default="")

    def __post_init__(self):
        object.__setattr__(self, 'inputs', frozenset(self.inputs))
        object.__setattr__(self, 'outputs', tuple(self.outputs))
        object.__setattr__(self, 'certs', tuple(self.certs))
        object.__setattr__(self, 'withdrawals', MappingProxyType(dict(self.withdrawals)))

        for txin in self.inputs:
            if not isinstance(txin, TxIn):
                raise ValueError(f"Tx inputs must be TxIn, got {type(txin).__name__}")
        for txout in self.outputs:
            if not isinstance(txout, TxOut):
                raise ValueError(f"Tx outputs must be TxOut, got {type(txout).__name__}")
        for cert in self.certs:
            if not isinstance(cert, DCert):
                raise ValueError(f"Tx certs must be DCert, got {type(cert).__name__}")
        for account, amount in self.withdrawals.items():
            _require_key_hash(account, "withdrawal account")
            validate_coin(amount, f"withdrawal from {account}")
        validate_coin(self.fee, "Tx fee")
        if self.ttl < 0:
            raise ValueError(f"Tx ttl must be non-negative, got {self.ttl}")

        computed_id = hash_bytes(self.body_bytes())
        if self.tx_id and self.tx_id != computed_id:
            raise ValueError("Tx tx_id does not match the body content")
        object.__setattr__(self, 'tx_id', computed_id)

    def body_bytes(self) -> bytes:
        """Canonical serialization of the body (everything except tx_id)."""
        return canonical_bytes((
            self.inputs, self.outputs, self.fee, self.ttl,
            self.certs, dict(self.withdrawals),
        ))

    @property
    def signing_message(self) -> bytes:
        return bytes.fromhex(self.tx_id)

    def txin(self, index: Ix) -> TxIn:
        """Reference to this transaction's output number index."""
        if not 0 <= index < len(self.outputs):
            raise IndexError(f"Tx has no output {index}")
        return TxIn(self.tx_id, index)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Tx):
            return NotImplemented
        return self.tx_id == other.tx_id

    def __hash__(self) -> int:
        return hash(self.tx_id)

    def __repr__(self) -> str:
        return (
            f"Tx({self.tx_id[:8]}: {len(self.inputs)} in, {len(self.outputs)} out, "
            f"fee={self.fee}, ttl={self.ttl}, certs={len(self.certs)}, "
            f"withdrawals={len(self.withdrawals)})"
        )


def tx_size(tx: Tx) -> int:
    """Size in bytes used for fee calculation."""
    return len(tx.body_bytes())


def min_fee(pparams: PParams, tx: Tx) -> Coin:
    """Minimum fee: minfee_a * size + minfee_b."""
    return pparams.minfee_a * tx_size(tx) + pparams.minfee_b


# ============================================================================
# WITNESSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Wit:
    """A verification key and its signature over a transaction id."""
    vkey: bytes
    signature: bytes

    @property
    def key_hash(self) -> KeyHash:
        return hash_key(self.vkey)

    def __repr__(self) -> str:
        return f"Wit({self.key_hash[:8]})"


@dataclass(frozen=True, slots=True)
class TxWits:
    """A transaction body together with its witness set."""
    body: Tx
    wits: frozenset = frozenset()

    def __post_init__(self):
        object.__setattr__(self, 'wits', frozenset(self.wits))
        for wit in self.wits:
            if not isinstance(wit, Wit):
                raise ValueError(f"TxWits wits must be Wit, got {type(wit).__name__}")

    @property
    def tx_id(self) -> TxId:
        return self.body.tx_id

    def signers(self) -> frozenset:
        """Key hashes of the supplied witnesses."""
        return frozenset(w.key_hash for w in self.wits)


def make_witness(key: KeyPair, body: Tx) -> Wit:
    """Sign a transaction body."""
    return Wit(key.vkey, key.sign(body.signing_message))


def sign_tx(body: Tx, keys: Iterable[KeyPair]) -> TxWits:
    """Attach one witness per key (duplicates collapse) to a body."""
    return TxWits(body, frozenset(make_witness(k, body) for k in keys))
