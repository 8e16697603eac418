"""
crypto.py - Hashing, signatures and the leader-eligibility predicate

The ledger rules treat these as opaque collaborators:
    - hash_bytes(): collision-resistant hash of transaction bodies
    - hash_key(): identity of a verification key (stake credential / pool id)
    - verify(): signature check consumed by the witness rule
    - check_leader_value(): VRF-output eligibility check for a stake share

Signatures are Ed25519 via the cryptography package. Any callable matching
the Verifier protocol can be injected into the rules instead of verify().
"""

from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal, localcontext
from fractions import Fraction
import hashlib
from typing import Protocol, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from .core import KeyHash, NAT_MAX, fraction_to_decimal


# Digest sizes in bytes
KEY_HASH_SIZE = 28
BODY_HASH_SIZE = 32

# Extra digits for the ln/exp comparison in check_leader_value
_LEADER_CHECK_PRECISION = 80


class Verifier(Protocol):
    """Signature verification function: verify(vkey, message, signature) -> bool."""

    def __call__(self, vkey: bytes, message: bytes, signature: bytes) -> bool:
        ...


def hash_bytes(data: bytes) -> str:
    """Hash arbitrary bytes (used for transaction ids)."""
    return hashlib.blake2b(data, digest_size=BODY_HASH_SIZE).hexdigest()


def hash_key(vkey: bytes) -> KeyHash:
    """Hash a raw verification key to its KeyHash."""
    return hashlib.blake2b(vkey, digest_size=KEY_HASH_SIZE).hexdigest()


def verify(vkey: bytes, message: bytes, signature: bytes) -> bool:
    """
    Verify an Ed25519 signature.

    Returns False for malformed keys as well as for bad signatures, so a
    witness with garbage in it is reported as invalid rather than crashing
    the rule.
    """
    try:
        public_key = Ed25519PublicKey.from_public_bytes(vkey)
    except ValueError:
        return False
    try:
        public_key.verify(signature, message)
        return True
    except InvalidSignature:
        return False


@dataclass(frozen=True)
class KeyPair:
    """
    Ed25519 signing key together with its raw verification key.

    Equality and hashing consider only the verification key.
    """
    signing_key: Ed25519PrivateKey = field(repr=False, compare=False)
    vkey: bytes

    @classmethod
    def from_signing_key(cls, signing_key: Ed25519PrivateKey) -> KeyPair:
        vkey = signing_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return cls(signing_key=signing_key, vkey=vkey)

    @classmethod
    def generate(cls) -> KeyPair:
        """Create a fresh random key pair."""
        return cls.from_signing_key(Ed25519PrivateKey.generate())

    @classmethod
    def from_seed(cls, seed: Union[str, bytes, int]) -> KeyPair:
        """
        Derive a deterministic key pair from a seed.

        Intended for tests and examples, where reproducible identities matter
        more than secrecy.
        """
        material = seed if isinstance(seed, bytes) else str(seed).encode()
        private_bytes = hashlib.sha256(material).digest()
        return cls.from_signing_key(Ed25519PrivateKey.from_private_bytes(private_bytes))

    @property
    def key_hash(self) -> KeyHash:
        return hash_key(self.vkey)

    def sign(self, message: bytes) -> bytes:
        return self.signing_key.sign(message)


def check_leader_value(
    certified_nat: int,
    sigma: Fraction,
    active_slot_coeff: Fraction,
) -> bool:
    """
    Decide slot leadership from a VRF output.

    With p = certified_nat / NAT_MAX drawn uniformly from [0, 1), the result
    is True with probability 1 - (1 - f)^sigma, where f is the active slot
    coefficient and sigma the relative stake.

    The comparison p < 1 - (1 - f)^sigma is evaluated as
    ln(1 - p) > sigma * ln(1 - f) with Decimal arithmetic.

    Args:
        certified_nat: VRF output as a natural number below NAT_MAX
        sigma: Relative stake of the candidate, in [0, 1]
        active_slot_coeff: f, in (0, 1]

    Raises:
        ValueError: If any argument is out of range
    """
    if not 0 <= certified_nat < NAT_MAX:
        raise ValueError(f"certified_nat must lie in [0, 2^512), got {certified_nat}")
    if not 0 <= sigma <= 1:
        raise ValueError(f"sigma must lie in [0, 1], got {sigma}")
    if not 0 < active_slot_coeff <= 1:
        raise ValueError(f"active_slot_coeff must lie in (0, 1], got {active_slot_coeff}")

    if sigma == 0:
        return False
    if active_slot_coeff == 1:
        return True

    with localcontext() as ctx:
        ctx.prec = _LEADER_CHECK_PRECISION
        q = Decimal(NAT_MAX - certified_nat) / Decimal(NAT_MAX)
        threshold = fraction_to_decimal(sigma) * fraction_to_decimal(1 - active_slot_coeff).ln()
        return q.ln() > threshold
