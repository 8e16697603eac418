"""
Core types and pure functions for the proof-of-stake ledger rules.

This module provides the foundational pieces every transition rule builds on:
1. Type aliases: Coin, Slot, Epoch, KeyHash, Ix, TxId
2. Exceptions: LedgerError and the transition failure types
3. Validity: the monoid of accumulated predicate failures
4. PredicateFailure: base type for rule failures, with provenance through embeddings
5. Canonical serialization for content-addressed identities
6. Checked Coin arithmetic, exact rationals and slot/epoch conversion

All functions in this module are pure.
"""

from __future__ import annotations
from collections.abc import Mapping
from dataclasses import dataclass, fields, is_dataclass
from decimal import Decimal, ROUND_HALF_EVEN, getcontext
from fractions import Fraction
import math
from typing import Any, Callable, Iterable, Optional, Tuple, TypeVar, Union


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Deposit decay and the leader-eligibility check need exp/ln, which Fraction
# cannot express exactly. They are evaluated with Decimal at a fixed precision
# so every node computes bit-identical results.
#
# PRECONDITION: No other code should modify the global Decimal context.
# Functions that need more digits use decimal.localcontext().
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 50
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Upper bound (exclusive) of a VRF output interpreted as a natural number.
NAT_MAX = 2 ** 512

# Transaction id of the outputs created at genesis.
GENESIS_ID = "0" * 64


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Non-negative amount of the base currency unit.
Coin = int

# Logical time.
Slot = int
Epoch = int

# Position of a transaction in a slot, or of a certificate in a transaction.
Ix = int

# Hex digest identifying a verification key (a stake credential or pool id).
KeyHash = str

# Hex digest of a transaction body.
TxId = str

Rational = Union[Fraction, int, str, Decimal]


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class InvariantViolation(LedgerError):
    """Raised when a design invariant is broken, e.g. a Coin subtraction underflows."""
    pass


class ConservationViolation(LedgerError):
    """Raised when the total money supply is not preserved across a transition."""
    pass


class InvalidParameters(LedgerError, ValueError):
    """Raised when a protocol parameter set is malformed or out of range."""
    pass


class TransitionFailure(LedgerError):
    """
    Raised by a transition rule whose predicates do not hold.

    Attributes:
        failures: Non-empty ordered tuple of PredicateFailure values.
    """

    def __init__(self, failures: Iterable['PredicateFailure']):
        failures = tuple(failures)
        if not failures:
            raise ValueError("TransitionFailure requires at least one predicate failure")
        self.failures: Tuple[PredicateFailure, ...] = failures
        super().__init__("; ".join(repr(f) for f in failures))


class FatalTransitionFailure(TransitionFailure):
    """
    A transition failure that signals a protocol-level inconsistency.

    Unlike an invalid transaction, this cannot be recovered from by rejecting
    the signal; the surrounding system must halt.
    """
    pass


# ============================================================================
# PREDICATE FAILURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class PredicateFailure:
    """
    Base class for the failures a transition rule can report.

    Subclasses set the class attribute ``rule`` to the name of the rule that
    reports them. Failures that wrap a sub-rule's failure store it in a field
    named ``failure``, which makes the path through the rule hierarchy
    recoverable with provenance().
    """
    rule = ""

    def provenance(self) -> Tuple[str, ...]:
        """Rule names from the outermost layer down to the rule that failed."""
        inner = getattr(self, "failure", None)
        if isinstance(inner, PredicateFailure):
            return (self.rule,) + inner.provenance()
        return (self.rule,)

    def root(self) -> 'PredicateFailure':
        """The innermost failure, with every embedding wrapper removed."""
        inner = getattr(self, "failure", None)
        if isinstance(inner, PredicateFailure):
            return inner.root()
        return self


# ============================================================================
# VALIDITY MONOID
# ============================================================================

@dataclass(frozen=True, slots=True)
class Validity:
    """
    Result of evaluating one or more predicates.

    An empty failure tuple means valid. Combining two results with ``+``
    concatenates their failures, left operand first, so independent checks
    can all be reported for a single signal.
    """
    failures: Tuple[PredicateFailure, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.failures

    def __add__(self, other: 'Validity') -> 'Validity':
        if not isinstance(other, Validity):
            return NotImplemented
        if not other.failures:
            return self
        if not self.failures:
            return other
        return Validity(self.failures + other.failures)

    def require(self) -> None:
        """Raise TransitionFailure carrying every accumulated failure."""
        if self.failures:
            raise TransitionFailure(self.failures)


VALID = Validity()


def invalid(*failures: PredicateFailure) -> Validity:
    """Build an invalid result from one or more failures."""
    if not failures:
        raise ValueError("invalid() requires at least one failure")
    return Validity(tuple(failures))


def check(condition: bool, failure: PredicateFailure) -> Validity:
    """Return VALID if condition holds, else a result carrying failure."""
    return VALID if condition else Validity((failure,))


def combine(results: Iterable[Validity]) -> Validity:
    """Fold validity results with the monoid operation."""
    total = VALID
    for result in results:
        total = total + result
    return total


# ============================================================================
# RULE COMPOSITION
# ============================================================================

S = TypeVar("S")


def embed(
    wrap: Callable[[PredicateFailure], PredicateFailure],
    transition: Callable[..., S],
    *args: Any,
) -> S:
    """
    Invoke a sub-rule, wrapping any failure it reports with wrap.

    wrap is the composition edge between the calling rule and the sub-rule,
    typically the wrapper failure class itself (e.g. UtxoFailure).
    """
    try:
        return transition(*args)
    except FatalTransitionFailure as exc:
        raise FatalTransitionFailure(wrap(f) for f in exc.failures) from exc
    except TransitionFailure as exc:
        raise TransitionFailure(wrap(f) for f in exc.failures) from exc


def attempt(transition: Callable[..., S], *args: Any) -> Tuple[Optional[S], Validity]:
    """
    Run a transition and capture a recoverable failure as a Validity.

    Fatal failures propagate. Used where a rule must evaluate several
    sub-rules against the same pre-state and report all of their failures.
    """
    try:
        return transition(*args), VALID
    except FatalTransitionFailure:
        raise
    except TransitionFailure as exc:
        return None, Validity(exc.failures)


# ============================================================================
# CANONICAL SERIALIZATION
# ============================================================================

def canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    This function ensures deterministic serialization regardless of:
    - Dict and set iteration order
    - Rational representation (2/4 and 1/2 serialize identically)
    - Nested structure depth

    The output is suitable for content-addressable hashing and for the
    abstract transaction size used in fee calculation.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Fraction):
        return f"Q:{value.numerator}/{value.denominator}"
    if isinstance(value, int):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, bytes):
        return f"B:{value.hex()}"
    if is_dataclass(value) and not isinstance(value, type):
        parts = ",".join(
            f"{f.name}={canonicalize(getattr(value, f.name))}" for f in fields(value)
        )
        return f"{type(value).__name__}({parts})"
    if isinstance(value, Mapping):
        items = sorted(
            ((canonicalize(k), canonicalize(v)) for k, v in value.items()),
        )
        serialized = ",".join(f"{k}:{v}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(canonicalize(item) for item in value)
        return f"[{serialized}]"
    if isinstance(value, (set, frozenset)):
        serialized = ",".join(sorted(canonicalize(item) for item in value))
        return f"<{serialized}>"
    raise TypeError(f"Cannot canonicalize value of type {type(value).__name__}")


def canonical_bytes(value: Any) -> bytes:
    """UTF-8 encoding of canonicalize(value)."""
    return canonicalize(value).encode()


# ============================================================================
# COIN AND RATIONAL ARITHMETIC
# ============================================================================

def validate_coin(value: Any, name: str = "coin") -> Coin:
    """Return value if it is a non-negative integer amount, else raise ValueError."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer Coin amount, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")
    return value


def coin_sub(minuend: Coin, subtrahend: Coin, what: str = "coin") -> Coin:
    """
    Subtract two Coin amounts, refusing to go below zero.

    Underflow can only happen if a ledger invariant is already broken, so it
    raises InvariantViolation rather than a validation failure.
    """
    if subtrahend > minuend:
        raise InvariantViolation(f"{what} underflow: {minuend} - {subtrahend}")
    return minuend - subtrahend


def to_fraction(value: Rational, name: str = "value") -> Fraction:
    """
    Convert an exact numeric value to Fraction.

    Accepts Fraction, int, Decimal and strings such as "1/3" or "0.25".
    Floats are rejected: Coin-valued computations never touch floating point.
    """
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a rational number, got bool")
    if isinstance(value, Fraction):
        return value
    if isinstance(value, (int, Decimal)):
        return Fraction(value)
    if isinstance(value, str):
        try:
            return Fraction(value.strip())
        except (ValueError, ZeroDivisionError) as exc:
            raise ValueError(f"{name} is not a rational number: {value!r}") from exc
    raise ValueError(f"{name} must be an exact rational, got {type(value).__name__}")


def unit_interval(value: Rational, name: str = "value") -> Fraction:
    """Convert to Fraction and check that it lies in [0, 1]."""
    q = to_fraction(value, name)
    if not 0 <= q <= 1:
        raise ValueError(f"{name} must lie in [0, 1], got {q}")
    return q


def floor_coin(value: Fraction) -> Coin:
    """Floor an exact rational to a whole Coin."""
    return math.floor(value)


def fraction_to_decimal(value: Fraction) -> Decimal:
    """Convert a Fraction to Decimal at the current context precision."""
    return Decimal(value.numerator) / Decimal(value.denominator)


# ============================================================================
# TIME
# ============================================================================

def epoch_from_slot(slot: Slot, slots_per_epoch: int) -> Epoch:
    """Epoch containing slot."""
    if slot < 0:
        raise ValueError(f"slot must be non-negative, got {slot}")
    return slot // slots_per_epoch


def first_slot(epoch: Epoch, slots_per_epoch: int) -> Slot:
    """First slot of epoch."""
    if epoch < 0:
        raise ValueError(f"epoch must be non-negative, got {epoch}")
    return epoch * slots_per_epoch
