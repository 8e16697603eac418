"""
pparams.py - Protocol Parameters

PParams is immutable within an epoch. New values are supplied by governance
(an external collaborator) and take effect at the next epoch boundary,
where the NEWPC rule applies them. Every rule receives PParams explicitly
through its environment; there is no ambient parameter state.
"""

from __future__ import annotations
from dataclasses import dataclass, fields, replace
from fractions import Fraction
from typing import Any, Dict, Mapping

from .core import Coin, InvalidParameters, to_fraction, unit_interval, validate_coin


# Fields holding exact rationals, and which of them must lie in [0, 1]
_RATIONAL_FIELDS = (
    "key_min_refund", "key_decay_rate",
    "pool_min_refund", "pool_decay_rate",
    "a0", "rho", "tau", "active_slot_coeff", "moving_avg_weight",
)
_UNIT_INTERVAL_FIELDS = (
    "key_min_refund", "pool_min_refund",
    "rho", "tau", "active_slot_coeff", "moving_avg_weight",
)
_COIN_FIELDS = ("key_deposit", "pool_deposit", "min_pool_cost")


@dataclass(frozen=True, slots=True)
class PParams:
    """
    Protocol parameters.

    Attributes:
        minfee_a: Fee per byte of transaction size
        minfee_b: Constant fee component
        key_deposit: Deposit for registering a stake key
        key_min_refund: Fraction of the key deposit always refunded
        key_decay_rate: Per-slot decay rate of the refundable key deposit
        pool_deposit: Deposit for registering a stake pool
        pool_min_refund: Fraction of the pool deposit always refunded
        pool_decay_rate: Per-slot decay rate of the refundable pool deposit
        e_max: Furthest number of epochs ahead a pool may schedule retirement
        n_opt: Target number of pools (saturation point is 1/n_opt)
        a0: Pledge influence
        rho: Monetary expansion rate (fraction of reserves released per epoch)
        tau: Treasury cut of the total reward pool
        active_slot_coeff: Probability that a slot has a leader (f)
        moving_avg_weight: Smoothing weight alpha of pool performance averages
        min_pool_cost: Lowest fixed cost a pool may declare
        slots_per_epoch: Length of an epoch
        max_tx_size: Largest allowed transaction size in bytes
    """
    minfee_a: int = 0
    minfee_b: int = 0
    key_deposit: Coin = 0
    key_min_refund: Fraction = Fraction(0)
    key_decay_rate: Fraction = Fraction(0)
    pool_deposit: Coin = 0
    pool_min_refund: Fraction = Fraction(0)
    pool_decay_rate: Fraction = Fraction(0)
    e_max: int = 18
    n_opt: int = 100
    a0: Fraction = Fraction(0)
    rho: Fraction = Fraction(0)
    tau: Fraction = Fraction(0)
    active_slot_coeff: Fraction = Fraction(1, 20)
    moving_avg_weight: Fraction = Fraction(1, 2)
    min_pool_cost: Coin = 0
    slots_per_epoch: int = 100
    max_tx_size: int = 16384

    def __post_init__(self):
        try:
            self._validate()
        except InvalidParameters:
            raise
        except ValueError as exc:
            raise InvalidParameters(str(exc)) from exc

    def _validate(self) -> None:
        for name in _RATIONAL_FIELDS:
            value = getattr(self, name)
            if name in _UNIT_INTERVAL_FIELDS:
                q = unit_interval(value, name)
            else:
                q = to_fraction(value, name)
                if q < 0:
                    raise ValueError(f"{name} must be non-negative, got {q}")
            object.__setattr__(self, name, q)
        for name in _COIN_FIELDS:
            validate_coin(getattr(self, name), name)
        validate_coin(self.minfee_a, "minfee_a")
        validate_coin(self.minfee_b, "minfee_b")
        if self.n_opt < 1:
            raise ValueError(f"n_opt must be at least 1, got {self.n_opt}")
        if self.slots_per_epoch < 1:
            raise ValueError(f"slots_per_epoch must be at least 1, got {self.slots_per_epoch}")
        if self.e_max < 1:
            raise ValueError(f"e_max must be at least 1, got {self.e_max}")
        if self.max_tx_size < 1:
            raise ValueError(f"max_tx_size must be at least 1, got {self.max_tx_size}")
        if self.active_slot_coeff == 0:
            raise ValueError("active_slot_coeff must be positive")

    def update(self, **changes: Any) -> PParams:
        """Return a copy with the given fields replaced (validated again)."""
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize to a JSON-compatible dict.

        Rationals are written as "numerator/denominator" strings so the
        round trip is exact.
        """
        result: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Fraction):
                value = f"{value.numerator}/{value.denominator}"
            result[f.name] = value
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PParams:
        """
        Build PParams from a governance-supplied mapping.

        Missing keys take their defaults. Unknown keys are rejected so a
        misspelled parameter does not silently keep its old value.
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise InvalidParameters(f"Unknown protocol parameters: {sorted(unknown)}")
        return cls(**dict(data))


def default_pparams() -> PParams:
    """Parameters suitable for examples and simulations."""
    return PParams(
        minfee_a=1,
        minfee_b=100,
        key_deposit=100,
        key_min_refund=Fraction(1, 4),
        key_decay_rate=Fraction(1, 1000),
        pool_deposit=250,
        pool_min_refund=Fraction(1, 4),
        pool_decay_rate=Fraction(1, 1000),
        e_max=10,
        n_opt=10,
        a0=Fraction(3, 10),
        rho=Fraction(3, 1000),
        tau=Fraction(1, 5),
        active_slot_coeff=Fraction(1, 20),
        moving_avg_weight=Fraction(1, 2),
        min_pool_cost=0,
        slots_per_epoch=100,
    )
