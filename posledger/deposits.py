"""
deposits.py - Deposits, Decaying Refunds and the Deposit Obligation

Registering a stake key or a stake pool locks a deposit. The refundable part
decays exponentially with the time the registration has existed, but never
below a guaranteed minimum:

    refund = floor(d_val * (d_min + (1 - d_min) * e^(-decay * duration)))

The exponential is evaluated with Decimal at the ledger's fixed precision,
never with floats. The portion that has decayed away is released from the
deposit pot into the reward pool at the next epoch boundary.
"""

from __future__ import annotations
from decimal import Decimal, ROUND_FLOOR
from fractions import Fraction
from typing import Mapping

from .core import Coin, KeyHash, Slot, floor_coin, fraction_to_decimal
from .pparams import PParams
from .tx import DeRegKey, RegKey, RegPool, Tx


def refund(d_val: Coin, d_min: Fraction, decay: Fraction, duration: Slot) -> Coin:
    """
    Refundable amount of a deposit after `duration` slots.

    Args:
        d_val: Original deposit
        d_min: Fraction of the deposit that is always refunded
        decay: Decay rate per slot
        duration: Slots since registration (negative values count as 0)

    Returns:
        A Coin in [floor(d_min * d_val), d_val]
    """
    if duration <= 0 or decay == 0 or d_val == 0:
        return d_val
    floor_amount = floor_coin(d_min * d_val)
    exponent = -fraction_to_decimal(decay * duration)
    factor = fraction_to_decimal(d_min) + fraction_to_decimal(1 - d_min) * exponent.exp()
    amount = int((Decimal(d_val) * factor).to_integral_value(rounding=ROUND_FLOOR))
    return max(floor_amount, min(d_val, amount))


def key_refund(pparams: PParams, registered_at: Slot, slot: Slot) -> Coin:
    return refund(
        pparams.key_deposit,
        pparams.key_min_refund,
        pparams.key_decay_rate,
        slot - registered_at,
    )


def pool_refund(pparams: PParams, registered_at: Slot, slot: Slot) -> Coin:
    return refund(
        pparams.pool_deposit,
        pparams.pool_min_refund,
        pparams.pool_decay_rate,
        slot - registered_at,
    )


def obligation(
    pparams: PParams,
    stake_keys: Mapping[KeyHash, Slot],
    stake_pools: Mapping[KeyHash, Slot],
    slot: Slot,
) -> Coin:
    """
    Total refunds still owed at `slot` to every registered key and pool.

    Iteration is sorted so the sum is accumulated in a fixed order.
    """
    keys = sum(key_refund(pparams, stake_keys[k], slot) for k in sorted(stake_keys))
    pools = sum(pool_refund(pparams, stake_pools[p], slot) for p in sorted(stake_pools))
    return keys + pools


def tx_deposits(pparams: PParams, stake_pools: Mapping[KeyHash, Slot], tx: Tx) -> Coin:
    """
    Deposits a transaction must lock for its registration certificates.

    Every RegKey pays the key deposit. A RegPool pays the pool deposit only
    when it registers a pool that is not yet registered (re-registration
    updates parameters for free); the same pool registered twice in one
    transaction pays once.
    """
    total = 0
    new_pools = set()
    for cert in tx.certs:
        if isinstance(cert, RegKey):
            total += pparams.key_deposit
        elif isinstance(cert, RegPool):
            pool_id = cert.params.pool_id
            if pool_id not in stake_pools and pool_id not in new_pools:
                new_pools.add(pool_id)
                total += pparams.pool_deposit
    return total


def tx_key_refunds(
    pparams: PParams,
    stake_keys: Mapping[KeyHash, Slot],
    slot: Slot,
    tx: Tx,
) -> Coin:
    """Refunds paid out to the transaction for its DeRegKey certificates."""
    total = 0
    seen = set()
    for cert in tx.certs:
        if isinstance(cert, DeRegKey) and cert.credential in stake_keys:
            if cert.credential in seen:
                continue
            seen.add(cert.credential)
            total += key_refund(pparams, stake_keys[cert.credential], slot)
    return total
