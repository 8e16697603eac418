"""
rewards.py - Stake Distribution and the Reward Algorithm

Pure functions computing, at an epoch boundary:
    1. The active stake of each registered credential (UTxO + reward balance)
    2. The stake delegated to each registered pool
    3. Each pool's performance moving average
    4. The reward of each pool and its split between leader and members

All arithmetic is exact (Fraction) with a single floor per payout, so every
payout is a whole Coin and the rounding remainder stays in the
undistributed reward pool. Floating point is never used.
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Dict, Mapping, Optional

from .core import Coin, KeyHash, floor_coin
from .pparams import PParams
from .state import DState, PState, UTxO
from .tx import Addr, PoolParams, PtrAddr, Ptr


# ============================================================================
# STAKE DISTRIBUTION
# ============================================================================

def stake_credential(addr, ptrs: Mapping[Ptr, KeyHash]) -> Optional[KeyHash]:
    """
    Credential whose stake an output at addr counts towards.

    Pointer addresses are resolved through the pointer map; a pointer that
    does not (or no longer) resolve contributes no stake.
    """
    if isinstance(addr, Addr):
        return addr.stake
    if isinstance(addr, PtrAddr):
        return ptrs.get(addr.ptr)
    return None


def active_stake(utxo: UTxO, dstate: DState) -> Dict[KeyHash, Coin]:
    """
    Stake of every registered credential: its outputs plus its reward balance.

    Credentials with zero stake are omitted.
    """
    stake: Dict[KeyHash, Coin] = defaultdict(int)
    for out in utxo.values():
        cred = stake_credential(out.addr, dstate.ptrs)
        if cred is not None and cred in dstate.stake_keys:
            stake[cred] += out.coin
    for cred, amount in dstate.rewards.items():
        if cred in dstate.stake_keys:
            stake[cred] += amount
    return {cred: amount for cred, amount in stake.items() if amount > 0}


def stake_distribution(utxo: UTxO, dstate: DState, pstate: PState) -> Dict[KeyHash, Coin]:
    """Active stake restricted to credentials delegated to a registered pool."""
    stake = active_stake(utxo, dstate)
    return {
        cred: amount for cred, amount in stake.items()
        if dstate.delegations.get(cred) in pstate.stake_pools
    }


def pool_stake(
    pool_id: KeyHash,
    delegations: Mapping[KeyHash, KeyHash],
    stake: Mapping[KeyHash, Coin],
) -> Dict[KeyHash, Coin]:
    """Stake of each credential delegating to pool_id."""
    return {
        cred: amount for cred, amount in stake.items()
        if delegations.get(cred) == pool_id
    }


# ============================================================================
# REWARD FORMULAS
# ============================================================================

def max_pool(pparams: PParams, rewards: Coin, sigma: Fraction, pledge_ratio: Fraction) -> Coin:
    """
    Maximal reward a pool can earn, before performance weighting.

    Saturates at relative stake z0 = 1/n_opt; pledge raises the cap in
    proportion to the pledge influence a0.
    """
    a0 = pparams.a0
    z0 = Fraction(1, pparams.n_opt)
    s = min(sigma, z0)
    p = min(pledge_ratio, z0)
    factor = s + p * a0 * (s - p * (z0 - s) / z0) / z0
    return max(0, floor_coin(Fraction(rewards) / (1 + a0) * factor))


def expected_blocks(pparams: PParams, sigma: Fraction) -> Fraction:
    """Blocks a pool with relative stake sigma is expected to lead in one epoch."""
    return sigma * pparams.slots_per_epoch * pparams.active_slot_coeff


def moving_average(
    pparams: PParams,
    previous: Optional[Fraction],
    blocks: int,
    expected: Fraction,
) -> Fraction:
    """
    Exponentially weighted average of produced/expected blocks.

    A pool without a previous average starts at this epoch's ratio. A pool
    expected to produce nothing has ratio 0.
    """
    ratio = Fraction(blocks) / expected if expected > 0 else Fraction(0)
    if previous is None:
        return ratio
    alpha = pparams.moving_avg_weight
    return alpha * ratio + (1 - alpha) * previous


def pool_reward(avg: Fraction, cap: Coin) -> Coin:
    """Performance-weighted pool reward; performance above 1 earns no bonus."""
    return floor_coin(min(avg, Fraction(1)) * cap)


def leader_reward(
    reward: Coin,
    cost: Coin,
    margin: Fraction,
    leader_share: Fraction,
    sigma: Fraction,
) -> Coin:
    """
    Operator payout: the cost, plus the margin and its stake share of the rest.

    A pool whose reward does not exceed its cost pays everything to the leader.
    """
    if reward <= cost:
        return reward
    if sigma == 0:
        return cost
    return cost + floor_coin((reward - cost) * (margin + (1 - margin) * leader_share / sigma))


def member_reward(
    reward: Coin,
    cost: Coin,
    margin: Fraction,
    member_share: Fraction,
    sigma: Fraction,
) -> Coin:
    if reward <= cost or sigma == 0:
        return 0
    return floor_coin((reward - cost) * (1 - margin) * member_share / sigma)


# ============================================================================
# REWARD CALCULATION
# ============================================================================

@dataclass(frozen=True, slots=True)
class PoolRewardResult:
    """
    Breakdown of one pool's reward.

    Attributes:
        pool_id: The pool
        sigma: Relative stake of the pool
        cap: max_pool for the pool (0 if the pledge is not met)
        reward: Performance-weighted reward
        leader_account: Reward account of the operator
        leader: Operator's payout
        members: Payout per delegating credential (excluding the leader account)
    """
    pool_id: KeyHash
    sigma: Fraction
    cap: Coin
    reward: Coin
    leader_account: KeyHash
    leader: Coin
    members: Mapping[KeyHash, Coin] = field(default_factory=dict)

    @property
    def paid(self) -> Coin:
        return self.leader + sum(self.members.values())


@dataclass(frozen=True, slots=True)
class RewardUpdate:
    """
    Result of the reward calculation for one epoch.

    Attributes:
        rewards: Payout per reward account, summed over all pools
        avgs: Updated performance average per pool
        pools: Per-pool breakdown
        paid: Total Coin paid out (sum of rewards)
    """
    rewards: Dict[KeyHash, Coin]
    avgs: Dict[KeyHash, Fraction]
    pools: Dict[KeyHash, PoolRewardResult]
    paid: Coin


def reward_one_pool(
    pparams: PParams,
    rewards: Coin,
    params: PoolParams,
    avg: Fraction,
    members_stake: Mapping[KeyHash, Coin],
    total_stake: Coin,
) -> PoolRewardResult:
    """
    Reward of a single pool and its split.

    Args:
        pparams: Protocol parameters
        rewards: Available reward pot R for the epoch
        params: The pool's declared parameters
        avg: The pool's performance average for this epoch
        members_stake: Stake of every credential delegating to the pool
        total_stake: Total active stake (denominator of every share)
    """
    leader_account = params.reward_account
    pstake = sum(members_stake.values())
    if total_stake == 0 or pstake == 0:
        return PoolRewardResult(params.pool_id, Fraction(0), 0, 0, leader_account, 0, {})

    sigma = Fraction(pstake, total_stake)
    leader_stake = members_stake.get(leader_account, 0)
    if leader_stake >= params.pledge:
        cap = max_pool(pparams, rewards, sigma, Fraction(params.pledge, total_stake))
    else:
        cap = 0
    reward = pool_reward(avg, cap)

    leader = leader_reward(
        reward, params.cost, params.margin, Fraction(leader_stake, total_stake), sigma
    )
    members = {}
    for cred in sorted(members_stake):
        if cred == leader_account:
            continue
        amount = member_reward(
            reward, params.cost, params.margin,
            Fraction(members_stake[cred], total_stake), sigma,
        )
        if amount > 0:
            members[cred] = amount
    return PoolRewardResult(params.pool_id, sigma, cap, reward, leader_account, leader, members)


def reward(
    pparams: PParams,
    available: Coin,
    utxo: UTxO,
    dstate: DState,
    pstate: PState,
    production: Mapping[KeyHash, int],
) -> RewardUpdate:
    """
    Distribute the available reward pot across all registered pools.

    Each pool's moving average is first updated with its production for the
    epoch (pools missing from production produced 0 blocks); the updated
    average weights the pool's reward. Pools are processed in sorted order.

    The total paid never exceeds `available`.
    """
    stake = stake_distribution(utxo, dstate, pstate)
    total_stake = sum(stake.values())

    payouts: Dict[KeyHash, Coin] = defaultdict(int)
    avgs: Dict[KeyHash, Fraction] = {}
    pools: Dict[KeyHash, PoolRewardResult] = {}

    for pool_id in sorted(pstate.stake_pools):
        params = pstate.pool_params[pool_id]
        members_stake = pool_stake(pool_id, dstate.delegations, stake)
        sigma = Fraction(sum(members_stake.values()), total_stake) if total_stake else Fraction(0)
        avg = moving_average(
            pparams,
            pstate.avgs.get(pool_id),
            production.get(pool_id, 0),
            expected_blocks(pparams, sigma),
        )
        avgs[pool_id] = avg
        result = reward_one_pool(pparams, available, params, avg, members_stake, total_stake)
        pools[pool_id] = result
        if result.leader > 0:
            payouts[result.leader_account] += result.leader
        for cred, amount in result.members.items():
            payouts[cred] += amount

    paid = sum(payouts.values())
    return RewardUpdate(rewards=dict(payouts), avgs=avgs, pools=pools, paid=paid)
