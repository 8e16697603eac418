"""
test_rewards.py - Unit tests for stake distribution and the reward algorithm

Tests:
- Active stake and the stake distribution (base and pointer addresses)
- max_pool saturation and pledge influence
- Leader and member splits
- Moving averages of pool performance
- The full reward calculation, including the never-overpay property
"""

import pytest
from fractions import Fraction
from hypothesis import given, settings, strategies as st

from posledger import (
    GENESIS_ID, TxIn, TxOut, PtrAddr, Ptr, DState, PState,
)
from posledger.rewards import (
    active_stake, stake_distribution, pool_stake,
    max_pool, expected_blocks, moving_average, pool_reward,
    leader_reward, member_reward, reward_one_pool, reward,
)

from tests.builders import kh, out, pool_params, standard_pparams


def utxo_of(*outputs):
    return {TxIn(GENESIS_ID, ix): o for ix, o in enumerate(outputs)}


def delegated(names, pool="pool", balances=None):
    balances = balances or {}
    return DState(
        stake_keys={kh(n): 0 for n in names},
        rewards={kh(n): balances.get(n, 0) for n in names},
        delegations={kh(n): kh(pool) for n in names},
    )


def one_pool(name="pool", **kwargs):
    return PState(stake_pools={kh(name): 0}, pool_params={kh(name): pool_params(name, **kwargs)})


# ============================================================================
# STAKE
# ============================================================================

class TestStakeDistribution:

    def test_outputs_and_rewards_count(self):
        utxo = utxo_of(out("alice", 600, "alice"), out("x", 400, "alice"))
        dstate = delegated(["alice"], balances={"alice": 25})
        assert active_stake(utxo, dstate) == {kh("alice"): 1025}

    def test_unregistered_and_unstaked_outputs_ignored(self):
        utxo = utxo_of(out("alice", 600, "alice"), out("bob", 400, "bob"), out("carol", 50))
        dstate = delegated(["alice"])
        assert active_stake(utxo, dstate) == {kh("alice"): 600}

    def test_zero_stake_omitted(self):
        assert active_stake({}, delegated(["alice"])) == {}

    def test_pointer_addresses_resolve(self):
        ptr = Ptr(3, 0, 1)
        dstate = DState(
            stake_keys={kh("alice"): 3},
            rewards={kh("alice"): 0},
            ptrs={ptr: kh("alice")},
        )
        utxo = utxo_of(TxOut(PtrAddr(kh("x"), ptr), 70), TxOut(PtrAddr(kh("x"), Ptr(9, 9, 9)), 30))
        assert active_stake(utxo, dstate) == {kh("alice"): 70}

    def test_distribution_requires_registered_pool(self):
        utxo = utxo_of(out("alice", 600, "alice"), out("bob", 400, "bob"))
        dstate = DState(
            stake_keys={kh("alice"): 0, kh("bob"): 0},
            rewards={kh("alice"): 0, kh("bob"): 0},
            delegations={kh("alice"): kh("pool"), kh("bob"): kh("gone")},
        )
        assert stake_distribution(utxo, dstate, one_pool()) == {kh("alice"): 600}

    def test_pool_stake(self):
        stake = {kh("alice"): 5, kh("bob"): 7}
        delegations = {kh("alice"): kh("pool"), kh("bob"): kh("other")}
        assert pool_stake(kh("pool"), delegations, stake) == {kh("alice"): 5}


# ============================================================================
# FORMULAS
# ============================================================================

class TestMaxPool:

    def test_unsaturated_pool_gets_stake_share(self):
        pp = standard_pparams(n_opt=1)
        assert max_pool(pp, 1000, Fraction(1, 2), Fraction(0)) == 500

    def test_saturation(self):
        pp = standard_pparams(n_opt=2)
        assert max_pool(pp, 1000, Fraction(4, 5), Fraction(0)) == 500
        assert max_pool(pp, 1000, Fraction(1, 2), Fraction(0)) == 500

    def test_pledge_raises_cap(self):
        pp = standard_pparams(n_opt=2, a0=1)
        without = max_pool(pp, 1000, Fraction(1, 4), Fraction(0))
        with_pledge = max_pool(pp, 1000, Fraction(1, 4), Fraction(1, 4))
        assert without == 125
        assert with_pledge == 156

    def test_zero_stake(self):
        assert max_pool(standard_pparams(), 1000, Fraction(0), Fraction(0)) == 0


class TestSplits:

    def test_reward_below_cost_goes_to_leader(self):
        assert leader_reward(50, 100, Fraction(1, 10), Fraction(1, 10), Fraction(1, 2)) == 50
        assert member_reward(50, 100, Fraction(1, 10), Fraction(1, 10), Fraction(1, 2)) == 0

    def test_cost_margin_and_share(self):
        margin, sigma = Fraction(1, 10), Fraction(1, 2)
        assert leader_reward(600, 100, margin, Fraction(1, 10), sigma) == 240
        assert member_reward(600, 100, margin, Fraction(2, 10), sigma) == 180

    def test_performance_above_one_earns_no_bonus(self):
        assert pool_reward(Fraction(3, 2), 500) == 500
        assert pool_reward(Fraction(1, 3), 500) == 166


class TestMovingAverage:

    def test_expected_blocks(self):
        assert expected_blocks(standard_pparams(), Fraction(1, 2)) == Fraction(5, 2)

    def test_first_epoch_is_ratio(self):
        assert moving_average(standard_pparams(), None, 2, Fraction(4)) == Fraction(1, 2)

    def test_weighted_with_previous(self):
        assert moving_average(standard_pparams(), Fraction(1), 0, Fraction(4)) == Fraction(1, 2)

    def test_nothing_expected(self):
        assert moving_average(standard_pparams(), None, 3, Fraction(0)) == 0


# ============================================================================
# REWARD CALCULATION
# ============================================================================

class TestRewardOnePool:

    def test_half_stake_pool(self):
        # sigma = 1/2 of total stake 10000, available 1000, cost 0, margin 0
        pp = standard_pparams(n_opt=1)
        params = pool_params("pool", reward_to="operator")
        members = {kh("operator"): 1_000, kh("alice"): 2_500, kh("bob"): 1_500}
        result = reward_one_pool(pp, 1_000, params, Fraction(1), members, 10_000)

        assert result.sigma == Fraction(1, 2)
        assert result.cap == 500
        assert result.leader == 100
        assert result.members == {kh("alice"): 250, kh("bob"): 150}
        assert result.paid <= result.cap <= 1_000

    def test_member_rewards_are_floored(self):
        pp = standard_pparams(n_opt=1)
        members = {kh("alice"): 333, kh("bob"): 4_667}
        result = reward_one_pool(pp, 1_000, pool_params("pool"), Fraction(1), members, 10_000)
        assert result.members == {kh("alice"): 33, kh("bob"): 466}
        assert result.paid < result.cap

    def test_pledge_not_met(self):
        pp = standard_pparams(n_opt=1)
        params = pool_params("pool", pledge=2_000, reward_to="operator")
        members = {kh("operator"): 1_000, kh("alice"): 4_000}
        result = reward_one_pool(pp, 1_000, params, Fraction(1), members, 10_000)
        assert result.cap == 0
        assert result.paid == 0

    def test_empty_pool(self):
        result = reward_one_pool(standard_pparams(), 1_000, pool_params("pool"), Fraction(1), {}, 10_000)
        assert result.paid == 0
        assert result.sigma == 0


class TestReward:

    @pytest.fixture
    def setup(self):
        utxo = utxo_of(out("alice", 6_000, "alice"), out("bob", 4_000, "bob"))
        return utxo, delegated(["alice", "bob"]), one_pool()

    def test_perfect_pool(self, setup):
        utxo, dstate, pstate = setup
        pp = standard_pparams(n_opt=1)
        # sigma = 1: expected 100 * 1/20 = 5 blocks
        ru = reward(pp, 1_000, utxo, dstate, pstate, {kh("pool"): 5})
        assert ru.avgs == {kh("pool"): Fraction(1)}
        assert ru.rewards == {kh("alice"): 600, kh("bob"): 400}
        assert ru.paid == 1_000

    def test_idle_pool_earns_nothing(self, setup):
        utxo, dstate, pstate = setup
        ru = reward(standard_pparams(n_opt=1), 1_000, utxo, dstate, pstate, {})
        assert ru.avgs == {kh("pool"): Fraction(0)}
        assert ru.paid == 0

    def test_average_uses_previous_epoch(self, setup):
        utxo, dstate, pstate = setup
        pstate = PState(
            stake_pools=pstate.stake_pools,
            pool_params=pstate.pool_params,
            avgs={kh("pool"): Fraction(1)},
        )
        ru = reward(standard_pparams(n_opt=1), 1_000, utxo, dstate, pstate, {})
        assert ru.avgs == {kh("pool"): Fraction(1, 2)}
        assert ru.rewards == {kh("alice"): 300, kh("bob"): 200}

    def test_no_stake_no_rewards(self):
        ru = reward(standard_pparams(), 1_000, {}, DState(), one_pool(), {})
        assert ru.paid == 0
        assert ru.rewards == {}

    @settings(max_examples=50, deadline=None)
    @given(
        stakes=st.lists(st.integers(min_value=0, max_value=10**9), min_size=1, max_size=6),
        available=st.integers(min_value=0, max_value=10**12),
        blocks=st.integers(min_value=0, max_value=200),
        n_opt=st.integers(min_value=1, max_value=10),
        margin=st.fractions(min_value=0, max_value=1),
        cost=st.integers(min_value=0, max_value=10**6),
    )
    def test_never_pays_more_than_available(self, stakes, available, blocks, n_opt, margin, cost):
        names = [f"d{i}" for i in range(len(stakes))]
        utxo = utxo_of(*(out(n, s, n) for n, s in zip(names, stakes)))
        pools = {kh("p0"): 0, kh("p1"): 0}
        pstate = PState(
            stake_pools=pools,
            pool_params={
                kh("p0"): pool_params("p0", cost=cost, margin=margin),
                kh("p1"): pool_params("p1"),
            },
        )
        dstate = DState(
            stake_keys={kh(n): 0 for n in names},
            rewards={kh(n): 0 for n in names},
            delegations={kh(n): kh("p0" if i % 2 else "p1") for i, n in enumerate(names)},
        )
        pp = standard_pparams(n_opt=n_opt)
        ru = reward(pp, available, utxo, dstate, pstate, {kh("p0"): blocks, kh("p1"): blocks // 2})

        assert ru.paid <= available
        assert ru.paid == sum(ru.rewards.values())
        for result in ru.pools.values():
            assert result.paid <= result.reward <= result.cap <= available
