"""
epoch.py - Epoch boundary rules

At the first slot of every epoch EPOCH runs, strictly in this order:

    UTXOEP     deposit pot := current obligation, fee pot := 0
    ACCNT      monetary expansion, treasury cut, reward calculation and
               distribution, pool performance averages
    POOLCLEAN  removes pools whose retirement epoch has come
    NEWPC      applies the next protocol parameters, moving the change in
               deposit obligation to or from the reserves

Only NEWPC can fail, and its failure is fatal: it means the parameter
update itself is unsound.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Mapping, Optional, Tuple

from ..core import (
    Coin, Epoch, KeyHash, Slot,
    FatalTransitionFailure, PredicateFailure,
    coin_sub, embed, floor_coin,
)
from ..deposits import obligation
from ..pparams import PParams
from ..rewards import RewardUpdate, reward
from ..state import (
    AccountState, DPState, EpochState, PState, UTxOState,
)


# ============================================================================
# ENVIRONMENT, SIGNALS, FAILURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class EpochEnv:
    """
    Context of an epoch boundary.

    Attributes:
        slot: First slot of the new epoch
        production: Blocks produced per pool in the epoch that just ended
        new_pparams: Parameters for the new epoch (None keeps the current ones)
    """
    slot: Slot
    production: Mapping[KeyHash, int] = field(default_factory=dict)
    new_pparams: Optional[PParams] = None


@dataclass(frozen=True, slots=True)
class AccountUpdate:
    """
    Pots released into the reward calculation.

    Attributes:
        fees: Fee pot collected during the epoch
        decayed: Part of the deposit pot no longer owed as refunds
    """
    fees: Coin
    decayed: Coin


@dataclass(frozen=True, slots=True)
class EpochSummary:
    """What happened at one epoch boundary."""
    epoch: Epoch
    expansion: Coin
    treasury_cut: Coin
    available: Coin
    paid: Coin
    forfeited: Coin
    retired: Tuple[KeyHash, ...]
    obligation: Coin

    def __repr__(self) -> str:
        return (
            f"EpochSummary(epoch={self.epoch}, expansion={self.expansion}, "
            f"treasury_cut={self.treasury_cut}, paid={self.paid}, "
            f"retired={len(self.retired)})"
        )


@dataclass(frozen=True, slots=True)
class ExcessObligationNEWPC(PredicateFailure):
    """The reserves cannot cover the increase in deposit obligation."""
    rule = "NEWPC"
    reserves: Coin
    old_obligation: Coin
    new_obligation: Coin


@dataclass(frozen=True, slots=True)
class NewPcFailure(PredicateFailure):
    rule = "EPOCH"
    failure: PredicateFailure


# ============================================================================
# UTXOEP
# ============================================================================

def apply_utxoep(env: EpochEnv, state: EpochState, epoch: Epoch) -> EpochState:
    """Reset the deposit pot to the obligation at env.slot and empty the fee pot."""
    ledger = state.ledger
    owed = obligation(
        state.pparams,
        ledger.dstate.stake_keys,
        ledger.pstate.stake_pools,
        env.slot,
    )
    utxo_state = UTxOState(utxo=ledger.utxo_state.utxo, deposits=owed, fees=0)
    return replace(state, ledger=replace(ledger, utxo_state=utxo_state))


# ============================================================================
# ACCNT
# ============================================================================

@dataclass(frozen=True, slots=True)
class _AccntResult:
    expansion: Coin
    treasury_cut: Coin
    available: Coin
    paid: Coin
    forfeited: Coin
    update: RewardUpdate


def _accnt(env: EpochEnv, state: EpochState, update: AccountUpdate) -> Tuple[EpochState, _AccntResult]:
    pparams = state.pparams
    account = state.account
    ledger = state.ledger
    dstate = ledger.dstate
    pstate = ledger.pstate

    expansion = floor_coin(pparams.rho * account.reserves)
    total = update.fees + update.decayed + account.reward_pool + expansion
    treasury_cut = floor_coin(pparams.tau * total)
    available = total - treasury_cut

    ru = reward(pparams, available, ledger.utxo_state.utxo, dstate, pstate, env.production)

    # Fresh rewards replace the balance of the same account; the replaced
    # balance returns to the reward pool.
    rewards = dict(dstate.rewards)
    paid = 0
    forfeited = 0
    for account_id in sorted(ru.rewards):
        if account_id not in dstate.stake_keys:
            continue
        forfeited += rewards.get(account_id, 0)
        rewards[account_id] = ru.rewards[account_id]
        paid += ru.rewards[account_id]

    new_account = AccountState(
        treasury=account.treasury + treasury_cut,
        reserves=coin_sub(account.reserves, expansion, "reserves"),
        reward_pool=coin_sub(available, paid, "reward pool") + forfeited,
    )
    new_dstate = replace(dstate, rewards=rewards)
    new_pstate = replace(pstate, avgs={**pstate.avgs, **ru.avgs})
    new_ledger = replace(ledger, dpstate=DPState(dstate=new_dstate, pstate=new_pstate))

    result = _AccntResult(expansion, treasury_cut, available, paid, forfeited, ru)
    return replace(state, account=new_account, ledger=new_ledger), result


def apply_accnt(env: EpochEnv, state: EpochState, update: AccountUpdate) -> EpochState:
    """
    Compute and distribute the epoch's rewards.

        expansion    = floor(rho * reserves)
        total        = fees + decayed deposits + reward pool + expansion
        treasury cut = floor(tau * total)
        available    = total - treasury cut

    Rewards paid to registered accounts leave the reward pool; everything
    else (rounding remainders, rewards of unregistered accounts) stays in it.
    """
    return _accnt(env, state, update)[0]


# ============================================================================
# POOLCLEAN
# ============================================================================

def retiring_pools(pstate: PState, epoch: Epoch) -> Tuple[KeyHash, ...]:
    return tuple(sorted(p for p, e in pstate.retiring.items() if e == epoch))


def apply_poolclean(env: EpochEnv, state: EpochState, epoch: Epoch) -> EpochState:
    """Remove every pool scheduled to retire at epoch from all pool maps."""
    ledger = state.ledger
    pstate = ledger.pstate
    retired = set(retiring_pools(pstate, epoch))
    if not retired:
        return state

    def keep(mapping):
        return {k: v for k, v in mapping.items() if k not in retired}

    new_pstate = PState(
        stake_pools=keep(pstate.stake_pools),
        pool_params=keep(pstate.pool_params),
        retiring=keep(pstate.retiring),
        avgs=keep(pstate.avgs),
    )
    new_ledger = replace(ledger, dpstate=DPState(dstate=ledger.dstate, pstate=new_pstate))
    return replace(state, ledger=new_ledger)


# ============================================================================
# NEWPC
# ============================================================================

def apply_newpc(env: EpochEnv, state: EpochState, new_pparams: PParams) -> EpochState:
    """
    Adopt new protocol parameters.

    The deposit obligation is recomputed under the new parameters; the
    difference from the recorded obligation moves to or from the reserves.

    Raises:
        FatalTransitionFailure: ExcessObligationNEWPC if the reserves cannot
            cover an increased obligation
    """
    ledger = state.ledger
    account = state.account
    old_obligation = ledger.utxo_state.deposits
    new_obligation = obligation(
        new_pparams,
        ledger.dstate.stake_keys,
        ledger.pstate.stake_pools,
        env.slot,
    )
    if account.reserves + old_obligation < new_obligation:
        raise FatalTransitionFailure([
            ExcessObligationNEWPC(account.reserves, old_obligation, new_obligation)
        ])

    utxo_state = replace(ledger.utxo_state, deposits=new_obligation)
    new_account = replace(
        account, reserves=account.reserves + old_obligation - new_obligation
    )
    return EpochState(
        account=new_account,
        ledger=replace(ledger, utxo_state=utxo_state),
        pparams=new_pparams,
    )


# ============================================================================
# EPOCH
# ============================================================================

def run_epoch(env: EpochEnv, state: EpochState, epoch: Epoch) -> Tuple[EpochState, EpochSummary]:
    """
    Run the epoch boundary and report what it did.

    ACCNT receives the fee pot and the deposits released by UTXOEP as they
    were before UTXOEP reset them.
    """
    before = state.ledger.utxo_state

    state = apply_utxoep(env, state, epoch)
    update = AccountUpdate(
        fees=before.fees,
        decayed=coin_sub(before.deposits, state.ledger.utxo_state.deposits, "deposit pot"),
    )
    state, accnt = _accnt(env, state, update)

    retired = retiring_pools(state.ledger.pstate, epoch)
    state = apply_poolclean(env, state, epoch)

    new_pparams = env.new_pparams if env.new_pparams is not None else state.pparams
    state = embed(NewPcFailure, apply_newpc, env, state, new_pparams)

    summary = EpochSummary(
        epoch=epoch,
        expansion=accnt.expansion,
        treasury_cut=accnt.treasury_cut,
        available=accnt.available,
        paid=accnt.paid,
        forfeited=accnt.forfeited,
        retired=retired,
        obligation=state.ledger.utxo_state.deposits,
    )
    return state, summary


def apply_epoch(env: EpochEnv, state: EpochState, epoch: Epoch) -> EpochState:
    """
    Apply the epoch boundary transition.

    Raises:
        FatalTransitionFailure: NewPcFailure(ExcessObligationNEWPC) from NEWPC
    """
    return run_epoch(env, state, epoch)[0]
