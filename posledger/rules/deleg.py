"""
deleg.py - Delegation rules

    DELEG    stake key lifecycle and delegation edges
    POOL     stake pool lifecycle
    DELPL    dispatches a certificate to DELEG or POOL
    DELEGS   applies a transaction's certificates in order
    DELRWDS  reaps (zeroes) the withdrawn reward accounts
    DELEGT   the transaction-level rule: cross-certificate checks,
             then DELRWDS, then DELEGS

A certificate batch is atomic: if any certificate fails, none of them
takes effect.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Mapping, Sequence, Tuple

from ..core import (
    Coin, Epoch, Ix, KeyHash, Slot,
    PredicateFailure, TransitionFailure, Validity,
    attempt, check, combine, embed, epoch_from_slot,
)
from ..pparams import PParams
from ..state import DPState, DState, PState
from ..tx import DCert, DeRegKey, Delegate, Ptr, RegKey, RegPool, RetirePool, Tx


# ============================================================================
# ENVIRONMENTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class DelegEnv:
    """Context of a single certificate: where it sits and the parameters."""
    slot: Slot
    tx_ix: Ix
    cert_ix: Ix
    pparams: PParams

    @property
    def ptr(self) -> Ptr:
        return Ptr(self.slot, self.tx_ix, self.cert_ix)


@dataclass(frozen=True, slots=True)
class DelegsEnv:
    """Context of a transaction's certificate batch."""
    slot: Slot
    tx_ix: Ix
    pparams: PParams

    def for_cert(self, cert_ix: Ix) -> DelegEnv:
        return DelegEnv(self.slot, self.tx_ix, cert_ix, self.pparams)


# ============================================================================
# FAILURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class StakeKeyAlreadyRegisteredDELEG(PredicateFailure):
    rule = "DELEG"
    credential: KeyHash


@dataclass(frozen=True, slots=True)
class StakeKeyNotRegisteredDELEG(PredicateFailure):
    rule = "DELEG"
    credential: KeyHash


@dataclass(frozen=True, slots=True)
class StakeDelegationImpossibleDELEG(PredicateFailure):
    """The delegating credential is not a registered stake key."""
    rule = "DELEG"
    credential: KeyHash


@dataclass(frozen=True, slots=True)
class StakeKeyNonZeroAccountBalanceDELEG(PredicateFailure):
    """Deregistration of a key whose reward account still holds Coin."""
    rule = "DELEG"
    credential: KeyHash
    balance: Coin


@dataclass(frozen=True, slots=True)
class WrongCertificateTypeDELEG(PredicateFailure):
    rule = "DELEG"


@dataclass(frozen=True, slots=True)
class StakePoolNotRegisteredOnKeyPOOL(PredicateFailure):
    rule = "POOL"
    pool_id: KeyHash


@dataclass(frozen=True, slots=True)
class StakePoolCostTooLowPOOL(PredicateFailure):
    rule = "POOL"
    declared_cost: Coin
    min_pool_cost: Coin


@dataclass(frozen=True, slots=True)
class StakePoolRetirementWrongEpochPOOL(PredicateFailure):
    """Retirement must be scheduled in (current, current + e_max]."""
    rule = "POOL"
    current: Epoch
    target: Epoch
    max_epoch: Epoch


@dataclass(frozen=True, slots=True)
class WrongCertificateTypePOOL(PredicateFailure):
    rule = "POOL"


@dataclass(frozen=True, slots=True)
class DelegFailure(PredicateFailure):
    rule = "DELPL"
    failure: PredicateFailure


@dataclass(frozen=True, slots=True)
class PoolFailure(PredicateFailure):
    rule = "DELPL"
    failure: PredicateFailure


@dataclass(frozen=True, slots=True)
class DelplFailure(PredicateFailure):
    """Failure of the certificate at position cert_ix."""
    rule = "DELEGS"
    failure: PredicateFailure
    cert_ix: Ix


@dataclass(frozen=True, slots=True)
class IncorrectWithdrawalDELRWDS(PredicateFailure):
    """Withdrawals that are not the exact balance of a registered account."""
    rule = "DELRWDS"
    accounts: Tuple[KeyHash, ...]


@dataclass(frozen=True, slots=True)
class DelegsFailure(PredicateFailure):
    rule = "DELEGT"
    failure: PredicateFailure


@dataclass(frozen=True, slots=True)
class DelrwdsFailure(PredicateFailure):
    rule = "DELEGT"
    failure: PredicateFailure


@dataclass(frozen=True, slots=True)
class RegCertWithdrawDELEGT(PredicateFailure):
    """Credentials registered and withdrawn from in the same transaction."""
    rule = "DELEGT"
    credentials: Tuple[KeyHash, ...]


@dataclass(frozen=True, slots=True)
class DeregCertNotWithdrawDELEGT(PredicateFailure):
    """Credentials deregistered without withdrawing their reward account."""
    rule = "DELEGT"
    credentials: Tuple[KeyHash, ...]


@dataclass(frozen=True, slots=True)
class DelegateCertNotStakePoolsDELEGT(PredicateFailure):
    """Delegation targets that are not registered pools."""
    rule = "DELEGT"
    pools: Tuple[KeyHash, ...]


@dataclass(frozen=True, slots=True)
class DeregCertRetireOrDelegateDELEGT(PredicateFailure):
    """Deregistered credentials that are also active or retiring pools."""
    rule = "DELEGT"
    credentials: Tuple[KeyHash, ...]


# ============================================================================
# DELEG
# ============================================================================

def apply_deleg(env: DelegEnv, state: DState, cert: DCert) -> DState:
    """
    Apply a stake key certificate.

    RegKey creates a zero-balance reward account, a registration slot and a
    pointer to the credential. DeRegKey removes the credential from every
    map, including every pointer that resolves to it. Delegate overwrites
    the credential's delegation target.
    """
    if isinstance(cert, RegKey):
        cred = cert.credential
        if cred in state.stake_keys:
            raise TransitionFailure([StakeKeyAlreadyRegisteredDELEG(cred)])
        return DState(
            stake_keys={**state.stake_keys, cred: env.slot},
            rewards={**state.rewards, cred: 0},
            delegations=state.delegations,
            ptrs={**state.ptrs, env.ptr: cred},
        )

    if isinstance(cert, DeRegKey):
        cred = cert.credential
        if cred not in state.stake_keys:
            raise TransitionFailure([StakeKeyNotRegisteredDELEG(cred)])
        remaining = state.rewards.get(cred, 0)
        if remaining != 0:
            raise TransitionFailure([StakeKeyNonZeroAccountBalanceDELEG(cred, remaining)])
        return DState(
            stake_keys={k: s for k, s in state.stake_keys.items() if k != cred},
            rewards={k: c for k, c in state.rewards.items() if k != cred},
            delegations={k: p for k, p in state.delegations.items() if k != cred},
            ptrs={ptr: k for ptr, k in state.ptrs.items() if k != cred},
        )

    if isinstance(cert, Delegate):
        if cert.delegator not in state.stake_keys:
            raise TransitionFailure([StakeDelegationImpossibleDELEG(cert.delegator)])
        return DState(
            stake_keys=state.stake_keys,
            rewards=state.rewards,
            delegations={**state.delegations, cert.delegator: cert.pool},
            ptrs=state.ptrs,
        )

    raise TransitionFailure([WrongCertificateTypeDELEG()])


# ============================================================================
# POOL
# ============================================================================

def apply_pool(env: DelegEnv, state: PState, cert: DCert) -> PState:
    """
    Apply a stake pool certificate.

    Re-registering a pool replaces its parameters, keeps its original
    registration slot and cancels a pending retirement.
    """
    pparams = env.pparams

    if isinstance(cert, RegPool):
        params = cert.params
        if params.cost < pparams.min_pool_cost:
            raise TransitionFailure([
                StakePoolCostTooLowPOOL(params.cost, pparams.min_pool_cost)
            ])
        pool_id = params.pool_id
        return PState(
            stake_pools={pool_id: env.slot, **state.stake_pools},
            pool_params={**state.pool_params, pool_id: params},
            retiring={p: e for p, e in state.retiring.items() if p != pool_id},
            avgs=state.avgs,
        )

    if isinstance(cert, RetirePool):
        current = epoch_from_slot(env.slot, pparams.slots_per_epoch)
        max_epoch = current + pparams.e_max
        combine([
            check(
                cert.pool_id in state.stake_pools,
                StakePoolNotRegisteredOnKeyPOOL(cert.pool_id),
            ),
            check(
                current < cert.epoch <= max_epoch,
                StakePoolRetirementWrongEpochPOOL(current, cert.epoch, max_epoch),
            ),
        ]).require()
        return PState(
            stake_pools=state.stake_pools,
            pool_params=state.pool_params,
            retiring={**state.retiring, cert.pool_id: cert.epoch},
            avgs=state.avgs,
        )

    raise TransitionFailure([WrongCertificateTypePOOL()])


# ============================================================================
# DELPL / DELEGS
# ============================================================================

def apply_delpl(env: DelegEnv, state: DPState, cert: DCert) -> DPState:
    """Route a certificate to POOL or DELEG."""
    if isinstance(cert, (RegPool, RetirePool)):
        pstate = embed(PoolFailure, apply_pool, env, state.pstate, cert)
        return DPState(dstate=state.dstate, pstate=pstate)
    dstate = embed(DelegFailure, apply_deleg, env, state.dstate, cert)
    return DPState(dstate=dstate, pstate=state.pstate)


def apply_delegs(env: DelegsEnv, state: DPState, certs: Sequence[DCert]) -> DPState:
    """
    Apply certificates in order, each against the result of the previous one.

    Stops at the first failing certificate; its failure is tagged with the
    certificate's position.
    """
    for cert_ix, cert in enumerate(certs):
        state = embed(
            lambda f, ix=cert_ix: DelplFailure(f, ix),
            apply_delpl, env.for_cert(cert_ix), state, cert,
        )
    return state


# ============================================================================
# DELRWDS
# ============================================================================

def apply_delrwds(env: DelegsEnv, state: DState, withdrawals: Mapping[KeyHash, Coin]) -> DState:
    """
    Reap withdrawn reward accounts.

    Every withdrawal must name a registered account and equal its balance
    exactly; the account balance becomes zero.
    """
    wrong = tuple(sorted(
        account for account, amount in withdrawals.items()
        if account not in state.stake_keys or state.rewards.get(account) != amount
    ))
    if wrong:
        raise TransitionFailure([IncorrectWithdrawalDELRWDS(wrong)])
    if not withdrawals:
        return state
    rewards = dict(state.rewards)
    for account in withdrawals:
        rewards[account] = 0
    return DState(
        stake_keys=state.stake_keys,
        rewards=rewards,
        delegations=state.delegations,
        ptrs=state.ptrs,
    )


# ============================================================================
# DELEGT
# ============================================================================

def delegt_validity(state: DPState, tx: Tx) -> Validity:
    """Cross-certificate checks over one transaction's certificates and withdrawals."""
    pstate = state.pstate
    withdrawn = set(tx.withdrawals)

    registering = {c.credential for c in tx.certs if isinstance(c, RegKey)}
    deregistering = {c.credential for c in tx.certs if isinstance(c, DeRegKey)}
    known_pools = set(pstate.stake_pools) | {
        c.params.pool_id for c in tx.certs if isinstance(c, RegPool)
    }
    unknown_targets = {
        c.pool for c in tx.certs
        if isinstance(c, Delegate) and c.pool not in known_pools
    }
    pool_creds = {
        cred for cred in deregistering
        if cred in pstate.stake_pools or cred in pstate.retiring
    }

    reg_withdraw = tuple(sorted(registering & withdrawn))
    dereg_unwithdrawn = tuple(sorted(deregistering - withdrawn))
    return combine([
        check(not reg_withdraw, RegCertWithdrawDELEGT(reg_withdraw)),
        check(not dereg_unwithdrawn, DeregCertNotWithdrawDELEGT(dereg_unwithdrawn)),
        check(not unknown_targets, DelegateCertNotStakePoolsDELEGT(tuple(sorted(unknown_targets)))),
        check(not pool_creds, DeregCertRetireOrDelegateDELEGT(tuple(sorted(pool_creds)))),
    ])


def apply_delegt(env: DelegsEnv, state: DPState, tx: Tx) -> DPState:
    """
    Apply a transaction's withdrawals and certificates to the delegation state.

    The cross-certificate checks, DELRWDS and DELEGS are all evaluated and
    their failures reported together. DELEGS runs on the reaped state, so a
    key can withdraw its rewards and deregister in the same transaction.

    Raises:
        TransitionFailure: DELEGT checks, then wrapped DELRWDS and DELEGS failures
    """
    own = delegt_validity(state, tx)

    reaped, rwds_result = attempt(
        embed, DelrwdsFailure, apply_delrwds, env, state.dstate, tx.withdrawals
    )
    start = DPState(dstate=reaped, pstate=state.pstate) if reaped is not None else state
    new_state, delegs_result = attempt(embed, DelegsFailure, apply_delegs, env, start, tx.certs)

    (own + rwds_result + delegs_result).require()
    return new_state
