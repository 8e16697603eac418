"""
posledger - Proof-of-Stake Ledger Rules

The state-transition core of a proof-of-stake ledger: UTxO and witness
validation, stake key and stake pool lifecycles, epoch boundary accounting
and the reward algorithm, plus a stateful Chain driver.

Usage:
    from posledger import (
        Chain, KeyPair, Addr, Tx, TxIn, TxOut, PParams, GENESIS_ID, sign_tx,
    )

    alice = KeyPair.from_seed("alice")
    bob = KeyPair.from_seed("bob")
    pparams = PParams(minfee_b=100, slots_per_epoch=100)

    chain = Chain("main", pparams, [TxOut(Addr(alice.key_hash), 10_000)], reserves=1_000_000)

    tx = Tx(
        inputs={TxIn(GENESIS_ID, 0)},
        outputs=[TxOut(Addr(bob.key_hash), 3_000), TxOut(Addr(alice.key_hash), 6_400)],
        fee=600,
        ttl=10,
    )
    result = chain.submit(sign_tx(tx, [alice]))

    # Cross an epoch boundary: rewards, pool retirements, new parameters
    chain.advance_slot(100)
"""

# Core types
from .core import (
    Coin,
    Slot,
    Epoch,
    KeyHash,
    TxId,
    NAT_MAX,
    GENESIS_ID,
    LedgerError,
    InvariantViolation,
    ConservationViolation,
    InvalidParameters,
    TransitionFailure,
    FatalTransitionFailure,
    PredicateFailure,
    Validity,
    VALID,
    invalid,
    check,
    combine,
    embed,
    attempt,
    canonicalize,
    epoch_from_slot,
    first_slot,
)

# Collaborators: hashing, signatures, leader eligibility
from .crypto import (
    KeyPair,
    Verifier,
    hash_bytes,
    hash_key,
    verify,
    check_leader_value,
)

# Protocol parameters
from .pparams import PParams, default_pparams

# Transactions and certificates
from .tx import (
    Ptr,
    Addr,
    PtrAddr,
    TxIn,
    TxOut,
    PoolParams,
    DCert,
    RegKey,
    DeRegKey,
    Delegate,
    RegPool,
    RetirePool,
    Tx,
    Wit,
    TxWits,
    make_witness,
    sign_tx,
    tx_size,
    min_fee,
)

# Ledger state
from .state import (
    UTxOState,
    DState,
    PState,
    DPState,
    AccountState,
    LedgerState,
    EpochState,
    balance,
    genesis_state,
    circulation,
    total_value,
)

# Deposits and rewards
from .deposits import refund, key_refund, pool_refund, obligation
from .rewards import (
    stake_distribution,
    max_pool,
    moving_average,
    reward,
    reward_one_pool,
    RewardUpdate,
    PoolRewardResult,
)

# Transition rules
from .rules import (
    UtxoEnv,
    apply_utxo,
    apply_utxow,
    DelegEnv,
    DelegsEnv,
    apply_deleg,
    apply_pool,
    apply_delpl,
    apply_delegs,
    apply_delrwds,
    apply_delegt,
    LedgerEnv,
    LedgersEnv,
    apply_ledger,
    apply_ledgers,
    EpochEnv,
    EpochSummary,
    apply_epoch,
)

# Chain driver
from .chain import Chain, ApplyResult, AppliedTx, describe_failure
