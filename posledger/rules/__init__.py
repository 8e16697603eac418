"""
Transition rules.

Each rule is a pure function apply_<rule>(env, state, signal) that returns a
fresh post-state or raises TransitionFailure with the rule's predicate
failures. Rules that invoke a sub-rule wrap its failures with the wrapper
failure type of that edge, so the origin of every failure is recoverable:

    LEDGERS -> LEDGER -> UTXOW -> UTXO
                      -> DELEGT -> DELRWDS
                                -> DELEGS -> DELPL -> DELEG
                                                   -> POOL
    EPOCH -> UTXOEP, ACCNT, POOLCLEAN, NEWPC
"""

from .utxo import (
    UtxoEnv,
    apply_utxo,
    utxo_validity,
    consumed,
    produced,
    BadInputsUTxO,
    ExpiredUTxO,
    InputSetEmptyUTxO,
    FeeTooSmallUTxO,
    ValueNotConservedUTxO,
    IncorrectRewardsUTxO,
    MaxTxSizeUTxO,
)
from .utxow import (
    apply_utxow,
    required_signers,
    InvalidWitnessesUTXOW,
    MissingWitnessesUTXOW,
    UnneededWitnessesUTXOW,
    UtxoFailure,
)
from .deleg import (
    DelegEnv,
    DelegsEnv,
    apply_deleg,
    apply_pool,
    apply_delpl,
    apply_delegs,
    apply_delrwds,
    apply_delegt,
    StakeKeyAlreadyRegisteredDELEG,
    StakeKeyNotRegisteredDELEG,
    StakeDelegationImpossibleDELEG,
    StakeKeyNonZeroAccountBalanceDELEG,
    WrongCertificateTypeDELEG,
    StakePoolNotRegisteredOnKeyPOOL,
    StakePoolCostTooLowPOOL,
    StakePoolRetirementWrongEpochPOOL,
    WrongCertificateTypePOOL,
    DelegFailure,
    PoolFailure,
    DelplFailure,
    IncorrectWithdrawalDELRWDS,
    DelegsFailure,
    DelrwdsFailure,
    RegCertWithdrawDELEGT,
    DeregCertNotWithdrawDELEGT,
    DelegateCertNotStakePoolsDELEGT,
    DeregCertRetireOrDelegateDELEGT,
)
from .ledger import (
    LedgerEnv,
    LedgersEnv,
    apply_ledger,
    apply_ledgers,
    UtxowFailure,
    DelegtFailure,
    LedgerFailure,
)
from .epoch import (
    EpochEnv,
    AccountUpdate,
    EpochSummary,
    run_epoch,
    apply_utxoep,
    apply_accnt,
    apply_poolclean,
    apply_newpc,
    apply_epoch,
    ExcessObligationNEWPC,
    NewPcFailure,
)
