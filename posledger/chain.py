"""
chain.py - Stateful Chain Driver

The Chain class is the one place where ledger state changes. It holds the
current EpochState, feeds submitted transactions through LEDGER, fires EPOCH
at every epoch boundary crossed by advance_slot(), and keeps the audit trail.

Key responsibilities:
    - Submits transactions atomically (a rejected transaction changes nothing)
    - Idempotent submission: a transaction id already applied is not re-applied
    - Counts blocks produced per pool for the reward calculation
    - Stages governance parameter updates for the next epoch boundary
    - Checks the conservation law after every transition
    - clone() and replay() for reproducing state
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from .core import (
    Coin, Epoch, Ix, KeyHash, Slot, TxId,
    ConservationViolation, InvalidParameters, LedgerError,
    PredicateFailure, TransitionFailure,
    epoch_from_slot, first_slot,
)
from .crypto import Verifier, verify as ed25519_verify
from .pparams import PParams
from .rules.epoch import EpochEnv, EpochSummary, run_epoch
from .rules.ledger import LedgerEnv, LedgersEnv, apply_ledger, apply_ledgers
from .state import (
    AccountState, DState, EpochState, PState, UTxOState,
    genesis_state, total_value,
)
from .tx import TxIn, TxOut, TxWits


class ApplyResult(Enum):
    """Outcome of submitting a transaction or block."""
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


@dataclass(frozen=True, slots=True)
class AppliedTx:
    """
    Audit record of an applied transaction.

    Attributes:
        sequence: Position in the chain's transaction log
        slot: Slot in which it was applied
        tx_ix: Position within the slot
        tx: The witnessed transaction
    """
    sequence: int
    slot: Slot
    tx_ix: Ix
    tx: TxWits

    @property
    def tx_id(self) -> TxId:
        return self.tx.tx_id

    def __repr__(self) -> str:
        return f"AppliedTx(#{self.sequence} slot={self.slot} ix={self.tx_ix} {self.tx_id[:8]})"


def describe_failure(failure: PredicateFailure) -> str:
    """One-line description: rule path, then the innermost failure."""
    path = " > ".join(failure.provenance())
    return f"{path}: {failure.root()!r}"


class Chain:
    """
    A single chain of ledger states.

    Thread Safety:
        Not thread-safe. Each thread should maintain its own Chain instance.

    Example:
        alice = KeyPair.from_seed("alice")
        chain = Chain("main", pparams, [TxOut(Addr(alice.key_hash), 10_000)], reserves=1_000_000)
        tx = Tx(inputs={TxIn(GENESIS_ID, 0)}, outputs=[...], fee=600, ttl=10)
        result = chain.submit(sign_tx(tx, [alice]))
        chain.advance_slot(100)   # crosses into epoch 1
    """

    def __init__(
        self,
        name: str,
        pparams: PParams,
        genesis_outputs: Iterable[TxOut],
        reserves: Coin,
        treasury: Coin = 0,
        verbose: bool = True,
        verify: Verifier = ed25519_verify,
    ):
        """
        Create a chain at slot 0 of epoch 0.

        Args:
            name: Chain identifier
            pparams: Parameters of epoch 0
            genesis_outputs: Initial UTxO, referenced as TxIn(GENESIS_ID, i)
            reserves: Coin not yet in circulation
            treasury: Initial treasury
            verbose: Print one line per outcome (default: True)
            verify: Signature verification function
        """
        self.name = name
        self.verbose = verbose
        self.verify = verify
        self._genesis = (pparams, tuple(genesis_outputs), reserves, treasury)
        self.state: EpochState = genesis_state(pparams, self._genesis[1], reserves, treasury)
        self.total_supply: Coin = total_value(self.state)

        self._slot: Slot = 0
        self._next_tx_ix: Ix = 0
        self.seen_tx_ids: Set[TxId] = set()
        self.transaction_log: List[AppliedTx] = []
        self.epoch_log: List[EpochSummary] = []
        self.last_failures: Tuple[PredicateFailure, ...] = ()
        self._production: Dict[KeyHash, int] = defaultdict(int)
        self._pending_pparams: Optional[PParams] = None
        # Every accepted input, in order, for replay()
        self._journal: List[Tuple[str, Any]] = []

    # ========================================================================
    # READ-ONLY VIEWS
    # ========================================================================

    @property
    def current_slot(self) -> Slot:
        return self._slot

    @property
    def current_epoch(self) -> Epoch:
        return epoch_from_slot(self._slot, self.pparams.slots_per_epoch)

    @property
    def pparams(self) -> PParams:
        return self.state.pparams

    @property
    def utxo_state(self) -> UTxOState:
        return self.state.ledger.utxo_state

    @property
    def utxo(self) -> Mapping[TxIn, TxOut]:
        return self.state.ledger.utxo_state.utxo

    @property
    def dstate(self) -> DState:
        return self.state.ledger.dstate

    @property
    def pstate(self) -> PState:
        return self.state.ledger.pstate

    @property
    def account(self) -> AccountState:
        return self.state.account

    @property
    def production(self) -> Dict[KeyHash, int]:
        """Blocks recorded per pool in the current epoch."""
        return dict(self._production)

    @property
    def pending_pparams(self) -> Optional[PParams]:
        return self._pending_pparams

    def outputs_of(self, payment: KeyHash) -> Dict[TxIn, TxOut]:
        """Unspent outputs whose payment key is `payment`."""
        return {i: o for i, o in self.utxo.items() if o.addr.payment == payment}

    def coin_of(self, payment: KeyHash) -> Coin:
        return sum(o.coin for o in self.outputs_of(payment).values())

    def reward_balance(self, credential: KeyHash) -> Coin:
        return self.dstate.rewards.get(credential, 0)

    # ========================================================================
    # CONSERVATION
    # ========================================================================

    def verify_conservation(self) -> Dict[str, Any]:
        """
        Verify that the total money supply is unchanged since genesis.

        Returns:
            Dict with keys:
            - 'valid': bool - True if the conservation law holds
            - 'expected': Coin - Total supply at genesis
            - 'actual': Coin - Sum of every Coin-valued field now
            - 'breakdown': Dict[str, Coin] - The individual pots
        """
        us = self.utxo_state
        acnt = self.account
        breakdown = {
            'circulation': sum(o.coin for o in us.utxo.values()),
            'deposits': us.deposits,
            'fees': us.fees,
            'treasury': acnt.treasury,
            'reserves': acnt.reserves,
            'reward_pool': acnt.reward_pool,
            'rewards': sum(self.dstate.rewards.values()),
        }
        actual = sum(breakdown.values())
        return {
            'valid': actual == self.total_supply,
            'expected': self.total_supply,
            'actual': actual,
            'breakdown': breakdown,
        }

    def _commit(self, new_state: EpochState) -> None:
        actual = total_value(new_state)
        if actual != self.total_supply:
            raise ConservationViolation(
                f"Total supply changed from {self.total_supply} to {actual}"
            )
        self.state = new_state

    # ========================================================================
    # TRANSACTIONS (Mutating)
    # ========================================================================

    def submit(self, txw: TxWits) -> ApplyResult:
        """
        Apply one witnessed transaction in the current slot.

        Returns:
            ApplyResult.APPLIED if successful
            ApplyResult.ALREADY_APPLIED if a transaction with the same id was applied
            ApplyResult.REJECTED if LEDGER failed; the failures are in last_failures
        """
        if txw.tx_id in self.seen_tx_ids:
            if self.verbose:
                print(f"⚠️  ALREADY_APPLIED: tx_id={txw.tx_id}")
            return ApplyResult.ALREADY_APPLIED

        env = LedgerEnv(
            slot=self._slot,
            tx_ix=self._next_tx_ix,
            pparams=self.pparams,
            verify=self.verify,
        )
        try:
            ledger = apply_ledger(env, self.state.ledger, txw)
        except TransitionFailure as exc:
            return self._reject(txw.tx_id, exc.failures)

        self._commit(EpochState(account=self.state.account, ledger=ledger, pparams=self.pparams))
        self._log(txw, self._next_tx_ix)
        self._next_tx_ix += 1
        self._journal.append(("tx", txw))
        if self.verbose:
            print(f"✓ APPLIED: tx_id={txw.tx_id} slot={self._slot} fee={txw.body.fee}")
        return ApplyResult.APPLIED

    def submit_block(self, txs: Iterable[TxWits], issuer: Optional[KeyHash] = None) -> ApplyResult:
        """
        Apply a block's transactions atomically in the current slot.

        Either every transaction applies or none does. A block must be the
        first content of its slot. If issuer is given, the block is counted
        towards that pool's production.
        """
        txs = tuple(txs)
        if self._next_tx_ix != 0:
            raise LedgerError(f"Slot {self._slot} already has transactions")
        env = LedgersEnv(slot=self._slot, pparams=self.pparams, verify=self.verify)
        try:
            ledger = apply_ledgers(env, self.state.ledger, txs)
        except TransitionFailure as exc:
            return self._reject(f"block@{self._slot}", exc.failures)

        self._commit(EpochState(account=self.state.account, ledger=ledger, pparams=self.pparams))
        for tx_ix, txw in enumerate(txs):
            self._log(txw, tx_ix)
        self._next_tx_ix = len(txs)
        self._journal.append(("block", txs))
        if issuer is not None:
            self.record_block(issuer)
        if self.verbose:
            print(f"✓ APPLIED: block slot={self._slot} txs={len(txs)}")
        return ApplyResult.APPLIED

    def _log(self, txw: TxWits, tx_ix: Ix) -> None:
        self.seen_tx_ids.add(txw.tx_id)
        self.transaction_log.append(
            AppliedTx(len(self.transaction_log), self._slot, tx_ix, txw)
        )

    def _reject(self, label: str, failures: Tuple[PredicateFailure, ...]) -> ApplyResult:
        self.last_failures = failures
        if self.verbose:
            reasons = "; ".join(describe_failure(f) for f in failures)
            print(f"✗ REJECTED: {label}: {reasons}")
        return ApplyResult.REJECTED

    # ========================================================================
    # BLOCK PRODUCTION AND GOVERNANCE (Mutating)
    # ========================================================================

    def record_block(self, pool_id: KeyHash) -> None:
        """Count one block produced by pool_id in the current epoch."""
        self._production[pool_id] += 1
        self._journal.append(("produce", pool_id))

    def propose_pparams(self, pparams: Union[PParams, Mapping[str, Any]]) -> PParams:
        """
        Stage protocol parameters for the next epoch boundary.

        Accepts a PParams or a governance-supplied dict (see PParams.from_dict).
        A later proposal in the same epoch replaces an earlier one.

        Raises:
            InvalidParameters: If the parameters are malformed or change
                slots_per_epoch (epoch numbering is fixed at genesis)
        """
        if not isinstance(pparams, PParams):
            try:
                pparams = PParams.from_dict(pparams)
            except (TypeError, ValueError) as exc:
                raise InvalidParameters(str(exc)) from exc
        if pparams.slots_per_epoch != self.pparams.slots_per_epoch:
            raise InvalidParameters("slots_per_epoch cannot change after genesis")
        self._pending_pparams = pparams
        self._journal.append(("pparams", pparams))
        if self.verbose:
            print(f"📝 STAGED: pparams for epoch {self.current_epoch + 1}")
        return pparams

    # ========================================================================
    # TIME MANAGEMENT (Mutating)
    # ========================================================================

    def advance_slot(self, new_slot: Slot) -> List[EpochSummary]:
        """
        Move the chain's clock forward to new_slot.

        Every epoch boundary crossed runs EPOCH at the first slot of the new
        epoch, with the production recorded for the epoch that ended and any
        staged parameters.

        Returns:
            Summaries of the epoch boundaries crossed, in order

        Raises:
            ValueError: If new_slot is before the current slot
            FatalTransitionFailure: If NEWPC fails; the chain must halt
        """
        if new_slot < self._slot:
            raise ValueError(f"Cannot move slot backwards: {new_slot} < {self._slot}")

        start_slot = self._slot
        summaries = []
        spe = self.pparams.slots_per_epoch
        target_epoch = epoch_from_slot(new_slot, spe)
        for epoch in range(self.current_epoch + 1, target_epoch + 1):
            env = EpochEnv(
                slot=first_slot(epoch, spe),
                production=dict(self._production),
                new_pparams=self._pending_pparams,
            )
            new_state, summary = run_epoch(env, self.state, epoch)
            self._commit(new_state)
            self._slot = env.slot
            self._production = defaultdict(int)
            self._pending_pparams = None
            self.epoch_log.append(summary)
            summaries.append(summary)
            if self.verbose:
                print(
                    f"⏱  EPOCH {epoch}: expansion={summary.expansion} "
                    f"treasury+={summary.treasury_cut} paid={summary.paid} "
                    f"retired={list(summary.retired)}"
                )

        if new_slot != start_slot:
            self._next_tx_ix = 0
        self._slot = new_slot
        self._journal.append(("slot", new_slot))
        return summaries

    # ========================================================================
    # CLONE AND REPLAY
    # ========================================================================

    def clone(self) -> Chain:
        """
        Create an independent copy of this chain.

        States are immutable and shared; the logs and counters are copied.
        """
        cloned = Chain.__new__(Chain)
        cloned.name = self.name
        cloned.verbose = self.verbose
        cloned.verify = self.verify
        cloned._genesis = self._genesis
        cloned.state = self.state
        cloned.total_supply = self.total_supply
        cloned._slot = self._slot
        cloned._next_tx_ix = self._next_tx_ix
        cloned.seen_tx_ids = set(self.seen_tx_ids)
        cloned.transaction_log = list(self.transaction_log)
        cloned.epoch_log = list(self.epoch_log)
        cloned.last_failures = self.last_failures
        cloned._production = defaultdict(int, self._production)
        cloned._pending_pparams = self._pending_pparams
        cloned._journal = list(self._journal)
        return cloned

    def replay(self) -> Chain:
        """
        Create a new chain by re-running every accepted input from genesis.

        Returns:
            New Chain whose state equals this chain's state

        Raises:
            LedgerError: If a journaled transaction or block is rejected on replay
        """
        pparams, outputs, reserves, treasury = self._genesis
        replayed = Chain(
            name=f"{self.name}_replayed",
            pparams=pparams,
            genesis_outputs=outputs,
            reserves=reserves,
            treasury=treasury,
            verbose=self.verbose,
            verify=self.verify,
        )
        for kind, payload in self._journal:
            if kind == "tx":
                if replayed.submit(payload) != ApplyResult.APPLIED:
                    raise LedgerError(f"Replay failed at tx {payload.tx_id}")
            elif kind == "block":
                if replayed.submit_block(payload) != ApplyResult.APPLIED:
                    raise LedgerError(f"Replay failed at block in slot {replayed.current_slot}")
            elif kind == "produce":
                replayed.record_block(payload)
            elif kind == "pparams":
                replayed.propose_pparams(payload)
            elif kind == "slot":
                replayed.advance_slot(payload)
        return replayed
