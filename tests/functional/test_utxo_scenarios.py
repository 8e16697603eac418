"""
test_utxo_scenarios.py - End-to-end payment and staking-address scenarios

Tests:
- Chains of payments spending freshly created outputs
- Double spends inside a block
- Transactions spending outputs of several owners
- Size-dependent fees and the maximum transaction size
- Pointer addresses: stake that follows a registration certificate
- Exact reward withdrawals
"""

from posledger import (
    ApplyResult, DeRegKey, Delegate, Ptr, PtrAddr, RegKey, RegPool, TxOut,
)
from posledger.rewards import active_stake, stake_credential
from posledger.rules.utxo import (
    BadInputsUTxO, FeeTooSmallUTxO, IncorrectRewardsUTxO, MaxTxSizeUTxO,
)
from posledger.rules.utxow import MissingWitnessesUTXOW
from posledger.tx import min_fee, tx_size

from tests.builders import (
    kh, make_tx, out, pool_params, scenario_chain, sign_required, signed, spend,
    standard_pparams,
)


def balanced(inputs, owner, pparams):
    """
    A body returning everything but the fee to owner, with the smallest fee
    that covers its own size.
    """
    total = sum(o.coin for o in inputs.values())
    fee = 0
    while True:
        body = make_tx(inputs, [out(owner, total - fee)], fee=fee)
        needed = min_fee(pparams, body)
        if needed <= fee:
            return body
        fee = needed


class TestPaymentChains:

    def test_spend_fresh_output(self):
        chain = scenario_chain()
        first = spend(chain, "alice", [out("bob", 3_000)])
        assert chain.submit(first) == ApplyResult.APPLIED

        fresh = first.body.txin(0)
        assert chain.utxo[fresh] == out("bob", 3_000)
        second = sign_required(make_tx([fresh], [out("carol", 2_800)]), chain.utxo)
        assert chain.submit(second) == ApplyResult.APPLIED

        assert fresh not in chain.utxo
        assert chain.utxo[second.body.txin(0)] == out("carol", 2_800)
        assert chain.coin_of(kh("carol")) == 12_800
        assert chain.utxo_state.fees == 400

    def test_payment_chain_within_block(self):
        chain = scenario_chain()
        first = spend(chain, "alice", [out("bob", 3_000)])
        second = sign_required(make_tx([first.body.txin(0)], [out("carol", 2_800)]), {
            first.body.txin(0): out("bob", 3_000),
        })
        assert chain.submit_block([first, second]) == ApplyResult.APPLIED
        assert [e.tx_ix for e in chain.transaction_log] == [0, 1]

    def test_double_spend_in_block_rejected(self):
        chain = scenario_chain()
        inputs = chain.outputs_of(kh("alice"))
        to_bob = sign_required(make_tx(inputs, [out("bob", 19_800)]), chain.utxo)
        to_carol = sign_required(make_tx(inputs, [out("carol", 19_800)]), chain.utxo)

        assert chain.submit_block([to_bob, to_carol]) == ApplyResult.REJECTED
        (txin,) = inputs
        assert {f.tx_ix for f in chain.last_failures} == {1}
        # the spent input no longer requires alice's witness either
        assert BadInputsUTxO((txin,)) in [f.root() for f in chain.last_failures]

    def test_spent_output_cannot_be_reused(self):
        chain = scenario_chain()
        inputs = chain.outputs_of(kh("alice"))
        chain.submit(spend(chain, "alice", [out("bob", 1_000)]))
        replay = sign_required(make_tx(inputs, [out("carol", 19_800)]), {
            txin: out("alice", 20_000) for txin in inputs
        })
        assert chain.submit(replay) == ApplyResult.REJECTED


class TestSharedTransactions:

    def _shared(self, chain):
        inputs = {**chain.outputs_of(kh("alice")), **chain.outputs_of(kh("bob"))}
        return make_tx(inputs, [out("carol", 34_800)])

    def test_needs_every_owner(self):
        chain = scenario_chain()
        body = self._shared(chain)
        assert chain.submit(signed(body, "alice")) == ApplyResult.REJECTED
        assert chain.last_failures[0].root() == MissingWitnessesUTXOW((kh("bob"),))

    def test_applies_with_every_owner(self):
        chain = scenario_chain()
        body = self._shared(chain)
        assert chain.submit(signed(body, "alice", "bob")) == ApplyResult.APPLIED
        assert chain.coin_of(kh("alice")) == 0
        assert chain.coin_of(kh("bob")) == 0
        assert chain.coin_of(kh("carol")) == 44_800


class TestSizeDependentFees:

    def test_smallest_covering_fee_accepted(self):
        pp = standard_pparams(minfee_a=2)
        chain = scenario_chain(pp)
        body = balanced(chain.outputs_of(kh("alice")), "alice", pp)
        assert body.fee == min_fee(pp, body) == 2 * tx_size(body) + 100
        assert chain.submit(sign_required(body, chain.utxo)) == ApplyResult.APPLIED

    def test_flat_fee_too_small(self):
        pp = standard_pparams(minfee_a=2)
        chain = scenario_chain(pp)
        inputs = chain.outputs_of(kh("alice"))
        body = make_tx(inputs, [out("alice", 19_900)], fee=100)
        assert chain.submit(sign_required(body, chain.utxo)) == ApplyResult.REJECTED
        assert chain.last_failures[0].root() == FeeTooSmallUTxO(min_fee(pp, body), 100)

    def test_maximum_size(self):
        pp = standard_pparams(max_tx_size=400)
        chain = scenario_chain(pp)
        inputs = chain.outputs_of(kh("alice"))

        small = make_tx(inputs, [out("alice", 19_800)])
        assert tx_size(small) <= 400
        large = make_tx(inputs, [out(n, 3_960) for n in ("a", "b", "c", "d", "e")])
        size = tx_size(large)
        assert size > 400

        assert chain.submit(sign_required(large, chain.utxo)) == ApplyResult.REJECTED
        assert chain.last_failures[0].root() == MaxTxSizeUTxO(size, 400)
        assert chain.submit(sign_required(small, chain.utxo)) == ApplyResult.APPLIED


class TestPointerAddresses:

    def test_pointer_stake_follows_registration(self):
        chain = scenario_chain()
        ptr = Ptr(0, 0, 0)
        held = TxOut(PtrAddr(kh("dave"), ptr), 4_000)

        # carol's registration is the first certificate of the first transaction
        assert chain.submit(spend(chain, "carol", [held], certs=[RegKey(kh("carol"))])) == ApplyResult.APPLIED
        assert chain.dstate.ptrs[ptr] == kh("carol")
        assert stake_credential(held.addr, chain.dstate.ptrs) == kh("carol")
        assert active_stake(chain.utxo, chain.dstate) == {kh("carol"): 4_000}

        assert chain.submit(spend(chain, "p1", certs=[RegPool(pool_params("p1"))])) == ApplyResult.APPLIED
        assert chain.submit(spend(chain, "carol", certs=[Delegate(kh("carol"), kh("p1"))])) == ApplyResult.APPLIED
        for _ in range(5):
            chain.record_block(kh("p1"))
        chain.advance_slot(100)

        # carol holds nothing at a base address of her own, yet earns
        assert chain.reward_balance(kh("carol")) > 0

        earned = chain.reward_balance(kh("carol"))
        result = chain.submit(spend(chain, "carol", certs=[DeRegKey(kh("carol"))], withdrawals={kh("carol"): earned}))
        assert result == ApplyResult.APPLIED
        assert ptr not in chain.dstate.ptrs
        assert stake_credential(held.addr, chain.dstate.ptrs) is None
        assert active_stake(chain.utxo, chain.dstate) == {}

    def test_dangling_pointer_output_is_spendable(self):
        chain = scenario_chain()
        held = TxOut(PtrAddr(kh("dave"), Ptr(7, 7, 7)), 1_000)
        first = spend(chain, "alice", [held])
        chain.submit(first)

        body = make_tx([first.body.txin(0)], [out("dave", 800)])
        assert chain.submit(sign_required(body, chain.utxo)) == ApplyResult.APPLIED
        assert chain.coin_of(kh("dave")) == 800


class TestWithdrawals:

    def _earning(self):
        chain = scenario_chain()
        chain.submit(spend(chain, "p1", certs=[RegPool(pool_params("p1"))]))
        chain.submit(spend(chain, "alice", stake="alice", certs=[
            RegKey(kh("alice")), Delegate(kh("alice"), kh("p1")),
        ]))
        for _ in range(5):
            chain.record_block(kh("p1"))
        chain.advance_slot(100)
        return chain

    def test_partial_withdrawal_rejected(self):
        chain = self._earning()
        earned = chain.reward_balance(kh("alice"))
        result = chain.submit(spend(chain, "alice", withdrawals={kh("alice"): earned - 1}))
        assert result == ApplyResult.REJECTED
        assert chain.last_failures[0].root() == IncorrectRewardsUTxO((kh("alice"),))

    def test_withdrawal_needs_account_signature(self):
        chain = self._earning()
        earned = chain.reward_balance(kh("alice"))
        inputs = chain.outputs_of(kh("bob"))
        body = make_tx(inputs, [out("bob", 15_000 + earned - 200)], withdrawals={kh("alice"): earned})
        assert chain.submit(signed(body, "bob")) == ApplyResult.REJECTED
        assert chain.last_failures[0].root() == MissingWitnessesUTXOW((kh("alice"),))
        assert chain.submit(signed(body, "alice", "bob")) == ApplyResult.APPLIED
        assert chain.reward_balance(kh("alice")) == 0
