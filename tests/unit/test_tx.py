"""
test_tx.py - Unit tests for transactions, certificates and witnesses

Tests:
- Addresses, TxIn and TxOut validation
- Certificates and their authors
- Tx content-addressed identity and immutability
- Fee and size calculation
- Witness construction
"""

import pytest
from dataclasses import FrozenInstanceError
from fractions import Fraction

from posledger import (
    Addr, PtrAddr, Ptr, TxIn, TxOut, Tx, PoolParams,
    RegKey, DeRegKey, Delegate, RegPool, RetirePool,
    GENESIS_ID, make_witness, min_fee, sign_tx, tx_size, verify,
)

from tests.builders import addr, keypair, kh, make_tx, out, pool_params, standard_pparams


class TestAddressesAndOutputs:

    def test_addr_requires_payment(self):
        with pytest.raises(ValueError):
            Addr("")

    def test_addr_stake_optional(self):
        assert Addr(kh("alice")).stake is None
        assert addr("alice", "alice").stake == kh("alice")

    def test_ptr_components_non_negative(self):
        with pytest.raises(ValueError):
            Ptr(-1, 0, 0)

    def test_ptr_addr(self):
        a = PtrAddr(kh("alice"), Ptr(3, 0, 1))
        assert a.ptr.cert_ix == 1

    def test_txout_rejects_negative_coin(self):
        with pytest.raises(ValueError):
            TxOut(addr("alice"), -1)

    def test_txout_rejects_non_address(self):
        with pytest.raises(ValueError):
            TxOut("alice", 10)

    def test_txin_ordering(self):
        assert TxIn("a" * 64, 0) < TxIn("a" * 64, 1) < TxIn("b" * 64, 0)

    def test_txin_rejects_negative_index(self):
        with pytest.raises(ValueError):
            TxIn(GENESIS_ID, -1)


class TestCertificates:

    def test_authors(self):
        params = pool_params("pool")
        assert RegKey(kh("alice")).author == kh("alice")
        assert DeRegKey(kh("alice")).author == kh("alice")
        assert Delegate(kh("alice"), kh("pool")).author == kh("alice")
        assert RegPool(params).author == kh("pool")
        assert RetirePool(kh("pool"), 3).author == kh("pool")

    def test_every_variant_names_its_author(self):
        for variant in (RegKey, DeRegKey, Delegate, RegPool, RetirePool):
            assert isinstance(vars(variant).get("author"), property), variant.__name__

    def test_pool_reward_account_defaults_to_pool_id(self):
        params = PoolParams(kh("pool"), pledge=0, cost=0, margin=Fraction(0))
        assert params.reward_account == kh("pool")

    def test_pool_margin_must_be_unit_interval(self):
        with pytest.raises(ValueError):
            PoolParams(kh("pool"), pledge=0, cost=0, margin=Fraction(3, 2))

    def test_pool_margin_coerced(self):
        params = PoolParams(kh("pool"), pledge=0, cost=0, margin="1/10")
        assert params.margin == Fraction(1, 10)

    def test_retire_epoch_non_negative(self):
        with pytest.raises(ValueError):
            RetirePool(kh("pool"), -1)


class TestTxIdentity:

    def test_tx_id_is_deterministic(self):
        a = make_tx([TxIn(GENESIS_ID, 0)], [out("bob", 10)], fee=5)
        b = make_tx([TxIn(GENESIS_ID, 0)], [out("bob", 10)], fee=5)
        assert a.tx_id == b.tx_id
        assert a == b
        assert hash(a) == hash(b)

    def test_tx_id_depends_on_content(self):
        a = make_tx([TxIn(GENESIS_ID, 0)], [out("bob", 10)], fee=5)
        b = make_tx([TxIn(GENESIS_ID, 0)], [out("bob", 10)], fee=6)
        assert a.tx_id != b.tx_id

    def test_input_order_does_not_matter(self):
        ins = [TxIn(GENESIS_ID, 0), TxIn(GENESIS_ID, 1)]
        assert make_tx(ins, [out("bob", 1)]).tx_id == make_tx(reversed(ins), [out("bob", 1)]).tx_id

    def test_output_order_matters(self):
        ins = [TxIn(GENESIS_ID, 0)]
        a = make_tx(ins, [out("bob", 1), out("carol", 2)])
        b = make_tx(ins, [out("carol", 2), out("bob", 1)])
        assert a.tx_id != b.tx_id

    def test_mismatched_tx_id_rejected(self):
        with pytest.raises(ValueError):
            Tx(inputs={TxIn(GENESIS_ID, 0)}, outputs=(), fee=0, ttl=0, tx_id="f" * 64)

    def test_body_is_immutable(self):
        tx = make_tx([TxIn(GENESIS_ID, 0)], [out("bob", 10)])
        with pytest.raises(FrozenInstanceError):
            tx.fee = 0
        with pytest.raises(TypeError):
            tx.withdrawals[kh("bob")] = 5

    def test_withdrawals_copied(self):
        withdrawals = {kh("alice"): 5}
        tx = make_tx([TxIn(GENESIS_ID, 0)], [], withdrawals=withdrawals)
        withdrawals[kh("alice")] = 6
        assert tx.withdrawals[kh("alice")] == 5

    def test_negative_fee_rejected(self):
        with pytest.raises(ValueError):
            make_tx([TxIn(GENESIS_ID, 0)], [], fee=-1)

    def test_txin_of_output(self):
        tx = make_tx([TxIn(GENESIS_ID, 0)], [out("bob", 10)])
        assert tx.txin(0) == TxIn(tx.tx_id, 0)
        with pytest.raises(IndexError):
            tx.txin(1)


class TestFees:

    def test_size_grows_with_content(self):
        small = make_tx([TxIn(GENESIS_ID, 0)], [out("bob", 10)])
        large = make_tx([TxIn(GENESIS_ID, 0)], [out("bob", 10), out("carol", 10)])
        assert 0 < tx_size(small) < tx_size(large)

    def test_min_fee_linear_in_size(self):
        tx = make_tx([TxIn(GENESIS_ID, 0)], [out("bob", 10)])
        pp = standard_pparams(minfee_a=3, minfee_b=7)
        assert min_fee(pp, tx) == 3 * tx_size(tx) + 7


class TestWitnesses:

    def test_witness_signs_tx_id(self):
        tx = make_tx([TxIn(GENESIS_ID, 0)], [out("bob", 10)])
        wit = make_witness(keypair("alice"), tx)
        assert wit.key_hash == kh("alice")
        assert verify(wit.vkey, bytes.fromhex(tx.tx_id), wit.signature)

    def test_sign_tx_collapses_duplicates(self):
        tx = make_tx([TxIn(GENESIS_ID, 0)], [out("bob", 10)])
        txw = sign_tx(tx, [keypair("alice"), keypair("alice"), keypair("bob")])
        assert txw.signers() == {kh("alice"), kh("bob")}
        assert txw.tx_id == tx.tx_id
