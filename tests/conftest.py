"""
conftest.py - Shared pytest fixtures for posledger tests

Provides common fixtures used across unit, conformance and functional tests:
- Standard protocol parameters
- A genesis UTxO funding alice
- Chains at genesis, and with a registered pool and delegators
"""

import pytest

from posledger import Chain, GENESIS_ID, TxIn, RegKey, RegPool, Delegate, ApplyResult

from tests.builders import GENESIS_RESERVES, kh, out, pool_params, standard_pparams, spend


@pytest.fixture
def pparams():
    return standard_pparams()


@pytest.fixture
def genesis_outputs():
    """Alice 10000, Bob 5000."""
    return [out("alice", 10_000), out("bob", 5_000)]


@pytest.fixture
def alice_in():
    return TxIn(GENESIS_ID, 0)


@pytest.fixture
def bob_in():
    return TxIn(GENESIS_ID, 1)


@pytest.fixture
def chain(pparams, genesis_outputs):
    """A quiet chain at genesis."""
    return Chain("test", pparams, genesis_outputs, reserves=GENESIS_RESERVES, verbose=False)


@pytest.fixture
def staked_chain(pparams):
    """
    A chain in epoch 0 with one pool and two delegators.

    - "pool" is registered with no pledge, cost or margin, rewards to "pool"
    - alice (6200) and bob (4200) hold staked outputs, registered and
      delegated to "pool"
    """
    chain = Chain(
        "staked",
        pparams,
        [out("alice", 6_500), out("bob", 4_500), out("operator", 1_000)],
        reserves=GENESIS_RESERVES,
        verbose=False,
    )
    results = [
        chain.submit(spend(chain, "operator", certs=[
            RegKey(kh("pool")),
            RegPool(pool_params("pool")),
        ])),
        chain.submit(spend(chain, "alice", stake="alice", certs=[
            RegKey(kh("alice")),
            Delegate(kh("alice"), kh("pool")),
        ])),
        chain.submit(spend(chain, "bob", stake="bob", certs=[
            RegKey(kh("bob")),
            Delegate(kh("bob"), kh("pool")),
        ])),
    ]
    assert results == [ApplyResult.APPLIED] * 3, chain.last_failures
    return chain
