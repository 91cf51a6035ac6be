"""
Shared pytest fixtures for the Liberdus client test suite.
"""

import pytest

from liberdus_core.account import Session
from liberdus_core.wallet import Wallet

NETID = "2f4b9f72089bbfce9f89d3d8e76086daab6ae6f416887c809aab26abb6e5703b"

# Well-known development keys with published addresses.
ALICE_SECRET = "ac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
ALICE_ADDRESS = "f39fd6e51aad88f6f4ce6ab8827279cfffb92266"
BOB_SECRET = "59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"
BOB_ADDRESS = "70997970c51812dc3a010c7d01b50e0d17dc79c8"
CAROL_SECRET = "4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
CAROL_ADDRESS = "2c7536e3605d9c16a7a3d7b1898e529396a65c23"


@pytest.fixture
def netid():
    return NETID


@pytest.fixture
def alice_wallet():
    """Deterministic wallet for Alice."""
    return Wallet.import_secret(ALICE_SECRET, "alice", NETID)


@pytest.fixture
def bob_wallet():
    """Deterministic wallet for Bob."""
    return Wallet.import_secret(BOB_SECRET, "bob", NETID)


@pytest.fixture
def carol_wallet():
    """Deterministic wallet for Carol."""
    return Wallet.import_secret(CAROL_SECRET, "carol", NETID)


@pytest.fixture
def wallet():
    """Fresh random wallet."""
    return Wallet.generate("fresh", NETID)


@pytest.fixture
def alice_session(alice_wallet):
    """Signed-in session for Alice with empty conversation state."""
    return Session(alice_wallet)
