"""
Shared fixtures: deterministic wallet keys derived from a seed string.
"""

from __future__ import annotations

import pytest

from fixedscript.crypto import sha256
from fixedscript.engine import init
from fixedscript.networks import Network
from fixedscript.psbt.container import BitGoPsbt
from fixedscript.wallet.bip32 import ExtendedKey
from fixedscript.wallet.keys import RootWalletKeys

PREV_TXID = "11" * 32


def xprvs_from_seed(seed: str) -> list[ExtendedKey]:
    """(user, backup, bitgo) root xprvs for ``seed``."""
    return [ExtendedKey.from_seed(sha256(f"{seed}/{i}".encode())) for i in range(3)]


def wallet_from_seed(seed: str) -> RootWalletKeys:
    return RootWalletKeys([key.neutered() for key in xprvs_from_seed(seed)])


@pytest.fixture
def engine():
    """Engine handle with default configuration."""
    return init()


@pytest.fixture
def xprvs():
    """Root private keys of the "test" wallet."""
    return xprvs_from_seed("test")


@pytest.fixture
def wallet(xprvs):
    """Public wallet keys of the "test" wallet."""
    return RootWalletKeys([key.neutered() for key in xprvs])


@pytest.fixture
def lol_wallet():
    """Public wallet keys of the "lol" wallet (fixed script vectors)."""
    return wallet_from_seed("lol")


@pytest.fixture
def other_wallet():
    """A second, unrelated wallet."""
    return wallet_from_seed("other")


@pytest.fixture
def user_xprv(xprvs):
    return xprvs[0]


@pytest.fixture
def backup_xprv(xprvs):
    return xprvs[1]


@pytest.fixture
def bitgo_xprv(xprvs):
    return xprvs[2]


@pytest.fixture
def empty_psbt(wallet, engine):
    """Empty bitcoin PSBT bound to the "test" wallet."""
    return BitGoPsbt.create_empty(Network.BITCOIN, wallet, engine=engine)
