"""
Explicit engine handle.

``init()`` returns an :class:`Engine` carrying the configuration; containers
created through it keep a reference to the handle instead of relying on
process-wide state.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from fixedscript.config import EngineConfig
from fixedscript.errors import InvalidInitToken
from fixedscript.networks import Network
from fixedscript.wallet.bip32 import ExtendedKey
from fixedscript.wallet.keys import RootWalletKeys

if TYPE_CHECKING:
    from fixedscript.psbt.container import BitGoPsbt


class Engine:
    def __init__(self, config: EngineConfig | None = None):
        self.config = config or EngineConfig()

    def root_wallet_keys(
        self,
        xpubs: list[ExtendedKey] | list[str],
        derivation_prefixes: list[str] | None = None,
    ) -> RootWalletKeys:
        keys = [ExtendedKey.from_base58(x) if isinstance(x, str) else x for x in xpubs]
        return RootWalletKeys(keys, derivation_prefixes, self.config.derived_key_cache_size)

    def create_empty(self, network: Network, wallet: RootWalletKeys, **options) -> BitGoPsbt:
        from fixedscript.psbt.container import BitGoPsbt

        return BitGoPsbt.create_empty(network, wallet, engine=self, **options)

    def deserialize(self, data: bytes, network: Network) -> BitGoPsbt:
        from fixedscript.psbt.container import BitGoPsbt

        return BitGoPsbt.deserialize(data, network, engine=self)

    def __repr__(self) -> str:
        return f"Engine(cache_size={self.config.derived_key_cache_size})"


def init(config: EngineConfig | None = None) -> Engine:
    """Create an engine handle to thread through subsequent calls."""
    engine = Engine(config)
    logger.debug(f"Initialized {engine}")
    return engine


def ensure_engine(engine: Engine | None) -> Engine:
    if engine is None:
        return Engine()
    if not isinstance(engine, Engine):
        raise InvalidInitToken(f"Expected an Engine handle from init(), got {type(engine).__name__}")
    return engine
