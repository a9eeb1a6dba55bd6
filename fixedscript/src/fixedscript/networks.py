"""
Supported UTXO networks and their address and script capabilities.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class NetworkParams:
    p2pkh_version: bytes
    p2sh_version: bytes
    bech32_hrp: str | None
    mainnet: bool
    segwit: bool = False
    taproot: bool = False
    # BIP143-style sighash with SIGHASH_FORKID (Bitcoin Cash family, Bitcoin Gold)
    fork_id: int | None = None
    zcash: bool = False


class Network(str, Enum):
    BITCOIN = "bitcoin"
    TESTNET = "testnet"
    LITECOIN = "litecoin"
    LITECOIN_TESTNET = "litecoinTest"
    DOGECOIN = "dogecoin"
    DOGECOIN_TESTNET = "dogecoinTest"
    BITCOIN_CASH = "bitcoincash"
    BITCOIN_CASH_TESTNET = "bitcoincashTestnet"
    ECASH = "ecash"
    ECASH_TESTNET = "ecashTest"
    BITCOIN_GOLD = "bitcoingold"
    BITCOIN_GOLD_TESTNET = "bitcoingoldTestnet"
    DASH = "dash"
    DASH_TESTNET = "dashTest"
    ZCASH = "zcash"
    ZCASH_TESTNET = "zcashTest"

    @property
    def params(self) -> NetworkParams:
        return _PARAMS[self]

    @property
    def is_mainnet(self) -> bool:
        return self.params.mainnet

    @property
    def is_bitcoin(self) -> bool:
        return self in (Network.BITCOIN, Network.TESTNET)

    @property
    def is_zcash(self) -> bool:
        return self.params.zcash

    @property
    def is_dash(self) -> bool:
        return self in (Network.DASH, Network.DASH_TESTNET)

    @property
    def supports_segwit(self) -> bool:
        return self.params.segwit

    @property
    def supports_taproot(self) -> bool:
        return self.params.taproot

    @property
    def fork_id(self) -> int | None:
        return self.params.fork_id

    @classmethod
    def from_name(cls, name: str) -> Network:
        try:
            return cls(name)
        except ValueError:
            raise ValueError(f"Unknown network: {name}") from None


_PARAMS: dict[Network, NetworkParams] = {
    Network.BITCOIN: NetworkParams(b"\x00", b"\x05", "bc", True, segwit=True, taproot=True),
    Network.TESTNET: NetworkParams(b"\x6f", b"\xc4", "tb", False, segwit=True, taproot=True),
    Network.LITECOIN: NetworkParams(b"\x30", b"\x32", "ltc", True, segwit=True),
    Network.LITECOIN_TESTNET: NetworkParams(b"\x6f", b"\x3a", "tltc", False, segwit=True),
    Network.DOGECOIN: NetworkParams(b"\x1e", b"\x16", None, True),
    Network.DOGECOIN_TESTNET: NetworkParams(b"\x71", b"\xc4", None, False),
    Network.BITCOIN_CASH: NetworkParams(b"\x00", b"\x05", None, True, fork_id=0),
    Network.BITCOIN_CASH_TESTNET: NetworkParams(b"\x6f", b"\xc4", None, False, fork_id=0),
    Network.ECASH: NetworkParams(b"\x00", b"\x05", None, True, fork_id=0),
    Network.ECASH_TESTNET: NetworkParams(b"\x6f", b"\xc4", None, False, fork_id=0),
    Network.BITCOIN_GOLD: NetworkParams(b"\x26", b"\x17", "btg", True, segwit=True, fork_id=79),
    Network.BITCOIN_GOLD_TESTNET: NetworkParams(
        b"\x6f", b"\xc4", "tbtg", False, segwit=True, fork_id=79
    ),
    Network.DASH: NetworkParams(b"\x4c", b"\x10", None, True),
    Network.DASH_TESTNET: NetworkParams(b"\x8c", b"\x13", None, False),
    Network.ZCASH: NetworkParams(b"\x1c\xb8", b"\x1c\xbd", None, True, zcash=True),
    Network.ZCASH_TESTNET: NetworkParams(b"\x1d\x25", b"\x1c\xba", None, False, zcash=True),
}
