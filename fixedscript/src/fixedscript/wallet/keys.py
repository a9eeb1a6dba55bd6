"""
The three-key wallet: user, backup and bitgo extended keys with their
derivation prefixes.
"""

from __future__ import annotations

from loguru import logger

from fixedscript.constants import DERIVED_KEY_CACHE_SIZE, HARDENED_OFFSET
from fixedscript.wallet.bip32 import ExtendedKey, parse_path
from fixedscript.wallet.chains import Chain, KeyRole, ScriptId

DEFAULT_DERIVATION_PREFIX = "m/0/0"


class RootWalletKeys:
    """
    Root keys of a 2-of-3 wallet.

    Wallet scripts at (chain, index) use the keys derived at
    ``prefix/chain/index`` for each of the three keys.
    """

    def __init__(
        self,
        xpubs: list[ExtendedKey] | tuple[ExtendedKey, ...],
        derivation_prefixes: list[str] | None = None,
        cache_size: int = DERIVED_KEY_CACHE_SIZE,
    ):
        if len(xpubs) != 3:
            raise ValueError(f"Expected 3 wallet keys, got {len(xpubs)}")
        if derivation_prefixes is None:
            derivation_prefixes = [DEFAULT_DERIVATION_PREFIX] * 3
        if len(derivation_prefixes) != 3:
            raise ValueError(f"Expected 3 derivation prefixes, got {len(derivation_prefixes)}")

        self._xpubs = tuple(xpubs)
        self._prefixes = tuple(derivation_prefixes)
        self._cache_size = cache_size
        self._cache: dict[tuple[int, int], tuple[ExtendedKey, ExtendedKey, ExtendedKey]] = {}

    @classmethod
    def from_base58(
        cls, xpubs: list[str], derivation_prefixes: list[str] | None = None
    ) -> RootWalletKeys:
        return cls([ExtendedKey.from_base58(x) for x in xpubs], derivation_prefixes)

    @property
    def xpubs(self) -> tuple[ExtendedKey, ...]:
        return self._xpubs

    @property
    def derivation_prefixes(self) -> tuple[str, ...]:
        return self._prefixes

    def user_key(self) -> ExtendedKey:
        return self._xpubs[0]

    def backup_key(self) -> ExtendedKey:
        return self._xpubs[1]

    def bitgo_key(self) -> ExtendedKey:
        return self._xpubs[2]

    def key_for_role(self, role: KeyRole) -> ExtendedKey:
        return self._xpubs[role.key_index]

    def fingerprints(self) -> list[bytes]:
        return [key.fingerprint for key in self._xpubs]

    def role_of_fingerprint(self, fingerprint: bytes) -> KeyRole | None:
        for role, key in zip(KeyRole, self._xpubs):
            if key.fingerprint == fingerprint:
                return role
        return None

    def role_of_key(self, key: ExtendedKey) -> KeyRole | None:
        """Role of a root key given as xpub or xprv."""
        public = key.public_key_bytes
        for role, xpub in zip(KeyRole, self._xpubs):
            if xpub.public_key_bytes == public:
                return role
        return None

    def derivation_path(self, role: KeyRole, chain: int, index: int) -> str:
        return f"{self._prefixes[role.key_index]}/{chain}/{index}"

    def derivation_indices(self, role: KeyRole, chain: int, index: int) -> list[int]:
        return parse_path(self.derivation_path(role, chain, index))

    def derive_for_chain_and_index(
        self, chain: int, index: int
    ) -> tuple[ExtendedKey, ExtendedKey, ExtendedKey]:
        """Derive the (user, backup, bitgo) keys for a wallet script."""
        Chain.from_value(chain)
        if not 0 <= index < HARDENED_OFFSET:
            raise ValueError(f"Derivation index out of range: {index}")

        cached = self._cache.get((chain, index))
        if cached is not None:
            return cached

        derived = tuple(
            xpub.derive_path(f"{prefix}/{chain}/{index}")
            for xpub, prefix in zip(self._xpubs, self._prefixes)
        )

        if len(self._cache) >= self._cache_size:
            logger.debug(f"Derived key cache full ({self._cache_size}), clearing")
            self._cache.clear()
        self._cache[(chain, index)] = derived
        return derived

    def derive_for(self, script_id: ScriptId) -> tuple[ExtendedKey, ExtendedKey, ExtendedKey]:
        return self.derive_for_chain_and_index(script_id.chain, script_id.index)

    def public_keys_for(self, script_id: ScriptId) -> list[bytes]:
        return [key.public_key_bytes for key in self.derive_for(script_id)]

    def neutered(self) -> RootWalletKeys:
        return RootWalletKeys(
            [key.neutered() for key in self._xpubs], list(self._prefixes), self._cache_size
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RootWalletKeys):
            return NotImplemented
        return [k.to_base58() for k in self._xpubs] == [
            k.to_base58() for k in other._xpubs
        ] and self._prefixes == other._prefixes

    def __hash__(self) -> int:
        return hash((tuple(k.to_base58() for k in self._xpubs), self._prefixes))

    def __repr__(self) -> str:
        fps = ", ".join(fp.hex() for fp in self.fingerprints())
        return f"RootWalletKeys({fps})"
