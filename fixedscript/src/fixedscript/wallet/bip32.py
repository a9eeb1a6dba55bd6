"""
BIP32 extended keys for fixed-script wallets.

Supports public derivation (xpub only) which is what wallet script
generation needs, and private derivation for signing keys.
"""

from __future__ import annotations

import hashlib
import hmac

import base58
from coincurve import PrivateKey, PublicKey

from fixedscript.constants import HARDENED_OFFSET, SECP256K1_N
from fixedscript.crypto import hash160
from fixedscript.errors import DeserializationFailure

# Serialization version bytes
XPUB_MAINNET = bytes.fromhex("0488b21e")
XPRV_MAINNET = bytes.fromhex("0488ade4")
XPUB_TESTNET = bytes.fromhex("043587cf")
XPRV_TESTNET = bytes.fromhex("04358394")

_PRIVATE_VERSIONS = {XPRV_MAINNET: False, XPRV_TESTNET: True}
_PUBLIC_VERSIONS = {XPUB_MAINNET: False, XPUB_TESTNET: True}


class ExtendedKey:
    """
    Hierarchical deterministic key.

    A key always has a public point; the private scalar is optional. Instances
    are never mutated: derivation and neutering return new keys.
    """

    def __init__(
        self,
        chain_code: bytes,
        private_key: PrivateKey | None = None,
        public_key: PublicKey | None = None,
        depth: int = 0,
        parent_fingerprint: bytes = b"\x00\x00\x00\x00",
        child_number: int = 0,
        testnet: bool = False,
    ):
        if private_key is None and public_key is None:
            raise ValueError("ExtendedKey needs a private or public key")
        if len(chain_code) != 32:
            raise ValueError(f"Invalid chain code length: {len(chain_code)}")
        self._private_key = private_key
        self._public_key = public_key if public_key is not None else private_key.public_key
        self._chain_code = chain_code
        self._depth = depth
        self._parent_fingerprint = parent_fingerprint
        self._child_number = child_number
        self._testnet = testnet

    @property
    def private_key(self) -> PrivateKey | None:
        return self._private_key

    @property
    def public_key(self) -> PublicKey:
        return self._public_key

    @property
    def chain_code(self) -> bytes:
        return self._chain_code

    @property
    def depth(self) -> int:
        return self._depth

    @property
    def parent_fingerprint(self) -> bytes:
        return self._parent_fingerprint

    @property
    def child_number(self) -> int:
        return self._child_number

    @property
    def index(self) -> int:
        return self._child_number

    @property
    def testnet(self) -> bool:
        return self._testnet

    @property
    def is_private(self) -> bool:
        return self._private_key is not None

    @property
    def fingerprint(self) -> bytes:
        """First four bytes of HASH160 of the compressed public key."""
        return hash160(self.public_key_bytes)[:4]

    @property
    def public_key_bytes(self) -> bytes:
        return self._public_key.format(compressed=True)

    @classmethod
    def from_seed(cls, seed: bytes, testnet: bool = False) -> ExtendedKey:
        """Create master key from seed"""
        hmac_result = hmac.new(b"Bitcoin seed", seed, hashlib.sha512).digest()
        key_bytes = hmac_result[:32]
        chain_code = hmac_result[32:]

        private_key = PrivateKey(key_bytes)

        return cls(chain_code, private_key=private_key, testnet=testnet)

    @classmethod
    def from_base58(cls, encoded: str) -> ExtendedKey:
        """Parse an xpub/xprv/tpub/tprv string."""
        try:
            data = base58.b58decode_check(encoded)
        except ValueError as e:
            raise DeserializationFailure(f"Invalid extended key encoding: {e}") from e

        if len(data) != 78:
            raise DeserializationFailure(f"Invalid extended key length: {len(data)}")

        version = data[:4]
        depth = data[4]
        parent_fingerprint = data[5:9]
        child_number = int.from_bytes(data[9:13], "big")
        chain_code = data[13:45]
        key_data = data[45:78]

        try:
            if version in _PRIVATE_VERSIONS:
                if key_data[0] != 0:
                    raise DeserializationFailure("Invalid private key prefix")
                return cls(
                    chain_code,
                    private_key=PrivateKey(key_data[1:]),
                    depth=depth,
                    parent_fingerprint=parent_fingerprint,
                    child_number=child_number,
                    testnet=_PRIVATE_VERSIONS[version],
                )
            if version in _PUBLIC_VERSIONS:
                return cls(
                    chain_code,
                    public_key=PublicKey(key_data),
                    depth=depth,
                    parent_fingerprint=parent_fingerprint,
                    child_number=child_number,
                    testnet=_PUBLIC_VERSIONS[version],
                )
        except ValueError as e:
            raise DeserializationFailure(f"Invalid extended key material: {e}") from e

        raise DeserializationFailure(f"Unknown extended key version: {version.hex()}")

    def to_base58(self) -> str:
        if self.is_private:
            version = XPRV_TESTNET if self._testnet else XPRV_MAINNET
            key_data = b"\x00" + self._private_key.secret
        else:
            version = XPUB_TESTNET if self._testnet else XPUB_MAINNET
            key_data = self.public_key_bytes

        data = (
            version
            + bytes([self._depth])
            + self._parent_fingerprint
            + self._child_number.to_bytes(4, "big")
            + self._chain_code
            + key_data
        )
        return base58.b58encode_check(data).decode("ascii")

    def to_wif(self) -> str:
        """Compressed WIF encoding of the private key."""
        if not self.is_private:
            raise ValueError("Public extended key has no WIF encoding")
        prefix = b"\xef" if self._testnet else b"\x80"
        return base58.b58encode_check(prefix + self._private_key.secret + b"\x01").decode("ascii")

    def neutered(self) -> ExtendedKey:
        """Public-only copy of this key."""
        return ExtendedKey(
            self._chain_code,
            public_key=self._public_key,
            depth=self._depth,
            parent_fingerprint=self._parent_fingerprint,
            child_number=self._child_number,
            testnet=self._testnet,
        )

    def derive(self, index: int) -> ExtendedKey:
        """Derive a child key at the given index"""
        if not 0 <= index <= 0xFFFFFFFF:
            raise ValueError(f"Invalid child index: {index}")

        hardened = index >= HARDENED_OFFSET

        if hardened:
            if not self.is_private:
                raise ValueError("Cannot derive hardened child from public key")
            data = b"\x00" + self._private_key.secret + index.to_bytes(4, "big")
        else:
            data = self.public_key_bytes + index.to_bytes(4, "big")

        hmac_result = hmac.new(self._chain_code, data, hashlib.sha512).digest()
        key_offset = hmac_result[:32]
        child_chain = hmac_result[32:]

        offset_int = int.from_bytes(key_offset, "big")
        if offset_int >= SECP256K1_N:
            raise ValueError("Invalid child key")

        if self.is_private:
            parent_key_int = int.from_bytes(self._private_key.secret, "big")
            child_key_int = (parent_key_int + offset_int) % SECP256K1_N

            if child_key_int == 0:
                raise ValueError("Invalid child key")

            child_private_key = PrivateKey(child_key_int.to_bytes(32, "big"))
            return ExtendedKey(
                child_chain,
                private_key=child_private_key,
                depth=self._depth + 1,
                parent_fingerprint=self.fingerprint,
                child_number=index,
                testnet=self._testnet,
            )

        child_public_key = self._public_key.add(key_offset)
        return ExtendedKey(
            child_chain,
            public_key=child_public_key,
            depth=self._depth + 1,
            parent_fingerprint=self.fingerprint,
            child_number=index,
            testnet=self._testnet,
        )

    def derive_hardened(self, index: int) -> ExtendedKey:
        if not 0 <= index < HARDENED_OFFSET:
            raise ValueError(f"Invalid hardened index: {index}")
        return self.derive(index + HARDENED_OFFSET)

    def derive_path(self, path: str) -> ExtendedKey:
        """
        Derive key from path notation (e.g., "m/0/0/10/3").
        ' or h indicates hardened derivation; the leading "m" is optional.
        """
        parts = path.split("/")
        if parts and parts[0] == "m":
            parts = parts[1:]
        key = self

        for part in parts:
            if not part:
                continue

            hardened = part.endswith("'") or part.endswith("h")
            index_str = part.rstrip("'h")
            if not index_str.isdigit():
                raise ValueError(f"Invalid path component: {part}")
            index = int(index_str)

            if hardened:
                key = key.derive_hardened(index)
            else:
                if index >= HARDENED_OFFSET:
                    raise ValueError(f"Invalid path component: {part}")
                key = key.derive(index)

        return key

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ExtendedKey):
            return NotImplemented
        return self.to_base58() == other.to_base58()

    def __hash__(self) -> int:
        return hash(self.to_base58())

    def __repr__(self) -> str:
        kind = "xprv" if self.is_private else "xpub"
        return f"ExtendedKey({kind}, fingerprint={self.fingerprint.hex()}, depth={self._depth})"


def parse_path(path: str) -> list[int]:
    """Parse "m/0/0/1" into child numbers."""
    result = []
    for part in path.split("/"):
        if part in ("", "m"):
            continue
        hardened = part.endswith("'") or part.endswith("h")
        index = int(part.rstrip("'h"))
        result.append(index + HARDENED_OFFSET if hardened else index)
    return result


def format_path(indices: list[int]) -> str:
    parts = ["m"]
    for index in indices:
        if index >= HARDENED_OFFSET:
            parts.append(f"{index - HARDENED_OFFSET}'")
        else:
            parts.append(str(index))
    return "/".join(parts)
