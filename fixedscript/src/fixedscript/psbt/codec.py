"""
BIP174 / BIP371 PSBT binary codec.

Maps are kept as typed dataclasses; unknown key-value pairs are preserved
so that a deserialize/serialize round trip is lossless.
"""

from __future__ import annotations

import base64
import binascii
import copy
import struct
from dataclasses import dataclass, field

from fixedscript.errors import DeserializationFailure
from fixedscript.tx.transaction import (
    Transaction,
    TxOut,
    encode_bytes,
    encode_varint,
    encode_witness,
    read_bytes,
    read_varint,
)

PSBT_MAGIC = b"psbt\xff"

# Global types
PSBT_GLOBAL_UNSIGNED_TX = 0x00
PSBT_GLOBAL_XPUB = 0x01
PSBT_GLOBAL_VERSION = 0xFB
PSBT_GLOBAL_PROPRIETARY = 0xFC

# Input types
PSBT_IN_NON_WITNESS_UTXO = 0x00
PSBT_IN_WITNESS_UTXO = 0x01
PSBT_IN_PARTIAL_SIG = 0x02
PSBT_IN_SIGHASH_TYPE = 0x03
PSBT_IN_REDEEM_SCRIPT = 0x04
PSBT_IN_WITNESS_SCRIPT = 0x05
PSBT_IN_BIP32_DERIVATION = 0x06
PSBT_IN_FINAL_SCRIPTSIG = 0x07
PSBT_IN_FINAL_SCRIPTWITNESS = 0x08
PSBT_IN_TAP_KEY_SIG = 0x13
PSBT_IN_TAP_SCRIPT_SIG = 0x14
PSBT_IN_TAP_LEAF_SCRIPT = 0x15
PSBT_IN_TAP_BIP32_DERIVATION = 0x16
PSBT_IN_TAP_INTERNAL_KEY = 0x17
PSBT_IN_TAP_MERKLE_ROOT = 0x18
PSBT_IN_PROPRIETARY = 0xFC

# Output types
PSBT_OUT_REDEEM_SCRIPT = 0x00
PSBT_OUT_WITNESS_SCRIPT = 0x01
PSBT_OUT_BIP32_DERIVATION = 0x02
PSBT_OUT_TAP_INTERNAL_KEY = 0x05
PSBT_OUT_TAP_TREE = 0x06
PSBT_OUT_TAP_BIP32_DERIVATION = 0x07
PSBT_OUT_PROPRIETARY = 0xFC


@dataclass(frozen=True)
class ProprietaryKey:
    prefix: bytes
    subtype: int
    key_data: bytes = b""

    def serialize(self) -> bytes:
        return encode_bytes(self.prefix) + encode_varint(self.subtype) + self.key_data

    @classmethod
    def deserialize(cls, data: bytes) -> ProprietaryKey:
        prefix, offset = read_bytes(data, 0)
        subtype, offset = read_varint(data, offset)
        return cls(prefix, subtype, data[offset:])


@dataclass
class KeyOrigin:
    fingerprint: bytes
    path: list[int]

    def serialize(self) -> bytes:
        return self.fingerprint + b"".join(struct.pack("<I", i) for i in self.path)

    @classmethod
    def deserialize(cls, data: bytes) -> KeyOrigin:
        if len(data) < 4 or (len(data) - 4) % 4:
            raise ValueError(f"Invalid key origin length: {len(data)}")
        path = [struct.unpack("<I", data[i : i + 4])[0] for i in range(4, len(data), 4)]
        return cls(data[:4], path)


@dataclass
class TapKeyOrigin:
    leaf_hashes: list[bytes]
    origin: KeyOrigin

    def serialize(self) -> bytes:
        return (
            encode_varint(len(self.leaf_hashes))
            + b"".join(self.leaf_hashes)
            + self.origin.serialize()
        )

    @classmethod
    def deserialize(cls, data: bytes) -> TapKeyOrigin:
        count, offset = read_varint(data, 0)
        hashes = []
        for _ in range(count):
            leaf_hash = data[offset : offset + 32]
            if len(leaf_hash) != 32:
                raise ValueError("Truncated tap leaf hash")
            hashes.append(leaf_hash)
            offset += 32
        return cls(hashes, KeyOrigin.deserialize(data[offset:]))


@dataclass
class PsbtInput:
    non_witness_utxo: Transaction | None = None
    witness_utxo: TxOut | None = None
    partial_sigs: dict[bytes, bytes] = field(default_factory=dict)
    sighash_type: int | None = None
    redeem_script: bytes | None = None
    witness_script: bytes | None = None
    bip32_derivation: dict[bytes, KeyOrigin] = field(default_factory=dict)
    final_script_sig: bytes | None = None
    final_script_witness: list[bytes] | None = None
    tap_key_sig: bytes | None = None
    # (x-only pubkey, leaf hash) -> signature
    tap_script_sigs: dict[tuple[bytes, bytes], bytes] = field(default_factory=dict)
    # control block -> (script, leaf version)
    tap_leaf_scripts: dict[bytes, tuple[bytes, int]] = field(default_factory=dict)
    tap_bip32_derivation: dict[bytes, TapKeyOrigin] = field(default_factory=dict)
    tap_internal_key: bytes | None = None
    tap_merkle_root: bytes | None = None
    proprietary: dict[ProprietaryKey, bytes] = field(default_factory=dict)
    unknown: dict[bytes, bytes] = field(default_factory=dict)

    @property
    def is_finalized(self) -> bool:
        return self.final_script_sig is not None or self.final_script_witness is not None

    def serialize(self) -> bytes:
        pairs: list[tuple[bytes, bytes]] = []
        if self.non_witness_utxo is not None:
            pairs.append((bytes([PSBT_IN_NON_WITNESS_UTXO]), self.non_witness_utxo.serialize()))
        if self.witness_utxo is not None:
            pairs.append((bytes([PSBT_IN_WITNESS_UTXO]), self.witness_utxo.serialize()))
        for pubkey, sig in self.partial_sigs.items():
            pairs.append((bytes([PSBT_IN_PARTIAL_SIG]) + pubkey, sig))
        if self.sighash_type is not None:
            pairs.append((bytes([PSBT_IN_SIGHASH_TYPE]), struct.pack("<I", self.sighash_type)))
        if self.redeem_script is not None:
            pairs.append((bytes([PSBT_IN_REDEEM_SCRIPT]), self.redeem_script))
        if self.witness_script is not None:
            pairs.append((bytes([PSBT_IN_WITNESS_SCRIPT]), self.witness_script))
        for pubkey, origin in self.bip32_derivation.items():
            pairs.append((bytes([PSBT_IN_BIP32_DERIVATION]) + pubkey, origin.serialize()))
        if self.final_script_sig is not None:
            pairs.append((bytes([PSBT_IN_FINAL_SCRIPTSIG]), self.final_script_sig))
        if self.final_script_witness is not None:
            pairs.append(
                (bytes([PSBT_IN_FINAL_SCRIPTWITNESS]), encode_witness(self.final_script_witness))
            )
        if self.tap_key_sig is not None:
            pairs.append((bytes([PSBT_IN_TAP_KEY_SIG]), self.tap_key_sig))
        for (xonly, leaf_hash), sig in self.tap_script_sigs.items():
            pairs.append((bytes([PSBT_IN_TAP_SCRIPT_SIG]) + xonly + leaf_hash, sig))
        for control_block, (script, leaf_version) in self.tap_leaf_scripts.items():
            pairs.append(
                (bytes([PSBT_IN_TAP_LEAF_SCRIPT]) + control_block, script + bytes([leaf_version]))
            )
        for xonly, tap_origin in self.tap_bip32_derivation.items():
            pairs.append((bytes([PSBT_IN_TAP_BIP32_DERIVATION]) + xonly, tap_origin.serialize()))
        if self.tap_internal_key is not None:
            pairs.append((bytes([PSBT_IN_TAP_INTERNAL_KEY]), self.tap_internal_key))
        if self.tap_merkle_root is not None:
            pairs.append((bytes([PSBT_IN_TAP_MERKLE_ROOT]), self.tap_merkle_root))
        for prop_key, value in self.proprietary.items():
            pairs.append((bytes([PSBT_IN_PROPRIETARY]) + prop_key.serialize(), value))
        pairs.extend(self.unknown.items())
        return _serialize_map(pairs)

    @classmethod
    def parse(cls, data: bytes, offset: int, dash: bool = False) -> tuple[PsbtInput, int]:
        inp = cls()
        pairs, offset = _read_map(data, offset)
        for key, value in pairs:
            key_type, key_data = key[0], key[1:]
            if key_type == PSBT_IN_NON_WITNESS_UTXO and not key_data:
                inp.non_witness_utxo = Transaction.deserialize(value, dash=dash)
            elif key_type == PSBT_IN_WITNESS_UTXO and not key_data:
                value_sats = struct.unpack("<Q", value[:8])[0]
                script, end = read_bytes(value, 8)
                if end != len(value):
                    raise ValueError("Trailing bytes in witness utxo")
                inp.witness_utxo = TxOut(value_sats, script)
            elif key_type == PSBT_IN_PARTIAL_SIG and len(key_data) in (33, 65):
                inp.partial_sigs[key_data] = value
            elif key_type == PSBT_IN_SIGHASH_TYPE and not key_data:
                inp.sighash_type = struct.unpack("<I", value)[0]
            elif key_type == PSBT_IN_REDEEM_SCRIPT and not key_data:
                inp.redeem_script = value
            elif key_type == PSBT_IN_WITNESS_SCRIPT and not key_data:
                inp.witness_script = value
            elif key_type == PSBT_IN_BIP32_DERIVATION and len(key_data) in (33, 65):
                inp.bip32_derivation[key_data] = KeyOrigin.deserialize(value)
            elif key_type == PSBT_IN_FINAL_SCRIPTSIG and not key_data:
                inp.final_script_sig = value
            elif key_type == PSBT_IN_FINAL_SCRIPTWITNESS and not key_data:
                inp.final_script_witness = _parse_witness(value)
            elif key_type == PSBT_IN_TAP_KEY_SIG and not key_data:
                inp.tap_key_sig = value
            elif key_type == PSBT_IN_TAP_SCRIPT_SIG and len(key_data) == 64:
                inp.tap_script_sigs[(key_data[:32], key_data[32:])] = value
            elif key_type == PSBT_IN_TAP_LEAF_SCRIPT and key_data:
                inp.tap_leaf_scripts[key_data] = (value[:-1], value[-1])
            elif key_type == PSBT_IN_TAP_BIP32_DERIVATION and len(key_data) == 32:
                inp.tap_bip32_derivation[key_data] = TapKeyOrigin.deserialize(value)
            elif key_type == PSBT_IN_TAP_INTERNAL_KEY and not key_data:
                inp.tap_internal_key = value
            elif key_type == PSBT_IN_TAP_MERKLE_ROOT and not key_data:
                inp.tap_merkle_root = value
            elif key_type == PSBT_IN_PROPRIETARY:
                inp.proprietary[ProprietaryKey.deserialize(key_data)] = value
            else:
                inp.unknown[key] = value
        return inp, offset


@dataclass
class PsbtOutput:
    redeem_script: bytes | None = None
    witness_script: bytes | None = None
    bip32_derivation: dict[bytes, KeyOrigin] = field(default_factory=dict)
    tap_internal_key: bytes | None = None
    # (depth, leaf version, script)
    tap_tree: list[tuple[int, int, bytes]] | None = None
    tap_bip32_derivation: dict[bytes, TapKeyOrigin] = field(default_factory=dict)
    proprietary: dict[ProprietaryKey, bytes] = field(default_factory=dict)
    unknown: dict[bytes, bytes] = field(default_factory=dict)

    def serialize(self) -> bytes:
        pairs: list[tuple[bytes, bytes]] = []
        if self.redeem_script is not None:
            pairs.append((bytes([PSBT_OUT_REDEEM_SCRIPT]), self.redeem_script))
        if self.witness_script is not None:
            pairs.append((bytes([PSBT_OUT_WITNESS_SCRIPT]), self.witness_script))
        for pubkey, origin in self.bip32_derivation.items():
            pairs.append((bytes([PSBT_OUT_BIP32_DERIVATION]) + pubkey, origin.serialize()))
        if self.tap_internal_key is not None:
            pairs.append((bytes([PSBT_OUT_TAP_INTERNAL_KEY]), self.tap_internal_key))
        if self.tap_tree is not None:
            tree = b"".join(
                bytes([depth, leaf_version]) + encode_bytes(script)
                for depth, leaf_version, script in self.tap_tree
            )
            pairs.append((bytes([PSBT_OUT_TAP_TREE]), tree))
        for xonly, tap_origin in self.tap_bip32_derivation.items():
            pairs.append((bytes([PSBT_OUT_TAP_BIP32_DERIVATION]) + xonly, tap_origin.serialize()))
        for prop_key, value in self.proprietary.items():
            pairs.append((bytes([PSBT_OUT_PROPRIETARY]) + prop_key.serialize(), value))
        pairs.extend(self.unknown.items())
        return _serialize_map(pairs)

    @classmethod
    def parse(cls, data: bytes, offset: int) -> tuple[PsbtOutput, int]:
        out = cls()
        pairs, offset = _read_map(data, offset)
        for key, value in pairs:
            key_type, key_data = key[0], key[1:]
            if key_type == PSBT_OUT_REDEEM_SCRIPT and not key_data:
                out.redeem_script = value
            elif key_type == PSBT_OUT_WITNESS_SCRIPT and not key_data:
                out.witness_script = value
            elif key_type == PSBT_OUT_BIP32_DERIVATION and len(key_data) in (33, 65):
                out.bip32_derivation[key_data] = KeyOrigin.deserialize(value)
            elif key_type == PSBT_OUT_TAP_INTERNAL_KEY and not key_data:
                out.tap_internal_key = value
            elif key_type == PSBT_OUT_TAP_TREE and not key_data:
                out.tap_tree = _parse_tap_tree(value)
            elif key_type == PSBT_OUT_TAP_BIP32_DERIVATION and len(key_data) == 32:
                out.tap_bip32_derivation[key_data] = TapKeyOrigin.deserialize(value)
            elif key_type == PSBT_OUT_PROPRIETARY:
                out.proprietary[ProprietaryKey.deserialize(key_data)] = value
            else:
                out.unknown[key] = value
        return out, offset


@dataclass
class Psbt:
    tx: Transaction
    inputs: list[PsbtInput] = field(default_factory=list)
    outputs: list[PsbtOutput] = field(default_factory=list)
    xpubs: dict[bytes, KeyOrigin] = field(default_factory=dict)
    version: int | None = None
    proprietary: dict[ProprietaryKey, bytes] = field(default_factory=dict)
    unknown: dict[bytes, bytes] = field(default_factory=dict)

    def serialize(self) -> bytes:
        pairs: list[tuple[bytes, bytes]] = [
            (bytes([PSBT_GLOBAL_UNSIGNED_TX]), self.tx.serialize(include_witness=False))
        ]
        for xpub, origin in self.xpubs.items():
            pairs.append((bytes([PSBT_GLOBAL_XPUB]) + xpub, origin.serialize()))
        if self.version is not None:
            pairs.append((bytes([PSBT_GLOBAL_VERSION]), struct.pack("<I", self.version)))
        for prop_key, value in self.proprietary.items():
            pairs.append((bytes([PSBT_GLOBAL_PROPRIETARY]) + prop_key.serialize(), value))
        pairs.extend(self.unknown.items())

        result = PSBT_MAGIC + _serialize_map(pairs)
        for inp in self.inputs:
            result += inp.serialize()
        for out in self.outputs:
            result += out.serialize()
        return result

    @classmethod
    def deserialize(cls, data: bytes, dash: bool = False) -> Psbt:
        if not data.startswith(PSBT_MAGIC):
            raise DeserializationFailure("Invalid PSBT magic bytes")
        try:
            return cls._parse(data, dash)
        except DeserializationFailure:
            raise
        except (IndexError, ValueError, struct.error) as e:
            raise DeserializationFailure(f"Failed to parse PSBT: {e}") from e

    @classmethod
    def _parse(cls, data: bytes, dash: bool) -> Psbt:
        pairs, offset = _read_map(data, len(PSBT_MAGIC))

        tx = None
        psbt = cls(Transaction())
        for key, value in pairs:
            key_type, key_data = key[0], key[1:]
            if key_type == PSBT_GLOBAL_UNSIGNED_TX and not key_data:
                tx = Transaction.deserialize(value, allow_witness=False, dash=dash)
            elif key_type == PSBT_GLOBAL_XPUB and len(key_data) == 78:
                psbt.xpubs[key_data] = KeyOrigin.deserialize(value)
            elif key_type == PSBT_GLOBAL_VERSION and not key_data:
                psbt.version = struct.unpack("<I", value)[0]
            elif key_type == PSBT_GLOBAL_PROPRIETARY:
                psbt.proprietary[ProprietaryKey.deserialize(key_data)] = value
            else:
                psbt.unknown[key] = value

        if tx is None:
            raise DeserializationFailure("PSBT has no unsigned transaction")
        if any(inp.script_sig or inp.witness for inp in tx.inputs):
            raise DeserializationFailure("PSBT unsigned transaction has scriptSig or witness")
        psbt.tx = tx

        for _ in tx.inputs:
            inp, offset = PsbtInput.parse(data, offset, dash)
            psbt.inputs.append(inp)
        for _ in tx.outputs:
            out, offset = PsbtOutput.parse(data, offset)
            psbt.outputs.append(out)

        if offset != len(data):
            raise DeserializationFailure(f"{len(data) - offset} trailing bytes after PSBT")
        return psbt

    def to_base64(self) -> str:
        return base64.b64encode(self.serialize()).decode("ascii")

    @classmethod
    def from_base64(cls, encoded: str, dash: bool = False) -> Psbt:
        try:
            data = base64.b64decode(encoded, validate=True)
        except binascii.Error as e:
            raise DeserializationFailure(f"Invalid base64 PSBT: {e}") from e
        return cls.deserialize(data, dash)

    def clone(self) -> Psbt:
        return copy.deepcopy(self)


def _serialize_map(pairs: list[tuple[bytes, bytes]]) -> bytes:
    result = b""
    for key, value in sorted(pairs, key=lambda kv: kv[0]):
        result += encode_bytes(key) + encode_bytes(value)
    return result + b"\x00"


def _read_map(data: bytes, offset: int) -> tuple[list[tuple[bytes, bytes]], int]:
    pairs: list[tuple[bytes, bytes]] = []
    seen: set[bytes] = set()
    while True:
        if offset >= len(data):
            raise DeserializationFailure("Unexpected end of PSBT map")
        key, offset = read_bytes(data, offset)
        if not key:
            return pairs, offset
        value, offset = read_bytes(data, offset)
        if key in seen:
            raise DeserializationFailure(f"Duplicate PSBT key {key.hex()}")
        seen.add(key)
        pairs.append((key, value))


def _parse_witness(data: bytes) -> list[bytes]:
    count, offset = read_varint(data, 0)
    stack = []
    for _ in range(count):
        item, offset = read_bytes(data, offset)
        stack.append(item)
    return stack


def _parse_tap_tree(data: bytes) -> list[tuple[int, int, bytes]]:
    leaves = []
    offset = 0
    while offset < len(data):
        depth, leaf_version = data[offset], data[offset + 1]
        script, offset = read_bytes(data, offset + 2)
        leaves.append((depth, leaf_version, script))
    return leaves
