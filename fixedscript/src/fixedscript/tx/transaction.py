"""
Raw transaction model and wire codec.

Handles legacy and segwit (BIP144) encodings and the Zcash v4
(overwintered, Sapling) transparent-only encoding.
"""

from __future__ import annotations

import copy
import struct
from dataclasses import dataclass, field

from fixedscript.crypto import hash256
from fixedscript.errors import DeserializationFailure

OVERWINTERED_FLAG = 0x80000000
ZCASH_SAPLING_VERSION = 4
ZCASH_SAPLING_VERSION_GROUP_ID = 0x892F2085
# valueBalance (8 bytes) + empty shielded spends, outputs and joinsplits
ZCASH_EMPTY_SAPLING_FIELDS = b"\x00" * 11


def read_varint(data: bytes, offset: int) -> tuple[int, int]:
    first = data[offset]
    offset += 1

    if first < 0xFD:
        return first, offset
    if first == 0xFD:
        value = int.from_bytes(data[offset : offset + 2], "little")
        return value, offset + 2
    if first == 0xFE:
        value = int.from_bytes(data[offset : offset + 4], "little")
        return value, offset + 4
    value = int.from_bytes(data[offset : offset + 8], "little")
    return value, offset + 8


def encode_varint(value: int) -> bytes:
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + value.to_bytes(2, "little")
    if value <= 0xFFFFFFFF:
        return b"\xfe" + value.to_bytes(4, "little")
    return b"\xff" + value.to_bytes(8, "little")


def varint_size(value: int) -> int:
    return len(encode_varint(value))


def read_bytes(data: bytes, offset: int) -> tuple[bytes, int]:
    """Read a varint-prefixed byte string."""
    length, offset = read_varint(data, offset)
    if offset + length > len(data):
        raise ValueError("Length prefix exceeds available data")
    return data[offset : offset + length], offset + length


def encode_bytes(data: bytes) -> bytes:
    return encode_varint(len(data)) + data


def encode_witness(stack: list[bytes]) -> bytes:
    return encode_varint(len(stack)) + b"".join(encode_bytes(item) for item in stack)


def txid_to_bytes(txid: str) -> bytes:
    """RPC (big-endian) hex txid to internal byte order."""
    raw = bytes.fromhex(txid)
    if len(raw) != 32:
        raise ValueError(f"Invalid txid length: {len(raw)}")
    return raw[::-1]


def bytes_to_txid(txid_le: bytes) -> str:
    return txid_le[::-1].hex()


@dataclass
class TxIn:
    txid_le: bytes
    vout: int
    script_sig: bytes = b""
    sequence: int = 0xFFFFFFFF
    witness: list[bytes] = field(default_factory=list)

    @property
    def txid(self) -> str:
        return bytes_to_txid(self.txid_le)

    def serialize_outpoint(self) -> bytes:
        return self.txid_le + struct.pack("<I", self.vout)


@dataclass
class TxOut:
    value: int
    script: bytes

    def serialize(self) -> bytes:
        return struct.pack("<Q", self.value) + encode_bytes(self.script)


@dataclass
class Transaction:
    version: int = 2
    inputs: list[TxIn] = field(default_factory=list)
    outputs: list[TxOut] = field(default_factory=list)
    lock_time: int = 0
    # Zcash v4 only
    version_group_id: int | None = None
    expiry_height: int = 0
    # Dash special transactions (DIP-2): type in the high 16 version bits
    dash_type: int = 0
    extra_payload: bytes = b""

    @property
    def is_zcash(self) -> bool:
        return self.version_group_id is not None

    def has_witness(self) -> bool:
        return any(inp.witness for inp in self.inputs)

    def serialize(self, include_witness: bool = True) -> bytes:
        if self.is_zcash:
            return self._serialize_zcash()

        witness = include_witness and self.has_witness()
        result = struct.pack("<I", self.version | (self.dash_type << 16))
        if witness:
            result += b"\x00\x01"
        result += encode_varint(len(self.inputs))
        for inp in self.inputs:
            result += inp.serialize_outpoint()
            result += encode_bytes(inp.script_sig)
            result += struct.pack("<I", inp.sequence)
        result += encode_varint(len(self.outputs))
        for out in self.outputs:
            result += out.serialize()
        if witness:
            for inp in self.inputs:
                result += encode_witness(inp.witness)
        result += struct.pack("<I", self.lock_time)
        if self.dash_type:
            result += encode_bytes(self.extra_payload)
        elif self.extra_payload:
            raise ValueError("extra_payload requires a Dash special transaction type")
        return result

    def _serialize_zcash(self) -> bytes:
        result = struct.pack("<I", self.version | OVERWINTERED_FLAG)
        result += struct.pack("<I", self.version_group_id)
        result += encode_varint(len(self.inputs))
        for inp in self.inputs:
            result += inp.serialize_outpoint()
            result += encode_bytes(inp.script_sig)
            result += struct.pack("<I", inp.sequence)
        result += encode_varint(len(self.outputs))
        for out in self.outputs:
            result += out.serialize()
        result += struct.pack("<I", self.lock_time)
        result += struct.pack("<I", self.expiry_height)
        if self.version >= ZCASH_SAPLING_VERSION:
            result += ZCASH_EMPTY_SAPLING_FIELDS
        return result

    def txid_le(self) -> bytes:
        return hash256(self.serialize(include_witness=False))

    def txid(self) -> str:
        return bytes_to_txid(self.txid_le())

    def wtxid(self) -> str:
        return bytes_to_txid(hash256(self.serialize(include_witness=True)))

    def base_size(self) -> int:
        return len(self.serialize(include_witness=False))

    def total_size(self) -> int:
        return len(self.serialize(include_witness=True))

    def weight(self) -> int:
        """BIP141 weight: 3 * base size + total size."""
        return 3 * self.base_size() + self.total_size()

    def vsize(self) -> int:
        return (self.weight() + 3) // 4

    def unsigned_copy(self) -> Transaction:
        """Copy with every scriptSig and witness stripped."""
        tx = copy.deepcopy(self)
        for inp in tx.inputs:
            inp.script_sig = b""
            inp.witness = []
        return tx

    def clone(self) -> Transaction:
        return copy.deepcopy(self)

    @classmethod
    def deserialize(
        cls, data: bytes, allow_witness: bool = True, dash: bool = False
    ) -> Transaction:
        """
        Parse a raw transaction. PSBT unsigned transactions are always in
        non-witness form, where a zero input count would look like a segwit
        marker; pass allow_witness=False for those.

        With ``dash=True`` the high 16 version bits are read as the special
        transaction type, and a non-zero type is followed by its extra payload.
        """
        try:
            tx, offset = cls._parse(data, allow_witness and not dash, dash)
        except (IndexError, ValueError, struct.error) as e:
            raise DeserializationFailure(f"Failed to parse transaction: {e}") from e
        if offset != len(data):
            raise DeserializationFailure(
                f"Failed to parse transaction: {len(data) - offset} trailing bytes"
            )
        return tx

    @classmethod
    def _parse(cls, data: bytes, allow_witness: bool, dash: bool) -> tuple[Transaction, int]:
        offset = 0
        header = struct.unpack("<I", data[offset : offset + 4])[0]
        offset += 4

        if header & OVERWINTERED_FLAG and not dash:
            return cls._parse_zcash(data, header, offset)

        witness = False
        if allow_witness and data[offset] == 0x00 and data[offset + 1] == 0x01:
            witness = True
            offset += 2

        inputs, offset = _parse_inputs(data, offset)
        outputs, offset = _parse_outputs(data, offset)

        if witness:
            for inp in inputs:
                stack_count, offset = read_varint(data, offset)
                for _ in range(stack_count):
                    item, offset = read_bytes(data, offset)
                    inp.witness.append(item)

        lock_time = struct.unpack("<I", data[offset : offset + 4])[0]
        offset += 4
        if not dash:
            return cls(header, inputs, outputs, lock_time), offset

        dash_type = header >> 16
        extra_payload = b""
        if dash_type:
            extra_payload, offset = read_bytes(data, offset)
        tx = cls(
            header & 0xFFFF,
            inputs,
            outputs,
            lock_time,
            dash_type=dash_type,
            extra_payload=extra_payload,
        )
        return tx, offset

    @classmethod
    def _parse_zcash(cls, data: bytes, header: int, offset: int) -> tuple[Transaction, int]:
        version = header & ~OVERWINTERED_FLAG
        version_group_id = struct.unpack("<I", data[offset : offset + 4])[0]
        offset += 4
        inputs, offset = _parse_inputs(data, offset)
        outputs, offset = _parse_outputs(data, offset)
        lock_time, expiry_height = struct.unpack("<II", data[offset : offset + 8])
        offset += 8
        if version >= ZCASH_SAPLING_VERSION:
            sapling = data[offset : offset + len(ZCASH_EMPTY_SAPLING_FIELDS)]
            if sapling != ZCASH_EMPTY_SAPLING_FIELDS:
                raise ValueError("Shielded Zcash transactions are not supported")
            offset += len(ZCASH_EMPTY_SAPLING_FIELDS)
        tx = cls(version, inputs, outputs, lock_time, version_group_id, expiry_height)
        return tx, offset


def _parse_inputs(data: bytes, offset: int) -> tuple[list[TxIn], int]:
    count, offset = read_varint(data, offset)
    inputs = []
    for _ in range(count):
        txid_le = data[offset : offset + 32]
        if len(txid_le) != 32:
            raise ValueError("Truncated outpoint")
        offset += 32
        vout = struct.unpack("<I", data[offset : offset + 4])[0]
        offset += 4
        script_sig, offset = read_bytes(data, offset)
        sequence = struct.unpack("<I", data[offset : offset + 4])[0]
        offset += 4
        inputs.append(TxIn(txid_le, vout, script_sig, sequence))
    return inputs, offset


def _parse_outputs(data: bytes, offset: int) -> tuple[list[TxOut], int]:
    count, offset = read_varint(data, offset)
    outputs = []
    for _ in range(count):
        value = struct.unpack("<Q", data[offset : offset + 8])[0]
        offset += 8
        script, offset = read_bytes(data, offset)
        outputs.append(TxOut(value, script))
    return outputs, offset
