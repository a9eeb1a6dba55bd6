"""
BITGO proprietary PSBT key-values: MuSig2 session data, the Zcash consensus
branch id, BIP-322 messages and the engine version marker.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum

from fixedscript.constants import BITGO_PROPRIETARY_PREFIX
from fixedscript.errors import DeserializationFailure
from fixedscript.psbt.codec import ProprietaryKey


class ProprietaryKeySubtype(IntEnum):
    ZEC_CONSENSUS_BRANCH_ID = 0x00
    MUSIG2_PARTICIPANT_PUB_KEYS = 0x01
    MUSIG2_PUB_NONCE = 0x02
    MUSIG2_PARTIAL_SIG = 0x03
    BIP322_MESSAGE = 0x05
    VERSION = 0x06


def bitgo_key(subtype: ProprietaryKeySubtype, key_data: bytes = b"") -> ProprietaryKey:
    return ProprietaryKey(BITGO_PROPRIETARY_PREFIX, int(subtype), key_data)


def find_bitgo_values(
    proprietary: dict[ProprietaryKey, bytes], subtype: ProprietaryKeySubtype
) -> list[tuple[ProprietaryKey, bytes]]:
    return [
        (key, value)
        for key, value in sorted(proprietary.items(), key=lambda kv: kv[0].key_data)
        if key.prefix == BITGO_PROPRIETARY_PREFIX and key.subtype == subtype
    ]


def is_musig2_key(key: ProprietaryKey) -> bool:
    return key.prefix == BITGO_PROPRIETARY_PREFIX and key.subtype in (
        ProprietaryKeySubtype.MUSIG2_PARTICIPANT_PUB_KEYS,
        ProprietaryKeySubtype.MUSIG2_PUB_NONCE,
        ProprietaryKeySubtype.MUSIG2_PARTIAL_SIG,
    )


@dataclass(frozen=True)
class Musig2Participants:
    """key: tap output key || tap internal key, value: two compressed pubkeys"""

    tap_output_key: bytes
    tap_internal_key: bytes
    participant_pub_keys: tuple[bytes, bytes]

    def to_key_value(self) -> tuple[ProprietaryKey, bytes]:
        key = bitgo_key(
            ProprietaryKeySubtype.MUSIG2_PARTICIPANT_PUB_KEYS,
            self.tap_output_key + self.tap_internal_key,
        )
        return key, b"".join(self.participant_pub_keys)

    @classmethod
    def from_key_value(cls, key: ProprietaryKey, value: bytes) -> Musig2Participants:
        if len(key.key_data) != 64:
            raise DeserializationFailure("Invalid MuSig2 participants key length")
        if len(value) != 66:
            raise DeserializationFailure("Invalid MuSig2 participants value length")
        return cls(key.key_data[:32], key.key_data[32:], (value[:33], value[33:]))


@dataclass(frozen=True)
class Musig2PubNonce:
    """key: participant pubkey || tap output key, value: 66-byte public nonce"""

    participant_pub_key: bytes
    tap_output_key: bytes
    pub_nonce: bytes

    def to_key_value(self) -> tuple[ProprietaryKey, bytes]:
        key = bitgo_key(
            ProprietaryKeySubtype.MUSIG2_PUB_NONCE, self.participant_pub_key + self.tap_output_key
        )
        return key, self.pub_nonce

    @classmethod
    def from_key_value(cls, key: ProprietaryKey, value: bytes) -> Musig2PubNonce:
        if len(key.key_data) != 65:
            raise DeserializationFailure("Invalid MuSig2 nonce key length")
        if len(value) != 66:
            raise DeserializationFailure("Invalid MuSig2 public nonce length")
        return cls(key.key_data[:33], key.key_data[33:], value)


@dataclass(frozen=True)
class Musig2PartialSig:
    """key: participant pubkey || tap output key, value: 32-byte partial signature"""

    participant_pub_key: bytes
    tap_output_key: bytes
    partial_sig: bytes

    def to_key_value(self) -> tuple[ProprietaryKey, bytes]:
        key = bitgo_key(
            ProprietaryKeySubtype.MUSIG2_PARTIAL_SIG,
            self.participant_pub_key + self.tap_output_key,
        )
        return key, self.partial_sig

    @classmethod
    def from_key_value(cls, key: ProprietaryKey, value: bytes) -> Musig2PartialSig:
        if len(key.key_data) != 65:
            raise DeserializationFailure("Invalid MuSig2 partial signature key length")
        if len(value) != 32:
            raise DeserializationFailure("Invalid MuSig2 partial signature length")
        return cls(key.key_data[:33], key.key_data[33:], value)


def get_zec_consensus_branch_id(proprietary: dict[ProprietaryKey, bytes]) -> int | None:
    values = find_bitgo_values(proprietary, ProprietaryKeySubtype.ZEC_CONSENSUS_BRANCH_ID)
    if not values or len(values[0][1]) != 4:
        return None
    return struct.unpack("<I", values[0][1])[0]


def set_zec_consensus_branch_id(proprietary: dict[ProprietaryKey, bytes], branch_id: int) -> None:
    proprietary[bitgo_key(ProprietaryKeySubtype.ZEC_CONSENSUS_BRANCH_ID)] = struct.pack(
        "<I", branch_id
    )


def get_bip322_message(proprietary: dict[ProprietaryKey, bytes]) -> bytes | None:
    values = find_bitgo_values(proprietary, ProprietaryKeySubtype.BIP322_MESSAGE)
    return values[0][1] if values else None


def set_bip322_message(proprietary: dict[ProprietaryKey, bytes], message: bytes) -> None:
    proprietary[bitgo_key(ProprietaryKeySubtype.BIP322_MESSAGE)] = message


def set_engine_version(proprietary: dict[ProprietaryKey, bytes], version: str) -> None:
    proprietary[bitgo_key(ProprietaryKeySubtype.VERSION)] = version.encode("ascii")


def get_engine_version(proprietary: dict[ProprietaryKey, bytes]) -> str | None:
    values = find_bitgo_values(proprietary, ProprietaryKeySubtype.VERSION)
    return values[0][1].decode("ascii", errors="replace") if values else None
