"""
Zcash network upgrades and ZIP-243 transparent signature hashing.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass
from enum import Enum

from fixedscript.errors import InvalidBranchIdSpecification
from fixedscript.tx.transaction import (
    OVERWINTERED_FLAG,
    Transaction,
    encode_bytes,
)

ZERO_HASH = b"\x00" * 32


@dataclass(frozen=True)
class UpgradeInfo:
    branch_id: int
    mainnet_height: int
    testnet_height: int


class NetworkUpgrade(Enum):
    OVERWINTER = UpgradeInfo(0x5BA81B19, 347_500, 207_500)
    SAPLING = UpgradeInfo(0x76B809BB, 419_200, 280_000)
    BLOSSOM = UpgradeInfo(0x2BB40E60, 653_600, 584_000)
    HEARTWOOD = UpgradeInfo(0xF5B9230B, 903_000, 903_800)
    CANOPY = UpgradeInfo(0xE9FF75A6, 1_046_400, 1_028_500)
    NU5 = UpgradeInfo(0xC2D6D0B4, 1_687_104, 1_842_420)
    NU6 = UpgradeInfo(0xC8E71055, 2_726_400, 2_976_000)
    NU6_1 = UpgradeInfo(0x4DEC4DF0, 3_146_400, 3_536_500)

    @property
    def branch_id(self) -> int:
        return self.value.branch_id

    def activation_height(self, mainnet: bool = True) -> int:
        return self.value.mainnet_height if mainnet else self.value.testnet_height

    @classmethod
    def from_branch_id(cls, branch_id: int) -> NetworkUpgrade | None:
        for upgrade in cls:
            if upgrade.branch_id == branch_id:
                return upgrade
        return None


def upgrade_for_height(height: int, mainnet: bool = True) -> NetworkUpgrade:
    """Latest network upgrade active at ``height``."""
    active = None
    for upgrade in NetworkUpgrade:
        if height >= upgrade.activation_height(mainnet):
            active = upgrade
    if active is None:
        raise InvalidBranchIdSpecification(
            f"Block height {height} is before Overwinter activation"
        )
    return active


def branch_id_for_height(height: int, mainnet: bool = True) -> int:
    return upgrade_for_height(height, mainnet).branch_id


def resolve_branch_id(
    consensus_branch_id: int | None, block_height: int | None, mainnet: bool = True
) -> int:
    """
    Branch id from an explicit value, a block height, or both (which must
    agree).
    """
    if consensus_branch_id is None and block_height is None:
        raise InvalidBranchIdSpecification(
            "Zcash requires either consensus_branch_id or block_height"
        )
    if block_height is None:
        return consensus_branch_id
    from_height = branch_id_for_height(block_height, mainnet)
    if consensus_branch_id is not None and consensus_branch_id != from_height:
        raise InvalidBranchIdSpecification(
            f"consensus_branch_id {consensus_branch_id:#010x} does not match "
            f"block height {block_height} (expected {from_height:#010x})"
        )
    return from_height


def _blake2b(person: bytes, data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=32, person=person).digest()


def zip243_sighash(
    tx: Transaction,
    input_index: int,
    script_code: bytes,
    value: int,
    branch_id: int,
    sighash_type: int,
) -> bytes:
    """Transparent-input signature hash for Overwinter/Sapling v4 transactions."""
    if input_index >= len(tx.inputs):
        raise IndexError("Input index out of range")

    hash_prevouts = _blake2b(
        b"ZcashPrevoutHash", b"".join(inp.serialize_outpoint() for inp in tx.inputs)
    )
    hash_sequence = _blake2b(
        b"ZcashSequencHash", b"".join(struct.pack("<I", inp.sequence) for inp in tx.inputs)
    )
    hash_outputs = _blake2b(b"ZcashOutputsHash", b"".join(out.serialize() for out in tx.outputs))

    target = tx.inputs[input_index]
    preimage = (
        struct.pack("<I", tx.version | OVERWINTERED_FLAG)
        + struct.pack("<I", tx.version_group_id or 0)
        + hash_prevouts
        + hash_sequence
        + hash_outputs
        + ZERO_HASH  # joinsplits
        + ZERO_HASH  # shielded spends
        + ZERO_HASH  # shielded outputs
        + struct.pack("<I", tx.lock_time)
        + struct.pack("<I", tx.expiry_height)
        + struct.pack("<q", 0)  # valueBalance
        + struct.pack("<I", sighash_type)
        + target.serialize_outpoint()
        + encode_bytes(script_code)
        + struct.pack("<Q", value)
        + struct.pack("<I", target.sequence)
    )
    return _blake2b(b"ZcashSigHash" + struct.pack("<I", branch_id), preimage)
