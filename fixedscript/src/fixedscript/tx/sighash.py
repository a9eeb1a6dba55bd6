"""
Signature hash computation.

Legacy (pre-segwit), BIP143 (segwit v0, also used with SIGHASH_FORKID by the
Bitcoin Cash family and Bitcoin Gold) and BIP341 (taproot).
"""

from __future__ import annotations

import struct

from fixedscript.constants import SIGHASH_ALL, SIGHASH_DEFAULT, SIGHASH_FORKID
from fixedscript.crypto import hash256, sha256, tagged_hash
from fixedscript.errors import SigningError
from fixedscript.tx.transaction import Transaction, TxOut, encode_bytes


def compute_sighash_legacy(
    tx: Transaction, input_index: int, script_code: bytes, sighash_type: int = SIGHASH_ALL
) -> bytes:
    if input_index >= len(tx.inputs):
        raise SigningError("Input index out of range")
    if sighash_type != SIGHASH_ALL:
        raise SigningError(f"Unsupported sighash type: {sighash_type:#x}")

    tx_copy = tx.unsigned_copy()
    tx_copy.inputs[input_index].script_sig = script_code
    preimage = tx_copy.serialize(include_witness=False) + struct.pack("<I", sighash_type)
    return hash256(preimage)


def compute_sighash_segwit(
    tx: Transaction,
    input_index: int,
    script_code: bytes,
    value: int,
    sighash_type: int = SIGHASH_ALL,
) -> bytes:
    """
    BIP143 digest. ``sighash_type`` is the full 32-bit value committed to the
    preimage (including any fork id in the upper bits).
    """
    if input_index >= len(tx.inputs):
        raise SigningError("Input index out of range")
    if sighash_type & 0x1F != SIGHASH_ALL or sighash_type & 0x80:
        raise SigningError(f"Unsupported sighash type: {sighash_type:#x}")

    hash_prevouts = hash256(b"".join(inp.serialize_outpoint() for inp in tx.inputs))
    hash_sequence = hash256(b"".join(struct.pack("<I", inp.sequence) for inp in tx.inputs))
    hash_outputs = hash256(b"".join(out.serialize() for out in tx.outputs))

    target_input = tx.inputs[input_index]

    preimage = (
        struct.pack("<I", tx.version)
        + hash_prevouts
        + hash_sequence
        + target_input.serialize_outpoint()
        + encode_bytes(script_code)
        + struct.pack("<Q", value)
        + struct.pack("<I", target_input.sequence)
        + hash_outputs
        + struct.pack("<I", tx.lock_time)
        + struct.pack("<I", sighash_type)
    )

    return hash256(preimage)


def forkid_sighash_type(fork_id: int, base_type: int = SIGHASH_ALL) -> int:
    return (fork_id << 8) | base_type | SIGHASH_FORKID


def compute_sighash_forkid(
    tx: Transaction,
    input_index: int,
    script_code: bytes,
    value: int,
    fork_id: int,
) -> bytes:
    return compute_sighash_segwit(
        tx, input_index, script_code, value, forkid_sighash_type(fork_id)
    )


def compute_sighash_taproot(
    tx: Transaction,
    input_index: int,
    prevouts: list[TxOut],
    sighash_type: int = SIGHASH_DEFAULT,
    leaf_hash: bytes | None = None,
) -> bytes:
    """BIP341 signature message hash for key path or (with leaf_hash) script path."""
    if input_index >= len(tx.inputs):
        raise SigningError("Input index out of range")
    if len(prevouts) != len(tx.inputs):
        raise SigningError("Taproot signing requires the previous output of every input")
    if sighash_type not in (SIGHASH_DEFAULT, SIGHASH_ALL):
        raise SigningError(f"Unsupported taproot sighash type: {sighash_type:#x}")

    sha_prevouts = sha256(b"".join(inp.serialize_outpoint() for inp in tx.inputs))
    sha_amounts = sha256(b"".join(struct.pack("<Q", out.value) for out in prevouts))
    sha_scriptpubkeys = sha256(b"".join(encode_bytes(out.script) for out in prevouts))
    sha_sequences = sha256(b"".join(struct.pack("<I", inp.sequence) for inp in tx.inputs))
    sha_outputs = sha256(b"".join(out.serialize() for out in tx.outputs))

    ext_flag = 1 if leaf_hash is not None else 0
    msg = (
        bytes([sighash_type])
        + struct.pack("<I", tx.version)
        + struct.pack("<I", tx.lock_time)
        + sha_prevouts
        + sha_amounts
        + sha_scriptpubkeys
        + sha_sequences
        + sha_outputs
        + bytes([ext_flag * 2])
        + struct.pack("<I", input_index)
    )
    if leaf_hash is not None:
        msg += leaf_hash + b"\x00" + struct.pack("<I", 0xFFFFFFFF)

    return tagged_hash("TapSighash", b"\x00" + msg)
