"""
Address encoding for wallet output scripts.

Legacy addresses use base58check with per-network version bytes, segwit
addresses use bech32 (witness v0) or bech32m (witness v1+, BIP350).
"""

from __future__ import annotations

import base58

from fixedscript.constants import (
    OP_0,
    OP_1,
    OP_CHECKSIG,
    OP_DUP,
    OP_EQUAL,
    OP_EQUALVERIFY,
    OP_HASH160,
)
from fixedscript.networks import Network

BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
BECH32_CONST = 1
BECH32M_CONST = 0x2BC830A3


def bech32_polymod(values: list[int]) -> int:
    """Bech32 checksum polymod"""
    gen = [0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3]
    chk = 1
    for v in values:
        b = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ v
        for i in range(5):
            chk ^= gen[i] if ((b >> i) & 1) else 0
    return chk


def bech32_hrp_expand(hrp: str) -> list[int]:
    """Expand HRP for bech32"""
    return [ord(x) >> 5 for x in hrp] + [0] + [ord(x) & 31 for x in hrp]


def bech32_create_checksum(hrp: str, data: list[int], const: int = BECH32_CONST) -> list[int]:
    values = bech32_hrp_expand(hrp) + data
    polymod = bech32_polymod(values + [0, 0, 0, 0, 0, 0]) ^ const
    return [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]


def bech32_encode(hrp: str, data: list[int], const: int = BECH32_CONST) -> str:
    combined = data + bech32_create_checksum(hrp, data, const)
    return hrp + "1" + "".join([BECH32_CHARSET[d] for d in combined])


def bech32_decode(address: str) -> tuple[str, list[int], int]:
    """Decode a bech32/bech32m string into (hrp, data, checksum constant)."""
    if address.lower() != address and address.upper() != address:
        raise ValueError("Mixed case bech32 string")
    address = address.lower()
    pos = address.rfind("1")
    if pos < 1 or pos + 7 > len(address) or len(address) > 90:
        raise ValueError(f"Invalid bech32 string: {address}")
    hrp = address[:pos]
    try:
        data = [BECH32_CHARSET.index(c) for c in address[pos + 1 :]]
    except ValueError:
        raise ValueError(f"Invalid bech32 character in {address}") from None
    const = bech32_polymod(bech32_hrp_expand(hrp) + data)
    if const not in (BECH32_CONST, BECH32M_CONST):
        raise ValueError(f"Invalid bech32 checksum: {address}")
    return hrp, data[:-6], const


def convertbits(data: bytes | list[int], frombits: int, tobits: int, pad: bool = True) -> list[int]:
    """Convert between bit groups"""
    acc = 0
    bits = 0
    ret = []
    maxv = (1 << tobits) - 1
    max_acc = (1 << (frombits + tobits - 1)) - 1

    for value in data:
        acc = ((acc << frombits) | value) & max_acc
        bits += frombits
        while bits >= tobits:
            bits -= tobits
            ret.append((acc >> bits) & maxv)

    if pad:
        if bits:
            ret.append((acc << (tobits - bits)) & maxv)
    elif bits >= frombits or ((acc << (tobits - bits)) & maxv):
        raise ValueError("Invalid bits")

    return ret


def encode_segwit_address(hrp: str, witness_version: int, witness_program: bytes) -> str:
    const = BECH32_CONST if witness_version == 0 else BECH32M_CONST
    return bech32_encode(hrp, [witness_version] + convertbits(witness_program, 8, 5), const)


def decode_segwit_address(hrp: str, address: str) -> tuple[int, bytes]:
    decoded_hrp, data, const = bech32_decode(address)
    if decoded_hrp != hrp:
        raise ValueError(f"Unexpected address prefix {decoded_hrp}, expected {hrp}")
    if not data:
        raise ValueError("Empty witness data")
    witness_version = data[0]
    witness_program = bytes(convertbits(data[1:], 5, 8, pad=False))

    if witness_version > 16 or not 2 <= len(witness_program) <= 40:
        raise ValueError(f"Invalid witness program: {address}")
    if witness_version == 0 and len(witness_program) not in (20, 32):
        raise ValueError(f"Invalid witness v0 program length: {len(witness_program)}")
    expected_const = BECH32_CONST if witness_version == 0 else BECH32M_CONST
    if const != expected_const:
        raise ValueError(f"Wrong checksum variant for witness version {witness_version}")
    return witness_version, witness_program


def segwit_output_script(witness_version: int, witness_program: bytes) -> bytes:
    op = OP_0 if witness_version == 0 else OP_1 + witness_version - 1
    return bytes([op, len(witness_program)]) + witness_program


def p2sh_output_script(script_hash: bytes) -> bytes:
    """OP_HASH160 <20-byte-scripthash> OP_EQUAL"""
    return bytes([OP_HASH160, 0x14]) + script_hash + bytes([OP_EQUAL])


def p2pkh_output_script(pubkey_hash: bytes) -> bytes:
    """OP_DUP OP_HASH160 <20-byte-pubkeyhash> OP_EQUALVERIFY OP_CHECKSIG"""
    return bytes([OP_DUP, OP_HASH160, 0x14]) + pubkey_hash + bytes([OP_EQUALVERIFY, OP_CHECKSIG])


def output_script_to_address(script: bytes, network: Network) -> str:
    """Convert an output script to its canonical address on ``network``."""
    params = network.params

    if len(script) == 23 and script[:2] == bytes([OP_HASH160, 0x14]) and script[-1] == OP_EQUAL:
        return base58.b58encode_check(params.p2sh_version + script[2:22]).decode("ascii")

    if (
        len(script) == 25
        and script[:3] == bytes([OP_DUP, OP_HASH160, 0x14])
        and script[-2:] == bytes([OP_EQUALVERIFY, OP_CHECKSIG])
    ):
        return base58.b58encode_check(params.p2pkh_version + script[3:23]).decode("ascii")

    if (
        4 <= len(script) <= 42
        and (script[0] == OP_0 or OP_1 <= script[0] <= OP_1 + 15)
        and script[1] == len(script) - 2
    ):
        if params.bech32_hrp is None:
            raise ValueError(f"Network {network.value} has no segwit addresses")
        witness_version = 0 if script[0] == OP_0 else script[0] - OP_1 + 1
        return encode_segwit_address(params.bech32_hrp, witness_version, script[2:])

    raise ValueError(f"Unsupported output script: {script.hex()}")


def address_to_output_script(address: str, network: Network) -> bytes:
    """Convert an address on ``network`` to its output script."""
    params = network.params

    hrp = params.bech32_hrp
    if hrp is not None and address.lower().startswith(hrp + "1"):
        witness_version, witness_program = decode_segwit_address(hrp, address)
        return segwit_output_script(witness_version, witness_program)

    decoded = base58.b58decode_check(address)
    version_len = len(params.p2pkh_version)
    version = decoded[:version_len]
    payload = decoded[version_len:]
    if len(payload) != 20:
        raise ValueError(f"Invalid address payload length: {len(payload)}")

    if version == params.p2pkh_version:
        return p2pkh_output_script(payload)
    if version == params.p2sh_version:
        return p2sh_output_script(payload)

    raise ValueError(f"Unknown address version {version.hex()} for {network.value}")
