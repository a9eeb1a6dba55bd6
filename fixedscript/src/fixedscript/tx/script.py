"""
Bitcoin script building and parsing helpers.
"""

from __future__ import annotations

import struct

from fixedscript.constants import (
    OP_0,
    OP_1,
    OP_2,
    OP_3,
    OP_CHECKMULTISIG,
    OP_CHECKSIG,
    OP_PUSHDATA1,
    OP_PUSHDATA2,
    OP_PUSHDATA4,
    OP_RETURN,
)


def push_data(data: bytes) -> bytes:
    """Minimal push of ``data`` (empty data pushes OP_0)."""
    n = len(data)
    if n == 0:
        return bytes([OP_0])
    if n < OP_PUSHDATA1:
        return bytes([n]) + data
    if n <= 0xFF:
        return bytes([OP_PUSHDATA1, n]) + data
    if n <= 0xFFFF:
        return bytes([OP_PUSHDATA2]) + struct.pack("<H", n) + data
    return bytes([OP_PUSHDATA4]) + struct.pack("<I", n) + data


def parse_script(script: bytes) -> list[int | bytes]:
    """
    Split a script into opcodes (ints) and pushed data (bytes).

    Raises ValueError on truncated pushes.
    """
    result: list[int | bytes] = []
    offset = 0
    while offset < len(script):
        op = script[offset]
        offset += 1
        if 0 < op < OP_PUSHDATA1:
            size = op
        elif op == OP_PUSHDATA1:
            if offset + 1 > len(script):
                raise ValueError("Truncated OP_PUSHDATA1")
            size = script[offset]
            offset += 1
        elif op == OP_PUSHDATA2:
            if offset + 2 > len(script):
                raise ValueError("Truncated OP_PUSHDATA2")
            size = struct.unpack("<H", script[offset : offset + 2])[0]
            offset += 2
        elif op == OP_PUSHDATA4:
            if offset + 4 > len(script):
                raise ValueError("Truncated OP_PUSHDATA4")
            size = struct.unpack("<I", script[offset : offset + 4])[0]
            offset += 4
        else:
            result.append(op)
            continue
        if offset + size > len(script):
            raise ValueError("Push exceeds script length")
        result.append(script[offset : offset + size])
        offset += size
    return result


def multisig_script(pubkeys: list[bytes], threshold: int = 2) -> bytes:
    """OP_m <pk1> ... <pkn> OP_n OP_CHECKMULTISIG"""
    if not 1 <= threshold <= len(pubkeys) <= 16:
        raise ValueError(f"Invalid multisig {threshold}-of-{len(pubkeys)}")
    script = bytes([OP_1 + threshold - 1])
    for pubkey in pubkeys:
        script += push_data(pubkey)
    script += bytes([OP_1 + len(pubkeys) - 1, OP_CHECKMULTISIG])
    return script


def parse_multisig_script(script: bytes) -> tuple[int, list[bytes]] | None:
    """Return (threshold, pubkeys) for an OP_CHECKMULTISIG script, else None."""
    try:
        ops = parse_script(script)
    except ValueError:
        return None
    if len(ops) < 4 or ops[-1] != OP_CHECKMULTISIG:
        return None
    m, n = ops[0], ops[-2]
    if not isinstance(m, int) or not isinstance(n, int):
        return None
    if not OP_1 <= m <= OP_1 + 15 or not OP_1 <= n <= OP_1 + 15:
        return None
    pubkeys = ops[1:-2]
    if len(pubkeys) != n - OP_1 + 1 or not all(isinstance(pk, bytes) for pk in pubkeys):
        return None
    return m - OP_1 + 1, pubkeys  # type: ignore[return-value]


def is_two_of_three(script: bytes) -> bool:
    return (
        len(script) == 105
        and script[0] == OP_2
        and script[-2] == OP_3
        and script[-1] == OP_CHECKMULTISIG
    )


def p2pk_script(pubkey: bytes) -> bytes:
    """<pubkey> OP_CHECKSIG"""
    return push_data(pubkey) + bytes([OP_CHECKSIG])


def op_return_script(payload: bytes) -> bytes:
    if not payload:
        return bytes([OP_RETURN])
    return bytes([OP_RETURN]) + push_data(payload)


def is_op_return(script: bytes) -> bool:
    return len(script) > 0 and script[0] == OP_RETURN
