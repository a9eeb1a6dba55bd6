"""
Hashing and secp256k1 helpers built on coincurve.
"""

from __future__ import annotations

import hashlib

from coincurve import PrivateKey, PublicKey
from coincurve.keys import PublicKeyXOnly

from fixedscript.constants import SECP256K1_N

# Deterministic BIP340 signing: auxiliary randomness fixed to zero bytes
ZERO_AUX_RAND = b"\x00" * 32


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def hash256(data: bytes) -> bytes:
    """SHA256(SHA256(data))"""
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))"""
    h = hashlib.new("ripemd160")
    h.update(hashlib.sha256(data).digest())
    return h.digest()


def tagged_hash(tag: str | bytes, msg: bytes) -> bytes:
    """BIP340 tagged hash: SHA256(SHA256(tag) || SHA256(tag) || msg)."""
    if isinstance(tag, str):
        tag = tag.encode("utf-8")
    tag_hash = hashlib.sha256(tag).digest()
    return hashlib.sha256(tag_hash + tag_hash + msg).digest()


def int_from_bytes(b: bytes) -> int:
    return int.from_bytes(b, "big")


def bytes_from_int(n: int) -> bytes:
    return n.to_bytes(32, "big")


def ecdsa_sign(private_key: PrivateKey, sighash: bytes) -> bytes:
    """
    Sign a 32-byte digest. libsecp256k1 uses RFC6979 nonces and low-S
    normalization, so equal inputs always produce equal DER signatures.
    """
    return private_key.sign(sighash, hasher=None)


def ecdsa_verify(pubkey: bytes, der_sig: bytes, sighash: bytes) -> bool:
    try:
        return PublicKey(pubkey).verify(der_sig, sighash, hasher=None)
    except (ValueError, TypeError):
        return False


def schnorr_sign(private_key: PrivateKey, msg: bytes) -> bytes:
    return private_key.sign_schnorr(msg, aux_randomness=ZERO_AUX_RAND)


def schnorr_verify(xonly_pubkey: bytes, sig: bytes, msg: bytes) -> bool:
    if len(xonly_pubkey) != 32 or len(sig) != 64:
        return False
    try:
        return PublicKeyXOnly(xonly_pubkey).verify(sig, msg)
    except (ValueError, TypeError):
        return False


def to_xonly(pubkey: bytes | PublicKey) -> bytes:
    if isinstance(pubkey, PublicKey):
        pubkey = pubkey.format(compressed=True)
    if len(pubkey) == 32:
        return pubkey
    if len(pubkey) != 33:
        raise ValueError(f"Invalid public key length: {len(pubkey)}")
    return pubkey[1:]


def lift_x(xonly: bytes) -> PublicKey:
    """Point with the given x coordinate and even y."""
    return PublicKey(b"\x02" + xonly)


def has_even_y(point: PublicKey) -> bool:
    return point.format(compressed=True)[0] == 0x02


def point_negate(point: PublicKey) -> PublicKey:
    encoded = point.format(compressed=True)
    return PublicKey(bytes([encoded[0] ^ 0x01]) + encoded[1:])


def point_mul(point: PublicKey, scalar: int) -> PublicKey:
    return point.multiply(bytes_from_int(scalar % SECP256K1_N))


def point_add(*points: PublicKey) -> PublicKey:
    return PublicKey.combine_keys(list(points))


def base_mul(scalar: int) -> PublicKey:
    return PrivateKey(bytes_from_int(scalar % SECP256K1_N)).public_key


def private_key_from_int(scalar: int) -> PrivateKey:
    return PrivateKey(bytes_from_int(scalar % SECP256K1_N))
