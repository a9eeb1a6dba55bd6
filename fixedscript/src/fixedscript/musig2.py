"""
MuSig2 (BIP327) two-party Schnorr signing on top of coincurve point math.

Covers key aggregation with x-only tweaks, nonce generation and
aggregation, partial signing, partial signature verification and
signature aggregation.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field

from coincurve import PrivateKey, PublicKey

from fixedscript.constants import SECP256K1_N
from fixedscript.crypto import (
    base_mul,
    bytes_from_int,
    has_even_y,
    int_from_bytes,
    lift_x,
    point_add,
    point_mul,
    point_negate,
    tagged_hash,
    to_xonly,
)
from fixedscript.errors import FixedScriptError

PUBNONCE_SIZE = 66
SECNONCE_SIZE = 97
PARTIAL_SIG_SIZE = 32

_INFINITY_ENCODING = b"\x00" * 33


class Musig2Error(FixedScriptError):
    pass


def _add(p: PublicKey | None, q: PublicKey | None) -> PublicKey | None:
    """Point addition where None is the point at infinity."""
    if p is None:
        return q
    if q is None:
        return p
    try:
        return point_add(p, q)
    except ValueError:
        return None


def _mul(p: PublicKey | None, scalar: int) -> PublicKey | None:
    if p is None or scalar % SECP256K1_N == 0:
        return None
    return point_mul(p, scalar)


def _cbytes_ext(p: PublicKey | None) -> bytes:
    if p is None:
        return _INFINITY_ENCODING
    return p.format(compressed=True)


def _cpoint_ext(data: bytes) -> PublicKey | None:
    if data == _INFINITY_ENCODING:
        return None
    return PublicKey(data)


@dataclass
class KeyAggContext:
    """Aggregate point Q with accumulated tweak state (gacc, tacc)."""

    q: PublicKey
    gacc: int = 1
    tacc: int = 0
    pubkeys: list[bytes] = field(default_factory=list)

    @property
    def xonly(self) -> bytes:
        return to_xonly(self.q)

    def apply_tweak(self, tweak: bytes, is_xonly: bool) -> KeyAggContext:
        if len(tweak) != 32:
            raise Musig2Error("The tweak must be a 32-byte array")
        g = SECP256K1_N - 1 if is_xonly and not has_even_y(self.q) else 1
        t = int_from_bytes(tweak)
        if t >= SECP256K1_N:
            raise Musig2Error("The tweak must be less than n")
        q = _add(_mul(self.q, g), base_mul(t) if t else None)
        if q is None:
            raise Musig2Error("The result of tweaking cannot be infinity")
        return KeyAggContext(
            q=q,
            gacc=(g * self.gacc) % SECP256K1_N,
            tacc=(t + g * self.tacc) % SECP256K1_N,
            pubkeys=list(self.pubkeys),
        )


def _hash_keys(pubkeys: list[bytes]) -> bytes:
    return tagged_hash("KeyAgg list", b"".join(pubkeys))


def _second_key(pubkeys: list[bytes]) -> bytes:
    for pk in pubkeys[1:]:
        if pk != pubkeys[0]:
            return pk
    return b"\x00" * len(pubkeys[0])


def key_agg_coeff(pubkeys: list[bytes], pubkey: bytes) -> int:
    if pubkey == _second_key(pubkeys):
        return 1
    return int_from_bytes(tagged_hash("KeyAgg coefficient", _hash_keys(pubkeys) + pubkey)) % (
        SECP256K1_N
    )


def key_agg(pubkeys: list[bytes]) -> KeyAggContext:
    """Aggregate 33-byte compressed public keys in the given order."""
    if not pubkeys:
        raise Musig2Error("At least one public key is required")
    for pk in pubkeys:
        if len(pk) != 33:
            raise Musig2Error(f"Invalid public key length: {len(pk)}")

    q: PublicKey | None = None
    for pk in pubkeys:
        try:
            point = PublicKey(pk)
        except ValueError as e:
            raise Musig2Error(f"Invalid public key {pk.hex()}: {e}") from e
        q = _add(q, _mul(point, key_agg_coeff(pubkeys, pk)))

    if q is None:
        raise Musig2Error("Aggregate public key is infinity")
    return KeyAggContext(q=q, pubkeys=list(pubkeys))


def key_agg_xonly(xonly_keys: list[bytes]) -> KeyAggContext:
    """
    Legacy aggregation used by p2trLegacy internal keys.

    The list and coefficient hashes commit to the 32-byte x-only keys, and
    each key is lifted to its even-y point before weighting.
    """
    if not xonly_keys:
        raise Musig2Error("At least one public key is required")
    keys = [to_xonly(k) for k in xonly_keys]
    for k in keys:
        if len(k) != 32:
            raise Musig2Error(f"Invalid x-only public key length: {len(k)}")

    q: PublicKey | None = None
    for k in keys:
        try:
            point = lift_x(k)
        except ValueError as e:
            raise Musig2Error(f"Invalid x-only public key {k.hex()}: {e}") from e
        q = _add(q, _mul(point, key_agg_coeff(keys, k)))

    if q is None:
        raise Musig2Error("Aggregate public key is infinity")
    return KeyAggContext(q=q, pubkeys=keys)


def nonce_gen(
    secret_key: bytes | None,
    pubkey: bytes,
    aggregate_xonly: bytes | None = None,
    msg: bytes | None = None,
    extra_in: bytes | None = None,
    rand: bytes | None = None,
) -> tuple[bytes, bytes]:
    """
    Generate a (secnonce, pubnonce) pair.

    ``rand`` must be fresh randomness (default); passing a fixed value makes
    nonces reproducible and is only acceptable in tests.
    """
    if len(pubkey) != 33:
        raise Musig2Error("The public key must be 33 bytes")
    rand_prime = rand if rand is not None else secrets.token_bytes(32)
    if len(rand_prime) != 32:
        raise Musig2Error("Session randomness must be 32 bytes")

    if secret_key is not None:
        aux = tagged_hash("MuSig/aux", rand_prime)
        seed = bytes(a ^ b for a, b in zip(secret_key, aux))
    else:
        seed = rand_prime

    aggpk = aggregate_xonly if aggregate_xonly is not None else b""
    if msg is None:
        msg_prefixed = b"\x00"
    else:
        msg_prefixed = b"\x01" + len(msg).to_bytes(8, "big") + msg
    extra = extra_in if extra_in is not None else b""

    def nonce_hash(i: int) -> int:
        buf = (
            seed
            + bytes([len(pubkey)])
            + pubkey
            + bytes([len(aggpk)])
            + aggpk
            + msg_prefixed
            + len(extra).to_bytes(4, "big")
            + extra
            + bytes([i])
        )
        return int_from_bytes(tagged_hash("MuSig/nonce", buf)) % SECP256K1_N

    k1 = nonce_hash(0)
    k2 = nonce_hash(1)
    if k1 == 0 or k2 == 0:
        raise Musig2Error("Nonce generation produced zero scalar")

    r1 = base_mul(k1)
    r2 = base_mul(k2)
    secnonce = bytes_from_int(k1) + bytes_from_int(k2) + pubkey
    pubnonce = r1.format(compressed=True) + r2.format(compressed=True)
    return secnonce, pubnonce


def nonce_agg(pubnonces: list[bytes]) -> bytes:
    result = b""
    for j in range(2):
        r: PublicKey | None = None
        for i, pubnonce in enumerate(pubnonces):
            if len(pubnonce) != PUBNONCE_SIZE:
                raise Musig2Error(f"Invalid public nonce length from signer {i}")
            try:
                point = PublicKey(pubnonce[33 * j : 33 * (j + 1)])
            except ValueError as e:
                raise Musig2Error(f"Invalid public nonce from signer {i}: {e}") from e
            r = _add(r, point)
        result += _cbytes_ext(r)
    return result


@dataclass
class SessionContext:
    aggnonce: bytes
    pubkeys: list[bytes]
    tweaks: list[tuple[bytes, bool]]
    msg: bytes

    def values(self) -> tuple[KeyAggContext, int, PublicKey, int]:
        keyagg_ctx = key_agg(self.pubkeys)
        for tweak, is_xonly in self.tweaks:
            keyagg_ctx = keyagg_ctx.apply_tweak(tweak, is_xonly)

        b = int_from_bytes(
            tagged_hash("MuSig/noncecoef", self.aggnonce + keyagg_ctx.xonly + self.msg)
        ) % SECP256K1_N
        r1 = _cpoint_ext(self.aggnonce[:33])
        r2 = _cpoint_ext(self.aggnonce[33:66])
        r = _add(r1, _mul(r2, b))
        if r is None:
            r = base_mul(1)
        e = int_from_bytes(
            tagged_hash("BIP0340/challenge", to_xonly(r) + keyagg_ctx.xonly + self.msg)
        ) % SECP256K1_N
        return keyagg_ctx, b, r, e


def partial_sign(secnonce: bytes, private_key: PrivateKey, session: SessionContext) -> bytes:
    if len(secnonce) != SECNONCE_SIZE:
        raise Musig2Error("Invalid secret nonce length")
    keyagg_ctx, b, r, e = session.values()

    k1_prime = int_from_bytes(secnonce[0:32])
    k2_prime = int_from_bytes(secnonce[32:64])
    if not 0 < k1_prime < SECP256K1_N or not 0 < k2_prime < SECP256K1_N:
        raise Musig2Error("Secret nonce out of range")
    k1 = k1_prime if has_even_y(r) else SECP256K1_N - k1_prime
    k2 = k2_prime if has_even_y(r) else SECP256K1_N - k2_prime

    d_prime = int_from_bytes(private_key.secret)
    pubkey = private_key.public_key.format(compressed=True)
    if pubkey != secnonce[64:97]:
        raise Musig2Error("Public key does not match nonce_gen argument")
    if pubkey not in session.pubkeys:
        raise Musig2Error("Signer is not a session participant")

    a = key_agg_coeff(session.pubkeys, pubkey)
    g = 1 if has_even_y(keyagg_ctx.q) else SECP256K1_N - 1
    d = (g * keyagg_ctx.gacc * d_prime) % SECP256K1_N
    s = (k1 + b * k2 + e * a * d) % SECP256K1_N
    psig = bytes_from_int(s)

    pubnonce = base_mul(k1_prime).format(compressed=True) + base_mul(k2_prime).format(
        compressed=True
    )
    if not partial_sig_verify(psig, pubnonce, pubkey, session):
        raise Musig2Error("Partial signature failed self-verification")
    return psig


def partial_sig_verify(
    psig: bytes, pubnonce: bytes, pubkey: bytes, session: SessionContext
) -> bool:
    if len(psig) != PARTIAL_SIG_SIZE or len(pubnonce) != PUBNONCE_SIZE:
        return False
    s = int_from_bytes(psig)
    if s >= SECP256K1_N:
        return False
    try:
        keyagg_ctx, b, r, e = session.values()
        r1 = PublicKey(pubnonce[:33])
        r2 = PublicKey(pubnonce[33:])
        point = PublicKey(pubkey)
    except (ValueError, Musig2Error):
        return False

    re_prime = _add(r1, _mul(r2, b))
    if re_prime is not None and not has_even_y(r):
        re_prime = point_negate(re_prime)
    a = key_agg_coeff(session.pubkeys, pubkey)
    g = 1 if has_even_y(keyagg_ctx.q) else SECP256K1_N - 1
    g_prime = (g * keyagg_ctx.gacc) % SECP256K1_N
    expected = _add(re_prime, _mul(point, e * a * g_prime))
    actual = base_mul(s) if s else None
    return _cbytes_ext(actual) == _cbytes_ext(expected)


def partial_sig_agg(psigs: list[bytes], session: SessionContext) -> bytes:
    keyagg_ctx, _b, r, e = session.values()
    s = 0
    for i, psig in enumerate(psigs):
        s_i = int_from_bytes(psig)
        if s_i >= SECP256K1_N:
            raise Musig2Error(f"Invalid partial signature from signer {i}")
        s = (s + s_i) % SECP256K1_N
    g = 1 if has_even_y(keyagg_ctx.q) else SECP256K1_N - 1
    s = (s + e * g * keyagg_ctx.tacc) % SECP256K1_N
    return to_xonly(r) + bytes_from_int(s)
