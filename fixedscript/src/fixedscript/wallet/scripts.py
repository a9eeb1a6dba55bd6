"""
Wallet script generation.

Builds the locking script, redeem/witness scripts and taproot tree for a
wallet key triple, and the single-key scripts used by replay protection
inputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger

from fixedscript.constants import OP_1, OP_CHECKSIG, OP_CHECKSIGVERIFY, TAPROOT_LEAF_VERSION
from fixedscript.crypto import hash160, lift_x, sha256, tagged_hash, to_xonly
from fixedscript.errors import UnsupportedScriptType
from fixedscript.musig2 import key_agg, key_agg_xonly
from fixedscript.networks import Network
from fixedscript.tx.script import multisig_script, p2pk_script, push_data
from fixedscript.tx.transaction import encode_bytes
from fixedscript.wallet.address import p2sh_output_script, segwit_output_script
from fixedscript.wallet.chains import Chain, KeyRole, OutputScriptType
from fixedscript.wallet.keys import RootWalletKeys

# Leaves as (depth, roles); roles are ordered CHECKSIGVERIFY key first
P2TR_LEGACY_LEAVES = [
    (1, (KeyRole.USER, KeyRole.BITGO)),
    (2, (KeyRole.USER, KeyRole.BACKUP)),
    (2, (KeyRole.BACKUP, KeyRole.BITGO)),
]
P2TR_MUSIG2_LEAVES = [
    (1, (KeyRole.USER, KeyRole.BACKUP)),
    (1, (KeyRole.BACKUP, KeyRole.BITGO)),
]


def check_script_support(script_type: OutputScriptType, network: Network) -> None:
    if script_type.is_segwit and not network.supports_segwit:
        raise UnsupportedScriptType("Network does not support segwit")
    if script_type.is_taproot and not network.supports_taproot:
        raise UnsupportedScriptType("Network does not support taproot")


def checksigverify_script(xonly_keys: list[bytes]) -> bytes:
    """<k1> OP_CHECKSIGVERIFY ... <kn> OP_CHECKSIG"""
    script = b""
    for key in xonly_keys[:-1]:
        script += push_data(key) + bytes([OP_CHECKSIGVERIFY])
    return script + push_data(xonly_keys[-1]) + bytes([OP_CHECKSIG])


def tap_leaf_hash(script: bytes, leaf_version: int = TAPROOT_LEAF_VERSION) -> bytes:
    return tagged_hash("TapLeaf", bytes([leaf_version]) + encode_bytes(script))


def tap_branch_hash(a: bytes, b: bytes) -> bytes:
    if b < a:
        a, b = b, a
    return tagged_hash("TapBranch", a + b)


def tap_tweak(internal_key: bytes, merkle_root: bytes | None) -> bytes:
    return tagged_hash("TapTweak", internal_key + (merkle_root or b""))


def taproot_output_key(internal_key: bytes, merkle_root: bytes | None) -> tuple[bytes, int]:
    """Tweaked x-only output key and its y parity."""
    tweaked = lift_x(internal_key).add(tap_tweak(internal_key, merkle_root))
    encoded = tweaked.format(compressed=True)
    return encoded[1:], encoded[0] & 1


@dataclass
class TapLeaf:
    script: bytes
    depth: int
    roles: tuple[KeyRole, KeyRole]
    leaf_hash: bytes
    control_block: bytes = b""

    @property
    def leaf_version(self) -> int:
        return TAPROOT_LEAF_VERSION


@dataclass
class TaprootInfo:
    internal_key: bytes
    output_key: bytes
    parity: int
    merkle_root: bytes
    leaves: list[TapLeaf]
    # compressed pubkeys aggregated into the internal key (user, bitgo)
    internal_key_participants: list[bytes] = field(default_factory=list)

    def leaf_for_roles(self, roles: frozenset[KeyRole]) -> TapLeaf:
        for leaf in self.leaves:
            if frozenset(leaf.roles) == roles:
                return leaf
        names = sorted(r.value for r in roles)
        raise UnsupportedScriptType(f"No tap leaf for signers {names}")

    def leaf_for_hash(self, leaf_hash: bytes) -> TapLeaf | None:
        for leaf in self.leaves:
            if leaf.leaf_hash == leaf_hash:
                return leaf
        return None

    def leaf_for_script(self, script: bytes) -> TapLeaf | None:
        for leaf in self.leaves:
            if leaf.script == script:
                return leaf
        return None

    def tap_tree(self) -> list[tuple[int, int, bytes]]:
        """PSBT_OUT_TAP_TREE entries (depth, leaf version, script)."""
        return [(leaf.depth, TAPROOT_LEAF_VERSION, leaf.script) for leaf in self.leaves]


def _build_tree(leaves: list[TapLeaf]) -> tuple[bytes, dict[int, list[bytes]]]:
    """
    Merkle root and per-leaf merkle paths for a depth-annotated leaf list in
    depth-first order.
    """
    # stack items: (depth, hash, leaf indices)
    stack: list[tuple[int, bytes, list[int]]] = []
    paths: dict[int, list[bytes]] = {i: [] for i in range(len(leaves))}
    for i, leaf in enumerate(leaves):
        node = (leaf.depth, leaf.leaf_hash, [i])
        while stack and stack[-1][0] == node[0]:
            depth, left_hash, left_leaves = stack.pop()
            for j in left_leaves:
                paths[j].append(node[1])
            for j in node[2]:
                paths[j].append(left_hash)
            node = (depth - 1, tap_branch_hash(left_hash, node[1]), left_leaves + node[2])
        stack.append(node)
    if len(stack) != 1 or stack[0][0] != 0:
        raise ValueError("Invalid taproot tree depths")
    return stack[0][1], paths


def build_taproot(
    xonly_by_role: dict[KeyRole, bytes],
    leaf_spec: list[tuple[int, tuple[KeyRole, KeyRole]]],
    internal_key: bytes,
    participants: list[bytes],
) -> TaprootInfo:
    leaves = []
    for depth, roles in leaf_spec:
        script = checksigverify_script([xonly_by_role[role] for role in roles])
        leaves.append(TapLeaf(script, depth, roles, tap_leaf_hash(script)))

    merkle_root, paths = _build_tree(leaves)
    output_key, parity = taproot_output_key(internal_key, merkle_root)
    for i, leaf in enumerate(leaves):
        leaf.control_block = (
            bytes([TAPROOT_LEAF_VERSION | parity]) + internal_key + b"".join(paths[i])
        )
    return TaprootInfo(internal_key, output_key, parity, merkle_root, leaves, participants)


@dataclass
class WalletScripts:
    """Scripts for one (chain, index) of a wallet."""

    script_type: OutputScriptType
    pubkeys: list[bytes]
    output_script: bytes
    redeem_script: bytes | None = None
    witness_script: bytes | None = None
    taproot: TaprootInfo | None = None

    @classmethod
    def from_pubkeys(
        cls, pubkeys: list[bytes], script_type: OutputScriptType
    ) -> WalletScripts:
        if len(pubkeys) != 3:
            raise ValueError(f"Expected 3 public keys, got {len(pubkeys)}")

        if script_type is OutputScriptType.P2SH:
            redeem = multisig_script(pubkeys, 2)
            return cls(script_type, pubkeys, p2sh_output_script(hash160(redeem)), redeem_script=redeem)

        if script_type is OutputScriptType.P2SH_P2WSH:
            witness = multisig_script(pubkeys, 2)
            redeem = segwit_output_script(0, sha256(witness))
            return cls(
                script_type,
                pubkeys,
                p2sh_output_script(hash160(redeem)),
                redeem_script=redeem,
                witness_script=witness,
            )

        if script_type is OutputScriptType.P2WSH:
            witness = multisig_script(pubkeys, 2)
            return cls(
                script_type,
                pubkeys,
                segwit_output_script(0, sha256(witness)),
                witness_script=witness,
            )

        xonly_by_role = {role: to_xonly(pk) for role, pk in zip(KeyRole, pubkeys)}
        user, bitgo = pubkeys[0], pubkeys[2]
        if script_type is OutputScriptType.P2TR_LEGACY:
            internal = key_agg_xonly([to_xonly(user), to_xonly(bitgo)]).xonly
            taproot = build_taproot(xonly_by_role, P2TR_LEGACY_LEAVES, internal, [user, bitgo])
        else:
            internal = key_agg([user, bitgo]).xonly
            taproot = build_taproot(xonly_by_role, P2TR_MUSIG2_LEAVES, internal, [user, bitgo])

        return cls(
            script_type,
            pubkeys,
            bytes([OP_1, 0x20]) + taproot.output_key,
            taproot=taproot,
        )

    @classmethod
    def from_wallet_keys(
        cls,
        wallet: RootWalletKeys,
        chain: int,
        index: int,
        network: Network | None = None,
    ) -> WalletScripts:
        script_type = Chain.from_value(chain).script_type
        if network is not None:
            check_script_support(script_type, network)
        pubkeys = [key.public_key_bytes for key in wallet.derive_for_chain_and_index(chain, index)]
        scripts = cls.from_pubkeys(pubkeys, script_type)
        logger.debug(
            f"Derived {script_type.value} script for chain={chain} index={index}: "
            f"{scripts.output_script.hex()}"
        )
        return scripts


@dataclass
class ReplayProtectionScripts:
    """p2shP2pk: a P2SH wrapped ``<pubkey> OP_CHECKSIG``."""

    pubkey: bytes
    redeem_script: bytes
    output_script: bytes

    @classmethod
    def from_pubkey(cls, pubkey: bytes) -> ReplayProtectionScripts:
        if len(pubkey) != 33:
            raise ValueError(f"Invalid compressed pubkey length: {len(pubkey)}")
        redeem = p2pk_script(pubkey)
        return cls(pubkey, redeem, p2sh_output_script(hash160(redeem)))


def replay_protection_output_script(pubkey: bytes) -> bytes:
    return ReplayProtectionScripts.from_pubkey(pubkey).output_script
