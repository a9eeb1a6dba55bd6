"""
BitGoPsbt: wallet-aware PSBT container.

Owns the PSBT, the target network and its envelope (plain or Zcash
branch-versioned), and drives signing and finalization for every wallet
script type.
"""

from __future__ import annotations

import copy
import struct
from dataclasses import dataclass

from coincurve import PrivateKey
from loguru import logger

from fixedscript import __version__
from fixedscript.config import CreateOptions
from fixedscript.constants import OP_0, SIGHASH_ALL, SIGHASH_DEFAULT, SIGHASH_FORKID
from fixedscript.crypto import (
    ecdsa_sign,
    ecdsa_verify,
    schnorr_sign,
    schnorr_verify,
    to_xonly,
)
from fixedscript.engine import Engine, ensure_engine
from fixedscript.errors import (
    IndexOutOfBounds,
    InvalidBranchIdSpecification,
    NonceExchangeIncomplete,
    SignatureCountMismatch,
    SigningError,
    UnsupportedScriptType,
)
from fixedscript.musig2 import (
    Musig2Error,
    SessionContext,
    nonce_agg,
    nonce_gen,
    partial_sig_agg,
    partial_sig_verify,
    partial_sign,
)
from fixedscript.networks import Network
from fixedscript.psbt.codec import KeyOrigin, Psbt, PsbtInput, PsbtOutput, TapKeyOrigin
from fixedscript.psbt.proprietary import (
    Musig2PartialSig,
    Musig2Participants,
    Musig2PubNonce,
    ProprietaryKeySubtype,
    find_bitgo_values,
    get_zec_consensus_branch_id,
    is_musig2_key,
    set_engine_version,
    set_zec_consensus_branch_id,
)
from fixedscript.tx.script import (
    is_two_of_three,
    op_return_script,
    parse_multisig_script,
    parse_script,
    push_data,
)
from fixedscript.tx.sighash import (
    compute_sighash_forkid,
    compute_sighash_legacy,
    compute_sighash_segwit,
    compute_sighash_taproot,
)
from fixedscript.tx.transaction import (
    ZCASH_SAPLING_VERSION,
    ZCASH_SAPLING_VERSION_GROUP_ID,
    Transaction,
    TxIn,
    TxOut,
    txid_to_bytes,
)
from fixedscript.tx.zcash import resolve_branch_id, zip243_sighash
from fixedscript.wallet.address import address_to_output_script
from fixedscript.wallet.bip32 import ExtendedKey
from fixedscript.wallet.chains import (
    Chain,
    InputScriptType,
    KeyRole,
    OutputScriptType,
    ScriptId,
    SignPath,
)
from fixedscript.wallet.keys import RootWalletKeys
from fixedscript.wallet.scripts import (
    ReplayProtectionScripts,
    WalletScripts,
    check_script_support,
    tap_leaf_hash,
    tap_tweak,
)


@dataclass(frozen=True)
class PlainEnvelope:
    version: int
    lock_time: int


@dataclass(frozen=True)
class BranchVersionedEnvelope:
    version: int
    lock_time: int
    branch_id: int
    version_group_id: int
    expiry_height: int


NetworkEnvelope = PlainEnvelope | BranchVersionedEnvelope


@dataclass(frozen=True)
class PartialSignature:
    pubkey: bytes
    signature: bytes
    is_schnorr: bool


def script_id_from_derivations(entry: PsbtInput | PsbtOutput) -> ScriptId | None:
    """
    (chain, index) shared by the last two path elements of every key origin,
    or None when the entry has no derivation info.
    """
    paths = [origin.path for origin in entry.bip32_derivation.values()]
    paths += [tap.origin.path for tap in entry.tap_bip32_derivation.values()]
    if not paths:
        return None
    ids = {tuple(path[-2:]) for path in paths if len(path) >= 2}
    if len(ids) != 1 or len(paths[0]) < 2:
        raise ValueError("Key origins do not share a common chain and index")
    chain, index = ids.pop()
    return ScriptId(chain, index)


class BitGoPsbt:
    """
    Mutable PSBT container for a fixed-script wallet.

    Signing and finalization mutate the container in place; use
    :meth:`clone` for independent copies.
    """

    def __init__(
        self,
        psbt: Psbt,
        network: Network,
        envelope: NetworkEnvelope,
        wallet: RootWalletKeys | None = None,
        engine: Engine | None = None,
    ):
        self._psbt = psbt
        self._network = network
        self._envelope = envelope
        self._wallet = wallet
        self._engine = ensure_engine(engine)
        # (input index, participant pubkey) -> secret nonce; never serialized
        self._secret_nonces: dict[tuple[int, bytes], bytes] = {}

    # ------------------------------------------------------------------
    # Construction

    @classmethod
    def create_empty(
        cls,
        network: Network,
        wallet: RootWalletKeys | None = None,
        version: int | None = None,
        lock_time: int = 0,
        consensus_branch_id: int | None = None,
        block_height: int | None = None,
        version_group_id: int | None = None,
        expiry_height: int | None = None,
        engine: Engine | None = None,
    ) -> BitGoPsbt:
        engine = ensure_engine(engine)
        options = CreateOptions(
            version=version if version is not None else 2,
            lock_time=lock_time,
            consensus_branch_id=consensus_branch_id,
            block_height=block_height,
            version_group_id=version_group_id,
            expiry_height=expiry_height,
        )

        envelope: NetworkEnvelope
        if network.is_zcash:
            branch_id = resolve_branch_id(
                options.consensus_branch_id, options.block_height, network.is_mainnet
            )
            envelope = BranchVersionedEnvelope(
                version=version if version is not None else ZCASH_SAPLING_VERSION,
                lock_time=options.lock_time,
                branch_id=branch_id,
                version_group_id=(
                    options.version_group_id
                    if options.version_group_id is not None
                    else ZCASH_SAPLING_VERSION_GROUP_ID
                ),
                expiry_height=options.expiry_height or 0,
            )
            tx = Transaction(
                envelope.version,
                lock_time=envelope.lock_time,
                version_group_id=envelope.version_group_id,
                expiry_height=envelope.expiry_height,
            )
        else:
            if options.consensus_branch_id is not None or options.block_height is not None:
                raise InvalidBranchIdSpecification(
                    f"Network {network.value} does not use consensus branch ids"
                )
            envelope = PlainEnvelope(options.version, options.lock_time)
            tx = Transaction(envelope.version, lock_time=envelope.lock_time)

        psbt = Psbt(tx)
        if isinstance(envelope, BranchVersionedEnvelope):
            set_zec_consensus_branch_id(psbt.proprietary, envelope.branch_id)
        set_engine_version(psbt.proprietary, __version__)

        logger.info(f"Created empty PSBT for {network.value} (version={envelope.version})")
        return cls(psbt, network, envelope, wallet, engine)

    @classmethod
    def deserialize(
        cls,
        data: bytes,
        network: Network,
        wallet: RootWalletKeys | None = None,
        engine: Engine | None = None,
    ) -> BitGoPsbt:
        psbt = Psbt.deserialize(data, dash=network.is_dash)
        return cls(psbt, network, _envelope_from_psbt(psbt, network), wallet, engine)

    @classmethod
    def from_base64(
        cls,
        encoded: str,
        network: Network,
        wallet: RootWalletKeys | None = None,
        engine: Engine | None = None,
    ) -> BitGoPsbt:
        psbt = Psbt.from_base64(encoded, dash=network.is_dash)
        return cls(psbt, network, _envelope_from_psbt(psbt, network), wallet, engine)

    def serialize(self) -> bytes:
        return self._psbt.serialize()

    def to_base64(self) -> str:
        return self._psbt.to_base64()

    def clone(self) -> BitGoPsbt:
        """
        Independent deep copy. Secret MuSig2 nonces are not copied: a nonce
        must only ever be used by the container that generated it.
        """
        return BitGoPsbt(
            copy.deepcopy(self._psbt), self._network, self._envelope, self._wallet, self._engine
        )

    # ------------------------------------------------------------------
    # Accessors

    @property
    def network(self) -> Network:
        return self._network

    @property
    def envelope(self) -> NetworkEnvelope:
        return self._envelope

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def wallet(self) -> RootWalletKeys | None:
        return self._wallet

    @property
    def psbt(self) -> Psbt:
        return self._psbt

    @property
    def version(self) -> int:
        return self._envelope.version

    @property
    def lock_time(self) -> int:
        return self._envelope.lock_time

    @property
    def tx(self) -> Transaction:
        return self._psbt.tx

    def input_count(self) -> int:
        return len(self._psbt.inputs)

    def output_count(self) -> int:
        return len(self._psbt.outputs)

    def unsigned_txid(self) -> str:
        return self._psbt.tx.txid()

    def _check_input_index(self, index: int) -> None:
        if not 0 <= index < len(self._psbt.inputs):
            raise IndexOutOfBounds("Input", index, len(self._psbt.inputs))

    def _check_output_index(self, index: int) -> None:
        if not 0 <= index < len(self._psbt.outputs):
            raise IndexOutOfBounds("Output", index, len(self._psbt.outputs))

    def _require_wallet(self, wallet: RootWalletKeys | None) -> RootWalletKeys:
        wallet = wallet or self._wallet
        if wallet is None:
            raise ValueError("Wallet keys are required")
        return wallet

    # ------------------------------------------------------------------
    # Inputs

    def add_input(
        self,
        txid: str,
        vout: int,
        value: int,
        script: bytes,
        sequence: int | None = None,
        prev_tx: bytes | None = None,
    ) -> int:
        """Append a bare input spending ``script`` and return its index."""
        tx_in = TxIn(
            txid_to_bytes(txid),
            vout,
            sequence=sequence if sequence is not None else self._engine.config.default_sequence,
        )
        psbt_input = PsbtInput(witness_utxo=TxOut(value, script))
        if prev_tx is not None:
            prev = Transaction.deserialize(prev_tx, dash=self._network.is_dash)
            if prev.txid() != txid:
                raise ValueError(f"prev_tx txid {prev.txid()} does not match {txid}")
            if vout >= len(prev.outputs):
                raise ValueError(f"prev_tx has no output {vout}")
            if prev.outputs[vout].value != value or prev.outputs[vout].script != script:
                raise ValueError(f"prev_tx output {vout} does not match value/script")
            psbt_input.non_witness_utxo = prev

        self._psbt.tx.inputs.append(tx_in)
        self._psbt.inputs.append(psbt_input)
        return len(self._psbt.inputs) - 1

    def add_wallet_input(
        self,
        txid: str,
        vout: int,
        value: int,
        script_id: ScriptId,
        wallet: RootWalletKeys | None = None,
        sign_path: SignPath | None = None,
        sequence: int | None = None,
        prev_tx: bytes | None = None,
    ) -> int:
        """
        Add an input spending the wallet script at ``script_id``.

        ``sign_path`` selects the taproot leaf (or MuSig2 key path) the input
        will be spent with.
        """
        wallet = self._require_wallet(wallet)
        scripts = WalletScripts.from_wallet_keys(
            wallet, script_id.chain, script_id.index, self._network
        )
        input_type = InputScriptType.from_output_script_type(scripts.script_type, sign_path)
        index = self.add_input(txid, vout, value, scripts.output_script, sequence, prev_tx)
        psbt_input = self._psbt.inputs[index]

        if scripts.taproot is None:
            psbt_input.redeem_script = scripts.redeem_script
            psbt_input.witness_script = scripts.witness_script
            for role, pubkey in zip(KeyRole, scripts.pubkeys):
                psbt_input.bip32_derivation[pubkey] = self._key_origin(wallet, role, script_id)
            psbt_input.sighash_type = self._ecdsa_sighash_type()
        else:
            taproot = scripts.taproot
            psbt_input.tap_internal_key = taproot.internal_key
            psbt_input.tap_merkle_root = taproot.merkle_root
            if input_type is InputScriptType.P2TR_MUSIG2_KEY_PATH:
                for role in (KeyRole.USER, KeyRole.BITGO):
                    xonly = to_xonly(scripts.pubkeys[role.key_index])
                    psbt_input.tap_bip32_derivation[xonly] = TapKeyOrigin(
                        [], self._key_origin(wallet, role, script_id)
                    )
                key, value_bytes = Musig2Participants(
                    taproot.output_key,
                    taproot.internal_key,
                    (scripts.pubkeys[0], scripts.pubkeys[2]),
                ).to_key_value()
                psbt_input.proprietary[key] = value_bytes
            else:
                if sign_path is None:
                    sign_path = (
                        SignPath.default()
                        if input_type is InputScriptType.P2TR_LEGACY
                        else SignPath.script_path_default()
                    )
                leaf = taproot.leaf_for_roles(sign_path.roles())
                psbt_input.tap_leaf_scripts[leaf.control_block] = (leaf.script, leaf.leaf_version)
                for role in leaf.roles:
                    xonly = to_xonly(scripts.pubkeys[role.key_index])
                    psbt_input.tap_bip32_derivation[xonly] = TapKeyOrigin(
                        [leaf.leaf_hash], self._key_origin(wallet, role, script_id)
                    )

        logger.debug(
            f"Added {input_type.value} input {index} ({txid}:{vout}, chain={script_id.chain}, "
            f"index={script_id.index}, value={value})"
        )
        return index

    def add_replay_protection_input(
        self,
        pubkey: bytes,
        txid: str,
        vout: int,
        value: int,
        sequence: int | None = None,
        prev_tx: bytes | None = None,
    ) -> int:
        """Add a p2shP2pk input locked to a single ``pubkey``."""
        scripts = ReplayProtectionScripts.from_pubkey(pubkey)
        index = self.add_input(txid, vout, value, scripts.output_script, sequence, prev_tx)
        psbt_input = self._psbt.inputs[index]
        psbt_input.redeem_script = scripts.redeem_script
        psbt_input.sighash_type = self._ecdsa_sighash_type()
        logger.debug(f"Added replay protection input {index} ({txid}:{vout}, value={value})")
        return index

    def _key_origin(self, wallet: RootWalletKeys, role: KeyRole, script_id: ScriptId) -> KeyOrigin:
        return KeyOrigin(
            wallet.key_for_role(role).fingerprint,
            wallet.derivation_indices(role, script_id.chain, script_id.index),
        )

    def _ecdsa_sighash_type(self) -> int:
        if self._network.fork_id is not None:
            return SIGHASH_ALL | SIGHASH_FORKID
        return SIGHASH_ALL

    # ------------------------------------------------------------------
    # Outputs

    def add_output(
        self,
        value: int,
        script: bytes | None = None,
        address: str | None = None,
        op_return: bytes | None = None,
    ) -> int:
        """Append an external output given exactly one of script, address or OP_RETURN data."""
        given = [x is not None for x in (script, address, op_return)]
        if sum(given) != 1:
            raise ValueError("Exactly one of script, address or op_return must be given")
        if value < 0:
            raise ValueError(f"Output value must be non-negative, got {value}")
        if address is not None:
            script = address_to_output_script(address, self._network)
        elif op_return is not None:
            script = op_return_script(op_return)

        self._psbt.tx.outputs.append(TxOut(value, script))
        self._psbt.outputs.append(PsbtOutput())
        return len(self._psbt.outputs) - 1

    def add_wallet_output(
        self,
        chain: int,
        index: int,
        value: int,
        wallet: RootWalletKeys | None = None,
    ) -> int:
        """Append an output paying to the wallet script at (chain, index)."""
        wallet = self._require_wallet(wallet)
        scripts = WalletScripts.from_wallet_keys(wallet, chain, index, self._network)
        output_index = self.add_output(value, script=scripts.output_script)
        psbt_output = self._psbt.outputs[output_index]
        script_id = ScriptId(chain, index)

        if scripts.taproot is None:
            psbt_output.redeem_script = scripts.redeem_script
            psbt_output.witness_script = scripts.witness_script
            for role, pubkey in zip(KeyRole, scripts.pubkeys):
                psbt_output.bip32_derivation[pubkey] = self._key_origin(wallet, role, script_id)
        else:
            taproot = scripts.taproot
            psbt_output.tap_internal_key = taproot.internal_key
            psbt_output.tap_tree = taproot.tap_tree()
            for role, pubkey in zip(KeyRole, scripts.pubkeys):
                leaf_hashes = [leaf.leaf_hash for leaf in taproot.leaves if role in leaf.roles]
                psbt_output.tap_bip32_derivation[to_xonly(pubkey)] = TapKeyOrigin(
                    leaf_hashes, self._key_origin(wallet, role, script_id)
                )

        logger.debug(f"Added wallet output {output_index} (chain={chain}, index={index}, value={value})")
        return output_index

    # ------------------------------------------------------------------
    # Input classification

    def input_script_type(self, index: int) -> InputScriptType | None:
        """Script type of input ``index`` from its PSBT fields, None if not a wallet input."""
        self._check_input_index(index)
        return classify_input(self._psbt.inputs[index])

    def input_script_id(self, index: int) -> ScriptId | None:
        self._check_input_index(index)
        return script_id_from_derivations(self._psbt.inputs[index])

    def prevout(self, index: int) -> TxOut:
        self._check_input_index(index)
        psbt_input = self._psbt.inputs[index]
        if psbt_input.witness_utxo is not None:
            return psbt_input.witness_utxo
        if psbt_input.non_witness_utxo is not None:
            vout = self._psbt.tx.inputs[index].vout
            return psbt_input.non_witness_utxo.outputs[vout]
        raise SigningError(f"Input {index} has no previous output information")

    def _prevouts(self) -> list[TxOut]:
        return [self.prevout(i) for i in range(len(self._psbt.inputs))]

    def partial_signatures(self, index: int) -> list[PartialSignature]:
        self._check_input_index(index)
        psbt_input = self._psbt.inputs[index]
        sigs = [PartialSignature(pk, sig, False) for pk, sig in psbt_input.partial_sigs.items()]
        sigs += [
            PartialSignature(xonly, sig, True)
            for (xonly, _leaf), sig in psbt_input.tap_script_sigs.items()
        ]
        if psbt_input.tap_key_sig is not None:
            sigs.append(PartialSignature(psbt_input.tap_internal_key or b"", psbt_input.tap_key_sig, True))
        return sigs

    # ------------------------------------------------------------------
    # Sighash

    def _ecdsa_sighash(self, index: int, script_code: bytes, segwit: bool) -> tuple[bytes, int]:
        """Digest to sign and the sighash byte appended to the signature."""
        value = self.prevout(index).value
        tx = self._psbt.tx
        if isinstance(self._envelope, BranchVersionedEnvelope):
            digest = zip243_sighash(
                tx, index, script_code, value, self._envelope.branch_id, SIGHASH_ALL
            )
            return digest, SIGHASH_ALL
        if self._network.fork_id is not None:
            digest = compute_sighash_forkid(tx, index, script_code, value, self._network.fork_id)
            return digest, SIGHASH_ALL | SIGHASH_FORKID
        if segwit:
            return compute_sighash_segwit(tx, index, script_code, value, SIGHASH_ALL), SIGHASH_ALL
        return compute_sighash_legacy(tx, index, script_code, SIGHASH_ALL), SIGHASH_ALL

    def _ecdsa_script_code(self, index: int, script_type: InputScriptType) -> tuple[bytes, bool]:
        psbt_input = self._psbt.inputs[index]
        if script_type in (InputScriptType.P2SH_P2WSH, InputScriptType.P2WSH):
            return psbt_input.witness_script, True
        return psbt_input.redeem_script, False

    def _taproot_sighash(self, index: int, leaf_hash: bytes | None) -> bytes:
        return compute_sighash_taproot(
            self._psbt.tx, index, self._prevouts(), SIGHASH_DEFAULT, leaf_hash
        )

    # ------------------------------------------------------------------
    # Signing

    def sign(self, key: ExtendedKey | PrivateKey) -> list[int]:
        """
        Sign every input ``key`` can sign and return their indices.

        ``key`` is a wallet root xprv (derived per input from the key origins)
        or, for replay protection inputs, a plain private key.
        """
        signed = []
        for index in range(len(self._psbt.inputs)):
            if not self._can_sign(index, key):
                continue
            self.sign_input(index, key)
            signed.append(index)
        if not signed:
            logger.warning("Key did not match any input")
        logger.debug(f"Signed inputs {signed}")
        return signed

    def _can_sign(self, index: int, key: ExtendedKey | PrivateKey) -> bool:
        psbt_input = self._psbt.inputs[index]
        if psbt_input.is_finalized:
            return False
        script_type = classify_input(psbt_input)
        if script_type is None:
            return False
        if script_type is InputScriptType.P2SH_P2PK:
            if isinstance(key, ExtendedKey) and not key.is_private:
                return False
            return _private_key(key).public_key.format(compressed=True) in psbt_input.redeem_script
        if not isinstance(key, ExtendedKey):
            return False
        derived = _derive_for_input(psbt_input, key)
        if derived is None:
            return False
        if script_type is InputScriptType.P2TR_MUSIG2_KEY_PATH:
            participants = self._musig2_participants(index)
            return derived.public_key_bytes in participants.participant_pub_keys
        return True

    def sign_input(self, index: int, key: ExtendedKey | PrivateKey) -> None:
        """Sign one input, attaching a partial signature."""
        self._check_input_index(index)
        psbt_input = self._psbt.inputs[index]
        if psbt_input.is_finalized:
            raise SigningError(f"Input {index} is already finalized")
        script_type = classify_input(psbt_input)
        if script_type is None:
            raise SigningError(f"Input {index} is not a wallet or replay protection input")

        try:
            if script_type is InputScriptType.P2SH_P2PK:
                self._sign_replay_protection(index, _private_key(key))
            elif script_type.is_multisig:
                self._sign_multisig(index, script_type, _require_extended(key))
            elif script_type is InputScriptType.P2TR_MUSIG2_KEY_PATH:
                self._sign_musig2_key_path(index, _require_extended(key))
            else:
                self._sign_taproot_script_path(index, _require_extended(key))
        except (ValueError, Musig2Error) as e:
            raise SigningError(f"Input {index}: failed to sign: {e}") from e

    def _sign_replay_protection(self, index: int, private_key: PrivateKey) -> None:
        psbt_input = self._psbt.inputs[index]
        pubkey = private_key.public_key.format(compressed=True)
        if pubkey not in psbt_input.redeem_script:
            raise SigningError(f"Input {index}: key does not match replay protection pubkey")
        digest, sighash_byte = self._ecdsa_sighash(index, psbt_input.redeem_script, False)
        psbt_input.partial_sigs[pubkey] = ecdsa_sign(private_key, digest) + bytes([sighash_byte])

    def _sign_multisig(self, index: int, script_type: InputScriptType, key: ExtendedKey) -> None:
        psbt_input = self._psbt.inputs[index]
        derived = _derive_for_input(psbt_input, key)
        if derived is None or derived.private_key is None:
            raise SigningError(f"Input {index}: key is not a signer of this input")
        script_code, segwit = self._ecdsa_script_code(index, script_type)
        digest, sighash_byte = self._ecdsa_sighash(index, script_code, segwit)
        signature = ecdsa_sign(derived.private_key, digest) + bytes([sighash_byte])
        psbt_input.partial_sigs[derived.public_key_bytes] = signature
        logger.debug(f"Input {index}: added ECDSA signature for {derived.public_key_bytes.hex()}")

    def _sign_taproot_script_path(self, index: int, key: ExtendedKey) -> None:
        psbt_input = self._psbt.inputs[index]
        derived = _derive_for_input(psbt_input, key)
        if derived is None or derived.private_key is None:
            raise SigningError(f"Input {index}: key is not a signer of this input")
        xonly = to_xonly(derived.public_key_bytes)
        script, _control_block = _single_leaf(psbt_input, index)
        leaf_hash = tap_leaf_hash(script)
        if xonly not in script:
            raise SigningError(f"Input {index}: key is not part of the tap leaf script")
        digest = self._taproot_sighash(index, leaf_hash)
        psbt_input.tap_script_sigs[(xonly, leaf_hash)] = schnorr_sign(derived.private_key, digest)
        logger.debug(f"Input {index}: added Schnorr script path signature for {xonly.hex()}")

    # ------------------------------------------------------------------
    # MuSig2

    def musig2_input_indices(self) -> list[int]:
        return [
            i
            for i, psbt_input in enumerate(self._psbt.inputs)
            if not psbt_input.is_finalized
            and classify_input(psbt_input) is InputScriptType.P2TR_MUSIG2_KEY_PATH
        ]

    def _check_musig2_network(self) -> None:
        if not self._network.is_bitcoin:
            raise UnsupportedScriptType("MuSig2 not supported for non-Bitcoin networks")

    def _musig2_participants(self, index: int) -> Musig2Participants:
        psbt_input = self._psbt.inputs[index]
        values = find_bitgo_values(
            psbt_input.proprietary, ProprietaryKeySubtype.MUSIG2_PARTICIPANT_PUB_KEYS
        )
        if not values:
            raise SigningError(f"Input {index} is not a MuSig2 input")
        return Musig2Participants.from_key_value(*values[0])

    def _musig2_pub_nonces(self, index: int) -> dict[bytes, bytes]:
        psbt_input = self._psbt.inputs[index]
        nonces = {}
        for key, value in find_bitgo_values(
            psbt_input.proprietary, ProprietaryKeySubtype.MUSIG2_PUB_NONCE
        ):
            nonce = Musig2PubNonce.from_key_value(key, value)
            nonces[nonce.participant_pub_key] = nonce.pub_nonce
        return nonces

    def _musig2_partial_sigs(self, index: int) -> dict[bytes, bytes]:
        psbt_input = self._psbt.inputs[index]
        sigs = {}
        for key, value in find_bitgo_values(
            psbt_input.proprietary, ProprietaryKeySubtype.MUSIG2_PARTIAL_SIG
        ):
            sig = Musig2PartialSig.from_key_value(key, value)
            sigs[sig.participant_pub_key] = sig.partial_sig
        return sigs

    def _musig2_session(self, index: int, nonces: list[bytes]) -> SessionContext:
        psbt_input = self._psbt.inputs[index]
        participants = self._musig2_participants(index)
        tweak = tap_tweak(participants.tap_internal_key, psbt_input.tap_merkle_root)
        return SessionContext(
            aggnonce=nonce_agg(nonces),
            pubkeys=list(participants.participant_pub_keys),
            tweaks=[(tweak, True)],
            msg=self._taproot_sighash(index, None),
        )

    def generate_musig2_nonces(self, key: ExtendedKey, session_id: bytes | None = None):
        """
        First MuSig2 round: create and store a nonce pair for every key path
        input ``key`` participates in. Returns a NonceRound to continue with.
        """
        from fixedscript.psbt.musig2_rounds import NonceRound

        self._check_musig2_network()
        if session_id is not None:
            if len(session_id) != 32:
                raise ValueError(f"session_id must be 32 bytes, got {len(session_id)}")
            if (
                self._network.is_mainnet
                and not self._engine.config.allow_custom_session_id_on_mainnet
            ):
                raise ValueError("Custom session_id is only allowed on testnets")
        if key.private_key is None:
            raise SigningError("Nonce generation requires a private key")

        indices = []
        for index in self.musig2_input_indices():
            psbt_input = self._psbt.inputs[index]
            derived = _derive_for_input(psbt_input, key)
            participants = self._musig2_participants(index)
            if derived is None or derived.public_key_bytes not in participants.participant_pub_keys:
                continue
            pubkey = derived.public_key_bytes
            secnonce, pubnonce = nonce_gen(
                derived.private_key.secret,
                pubkey,
                aggregate_xonly=participants.tap_internal_key,
                msg=self._taproot_sighash(index, None),
                extra_in=struct.pack("<I", index),
                rand=session_id,
            )
            self._secret_nonces[(index, pubkey)] = secnonce
            nonce_key, nonce_value = Musig2PubNonce(
                pubkey, participants.tap_output_key, pubnonce
            ).to_key_value()
            psbt_input.proprietary[nonce_key] = nonce_value
            indices.append(index)

        if self.musig2_input_indices() and not indices:
            raise SigningError("Key is not a MuSig2 participant of any input")
        logger.debug(f"Generated MuSig2 nonces for inputs {indices}")
        return NonceRound(self, key, indices)

    def combine_musig2_nonces(self, other: BitGoPsbt) -> None:
        """Merge public nonces generated by another signer on a copy of this PSBT."""
        self._check_musig2_network()
        if other.unsigned_txid() != self.unsigned_txid():
            raise ValueError("Cannot combine nonces from a PSBT with a different transaction")
        for index, other_input in enumerate(other._psbt.inputs):
            for key, value in find_bitgo_values(
                other_input.proprietary, ProprietaryKeySubtype.MUSIG2_PUB_NONCE
            ):
                self._psbt.inputs[index].proprietary[key] = value

    def _sign_musig2_key_path(self, index: int, key: ExtendedKey) -> None:
        self._check_musig2_network()
        psbt_input = self._psbt.inputs[index]
        participants = self._musig2_participants(index)
        derived = _derive_for_input(psbt_input, key)
        if derived is None or derived.public_key_bytes not in participants.participant_pub_keys:
            raise SigningError(f"Input {index}: key is not a MuSig2 participant")
        pubkey = derived.public_key_bytes

        secnonce = self._secret_nonces.get((index, pubkey))
        nonces = self._musig2_pub_nonces(index)
        missing = [pk.hex() for pk in participants.participant_pub_keys if pk not in nonces]
        if secnonce is None or missing:
            raise NonceExchangeIncomplete(
                f"Input {index}: MuSig2 nonce exchange incomplete "
                f"(own secret nonce: {secnonce is not None}, missing public nonces: {missing})"
            )

        session = self._musig2_session(
            index, [nonces[pk] for pk in participants.participant_pub_keys]
        )
        partial_sig = partial_sign(secnonce, derived.private_key, session)
        # a secret nonce is single use
        del self._secret_nonces[(index, pubkey)]

        sig_key, sig_value = Musig2PartialSig(
            pubkey, participants.tap_output_key, partial_sig
        ).to_key_value()
        psbt_input.proprietary[sig_key] = sig_value
        logger.debug(f"Input {index}: added MuSig2 partial signature for {pubkey.hex()}")

    def _aggregate_musig2(self, index: int) -> bytes:
        participants = self._musig2_participants(index)
        nonces = self._musig2_pub_nonces(index)
        sigs = self._musig2_partial_sigs(index)
        pubkeys = participants.participant_pub_keys
        if any(pk not in sigs for pk in pubkeys):
            raise SignatureCountMismatch(
                f"Input {index}: expected 2 MuSig2 partial signatures, got {len(sigs)}"
            )
        if any(pk not in nonces for pk in pubkeys):
            raise NonceExchangeIncomplete(f"Input {index}: missing MuSig2 public nonces")
        session = self._musig2_session(index, [nonces[pk] for pk in pubkeys])
        for pk in pubkeys:
            if not partial_sig_verify(sigs[pk], nonces[pk], pk, session):
                raise SigningError(f"Input {index}: invalid MuSig2 partial signature from {pk.hex()}")
        signature = partial_sig_agg([sigs[pk] for pk in pubkeys], session)
        if not schnorr_verify(participants.tap_output_key, signature, session.msg):
            raise SigningError(f"Input {index}: aggregated MuSig2 signature does not verify")
        return signature

    # ------------------------------------------------------------------
    # Verification

    def verify_signature_with_pubkey(self, index: int, pubkey: bytes) -> bool:
        """True if input ``index`` holds a valid signature by ``pubkey``."""
        self._check_input_index(index)
        psbt_input = self._psbt.inputs[index]
        script_type = classify_input(psbt_input)
        if script_type is None:
            return False

        if script_type is InputScriptType.P2TR_MUSIG2_KEY_PATH:
            if len(pubkey) != 33:
                return False
            sig = self._musig2_partial_sigs(index).get(pubkey)
            nonces = self._musig2_pub_nonces(index)
            participants = self._musig2_participants(index)
            if sig is None or any(pk not in nonces for pk in participants.participant_pub_keys):
                return False
            session = self._musig2_session(
                index, [nonces[pk] for pk in participants.participant_pub_keys]
            )
            return partial_sig_verify(sig, nonces[pubkey], pubkey, session)

        if script_type.is_taproot:
            xonly = to_xonly(pubkey)
            script, _control_block = _single_leaf(psbt_input, index)
            leaf_hash = tap_leaf_hash(script)
            sig = psbt_input.tap_script_sigs.get((xonly, leaf_hash))
            if sig is None:
                return False
            return schnorr_verify(xonly, sig[:64], self._taproot_sighash(index, leaf_hash))

        sig = psbt_input.partial_sigs.get(pubkey)
        if sig is None:
            return False
        if script_type is InputScriptType.P2SH_P2PK:
            script_code, segwit = psbt_input.redeem_script, False
        else:
            script_code, segwit = self._ecdsa_script_code(index, script_type)
        digest, sighash_byte = self._ecdsa_sighash(index, script_code, segwit)
        if sig[-1] != sighash_byte:
            return False
        return ecdsa_verify(pubkey, sig[:-1], digest)

    def verify_signature_with_xpub(self, index: int, xpub: ExtendedKey) -> bool:
        """Derive the input key from ``xpub`` via the key origins and verify its signature."""
        self._check_input_index(index)
        derived = _derive_for_input(self._psbt.inputs[index], xpub)
        if derived is None:
            return False
        return self.verify_signature_with_pubkey(index, derived.public_key_bytes)

    # ------------------------------------------------------------------
    # Finalization

    def finalize_all_inputs(self) -> None:
        """
        Build the final scriptSig/witness of every input. On failure the
        container is left unchanged.
        """
        finalized = [copy.deepcopy(inp) for inp in self._psbt.inputs]
        for index, psbt_input in enumerate(finalized):
            if psbt_input.is_finalized:
                continue
            self._finalize_input(index, psbt_input)
        self._psbt.inputs = finalized
        logger.info(f"Finalized {len(finalized)} inputs")

    def _finalize_input(self, index: int, psbt_input: PsbtInput) -> None:
        script_type = classify_input(psbt_input)
        if script_type is None:
            raise SigningError(f"Input {index}: cannot finalize unknown input type")

        if script_type is InputScriptType.P2SH_P2PK:
            if len(psbt_input.partial_sigs) != 1:
                raise SignatureCountMismatch(
                    f"Input {index}: expected 1 signature, got {len(psbt_input.partial_sigs)}"
                )
            (sig,) = psbt_input.partial_sigs.values()
            psbt_input.final_script_sig = push_data(sig) + push_data(psbt_input.redeem_script)

        elif script_type.is_multisig:
            script = psbt_input.witness_script or psbt_input.redeem_script
            _threshold, pubkeys = parse_multisig_script(script)
            unknown = [pk for pk in psbt_input.partial_sigs if pk not in pubkeys]
            if unknown:
                raise SigningError(f"Input {index}: signature for key not in script")
            if len(psbt_input.partial_sigs) != 2:
                raise SignatureCountMismatch(
                    f"Input {index}: expected 2 signatures, got {len(psbt_input.partial_sigs)}"
                )
            # signatures follow the key order of the script
            sigs = [psbt_input.partial_sigs[pk] for pk in pubkeys if pk in psbt_input.partial_sigs]
            if script_type is InputScriptType.P2SH:
                psbt_input.final_script_sig = (
                    bytes([OP_0])
                    + b"".join(push_data(s) for s in sigs)
                    + push_data(psbt_input.redeem_script)
                )
            else:
                psbt_input.final_script_witness = [b""] + sigs + [psbt_input.witness_script]
                if script_type is InputScriptType.P2SH_P2WSH:
                    psbt_input.final_script_sig = push_data(psbt_input.redeem_script)

        elif script_type is InputScriptType.P2TR_MUSIG2_KEY_PATH:
            if psbt_input.tap_key_sig is None:
                psbt_input.tap_key_sig = self._aggregate_musig2(index)
            psbt_input.final_script_witness = [psbt_input.tap_key_sig]

        else:
            script, control_block = _single_leaf(psbt_input, index)
            leaf_hash = tap_leaf_hash(script)
            keys = [op for op in parse_script(script) if isinstance(op, bytes)]
            sigs = [psbt_input.tap_script_sigs.get((k, leaf_hash)) for k in keys]
            present = sum(1 for s in sigs if s is not None)
            if present != len(keys):
                raise SignatureCountMismatch(
                    f"Input {index}: expected {len(keys)} signatures, got {present}"
                )
            # the first key in the script consumes the top stack item
            psbt_input.final_script_witness = list(reversed(sigs)) + [script, control_block]

        _clear_signing_fields(psbt_input)

    def extract_transaction(self) -> bytes:
        """Serialized network transaction from a fully finalized PSBT."""
        tx = self._psbt.tx.clone()
        for index, psbt_input in enumerate(self._psbt.inputs):
            if not psbt_input.is_finalized:
                raise SignatureCountMismatch(f"Input {index} is not finalized")
            tx.inputs[index].script_sig = psbt_input.final_script_sig or b""
            tx.inputs[index].witness = list(psbt_input.final_script_witness or [])
        return tx.serialize()

    def extracted_transaction(self) -> Transaction:
        return Transaction.deserialize(self.extract_transaction(), dash=self._network.is_dash)

    def get_half_signed_legacy_format(self) -> bytes:
        from fixedscript.psbt.legacy import half_signed_legacy_format

        return half_signed_legacy_format(self)

    def parse_transaction_with_wallet_keys(self, wallet: RootWalletKeys | None = None, **kwargs):
        from fixedscript.psbt.parser import parse_transaction_with_wallet_keys

        return parse_transaction_with_wallet_keys(self, self._require_wallet(wallet), **kwargs)

    def parse_outputs_with_wallet_keys(self, wallet: RootWalletKeys):
        from fixedscript.psbt.parser import parse_outputs_with_wallet_keys

        return parse_outputs_with_wallet_keys(self, wallet)

    def __repr__(self) -> str:
        return (
            f"BitGoPsbt({self._network.value}, inputs={self.input_count()}, "
            f"outputs={self.output_count()})"
        )


def classify_input(psbt_input: PsbtInput) -> InputScriptType | None:
    """Input script type inferred from PSBT fields."""
    if psbt_input.is_finalized:
        return None
    if any(is_musig2_key(k) for k in psbt_input.proprietary) or (
        psbt_input.tap_internal_key is not None and not psbt_input.tap_leaf_scripts
    ):
        return InputScriptType.P2TR_MUSIG2_KEY_PATH
    if psbt_input.tap_leaf_scripts:
        script_id = script_id_from_derivations(psbt_input)
        if script_id is not None and Chain.from_value(script_id.chain).script_type is (
            OutputScriptType.P2TR_MUSIG2
        ):
            return InputScriptType.P2TR_MUSIG2_SCRIPT_PATH
        return InputScriptType.P2TR_LEGACY
    if psbt_input.witness_script is not None:
        if psbt_input.redeem_script is not None:
            return InputScriptType.P2SH_P2WSH
        return InputScriptType.P2WSH
    if psbt_input.redeem_script is not None:
        if is_two_of_three(psbt_input.redeem_script):
            return InputScriptType.P2SH
        ops = parse_script(psbt_input.redeem_script)
        if len(ops) == 2 and isinstance(ops[0], bytes) and len(ops[0]) == 33:
            return InputScriptType.P2SH_P2PK
    return None


def _single_leaf(psbt_input: PsbtInput, index: int) -> tuple[bytes, bytes]:
    if len(psbt_input.tap_leaf_scripts) != 1:
        raise SigningError(
            f"Input {index}: expected exactly 1 tap leaf script, got {len(psbt_input.tap_leaf_scripts)}"
        )
    ((control_block, (script, _version)),) = psbt_input.tap_leaf_scripts.items()
    return script, control_block


def _derive_for_input(psbt_input: PsbtInput, key: ExtendedKey) -> ExtendedKey | None:
    """
    Derive ``key`` along the key origin whose fingerprint matches it, checking
    the derived public key against the recorded one.
    """
    fingerprint = key.fingerprint
    for pubkey, origin in psbt_input.bip32_derivation.items():
        if origin.fingerprint == fingerprint:
            derived = _derive_path(key, origin.path)
            if derived.public_key_bytes == pubkey:
                return derived
    for xonly, tap_origin in psbt_input.tap_bip32_derivation.items():
        if tap_origin.origin.fingerprint == fingerprint:
            derived = _derive_path(key, tap_origin.origin.path)
            if to_xonly(derived.public_key_bytes) == xonly:
                return derived
    return None


def _derive_path(key: ExtendedKey, path: list[int]) -> ExtendedKey:
    for child in path:
        key = key.derive(child)
    return key


def _private_key(key: ExtendedKey | PrivateKey) -> PrivateKey:
    if isinstance(key, PrivateKey):
        return key
    if key.private_key is None:
        raise SigningError("Signing requires a private key")
    return key.private_key


def _require_extended(key: ExtendedKey | PrivateKey) -> ExtendedKey:
    if not isinstance(key, ExtendedKey):
        raise SigningError("Wallet inputs must be signed with an extended key")
    if not key.is_private:
        raise SigningError("Signing requires a private extended key")
    return key


def _clear_signing_fields(psbt_input: PsbtInput) -> None:
    psbt_input.partial_sigs = {}
    psbt_input.sighash_type = None
    psbt_input.redeem_script = None
    psbt_input.witness_script = None
    psbt_input.bip32_derivation = {}
    psbt_input.tap_key_sig = None
    psbt_input.tap_script_sigs = {}
    psbt_input.tap_leaf_scripts = {}
    psbt_input.tap_bip32_derivation = {}
    psbt_input.tap_internal_key = None
    psbt_input.tap_merkle_root = None
    psbt_input.proprietary = {k: v for k, v in psbt_input.proprietary.items() if not is_musig2_key(k)}


def _envelope_from_psbt(psbt: Psbt, network: Network) -> NetworkEnvelope:
    tx = psbt.tx
    if network.is_zcash:
        branch_id = get_zec_consensus_branch_id(psbt.proprietary)
        if branch_id is None:
            raise InvalidBranchIdSpecification("Zcash PSBT has no consensus branch id")
        if not tx.is_zcash:
            raise InvalidBranchIdSpecification("Zcash PSBT transaction is not overwintered")
        return BranchVersionedEnvelope(
            tx.version, tx.lock_time, branch_id, tx.version_group_id, tx.expiry_height
        )
    return PlainEnvelope(tx.version, tx.lock_time)
