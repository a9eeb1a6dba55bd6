"""
Tests for the BitGoPsbt container: construction, signing, finalization and
extraction across wallet script types and networks.
"""

import pytest
from coincurve import PrivateKey
from pydantic import ValidationError

from conftest import PREV_TXID, xprvs_from_seed
from fixedscript.config import EngineConfig
from fixedscript.constants import SIGHASH_ALL, SIGHASH_FORKID
from fixedscript.engine import Engine, init
from fixedscript.errors import (
    DeserializationFailure,
    IndexOutOfBounds,
    InvalidBranchIdSpecification,
    InvalidInitToken,
    SignatureCountMismatch,
    SigningError,
    UnsupportedScriptType,
)
from fixedscript.networks import Network
from fixedscript.psbt.container import (
    BitGoPsbt,
    BranchVersionedEnvelope,
    PlainEnvelope,
    classify_input,
)
from fixedscript.psbt.proprietary import get_engine_version, get_zec_consensus_branch_id
from fixedscript.tx.script import parse_script
from fixedscript.tx.transaction import Transaction, TxIn, TxOut, txid_to_bytes
from fixedscript.wallet.chains import InputScriptType, KeyRole, ScriptId, SignPath
from fixedscript.wallet.scripts import WalletScripts

EXTERNAL_SCRIPT = bytes.fromhex("0014" + "42" * 20)
EXTERNAL_P2SH_SCRIPT = bytes.fromhex("a914" + "42" * 20 + "87")


def _multisig_psbt(wallet, network=Network.BITCOIN, chains=(0, 10, 20), **options):
    psbt = BitGoPsbt.create_empty(network, wallet, **options)
    for vout, chain in enumerate(chains):
        psbt.add_wallet_input(PREV_TXID, vout, 100_000, ScriptId(chain, vout))
    external = EXTERNAL_SCRIPT if network.supports_segwit else EXTERNAL_P2SH_SCRIPT
    psbt.add_output(10_000 * len(chains), script=external)
    psbt.add_wallet_output(1, 5, 80_000 * len(chains))
    return psbt


class TestCreateEmpty:
    def test_defaults(self, wallet):
        psbt = BitGoPsbt.create_empty(Network.BITCOIN, wallet)
        assert psbt.envelope == PlainEnvelope(2, 0)
        assert psbt.input_count() == 0
        assert psbt.output_count() == 0
        assert get_engine_version(psbt.psbt.proprietary) == "0.4.0"

    def test_version_and_lock_time(self, wallet):
        psbt = BitGoPsbt.create_empty(Network.BITCOIN, wallet, version=1, lock_time=800_000)
        assert psbt.version == 1
        assert psbt.lock_time == 800_000
        assert psbt.tx.lock_time == 800_000

    def test_branch_id_on_non_zcash(self, wallet):
        with pytest.raises(InvalidBranchIdSpecification):
            BitGoPsbt.create_empty(Network.BITCOIN, wallet, consensus_branch_id=0xC2D6D0B4)
        with pytest.raises(InvalidBranchIdSpecification):
            BitGoPsbt.create_empty(Network.LITECOIN, wallet, block_height=2_000_000)

    def test_zcash_from_height(self, wallet):
        psbt = BitGoPsbt.create_empty(Network.ZCASH, wallet, block_height=1_687_104)
        envelope = psbt.envelope
        assert isinstance(envelope, BranchVersionedEnvelope)
        assert envelope.branch_id == 0xC2D6D0B4
        assert envelope.version == 4
        assert envelope.version_group_id == 0x892F2085
        assert get_zec_consensus_branch_id(psbt.psbt.proprietary) == 0xC2D6D0B4

    def test_zcash_requires_branch_id(self, wallet):
        with pytest.raises(InvalidBranchIdSpecification):
            BitGoPsbt.create_empty(Network.ZCASH, wallet)

    def test_zcash_expiry_without_branch(self, wallet):
        with pytest.raises(ValidationError):
            BitGoPsbt.create_empty(Network.ZCASH, wallet, expiry_height=100)

    def test_zcash_envelope_survives_roundtrip(self, wallet):
        psbt = BitGoPsbt.create_empty(
            Network.ZCASH, wallet, consensus_branch_id=0xC8E71055, expiry_height=3_000_000
        )
        parsed = BitGoPsbt.deserialize(psbt.serialize(), Network.ZCASH, wallet)
        assert parsed.envelope == psbt.envelope
        assert parsed.envelope.expiry_height == 3_000_000

    def test_zcash_deserialize_without_branch_id(self, wallet):
        data = BitGoPsbt.create_empty(Network.BITCOIN, wallet).serialize()
        with pytest.raises(InvalidBranchIdSpecification):
            BitGoPsbt.deserialize(data, Network.ZCASH)

    def test_invalid_engine_handle(self, wallet):
        with pytest.raises(InvalidInitToken):
            BitGoPsbt.create_empty(Network.BITCOIN, wallet, engine="not an engine")

    def test_engine_factory(self, wallet):
        engine = init(EngineConfig(default_sequence=0xFFFFFFFD))
        psbt = engine.create_empty(Network.BITCOIN, wallet)
        psbt.add_wallet_input(PREV_TXID, 0, 1_000, ScriptId(20, 0))
        assert psbt.engine is engine
        assert psbt.tx.inputs[0].sequence == 0xFFFFFFFD
        assert isinstance(engine.deserialize(psbt.serialize(), Network.BITCOIN), BitGoPsbt)
        assert isinstance(engine, Engine)


class TestInputsAndOutputs:
    def test_wallet_input_fields(self, wallet):
        psbt = BitGoPsbt.create_empty(Network.BITCOIN, wallet)
        index = psbt.add_wallet_input(PREV_TXID, 2, 10_000, ScriptId(10, 4))
        psbt_input = psbt.psbt.inputs[index]
        scripts = WalletScripts.from_wallet_keys(wallet, 10, 4)
        assert psbt_input.witness_utxo == TxOut(10_000, scripts.output_script)
        assert psbt_input.redeem_script == scripts.redeem_script
        assert psbt_input.witness_script == scripts.witness_script
        assert psbt_input.sighash_type == SIGHASH_ALL
        assert len(psbt_input.bip32_derivation) == 3
        assert psbt.input_script_type(index) is InputScriptType.P2SH_P2WSH
        assert psbt.input_script_id(index) == ScriptId(10, 4)
        assert psbt.tx.inputs[index].txid == PREV_TXID
        assert psbt.tx.inputs[index].vout == 2

    def test_taproot_script_path_input(self, wallet):
        psbt = BitGoPsbt.create_empty(Network.BITCOIN, wallet)
        index = psbt.add_wallet_input(
            PREV_TXID, 0, 10_000, ScriptId(30, 0), sign_path=SignPath(KeyRole.USER, KeyRole.BACKUP)
        )
        psbt_input = psbt.psbt.inputs[index]
        assert len(psbt_input.tap_leaf_scripts) == 1
        assert len(psbt_input.tap_bip32_derivation) == 2
        (control_block,) = psbt_input.tap_leaf_scripts
        assert len(control_block) == 1 + 32 + 64
        assert psbt.input_script_type(index) is InputScriptType.P2TR_LEGACY

    def test_musig2_key_path_input(self, wallet):
        psbt = BitGoPsbt.create_empty(Network.BITCOIN, wallet)
        index = psbt.add_wallet_input(PREV_TXID, 0, 10_000, ScriptId(40, 0))
        psbt_input = psbt.psbt.inputs[index]
        assert psbt_input.tap_leaf_scripts == {}
        assert psbt_input.tap_merkle_root is not None
        assert psbt.input_script_type(index) is InputScriptType.P2TR_MUSIG2_KEY_PATH
        assert psbt.musig2_input_indices() == [index]

    def test_musig2_script_path_input(self, wallet):
        psbt = BitGoPsbt.create_empty(Network.BITCOIN, wallet)
        index = psbt.add_wallet_input(
            PREV_TXID, 0, 10_000, ScriptId(41, 3), sign_path=SignPath(KeyRole.BACKUP, KeyRole.BITGO)
        )
        assert psbt.input_script_type(index) is InputScriptType.P2TR_MUSIG2_SCRIPT_PATH
        assert psbt.musig2_input_indices() == []

    def test_wallet_output_fields(self, wallet):
        psbt = BitGoPsbt.create_empty(Network.BITCOIN, wallet)
        p2wsh = psbt.add_wallet_output(21, 0, 1_000)
        p2tr = psbt.add_wallet_output(31, 0, 1_000)
        assert len(psbt.psbt.outputs[p2wsh].bip32_derivation) == 3
        taproot_output = psbt.psbt.outputs[p2tr]
        assert len(taproot_output.tap_tree) == 3
        assert len(taproot_output.tap_bip32_derivation) == 3
        leaf_counts = sorted(len(o.leaf_hashes) for o in taproot_output.tap_bip32_derivation.values())
        assert leaf_counts == [2, 2, 2]

    def test_add_output_requires_exactly_one(self, wallet):
        psbt = BitGoPsbt.create_empty(Network.BITCOIN, wallet)
        with pytest.raises(ValueError, match="Exactly one"):
            psbt.add_output(1_000)
        with pytest.raises(ValueError, match="Exactly one"):
            psbt.add_output(1_000, script=EXTERNAL_SCRIPT, op_return=b"x")

    def test_add_output_by_address(self, wallet):
        psbt = BitGoPsbt.create_empty(Network.BITCOIN, wallet)
        index = psbt.add_output(1_000, address="bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4")
        assert psbt.tx.outputs[index].script.hex() == "0014751e76e8199196d454941c45d1b3a323f1433bd6"

    def test_negative_output(self, wallet):
        psbt = BitGoPsbt.create_empty(Network.BITCOIN, wallet)
        with pytest.raises(ValueError, match="non-negative"):
            psbt.add_output(-1, script=EXTERNAL_SCRIPT)

    def test_prev_tx_validation(self, wallet):
        scripts = WalletScripts.from_wallet_keys(wallet, 0, 0)
        prev = Transaction(
            1,
            [TxIn(txid_to_bytes("22" * 32), 0)],
            [TxOut(50_000, scripts.output_script)],
        )
        psbt = BitGoPsbt.create_empty(Network.BITCOIN, wallet)
        index = psbt.add_wallet_input(
            prev.txid(), 0, 50_000, ScriptId(0, 0), prev_tx=prev.serialize()
        )
        assert psbt.psbt.inputs[index].non_witness_utxo == prev
        with pytest.raises(ValueError, match="does not match"):
            psbt.add_wallet_input(PREV_TXID, 0, 50_000, ScriptId(0, 0), prev_tx=prev.serialize())
        with pytest.raises(ValueError, match="value/script"):
            psbt.add_wallet_input(prev.txid(), 0, 1, ScriptId(0, 0), prev_tx=prev.serialize())

    def test_requires_wallet(self):
        psbt = BitGoPsbt.create_empty(Network.BITCOIN)
        with pytest.raises(ValueError, match="Wallet keys are required"):
            psbt.add_wallet_input(PREV_TXID, 0, 1_000, ScriptId(0, 0))

    def test_unsupported_script_for_network(self, wallet):
        psbt = BitGoPsbt.create_empty(Network.DOGECOIN, wallet)
        with pytest.raises(UnsupportedScriptType, match="segwit"):
            psbt.add_wallet_input(PREV_TXID, 0, 1_000, ScriptId(20, 0))

    def test_index_errors(self, wallet, user_xprv):
        psbt = _multisig_psbt(wallet)
        with pytest.raises(IndexOutOfBounds, match="Input index 3 out of bounds"):
            psbt.sign_input(3, user_xprv)
        with pytest.raises(IndexOutOfBounds):
            psbt.partial_signatures(-1)
        with pytest.raises(IndexOutOfBounds):
            psbt.verify_signature_with_pubkey(7, b"\x02" * 33)


class TestMultisigSigning:
    def test_full_flow(self, wallet, user_xprv, bitgo_xprv, backup_xprv):
        psbt = _multisig_psbt(wallet)
        assert psbt.sign(user_xprv) == [0, 1, 2]
        for index in range(3):
            sigs = psbt.partial_signatures(index)
            assert len(sigs) == 1
            assert sigs[0].signature[-1] == SIGHASH_ALL
            assert not sigs[0].is_schnorr
            assert psbt.verify_signature_with_xpub(index, user_xprv.neutered())
            assert not psbt.verify_signature_with_xpub(index, backup_xprv.neutered())

        with pytest.raises(SignatureCountMismatch, match="expected 2 signatures, got 1"):
            psbt.finalize_all_inputs()
        assert not psbt.psbt.inputs[0].is_finalized

        psbt.sign(bitgo_xprv)
        psbt.finalize_all_inputs()
        assert all(inp.is_finalized for inp in psbt.psbt.inputs)
        assert psbt.psbt.inputs[0].bip32_derivation == {}

        tx = psbt.extracted_transaction()
        p2sh_ops = parse_script(tx.inputs[0].script_sig)
        assert p2sh_ops[0] == 0
        assert len(p2sh_ops) == 4
        assert tx.inputs[0].witness == []
        assert len(tx.inputs[1].witness) == 4
        assert tx.inputs[1].witness[0] == b""
        assert tx.inputs[1].script_sig == bytes([0x22]) + psbt_redeem(wallet, 10, 1)
        assert tx.inputs[2].script_sig == b""
        assert len(tx.inputs[2].witness) == 4

    @pytest.mark.parametrize("chains", [(0,), (10, 20), (0, 11, 21, 30, 31)])
    def test_unsigned_txid_independent_of_signing_order(
        self, wallet, user_xprv, bitgo_xprv, chains
    ):
        first = _multisig_psbt(wallet, chains=chains)
        second = first.clone()
        unsigned = first.unsigned_txid()

        first.sign(user_xprv)
        first.sign(bitgo_xprv)
        second.sign(bitgo_xprv)
        assert second.unsigned_txid() == unsigned
        second.sign(user_xprv)
        assert first.unsigned_txid() == second.unsigned_txid() == unsigned

        first.finalize_all_inputs()
        second.finalize_all_inputs()
        assert first.unsigned_txid() == unsigned
        assert first.extracted_transaction().txid() == unsigned
        assert second.extracted_transaction().txid() == unsigned

    def test_signatures_follow_script_key_order(self, wallet, user_xprv, bitgo_xprv):
        psbt = _multisig_psbt(wallet, chains=(20,))
        psbt.sign(bitgo_xprv)
        psbt.sign(user_xprv)
        user_sig = psbt.psbt.inputs[0].partial_sigs[wallet.public_keys_for(ScriptId(20, 0))[0]]
        psbt.finalize_all_inputs()
        assert psbt.psbt.inputs[0].final_script_witness[1] == user_sig

    def test_backup_recovery(self, wallet, user_xprv, backup_xprv):
        psbt = _multisig_psbt(wallet, chains=(20,))
        psbt.sign(user_xprv)
        psbt.sign(backup_xprv)
        psbt.finalize_all_inputs()
        assert psbt.extract_transaction()

    def test_serialize_preserves_signatures(self, wallet, user_xprv):
        psbt = _multisig_psbt(wallet)
        psbt.sign(user_xprv)
        parsed = BitGoPsbt.from_base64(psbt.to_base64(), Network.BITCOIN, wallet)
        assert parsed.serialize() == psbt.serialize()
        assert parsed.verify_signature_with_xpub(1, user_xprv.neutered())

    def test_extract_requires_finalization(self, wallet, user_xprv):
        psbt = _multisig_psbt(wallet)
        psbt.sign(user_xprv)
        with pytest.raises(SignatureCountMismatch, match="not finalized"):
            psbt.extract_transaction()

    def test_foreign_key_signs_nothing(self, wallet):
        psbt = _multisig_psbt(wallet)
        assert psbt.sign(xprvs_from_seed("other")[0]) == []
        with pytest.raises(SigningError, match="not a signer"):
            psbt.sign_input(0, xprvs_from_seed("other")[0])

    def test_public_key_cannot_sign(self, wallet, user_xprv):
        psbt = _multisig_psbt(wallet)
        with pytest.raises(SigningError, match="private"):
            psbt.sign_input(0, user_xprv.neutered())

    def test_finalized_input_cannot_be_signed(self, wallet, user_xprv, bitgo_xprv):
        psbt = _multisig_psbt(wallet, chains=(0,))
        psbt.sign(user_xprv)
        psbt.sign(bitgo_xprv)
        psbt.finalize_all_inputs()
        with pytest.raises(SigningError, match="already finalized"):
            psbt.sign_input(0, user_xprv)
        assert classify_input(psbt.psbt.inputs[0]) is None

    def test_clone_is_independent(self, wallet, user_xprv):
        psbt = _multisig_psbt(wallet)
        clone = psbt.clone()
        clone.sign(user_xprv)
        assert psbt.partial_signatures(0) == []
        assert len(clone.partial_signatures(0)) == 1
        assert clone.unsigned_txid() == psbt.unsigned_txid()


def psbt_redeem(wallet, chain, index):
    return WalletScripts.from_wallet_keys(wallet, chain, index).redeem_script


class TestTaprootScriptPath:
    def test_p2tr_legacy_user_bitgo(self, wallet, user_xprv, bitgo_xprv):
        psbt = _multisig_psbt(wallet, chains=(30,))
        assert psbt.sign(user_xprv) == [0]
        sigs = psbt.partial_signatures(0)
        assert sigs[0].is_schnorr
        assert len(sigs[0].signature) == 64
        psbt.sign(bitgo_xprv)
        psbt.finalize_all_inputs()
        witness = psbt.extracted_transaction().inputs[0].witness
        assert len(witness) == 4
        assert [len(item) for item in witness] == [64, 64, 68, 65]

    def test_p2tr_legacy_backup_path(self, wallet, user_xprv, backup_xprv, bitgo_xprv):
        psbt = BitGoPsbt.create_empty(Network.BITCOIN, wallet)
        psbt.add_wallet_input(
            PREV_TXID, 0, 10_000, ScriptId(31, 2), sign_path=SignPath(KeyRole.BACKUP, KeyRole.BITGO)
        )
        psbt.add_output(9_000, script=EXTERNAL_SCRIPT)
        assert psbt.sign(user_xprv) == []
        psbt.sign(backup_xprv)
        with pytest.raises(SignatureCountMismatch):
            psbt.finalize_all_inputs()
        psbt.sign(bitgo_xprv)
        psbt.finalize_all_inputs()
        witness = psbt.extracted_transaction().inputs[0].witness
        assert len(witness[-1]) == 1 + 32 + 64

    def test_p2tr_musig2_script_path(self, wallet, user_xprv, backup_xprv):
        psbt = BitGoPsbt.create_empty(Network.BITCOIN, wallet)
        psbt.add_wallet_input(
            PREV_TXID, 0, 10_000, ScriptId(40, 0), sign_path=SignPath(KeyRole.USER, KeyRole.BACKUP)
        )
        psbt.add_output(9_000, script=EXTERNAL_SCRIPT)
        psbt.sign(user_xprv)
        psbt.sign(backup_xprv)
        assert psbt.verify_signature_with_xpub(0, backup_xprv.neutered())
        psbt.finalize_all_inputs()
        witness = psbt.extracted_transaction().inputs[0].witness
        assert [len(item) for item in witness] == [64, 64, 68, 65]


class TestReplayProtection:
    def test_sign_and_finalize(self, wallet, user_xprv, bitgo_xprv):
        key = PrivateKey(b"\x07" * 32)
        pubkey = key.public_key.format(compressed=True)
        psbt = _multisig_psbt(wallet, chains=(0,))
        index = psbt.add_replay_protection_input(pubkey, "33" * 32, 0, 1_000)
        assert psbt.input_script_type(index) is InputScriptType.P2SH_P2PK
        assert psbt.sign(user_xprv) == [0]
        assert psbt.sign(key) == [index]
        assert psbt.verify_signature_with_pubkey(index, pubkey)
        psbt.sign(bitgo_xprv)
        psbt.finalize_all_inputs()
        script_sig = psbt.extracted_transaction().inputs[index].script_sig
        ops = parse_script(script_sig)
        assert len(ops) == 2
        assert ops[1] == b"\x21" + pubkey + b"\xac"

    def test_neutered_key_skips_replay_input(self, wallet, user_xprv):
        psbt = BitGoPsbt.create_empty(Network.BITCOIN, wallet)
        pubkey = PrivateKey(b"\x07" * 32).public_key.format(compressed=True)
        psbt.add_replay_protection_input(pubkey, "33" * 32, 0, 1_000)
        psbt.add_output(900, script=EXTERNAL_SCRIPT)
        assert psbt.sign(user_xprv.neutered()) == []
        assert psbt.psbt.inputs[0].partial_sigs == {}

    def test_wrong_key(self, wallet):
        psbt = BitGoPsbt.create_empty(Network.BITCOIN, wallet)
        pubkey = PrivateKey(b"\x07" * 32).public_key.format(compressed=True)
        index = psbt.add_replay_protection_input(pubkey, "33" * 32, 0, 1_000)
        with pytest.raises(SigningError, match="replay protection pubkey"):
            psbt.sign_input(index, PrivateKey(b"\x08" * 32))


class TestDash:
    def _prev_special_tx(self, wallet):
        script = WalletScripts.from_wallet_keys(wallet, 0, 0).output_script
        return Transaction(
            3,
            [TxIn(txid_to_bytes("44" * 32), 0)],
            [TxOut(100_000, script)],
            dash_type=5,
            extra_payload=bytes.fromhex("0200") + b"\x07" * 70,
        )

    def _psbt(self, wallet, prev):
        psbt = BitGoPsbt.create_empty(Network.DASH, wallet)
        psbt.add_wallet_input(prev.txid(), 0, 100_000, ScriptId(0, 0), prev_tx=prev.serialize())
        psbt.add_output(90_000, script=EXTERNAL_P2SH_SCRIPT)
        return psbt

    def test_special_prev_tx_round_trip(self, wallet):
        prev = self._prev_special_tx(wallet)
        psbt = self._psbt(wallet, prev)
        data = psbt.serialize()

        parsed = BitGoPsbt.deserialize(data, Network.DASH, wallet)
        utxo_tx = parsed.psbt.inputs[0].non_witness_utxo
        assert utxo_tx.dash_type == 5
        assert utxo_tx.extra_payload == prev.extra_payload
        assert utxo_tx.txid() == prev.txid()
        assert parsed.serialize() == data

    def test_special_unsigned_tx_round_trip(self, wallet):
        psbt = self._psbt(wallet, self._prev_special_tx(wallet))
        psbt.psbt.tx.dash_type = 8
        psbt.psbt.tx.extra_payload = b"\x01\x00" + b"\x09" * 32
        data = psbt.serialize()

        parsed = BitGoPsbt.deserialize(data, Network.DASH, wallet)
        assert parsed.psbt.tx.dash_type == 8
        assert parsed.psbt.tx.version == 2
        assert parsed.unsigned_txid() == psbt.unsigned_txid()
        assert parsed.serialize() == data

    def test_special_tx_needs_dash_network(self, wallet):
        data = self._psbt(wallet, self._prev_special_tx(wallet)).serialize()
        with pytest.raises(DeserializationFailure):
            BitGoPsbt.deserialize(data, Network.BITCOIN, wallet)

    def test_sign_and_extract(self, wallet, user_xprv, bitgo_xprv):
        psbt = self._psbt(wallet, self._prev_special_tx(wallet))
        psbt.sign(user_xprv)
        psbt.sign(bitgo_xprv)
        psbt.finalize_all_inputs()
        tx = psbt.extracted_transaction()
        assert tx.dash_type == 0
        assert tx.txid() == psbt.unsigned_txid()


class TestOtherNetworks:
    def test_bitcoin_cash_fork_id(self, wallet, user_xprv, bitgo_xprv):
        psbt = _multisig_psbt(wallet, Network.BITCOIN_CASH, chains=(0,))
        assert psbt.psbt.inputs[0].sighash_type == SIGHASH_ALL | SIGHASH_FORKID
        psbt.sign(user_xprv)
        assert psbt.partial_signatures(0)[0].signature[-1] == 0x41
        assert psbt.verify_signature_with_xpub(0, user_xprv.neutered())
        psbt.sign(bitgo_xprv)
        psbt.finalize_all_inputs()
        assert psbt.extract_transaction()

    def test_bitcoin_gold_segwit(self, wallet, user_xprv, bitgo_xprv):
        psbt = _multisig_psbt(wallet, Network.BITCOIN_GOLD, chains=(10,))
        psbt.sign(user_xprv)
        psbt.sign(bitgo_xprv)
        psbt.finalize_all_inputs()
        assert len(psbt.extracted_transaction().inputs[0].witness) == 4

    def test_zcash_sign_and_extract(self, wallet, user_xprv, bitgo_xprv):
        psbt = _multisig_psbt(wallet, Network.ZCASH, chains=(0,), block_height=2_726_400)
        psbt.sign(user_xprv)
        assert psbt.verify_signature_with_xpub(0, user_xprv.neutered())

        parsed = BitGoPsbt.deserialize(psbt.serialize(), Network.ZCASH, wallet)
        assert parsed.verify_signature_with_xpub(0, user_xprv.neutered())

        psbt.sign(bitgo_xprv)
        psbt.finalize_all_inputs()
        tx = Transaction.deserialize(psbt.extract_transaction())
        assert tx.is_zcash

    def test_zcash_signature_depends_on_branch(self, wallet, user_xprv):
        nu6 = _multisig_psbt(wallet, Network.ZCASH, chains=(0,), consensus_branch_id=0xC8E71055)
        nu5 = _multisig_psbt(wallet, Network.ZCASH, chains=(0,), consensus_branch_id=0xC2D6D0B4)
        nu6.sign(user_xprv)
        nu5.sign(user_xprv)
        assert nu6.partial_signatures(0) != nu5.partial_signatures(0)
