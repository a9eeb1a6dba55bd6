"""
Tests for BIP-322 message proofs built from wallet scripts.
"""

import pytest

from fixedscript.bip322 import (
    add_bip322_input,
    build_to_sign,
    build_to_spend,
    message_hash,
    to_spend_txid,
    verify_bip322_psbt_input,
    verify_bip322_psbt_input_with_pubkeys,
    verify_bip322_tx_input,
)
from fixedscript.errors import (
    Bip322Error,
    Bip322NoValidSignatures,
    Bip322TagMismatch,
    IndexOutOfBounds,
)
from fixedscript.networks import Network
from fixedscript.psbt.container import BitGoPsbt
from fixedscript.psbt.proprietary import get_bip322_message
from fixedscript.tx.script import is_op_return
from fixedscript.wallet.chains import KeyRole, ScriptId, SignPath
from fixedscript.wallet.scripts import WalletScripts

# Test vectors from BIP-322
P2WPKH_SCRIPT = bytes.fromhex("00142b05d564e6a7a33c087f16e0f730d1440123799d")


def _proof(wallet, message="Hello World", script_id=ScriptId(20, 0), **kwargs):
    psbt = BitGoPsbt.create_empty(Network.BITCOIN, wallet, version=0)
    add_bip322_input(psbt, message, script_id, **kwargs)
    return psbt


class TestVectors:
    def test_message_hash(self):
        assert (
            message_hash("").hex()
            == "c90c269c4f8fcbe6880f72a721ddfbf1914268a794cbb21cfafee13770ae19f1"
        )
        assert (
            message_hash("Hello World").hex()
            == "f0eb03b1a75ac6d9847f55c624a99169b5dccba2a31f5b23bea77ba270de0a7a"
        )

    def test_bytes_and_str_agree(self):
        assert message_hash(b"Hello World") == message_hash("Hello World")

    @pytest.mark.parametrize(
        "message,spend_txid,sign_txid",
        [
            (
                "",
                "c5680aa69bb8d860bf82d4e9cd3504b55dde018de765a91bb566283c545a99a7",
                "1e9654e951a5ba44c8604c4de6c67fd78a27e81dcadcfe1edf638ba3aaebaed6",
            ),
            (
                "Hello World",
                "b79d196740ad5217771c1098fc4a4b51e0535c32236c71f1ea4d61a2d603352b",
                "88737ae86f2077145f93cc4b153ae9a1cb8d56afa511988c149c5c8c9d93bddf",
            ),
        ],
    )
    def test_transaction_ids(self, message, spend_txid, sign_txid):
        assert to_spend_txid(message, P2WPKH_SCRIPT) == spend_txid
        assert build_to_sign(spend_txid).txid() == sign_txid

    def test_to_spend_structure(self):
        tx = build_to_spend(message_hash("x"), P2WPKH_SCRIPT)
        assert tx.version == 0
        assert tx.inputs[0].vout == 0xFFFFFFFF
        assert tx.inputs[0].sequence == 0
        assert tx.outputs[0].value == 0
        assert tx.outputs[0].script == P2WPKH_SCRIPT

    def test_custom_tag(self):
        assert to_spend_txid("x", P2WPKH_SCRIPT, tag="custom") != to_spend_txid("x", P2WPKH_SCRIPT)


class TestPsbtProof:
    def test_add_input(self, wallet):
        psbt = _proof(wallet)
        assert psbt.output_count() == 1
        assert is_op_return(psbt.tx.outputs[0].script)
        assert psbt.tx.outputs[0].value == 0

        script = WalletScripts.from_wallet_keys(wallet, 20, 0).output_script
        tx_in = psbt.tx.inputs[0]
        assert tx_in.txid == to_spend_txid("Hello World", script)
        assert tx_in.vout == 0
        assert tx_in.sequence == 0
        assert psbt.prevout(0).value == 0
        assert get_bip322_message(psbt.psbt.inputs[0].proprietary) == b"Hello World"

    def test_multiple_inputs_share_output(self, wallet):
        psbt = _proof(wallet)
        add_bip322_input(psbt, "Hello World", ScriptId(0, 1))
        assert psbt.input_count() == 2
        assert psbt.output_count() == 1

    def test_requires_version_zero(self, wallet):
        psbt = BitGoPsbt.create_empty(Network.BITCOIN, wallet)
        with pytest.raises(Bip322Error, match="version 0"):
            add_bip322_input(psbt, "Hello World", ScriptId(20, 0))

    def test_requires_lock_time_zero(self, wallet):
        psbt = BitGoPsbt.create_empty(Network.BITCOIN, wallet, version=0, lock_time=5)
        with pytest.raises(Bip322Error, match="lock time 0"):
            add_bip322_input(psbt, "Hello World", ScriptId(20, 0))

    @pytest.mark.parametrize("chain", [0, 10, 20, 30])
    def test_sign_and_verify(self, wallet, user_xprv, bitgo_xprv, chain):
        script_id = ScriptId(chain, 2)
        psbt = _proof(wallet, script_id=script_id)
        psbt.sign(user_xprv)
        psbt.sign(bitgo_xprv)

        assert verify_bip322_psbt_input(psbt, 0, "Hello World", script_id, wallet) == [
            KeyRole.USER,
            KeyRole.BITGO,
        ]
        pubkeys = wallet.public_keys_for(script_id)
        script_type = WalletScripts.from_wallet_keys(wallet, chain, 2).script_type
        assert verify_bip322_psbt_input_with_pubkeys(
            psbt, 0, "Hello World", pubkeys, script_type
        ) == [0, 2]

    def test_partially_signed(self, wallet, user_xprv):
        psbt = _proof(wallet)
        psbt.sign(user_xprv)
        assert verify_bip322_psbt_input(psbt, 0, "Hello World", ScriptId(20, 0), wallet) == [
            KeyRole.USER
        ]

    def test_unsigned(self, wallet):
        psbt = _proof(wallet)
        with pytest.raises(Bip322NoValidSignatures):
            verify_bip322_psbt_input(psbt, 0, "Hello World", ScriptId(20, 0), wallet)

    def test_wrong_message(self, wallet, user_xprv):
        psbt = _proof(wallet)
        psbt.sign(user_xprv)
        with pytest.raises(Bip322TagMismatch):
            verify_bip322_psbt_input(psbt, 0, "Goodbye World", ScriptId(20, 0), wallet)

    def test_wrong_tag(self, wallet, user_xprv):
        psbt = _proof(wallet, tag="custom-tag")
        psbt.sign(user_xprv)
        assert verify_bip322_psbt_input(
            psbt, 0, "Hello World", ScriptId(20, 0), wallet, tag="custom-tag"
        ) == [KeyRole.USER]
        with pytest.raises(Bip322TagMismatch):
            verify_bip322_psbt_input(psbt, 0, "Hello World", ScriptId(20, 0), wallet)

    def test_wrong_script_id(self, wallet, user_xprv):
        psbt = _proof(wallet)
        psbt.sign(user_xprv)
        with pytest.raises(Bip322TagMismatch):
            verify_bip322_psbt_input(psbt, 0, "Hello World", ScriptId(20, 1), wallet)

    def test_input_index(self, wallet):
        psbt = _proof(wallet)
        with pytest.raises(IndexOutOfBounds):
            verify_bip322_psbt_input(psbt, 1, "Hello World", ScriptId(20, 0), wallet)

    def test_extra_output_rejected(self, wallet, user_xprv):
        psbt = _proof(wallet)
        psbt.sign(user_xprv)
        psbt.add_output(0, op_return=b"extra")
        with pytest.raises(Bip322Error, match="expected 1 output"):
            verify_bip322_psbt_input(psbt, 0, "Hello World", ScriptId(20, 0), wallet)

    def test_taproot_script_path(self, wallet, user_xprv, backup_xprv):
        script_id = ScriptId(40, 0)
        psbt = _proof(
            wallet, script_id=script_id, sign_path=SignPath(KeyRole.USER, KeyRole.BACKUP)
        )
        psbt.sign(user_xprv)
        psbt.sign(backup_xprv)
        pubkeys = wallet.public_keys_for(script_id)

        assert verify_bip322_psbt_input_with_pubkeys(
            psbt, 0, "Hello World", pubkeys, "p2trMusig2", is_script_path=True
        ) == [0, 1]
        with pytest.raises(Bip322Error, match="not a taproot key path spend"):
            verify_bip322_psbt_input_with_pubkeys(
                psbt, 0, "Hello World", pubkeys, "p2trMusig2", is_script_path=False
            )


class TestTransactionProof:
    def test_finalized_proof(self, wallet, user_xprv, bitgo_xprv):
        psbt = _proof(wallet)
        psbt.sign(user_xprv)
        psbt.sign(bitgo_xprv)
        psbt.finalize_all_inputs()
        tx = psbt.extract_transaction()
        script = WalletScripts.from_wallet_keys(wallet, 20, 0).output_script

        verify_bip322_tx_input(tx, 0, "Hello World", script)
        with pytest.raises(Bip322TagMismatch):
            verify_bip322_tx_input(tx, 0, "Hello", script)

    def test_unsigned_transaction(self, wallet):
        psbt = _proof(wallet)
        script = WalletScripts.from_wallet_keys(wallet, 20, 0).output_script
        with pytest.raises(Bip322NoValidSignatures):
            verify_bip322_tx_input(psbt.tx, 0, "Hello World", script)

    def test_wrong_version(self, wallet):
        psbt = _proof(wallet)
        tx = psbt.tx.clone()
        tx.version = 2
        with pytest.raises(Bip322Error, match="expected version 0"):
            verify_bip322_tx_input(tx, 0, "Hello World", b"")
