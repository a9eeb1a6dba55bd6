"""
Tests for the half-signed legacy transaction format.
"""

import pytest
from coincurve import PrivateKey

from conftest import PREV_TXID
from fixedscript.errors import SignatureCountMismatch, UnsupportedScriptType
from fixedscript.networks import Network
from fixedscript.psbt.container import BitGoPsbt
from fixedscript.psbt.legacy import build_half_signed_legacy_tx
from fixedscript.tx.script import parse_script, push_data
from fixedscript.tx.transaction import Transaction
from fixedscript.wallet.chains import ScriptId
from fixedscript.wallet.scripts import WalletScripts

EXTERNAL_SCRIPT = bytes.fromhex("0014" + "42" * 20)


def _psbt(wallet, chains):
    psbt = BitGoPsbt.create_empty(Network.BITCOIN, wallet)
    for vout, chain in enumerate(chains):
        psbt.add_wallet_input(PREV_TXID, vout, 10_000, ScriptId(chain, 0))
    psbt.add_output(5_000 * len(chains), script=EXTERNAL_SCRIPT)
    return psbt


class TestHalfSignedFormat:
    def test_p2sh_layout(self, wallet, user_xprv):
        psbt = _psbt(wallet, [0])
        psbt.sign(user_xprv)
        (sig,) = psbt.psbt.inputs[0].partial_sigs.values()

        tx = Transaction.deserialize(psbt.get_half_signed_legacy_format())
        redeem = WalletScripts.from_wallet_keys(wallet, 0, 0).redeem_script
        assert parse_script(tx.inputs[0].script_sig) == [0, sig, 0, 0, redeem]
        assert tx.inputs[0].witness == []

    def test_signer_slot(self, wallet, bitgo_xprv):
        psbt = _psbt(wallet, [20])
        psbt.sign(bitgo_xprv)
        (sig,) = psbt.psbt.inputs[0].partial_sigs.values()

        tx = build_half_signed_legacy_tx(psbt)
        witness_script = WalletScripts.from_wallet_keys(wallet, 20, 0).witness_script
        assert tx.inputs[0].witness == [b"", b"", b"", sig, witness_script]
        assert tx.inputs[0].script_sig == b""

    def test_p2sh_p2wsh_layout(self, wallet, backup_xprv):
        psbt = _psbt(wallet, [10])
        psbt.sign(backup_xprv)
        (sig,) = psbt.psbt.inputs[0].partial_sigs.values()

        tx = build_half_signed_legacy_tx(psbt)
        scripts = WalletScripts.from_wallet_keys(wallet, 10, 0)
        assert tx.inputs[0].witness == [b"", b"", sig, b"", scripts.witness_script]
        assert tx.inputs[0].script_sig == push_data(scripts.redeem_script)

    def test_mixed_inputs(self, wallet, user_xprv):
        psbt = _psbt(wallet, [0, 11, 21])
        psbt.sign(user_xprv)
        tx = Transaction.deserialize(psbt.get_half_signed_legacy_format())
        assert len(tx.inputs) == 3
        assert tx.inputs[0].script_sig
        assert len(tx.inputs[1].witness) == 5
        assert len(tx.inputs[2].witness) == 5

    def test_psbt_is_not_modified(self, wallet, user_xprv):
        psbt = _psbt(wallet, [20])
        psbt.sign(user_xprv)
        before = psbt.serialize()
        build_half_signed_legacy_tx(psbt)
        assert psbt.serialize() == before


class TestErrors:
    def test_unsigned_input(self, wallet):
        psbt = _psbt(wallet, [0])
        with pytest.raises(
            SignatureCountMismatch, match="Input 0: expected exactly 1 partial signature, got 0"
        ):
            build_half_signed_legacy_tx(psbt)

    def test_fully_signed_input(self, wallet, user_xprv, bitgo_xprv):
        psbt = _psbt(wallet, [0, 20])
        psbt.sign(user_xprv)
        psbt.sign_input(1, bitgo_xprv)
        with pytest.raises(
            SignatureCountMismatch, match="Input 1: expected exactly 1 partial signature, got 2"
        ):
            build_half_signed_legacy_tx(psbt)

    def test_taproot_input(self, wallet, user_xprv):
        psbt = _psbt(wallet, [30])
        psbt.sign(user_xprv)
        with pytest.raises(UnsupportedScriptType, match="Input 0"):
            build_half_signed_legacy_tx(psbt)

    def test_replay_protection_input(self, wallet, user_xprv):
        psbt = _psbt(wallet, [0])
        key = PrivateKey(b"\x07" * 32)
        index = psbt.add_replay_protection_input(
            key.public_key.format(compressed=True), "55" * 32, 0, 1_000
        )
        psbt.sign(user_xprv)
        psbt.sign(key)
        with pytest.raises(UnsupportedScriptType, match=f"Input {index}: only p2sh"):
            build_half_signed_legacy_tx(psbt)

    def test_empty(self, wallet):
        psbt = BitGoPsbt.create_empty(Network.BITCOIN, wallet)
        with pytest.raises(ValueError, match="empty inputs or outputs"):
            build_half_signed_legacy_tx(psbt)
        psbt.add_wallet_input(PREV_TXID, 0, 10_000, ScriptId(0, 0))
        with pytest.raises(ValueError, match="empty inputs or outputs"):
            build_half_signed_legacy_tx(psbt)
