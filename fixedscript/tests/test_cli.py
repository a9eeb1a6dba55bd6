"""
Tests for the fixedscript command-line interface.
"""

from typer.testing import CliRunner

from conftest import PREV_TXID
from fixedscript.cli import app
from fixedscript.networks import Network
from fixedscript.psbt.container import BitGoPsbt
from fixedscript.wallet.address import output_script_to_address
from fixedscript.wallet.chains import ScriptId
from fixedscript.wallet.scripts import WalletScripts

runner = CliRunner()


def _xpubs(wallet):
    return [xpub.to_base58() for xpub in wallet.xpubs]


def test_address(wallet):
    result = runner.invoke(app, ["address", *_xpubs(wallet), "--chain", "20", "--index", "3"])
    assert result.exit_code == 0
    script = WalletScripts.from_wallet_keys(wallet, 20, 3).output_script
    assert result.stdout.strip() == output_script_to_address(script, Network.BITCOIN)


def test_address_unknown_network(wallet):
    result = runner.invoke(app, ["address", *_xpubs(wallet), "--network", "nope"])
    assert result.exit_code == 1


def test_address_unknown_chain(wallet):
    result = runner.invoke(app, ["address", *_xpubs(wallet), "--chain", "7"])
    assert result.exit_code == 1


def test_parse(wallet):
    psbt = BitGoPsbt.create_empty(Network.BITCOIN, wallet)
    psbt.add_wallet_input(PREV_TXID, 0, 100_000, ScriptId(20, 0))
    psbt.add_output(60_000, address="bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4")
    psbt.add_wallet_output(21, 0, 39_000)

    args = ["parse", psbt.to_base64()]
    for xpub in _xpubs(wallet):
        args += ["--xpub", xpub]
    result = runner.invoke(app, args)
    assert result.exit_code == 0
    assert f"txid: {psbt.unsigned_txid()}" in result.stdout
    assert "spend amount: 60000 sat" in result.stdout
    assert "miner fee: 1000 sat" in result.stdout


def test_parse_hex(wallet):
    psbt = BitGoPsbt.create_empty(Network.BITCOIN, wallet)
    psbt.add_wallet_input(PREV_TXID, 0, 1_000, ScriptId(0, 0))
    psbt.add_wallet_output(1, 0, 900)
    args = ["parse", psbt.serialize().hex()]
    for xpub in _xpubs(wallet):
        args += ["-x", xpub]
    result = runner.invoke(app, args)
    assert result.exit_code == 0
    assert "miner fee: 100 sat" in result.stdout


def test_parse_wrong_wallet(wallet, other_wallet):
    psbt = BitGoPsbt.create_empty(Network.BITCOIN, wallet)
    psbt.add_wallet_input(PREV_TXID, 0, 1_000, ScriptId(0, 0))
    args = ["parse", psbt.to_base64()]
    for xpub in _xpubs(other_wallet):
        args += ["--xpub", xpub]
    assert runner.invoke(app, args).exit_code == 1


def test_dimensions():
    result = runner.invoke(app, ["dimensions", "--chain", "20", "--output-type", "p2wsh"])
    assert result.exit_code == 0
    assert "weight: 630-634" in result.stdout
    assert "vsize: 158-159" in result.stdout
