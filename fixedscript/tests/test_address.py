"""
Tests for address encoding.
"""

import pytest

from fixedscript.networks import Network
from fixedscript.wallet.address import (
    address_to_output_script,
    bech32_decode,
    decode_segwit_address,
    encode_segwit_address,
    output_script_to_address,
)
from fixedscript.wallet.scripts import WalletScripts

P2WPKH_ADDRESS = "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4"
P2WPKH_SCRIPT = "0014751e76e8199196d454941c45d1b3a323f1433bd6"
P2TR_ADDRESS = "bc1p0xlxvlhemja6c4dqv22uapctqupfhlxm9h8z3k2e72q4k9hcz7vqzk5jj0"
P2TR_SCRIPT = "512079be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"


class TestSegwitAddresses:
    def test_p2wpkh(self):
        assert address_to_output_script(P2WPKH_ADDRESS, Network.BITCOIN).hex() == P2WPKH_SCRIPT
        assert output_script_to_address(bytes.fromhex(P2WPKH_SCRIPT), Network.BITCOIN) == (
            P2WPKH_ADDRESS
        )

    def test_p2tr_uses_bech32m(self):
        assert address_to_output_script(P2TR_ADDRESS, Network.BITCOIN).hex() == P2TR_SCRIPT
        assert output_script_to_address(bytes.fromhex(P2TR_SCRIPT), Network.BITCOIN) == (
            P2TR_ADDRESS
        )

    def test_uppercase_accepted(self):
        assert address_to_output_script(P2WPKH_ADDRESS.upper(), Network.BITCOIN).hex() == (
            P2WPKH_SCRIPT
        )

    def test_mixed_case_rejected(self):
        with pytest.raises(ValueError, match="Mixed case"):
            bech32_decode("bc1qW508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4")

    def test_bad_checksum(self):
        with pytest.raises(ValueError, match="checksum"):
            bech32_decode(P2WPKH_ADDRESS[:-1] + "5")

    def test_tampered_version_rejected(self):
        program = bytes.fromhex(P2TR_SCRIPT[4:])
        bech32_v1 = encode_segwit_address("bc", 0, program).replace("bc1q", "bc1p", 1)
        with pytest.raises(ValueError):
            decode_segwit_address("bc", bech32_v1)

    def test_testnet_hrp(self):
        script = bytes.fromhex(P2WPKH_SCRIPT)
        address = output_script_to_address(script, Network.TESTNET)
        assert address.startswith("tb1q")
        assert address_to_output_script(address, Network.TESTNET) == script

    def test_no_segwit_network(self):
        with pytest.raises(ValueError, match="no segwit addresses"):
            output_script_to_address(bytes.fromhex(P2WPKH_SCRIPT), Network.DOGECOIN)


class TestBase58Addresses:
    def test_p2sh_mainnet(self, lol_wallet):
        script = WalletScripts.from_wallet_keys(lol_wallet, 0, 0).output_script
        address = output_script_to_address(script, Network.BITCOIN)
        assert address.startswith("3")
        assert address_to_output_script(address, Network.BITCOIN) == script

    def test_p2pkh(self):
        script = bytes.fromhex("76a914" + "00" * 20 + "88ac")
        address = output_script_to_address(script, Network.BITCOIN)
        assert address == "1111111111111111111114oLvT2"
        assert address_to_output_script(address, Network.BITCOIN) == script

    @pytest.mark.parametrize(
        "network,prefix",
        [
            (Network.LITECOIN, "M"),
            (Network.DOGECOIN, ("9", "A")),
            (Network.DASH, "7"),
            (Network.ZCASH, "t3"),
        ],
    )
    def test_p2sh_per_network(self, lol_wallet, network, prefix):
        script = WalletScripts.from_wallet_keys(lol_wallet, 0, 0).output_script
        address = output_script_to_address(script, network)
        assert address.startswith(prefix)
        assert address_to_output_script(address, network) == script

    def test_wrong_network_version(self, lol_wallet):
        script = WalletScripts.from_wallet_keys(lol_wallet, 0, 0).output_script
        address = output_script_to_address(script, Network.BITCOIN)
        with pytest.raises(ValueError, match="Unknown address version"):
            address_to_output_script(address, Network.LITECOIN)

    def test_unsupported_script(self):
        with pytest.raises(ValueError, match="Unsupported output script"):
            output_script_to_address(b"\x6a", Network.BITCOIN)
