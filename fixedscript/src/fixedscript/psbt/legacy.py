"""
Half-signed legacy transaction format.

Before PSBTs, half-signed multisig transactions were exchanged as network
transactions with the single signature placed in the slot of its signer and
OP_0 / empty placeholders for the two missing signatures.
"""

from __future__ import annotations

from loguru import logger

from fixedscript.constants import OP_0
from fixedscript.errors import SignatureCountMismatch, UnsupportedScriptType
from fixedscript.psbt.container import BitGoPsbt, classify_input
from fixedscript.tx.script import parse_multisig_script, push_data
from fixedscript.tx.transaction import Transaction
from fixedscript.wallet.chains import InputScriptType

MULTISIG_INPUT_TYPES = (
    InputScriptType.P2SH,
    InputScriptType.P2SH_P2WSH,
    InputScriptType.P2WSH,
)


def build_half_signed_legacy_tx(container: BitGoPsbt) -> Transaction:
    """
    Unsigned transaction with each multisig input's scriptSig/witness set to
    ``OP_0 <sig|OP_0> <sig|OP_0> <sig|OP_0> <script>``.
    """
    psbt = container.psbt
    if not psbt.inputs or not psbt.tx.outputs:
        raise ValueError("empty inputs or outputs")

    tx = psbt.tx.clone()
    for index, psbt_input in enumerate(psbt.inputs):
        script_type = classify_input(psbt_input)
        if script_type not in MULTISIG_INPUT_TYPES:
            raise UnsupportedScriptType(
                f"Input {index}: only p2sh, p2shP2wsh and p2wsh inputs are supported "
                f"in legacy half-signed format"
            )

        sig_count = len(psbt_input.partial_sigs)
        if sig_count != 1:
            raise SignatureCountMismatch(
                f"Input {index}: expected exactly 1 partial signature, got {sig_count}"
            )
        ((sig_pubkey, signature),) = psbt_input.partial_sigs.items()

        multisig = psbt_input.witness_script or psbt_input.redeem_script
        parsed = parse_multisig_script(multisig)
        if parsed is None:
            raise UnsupportedScriptType(f"Input {index}: failed to parse multisig script")
        _threshold, pubkeys = parsed
        if sig_pubkey not in pubkeys:
            raise ValueError(f"Input {index}: signature pubkey not found in multisig script")
        slot = pubkeys.index(sig_pubkey)
        slots = [signature if i == slot else b"" for i in range(len(pubkeys))]

        if script_type is InputScriptType.P2SH:
            script_sig = bytes([OP_0])
            for item in slots:
                script_sig += push_data(item) if item else bytes([OP_0])
            tx.inputs[index].script_sig = script_sig + push_data(multisig)
        else:
            tx.inputs[index].witness = [b""] + slots + [multisig]
            if script_type is InputScriptType.P2SH_P2WSH:
                tx.inputs[index].script_sig = push_data(psbt_input.redeem_script)

    logger.debug(f"Built half-signed legacy transaction with {len(tx.inputs)} inputs")
    return tx


def half_signed_legacy_format(container: BitGoPsbt) -> bytes:
    return build_half_signed_legacy_tx(container).serialize()
