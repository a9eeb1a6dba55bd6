"""
BIP-322 generic signed messages for fixed-script wallets.

A proof is a ``to_sign`` PSBT (version 0, lock time 0, one OP_RETURN output)
whose inputs each spend the virtual ``to_spend`` transaction committing to
the message hash and the wallet output script being proven.
"""

from __future__ import annotations

from loguru import logger

from fixedscript.constants import BIP322_DEFAULT_TAG, OP_0
from fixedscript.crypto import tagged_hash
from fixedscript.errors import (
    Bip322Error,
    Bip322NoValidSignatures,
    Bip322TagMismatch,
    IndexOutOfBounds,
)
from fixedscript.psbt.container import BitGoPsbt
from fixedscript.psbt.proprietary import set_bip322_message
from fixedscript.tx.script import is_op_return, op_return_script, push_data
from fixedscript.tx.transaction import Transaction, TxIn, TxOut, bytes_to_txid, txid_to_bytes
from fixedscript.wallet.chains import (
    InputScriptType,
    KeyRole,
    OutputScriptType,
    ScriptId,
    SignPath,
)
from fixedscript.wallet.keys import RootWalletKeys
from fixedscript.wallet.scripts import WalletScripts


def message_hash(message: str | bytes, tag: str | None = None) -> bytes:
    """BIP340 tagged hash of the message, tag defaults to ``BIP0322-signed-message``."""
    if isinstance(message, str):
        message = message.encode("utf-8")
    return tagged_hash(tag or BIP322_DEFAULT_TAG, message)


def build_to_spend(msg_hash: bytes, script: bytes) -> Transaction:
    """Virtual transaction paying zero to ``script`` from a coinbase-like input."""
    tx_in = TxIn(
        b"\x00" * 32,
        0xFFFFFFFF,
        script_sig=bytes([OP_0]) + push_data(msg_hash),
        sequence=0,
    )
    return Transaction(0, [tx_in], [TxOut(0, script)], lock_time=0)


def build_to_sign(spend_txid: str) -> Transaction:
    tx_in = TxIn(txid_to_bytes(spend_txid), 0, sequence=0)
    return Transaction(0, [tx_in], [TxOut(0, op_return_script(b""))], lock_time=0)


def to_spend_txid(message: str | bytes, script: bytes, tag: str | None = None) -> str:
    return build_to_spend(message_hash(message, tag), script).txid()


def _check_proof_structure(container: BitGoPsbt, index: int) -> None:
    tx = container.tx
    if tx.version != 0:
        raise Bip322Error(f"Invalid BIP-0322 PSBT: expected version 0, got {tx.version}")
    if tx.lock_time != 0:
        raise Bip322Error(f"Invalid BIP-0322 PSBT: expected lock time 0, got {tx.lock_time}")
    if len(tx.outputs) != 1:
        raise Bip322Error(f"Invalid BIP-0322 PSBT: expected 1 output, got {len(tx.outputs)}")
    if not is_op_return(tx.outputs[0].script):
        raise Bip322Error("Invalid BIP-0322 PSBT: output must be OP_RETURN")
    if not 0 <= index < len(tx.inputs):
        raise IndexOutOfBounds("Input", index, len(tx.inputs))


def _check_to_spend_reference(
    container: BitGoPsbt, index: int, message: str | bytes, script: bytes, tag: str | None
) -> None:
    expected = to_spend_txid(message, script, tag)
    tx_in = container.tx.inputs[index]
    if tx_in.txid != expected:
        raise Bip322TagMismatch(
            f"Input {index} references wrong to_spend txid: expected {expected}, got {tx_in.txid}"
        )
    if tx_in.vout != 0:
        raise Bip322TagMismatch(
            f"Input {index} references wrong output index: expected 0, got {tx_in.vout}"
        )


def add_bip322_input(
    container: BitGoPsbt,
    message: str | bytes,
    script_id: ScriptId,
    wallet: RootWalletKeys | None = None,
    tag: str | None = None,
    sign_path: SignPath | None = None,
) -> int:
    """
    Add an input proving control of the wallet script at ``script_id``. The
    OP_RETURN output is added together with the first input.
    """
    tx = container.tx
    if tx.version != 0:
        raise Bip322Error(f"BIP-0322 PSBT must have version 0, got {tx.version}")
    if tx.lock_time != 0:
        raise Bip322Error(f"BIP-0322 PSBT must have lock time 0, got {tx.lock_time}")

    wallet = wallet or container.wallet
    if wallet is None:
        raise ValueError("Wallet keys are required")
    if not tx.inputs:
        container.add_output(0, op_return=b"")

    scripts = WalletScripts.from_wallet_keys(
        wallet, script_id.chain, script_id.index, container.network
    )
    txid = build_to_spend(message_hash(message, tag), scripts.output_script).txid()
    index = container.add_wallet_input(
        txid, 0, 0, script_id, wallet=wallet, sign_path=sign_path, sequence=0
    )
    raw = message.encode("utf-8") if isinstance(message, str) else message
    set_bip322_message(container.psbt.inputs[index].proprietary, raw)

    logger.debug(f"Added BIP-0322 input {index} for chain={script_id.chain} index={script_id.index}")
    return index


def verify_bip322_psbt_input(
    container: BitGoPsbt,
    index: int,
    message: str | bytes,
    script_id: ScriptId,
    wallet: RootWalletKeys,
    tag: str | None = None,
) -> list[KeyRole]:
    """Roles of the wallet keys holding a valid signature on input ``index``."""
    _check_proof_structure(container, index)
    scripts = WalletScripts.from_wallet_keys(
        wallet, script_id.chain, script_id.index, container.network
    )
    _check_to_spend_reference(container, index, message, scripts.output_script, tag)

    signers = [
        role
        for role, xpub in zip(KeyRole, wallet.xpubs)
        if container.verify_signature_with_xpub(index, xpub)
    ]
    if not signers:
        raise Bip322NoValidSignatures(f"Input {index} has no valid signatures from wallet keys")
    return signers


def verify_bip322_psbt_input_with_pubkeys(
    container: BitGoPsbt,
    index: int,
    message: str | bytes,
    pubkeys: list[bytes],
    script_type: OutputScriptType | str,
    is_script_path: bool | None = None,
    tag: str | None = None,
) -> list[int]:
    """
    Indices into ``pubkeys`` (user, backup, bitgo) with a valid signature on
    input ``index``.
    """
    _check_proof_structure(container, index)
    if not isinstance(script_type, OutputScriptType):
        script_type = OutputScriptType.from_string(script_type)
    script = WalletScripts.from_pubkeys(list(pubkeys), script_type).output_script
    _check_to_spend_reference(container, index, message, script, tag)
    if is_script_path is not None and script_type.is_taproot:
        key_path = container.input_script_type(index) is InputScriptType.P2TR_MUSIG2_KEY_PATH
        if key_path == is_script_path:
            spend = "script path" if is_script_path else "key path"
            raise Bip322Error(f"Input {index} is not a taproot {spend} spend")

    signers = [
        i for i, pubkey in enumerate(pubkeys) if container.verify_signature_with_pubkey(index, pubkey)
    ]
    if not signers:
        raise Bip322NoValidSignatures(
            f"Input {index} has no valid signatures from provided pubkeys"
        )
    return signers


def verify_bip322_tx_input(
    tx: Transaction | bytes,
    index: int,
    message: str | bytes,
    script: bytes,
    tag: str | None = None,
) -> None:
    """
    Check a finalized proof transaction input: structure, to_spend reference
    and the presence of signature data. Signatures were validated when the
    PSBT was finalized.
    """
    if isinstance(tx, bytes):
        tx = Transaction.deserialize(tx)
    if tx.version != 0:
        raise Bip322Error(f"Invalid BIP-0322 transaction: expected version 0, got {tx.version}")
    if len(tx.outputs) != 1 or not is_op_return(tx.outputs[0].script):
        raise Bip322Error("Invalid BIP-0322 transaction: expected a single OP_RETURN output")
    if not 0 <= index < len(tx.inputs):
        raise IndexOutOfBounds("Input", index, len(tx.inputs))

    expected = to_spend_txid(message, script, tag)
    tx_in = tx.inputs[index]
    if bytes_to_txid(tx_in.txid_le) != expected or tx_in.vout != 0:
        raise Bip322TagMismatch(f"Input {index} does not spend to_spend {expected}:0")
    if not tx_in.witness and not tx_in.script_sig:
        raise Bip322NoValidSignatures(
            f"Input {index} has no signature data (missing witness and scriptSig)"
        )
