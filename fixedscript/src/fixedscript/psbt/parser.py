"""
Wallet-aware PSBT parsing.

Every input must either re-derive to its previous output script from the
wallet keys or be an allowed replay protection input. Outputs are matched
against the wallet through their derivation info; anything else is
external.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger

from fixedscript.crypto import to_xonly
from fixedscript.errors import (
    FeeCalculationError,
    OutputValidationFailure,
    SigningError,
    UnknownChainCode,
    UnsupportedScriptType,
    WalletValidationFailure,
)
from fixedscript.psbt.codec import PsbtInput, PsbtOutput
from fixedscript.psbt.container import BitGoPsbt, classify_input, script_id_from_derivations
from fixedscript.tx.transaction import TxOut
from fixedscript.wallet.address import output_script_to_address
from fixedscript.wallet.bip32 import ExtendedKey
from fixedscript.wallet.chains import InputScriptType, ScriptId
from fixedscript.wallet.keys import RootWalletKeys
from fixedscript.wallet.scripts import WalletScripts, replay_protection_output_script


@dataclass
class ReplayProtection:
    """Previous output scripts allowed as inputs without wallet validation."""

    public_keys: list[bytes] = field(default_factory=list)
    output_scripts: list[bytes] = field(default_factory=list)

    @classmethod
    def from_keys(
        cls,
        public_keys: list[bytes | ExtendedKey] | None = None,
        output_scripts: list[bytes] | None = None,
    ) -> ReplayProtection:
        keys = [k.public_key_bytes if isinstance(k, ExtendedKey) else k for k in public_keys or []]
        return cls(keys, list(output_scripts or []))

    def allowed_scripts(self) -> list[bytes]:
        return [replay_protection_output_script(pk) for pk in self.public_keys] + self.output_scripts

    def is_replay_protection_input(self, script: bytes) -> bool:
        return script in self.allowed_scripts()


@dataclass
class ParsedInput:
    txid: str
    vout: int
    address: str | None
    script: bytes
    value: int
    script_id: ScriptId | None
    script_type: InputScriptType
    sequence: int


@dataclass
class ParsedOutput:
    address: str | None
    script: bytes
    value: int
    script_id: ScriptId | None

    @property
    def is_external(self) -> bool:
        return self.script_id is None


@dataclass
class ParsedTransaction:
    inputs: list[ParsedInput]
    outputs: list[ParsedOutput]
    spend_amount: int
    miner_fee: int
    virtual_size: int


def _safe_address(script: bytes, container: BitGoPsbt) -> str | None:
    try:
        return output_script_to_address(script, container.network)
    except ValueError:
        return None


def _derivation_fingerprints(entry: PsbtInput | PsbtOutput) -> list[bytes]:
    fingerprints = [origin.fingerprint for origin in entry.bip32_derivation.values()]
    fingerprints += [tap.origin.fingerprint for tap in entry.tap_bip32_derivation.values()]
    return fingerprints


def _belongs_to_wallet(entry: PsbtInput | PsbtOutput, wallet: RootWalletKeys) -> bool:
    fingerprints = _derivation_fingerprints(entry)
    return bool(fingerprints) and all(
        wallet.role_of_fingerprint(fp) is not None for fp in fingerprints
    )


def _check_derived_keys(
    entry: PsbtInput | PsbtOutput, wallet: RootWalletKeys, script_id: ScriptId
) -> None:
    """Every key origin must derive, from the matching wallet key, to the recorded pubkey."""
    derived = wallet.derive_for(script_id)
    for pubkey, origin in entry.bip32_derivation.items():
        role = wallet.role_of_fingerprint(origin.fingerprint)
        if role is None or derived[role.key_index].public_key_bytes != pubkey:
            raise ValueError(f"bip32 derivation for {pubkey.hex()} does not match wallet keys")
    for xonly, tap_origin in entry.tap_bip32_derivation.items():
        role = wallet.role_of_fingerprint(tap_origin.origin.fingerprint)
        if role is None or to_xonly(derived[role.key_index].public_key_bytes) != xonly:
            raise ValueError(f"tap bip32 derivation for {xonly.hex()} does not match wallet keys")


def _detect_input_script_type(
    psbt_input: PsbtInput, script_id: ScriptId | None
) -> InputScriptType:
    if script_id is None:
        return InputScriptType.P2SH_P2PK
    detected = classify_input(psbt_input)
    if detected is not None:
        return detected
    return InputScriptType.from_chain(script_id.chain)


def parse_input(
    container: BitGoPsbt,
    index: int,
    wallet: RootWalletKeys,
    replay_protection: ReplayProtection,
) -> ParsedInput:
    psbt_input = container.psbt.inputs[index]
    tx_in = container.tx.inputs[index]
    try:
        prevout: TxOut = container.prevout(index)
    except SigningError as e:
        raise WalletValidationFailure(index, f"failed to extract output script: {e}") from e

    script_id = None
    if not replay_protection.is_replay_protection_input(prevout.script):
        try:
            script_id = script_id_from_derivations(psbt_input)
        except ValueError as e:
            raise WalletValidationFailure(index, f"invalid derivation info: {e}") from e
        if script_id is None:
            raise WalletValidationFailure(
                index, "missing derivation info (not replay protection)"
            )
        if not _belongs_to_wallet(psbt_input, wallet):
            raise WalletValidationFailure(index, "key fingerprints do not match wallet keys")
        try:
            _check_derived_keys(psbt_input, wallet, script_id)
            expected = WalletScripts.from_wallet_keys(
                wallet, script_id.chain, script_id.index, container.network
            ).output_script
        except (ValueError, UnknownChainCode, UnsupportedScriptType) as e:
            raise WalletValidationFailure(index, str(e)) from e
        if expected != prevout.script:
            raise WalletValidationFailure(
                index,
                f"output_script={prevout.script.hex()} does not belong to the wallet "
                f"(expected {expected.hex()} at chain={script_id.chain} index={script_id.index})",
            )

    return ParsedInput(
        txid=tx_in.txid,
        vout=tx_in.vout,
        address=_safe_address(prevout.script, container),
        script=prevout.script,
        value=prevout.value,
        script_id=script_id,
        script_type=_detect_input_script_type(psbt_input, script_id),
        sequence=tx_in.sequence,
    )


def parse_output(
    container: BitGoPsbt,
    index: int,
    wallet: RootWalletKeys,
) -> ParsedOutput:
    """
    Outputs without derivation info, or whose key fingerprints belong to
    another wallet, are external. Our fingerprints with a different script is
    an error.
    """
    psbt_output = container.psbt.outputs[index]
    tx_out = container.tx.outputs[index]
    script_id = None

    if _belongs_to_wallet(psbt_output, wallet):
        try:
            candidate = script_id_from_derivations(psbt_output)
            _check_derived_keys(psbt_output, wallet, candidate)
            expected = WalletScripts.from_wallet_keys(
                wallet, candidate.chain, candidate.index, container.network
            ).output_script
        except (ValueError, UnknownChainCode, UnsupportedScriptType) as e:
            raise OutputValidationFailure(index, f"invalid wallet derivation info: {e}") from e
        if expected != tx_out.script:
            raise OutputValidationFailure(
                index,
                f"Output script mismatch: expected wallet output at chain={candidate.chain}, "
                f"index={candidate.index} but script doesn't match. "
                f"Expected: {expected.hex()}, Got: {tx_out.script.hex()}",
            )
        script_id = candidate

    return ParsedOutput(
        address=_safe_address(tx_out.script, container),
        script=tx_out.script,
        value=tx_out.value,
        script_id=script_id,
    )


def parse_outputs_with_wallet_keys(
    container: BitGoPsbt, wallet: RootWalletKeys
) -> list[ParsedOutput]:
    """Match only the outputs, e.g. against a different wallet."""
    return [parse_output(container, i, wallet) for i in range(container.output_count())]


def parse_transaction_with_wallet_keys(
    container: BitGoPsbt,
    wallet: RootWalletKeys,
    public_keys: list[bytes | ExtendedKey] | None = None,
    output_scripts: list[bytes] | None = None,
    replay_protection: ReplayProtection | None = None,
) -> ParsedTransaction:
    if replay_protection is None:
        replay_protection = ReplayProtection.from_keys(public_keys, output_scripts)

    inputs = [
        parse_input(container, i, wallet, replay_protection)
        for i in range(container.input_count())
    ]
    outputs = [parse_output(container, i, wallet) for i in range(container.output_count())]

    total_in = sum(inp.value for inp in inputs)
    total_out = sum(out.value for out in outputs)
    if total_out > total_in:
        raise FeeCalculationError(
            f"Outputs ({total_out} sat) exceed inputs ({total_in} sat)"
        )
    spend_amount = sum(out.value for out in outputs if out.is_external)

    # size of the unsigned transaction
    virtual_size = container.tx.vsize()

    logger.debug(
        f"Parsed transaction: {len(inputs)} inputs, {len(outputs)} outputs, "
        f"spend={spend_amount}, fee={total_in - total_out}, vsize={virtual_size}"
    )
    return ParsedTransaction(
        inputs=inputs,
        outputs=outputs,
        spend_amount=spend_amount,
        miner_fee=total_in - total_out,
        virtual_size=virtual_size,
    )

