"""
Transaction weight estimation for fixed-script wallet spends.

Input weights are tracked as a (min, max) range because DER encoded ECDSA
signatures vary between 71 and 73 bytes. Schnorr signatures are always
64 bytes, so taproot inputs have min == max.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from fixedscript.networks import Network
from fixedscript.psbt.container import BitGoPsbt, script_id_from_derivations
from fixedscript.tx.transaction import varint_size
from fixedscript.wallet.address import address_to_output_script
from fixedscript.wallet.chains import (
    Chain,
    InputScriptType,
    OutputScriptType,
    SignPath,
)

Size = Literal["min", "max"]

ECDSA_SIG_MIN = 71
ECDSA_SIG_MAX = 73
SCHNORR_SIG = 64

P2MS_SCRIPT_SIZE = 105
P2WSH_SCRIPT_SIZE = 34
P2PK_SCRIPT_SIZE = 35
# <x1> OP_CHECKSIGVERIFY <x2> OP_CHECKSIG
TAP_LEAF_SCRIPT_SIZE = 1 + 32 + 1 + 1 + 32 + 1

# version(4) + locktime(4) + input count(1) + output count(1)
TX_OVERHEAD_SIZE = 10
# segwit marker and flag, counted at witness weight
TX_SEGWIT_MARKER_WEIGHT = 2

OUTPUT_SCRIPT_SIZES = {
    OutputScriptType.P2SH: 23,
    OutputScriptType.P2SH_P2WSH: 23,
    OutputScriptType.P2WSH: 34,
    OutputScriptType.P2TR_LEGACY: 34,
    OutputScriptType.P2TR_MUSIG2: 34,
}


def var_slice_size(length: int) -> int:
    return varint_size(length) + length


def vector_size(lengths: list[int]) -> int:
    return varint_size(len(lengths)) + sum(var_slice_size(n) for n in lengths)


def input_weight(script_sig: list[int], witness: list[int]) -> int:
    """
    Weight of one input: outpoint(36) + sequence(4) + scriptSig at 4x, the
    witness stack at 1x.
    """
    base = 40 + var_slice_size(sum(script_sig))
    return 4 * base + (vector_size(witness) if witness else 0)


def output_weight(script_length: int) -> int:
    return 4 * (8 + var_slice_size(script_length))


def _p2sh_components(sig: int) -> list[int]:
    # OP_0 <sig> <sig> OP_PUSHDATA1 <redeemScript>
    return [1, 1 + sig, 1 + sig, 1 + 1 + P2MS_SCRIPT_SIZE]


def _p2wsh_witness(sig: int) -> list[int]:
    return [0, sig, sig, P2MS_SCRIPT_SIZE]


def _p2sh_p2pk_components(sig: int) -> list[int]:
    return [1 + sig, 1 + P2PK_SCRIPT_SIZE]


def _script_path_witness(level: int) -> list[int]:
    control_block = 1 + 32 + 32 * level
    return [SCHNORR_SIG, SCHNORR_SIG, TAP_LEAF_SCRIPT_SIZE, control_block]


def _input_weights(script_type: InputScriptType, level: int = 1) -> tuple[int, int]:
    if script_type is InputScriptType.P2SH:
        return (
            input_weight(_p2sh_components(ECDSA_SIG_MIN), []),
            input_weight(_p2sh_components(ECDSA_SIG_MAX), []),
        )
    if script_type is InputScriptType.P2SH_P2WSH:
        script_sig = [1 + P2WSH_SCRIPT_SIZE]
        return (
            input_weight(script_sig, _p2wsh_witness(ECDSA_SIG_MIN)),
            input_weight(script_sig, _p2wsh_witness(ECDSA_SIG_MAX)),
        )
    if script_type is InputScriptType.P2WSH:
        return (
            input_weight([], _p2wsh_witness(ECDSA_SIG_MIN)),
            input_weight([], _p2wsh_witness(ECDSA_SIG_MAX)),
        )
    if script_type is InputScriptType.P2SH_P2PK:
        return (
            input_weight(_p2sh_p2pk_components(ECDSA_SIG_MIN), []),
            input_weight(_p2sh_p2pk_components(ECDSA_SIG_MAX), []),
        )
    if script_type is InputScriptType.P2TR_MUSIG2_KEY_PATH:
        weight = input_weight([], [SCHNORR_SIG])
        return weight, weight
    weight = input_weight([], _script_path_witness(level))
    return weight, weight


def _leaf_level(tap_leaf_scripts: dict[bytes, tuple[bytes, int]]) -> int:
    """Merkle depth of the leaf an input spends, from its control block."""
    if not tap_leaf_scripts:
        return 1
    return max(1, max((len(cb) - 33) // 32 for cb in tap_leaf_scripts))


@dataclass(frozen=True)
class Dimensions:
    input_weight_min: int = 0
    input_weight_max: int = 0
    output_weight: int = 0
    has_segwit: bool = False

    @classmethod
    def empty(cls) -> Dimensions:
        return cls()

    @classmethod
    def from_input(
        cls,
        chain: int | None = None,
        script_type: InputScriptType | str | None = None,
        sign_path: SignPath | None = None,
    ) -> Dimensions:
        """
        Dimensions of one wallet input, given either its chain code (with an
        optional sign path selecting the taproot spend) or its input script type.
        """
        if (chain is None) == (script_type is None):
            raise ValueError("Exactly one of chain or script_type must be given")

        level = 1
        if chain is not None:
            output_type = Chain.from_value(chain).script_type
            recovery = sign_path is not None and sign_path.uses_backup()
            if output_type is OutputScriptType.P2TR_LEGACY:
                resolved = InputScriptType.P2TR_LEGACY
                level = 2 if recovery else 1
            elif output_type is OutputScriptType.P2TR_MUSIG2:
                resolved = (
                    InputScriptType.P2TR_MUSIG2_SCRIPT_PATH
                    if recovery
                    else InputScriptType.P2TR_MUSIG2_KEY_PATH
                )
            else:
                resolved = InputScriptType.from_output_script_type(output_type)
        else:
            resolved = (
                script_type
                if isinstance(script_type, InputScriptType)
                else InputScriptType.from_string(script_type)
            )

        weight_min, weight_max = _input_weights(resolved, level)
        return cls(weight_min, weight_max, 0, resolved.is_segwit)

    @classmethod
    def from_output(
        cls,
        script: bytes | None = None,
        address: str | None = None,
        network: Network | None = None,
        script_type: OutputScriptType | str | None = None,
        length: int | None = None,
    ) -> Dimensions:
        """Dimensions of one output given its script, address, wallet script type or script length."""
        if address is not None:
            if network is None:
                raise ValueError("network is required to decode an address")
            script = address_to_output_script(address, network)
        if script is not None:
            length = len(script)
        elif script_type is not None:
            if not isinstance(script_type, OutputScriptType):
                script_type = OutputScriptType.from_string(script_type)
            length = OUTPUT_SCRIPT_SIZES[script_type]
        if length is None:
            raise ValueError("One of script, address, script_type or length is required")
        return cls(output_weight=output_weight(length))

    @classmethod
    def from_psbt(cls, container: BitGoPsbt) -> Dimensions:
        """
        Dimensions of a PSBT's inputs and outputs. Inputs without derivation
        info are counted as replay protection inputs.
        """
        total = cls.empty()
        for psbt_input in container.psbt.inputs:
            script_id = script_id_from_derivations(psbt_input)
            if script_id is None:
                total = total.plus(cls.from_input(script_type=InputScriptType.P2SH_P2PK))
                continue
            output_type = Chain.from_value(script_id.chain).script_type
            level = _leaf_level(psbt_input.tap_leaf_scripts)
            if output_type is OutputScriptType.P2TR_MUSIG2:
                key_path = not (psbt_input.tap_leaf_scripts or psbt_input.tap_script_sigs)
                resolved = (
                    InputScriptType.P2TR_MUSIG2_KEY_PATH
                    if key_path
                    else InputScriptType.P2TR_MUSIG2_SCRIPT_PATH
                )
            else:
                resolved = InputScriptType.from_output_script_type(output_type)
            weight_min, weight_max = _input_weights(resolved, level)
            total = total.plus(cls(weight_min, weight_max, 0, resolved.is_segwit))

        for tx_out in container.tx.outputs:
            total = total.plus(cls.from_output(script=tx_out.script))
        return total

    def plus(self, other: Dimensions) -> Dimensions:
        return Dimensions(
            self.input_weight_min + other.input_weight_min,
            self.input_weight_max + other.input_weight_max,
            self.output_weight + other.output_weight,
            self.has_segwit or other.has_segwit,
        )

    def __add__(self, other: Dimensions) -> Dimensions:
        return self.plus(other)

    def times(self, n: int) -> Dimensions:
        if n < 0:
            raise ValueError(f"Multiplier must be non-negative, got {n}")
        return Dimensions(
            self.input_weight_min * n,
            self.input_weight_max * n,
            self.output_weight * n,
            self.has_segwit,
        )

    def _overhead_weight(self) -> int:
        if self.input_weight_max == 0 and self.output_weight == 0:
            return 0
        return 4 * TX_OVERHEAD_SIZE + (TX_SEGWIT_MARKER_WEIGHT if self.has_segwit else 0)

    def get_input_weight(self, size: Size = "max") -> int:
        return self.input_weight_min if size == "min" else self.input_weight_max

    def get_input_vsize(self, size: Size = "max") -> int:
        return -(-self.get_input_weight(size) // 4)

    def get_output_weight(self) -> int:
        return self.output_weight

    def get_output_vsize(self) -> int:
        return -(-self.output_weight // 4)

    def get_weight(self, size: Size = "max") -> int:
        return self._overhead_weight() + self.get_input_weight(size) + self.output_weight

    def get_vsize(self, size: Size = "max") -> int:
        return -(-self.get_weight(size) // 4)
