"""
Two-round MuSig2 protocol objects.

``BitGoPsbt.generate_musig2_nonces`` returns a :class:`NonceRound`; the only
way to obtain a :class:`SignedRound` is to hand it the counterparty's nonces,
so partial signatures cannot be produced before the nonce exchange.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from loguru import logger

from fixedscript.psbt.proprietary import ProprietaryKeySubtype, find_bitgo_values
from fixedscript.wallet.bip32 import ExtendedKey

if TYPE_CHECKING:
    from fixedscript.psbt.container import BitGoPsbt


@dataclass
class NonceRound:
    psbt: BitGoPsbt
    key: ExtendedKey
    input_indices: list[int] = field(default_factory=list)

    def sign(self, counterparty: BitGoPsbt | NonceRound) -> SignedRound:
        """Merge the counterparty's public nonces, then sign our MuSig2 inputs."""
        other = counterparty.psbt if isinstance(counterparty, NonceRound) else counterparty
        self.psbt.combine_musig2_nonces(other)
        for index in self.input_indices:
            self.psbt.sign_input(index, self.key)
        logger.debug(f"MuSig2 round complete for inputs {self.input_indices}")
        return SignedRound(self.psbt, list(self.input_indices))


@dataclass
class SignedRound:
    psbt: BitGoPsbt
    input_indices: list[int] = field(default_factory=list)

    def combine(self, other: SignedRound | BitGoPsbt) -> BitGoPsbt:
        """Copy the other party's partial signatures into our container."""
        source = other.psbt if isinstance(other, SignedRound) else other
        if source.unsigned_txid() != self.psbt.unsigned_txid():
            raise ValueError("Cannot combine partial signatures from a different transaction")
        for index, other_input in enumerate(source.psbt.inputs):
            for key, value in find_bitgo_values(
                other_input.proprietary, ProprietaryKeySubtype.MUSIG2_PARTIAL_SIG
            ):
                self.psbt.psbt.inputs[index].proprietary[key] = value
        return self.psbt
