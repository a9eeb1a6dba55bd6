"""
fixedscript - PSBT engine for 2-of-3 fixed-script multisig wallets

Provides wallet script derivation, PSBT construction, signing (ECDSA,
Schnorr and MuSig2), finalization, wallet-aware parsing, BIP-322 proofs
and fee weight estimation.
"""

__version__ = "0.4.0"

from fixedscript.bip322 import (
    add_bip322_input,
    verify_bip322_psbt_input,
    verify_bip322_psbt_input_with_pubkeys,
    verify_bip322_tx_input,
)
from fixedscript.config import CreateOptions, EngineConfig
from fixedscript.dimensions import Dimensions
from fixedscript.engine import Engine, init
from fixedscript.errors import (
    Bip322Error,
    Bip322NoValidSignatures,
    Bip322TagMismatch,
    DeserializationFailure,
    FeeCalculationError,
    FixedScriptError,
    IndexOutOfBounds,
    InvalidBranchIdSpecification,
    InvalidInitToken,
    NonceExchangeIncomplete,
    OutputValidationFailure,
    SignatureCountMismatch,
    SigningError,
    UnknownChainCode,
    UnsupportedScriptType,
    WalletValidationFailure,
)
from fixedscript.networks import Network
from fixedscript.psbt.container import BitGoPsbt, BranchVersionedEnvelope, PlainEnvelope
from fixedscript.psbt.musig2_rounds import NonceRound, SignedRound
from fixedscript.psbt.parser import (
    ParsedInput,
    ParsedOutput,
    ParsedTransaction,
    ReplayProtection,
)
from fixedscript.wallet.bip32 import ExtendedKey
from fixedscript.wallet.chains import (
    Chain,
    InputScriptType,
    KeyRole,
    OutputScriptType,
    Scope,
    ScriptId,
    SignPath,
)
from fixedscript.wallet.keys import RootWalletKeys
from fixedscript.wallet.scripts import WalletScripts

__all__ = [
    "BitGoPsbt",
    "Bip322Error",
    "Bip322NoValidSignatures",
    "Bip322TagMismatch",
    "BranchVersionedEnvelope",
    "Chain",
    "CreateOptions",
    "DeserializationFailure",
    "Dimensions",
    "Engine",
    "EngineConfig",
    "ExtendedKey",
    "FeeCalculationError",
    "FixedScriptError",
    "IndexOutOfBounds",
    "InputScriptType",
    "InvalidBranchIdSpecification",
    "InvalidInitToken",
    "KeyRole",
    "Network",
    "NonceExchangeIncomplete",
    "NonceRound",
    "OutputScriptType",
    "OutputValidationFailure",
    "ParsedInput",
    "ParsedOutput",
    "ParsedTransaction",
    "PlainEnvelope",
    "ReplayProtection",
    "RootWalletKeys",
    "Scope",
    "ScriptId",
    "SignPath",
    "SignatureCountMismatch",
    "SignedRound",
    "SigningError",
    "UnknownChainCode",
    "UnsupportedScriptType",
    "WalletScripts",
    "WalletValidationFailure",
    "add_bip322_input",
    "init",
    "verify_bip322_psbt_input",
    "verify_bip322_psbt_input_with_pubkeys",
    "verify_bip322_tx_input",
]
