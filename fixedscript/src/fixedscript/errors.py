"""
Error types raised by the fixed-script wallet engine.

Every error is local and recoverable: the container stays usable after a
failed call unless documented otherwise.
"""

from __future__ import annotations


class FixedScriptError(Exception):
    pass


class DeserializationFailure(FixedScriptError):
    pass


class UnknownChainCode(FixedScriptError):
    def __init__(self, chain: int):
        self.chain = chain
        super().__init__(f"no chain for {chain}")


class WalletValidationFailure(FixedScriptError):
    """Input does not match what the wallet keys derive."""

    def __init__(self, index: int, message: str):
        self.index = index
        super().__init__(f"Input {index}: {message}")


class OutputValidationFailure(FixedScriptError):
    def __init__(self, index: int, message: str):
        self.index = index
        super().__init__(f"Output {index}: {message}")


class SignatureCountMismatch(FixedScriptError):
    pass


class IndexOutOfBounds(FixedScriptError):
    def __init__(self, kind: str, index: int, count: int):
        self.index = index
        self.count = count
        super().__init__(f"{kind} index {index} out of bounds (have {count})")


class UnsupportedScriptType(FixedScriptError):
    pass


class NonceExchangeIncomplete(FixedScriptError):
    pass


class Bip322Error(FixedScriptError):
    pass


class Bip322TagMismatch(Bip322Error):
    """Input references a to_spend transaction built from another message, script or tag."""


class Bip322NoValidSignatures(Bip322Error):
    pass


class InvalidBranchIdSpecification(FixedScriptError):
    pass


class SigningError(FixedScriptError):
    pass


class FeeCalculationError(FixedScriptError):
    pass


class InvalidInitToken(FixedScriptError):
    pass
