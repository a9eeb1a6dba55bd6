"""
Chain codes: the numeric encoding of (script type, scope) used in wallet
derivation paths, plus the signer roles and sign paths for each script type.

    0/1   p2sh          10/11 p2shP2wsh     20/21 p2wsh
    30/31 p2trLegacy    40/41 p2trMusig2

External chains are even, internal (change) chains are external + 1.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from fixedscript.errors import UnknownChainCode


class OutputScriptType(str, Enum):
    P2SH = "p2sh"
    P2SH_P2WSH = "p2shP2wsh"
    P2WSH = "p2wsh"
    P2TR_LEGACY = "p2trLegacy"
    P2TR_MUSIG2 = "p2trMusig2"

    @classmethod
    def from_string(cls, value: str) -> OutputScriptType:
        aliases = {
            "p2tr": cls.P2TR_LEGACY,
            "p2shP2pk": cls.P2SH,
            "p2trMusig2KeyPath": cls.P2TR_MUSIG2,
            "p2trMusig2ScriptPath": cls.P2TR_MUSIG2,
        }
        if value in aliases:
            return aliases[value]
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown script type: {value}") from None

    @property
    def is_segwit(self) -> bool:
        return self is not OutputScriptType.P2SH

    @property
    def is_taproot(self) -> bool:
        return self in (OutputScriptType.P2TR_LEGACY, OutputScriptType.P2TR_MUSIG2)

    @property
    def base_chain(self) -> int:
        return _BASE_CHAINS[self]


class InputScriptType(str, Enum):
    P2SH_P2PK = "p2shP2pk"
    P2SH = "p2sh"
    P2SH_P2WSH = "p2shP2wsh"
    P2WSH = "p2wsh"
    P2TR_LEGACY = "p2trLegacy"
    P2TR_MUSIG2_SCRIPT_PATH = "p2trMusig2ScriptPath"
    P2TR_MUSIG2_KEY_PATH = "p2trMusig2KeyPath"

    @classmethod
    def from_string(cls, value: str) -> InputScriptType:
        if value == "p2tr":
            return cls.P2TR_LEGACY
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown input script type: {value}") from None

    @classmethod
    def from_output_script_type(
        cls, script_type: OutputScriptType, sign_path: SignPath | None = None
    ) -> InputScriptType:
        if script_type is OutputScriptType.P2SH:
            return cls.P2SH
        if script_type is OutputScriptType.P2SH_P2WSH:
            return cls.P2SH_P2WSH
        if script_type is OutputScriptType.P2WSH:
            return cls.P2WSH
        if script_type is OutputScriptType.P2TR_LEGACY:
            return cls.P2TR_LEGACY
        path = sign_path or SignPath.default()
        if path.is_key_path_pair():
            return cls.P2TR_MUSIG2_KEY_PATH
        return cls.P2TR_MUSIG2_SCRIPT_PATH

    @classmethod
    def from_chain(cls, chain: int, sign_path: SignPath | None = None) -> InputScriptType:
        return cls.from_output_script_type(chain_to_script_type(chain), sign_path)

    @property
    def is_taproot(self) -> bool:
        return self in (
            InputScriptType.P2TR_LEGACY,
            InputScriptType.P2TR_MUSIG2_SCRIPT_PATH,
            InputScriptType.P2TR_MUSIG2_KEY_PATH,
        )

    @property
    def is_multisig(self) -> bool:
        """Uses a 2-of-3 OP_CHECKMULTISIG script."""
        return self in (InputScriptType.P2SH, InputScriptType.P2SH_P2WSH, InputScriptType.P2WSH)

    @property
    def is_segwit(self) -> bool:
        return self not in (InputScriptType.P2SH, InputScriptType.P2SH_P2PK)


class Scope(str, Enum):
    EXTERNAL = "external"
    INTERNAL = "internal"


class KeyRole(str, Enum):
    USER = "user"
    BACKUP = "backup"
    BITGO = "bitgo"

    @classmethod
    def from_string(cls, value: str) -> KeyRole:
        if value == "custodian":
            return cls.BITGO
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown key role: {value}") from None

    @property
    def key_index(self) -> int:
        """Position of this key in the wallet triple."""
        return _ROLE_ORDER.index(self)


_ROLE_ORDER = [KeyRole.USER, KeyRole.BACKUP, KeyRole.BITGO]

_BASE_CHAINS = {
    OutputScriptType.P2SH: 0,
    OutputScriptType.P2SH_P2WSH: 10,
    OutputScriptType.P2WSH: 20,
    OutputScriptType.P2TR_LEGACY: 30,
    OutputScriptType.P2TR_MUSIG2: 40,
}


@dataclass(frozen=True)
class SignPath:
    signer: KeyRole
    cosigner: KeyRole

    def __post_init__(self) -> None:
        if self.signer == self.cosigner:
            raise ValueError("signer and cosigner must differ")

    @classmethod
    def default(cls) -> SignPath:
        return cls(KeyRole.USER, KeyRole.BITGO)

    @classmethod
    def script_path_default(cls) -> SignPath:
        return cls(KeyRole.USER, KeyRole.BACKUP)

    def roles(self) -> frozenset[KeyRole]:
        return frozenset((self.signer, self.cosigner))

    def is_key_path_pair(self) -> bool:
        """user+bitgo is the only pair that can spend a MuSig2 key path."""
        return self.roles() == frozenset((KeyRole.USER, KeyRole.BITGO))

    def uses_backup(self) -> bool:
        return KeyRole.BACKUP in self.roles()


@dataclass(frozen=True)
class Chain:
    script_type: OutputScriptType
    scope: Scope

    @classmethod
    def from_value(cls, chain: int) -> Chain:
        for script_type, base in _BASE_CHAINS.items():
            if chain == base:
                return cls(script_type, Scope.EXTERNAL)
            if chain == base + 1:
                return cls(script_type, Scope.INTERNAL)
        raise UnknownChainCode(chain)

    @property
    def value(self) -> int:
        base = _BASE_CHAINS[self.script_type]
        return base + 1 if self.scope is Scope.INTERNAL else base

    @property
    def is_internal(self) -> bool:
        return self.scope is Scope.INTERNAL


@dataclass(frozen=True)
class ScriptId:
    chain: int
    index: int

    @property
    def script_type(self) -> OutputScriptType:
        return chain_to_script_type(self.chain)


ALL_CHAINS = [base + offset for base in _BASE_CHAINS.values() for offset in (0, 1)]


def chain_to_script_type(chain: int) -> OutputScriptType:
    return Chain.from_value(chain).script_type


def script_type_to_chain(script_type: OutputScriptType | str, is_internal: bool) -> int:
    if isinstance(script_type, str) and not isinstance(script_type, OutputScriptType):
        script_type = OutputScriptType.from_string(script_type)
    scope = Scope.INTERNAL if is_internal else Scope.EXTERNAL
    return Chain(script_type, scope).value


def is_valid_chain(chain: int) -> bool:
    return chain in ALL_CHAINS


def required_sign_path(script_type: InputScriptType) -> SignPath:
    """
    Default sign path for an input script type. Taproot script-path inputs are
    signed by user and backup; everything else by user and bitgo.
    """
    if script_type is InputScriptType.P2TR_MUSIG2_SCRIPT_PATH:
        return SignPath.script_path_default()
    return SignPath.default()


def resolve_input_script_type(chain: int, sign_path: SignPath | None = None) -> InputScriptType:
    """Input script type for a wallet input on ``chain`` spent along ``sign_path``."""
    return InputScriptType.from_chain(chain, sign_path)
