"""
Bitcoin script, sighash and PSBT constants used by the fixed-script wallet.
"""

from __future__ import annotations

# Opcodes
OP_0 = 0x00
OP_PUSHDATA1 = 0x4C
OP_PUSHDATA2 = 0x4D
OP_PUSHDATA4 = 0x4E
OP_1 = 0x51
OP_2 = 0x52
OP_3 = 0x53
OP_RETURN = 0x6A
OP_DUP = 0x76
OP_EQUAL = 0x87
OP_EQUALVERIFY = 0x88
OP_HASH160 = 0xA9
OP_CHECKSIG = 0xAC
OP_CHECKSIGVERIFY = 0xAD
OP_CHECKMULTISIG = 0xAE

# Sighash types
SIGHASH_DEFAULT = 0x00  # taproot only
SIGHASH_ALL = 0x01
SIGHASH_NONE = 0x02
SIGHASH_SINGLE = 0x03
SIGHASH_FORKID = 0x40
SIGHASH_ANYONECANPAY = 0x80

# Sequence used for wallet inputs (enables locktime, disables RBF signalling)
DEFAULT_SEQUENCE = 0xFFFFFFFE
FINAL_SEQUENCE = 0xFFFFFFFF

# Non-hardened BIP32 child indices are below this bound
HARDENED_OFFSET = 0x80000000

# Taproot
TAPROOT_LEAF_VERSION = 0xC0

# secp256k1 curve order
SECP256K1_N = int("FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16)

# Proprietary PSBT keys
BITGO_PROPRIETARY_PREFIX = b"BITGO"

# Default number of derived key triples kept per RootWalletKeys instance
DERIVED_KEY_CACHE_SIZE = 128

# BIP-322
BIP322_DEFAULT_TAG = "BIP0322-signed-message"
