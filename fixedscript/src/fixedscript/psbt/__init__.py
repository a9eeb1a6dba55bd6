"""
PSBT codec, BitGo proprietary fields and the wallet-aware container.
"""
