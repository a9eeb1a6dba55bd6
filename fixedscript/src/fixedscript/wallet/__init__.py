"""
Wallet keys, chain codes, scripts and addresses.
"""
