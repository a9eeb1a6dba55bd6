"""
Network transaction serialization and sighash computation.
"""
