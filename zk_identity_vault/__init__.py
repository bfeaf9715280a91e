"""
zk-identity-vault: deterministic pseudonymous identities and an encrypted
membership group for zero-knowledge membership proofs.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
