"""Public API for identity_protocol."""
from __future__ import annotations

from importlib import import_module

from .codec import EncryptedBlob, decrypt, encrypt, generate_key
from .derivation import IdentityDeriver
from .exceptions import (
    ConfigurationError,
    CorruptDataError,
    CryptographicError,
    IdentityVaultError,
    StorageError,
    ValidationError,
)
from .feature_flags import get_derivation_strategy, set_derivation_strategy
from .types import DerivationStrategy, GroupState, IdentityMaterial

__all__ = [
    "EncryptedBlob",
    "encrypt",
    "decrypt",
    "generate_key",
    "IdentityDeriver",
    "IdentityMaterial",
    "DerivationStrategy",
    "GroupState",
    "get_derivation_strategy",
    "set_derivation_strategy",
    "IdentityVaultError",
    "ConfigurationError",
    "CryptographicError",
    "CorruptDataError",
    "StorageError",
    "ValidationError",
    "MembershipStore",
    "IdentityService",
    "Principal",
    "build_service",
    "load_settings",
]

_LAZY_EXPORTS = {
    "MembershipStore": "store",
    "IdentityService": "service",
    "Principal": "service",
    "build_service": "service",
    "load_settings": "settings",
}


def __getattr__(name: str):
    if name in _LAZY_EXPORTS:
        module = import_module(f"{__name__}.{_LAZY_EXPORTS[name]}")
        value = getattr(module, name)
        globals()[name] = value
        return value
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
