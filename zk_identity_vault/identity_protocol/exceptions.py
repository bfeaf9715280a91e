"""
Custom exceptions for identity derivation and membership storage.

Messages may name files and fields. They never include key material,
private scalars, subject identifiers or decrypted plaintext.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union


class IdentityVaultError(Exception):
    """Base exception for identity vault errors."""

    pass


class ConfigurationError(IdentityVaultError):
    """Missing or invalid key, secret or setting. Fatal at startup."""

    pass


class CryptographicError(IdentityVaultError):
    """Cryptographic operation error."""

    pass


class KeyInvalidError(CryptographicError):
    """Key is missing or has the wrong length."""

    pass


class TagMismatchError(CryptographicError):
    """Authentication tag did not verify (tampering or wrong key)."""

    pass


class MalformedBlobError(CryptographicError):
    """Encrypted blob is missing a field or a field cannot be decoded."""

    pass


class MissingInputError(CryptographicError):
    """A required derivation input is empty."""

    pass


class ValidationError(IdentityVaultError):
    """Caller input rejected before any state mutation."""

    pass


class _PathError(IdentityVaultError):
    def __init__(self, message: str, path: Optional[Union[str, Path]] = None):
        super().__init__(message)
        self.path = Path(path) if path is not None else None


class CorruptDataError(_PathError):
    """A persisted file could not be decrypted or parsed."""

    pass


class StorageError(_PathError):
    """A persisted file could not be written or removed."""

    pass


class AuthorizationError(IdentityVaultError):
    """Operation requires an authenticated principal."""

    pass


class MethodNotAllowedError(IdentityVaultError):
    """Operation invoked with a method its profile does not allow."""

    pass
