"""
Authenticated encryption of opaque byte payloads.

Two constructions are supported and named in every blob so that stored data
stays decryptable when the default changes:

    aes-256-gcm          cryptography's AESGCM, 96-bit random nonce
    xchacha20-poly1305   libsodium via PyNaCl, 192-bit random nonce

The algorithm id is authenticated as associated data. A relabelled blob is
rejected by the nonce size check, or failing that by the tag check, and is
never decrypted under a different construction.

Blobs written by the earlier JavaScript service (``encrypted``/``iv`` field
names, 128-bit GCM IV, no associated data) are still accepted on read.
"""

from __future__ import annotations

import binascii
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from nacl import bindings as sodium
from nacl.exceptions import CryptoError as SodiumCryptoError

from .config import (
    ALGORITHM_AES_GCM,
    DEFAULT_ALGORITHM,
    KEY_SIZE_BYTES,
    NONCE_SIZE_BYTES,
    SUPPORTED_ALGORITHMS,
    TAG_SIZE_BYTES,
)
from .exceptions import (
    ConfigurationError,
    KeyInvalidError,
    MalformedBlobError,
    TagMismatchError,
)
from .security import RandomnessSource


_rng = RandomnessSource()

# The JavaScript service used 16-byte IVs with AES-GCM.
_LEGACY_GCM_NONCE_BYTES = 16


@dataclass(frozen=True)
class EncryptedBlob:
    """
    Wire/disk form of an encrypted payload.

    Attributes:
        ciphertext: Encrypted bytes without the tag
        nonce: Per-message random nonce
        auth_tag: 16-byte authentication tag
        algorithm: Construction identifier
        legacy: True for blobs produced by the JavaScript service
    """

    ciphertext: bytes
    nonce: bytes
    auth_tag: bytes
    algorithm: str = DEFAULT_ALGORITHM
    legacy: bool = False

    def __repr__(self) -> str:
        return (
            f"EncryptedBlob(algorithm={self.algorithm!r}, "
            f"ciphertext_len={len(self.ciphertext)})"
        )

    def to_dict(self) -> Dict[str, str]:
        if self.legacy:
            return {
                "encrypted": self.ciphertext.hex(),
                "iv": self.nonce.hex(),
                "authTag": self.auth_tag.hex(),
                "algorithm": self.algorithm,
            }
        return {
            "ciphertext": self.ciphertext.hex(),
            "nonce": self.nonce.hex(),
            "authTag": self.auth_tag.hex(),
            "algorithm": self.algorithm,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, sort_keys=True)

    @classmethod
    def from_dict(cls, data: Any) -> "EncryptedBlob":
        """
        Parse a blob dict, failing closed on anything missing or undecodable.

        Raises:
            MalformedBlobError: If a field is missing, not hex, or the wrong
                size for the named algorithm
        """
        if not isinstance(data, dict):
            raise MalformedBlobError("Encrypted blob must be a JSON object")

        legacy = "encrypted" in data and "ciphertext" not in data
        names = ("encrypted", "iv") if legacy else ("ciphertext", "nonce")
        for name in names + ("authTag",):
            if not isinstance(data.get(name), str):
                raise MalformedBlobError(f"Encrypted blob missing field {name!r}")

        algorithm = data.get("algorithm", ALGORITHM_AES_GCM if legacy else None)
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise MalformedBlobError(f"Unsupported algorithm: {algorithm!r}")

        try:
            ciphertext = bytes.fromhex(data[names[0]])
            nonce = bytes.fromhex(data[names[1]])
            auth_tag = bytes.fromhex(data["authTag"])
        except ValueError as exc:
            raise MalformedBlobError("Encrypted blob field is not valid hex") from exc

        blob = cls(ciphertext, nonce, auth_tag, algorithm, legacy)
        _check_sizes(blob)
        return blob

    @classmethod
    def from_json(cls, text: str) -> "EncryptedBlob":
        try:
            data = json.loads(text)
        except ValueError as exc:
            raise MalformedBlobError("Encrypted blob is not valid JSON") from exc
        return cls.from_dict(data)


def _check_sizes(blob: EncryptedBlob) -> None:
    expected_nonce = NONCE_SIZE_BYTES[blob.algorithm]
    if blob.legacy and blob.algorithm == ALGORITHM_AES_GCM:
        expected_nonce = _LEGACY_GCM_NONCE_BYTES
    if len(blob.nonce) != expected_nonce:
        raise MalformedBlobError(
            f"Nonce must be {expected_nonce} bytes for {blob.algorithm}, "
            f"got {len(blob.nonce)}"
        )
    if len(blob.auth_tag) != TAG_SIZE_BYTES:
        raise MalformedBlobError(
            f"Auth tag must be {TAG_SIZE_BYTES} bytes, got {len(blob.auth_tag)}"
        )


def _check_key(key: bytes) -> None:
    if not isinstance(key, (bytes, bytearray)):
        raise KeyInvalidError(f"Key must be bytes, got {type(key).__name__}")
    if len(key) != KEY_SIZE_BYTES:
        raise KeyInvalidError(
            f"Key must be exactly {KEY_SIZE_BYTES} bytes, got {len(key)}"
        )


def _associated_data(blob_algorithm: str, legacy: bool) -> Optional[bytes]:
    if legacy:
        return None
    return blob_algorithm.encode("ascii")


def encrypt(
    plaintext: bytes, key: bytes, algorithm: str = DEFAULT_ALGORITHM
) -> EncryptedBlob:
    """
    Encrypt plaintext under key with a fresh random nonce.

    Args:
        plaintext: Bytes to encrypt (may be empty)
        key: 32-byte symmetric key
        algorithm: One of SUPPORTED_ALGORITHMS

    Returns:
        EncryptedBlob

    Raises:
        KeyInvalidError: If key is not exactly 32 bytes
        MalformedBlobError: If algorithm is unknown
    """
    if not isinstance(plaintext, (bytes, bytearray)):
        raise TypeError(f"plaintext must be bytes, got {type(plaintext)}")
    _check_key(key)
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise MalformedBlobError(f"Unsupported algorithm: {algorithm!r}")

    nonce = _rng.get_random_bytes(NONCE_SIZE_BYTES[algorithm])
    aad = _associated_data(algorithm, legacy=False)

    if algorithm == ALGORITHM_AES_GCM:
        sealed = AESGCM(bytes(key)).encrypt(nonce, bytes(plaintext), aad)
    else:
        sealed = sodium.crypto_aead_xchacha20poly1305_ietf_encrypt(
            bytes(plaintext), aad, nonce, bytes(key)
        )

    return EncryptedBlob(
        ciphertext=sealed[:-TAG_SIZE_BYTES],
        nonce=nonce,
        auth_tag=sealed[-TAG_SIZE_BYTES:],
        algorithm=algorithm,
    )


def decrypt(blob: EncryptedBlob, key: bytes) -> bytes:
    """
    Verify and decrypt a blob.

    The tag is checked by the underlying construction before any plaintext
    is released; nothing partial is ever returned.

    Raises:
        KeyInvalidError: If key is not exactly 32 bytes
        MalformedBlobError: If the blob is structurally invalid
        TagMismatchError: If the tag does not verify
    """
    if not isinstance(blob, EncryptedBlob):
        raise MalformedBlobError(f"Expected EncryptedBlob, got {type(blob).__name__}")
    _check_key(key)
    if blob.algorithm not in SUPPORTED_ALGORITHMS:
        raise MalformedBlobError(f"Unsupported algorithm: {blob.algorithm!r}")
    _check_sizes(blob)

    sealed = blob.ciphertext + blob.auth_tag
    aad = _associated_data(blob.algorithm, blob.legacy)

    try:
        if blob.algorithm == ALGORITHM_AES_GCM:
            return AESGCM(bytes(key)).decrypt(blob.nonce, sealed, aad)
        return sodium.crypto_aead_xchacha20poly1305_ietf_decrypt(
            sealed, aad, blob.nonce, bytes(key)
        )
    except (InvalidTag, SodiumCryptoError) as exc:
        raise TagMismatchError(
            f"Authentication failed for {blob.algorithm} blob "
            "(tampered data or wrong key)"
        ) from exc


# ============================================================================
# KEY HELPERS
# ============================================================================


def generate_key() -> bytes:
    """Return a fresh random 32-byte key."""
    return _rng.get_random_bytes(KEY_SIZE_BYTES)


def parse_hex_key(text: Optional[str], name: str = "ENCRYPTION_KEY") -> bytes:
    """
    Decode a hex-encoded key, rejecting anything that is not exactly 32 bytes.

    Short or placeholder keys are refused rather than padded or truncated.

    Raises:
        ConfigurationError: If the key is missing, not hex, or wrong length
    """
    if not text:
        raise ConfigurationError(f"{name} is not set")
    try:
        key = binascii.unhexlify(text.strip())
    except (binascii.Error, ValueError) as exc:
        raise ConfigurationError(f"{name} must be hex encoded") from exc
    if len(key) != KEY_SIZE_BYTES:
        raise ConfigurationError(
            f"{name} must decode to {KEY_SIZE_BYTES} bytes, got {len(key)}"
        )
    return key
