"""
Field-level encryption for structured records.

``seal_fields`` replaces selected values of a dict with encrypted blobs and
records their names under ``_encryptedFieldNames``; ``open_fields`` reverses
exactly those names. Records without the metadata are treated as never
sealed and returned unchanged, so legacy plaintext state still loads.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List

from .codec import EncryptedBlob, decrypt, encrypt
from .config import DEFAULT_ALGORITHM, ENCRYPTED_FIELDS_KEY
from .exceptions import CryptographicError, MalformedBlobError


def is_sealed(record: Dict[str, Any]) -> bool:
    return isinstance(record, dict) and ENCRYPTED_FIELDS_KEY in record


def seal_fields(
    record: Dict[str, Any],
    field_names: Iterable[str],
    key: bytes,
    algorithm: str = DEFAULT_ALGORITHM,
) -> Dict[str, Any]:
    """
    Encrypt the named fields of a record.

    Fields that are absent or None are left alone and not listed. The input
    record is not modified.

    Args:
        record: Plain record
        field_names: Candidate fields to encrypt
        key: 32-byte key
        algorithm: Codec construction

    Returns:
        New record with blobs in place of the sealed values

    Raises:
        CryptographicError: If any field fails; nothing is returned partially
    """
    if not isinstance(record, dict):
        raise TypeError(f"record must be a dict, got {type(record)}")
    if ENCRYPTED_FIELDS_KEY in record:
        raise CryptographicError("Record is already sealed")

    sealed = dict(record)
    sealed_names: List[str] = []

    for name in field_names:
        value = record.get(name)
        if value is None:
            continue
        try:
            blob = encrypt(str(value).encode("utf-8"), key, algorithm)
        except CryptographicError as exc:
            raise type(exc)(f"Encryption failed for field {name!r}: {exc}") from exc
        sealed[name] = blob.to_dict()
        sealed_names.append(name)

    sealed[ENCRYPTED_FIELDS_KEY] = sealed_names
    return sealed


def open_fields(record: Dict[str, Any], key: bytes) -> Dict[str, Any]:
    """
    Decrypt the fields listed in a sealed record's metadata.

    Returns:
        New record with plaintext strings in place of blobs and the
        metadata removed; unsealed records are returned as a copy

    Raises:
        CryptographicError: If metadata is malformed or any field fails to
            decrypt
    """
    if not isinstance(record, dict):
        raise TypeError(f"record must be a dict, got {type(record)}")
    if not is_sealed(record):
        return dict(record)

    names = record[ENCRYPTED_FIELDS_KEY]
    if not isinstance(names, list) or not all(isinstance(n, str) for n in names):
        raise MalformedBlobError(f"{ENCRYPTED_FIELDS_KEY} must be a list of names")

    opened = dict(record)
    del opened[ENCRYPTED_FIELDS_KEY]

    for name in names:
        if name not in record:
            raise MalformedBlobError(f"Sealed field {name!r} is missing")
        try:
            plaintext = decrypt(EncryptedBlob.from_dict(record[name]), key)
            opened[name] = plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedBlobError(f"Field {name!r} is not UTF-8 text") from exc
        except CryptographicError as exc:
            raise type(exc)(f"Decryption failed for field {name!r}: {exc}") from exc

    return opened
