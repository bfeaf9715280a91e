"""
Identity commitments.

A commitment is the public face of a derived identity: a field element
computed one-way from the 32-byte private scalar. Equal commitments imply
equal scalars with overwhelming probability; the scalar cannot be recovered
from the commitment.

    C = SHA3-256(len(DST) || DST || scalar) mod FIELD_MODULUS

Commitments travel as canonical decimal strings (no sign, no leading zeros),
which is also the form stored in the membership group.
"""

from __future__ import annotations

from typing import Any

from .config import (
    DOMAIN_SEPARATORS,
    EMPTY_LEAF,
    FIELD_MODULUS,
    MAX_COMMITMENT_DIGITS,
    PRIVATE_SCALAR_BYTES,
)
from .exceptions import ValidationError
from .security import hash_to_field


def commit(private_scalar: bytes) -> int:
    """
    Compute the commitment for a private scalar.

    Args:
        private_scalar: 32-byte private scalar

    Returns:
        Commitment as a field element (never zero in practice)

    Raises:
        ValueError: If the scalar has the wrong length
    """
    if not isinstance(private_scalar, bytes):
        raise TypeError(f"private_scalar must be bytes, got {type(private_scalar)}")
    if len(private_scalar) != PRIVATE_SCALAR_BYTES:
        raise ValueError(
            f"private_scalar must be {PRIVATE_SCALAR_BYTES} bytes, "
            f"got {len(private_scalar)}"
        )
    return hash_to_field(private_scalar, DOMAIN_SEPARATORS["identity_commitment"])


def normalize_commitment(value: Any) -> str:
    """
    Validate a commitment and return its canonical decimal form.

    Accepts ints and decimal strings (surrounding whitespace is ignored).
    ``"042"`` and ``42`` both normalise to ``"42"``, so comparing normalised
    strings is the same as comparing integer values.

    Raises:
        ValidationError: If the value is empty, not a decimal integer, zero
            (reserved for empty leaves), or outside the field
    """
    if isinstance(value, bool):
        raise ValidationError("Commitment must be a decimal integer")

    if isinstance(value, int):
        number = value
    else:
        text = "" if value is None else str(value).strip()
        if not text:
            raise ValidationError("Commitment is required")
        if len(text) > MAX_COMMITMENT_DIGITS:
            raise ValidationError(
                f"Commitment exceeds {MAX_COMMITMENT_DIGITS} digits"
            )
        if not text.isascii() or not text.isdigit():
            raise ValidationError("Commitment must be a non-negative decimal integer")
        number = int(text)

    if number == EMPTY_LEAF:
        raise ValidationError("Commitment must be non-zero")
    if number < 0:
        raise ValidationError("Commitment must be a non-negative decimal integer")
    if number >= FIELD_MODULUS:
        raise ValidationError("Commitment is outside the commitment field")

    return str(number)
