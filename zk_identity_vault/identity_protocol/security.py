"""
Low-level primitives shared by the codec, deriver and Merkle tree.

OS nonce randomness, unambiguous byte framing, hashing
into the commitment field and timing-safe equality. Nothing here logs or
keeps its inputs.
"""

import hashlib
import hmac
import secrets
from typing import Iterable, Optional

from .config import FIELD_MODULUS, HASH_FUNCTION


# ============================================================================
# RANDOMNESS SOURCE
# ============================================================================


class RandomnessSource:
    """
    OS-backed randomness for nonces and keys.

    Every draw goes straight to the OS CSPRNG, so no generator state is
    shared between a pre-fork parent and its workers.

    Example:
        >>> nonce = RandomnessSource().get_random_bytes(12)
    """

    def get_random_bytes(self, n: int) -> bytes:
        """
        Draw ``n`` bytes from the OS CSPRNG.

        Raises:
            ValueError: If n is not positive
        """
        if n <= 0:
            raise ValueError(f"n must be positive, got {n}")
        return secrets.token_bytes(n)


# ============================================================================
# FRAMING AND HASHING
# ============================================================================


def length_prefixed(parts: Iterable[bytes]) -> bytes:
    """
    Encode parts as ``len(part) || part`` with 4-byte big-endian lengths.

    Prevents ``("ab", "c")`` and ``("a", "bc")`` from colliding.
    """
    out = bytearray()
    for part in parts:
        if not isinstance(part, bytes):
            raise TypeError(f"parts must be bytes, got {type(part)}")
        out += len(part).to_bytes(4, "big")
        out += part
    return bytes(out)


def _digest(payload: bytes) -> bytes:
    if HASH_FUNCTION == "SHA3-256":
        return hashlib.sha3_256(payload).digest()
    return hashlib.sha256(payload).digest()


def hash_to_field(data: bytes, domain_sep: Optional[bytes] = None) -> int:
    """
    Map bytes to an element of the commitment field.

    The domain separator, when given, is framed with its length so that no
    (separator, data) pair can be re-split into another.

    Args:
        data: Non-empty input
        domain_sep: Optional separator distinguishing uses of the hash

    Returns:
        Integer in [0, FIELD_MODULUS)

    Raises:
        ValueError: If data is empty
        TypeError: If data or domain_sep is not bytes

    Note:
        Reducing a 256-bit digest into the 254-bit field is slightly
        non-uniform. That is fine for commitments and tree nodes; never
        sample secrets this way.
    """
    if not isinstance(data, bytes):
        raise TypeError(f"data must be bytes, got {type(data)}")
    if not data:
        raise ValueError("Data cannot be empty")
    if domain_sep is not None and not isinstance(domain_sep, bytes):
        raise TypeError(f"domain_sep must be bytes, got {type(domain_sep)}")

    prefix = length_prefixed([domain_sep]) if domain_sep else b""
    return int.from_bytes(_digest(prefix + data), "big") % FIELD_MODULUS


# ============================================================================
# CONSTANT-TIME OPERATIONS
# ============================================================================


def constant_time_compare(a: bytes, b: bytes) -> bool:
    """Compare two byte strings without leaking where they differ."""
    return hmac.compare_digest(a, b)
