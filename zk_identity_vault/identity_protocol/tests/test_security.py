"""
Unit tests for security utilities module.

Tests randomness, length-prefixed encoding, hashing into the field and
constant-time comparison.
"""

import hashlib

import pytest

from zk_identity_vault.identity_protocol import security
from zk_identity_vault.identity_protocol.config import FIELD_MODULUS


class TestRandomnessSource:
    """Test cryptographically secure randomness source."""

    def test_get_random_bytes(self):
        """Test random bytes generation."""
        rng = security.RandomnessSource()
        random_bytes = rng.get_random_bytes(24)
        assert isinstance(random_bytes, bytes)
        assert len(random_bytes) == 24

    def test_random_bytes_differ(self):
        """Two 32-byte draws never collide in practice."""
        rng = security.RandomnessSource()
        assert rng.get_random_bytes(32) != rng.get_random_bytes(32)

    @pytest.mark.parametrize("n", [0, -1])
    def test_get_random_bytes_rejects_non_positive(self, n):
        rng = security.RandomnessSource()
        with pytest.raises(ValueError):
            rng.get_random_bytes(n)


class TestLengthPrefixed:
    """Test unambiguous concatenation."""

    def test_encoding(self):
        assert security.length_prefixed([b"ab"]) == b"\x00\x00\x00\x02ab"

    def test_no_boundary_collision(self):
        assert security.length_prefixed([b"ab", b"c"]) != security.length_prefixed(
            [b"a", b"bc"]
        )

    def test_empty_parts_are_encoded(self):
        assert security.length_prefixed([b"", b"x"]) != security.length_prefixed([b"x"])

    def test_rejects_str(self):
        with pytest.raises(TypeError):
            security.length_prefixed(["text"])


class TestHashToField:
    """Test hashing into the commitment field."""

    def test_in_field(self):
        value = security.hash_to_field(b"data")
        assert 0 <= value < FIELD_MODULUS

    def test_deterministic(self):
        assert security.hash_to_field(b"data", b"DST") == security.hash_to_field(
            b"data", b"DST"
        )

    def test_domain_separation(self):
        assert security.hash_to_field(b"data", b"A") != security.hash_to_field(
            b"data", b"B"
        )

    def test_matches_reference_construction(self):
        dst = b"DST"
        digest = hashlib.sha3_256(len(dst).to_bytes(4, "big") + dst + b"data").digest()
        expected = int.from_bytes(digest, "big") % FIELD_MODULUS
        assert security.hash_to_field(b"data", dst) == expected

    def test_empty_data_rejected(self):
        with pytest.raises(ValueError, match="empty"):
            security.hash_to_field(b"")

    def test_type_checks(self):
        with pytest.raises(TypeError):
            security.hash_to_field("data")
        with pytest.raises(TypeError):
            security.hash_to_field(b"data", "DST")


class TestConstantTimeCompare:
    """Test constant-time comparison."""

    def test_equal(self):
        assert security.constant_time_compare(b"abc", b"abc") is True

    def test_not_equal(self):
        assert security.constant_time_compare(b"abc", b"abd") is False
        assert security.constant_time_compare(b"abc", b"abcd") is False
