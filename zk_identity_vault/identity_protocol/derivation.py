"""
Deterministic identity derivation.

Turns a stable subject identifier plus a server-held secret into the same
private scalar and commitment on every call:

    salt   = HMAC-SHA256(app_secret, LP("identity-salt", issuer, client_id,
                                        [subject_id], [aux_identifier]))
    scalar = HKDF-SHA256(ikm=app_secret, salt=salt, info=context_label, L=32)
    commitment = commit(scalar)

``LP`` is length-prefixed encoding; bracketed fields are included according
to the DerivationStrategy. Nothing derived here is persisted: the identity
is recomputed per request.

Rotating ``context_label`` (e.g. ``identity-v3`` -> ``identity-v4``) yields
a disjoint set of identities. Changing ``app_secret``, ``issuer`` or
``client_id`` does the same, so they must be treated as permanent.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Callable, Optional

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .commitments import commit
from .config import (
    DEFAULT_CONTEXT_LABEL,
    DOMAIN_SEPARATORS,
    PRIVATE_SCALAR_BYTES,
)
from .exceptions import MissingInputError
from .security import constant_time_compare, length_prefixed
from .types import DerivationStrategy, IdentityMaterial

logger = logging.getLogger(__name__)

CommitmentFunction = Callable[[bytes], int]


def normalize_aux_identifier(aux_identifier: Optional[str]) -> Optional[str]:
    """Trim and case-fold an auxiliary identifier; empty becomes None."""
    if aux_identifier is None:
        return None
    normalized = str(aux_identifier).strip().casefold()
    return normalized or None


class IdentityDeriver:
    """
    Derives IdentityMaterial for authenticated principals.

    Args:
        app_secret: Input keying material (server secret)
        issuer: Identity-provider issuer/realm identifier
        client_id: Application/client identifier at the provider
        strategy: Which principal attributes feed the salt
        context_label: Versioned HKDF expansion context
        commitment_function: Scalar -> commitment field element

    Example:
        >>> deriver = IdentityDeriver("secret", issuer="https://idp")
        >>> a = deriver.derive("auth0|123")
        >>> b = deriver.derive("auth0|123")
        >>> assert a == b
    """

    def __init__(
        self,
        app_secret: str,
        issuer: str = "",
        client_id: str = "",
        strategy: DerivationStrategy = DerivationStrategy.SUBJECT_ONLY,
        context_label: str = DEFAULT_CONTEXT_LABEL,
        commitment_function: CommitmentFunction = commit,
    ):
        if not app_secret:
            raise MissingInputError("app_secret is required")
        if not context_label:
            raise MissingInputError("context_label is required")
        if not isinstance(strategy, DerivationStrategy):
            raise TypeError(f"strategy must be DerivationStrategy, got {type(strategy)}")

        self._app_secret = app_secret.encode("utf-8")
        self.issuer = issuer or ""
        self.client_id = client_id or ""
        self.strategy = strategy
        self.context_label = context_label
        self._commitment_function = commitment_function

    def __repr__(self) -> str:
        return (
            f"IdentityDeriver(strategy={self.strategy.value!r}, "
            f"context_label={self.context_label!r})"
        )

    def _salt(self, subject_id: str, aux_identifier: Optional[str]) -> bytes:
        parts = [
            DOMAIN_SEPARATORS["identity_salt"],
            self.issuer.encode("utf-8"),
            self.client_id.encode("utf-8"),
        ]
        if self.strategy.uses_subject:
            parts.append(subject_id.encode("utf-8"))
        if self.strategy.uses_aux:
            parts.append(aux_identifier.encode("utf-8"))
        return hmac.new(self._app_secret, length_prefixed(parts), hashlib.sha256).digest()

    def derive(
        self, subject_id: str, aux_identifier: Optional[str] = None
    ) -> IdentityMaterial:
        """
        Derive the identity for a principal.

        Args:
            subject_id: Stable provider subject identifier
            aux_identifier: Optional verified auxiliary identifier (email)

        Returns:
            IdentityMaterial

        Raises:
            MissingInputError: If subject_id is empty, or the strategy needs
                an auxiliary identifier and none was given
        """
        if not subject_id or not str(subject_id).strip():
            raise MissingInputError("subject_id is required")
        subject_id = str(subject_id).strip()
        aux = normalize_aux_identifier(aux_identifier)
        if self.strategy.uses_aux and aux is None:
            raise MissingInputError(
                f"aux_identifier is required for strategy {self.strategy.value}"
            )

        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=PRIVATE_SCALAR_BYTES,
            salt=self._salt(subject_id, aux),
            info=self.context_label.encode("utf-8"),
        )
        scalar = hkdf.derive(self._app_secret)
        commitment = str(self._commitment_function(scalar))

        logger.debug(
            "Derived identity (strategy=%s, context=%s, commitment=%s)",
            self.strategy.value,
            self.context_label,
            commitment,
        )
        return IdentityMaterial(private_scalar=scalar.hex(), commitment=commitment)

    def verify(
        self,
        subject_id: str,
        aux_identifier: Optional[str],
        expected_commitment: str,
    ) -> bool:
        """
        Recompute the identity and compare commitments in constant time.

        Returns:
            True if the derived commitment equals expected_commitment

        Raises:
            MissingInputError: As for derive()
        """
        material = self.derive(subject_id, aux_identifier)
        expected = str(expected_commitment).strip().encode("utf-8")
        return constant_time_compare(material.commitment.encode("utf-8"), expected)


def derive(
    subject_id: str,
    app_secret: str,
    aux_identifier: Optional[str] = None,
    strategy: DerivationStrategy = DerivationStrategy.SUBJECT_ONLY,
    context_label: str = DEFAULT_CONTEXT_LABEL,
    issuer: str = "",
    client_id: str = "",
) -> IdentityMaterial:
    """Functional form of IdentityDeriver.derive()."""
    deriver = IdentityDeriver(
        app_secret,
        issuer=issuer,
        client_id=client_id,
        strategy=strategy,
        context_label=context_label,
    )
    return deriver.derive(subject_id, aux_identifier)


def verify(
    subject_id: str,
    app_secret: str,
    aux_identifier: Optional[str],
    expected_commitment: str,
    strategy: DerivationStrategy = DerivationStrategy.SUBJECT_ONLY,
    context_label: str = DEFAULT_CONTEXT_LABEL,
    issuer: str = "",
    client_id: str = "",
) -> bool:
    """Functional form of IdentityDeriver.verify()."""
    deriver = IdentityDeriver(
        app_secret,
        issuer=issuer,
        client_id=client_id,
        strategy=strategy,
        context_label=context_label,
    )
    return deriver.verify(subject_id, aux_identifier, expected_commitment)
