"""
Common types for identity derivation and group membership.

This module provides:
1. DerivationStrategy - which principal attributes feed the derivation salt
2. IdentityMaterial - derived private scalar and public commitment
3. GroupState - the single persisted membership aggregate
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List

from .config import DEFAULT_GROUP_ID, DEFAULT_TREE_DEPTH, MAX_TREE_DEPTH, MIN_TREE_DEPTH
from .exceptions import CorruptDataError

# ============================================================================
# DERIVATION STRATEGY
# ============================================================================


class DerivationStrategy(Enum):
    """
    Principal attributes mixed into the derivation salt.

    - SUBJECT_ONLY: provider subject id (stable across email changes)
    - AUX_ONLY: verified auxiliary identifier, e.g. email (stable across
      provider account re-creation)
    - SUBJECT_AND_AUX: both; changes if either changes
    """

    SUBJECT_ONLY = "SubjectOnly"
    AUX_ONLY = "AuxOnly"
    SUBJECT_AND_AUX = "SubjectAndAux"

    @property
    def uses_subject(self) -> bool:
        return self is not DerivationStrategy.AUX_ONLY

    @property
    def uses_aux(self) -> bool:
        return self is not DerivationStrategy.SUBJECT_ONLY


# ============================================================================
# IDENTITY MATERIAL
# ============================================================================


@dataclass(frozen=True)
class IdentityMaterial:
    """
    Reproducible identity for one principal.

    Attributes:
        private_scalar: 32-byte scalar, hex encoded. Server-side only.
        commitment: Public commitment, canonical decimal string.

    The scalar is excluded from ``repr`` and from ``to_dict``; only the
    commitment may leave the server.
    """

    private_scalar: str = field(repr=False)
    commitment: str

    @property
    def private_scalar_bytes(self) -> bytes:
        return bytes.fromhex(self.private_scalar)

    def to_dict(self) -> Dict[str, str]:
        return {"commitment": self.commitment}


# ============================================================================
# GROUP STATE
# ============================================================================


@dataclass
class GroupState:
    """
    Persisted membership aggregate.

    Attributes:
        group_id: Group identifier
        tree_depth: Fixed Merkle depth (capacity 2**tree_depth)
        members: Canonical decimal commitments in insertion order
        root: Decimal cache of the Merkle root over members

    Serialises with the field names of the legacy plaintext file:
    ``{"id", "treeDepth", "members", "root"}``.
    """

    group_id: int = DEFAULT_GROUP_ID
    tree_depth: int = DEFAULT_TREE_DEPTH
    members: List[str] = field(default_factory=list)
    root: str = ""

    def copy(self) -> "GroupState":
        return GroupState(
            group_id=self.group_id,
            tree_depth=self.tree_depth,
            members=list(self.members),
            root=self.root,
        )

    @property
    def capacity(self) -> int:
        return 2**self.tree_depth

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.group_id,
            "treeDepth": self.tree_depth,
            "members": list(self.members),
            "root": self.root,
        }

    def to_public_dict(self) -> Dict[str, Any]:
        """Fields a prover needs to rebuild the tree."""
        return {
            "groupId": self.group_id,
            "treeDepth": self.tree_depth,
            "members": list(self.members),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "GroupState":
        """
        Parse and shape-check a decoded group record.

        ``root`` may be missing or null (the JavaScript service wrote
        ``root: null`` for empty groups); callers recompute it.

        Raises:
            CorruptDataError: If a field is missing or has the wrong type
        """
        if not isinstance(data, dict):
            raise CorruptDataError("Group record must be a JSON object")

        group_id = data.get("id")
        tree_depth = data.get("treeDepth")
        members = data.get("members")
        root = data.get("root")

        if not isinstance(group_id, int) or isinstance(group_id, bool):
            raise CorruptDataError("Group record has invalid 'id'")
        if (
            not isinstance(tree_depth, int)
            or isinstance(tree_depth, bool)
            or not MIN_TREE_DEPTH <= tree_depth <= MAX_TREE_DEPTH
        ):
            raise CorruptDataError("Group record has invalid 'treeDepth'")
        if not isinstance(members, list) or not all(
            isinstance(m, (str, int)) and not isinstance(m, bool) for m in members
        ):
            raise CorruptDataError("Group record has invalid 'members'")
        if root is not None and not isinstance(root, (str, int)):
            raise CorruptDataError("Group record has invalid 'root'")

        return cls(
            group_id=group_id,
            tree_depth=tree_depth,
            members=[str(m) for m in members],
            root="" if root is None else str(root),
        )
