"""
Fixed-depth Merkle tree utilities for the membership group.

Leaves are commitments (field elements) in insertion order; unoccupied
leaves hold EMPTY_LEAF. Nodes are SHA3-256 with domain separation, reduced
into the field so every node is itself a valid field element.
"""

from functools import lru_cache
from typing import List, Sequence, Tuple, Union

from .config import (
    DOMAIN_SEPARATORS,
    EMPTY_LEAF,
    FIELD_MODULUS,
    MAX_TREE_DEPTH,
    MIN_TREE_DEPTH,
)
from .security import hash_to_field

Leaf = Union[int, str]
AuthPath = List[Tuple[int, bool]]


def _field_bytes(value: int) -> bytes:
    if not 0 <= value < FIELD_MODULUS:
        raise ValueError("Node value outside the commitment field")
    return value.to_bytes(32, "big")


def _check_depth(depth: int) -> None:
    if not isinstance(depth, int) or not MIN_TREE_DEPTH <= depth <= MAX_TREE_DEPTH:
        raise ValueError(
            f"Tree depth must be in [{MIN_TREE_DEPTH}, {MAX_TREE_DEPTH}], got {depth!r}"
        )


def hash_node(left: int, right: int) -> int:
    """
    Hash two child nodes.

    Args:
        left: Left child (field element)
        right: Right child (field element)

    Returns:
        Parent node (field element)

    Note:
        Uses fixed left||right ordering (no sorting).
    """
    return hash_to_field(
        _field_bytes(left) + _field_bytes(right), DOMAIN_SEPARATORS["merkle_node"]
    )


@lru_cache(maxsize=None)
def zero_hashes(depth: int) -> Tuple[int, ...]:
    """
    Roots of all-empty subtrees, indexed by height.

    ``zero_hashes(d)[0]`` is EMPTY_LEAF and ``zero_hashes(d)[d]`` is the
    root of an empty tree of depth ``d``.
    """
    _check_depth(depth)
    zeros = [EMPTY_LEAF]
    for _ in range(depth):
        zeros.append(hash_node(zeros[-1], zeros[-1]))
    return tuple(zeros)


def empty_root(depth: int) -> int:
    """Root of a tree with no members."""
    return zero_hashes(depth)[depth]


def _to_leaves(members: Sequence[Leaf], depth: int) -> List[int]:
    if len(members) > 2**depth:
        raise ValueError(
            f"{len(members)} members exceed capacity of depth {depth} tree"
        )
    leaves = [int(m) for m in members]
    for leaf in leaves:
        _field_bytes(leaf)
    return leaves


def _next_level(level: List[int], zero: int) -> List[int]:
    if len(level) % 2:
        level = level + [zero]
    return [hash_node(level[i], level[i + 1]) for i in range(0, len(level), 2)]


def compute_root(members: Sequence[Leaf], depth: int) -> int:
    """
    Compute the root of the ordered member list at a fixed depth.

    Only the occupied prefix of each level is hashed; the empty remainder is
    covered by precomputed zero subtrees, so cost is O(n + depth).

    Args:
        members: Commitments in insertion order (ints or decimal strings)
        depth: Tree depth (capacity 2**depth)

    Returns:
        Root as a field element

    Raises:
        ValueError: If depth is out of range, members exceed capacity, or a
            member is outside the field
    """
    _check_depth(depth)
    zeros = zero_hashes(depth)
    level = _to_leaves(members, depth)

    for height in range(depth):
        if not level:
            return zeros[depth]
        level = _next_level(level, zeros[height])

    return level[0] if level else zeros[depth]


def build_path(members: Sequence[Leaf], depth: int, index: int) -> AuthPath:
    """
    Build the authentication path for the leaf at ``index``.

    Returns:
        ``[(sibling, is_left), ...]`` from leaf to root, where ``is_left``
        means the sibling sits on the left of the running node

    Raises:
        IndexError: If index does not address an occupied leaf
    """
    _check_depth(depth)
    zeros = zero_hashes(depth)
    level = _to_leaves(members, depth)
    if not 0 <= index < len(level):
        raise IndexError(f"No member at index {index}")

    path: AuthPath = []
    position = index
    for height in range(depth):
        sibling_pos = position ^ 1
        sibling = level[sibling_pos] if sibling_pos < len(level) else zeros[height]
        path.append((sibling, position % 2 == 1))
        level = _next_level(level, zeros[height])
        position //= 2

    return path


def verify_path(leaf: Leaf, path: AuthPath, root: Leaf) -> bool:
    """
    Verify a Merkle authentication path.

    Args:
        leaf: Commitment at the leaf
        path: Authentication path [(sibling, is_left), ...]
        root: Expected root

    Returns:
        True if path is valid, False otherwise
    """
    current = int(leaf)

    for sibling, is_left in path:
        if is_left:
            current = hash_node(sibling, current)
        else:
            current = hash_node(current, sibling)

    return current == int(root)
