"""
Encrypted, cached, crash-tolerant storage for the membership group.

On-disk layout under ``data_dir``::

    group.encrypted                 current revision (EncryptedBlob JSON)
    group.backup.encrypted          previous revision
    group.json                      legacy plaintext file (migrated on read)
    group.*.premigration-<ms>       plaintext copy taken before a migration
    group.*.corrupt-<ms>            unreadable file moved aside on recovery

The decrypted payload of an encrypted file is the JSON of a sealed record
(see ``secure_fields``) carrying ``{id, treeDepth, members, root}``.

Loading walks an ordered chain of recovery strategies and stops at the
first that yields a state: primary, backup, legacy plaintext, then a fresh
empty group. The chain never invents members; the last resort is always a
verifiably empty group.

Writes are single-writer per process (guarded by an RLock). Nothing guards
against a second process writing the same directory: concurrent writers
lose updates, last write wins.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, Union

from .codec import EncryptedBlob, decrypt, encrypt
from .commitments import normalize_commitment
from .config import (
    BACKUP_FILE_NAME,
    DEFAULT_ALGORITHM,
    DEFAULT_CACHE_TTL_SECONDS,
    DEFAULT_GROUP_ID,
    DEFAULT_TREE_DEPTH,
    KEY_SIZE_BYTES,
    LEGACY_FILE_NAME,
    MAX_TREE_DEPTH,
    MIN_TREE_DEPTH,
    PREMIGRATION_SUFFIX,
    PRIMARY_FILE_NAME,
    QUARANTINE_SUFFIX,
    STATE_FORMAT_VERSION,
)
from .exceptions import (
    ConfigurationError,
    CorruptDataError,
    CryptographicError,
    StorageError,
    ValidationError,
)
from .merkle import compute_root
from .secure_fields import open_fields, seal_fields
from .types import GroupState

logger = logging.getLogger(__name__)

RootFunction = Callable[[Sequence[str], int], Union[int, str]]

_CORE_FIELDS = frozenset({"id", "treeDepth", "members", "root"})


class CacheStatus(Enum):
    UNINITIALIZED = "uninitialized"
    FRESH = "fresh"
    STALE = "stale"


class LoadSource(Enum):
    CACHE = "cache"
    PRIMARY = "primary"
    BACKUP = "backup"
    LEGACY = "legacy"
    DEFAULT = "default"


@dataclass
class CacheEntry:
    state: GroupState
    loaded_at: float


@dataclass
class LoadResult:
    """Outcome of one recovery strategy."""

    source: LoadSource
    state: Optional[GroupState] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.state is not None


@dataclass
class _Normalized:
    state: GroupState
    changed: bool = False
    notes: List[str] = field(default_factory=list)


class MembershipStore:
    """
    Owns the single GroupState resource.

    Args:
        data_dir: Directory holding the group files
        key: 32-byte encryption key
        group_id: Group id for a newly created group
        tree_depth: Depth for a newly created group (fixed afterwards)
        cache_ttl: Seconds a loaded state is served without re-reading disk
        algorithm: Codec construction used for new writes
        sealed_fields: Extra top-level record fields to encrypt individually
        root_function: ``(members, depth) -> root``
        clock: Monotonic clock for cache freshness
        wall_clock: Wall clock for backup/quarantine file names
    """

    def __init__(
        self,
        data_dir: Union[str, Path],
        key: bytes,
        group_id: int = DEFAULT_GROUP_ID,
        tree_depth: int = DEFAULT_TREE_DEPTH,
        cache_ttl: float = DEFAULT_CACHE_TTL_SECONDS,
        algorithm: str = DEFAULT_ALGORITHM,
        sealed_fields: Sequence[str] = (),
        root_function: RootFunction = compute_root,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ):
        if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_SIZE_BYTES:
            raise ConfigurationError(
                f"Store key must be exactly {KEY_SIZE_BYTES} bytes"
            )
        if not MIN_TREE_DEPTH <= tree_depth <= MAX_TREE_DEPTH:
            raise ConfigurationError(f"Invalid tree depth: {tree_depth}")
        if cache_ttl < 0:
            raise ConfigurationError(f"cache_ttl must be >= 0, got {cache_ttl}")
        overlap = _CORE_FIELDS.intersection(sealed_fields)
        if overlap:
            raise ConfigurationError(
                f"Core group fields cannot be sealed: {sorted(overlap)}"
            )

        self.data_dir = Path(data_dir)
        self.primary_path = self.data_dir / PRIMARY_FILE_NAME
        self.backup_path = self.data_dir / BACKUP_FILE_NAME
        self.legacy_path = self.data_dir / LEGACY_FILE_NAME

        self._key = bytes(key)
        self.group_id = group_id
        self.tree_depth = tree_depth
        self.cache_ttl = cache_ttl
        self.algorithm = algorithm
        self.sealed_fields = tuple(sealed_fields)
        self._root_function = root_function
        self._clock = clock
        self._wall_clock = wall_clock

        self._lock = threading.RLock()
        self._cache: Optional[CacheEntry] = None
        self.last_load_source: Optional[LoadSource] = None
        self.last_load_errors: List[str] = []

        self._recovery_chain: Tuple[Callable[[], LoadResult], ...] = (
            self._load_primary,
            self._load_backup,
            self._load_legacy,
            self._load_default,
        )

    def __repr__(self) -> str:
        return f"MembershipStore(data_dir={str(self.data_dir)!r})"

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    @property
    def cache_status(self) -> CacheStatus:
        entry = self._cache
        if entry is None:
            return CacheStatus.UNINITIALIZED
        if self._clock() - entry.loaded_at < self.cache_ttl:
            return CacheStatus.FRESH
        return CacheStatus.STALE

    @property
    def recovered(self) -> bool:
        """True if the last disk load needed more than the primary file."""
        return self.last_load_source in (
            LoadSource.BACKUP,
            LoadSource.LEGACY,
            LoadSource.DEFAULT,
        ) and bool(self.last_load_errors)

    def _remember(self, state: GroupState) -> None:
        self._cache = CacheEntry(state=state, loaded_at=self._clock())

    def _current(self) -> GroupState:
        with self._lock:
            if self.cache_status is CacheStatus.FRESH:
                logger.debug("Serving group state from cache")
                self.last_load_source = LoadSource.CACHE
                return self._cache.state
            state = self._load()
            self._remember(state)
            return state

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def get_state(self) -> GroupState:
        """
        Return the current group state.

        Served from cache while fresh, otherwise reloaded through the
        recovery chain. The returned object is a copy.

        Raises:
            CorruptDataError: Only if every recovery strategy failed
        """
        return self._current().copy()

    def get_public_state(self) -> dict:
        """``{groupId, treeDepth, members}`` for external tree rebuilding."""
        return self._current().to_public_dict()

    def get_merkle_root(self) -> str:
        return self._current().root

    def member_count(self) -> int:
        return len(self._current().members)

    def is_member(self, commitment: Union[str, int]) -> bool:
        return normalize_commitment(commitment) in self._current().members

    def add_member(self, commitment: Union[str, int]) -> bool:
        """
        Append a commitment to the group.

        Args:
            commitment: Decimal commitment (whitespace is trimmed)

        Returns:
            True if added, False if already a member (no mutation)

        Raises:
            ValidationError: If the commitment is malformed or the group is
                full; nothing is written
            StorageError: If the new revision cannot be written
        """
        normalized = normalize_commitment(commitment)

        with self._lock:
            state = self._current()
            if normalized in state.members:
                logger.info("Commitment %s already in group %d", normalized, state.group_id)
                return False
            if len(state.members) >= state.capacity:
                raise ValidationError(
                    f"Group {state.group_id} is full ({state.capacity} members)"
                )

            updated = state.copy()
            updated.members.append(normalized)
            updated.root = self._compute_root(updated)

            self._write(updated)
            self._remember(updated)

        logger.info(
            "Added commitment %s to group %d (%d members)",
            normalized,
            updated.group_id,
            len(updated.members),
        )
        return True

    def reset(self) -> None:
        """
        Replace the group with an empty one of the same id and depth.

        The persisted state is loaded first, through the recovery chain when
        needed, so the id and depth on disk are kept and a corrupt primary is
        quarantined before rotation. The previous revision is kept in the
        backup file.
        """
        with self._lock:
            state = self._empty_state(self._current())
            self._write(state)
            self._remember(state)
        logger.info("Group %d reset to empty state", state.group_id)

    def complete_reset(self) -> None:
        """
        Delete every backing file and drop the cache.

        Irreversible: the next load starts from nothing on disk and creates
        a fresh empty group.
        """
        with self._lock:
            self._cache = None
            self.last_load_source = None
            self.last_load_errors = []
            for path in self._all_backing_files():
                try:
                    path.unlink()
                except FileNotFoundError:
                    continue
                except OSError as exc:
                    raise StorageError(f"Cannot remove {path.name}", path) from exc
                logger.info("Removed %s", path)
        logger.warning("Complete group reset performed in %s", self.data_dir)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _load(self) -> GroupState:
        errors: List[str] = []
        for strategy in self._recovery_chain:
            result = strategy()
            if result.ok:
                self.last_load_source = result.source
                self.last_load_errors = errors
                if errors:
                    logger.warning(
                        "Group state recovered from %s after: %s",
                        result.source.value,
                        "; ".join(errors),
                    )
                else:
                    logger.debug("Group state loaded from %s", result.source.value)
                return result.state
            if result.error:
                errors.append(f"{result.source.value}: {result.error}")

        raise CorruptDataError(
            "Every recovery strategy failed: " + "; ".join(errors), self.data_dir
        )

    def _load_primary(self) -> LoadResult:
        if not self.primary_path.exists():
            return LoadResult(LoadSource.PRIMARY)
        try:
            normalized = self._read_encrypted(self.primary_path)
        except CorruptDataError as exc:
            return LoadResult(LoadSource.PRIMARY, error=str(exc))
        if normalized.changed:
            self._persist_repaired(normalized, rotate=True)
        return LoadResult(LoadSource.PRIMARY, normalized.state)

    def _load_backup(self) -> LoadResult:
        if not self.backup_path.exists():
            return LoadResult(LoadSource.BACKUP)
        try:
            normalized = self._read_encrypted(self.backup_path)
            self._quarantine(self.primary_path)
            self._write(normalized.state, rotate=False)
        except (CorruptDataError, StorageError) as exc:
            return LoadResult(LoadSource.BACKUP, error=str(exc))
        logger.warning("Restored %s from %s", self.primary_path.name, self.backup_path.name)
        return LoadResult(LoadSource.BACKUP, normalized.state)

    def _load_legacy(self) -> LoadResult:
        problems: List[str] = []
        for path in (self.primary_path, self.legacy_path):
            if not path.exists():
                continue
            try:
                normalized = self._read_plaintext(path)
                self._migrate(path, normalized.state)
            except (CorruptDataError, StorageError) as exc:
                problems.append(str(exc))
                continue
            return LoadResult(LoadSource.LEGACY, normalized.state)
        return LoadResult(LoadSource.LEGACY, error="; ".join(problems) or None)

    def _load_default(self) -> LoadResult:
        state = self._empty_state(None)
        try:
            self._quarantine(self.primary_path)
            self._write(state, rotate=False)
        except StorageError as exc:
            return LoadResult(LoadSource.DEFAULT, error=str(exc))
        logger.info("Created empty group %d in %s", state.group_id, self.data_dir)
        return LoadResult(LoadSource.DEFAULT, state)

    def _read_encrypted(self, path: Path) -> _Normalized:
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise CorruptDataError(f"Cannot read {path.name}", path) from exc
        try:
            blob = EncryptedBlob.from_json(text)
            record = json.loads(decrypt(blob, self._key).decode("utf-8"))
            if not isinstance(record, dict):
                raise CorruptDataError(f"{path.name} does not hold a record", path)
            record = open_fields(record, self._key)
        except CryptographicError as exc:
            raise CorruptDataError(f"Cannot decrypt {path.name}: {exc}", path) from exc
        except ValueError as exc:
            raise CorruptDataError(f"Cannot parse {path.name}", path) from exc
        return self._normalize(record, path)

    def _read_plaintext(self, path: Path) -> _Normalized:
        try:
            record = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise CorruptDataError(f"{path.name} is not plaintext JSON", path) from exc
        if not isinstance(record, dict) or "members" not in record:
            raise CorruptDataError(f"{path.name} is not a legacy group record", path)
        return self._normalize(record, path)

    def _normalize(self, record: dict, path: Path) -> _Normalized:
        try:
            state = GroupState.from_dict(record)
        except CorruptDataError as exc:
            raise CorruptDataError(f"{path.name}: {exc}", path) from exc

        result = _Normalized(state=state)

        members = []
        for member in state.members:
            try:
                canonical = normalize_commitment(member)
            except ValidationError as exc:
                raise CorruptDataError(f"{path.name}: invalid member ({exc})", path) from exc
            if canonical != member:
                result.changed = True
            members.append(canonical)
        if len(set(members)) != len(members):
            logger.warning("%s contains duplicate members; keeping them in order", path.name)
        if len(members) > state.capacity:
            raise CorruptDataError(f"{path.name}: members exceed tree capacity", path)
        state.members = members

        expected_root = self._compute_root(state)
        if state.root != expected_root:
            logger.warning("%s has a stale root; recomputed", path.name)
            state.root = expected_root
            result.changed = True

        if state.tree_depth != self.tree_depth:
            logger.warning(
                "%s uses tree depth %d (configured %d); keeping persisted depth",
                path.name,
                state.tree_depth,
                self.tree_depth,
            )
        return result

    def _persist_repaired(self, normalized: _Normalized, rotate: bool) -> None:
        try:
            self._write(normalized.state, rotate=rotate)
        except StorageError as exc:
            logger.warning("Could not persist repaired group state: %s", exc)

    def _migrate(self, path: Path, state: GroupState) -> None:
        backup = self._sibling(path, PREMIGRATION_SUFFIX)
        try:
            shutil.copy2(path, backup)
        except OSError as exc:
            raise StorageError(f"Cannot back up {path.name} before migration", path) from exc
        logger.warning("Migrating plaintext %s (pre-migration copy: %s)", path.name, backup.name)

        if path != self.primary_path:
            self._quarantine(self.primary_path)
        self._write(state, rotate=False)

        if path != self.primary_path:
            try:
                path.unlink()
            except OSError as exc:
                raise StorageError(f"Cannot remove migrated {path.name}", path) from exc

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def _compute_root(self, state: GroupState) -> str:
        return str(self._root_function(state.members, state.tree_depth))

    def _empty_state(self, current: Optional[GroupState]) -> GroupState:
        state = GroupState(
            group_id=current.group_id if current else self.group_id,
            tree_depth=current.tree_depth if current else self.tree_depth,
            members=[],
        )
        state.root = self._compute_root(state)
        return state

    def _serialize(self, state: GroupState) -> str:
        record = dict(state.to_dict(), version=STATE_FORMAT_VERSION)
        try:
            sealed = seal_fields(record, self.sealed_fields, self._key, self.algorithm)
            plaintext = json.dumps(sealed, sort_keys=True).encode("utf-8")
            return encrypt(plaintext, self._key, self.algorithm).to_json()
        except CryptographicError as exc:
            raise StorageError(f"Cannot encrypt group state: {exc}", self.primary_path) from exc

    def _write(self, state: GroupState, rotate: bool = True) -> None:
        """
        Persist one revision.

        With ``rotate`` the current primary is first copied to the backup,
        so a failed write always leaves one loadable file.
        """
        payload = self._serialize(state)
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            if rotate and self.primary_path.exists():
                _atomic_copy(self.primary_path, self.backup_path)
            _atomic_write_text(self.primary_path, payload)
        except OSError as exc:
            raise StorageError(f"Cannot write {self.primary_path.name}", self.primary_path) from exc

    def _sibling(self, path: Path, suffix: str) -> Path:
        stamp = int(self._wall_clock() * 1000)
        return path.with_name(f"{path.name}{suffix}{stamp}")

    def _quarantine(self, path: Path) -> None:
        if not path.exists():
            return
        target = self._sibling(path, QUARANTINE_SUFFIX)
        try:
            os.replace(path, target)
        except OSError as exc:
            raise StorageError(f"Cannot move aside {path.name}", path) from exc
        logger.warning("Moved unreadable %s to %s", path.name, target.name)

    def _all_backing_files(self) -> List[Path]:
        paths = [self.primary_path, self.backup_path, self.legacy_path]
        if self.data_dir.is_dir():
            names = (PRIMARY_FILE_NAME, BACKUP_FILE_NAME, LEGACY_FILE_NAME)
            for path in sorted(self.data_dir.iterdir()):
                if path in paths or not path.name.startswith(names):
                    continue
                if any(
                    marker in path.name
                    for marker in (PREMIGRATION_SUFFIX, QUARANTINE_SUFFIX, ".tmp")
                ):
                    paths.append(path)
        return paths


def _atomic_write_text(path: Path, text: str) -> None:
    tmp = path.with_name(path.name + ".tmp")
    with open(tmp, "w", encoding="utf-8") as fh:
        fh.write(text)
        fh.flush()
        os.fsync(fh.fileno())
    os.replace(tmp, path)


def _atomic_copy(src: Path, dst: Path) -> None:
    tmp = dst.with_name(dst.name + ".tmp")
    shutil.copyfile(src, tmp)
    os.replace(tmp, dst)
