"""
Unit tests for the encrypted membership store.

Covers the membership lifecycle, the recovery chain (backup, legacy
plaintext, default), cache freshness and complete reset.
"""

import json
import threading

import pytest

from zk_identity_vault.identity_protocol.codec import encrypt, generate_key
from zk_identity_vault.identity_protocol.config import ALGORITHM_XCHACHA
from zk_identity_vault.identity_protocol.exceptions import (
    ConfigurationError,
    CorruptDataError,
    ValidationError,
)
from zk_identity_vault.identity_protocol.merkle import compute_root, empty_root
from zk_identity_vault.identity_protocol.store import (
    CacheStatus,
    LoadSource,
    MembershipStore,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def root_of(members, depth=20):
    return str(compute_root(members, depth))


def tamper_tag(path):
    data = json.loads(path.read_text())
    tag = data["authTag"]
    data["authTag"] = ("0" if tag[0] != "0" else "1") + tag[1:]
    path.write_text(json.dumps(data))


def write_encrypted_record(path, key, record):
    path.parent.mkdir(parents=True, exist_ok=True)
    blob = encrypt(json.dumps(record).encode("utf-8"), key)
    path.write_text(blob.to_json())


@pytest.fixture
def store(data_dir, key):
    return MembershipStore(data_dir, key)


class TestMembership:
    """Membership lifecycle on a fresh directory."""

    def test_concrete_scenario(self, store):
        r0 = store.get_merkle_root()
        assert r0 == str(empty_root(20))
        assert store.member_count() == 0
        assert store.last_load_source is LoadSource.DEFAULT
        assert store.primary_path.exists()

        assert store.add_member("42") is True
        r1 = store.get_merkle_root()
        assert r1 == root_of(["42"])

        assert store.add_member("42") is False
        assert store.get_merkle_root() == r1
        assert store.member_count() == 1

        assert store.add_member("7") is True
        r2 = store.get_merkle_root()
        assert r2 == root_of(["42", "7"])
        assert r2 != r1
        assert store.get_state().members == ["42", "7"]

        store.reset()
        assert store.get_merkle_root() == r0
        assert store.get_state().members == []

    def test_duplicates_compared_by_value(self, store):
        assert store.add_member(" 042 ") is True
        assert store.add_member(42) is False
        assert store.add_member("42") is False
        assert store.get_state().members == ["42"]
        assert store.is_member("0042") is True
        assert store.is_member("43") is False

    @pytest.mark.parametrize("bad", ["", "abc", "0", "-1", "1" * 101])
    def test_invalid_commitment_does_not_write(self, store, bad):
        store.add_member("5")
        before = store.primary_path.read_bytes()
        with pytest.raises(ValidationError):
            store.add_member(bad)
        assert store.primary_path.read_bytes() == before
        assert store.get_state().members == ["5"]

    def test_group_full(self, data_dir, key):
        store = MembershipStore(data_dir, key, tree_depth=1)
        store.add_member("1")
        store.add_member("2")
        with pytest.raises(ValidationError, match="full"):
            store.add_member("3")
        assert store.member_count() == 2

    def test_state_survives_restart(self, store, data_dir, key):
        store.add_member("42")
        store.add_member("7")

        reopened = MembershipStore(data_dir, key)
        assert reopened.get_state().members == ["42", "7"]
        assert reopened.get_merkle_root() == root_of(["42", "7"])
        assert reopened.last_load_source is LoadSource.PRIMARY
        assert reopened.recovered is False

    def test_file_is_encrypted(self, store):
        store.add_member("42")
        data = json.loads(store.primary_path.read_text())
        assert set(data) == {"ciphertext", "nonce", "authTag", "algorithm"}
        assert "members" not in store.primary_path.read_text()

    def test_get_state_returns_copy(self, store):
        store.add_member("42")
        state = store.get_state()
        state.members.append("99")
        assert store.get_state().members == ["42"]

    def test_public_state(self, store):
        store.add_member("42")
        assert store.get_public_state() == {
            "groupId": 1,
            "treeDepth": 20,
            "members": ["42"],
        }

    def test_concurrent_adds(self, store):
        commitments = [str(n) for n in range(1, 17)]
        threads = [
            threading.Thread(target=store.add_member, args=(c,)) for c in commitments
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        state = store.get_state()
        assert sorted(state.members, key=int) == commitments
        assert state.root == root_of(state.members)

    def test_xchacha_written_state_readable_by_default_store(self, data_dir, key):
        writer = MembershipStore(data_dir, key, algorithm=ALGORITHM_XCHACHA)
        writer.add_member("42")
        assert json.loads(writer.primary_path.read_text())["algorithm"] == ALGORITHM_XCHACHA

        reader = MembershipStore(data_dir, key)
        assert reader.get_state().members == ["42"]

    def test_persisted_depth_wins(self, store, data_dir, key):
        store.add_member("42")
        reopened = MembershipStore(data_dir, key, tree_depth=10)
        assert reopened.get_state().tree_depth == 20


class TestRecovery:
    """The recovery chain never raises while any fallback works."""

    def test_backup_holds_previous_revision(self, store, data_dir, key):
        store.add_member("42")
        store.add_member("7")
        store.primary_path.unlink()

        reopened = MembershipStore(data_dir, key)
        assert reopened.get_state().members == ["42"]
        assert reopened.last_load_source is LoadSource.BACKUP
        assert reopened.primary_path.exists()

    def test_tampered_primary_recovers_from_backup(self, store, data_dir, key):
        store.add_member("42")
        store.add_member("7")
        tamper_tag(store.primary_path)

        reopened = MembershipStore(data_dir, key)
        state = reopened.get_state()
        assert state.members == ["42"]
        assert state.root == root_of(["42"])
        assert reopened.last_load_source is LoadSource.BACKUP
        assert reopened.recovered is True
        assert list(data_dir.glob("group.encrypted.corrupt-*"))

        again = MembershipStore(data_dir, key)
        assert again.get_state().members == ["42"]
        assert again.last_load_source is LoadSource.PRIMARY

    def test_tampered_primary_without_backup_starts_empty(self, store, data_dir, key):
        store.get_state()
        tamper_tag(store.primary_path)

        reopened = MembershipStore(data_dir, key)
        assert reopened.get_merkle_root() == str(empty_root(20))
        assert reopened.last_load_source is LoadSource.DEFAULT
        assert reopened.recovered is True
        assert list(data_dir.glob("group.encrypted.corrupt-*"))

    def test_both_files_corrupt_starts_empty(self, store, data_dir, key):
        store.add_member("42")
        store.add_member("7")
        tamper_tag(store.primary_path)
        tamper_tag(store.backup_path)

        reopened = MembershipStore(data_dir, key)
        assert reopened.get_state().members == []
        assert reopened.last_load_source is LoadSource.DEFAULT

    def test_wrong_key_does_not_raise(self, store, data_dir):
        store.add_member("42")
        other = MembershipStore(data_dir, generate_key())
        assert other.member_count() == 0
        assert other.recovered is True

    def test_stale_root_is_repaired(self, data_dir, key):
        write_encrypted_record(
            data_dir / "group.encrypted",
            key,
            {"id": 1, "treeDepth": 20, "members": ["42", "007"], "root": "123"},
        )
        store = MembershipStore(data_dir, key)
        state = store.get_state()
        assert state.members == ["42", "7"]
        assert state.root == root_of(["42", "7"])
        assert store.last_load_source is LoadSource.PRIMARY

        reopened = MembershipStore(data_dir, key)
        assert reopened.get_merkle_root() == root_of(["42", "7"])

    def test_every_strategy_failing_raises(self, tmp_path, key):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file")
        store = MembershipStore(blocker, key)
        with pytest.raises(CorruptDataError, match="Every recovery strategy failed"):
            store.get_state()


class TestLegacyMigration:
    """Plaintext state is migrated to the encrypted format on read."""

    def test_migrates_group_json(self, data_dir, key):
        data_dir.mkdir(parents=True)
        legacy = data_dir / "group.json"
        legacy.write_text(
            json.dumps({"id": 1, "treeDepth": 20, "members": ["5", "0012"], "root": None})
        )

        store = MembershipStore(data_dir, key)
        state = store.get_state()
        assert state.members == ["5", "12"]
        assert state.root == root_of(["5", "12"])
        assert store.last_load_source is LoadSource.LEGACY
        assert not legacy.exists()
        assert list(data_dir.glob("group.json.premigration-*"))
        assert "members" not in store.primary_path.read_text()

        reopened = MembershipStore(data_dir, key)
        assert reopened.get_state().members == ["5", "12"]
        assert reopened.last_load_source is LoadSource.PRIMARY

    def test_migrates_plaintext_primary(self, data_dir, key):
        data_dir.mkdir(parents=True)
        primary = data_dir / "group.encrypted"
        primary.write_text(json.dumps({"id": 3, "treeDepth": 8, "members": [42]}))

        store = MembershipStore(data_dir, key)
        state = store.get_state()
        assert state.group_id == 3
        assert state.tree_depth == 8
        assert state.members == ["42"]
        assert store.last_load_source is LoadSource.LEGACY
        assert list(data_dir.glob("group.encrypted.premigration-*"))
        assert set(json.loads(primary.read_text())) == {
            "ciphertext",
            "nonce",
            "authTag",
            "algorithm",
        }

    def test_invalid_legacy_members_fall_back_to_default(self, data_dir, key):
        data_dir.mkdir(parents=True)
        (data_dir / "group.json").write_text(
            json.dumps({"id": 1, "treeDepth": 20, "members": ["abc"]})
        )
        store = MembershipStore(data_dir, key)
        assert store.member_count() == 0
        assert store.last_load_source is LoadSource.DEFAULT


class TestCache:
    """Cache freshness with an injected clock."""

    def test_status_transitions(self, data_dir, key):
        clock = FakeClock()
        store = MembershipStore(data_dir, key, cache_ttl=10, clock=clock)
        assert store.cache_status is CacheStatus.UNINITIALIZED
        store.get_state()
        assert store.cache_status is CacheStatus.FRESH
        clock.advance(10)
        assert store.cache_status is CacheStatus.STALE

    def test_serves_cache_until_ttl_expires(self, data_dir, key):
        clock = FakeClock()
        reader = MembershipStore(data_dir, key, cache_ttl=10, clock=clock)
        writer = MembershipStore(data_dir, key)

        assert reader.member_count() == 0
        writer.add_member("42")

        assert reader.member_count() == 0
        assert reader.last_load_source is LoadSource.CACHE

        clock.advance(11)
        assert reader.member_count() == 1
        assert reader.last_load_source is LoadSource.PRIMARY

    def test_zero_ttl_always_reloads(self, data_dir, key):
        reader = MembershipStore(data_dir, key, cache_ttl=0)
        writer = MembershipStore(data_dir, key)
        reader.get_state()
        writer.add_member("42")
        assert reader.member_count() == 1


class TestReset:
    """Reset empties the group in place."""

    def test_restarted_store_keeps_persisted_id_and_depth(self, data_dir, key):
        MembershipStore(data_dir, key, group_id=7, tree_depth=20).add_member("42")

        restarted = MembershipStore(data_dir, key, group_id=1, tree_depth=10)
        restarted.reset()

        state = MembershipStore(data_dir, key).get_state()
        assert (state.group_id, state.tree_depth) == (7, 20)
        assert state.members == []
        assert state.root == str(empty_root(20))

    def test_corrupt_primary_never_overwrites_backup(self, store, data_dir, key):
        store.add_member("42")
        store.add_member("7")
        store.primary_path.write_bytes(b"garbage")

        MembershipStore(data_dir, key).reset()

        assert store.backup_path.read_bytes() != b"garbage"
        assert list(data_dir.glob("group.encrypted.corrupt-*"))
        store.primary_path.unlink()
        from_backup = MembershipStore(data_dir, key)
        assert from_backup.get_state().members == ["42"]
        assert from_backup.last_load_source is LoadSource.BACKUP


class TestCompleteReset:
    """Complete reset removes every backing file."""

    def test_removes_all_files(self, store, data_dir, key):
        store.add_member("42")
        store.add_member("7")
        tamper_tag(store.primary_path)
        MembershipStore(data_dir, key).get_state()
        (data_dir / "group.json.premigration-1").write_text("{}")
        (data_dir / "group.json").write_text("{}")

        store.complete_reset()
        assert store.cache_status is CacheStatus.UNINITIALIZED
        assert list(data_dir.glob("group*")) == []

        assert store.get_state().members == []
        assert store.last_load_source is LoadSource.DEFAULT

    def test_leaves_unrelated_files(self, store, data_dir):
        store.add_member("42")
        (data_dir / "identity-audit.jsonl").write_text("")
        store.complete_reset()
        assert (data_dir / "identity-audit.jsonl").exists()

    def test_on_missing_directory(self, store):
        store.complete_reset()
        assert store.member_count() == 0


class TestConfiguration:
    """Constructor validation."""

    def test_bad_key(self, data_dir):
        with pytest.raises(ConfigurationError):
            MembershipStore(data_dir, b"short")

    @pytest.mark.parametrize("depth", [0, 33])
    def test_bad_depth(self, data_dir, key, depth):
        with pytest.raises(ConfigurationError):
            MembershipStore(data_dir, key, tree_depth=depth)

    def test_negative_ttl(self, data_dir, key):
        with pytest.raises(ConfigurationError):
            MembershipStore(data_dir, key, cache_ttl=-1)

    def test_core_fields_cannot_be_sealed(self, data_dir, key):
        with pytest.raises(ConfigurationError):
            MembershipStore(data_dir, key, sealed_fields=("members",))

    def test_custom_root_function(self, data_dir, key):
        store = MembershipStore(
            data_dir, key, root_function=lambda members, depth: len(members)
        )
        store.add_member("42")
        assert store.get_merkle_root() == "1"
