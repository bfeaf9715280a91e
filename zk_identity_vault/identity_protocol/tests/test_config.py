"""
Unit tests for static protocol configuration.
"""

from zk_identity_vault.identity_protocol import config


def test_validate_config_passes():
    assert config.validate_config() is True


def test_field_modulus_size():
    assert config.FIELD_MODULUS.bit_length() == config.FIELD_BITS == 254


def test_domain_separators_are_unique_and_prefixed():
    separators = list(config.DOMAIN_SEPARATORS.values())
    assert len(separators) == len(set(separators))
    assert all(s.startswith(config.DOMAIN_SEPARATOR_PREFIX) for s in separators)


def test_nonce_sizes_per_algorithm():
    assert config.NONCE_SIZE_BYTES[config.ALGORITHM_AES_GCM] == 12
    assert config.NONCE_SIZE_BYTES[config.ALGORITHM_XCHACHA] == 24
    assert config.DEFAULT_ALGORITHM in config.SUPPORTED_ALGORITHMS


def test_group_defaults():
    assert config.DEFAULT_GROUP_ID == 1
    assert config.DEFAULT_TREE_DEPTH == 20
    assert config.DEFAULT_CACHE_TTL_SECONDS == 300
    assert config.EMPTY_LEAF == 0


def test_storage_file_names_are_distinct():
    names = {
        config.PRIMARY_FILE_NAME,
        config.BACKUP_FILE_NAME,
        config.LEGACY_FILE_NAME,
        config.AUDIT_FILE_NAME,
    }
    assert len(names) == 4
