"""Shared pytest fixtures."""

import pytest

from zk_identity_vault.identity_protocol import feature_flags
from zk_identity_vault.identity_protocol.codec import generate_key

_ENV_VARS = (
    "APP_ENV",
    "ENCRYPTION_KEY",
    "APP_SECRET",
    "AUTH_SECRET",
    "IDENTITY_DERIVATION_STRATEGY",
    "IDENTITY_CONTEXT_LABEL",
    "AUTH_ISSUER_BASE_URL",
    "AUTH_CLIENT_ID",
    "GROUP_DATA_DIR",
    "GROUP_ID",
    "GROUP_TREE_DEPTH",
    "GROUP_CACHE_TTL",
    "ENCRYPTION_ALGORITHM",
)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    feature_flags.set_derivation_strategy(None)
    yield
    feature_flags.set_derivation_strategy(None)


@pytest.fixture
def key() -> bytes:
    return generate_key()


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / "data"
