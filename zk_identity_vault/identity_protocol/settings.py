"""
Runtime settings resolved from an optional YAML file and the environment.

Environment variables win over the file. Secrets should come from the
environment; the file is meant for the non-secret knobs (data directory,
depth, strategy), although every key is accepted in both places.

Example ``vault.yaml``::

    app_env: production
    group_data_dir: /var/lib/zk-identity-vault
    group_tree_depth: 20
    identity_derivation_strategy: SubjectOnly
    identity_context_label: identity-v3
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml

from .codec import generate_key, parse_hex_key
from .config import (
    DEFAULT_ALGORITHM,
    DEFAULT_CACHE_TTL_SECONDS,
    DEFAULT_CONTEXT_LABEL,
    DEFAULT_DATA_DIR,
    DEFAULT_GROUP_ID,
    DEFAULT_TREE_DEPTH,
    MAX_TREE_DEPTH,
    MIN_TREE_DEPTH,
    SUPPORTED_ALGORITHMS,
)
from .exceptions import ConfigurationError
from .feature_flags import get_derivation_strategy
from .types import DerivationStrategy

logger = logging.getLogger(__name__)

PRODUCTION = "production"
DEVELOPMENT = "development"

# Setting name -> environment variables, first match wins.
_ENV_NAMES: Dict[str, tuple] = {
    "app_env": ("APP_ENV",),
    "encryption_key": ("ENCRYPTION_KEY",),
    "app_secret": ("APP_SECRET", "AUTH_SECRET"),
    "identity_derivation_strategy": ("IDENTITY_DERIVATION_STRATEGY",),
    "identity_context_label": ("IDENTITY_CONTEXT_LABEL",),
    "auth_issuer_base_url": ("AUTH_ISSUER_BASE_URL",),
    "auth_client_id": ("AUTH_CLIENT_ID",),
    "group_data_dir": ("GROUP_DATA_DIR",),
    "group_id": ("GROUP_ID",),
    "group_tree_depth": ("GROUP_TREE_DEPTH",),
    "group_cache_ttl": ("GROUP_CACHE_TTL",),
    "encryption_algorithm": ("ENCRYPTION_ALGORITHM",),
}


@dataclass(frozen=True)
class Settings:
    """Validated runtime configuration. ``repr`` never shows secrets."""

    encryption_key: bytes = field(repr=False)
    app_secret: str = field(repr=False)
    strategy: DerivationStrategy = DerivationStrategy.SUBJECT_ONLY
    context_label: str = DEFAULT_CONTEXT_LABEL
    issuer: str = ""
    client_id: str = ""
    data_dir: Path = Path(DEFAULT_DATA_DIR)
    group_id: int = DEFAULT_GROUP_ID
    tree_depth: int = DEFAULT_TREE_DEPTH
    cache_ttl: float = DEFAULT_CACHE_TTL_SECONDS
    algorithm: str = DEFAULT_ALGORITHM
    app_env: str = PRODUCTION
    ephemeral_key: bool = False

    @property
    def is_production(self) -> bool:
        return self.app_env == PRODUCTION

    def describe(self) -> Dict[str, Any]:
        """Non-secret summary for status output."""
        return {
            "appEnv": self.app_env,
            "hasEncryptionKey": not self.ephemeral_key,
            "ephemeralKey": self.ephemeral_key,
            "algorithm": self.algorithm,
            "strategy": self.strategy.value,
            "contextLabel": self.context_label,
            "issuerConfigured": bool(self.issuer),
            "clientIdConfigured": bool(self.client_id),
            "dataDir": str(self.data_dir),
            "groupId": self.group_id,
            "treeDepth": self.tree_depth,
            "cacheTtlSeconds": self.cache_ttl,
        }


def load_config_file(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Read a YAML settings file.

    Raises:
        ConfigurationError: If the file is unreadable or not a mapping
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except OSError as exc:
        raise ConfigurationError(f"Cannot read config file {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Config file {path} is not valid YAML") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    unknown = set(data) - set(_ENV_NAMES)
    if unknown:
        raise ConfigurationError(f"Unknown config keys in {path}: {sorted(unknown)}")
    return data


def _from_env(env: Mapping[str, str], name: str) -> Optional[str]:
    for var in _ENV_NAMES[name]:
        value = env.get(var)
        if value not in (None, ""):
            return value
    return None


def _as_int(name: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be an integer") from exc


def _as_float(name: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be a number") from exc


def load_settings(
    env: Optional[Mapping[str, str]] = None,
    config_file: Optional[Union[str, Path]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> Settings:
    """
    Resolve settings: overrides > environment > config file > defaults.

    In production a missing or malformed ENCRYPTION_KEY is fatal. In
    development a missing key is replaced by an ephemeral random key and a
    warning is logged: data written with it is unreadable after restart.

    Raises:
        ConfigurationError: On any missing or invalid required setting
    """
    env = os.environ if env is None else env
    file_values = load_config_file(config_file) if config_file else {}
    overrides = {k: v for k, v in (overrides or {}).items() if v is not None}

    def pick(name: str) -> Any:
        if name in overrides:
            return overrides[name]
        env_value = _from_env(env, name)
        if env_value is not None:
            return env_value
        return file_values.get(name)

    app_env = str(pick("app_env") or PRODUCTION).strip().lower()
    if app_env not in (PRODUCTION, DEVELOPMENT):
        raise ConfigurationError(f"APP_ENV must be {PRODUCTION!r} or {DEVELOPMENT!r}")

    raw_key = pick("encryption_key")
    ephemeral = False
    if raw_key:
        encryption_key = parse_hex_key(str(raw_key))
    elif app_env == DEVELOPMENT:
        logger.warning(
            "ENCRYPTION_KEY not set; using an ephemeral key. Encrypted group "
            "data will be unreadable after restart. Never do this in production."
        )
        encryption_key = generate_key()
        ephemeral = True
    else:
        raise ConfigurationError("ENCRYPTION_KEY is required in production")

    app_secret = pick("app_secret")
    if not app_secret:
        raise ConfigurationError("APP_SECRET (or AUTH_SECRET) is required")

    # Configured values win; the in-process flag only fills the gap.
    try:
        strategy = get_derivation_strategy(prefer=pick("identity_derivation_strategy"))
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc

    context_label = str(pick("identity_context_label") or DEFAULT_CONTEXT_LABEL).strip()
    if not context_label:
        raise ConfigurationError("IDENTITY_CONTEXT_LABEL cannot be empty")

    depth_value = pick("group_tree_depth")
    tree_depth = _as_int(
        "GROUP_TREE_DEPTH", DEFAULT_TREE_DEPTH if depth_value is None else depth_value
    )
    if not MIN_TREE_DEPTH <= tree_depth <= MAX_TREE_DEPTH:
        raise ConfigurationError(
            f"GROUP_TREE_DEPTH must be in [{MIN_TREE_DEPTH}, {MAX_TREE_DEPTH}]"
        )

    group_value = pick("group_id")
    group_id = _as_int("GROUP_ID", DEFAULT_GROUP_ID if group_value is None else group_value)
    if group_id < 0:
        raise ConfigurationError("GROUP_ID must be >= 0")
    ttl_value = pick("group_cache_ttl")
    cache_ttl = _as_float(
        "GROUP_CACHE_TTL", DEFAULT_CACHE_TTL_SECONDS if ttl_value is None else ttl_value
    )
    if cache_ttl < 0:
        raise ConfigurationError("GROUP_CACHE_TTL must be >= 0")

    algorithm = str(pick("encryption_algorithm") or DEFAULT_ALGORITHM)
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ConfigurationError(
            f"ENCRYPTION_ALGORITHM must be one of {', '.join(SUPPORTED_ALGORITHMS)}"
        )

    return Settings(
        encryption_key=encryption_key,
        app_secret=str(app_secret),
        strategy=strategy,
        context_label=context_label,
        issuer=str(pick("auth_issuer_base_url") or ""),
        client_id=str(pick("auth_client_id") or ""),
        data_dir=Path(pick("group_data_dir") or DEFAULT_DATA_DIR),
        group_id=group_id,
        tree_depth=tree_depth,
        cache_ttl=cache_ttl,
        algorithm=algorithm,
        app_env=app_env,
        ephemeral_key=ephemeral,
    )
