"""
Feature flag for selecting the identity derivation strategy.

WARNING: changing the strategy changes every derived identity. Existing
group members will no longer match their principals' new commitments.
"""

from __future__ import annotations

import os
from typing import Final

from .types import DerivationStrategy

_VALID_STRATEGIES: Final[tuple[str, ...]] = tuple(s.value for s in DerivationStrategy)
_DEFAULT_STRATEGY: Final[DerivationStrategy] = DerivationStrategy.SUBJECT_ONLY
_ENV_VAR_NAME: Final[str] = "IDENTITY_DERIVATION_STRATEGY"

_strategy_override: DerivationStrategy | None = None


def _format_valid_options() -> str:
    return ", ".join(_VALID_STRATEGIES)


def _normalize_strategy(
    value: str | DerivationStrategy | None,
) -> DerivationStrategy | None:
    if value is None:
        return None

    if isinstance(value, DerivationStrategy):
        return value

    if not isinstance(value, str):
        raise ValueError(
            f"Invalid derivation strategy: {value!r}. "
            f"Valid options: {_format_valid_options()}"
        )

    if value.strip() == "":
        return None

    wanted = value.strip().replace("_", "").replace("-", "").lower()
    for strategy in DerivationStrategy:
        if strategy.value.lower() == wanted:
            return strategy

    raise ValueError(
        f"Invalid derivation strategy: {value!r}. "
        f"Valid options: {_format_valid_options()}"
    )


def get_derivation_strategy(
    prefer: str | DerivationStrategy | None = None,
) -> DerivationStrategy:
    """
    Resolve derivation strategy in precedence order.

    Args:
        prefer: Optional preferred strategy (e.g. from a config file).

    Returns:
        DerivationStrategy

    Raises:
        ValueError: If a provided strategy value is invalid.
    """
    preferred = _normalize_strategy(prefer)
    if preferred is not None:
        return preferred

    if _strategy_override is not None:
        return _strategy_override

    env_strategy = _normalize_strategy(os.getenv(_ENV_VAR_NAME))
    if env_strategy is not None:
        return env_strategy

    return _DEFAULT_STRATEGY


def set_derivation_strategy(value: str | DerivationStrategy | None) -> None:
    """
    Set in-memory strategy override (testing only).

    Args:
        value: Strategy to force, or None to clear the override.

    Raises:
        ValueError: If the value is invalid.
    """
    global _strategy_override
    _strategy_override = _normalize_strategy(value)
