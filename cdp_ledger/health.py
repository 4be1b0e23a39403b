"""
health.py - Health factor computation

    adjusted_collateral = collateral_usd * threshold // precision
    health_factor       = adjusted_collateral * PRECISION // debt

A health factor of PRECISION means the position sits exactly at the
minimum. Positions without debt report MAX_HEALTH_FACTOR instead of
dividing by zero.
"""

from __future__ import annotations

from .config import EngineConfig
from .core import (
    UserId, PositionView,
    PRECISION, MAX_HEALTH_FACTOR,
    InsufficientCollateralization,
)
from .registry import CollateralRegistry
from .valuation import total_collateral_usd


_DEFAULT_CONFIG = EngineConfig()


def calculate_health_factor(
    total_debt: int,
    collateral_value_usd: int,
    config: EngineConfig = _DEFAULT_CONFIG,
) -> int:
    """
    Health factor (wad) from a debt and a raw collateral value.

    PURE FUNCTION - All inputs explicit.

    Example:
        calculate_health_factor(to_wad(500), to_wad(1000))  # == PRECISION
    """
    if total_debt < 0 or collateral_value_usd < 0:
        raise ValueError("debt and collateral value cannot be negative")
    if total_debt == 0:
        return MAX_HEALTH_FACTOR
    adjusted = collateral_value_usd * config.liquidation_threshold // config.liquidation_precision
    return adjusted * PRECISION // total_debt


def health_factor(
    view: PositionView,
    registry: CollateralRegistry,
    user: UserId,
    config: EngineConfig = _DEFAULT_CONFIG,
) -> int:
    """Health factor of `user` as recorded in `view`."""
    debt = view.get_debt(user)
    if debt == 0:
        return MAX_HEALTH_FACTOR
    return calculate_health_factor(debt, total_collateral_usd(registry, view, user), config)


def is_healthy(
    view: PositionView,
    registry: CollateralRegistry,
    user: UserId,
    config: EngineConfig = _DEFAULT_CONFIG,
) -> bool:
    return health_factor(view, registry, user, config) >= config.min_health_factor


def assert_healthy(
    view: PositionView,
    registry: CollateralRegistry,
    user: UserId,
    config: EngineConfig = _DEFAULT_CONFIG,
) -> int:
    """
    Return the user's health factor, raising if it is below the minimum.

    Raises:
        InsufficientCollateralization: If health factor < min_health_factor
    """
    hf = health_factor(view, registry, user, config)
    if hf < config.min_health_factor:
        raise InsufficientCollateralization(user, hf)
    return hf
