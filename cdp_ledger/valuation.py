"""
valuation.py - USD valuation of collateral

Pure functions converting asset amounts to USD and back using the oracle
registered for each asset. All results are wad integers and every division
floors, so a valuation never exceeds the true mathematical value.

    usd   = price18 * amount // PRECISION
    units = usd * PRECISION // price18
"""

from __future__ import annotations
from typing import Mapping

from .core import (
    AssetId, UserId, PriceOracle, PositionView,
    PRECISION, WAD_DECIMALS,
    EngineError, OracleDataError,
)
from .registry import CollateralRegistry


# Feeds with more decimals than this are rejected as malformed.
MAX_FEED_DECIMALS = 36


def normalized_price(oracle: PriceOracle, asset: AssetId) -> int:
    """
    Read an oracle and return the asset's USD price as a wad.

    Raises:
        OracleDataError: If the oracle call fails, or the reading is not an
            int, is zero or negative, or carries an out-of-range decimals field
    """
    try:
        reading = oracle.latest_price(asset)
    except EngineError:
        raise
    except Exception as exc:
        raise OracleDataError(f"{asset}: oracle call failed: {exc}") from exc
    price = getattr(reading, 'price', None)
    decimals = getattr(reading, 'decimals', None)

    if isinstance(price, bool) or not isinstance(price, int):
        raise OracleDataError(f"{asset}: malformed price {price!r}")
    if price <= 0:
        raise OracleDataError(f"{asset}: non-positive price {price}")
    if isinstance(decimals, bool) or not isinstance(decimals, int) \
            or not 0 <= decimals <= MAX_FEED_DECIMALS:
        raise OracleDataError(f"{asset}: invalid feed decimals {decimals!r}")

    if decimals <= WAD_DECIMALS:
        scaled = price * 10 ** (WAD_DECIMALS - decimals)
    else:
        scaled = price // 10 ** (decimals - WAD_DECIMALS)
    if scaled <= 0:
        raise OracleDataError(f"{asset}: price {price} rounds to zero")
    return scaled


def _require_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise TypeError(f"amount must be int, got {type(amount).__name__}")
    if amount < 0:
        raise ValueError(f"amount cannot be negative, got {amount}")


def usd_value(registry: CollateralRegistry, asset: AssetId, amount: int) -> int:
    """
    USD value (wad) of `amount` units of `asset`, floored.

    Raises:
        UnsupportedAssetError: If the asset is not registered
        OracleDataError: If the oracle reading is unusable
    """
    _require_amount(amount)
    price = normalized_price(registry.oracle_for(asset), asset)
    return price * amount // PRECISION


def usd_to_asset_amount(registry: CollateralRegistry, asset: AssetId, usd_amount: int) -> int:
    """
    Amount of `asset` worth `usd_amount` (wad), floored.

    Used to translate debt relief into collateral during liquidation.
    """
    _require_amount(usd_amount)
    price = normalized_price(registry.oracle_for(asset), asset)
    return usd_amount * PRECISION // price


def collateral_usd_breakdown(
    registry: CollateralRegistry, view: PositionView, user: UserId,
) -> Mapping[AssetId, int]:
    """USD value of each registered asset held by `user`, in registry order."""
    return {
        asset: usd_value(registry, asset, view.get_collateral(user, asset))
        for asset in registry.asset_ids
    }


def total_collateral_usd(registry: CollateralRegistry, view: PositionView, user: UserId) -> int:
    """
    Total USD value of a user's collateral across every registered asset.

    Assets the user holds none of still consult their oracle and contribute 0.
    Summation follows the registry's order.
    """
    total = 0
    for asset in registry.asset_ids:
        total += usd_value(registry, asset, view.get_collateral(user, asset))
    return total
