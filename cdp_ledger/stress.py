"""
stress.py - Price-shock analytics over engine positions

Read-only, float-valued what-if analysis of committed positions:

- collateral_usd_vector: per-asset USD value of one user's collateral
- health_factors_under_shocks: health factor under price multipliers
- liquidatable_counts: positions below the minimum, per scenario
- liquidation_price: exact price at which a position hits the minimum

Shocks are price multipliers (1.0 = current price, 0.7 = a 30% drop),
either one per scenario applied to every asset (1-D) or one per scenario
and asset (2-D, columns in registry order). Health factors come back as
floats where 1.0 is the minimum; positions without debt report inf.

Everything reads one committed snapshot, so results never mix states.
"""

from decimal import Decimal, localcontext
from typing import Dict, Optional

import numpy as np

from .core import AssetId, UserId, PRECISION, from_wad
from .ledger import LedgerSnapshot
from .valuation import normalized_price, usd_value


def _collateral_usd(engine, snap: LedgerSnapshot, user: UserId) -> np.ndarray:
    registry = engine.registry
    return np.array(
        [usd_value(registry, asset, snap.get_collateral(user, asset)) / PRECISION
         for asset in registry.asset_ids],
        dtype=float,
    )


def _scenario_collateral(values: np.ndarray, shocks: np.ndarray) -> np.ndarray:
    """Shocked total collateral USD for each scenario."""
    if shocks.ndim == 1:
        return shocks * values.sum()
    if shocks.ndim == 2:
        if shocks.shape[1] != values.shape[0]:
            raise ValueError(
                f"shock matrix has {shocks.shape[1]} columns, "
                f"registry has {values.shape[0]} assets"
            )
        return shocks @ values
    raise ValueError(f"shocks must be 1-D or 2-D, got {shocks.ndim}-D")


def _as_shocks(shocks) -> np.ndarray:
    # a scalar is one uniform scenario
    arr = np.atleast_1d(np.asarray(shocks, dtype=float))
    if np.any(arr < 0) or not np.all(np.isfinite(arr)):
        raise ValueError("shocks must be finite and non-negative")
    return arr


def _health_factors(engine, snap: LedgerSnapshot, user: UserId, shocks: np.ndarray) -> np.ndarray:
    n_scenarios = shocks.shape[0]
    debt = snap.get_debt(user)
    if debt == 0:
        return np.full(n_scenarios, np.inf)

    cfg = engine.config
    collateral = _scenario_collateral(_collateral_usd(engine, snap, user), shocks)
    adjusted = collateral * cfg.liquidation_threshold / cfg.liquidation_precision
    return adjusted / (debt / PRECISION)


def collateral_usd_vector(engine, user: UserId) -> np.ndarray:
    """USD value (float) of each registered asset held by user, in registry order."""
    return _collateral_usd(engine, engine.snapshot(), user)


def health_factors_under_shocks(engine, user: UserId, shocks) -> np.ndarray:
    """
    Health factor of `user` under each price scenario.

    Args:
        engine: StableEngine to read from
        user: Position owner
        shocks: 1-D array of uniform multipliers, or 2-D (scenarios x assets)

    Returns:
        Float array with one health factor per scenario (1.0 = minimum)

    Example:
        health_factors_under_shocks(engine, "alice", [1.0, 0.8, 0.5])
        # array([1. , 0.8, 0.5]) for a position sitting exactly at the minimum
    """
    shocks = _as_shocks(shocks)
    return _health_factors(engine, engine.snapshot(), user, shocks)


def liquidatable_counts(engine, shocks) -> np.ndarray:
    """Number of positions below the minimum health factor in each scenario."""
    shocks = _as_shocks(shocks)
    snap = engine.snapshot()
    threshold = engine.config.min_health_factor / PRECISION

    counts = np.zeros(shocks.shape[0], dtype=int)
    for user in sorted(snap.debt):
        counts += _health_factors(engine, snap, user, shocks) < threshold
    return counts


def liquidation_price(engine, user: UserId, asset: AssetId) -> Optional[Decimal]:
    """
    USD price of `asset` at which `user` sits exactly at the minimum.

    Other assets keep their current prices. Returns None when the user has
    no debt or holds none of `asset`, and Decimal(0) when the other
    collateral alone keeps the position at or above the minimum.
    """
    engine.registry.require_supported(asset)
    snap = engine.snapshot()
    debt = snap.get_debt(user)
    held = snap.get_collateral(user, asset)
    if debt == 0 or held == 0:
        return None

    cfg = engine.config
    with localcontext() as ctx:
        ctx.prec = 80
        other = Decimal(0)
        for other_asset in engine.registry.asset_ids:
            if other_asset == asset:
                continue
            amount = snap.get_collateral(user, other_asset)
            if amount:
                price = normalized_price(engine.registry.oracle_for(other_asset), other_asset)
                other += from_wad(price) * from_wad(amount)

        # (other + p * held) * threshold / precision == debt * min_hf
        required = (from_wad(debt) * from_wad(cfg.min_health_factor)
                    * cfg.liquidation_precision / cfg.liquidation_threshold)
        price = (required - other) / from_wad(held)
    return max(price, Decimal(0))


def shock_report(engine, shocks) -> Dict[UserId, np.ndarray]:
    """Health factors of every indebted user under each scenario."""
    shocks = _as_shocks(shocks)
    snap = engine.snapshot()
    return {user: _health_factors(engine, snap, user, shocks) for user in sorted(snap.debt)}
