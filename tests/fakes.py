"""
fakes.py - Test helpers for the engine

Provides:
- FakePositionView: minimal PositionView for testing pure functions
- FakeOracle: returns canned (possibly malformed) readings
- ScriptedTokenLedger / ScriptedStableToken: collaborators that can be told
  to refuse (return False) or explode (raise) on chosen methods
- build_engine: a funded two-asset engine without pytest fixtures, usable
  inside hypothesis tests
- run_operation / state_of: drive and observe generated operation sequences
"""

from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, Optional, Set

from cdp_ledger import (
    PriceReading, StableEngine, StaticPriceOracle, TokenLedger, StableToken,
    EngineConfig, EngineError, to_wad,
)


USERS = ("alice", "bob", "carol")
T0 = datetime(2025, 1, 1)


class FakePositionView:
    """
    Minimal PositionView implementation for testing valuation and health.

    Example:
        view = FakePositionView(
            collateral={'alice': {'WETH': 10**18}},
            debt={'alice': 500 * 10**18},
        )
    """

    def __init__(self, collateral: Optional[Dict[str, Dict[str, int]]] = None,
                 debt: Optional[Dict[str, int]] = None):
        self._collateral = collateral or {}
        self._debt = debt or {}

    def get_collateral(self, user: str, asset: str) -> int:
        return self._collateral.get(user, {}).get(asset, 0)

    def get_collateral_map(self, user: str) -> Dict[str, int]:
        return {a: q for a, q in self._collateral.get(user, {}).items() if q}

    def get_debt(self, user: str) -> int:
        return self._debt.get(user, 0)


class FakeOracle:
    """Oracle returning whatever reading it was given, malformed or not."""

    def __init__(self, readings: Dict[str, Any]):
        self.readings = readings
        self.calls = 0

    def latest_price(self, asset: str) -> Any:
        self.calls += 1
        return self.readings[asset]


class _Scripted:
    """Mixin: refuse or explode on named methods."""

    def _script_init(self) -> None:
        self.refuse: Set[str] = set()
        self.explode: Set[str] = set()
        self.calls: list = []

    def _check(self, method: str, *args) -> bool:
        self.calls.append((method,) + args)
        if method in self.explode:
            raise RuntimeError(f"{method} exploded")
        return method not in self.refuse


class ScriptedTokenLedger(_Scripted, TokenLedger):
    """TokenLedger whose pull/push can be scripted to fail."""

    def __init__(self, custody_id: str = "engine"):
        super().__init__(custody_id)
        self._script_init()

    def pull(self, asset, source, dest, amount):
        if not self._check("pull", asset, source, dest, amount):
            return False
        return super().pull(asset, source, dest, amount)

    def push(self, asset, dest, amount):
        if not self._check("push", asset, dest, amount):
            return False
        return super().push(asset, dest, amount)


class ScriptedStableToken(_Scripted, StableToken):
    """StableToken whose mint/burn/transfer_from can be scripted to fail."""

    def __init__(self, symbol: str = "USDX", minter: str = "engine"):
        super().__init__(symbol, minter)
        self._script_init()

    def mint(self, to, amount):
        if not self._check("mint", to, amount):
            return False
        return super().mint(to, amount)

    def burn(self, amount):
        if not self._check("burn", amount):
            raise ValueError("burn refused")
        super().burn(amount)

    def transfer_from(self, source, dest, amount):
        if not self._check("transfer_from", source, dest, amount):
            return False
        return super().transfer_from(source, dest, amount)


def build_engine(
    prices: Optional[Dict[str, Any]] = None,
    funding: Optional[Dict[str, Any]] = None,
    config: Optional[EngineConfig] = None,
    scripted: bool = False,
):
    """
    Build an engine over WETH/WBTC with funded user wallets.

    Returns:
        (engine, oracle, tokens, stable)
    """
    oracle = StaticPriceOracle(prices or {'WETH': 1000, 'WBTC': 20000})
    tokens = ScriptedTokenLedger() if scripted else TokenLedger()
    stable = ScriptedStableToken() if scripted else StableToken()
    funding = funding or {'WETH': 100, 'WBTC': 10}
    for user in USERS:
        for asset, amount in funding.items():
            tokens.mint_to(user, asset, to_wad(amount))

    engine = StableEngine(
        ['WETH', 'WBTC'], [oracle, oracle], stable, tokens,
        config=config, clock=lambda: T0,
    )
    return engine, oracle, tokens, stable


ACTIONS = ("deposit", "redeem", "mint", "burn", "deposit_and_mint",
           "redeem_and_burn", "liquidate")


def run_operation(engine, action, user, asset, units, other):
    """
    Apply one generated operation; amounts are whole units of collateral
    and hundreds of stable units. Returns the Transaction or None if the
    engine rejected the operation.
    """
    collateral = to_wad(units)
    debt = to_wad(units * 100)
    try:
        if action == "deposit":
            return engine.deposit(user, asset, collateral)
        if action == "redeem":
            return engine.redeem(user, asset, collateral)
        if action == "mint":
            return engine.mint(user, debt)
        if action == "burn":
            return engine.burn(user, debt, payer=other)
        if action == "deposit_and_mint":
            return engine.deposit_and_mint(user, asset, collateral, debt)
        if action == "redeem_and_burn":
            return engine.redeem_and_burn(user, asset, collateral, debt)
        return engine.liquidate(user, other, asset, debt)
    except EngineError:
        return None


def state_of(engine, tokens, stable):
    """Everything an operation may touch, as plain comparable data."""
    snap = engine.snapshot()
    return (
        {u: dict(m) for u, m in snap.collateral.items()},
        dict(snap.debt),
        {(w, a): q for w, m in tokens.balances.items() for a, q in m.items() if q},
        {w: q for w, q in stable.balances.items() if q},
        stable.total_supply,
    )
