"""
pricing_source.py - Reference price oracles

In-memory PriceOracle implementations for simulations and tests.

Classes:
- StaticPriceOracle: Time-independent prices that can be updated in place
- TimeSeriesPriceOracle: Time-varying prices with historical data

Prices are entered as human USD values (Decimal, str, int) and reported
as raw fixed-point readings with `decimals` implied decimals, the way an
on-chain USD feed reports them.
"""

from datetime import datetime
from decimal import Decimal, ROUND_DOWN, localcontext
from typing import Dict, Optional, List, Tuple
from bisect import bisect_right

from .core import (
    AssetId, DecimalLike, PriceReading, OracleDataError, DEFAULT_FEED_DECIMALS,
)


def _to_raw(price: DecimalLike, decimals: int) -> int:
    """Scale a human price to a raw feed integer, rounding toward zero."""
    if isinstance(price, bool):
        raise TypeError("bool is not a price")
    if isinstance(price, int):
        return price * 10 ** decimals
    if not isinstance(price, Decimal):
        price = Decimal(str(price))
    with localcontext() as ctx:
        ctx.prec = 80
        return int((price * 10 ** decimals).to_integral_value(rounding=ROUND_DOWN))


class StaticPriceOracle:
    """
    Price oracle with static prices (time-independent).

    Prices remain constant until updated. A single instance may back
    any number of assets.
    """

    def __init__(self, prices: Optional[Dict[AssetId, DecimalLike]] = None,
                 decimals: int = DEFAULT_FEED_DECIMALS):
        """
        Initialize with a static price map.

        Args:
            prices: Dictionary mapping asset ids to USD prices
            decimals: Implied decimals of the raw readings
        """
        self.decimals = decimals
        self.raw_prices: Dict[AssetId, int] = {}
        self._rounds: Dict[AssetId, int] = {}
        for asset, price in (prices or {}).items():
            self.update_price(asset, price)

    def latest_price(self, asset: AssetId) -> PriceReading:
        if asset not in self.raw_prices:
            raise OracleDataError(f"no price for {asset}")
        return PriceReading(
            price=self.raw_prices[asset],
            decimals=self.decimals,
            round_id=self._rounds[asset],
        )

    def update_price(self, asset: AssetId, price: DecimalLike) -> None:
        """Update the USD price of an asset."""
        self.set_raw_price(asset, _to_raw(price, self.decimals))

    def update_prices(self, prices: Dict[AssetId, DecimalLike]) -> None:
        """Update multiple prices at once."""
        for asset, price in prices.items():
            self.update_price(asset, price)

    def set_raw_price(self, asset: AssetId, raw: int) -> None:
        """Store a raw feed value as-is, including zero or negative answers."""
        self.raw_prices[asset] = raw
        self._rounds[asset] = self._rounds.get(asset, 0) + 1

    def __repr__(self):
        return f"StaticPriceOracle({len(self.raw_prices)} prices, decimals={self.decimals})"


class TimeSeriesPriceOracle:
    """
    Price oracle with time-varying prices.

    Stores historical price data and answers with the most recent price at
    or before the oracle's current time. Move the clock with set_time().

    Supports two initialization patterns:
    - Empty initialization for incremental price addition via add_price()
    - Batch initialization with complete price paths for simulations
    """

    def __init__(
        self,
        price_paths: Optional[Dict[AssetId, List[Tuple[datetime, DecimalLike]]]] = None,
        current_time: Optional[datetime] = None,
        decimals: int = DEFAULT_FEED_DECIMALS,
    ):
        """
        Initialize pricing source.

        Args:
            price_paths: Optional dict mapping asset ids to list of (timestamp, price) tuples.
            current_time: Initial clock (default: 1970-01-01)
            decimals: Implied decimals of the raw readings

        Examples:
            oracle = TimeSeriesPriceOracle({
                'WETH': [(t0, 2000), (t1, 1800), (t2, 1500)],
            }, current_time=t0)
            oracle.set_time(t2)
        """
        self.decimals = decimals
        self.current_time = current_time or datetime(1970, 1, 1)
        self.price_history: Dict[AssetId, List[Tuple[datetime, int]]] = {}

        if price_paths:
            for asset, path in price_paths.items():
                if not path:
                    continue
                self.price_history[asset] = sorted(
                    ((ts, _to_raw(p, decimals)) for ts, p in path),
                    key=lambda x: x[0],
                )

    def set_time(self, timestamp: datetime) -> None:
        """Move the oracle's clock (forward or backward)."""
        self.current_time = timestamp

    def add_price(self, asset: AssetId, timestamp: datetime, price: DecimalLike) -> None:
        """
        Add a price observation for an asset at a specific time.

        Args:
            asset: Asset id
            timestamp: Time of the price observation
            price: USD price
        """
        history = self.price_history.setdefault(asset, [])
        history.append((timestamp, _to_raw(price, self.decimals)))
        history.sort(key=lambda x: x[0])

    def add_prices(self, prices: Dict[AssetId, DecimalLike], timestamp: datetime) -> None:
        """Add multiple price observations at the same timestamp."""
        for asset, price in prices.items():
            self.add_price(asset, timestamp, price)

    def get_price(self, asset: AssetId, timestamp: datetime) -> Optional[PriceReading]:
        """
        Get the reading at or before the specified timestamp.

        Returns None if no price data is available before the timestamp.
        Uses binary search for O(log n) lookup.
        """
        history = self.price_history.get(asset)
        if not history:
            return None

        timestamps = [ts for ts, _ in history]
        idx = bisect_right(timestamps, timestamp)
        if idx == 0:
            return None

        ts, raw = history[idx - 1]
        return PriceReading(price=raw, decimals=self.decimals, updated_at=ts, round_id=idx)

    def latest_price(self, asset: AssetId) -> PriceReading:
        reading = self.get_price(asset, self.current_time)
        if reading is None:
            raise OracleDataError(f"no price for {asset} at {self.current_time}")
        return reading

    def get_all_timestamps(self, asset: Optional[AssetId] = None) -> List[datetime]:
        """
        Get all timestamps in the price history.

        Args:
            asset: If specified, get timestamps for that asset only.
                   If None, get union of all timestamps.
        """
        if asset:
            return [ts for ts, _ in self.price_history.get(asset, [])]

        all_times = set()
        for path in self.price_history.values():
            all_times.update(ts for ts, _ in path)
        return sorted(all_times)

    def __repr__(self):
        total_observations = sum(len(history) for history in self.price_history.values())
        return (f"TimeSeriesPriceOracle({len(self.price_history)} assets, "
                f"{total_observations} observations, decimals={self.decimals})")
