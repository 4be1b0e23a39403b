"""
registry.py - Approved collateral assets and their oracle sources

The registry is built once, at engine construction, from two parallel
sequences (asset ids and oracle sources) and is read-only afterwards.
Iteration order is the construction order; valuation sums in that order.
"""

from __future__ import annotations
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterator, Sequence, Tuple, Mapping

from .core import (
    AssetId, PriceOracle,
    ConfigurationError, UnsupportedAssetError,
)


@dataclass(frozen=True, slots=True)
class CollateralAsset:
    """An approved collateral asset and the oracle that prices it."""
    asset_id: AssetId
    oracle: PriceOracle


class CollateralRegistry:
    """
    Immutable, ordered set of approved collateral assets.

    Example:
        oracle = StaticPriceOracle({"WETH": 2000, "WBTC": 60000})
        registry = CollateralRegistry(["WETH", "WBTC"], [oracle, oracle])
        registry.is_supported("WETH")   # True
        registry.oracle_for("DOGE")     # raises UnsupportedAssetError
    """

    __slots__ = ('_assets', '_by_id')

    def __init__(self, asset_ids: Sequence[AssetId], oracles: Sequence[PriceOracle]):
        """
        Register collateral assets.

        Args:
            asset_ids: Ordered asset identifiers
            oracles: Oracle source for each asset, pairwise with asset_ids

        Raises:
            ConfigurationError: If the sequences differ in length, or an
                asset id is empty or repeated
        """
        asset_ids = list(asset_ids)
        oracles = list(oracles)
        if len(asset_ids) != len(oracles):
            raise ConfigurationError(
                f"asset ids and oracle sources must be the same length "
                f"({len(asset_ids)} != {len(oracles)})"
            )

        assets = []
        by_id = {}
        for asset_id, oracle in zip(asset_ids, oracles):
            if not isinstance(asset_id, str) or not asset_id.strip():
                raise ConfigurationError(f"invalid asset id {asset_id!r}")
            if asset_id in by_id:
                raise ConfigurationError(f"asset {asset_id} registered twice")
            if oracle is None:
                raise ConfigurationError(f"asset {asset_id} has no oracle source")
            entry = CollateralAsset(asset_id, oracle)
            assets.append(entry)
            by_id[asset_id] = entry

        object.__setattr__(self, '_assets', tuple(assets))
        object.__setattr__(self, '_by_id', MappingProxyType(by_id))

    @classmethod
    def from_pairs(cls, pairs: Sequence[Tuple[AssetId, PriceOracle]]) -> CollateralRegistry:
        """Build a registry from (asset_id, oracle) pairs."""
        pairs = list(pairs)
        return cls([asset for asset, _ in pairs], [oracle for _, oracle in pairs])

    def __setattr__(self, name, value):
        raise AttributeError("CollateralRegistry is immutable")

    @property
    def assets(self) -> Tuple[CollateralAsset, ...]:
        return self._assets

    @property
    def asset_ids(self) -> Tuple[AssetId, ...]:
        return tuple(a.asset_id for a in self._assets)

    @property
    def oracles(self) -> Mapping[AssetId, PriceOracle]:
        return MappingProxyType({a.asset_id: a.oracle for a in self._assets})

    def is_supported(self, asset: AssetId) -> bool:
        return asset in self._by_id

    def oracle_for(self, asset: AssetId) -> PriceOracle:
        """
        Return the oracle backing `asset`.

        Raises:
            UnsupportedAssetError: If the asset is not registered
        """
        try:
            return self._by_id[asset].oracle
        except KeyError:
            raise UnsupportedAssetError(f"asset {asset} is not supported") from None

    def require_supported(self, asset: AssetId) -> None:
        if asset not in self._by_id:
            raise UnsupportedAssetError(f"asset {asset} is not supported")

    def __contains__(self, asset: object) -> bool:
        return asset in self._by_id

    def __iter__(self) -> Iterator[AssetId]:
        return iter(self.asset_ids)

    def __len__(self) -> int:
        return len(self._assets)

    def __repr__(self) -> str:
        return f"CollateralRegistry({', '.join(self.asset_ids)})"
