"""
config.py - Construction-time engine parameters

EngineConfig is the engine's term sheet: set once when the engine is built,
never changed afterwards. Percentages are expressed against
liquidation_precision (100 => whole percents).
"""

from __future__ import annotations
from dataclasses import dataclass

from .core import (
    ConfigurationError,
    LIQUIDATION_THRESHOLD, LIQUIDATION_BONUS, LIQUIDATION_PRECISION,
    MIN_HEALTH_FACTOR, DEFAULT_CUSTODY_ID,
)


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """
    Immutable risk parameters and identities of an engine.

    Attributes:
        liquidation_threshold: Share of collateral value counted toward
            solvency (50 => 200% overcollateralization required).
        liquidation_bonus: Extra collateral share paid to liquidators.
        liquidation_precision: Denominator of the two percentages above.
        min_health_factor: Health factor below which a position is
            liquidatable and operations are rejected (wad).
        custody_id: Identity holding collateral and stable units for the engine.
        name: Engine name used in execution ids and logs.
    """
    liquidation_threshold: int = LIQUIDATION_THRESHOLD
    liquidation_bonus: int = LIQUIDATION_BONUS
    liquidation_precision: int = LIQUIDATION_PRECISION
    min_health_factor: int = MIN_HEALTH_FACTOR
    custody_id: str = DEFAULT_CUSTODY_ID
    name: str = "engine"

    def __post_init__(self):
        for attr in (
            'liquidation_threshold', 'liquidation_bonus',
            'liquidation_precision', 'min_health_factor',
        ):
            value = getattr(self, attr)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigurationError(f"{attr} must be int, got {value!r}")

        if self.liquidation_precision <= 0:
            raise ConfigurationError(
                f"liquidation_precision must be positive, got {self.liquidation_precision}"
            )
        if not 0 < self.liquidation_threshold <= self.liquidation_precision:
            raise ConfigurationError(
                f"liquidation_threshold must be in (0, {self.liquidation_precision}], "
                f"got {self.liquidation_threshold}"
            )
        if self.liquidation_bonus < 0:
            raise ConfigurationError(
                f"liquidation_bonus cannot be negative, got {self.liquidation_bonus}"
            )
        if self.min_health_factor <= 0:
            raise ConfigurationError(
                f"min_health_factor must be positive, got {self.min_health_factor}"
            )
        if not self.custody_id or not self.custody_id.strip():
            raise ConfigurationError("custody_id cannot be empty")
        if not self.name or not self.name.strip():
            raise ConfigurationError("name cannot be empty")
