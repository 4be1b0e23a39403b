"""
cdp_ledger - Collateralized-Debt Accounting Engine

Users lock approved collateral, mint a pegged stable unit against its USD
value, and can be liquidated by third parties once their health factor
drops below the minimum.

Usage:
    from cdp_ledger import (
        StableEngine, StaticPriceOracle, TokenLedger, StableToken, to_wad,
    )

    oracle = StaticPriceOracle({"WETH": 1000})
    tokens = TokenLedger()
    stable = StableToken()
    engine = StableEngine(["WETH"], [oracle], stable, tokens)

    tokens.mint_to("alice", "WETH", to_wad(1))
    tokens.mint_to("bob", "WETH", to_wad(2))
    engine.deposit_and_mint("alice", "WETH", to_wad(1), to_wad(500))
    engine.deposit_and_mint("bob", "WETH", to_wad(2), to_wad(250))

    oracle.update_price("WETH", 800)                   # alice drops to 0.8
    engine.liquidate("bob", "alice", "WETH", to_wad(250))
"""

# Core types
from .core import (
    PriceOracle,
    FungibleAssetTransfer,
    MintableBurnableAsset,
    PositionView,
    PriceReading,
    Position,
    PositionChange,
    PositionField,
    Transaction,
    OperationType,
    AccountInfo,
    AssetId,
    UserId,
    CollateralMap,
    to_wad,
    from_wad,
    PRECISION,
    WAD_DECIMALS,
    DEFAULT_FEED_DECIMALS,
    LIQUIDATION_THRESHOLD,
    LIQUIDATION_BONUS,
    LIQUIDATION_PRECISION,
    MIN_HEALTH_FACTOR,
    MAX_HEALTH_FACTOR,
    DEFAULT_CUSTODY_ID,
    EngineError,
    ConfigurationError,
    ZeroAmountError,
    UnsupportedAssetError,
    InsufficientCollateral,
    ExcessBurnError,
    TransferFailure,
    IssuanceFailure,
    RollbackIncomplete,
    OracleDataError,
    InsufficientCollateralization,
    HealthFactorAlreadyOk,
    LiquidationDidNotImprovePosition,
    ReentrantCallError,
    ReservedIdentityError,
)

# Configuration and registry
from .config import EngineConfig
from .registry import CollateralRegistry, CollateralAsset

# State
from .ledger import PositionLedger, LedgerSnapshot, StagedPositions

# Pure valuation and health functions
from .valuation import (
    normalized_price,
    usd_value,
    usd_to_asset_amount,
    collateral_usd_breakdown,
    total_collateral_usd,
)
from .health import (
    calculate_health_factor,
    health_factor,
    is_healthy,
    assert_healthy,
)

# Engine
from .engine import StableEngine

# Reference collaborators
from .pricing_source import StaticPriceOracle, TimeSeriesPriceOracle
from .assets import TokenLedger, StableToken

# Risk analytics
from .stress import (
    collateral_usd_vector,
    health_factors_under_shocks,
    liquidatable_counts,
    liquidation_price,
    shock_report,
)


__all__ = [
    # Protocols
    'PriceOracle',
    'FungibleAssetTransfer',
    'MintableBurnableAsset',
    'PositionView',
    # Data
    'PriceReading',
    'Position',
    'PositionChange',
    'PositionField',
    'Transaction',
    'OperationType',
    'AccountInfo',
    'AssetId',
    'UserId',
    'CollateralMap',
    # Fixed point
    'to_wad',
    'from_wad',
    'PRECISION',
    'WAD_DECIMALS',
    'DEFAULT_FEED_DECIMALS',
    'LIQUIDATION_THRESHOLD',
    'LIQUIDATION_BONUS',
    'LIQUIDATION_PRECISION',
    'MIN_HEALTH_FACTOR',
    'MAX_HEALTH_FACTOR',
    'DEFAULT_CUSTODY_ID',
    # Errors
    'EngineError',
    'ConfigurationError',
    'ZeroAmountError',
    'UnsupportedAssetError',
    'InsufficientCollateral',
    'ExcessBurnError',
    'TransferFailure',
    'IssuanceFailure',
    'RollbackIncomplete',
    'OracleDataError',
    'InsufficientCollateralization',
    'HealthFactorAlreadyOk',
    'LiquidationDidNotImprovePosition',
    'ReentrantCallError',
    'ReservedIdentityError',
    # Configuration and registry
    'EngineConfig',
    'CollateralRegistry',
    'CollateralAsset',
    # State
    'PositionLedger',
    'LedgerSnapshot',
    'StagedPositions',
    # Valuation and health
    'normalized_price',
    'usd_value',
    'usd_to_asset_amount',
    'collateral_usd_breakdown',
    'total_collateral_usd',
    'calculate_health_factor',
    'health_factor',
    'is_healthy',
    'assert_healthy',
    # Engine
    'StableEngine',
    # Reference collaborators
    'StaticPriceOracle',
    'TimeSeriesPriceOracle',
    'TokenLedger',
    'StableToken',
    # Risk analytics
    'collateral_usd_vector',
    'health_factors_under_shocks',
    'liquidatable_counts',
    'liquidation_price',
    'shock_report',
]

__version__ = '1.0.0'
