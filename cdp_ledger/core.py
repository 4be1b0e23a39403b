"""
Core types and pure functions for the collateralized-debt engine.

This module provides the foundational data structures and protocols:
1. Protocols: PriceOracle, FungibleAssetTransfer, MintableBurnableAsset, PositionView
2. Immutable data structures: PriceReading, PositionChange, Transaction, AccountInfo
3. Exceptions: EngineError and the domain-specific error taxonomy
4. Type aliases: AssetId, UserId, CollateralMap
5. Fixed-point helpers: to_wad, from_wad

Every amount, USD value and health factor handled by the engine is a
non-negative int with 18 implied decimals ("wad"). Decimal is only used at
the edges, for converting human-entered values.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_DOWN, localcontext
from enum import Enum
from typing import (
    Dict, Optional, Any, Protocol, Tuple, Mapping, Union, runtime_checkable,
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Fixed-point unit. A health factor equal to PRECISION is exactly at the
# minimum; USD values and amounts carry the same 18 decimals.
PRECISION = 10 ** 18
WAD_DECIMALS = 18

# Decimals of a raw oracle reading when the feed does not say otherwise.
DEFAULT_FEED_DECIMALS = 8

# Default risk parameters (percent of LIQUIDATION_PRECISION).
LIQUIDATION_THRESHOLD = 50   # 50% of collateral counts => 200% overcollateralized
LIQUIDATION_BONUS = 10       # 10% extra collateral to the liquidator
LIQUIDATION_PRECISION = 100
MIN_HEALTH_FACTOR = PRECISION

# Health factor reported for positions without debt.
MAX_HEALTH_FACTOR = 2 ** 256 - 1

# Identity that holds collateral and stable units on behalf of the engine.
DEFAULT_CUSTODY_ID = "engine"


# ============================================================================
# TYPE ALIASES
# ============================================================================

AssetId = str
UserId = str

# Mapping from asset id to the collateral amount held for one user.
CollateralMap = Dict[AssetId, int]

DecimalLike = Union[Decimal, int, str, float]


# ============================================================================
# FIXED-POINT HELPERS
# ============================================================================

def to_wad(value: DecimalLike) -> int:
    """
    Convert a human value to an 18-decimal integer, rounding down.

    Floats go through str() so that to_wad(0.1) == 10**17.

    Example:
        to_wad("1.5")  -> 1500000000000000000
        to_wad(1000)   -> 1000 * 10**18
    """
    if isinstance(value, bool):
        raise TypeError("bool is not a numeric amount")
    if isinstance(value, int):
        return value * PRECISION
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    if value.is_nan() or value.is_infinite():
        raise ValueError(f"amount must be finite, got {value}")
    with localcontext() as ctx:
        ctx.prec = 80
        scaled = (value * PRECISION).to_integral_value(rounding=ROUND_DOWN)
    return int(scaled)


def from_wad(amount: int) -> Decimal:
    """Convert an 18-decimal integer back to an exact Decimal."""
    with localcontext() as ctx:
        ctx.prec = 80
        return Decimal(amount) / Decimal(PRECISION)


def _require_int(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be int, got {type(value).__name__}")
    return value


# ============================================================================
# EXCEPTIONS
# ============================================================================

class EngineError(Exception):
    """Base exception for all engine errors."""
    pass


class ConfigurationError(EngineError):
    """Raised when construction-time configuration is inconsistent."""
    pass


class ZeroAmountError(EngineError):
    """Raised when an amount that must be positive is zero or negative."""
    pass


class UnsupportedAssetError(EngineError):
    """Raised when an asset is not in the collateral registry."""
    pass


class InsufficientCollateral(EngineError):
    """Raised when removing more collateral than a position holds."""
    pass


class ExcessBurnError(EngineError):
    """Raised when burning more debt than a position owes."""
    pass


class TransferFailure(EngineError):
    """Raised when an external transfer collaborator reports failure."""
    pass


class IssuanceFailure(TransferFailure):
    """Raised when the stable unit refuses to mint."""
    pass


class RollbackIncomplete(TransferFailure):
    """
    Raised when compensating an already-issued interaction failed.

    The ledger itself is untouched; the listed collaborator calls were
    not undone and need out-of-band reconciliation.
    """

    def __init__(self, message: str, failed: Tuple[str, ...] = ()):
        super().__init__(message)
        self.failed = failed


class OracleDataError(EngineError):
    """Raised when a price reading is non-positive or malformed."""
    pass


class InsufficientCollateralization(EngineError):
    """Raised when a position's health factor is below the minimum."""

    def __init__(self, user: UserId, health_factor: int):
        super().__init__(
            f"health factor of {user} is {health_factor}, below minimum"
        )
        self.user = user
        self.health_factor = health_factor


class HealthFactorAlreadyOk(EngineError):
    """Raised when liquidating a position that is not below the minimum."""

    def __init__(self, user: UserId, health_factor: int):
        super().__init__(f"position of {user} is healthy ({health_factor})")
        self.user = user
        self.health_factor = health_factor


class LiquidationDidNotImprovePosition(EngineError):
    """Raised when a liquidation leaves the target no healthier than before."""

    def __init__(self, user: UserId, starting: int, ending: int):
        super().__init__(
            f"liquidation of {user} did not improve health factor: "
            f"{starting} -> {ending}"
        )
        self.user = user
        self.starting_health_factor = starting
        self.ending_health_factor = ending


class ReentrantCallError(EngineError):
    """Raised when a mutating call arrives while an operation is in flight on the same thread."""
    pass


class ReservedIdentityError(EngineError):
    """Raised when an operation names the engine's custody identity as a party."""
    pass


# ============================================================================
# ORACLE READINGS
# ============================================================================

@dataclass(frozen=True, slots=True)
class PriceReading:
    """
    Raw reading from a price oracle.

    Attributes:
        price: Signed fixed-point USD price per whole unit of the asset.
        decimals: Implied decimals of `price` (8 for most USD feeds).
        updated_at: When the feed last updated (not checked by the engine).
        round_id: Feed round identifier (not checked by the engine).
    """
    price: int
    decimals: int = DEFAULT_FEED_DECIMALS
    updated_at: Optional[datetime] = None
    round_id: int = 0


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class PriceOracle(Protocol):
    """External price source for one or more collateral assets."""

    def latest_price(self, asset: AssetId) -> PriceReading:
        """Return the most recent reading for `asset`."""
        ...


@runtime_checkable
class FungibleAssetTransfer(Protocol):
    """
    Transfer mechanics for collateral assets.

    `pull` moves funds between two identities (the engine uses it to bring
    funds into custody). `push` sends funds out of the engine's custody.
    Both return False (or raise) on failure.
    """

    def pull(self, asset: AssetId, source: UserId, dest: UserId, amount: int) -> bool:
        ...

    def push(self, asset: AssetId, dest: UserId, amount: int) -> bool:
        ...


@runtime_checkable
class MintableBurnableAsset(Protocol):
    """The stable unit's ledger as seen by the engine."""

    def mint(self, to: UserId, amount: int) -> bool:
        """Create `amount` new units for `to`."""
        ...

    def burn(self, amount: int) -> None:
        """Destroy `amount` units held in the engine's custody."""
        ...

    def transfer_from(self, source: UserId, dest: UserId, amount: int) -> bool:
        """Move `amount` units from `source` to `dest`."""
        ...


@runtime_checkable
class PositionView(Protocol):
    """
    Read-only interface to position state.

    Valuation and health functions accept a PositionView so they can run
    against the committed ledger, an immutable snapshot, or the staged
    state of an in-flight operation.
    """

    def get_collateral(self, user: UserId, asset: AssetId) -> int:
        """Collateral of `asset` held for `user` (0 if none)."""
        ...

    def get_collateral_map(self, user: UserId) -> CollateralMap:
        """Copy of every non-zero collateral balance of `user`."""
        ...

    def get_debt(self, user: UserId) -> int:
        """Outstanding stable-unit debt of `user` (0 if none)."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class OperationType(Enum):
    """Kind of state transition recorded in the transaction log."""
    DEPOSIT = "deposit"
    REDEEM = "redeem"
    MINT = "mint"
    BURN = "burn"
    DEPOSIT_AND_MINT = "deposit_and_mint"
    REDEEM_AND_BURN = "redeem_and_burn"
    LIQUIDATE = "liquidate"


class PositionField(Enum):
    """Which side of a position a PositionChange touches."""
    COLLATERAL = "collateral"
    DEBT = "debt"


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Position:
    """
    Immutable snapshot of one user's position.

    Attributes:
        user: Owner of the position.
        collateral: Asset id -> amount held (zero balances omitted).
        debt: Stable units minted against the collateral.
    """
    user: UserId
    collateral: Mapping[AssetId, int] = field(default_factory=dict)
    debt: int = 0

    def get(self, asset: AssetId) -> int:
        return self.collateral.get(asset, 0)

    def is_empty(self) -> bool:
        return self.debt == 0 and not any(self.collateral.values())


@dataclass(frozen=True, slots=True)
class PositionChange:
    """
    A single signed delta to one side of a position.

    Attributes:
        user: Position owner.
        kind: COLLATERAL or DEBT.
        delta: Signed, non-zero change in wad units.
        asset: Collateral asset (required for COLLATERAL, None for DEBT).
        reason: Short label of the operation step producing the change.

    All fields are validated in __post_init__.
    """
    user: UserId
    kind: PositionField
    delta: int
    asset: Optional[AssetId] = None
    reason: str = ""

    def __post_init__(self):
        if not self.user or not self.user.strip():
            raise ValueError("PositionChange user cannot be empty")
        _require_int("PositionChange delta", self.delta)
        if self.delta == 0:
            raise ValueError("PositionChange delta cannot be zero")
        if self.kind is PositionField.COLLATERAL and not self.asset:
            raise ValueError("collateral change requires an asset")
        if self.kind is PositionField.DEBT and self.asset is not None:
            raise ValueError("debt change cannot name an asset")

    def __repr__(self) -> str:
        target = self.asset if self.kind is PositionField.COLLATERAL else "debt"
        sign = "+" if self.delta > 0 else ""
        return f"PositionChange({self.user}.{target} {sign}{self.delta})"


@dataclass(frozen=True, slots=True)
class AccountInfo:
    """Debt and collateral value of one account, both in wad."""
    total_debt: int
    collateral_value_usd: int


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of a committed operation.

    Attributes:
        operation: Kind of operation.
        actor: Identity that invoked the operation.
        changes: Ledger deltas applied at commit.
        interactions: Descriptions of the external calls issued.
        exec_id: Unique execution id (engine name + sequence).
        engine_name: Name of the engine that executed this.
        sequence_number: Monotonic within the engine.
        executed_at: Wall-clock time of commit.
    """
    operation: OperationType
    actor: UserId
    changes: Tuple[PositionChange, ...]
    interactions: Tuple[str, ...]
    exec_id: str
    engine_name: str
    sequence_number: int
    executed_at: datetime

    def __post_init__(self):
        if not self.changes:
            raise ValueError("Transaction must have changes")

    def __repr__(self) -> str:
        w = 100  # Inner content width
        bar = "─" * w

        def pad(text: str) -> str:
            """Pad or truncate text to exactly w characters."""
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   operation      : ' + self.operation.value)}│",
            f"│{pad('   actor          : ' + self.actor)}│",
            f"│{pad('   engine_name    : ' + self.engine_name)}│",
            f"│{pad('   executed_at    : ' + str(self.executed_at))}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"├{bar}┤",
            f"│{pad(' Changes (' + str(len(self.changes)) + '):')}│",
        ]
        for i, change in enumerate(self.changes):
            lines.append(f"│{pad(f'   [{i}] {change!r} ({change.reason})')}│")
        if self.interactions:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' Interactions (' + str(len(self.interactions)) + '):')}│")
            for i, desc in enumerate(self.interactions):
                lines.append(f"│{pad(f'   [{i}] {desc}')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)
