"""
ledger.py - Authoritative position state

PositionLedger is the only place where position state lives. It is the
only module that mutates state, ensuring controlled and auditable changes.

Key responsibilities:
    - Implements PositionView for read-only access by pure functions
    - Publishes immutable snapshots; a commit swaps in a new snapshot in one
      reference assignment, so readers never observe a half-applied change
    - Hands out staging overlays (StagedPositions) on which an operation
      accumulates its changes and runs its checks before committing
    - Performs explicit balance checks before every subtraction
    - Verifies conservation against custody balances
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional, Iterable, Mapping, Set, Tuple, Any

from .core import (
    AssetId, UserId, CollateralMap,
    Position, PositionChange, PositionField,
    InsufficientCollateral, ExcessBurnError, UnsupportedAssetError,
    EngineError, ZeroAmountError,
)


def _require_positive(amount: int, what: str) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise TypeError(f"{what} must be int, got {type(amount).__name__}")
    if amount <= 0:
        raise ZeroAmountError(f"{what} must be positive, got {amount}")


@dataclass(frozen=True, slots=True)
class LedgerSnapshot:
    """
    Immutable view of every position at one committed version.

    The nested dicts are never mutated once a snapshot is published.
    """
    collateral: Mapping[UserId, Mapping[AssetId, int]]
    debt: Mapping[UserId, int]
    version: int = 0

    def get_collateral(self, user: UserId, asset: AssetId) -> int:
        return self.collateral.get(user, {}).get(asset, 0)

    def get_collateral_map(self, user: UserId) -> CollateralMap:
        return dict(self.collateral.get(user, {}))

    def get_debt(self, user: UserId) -> int:
        return self.debt.get(user, 0)

    def get_position(self, user: UserId) -> Position:
        return Position(user, self.get_collateral_map(user), self.get_debt(user))

    def users(self) -> Set[UserId]:
        return set(self.collateral) | set(self.debt)


class StagedPositions:
    """
    Copy-on-write overlay over a snapshot for one in-flight operation.

    Implements PositionView, so health checks run against the staged state.
    Nothing here touches the PositionLedger until it is committed.
    """

    def __init__(self, base: LedgerSnapshot, asset_ids: Iterable[AssetId]):
        self.base = base
        self._asset_ids = frozenset(asset_ids)
        self._collateral: Dict[Tuple[UserId, AssetId], int] = {}
        self._debt: Dict[UserId, int] = {}
        self.changes: List[PositionChange] = []

    # PositionView

    def get_collateral(self, user: UserId, asset: AssetId) -> int:
        key = (user, asset)
        if key in self._collateral:
            return self._collateral[key]
        return self.base.get_collateral(user, asset)

    def get_collateral_map(self, user: UserId) -> CollateralMap:
        result = self.base.get_collateral_map(user)
        for (u, asset), amount in self._collateral.items():
            if u == user:
                result[asset] = amount
        return {asset: amount for asset, amount in result.items() if amount}

    def get_debt(self, user: UserId) -> int:
        if user in self._debt:
            return self._debt[user]
        return self.base.get_debt(user)

    def get_position(self, user: UserId) -> Position:
        return Position(user, self.get_collateral_map(user), self.get_debt(user))

    # Staged mutations

    def credit_collateral(self, user: UserId, asset: AssetId, amount: int, reason: str) -> None:
        _require_positive(amount, "collateral amount")
        if asset not in self._asset_ids:
            raise UnsupportedAssetError(f"asset {asset} is not supported")
        self._collateral[(user, asset)] = self.get_collateral(user, asset) + amount
        self.changes.append(PositionChange(user, PositionField.COLLATERAL, amount, asset, reason))

    def debit_collateral(self, user: UserId, asset: AssetId, amount: int, reason: str) -> None:
        _require_positive(amount, "collateral amount")
        if asset not in self._asset_ids:
            raise UnsupportedAssetError(f"asset {asset} is not supported")
        balance = self.get_collateral(user, asset)
        if amount > balance:
            raise InsufficientCollateral(
                f"{user} holds {balance} {asset}, cannot remove {amount}"
            )
        self._collateral[(user, asset)] = balance - amount
        self.changes.append(PositionChange(user, PositionField.COLLATERAL, -amount, asset, reason))

    def increase_debt(self, user: UserId, amount: int, reason: str) -> None:
        _require_positive(amount, "debt amount")
        self._debt[user] = self.get_debt(user) + amount
        self.changes.append(PositionChange(user, PositionField.DEBT, amount, None, reason))

    def decrease_debt(self, user: UserId, amount: int, reason: str) -> None:
        _require_positive(amount, "debt amount")
        debt = self.get_debt(user)
        if amount > debt:
            raise ExcessBurnError(f"{user} owes {debt}, cannot burn {amount}")
        self._debt[user] = debt - amount
        self.changes.append(PositionChange(user, PositionField.DEBT, -amount, None, reason))

    def is_empty(self) -> bool:
        return not self.changes


class PositionLedger:
    """
    Per-user collateral balances and minted debt.

    Implements the PositionView protocol. All reads go through the current
    snapshot; writes go through stage() + commit().

    Thread Safety:
        Reads are safe from any thread. Commits must be serialized by the
        caller (StableEngine holds one lock around every operation).

    Example:
        ledger = PositionLedger(["WETH", "WBTC"])
        staged = ledger.stage()
        staged.credit_collateral("alice", "WETH", 10**18, "deposit")
        ledger.commit(staged)
        ledger.get_collateral("alice", "WETH")   # 10**18
    """

    def __init__(self, asset_ids: Iterable[AssetId]):
        self.asset_ids: Tuple[AssetId, ...] = tuple(asset_ids)
        self._snapshot = LedgerSnapshot(collateral={}, debt={}, version=0)

    # ========================================================================
    # PositionView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    def snapshot(self) -> LedgerSnapshot:
        """Return the current committed snapshot."""
        return self._snapshot

    @property
    def version(self) -> int:
        return self._snapshot.version

    def get_collateral(self, user: UserId, asset: AssetId) -> int:
        return self._snapshot.get_collateral(user, asset)

    def get_collateral_map(self, user: UserId) -> CollateralMap:
        return self._snapshot.get_collateral_map(user)

    def get_debt(self, user: UserId) -> int:
        return self._snapshot.get_debt(user)

    def get_position(self, user: UserId) -> Position:
        return self._snapshot.get_position(user)

    def list_users(self) -> List[UserId]:
        """All users with a non-empty position, sorted."""
        return sorted(self._snapshot.users())

    def total_collateral(self, asset: AssetId) -> int:
        """
        Sum of all users' recorded balances of an asset.

        Users are sorted before summation for a deterministic order.
        """
        snap = self._snapshot
        return sum(snap.get_collateral(u, asset) for u in sorted(snap.collateral))

    def total_debt(self) -> int:
        snap = self._snapshot
        return sum(snap.debt[u] for u in sorted(snap.debt))

    def verify_conservation(
        self,
        custody_balances: Mapping[AssetId, int],
        stable_supply: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Verify that custody holdings match recorded balances.

        For every asset, the amount the engine holds in custody must equal
        the sum of all users' recorded collateral. If stable_supply is given,
        it must equal the total recorded debt.

        Args:
            custody_balances: Asset id -> amount held in custody
            stable_supply: Optional outstanding supply of the stable unit

        Returns:
            Dict with keys:
            - 'valid': bool - True if all conservation laws hold
            - 'totals': Dict[str, int] - Recorded total per asset (and 'debt')
            - 'discrepancies': List[Dict] - unit, expected, actual, difference
        """
        totals: Dict[str, int] = {}
        discrepancies = []

        for asset in self.asset_ids:
            recorded = self.total_collateral(asset)
            totals[asset] = recorded
            held = custody_balances.get(asset, 0)
            if held != recorded:
                discrepancies.append({
                    'unit': asset,
                    'expected': recorded,
                    'actual': held,
                    'difference': held - recorded,
                })

        debt = self.total_debt()
        totals['debt'] = debt
        if stable_supply is not None and stable_supply != debt:
            discrepancies.append({
                'unit': 'debt',
                'expected': debt,
                'actual': stable_supply,
                'difference': stable_supply - debt,
            })

        return {
            'valid': len(discrepancies) == 0,
            'totals': totals,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # STAGING AND COMMIT (Mutating)
    # ========================================================================

    def stage(self) -> StagedPositions:
        """Start a staging overlay on top of the current snapshot."""
        return StagedPositions(self._snapshot, self.asset_ids)

    def commit(self, staged: StagedPositions) -> LedgerSnapshot:
        """
        Apply a staged overlay and publish the resulting snapshot.

        Raises:
            EngineError: If the overlay was staged against an older snapshot
        """
        if staged.base is not self._snapshot:
            raise EngineError(
                f"stale staging: based on version {staged.base.version}, "
                f"ledger is at {self._snapshot.version}"
            )
        return self.apply(staged.changes)

    def apply(self, changes: Iterable[PositionChange]) -> LedgerSnapshot:
        """
        Apply changes to a copy of the current state and swap it in.

        Every change is validated before the swap; on any error the
        published snapshot is left untouched.
        """
        snap = self._snapshot
        collateral = dict(snap.collateral)
        debt = dict(snap.debt)
        copied: Set[UserId] = set()

        for change in changes:
            if change.kind is PositionField.COLLATERAL:
                if change.asset not in self.asset_ids:
                    raise UnsupportedAssetError(f"asset {change.asset} is not supported")
                if change.user not in copied:
                    collateral[change.user] = dict(collateral.get(change.user, {}))
                    copied.add(change.user)
                balances = collateral[change.user]
                new_balance = balances.get(change.asset, 0) + change.delta
                if new_balance < 0:
                    raise InsufficientCollateral(
                        f"{change.user} {change.asset}: {new_balance} < 0"
                    )
                if new_balance:
                    balances[change.asset] = new_balance
                else:
                    balances.pop(change.asset, None)
            else:
                new_debt = debt.get(change.user, 0) + change.delta
                if new_debt < 0:
                    raise ExcessBurnError(f"{change.user} debt: {new_debt} < 0")
                if new_debt:
                    debt[change.user] = new_debt
                else:
                    debt.pop(change.user, None)

        for user in copied:
            if not collateral[user]:
                del collateral[user]

        self._snapshot = LedgerSnapshot(collateral=collateral, debt=debt, version=snap.version + 1)
        return self._snapshot

    def __repr__(self) -> str:
        return (f"PositionLedger({len(self.asset_ids)} assets, "
                f"{len(self._snapshot.users())} positions, v{self.version})")
