"""
engine.py - StableEngine, the transactional surface

StableEngine owns the PositionLedger and is the only entry point that
changes it. Every mutating operation runs as one unit of work:

    1. Check       - validate arguments, stage ledger changes
    2. Verify      - health checks against the staged state
    3. Interact    - issue the queued collaborator calls, in order
    4. Commit      - swap the staged state into the ledger, log a Transaction

If a collaborator call fails (returns False or raises), the calls already
issued are compensated in reverse order and nothing is committed. Checks
that fail before step 3 never touch a collaborator.

Example:
    oracle = StaticPriceOracle({"WETH": 1000})
    tokens = TokenLedger()
    stable = StableToken()
    engine = StableEngine(["WETH"], [oracle], stable, tokens)

    tokens.mint_to("alice", "WETH", to_wad(1))
    engine.deposit_and_mint("alice", "WETH", to_wad(1), to_wad(500))
    engine.health_factor("alice")   # == PRECISION
"""

from __future__ import annotations
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Type

from .config import EngineConfig
from .core import (
    AssetId, UserId, PriceOracle, FungibleAssetTransfer, MintableBurnableAsset,
    PRECISION, AccountInfo, Position, Transaction, OperationType,
    EngineError, TransferFailure, IssuanceFailure, RollbackIncomplete,
    ReentrantCallError, ReservedIdentityError,
    HealthFactorAlreadyOk, LiquidationDidNotImprovePosition,
)
from .health import (
    calculate_health_factor as _calculate_health_factor,
    health_factor as _health_factor,
    assert_healthy,
)
from .ledger import PositionLedger, StagedPositions, LedgerSnapshot, _require_positive
from .registry import CollateralRegistry
from .valuation import usd_value as _usd_value, usd_to_asset_amount, total_collateral_usd


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Interaction:
    """A queued collaborator call and the call that undoes it."""
    description: str
    perform: Callable[[], Any]
    undo: Callable[[], bool]
    error: Type[TransferFailure] = TransferFailure
    # burn() reports failure by raising, not by returning False
    checks_result: bool = True


class _UnitOfWork:
    """Staged ledger changes plus the interactions one operation will issue."""

    def __init__(self, operation: OperationType, actor: UserId, staged: StagedPositions):
        self.operation = operation
        self.actor = actor
        self.staged = staged
        self.interactions: List[_Interaction] = []
        self.transaction: Optional[Transaction] = None

    def queue(self, interaction: _Interaction) -> None:
        self.interactions.append(interaction)


class StableEngine:
    """
    Collateralized-debt engine for a single pegged stable unit.

    Users lock approved collateral, mint stable units against its USD value
    while their health factor stays at or above the minimum, and can be
    liquidated by anyone once it falls below.

    Thread Safety:
        Mutating operations are serialized by one lock. A mutating call made
        from a collaborator callback on the thread that is already running
        an operation raises ReentrantCallError; other threads wait. Reads
        never take the lock and always see the last committed snapshot.
    """

    def __init__(
        self,
        asset_ids: Sequence[AssetId],
        oracles: Sequence[PriceOracle],
        stable_token: MintableBurnableAsset,
        transfers: FungibleAssetTransfer,
        config: Optional[EngineConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Create an engine.

        Args:
            asset_ids: Approved collateral assets, in valuation order
            oracles: Oracle source per asset, pairwise with asset_ids
            stable_token: Ledger of the stable unit (mint/burn/transfer_from)
            transfers: Transfer mechanics for collateral assets (pull/push)
            config: Risk parameters and identities (default: EngineConfig())
            clock: Source of transaction timestamps (default: datetime.now)

        Raises:
            ConfigurationError: If the registry or config is inconsistent
        """
        self.config = config or EngineConfig()
        self.registry = CollateralRegistry(asset_ids, oracles)
        self.stable_token = stable_token
        self.transfers = transfers
        self.transaction_log: List[Transaction] = []
        self._ledger = PositionLedger(self.registry.asset_ids)
        self._clock = clock or datetime.now
        self._lock = threading.Lock()
        # ident of the thread currently running an operation
        self._running_thread: Optional[int] = None
        self._next_sequence: int = 0

    @classmethod
    def from_pairs(
        cls,
        pairs: Sequence[Tuple[AssetId, PriceOracle]],
        stable_token: MintableBurnableAsset,
        transfers: FungibleAssetTransfer,
        config: Optional[EngineConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> StableEngine:
        pairs = list(pairs)
        return cls(
            [asset for asset, _ in pairs], [oracle for _, oracle in pairs],
            stable_token, transfers, config=config, clock=clock,
        )

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def custody_id(self) -> str:
        return self.config.custody_id

    # ========================================================================
    # POSITION OPERATIONS (Mutating)
    # ========================================================================

    def deposit(self, user: UserId, asset: AssetId, amount: int) -> Transaction:
        """
        Lock `amount` of `asset` as collateral for `user`.

        Raises:
            ZeroAmountError: If amount is not positive
            UnsupportedAssetError: If the asset is not registered
            ReservedIdentityError: If user is the engine's custody identity
            TransferFailure: If the collateral could not be pulled into custody
        """
        with self._unit_of_work(OperationType.DEPOSIT, user) as work:
            self._stage_deposit(work, user, asset, amount)
        return work.transaction

    def redeem(self, user: UserId, asset: AssetId, amount: int,
               recipient: Optional[UserId] = None) -> Transaction:
        """
        Release `amount` of `user`'s collateral to `recipient` (default: user).

        Raises:
            InsufficientCollateral: If the position holds less than amount
            InsufficientCollateralization: If the release would leave the
                position below the minimum health factor
            TransferFailure: If the payout failed
        """
        with self._unit_of_work(OperationType.REDEEM, user) as work:
            self._stage_redeem(work, user, asset, amount, recipient or user)
        return work.transaction

    def mint(self, user: UserId, amount: int) -> Transaction:
        """
        Mint `amount` stable units to `user` against their collateral.

        Raises:
            InsufficientCollateralization: If the new debt breaks the minimum
            IssuanceFailure: If the stable unit refused to mint
        """
        with self._unit_of_work(OperationType.MINT, user) as work:
            self._stage_mint(work, user, amount)
        return work.transaction

    def burn(self, user: UserId, amount: int, payer: Optional[UserId] = None) -> Transaction:
        """
        Repay `amount` of `user`'s debt with stable units held by `payer`.

        Raises:
            ExcessBurnError: If amount exceeds the outstanding debt
            TransferFailure: If the stable units could not be collected
        """
        with self._unit_of_work(OperationType.BURN, user) as work:
            self._stage_burn(work, user, amount, payer or user, check_health=True)
        return work.transaction

    def deposit_and_mint(self, user: UserId, asset: AssetId,
                         collateral_amount: int, debt_amount: int) -> Transaction:
        """Deposit collateral and mint against it in one atomic transaction."""
        with self._unit_of_work(OperationType.DEPOSIT_AND_MINT, user) as work:
            self._stage_deposit(work, user, asset, collateral_amount)
            self._stage_mint(work, user, debt_amount)
        return work.transaction

    def redeem_and_burn(self, user: UserId, asset: AssetId, collateral_amount: int,
                        debt_amount: int, recipient: Optional[UserId] = None) -> Transaction:
        """Burn debt, then redeem collateral, in one atomic transaction."""
        with self._unit_of_work(OperationType.REDEEM_AND_BURN, user) as work:
            self._stage_burn(work, user, debt_amount, user, check_health=True)
            self._stage_redeem(work, user, asset, collateral_amount, recipient or user)
        return work.transaction

    def liquidate(self, liquidator: UserId, target_user: UserId, asset: AssetId,
                  debt_to_cover: int) -> Transaction:
        """
        Repay part of an unhealthy position's debt in exchange for collateral.

        The liquidator pays `debt_to_cover` stable units and receives the
        equivalent amount of `asset` plus the liquidation bonus.

        Raises:
            ReservedIdentityError: If either party is the custody identity
            HealthFactorAlreadyOk: If the target is not below the minimum
            InsufficientCollateral: If the target holds too little of asset
            ExcessBurnError: If debt_to_cover exceeds the target's debt
            LiquidationDidNotImprovePosition: If the target would end up no
                healthier than it started
            InsufficientCollateralization: If the liquidator's own position
                is below the minimum
            TransferFailure: If the payment or the payout failed
        """
        cfg = self.config
        with self._unit_of_work(OperationType.LIQUIDATE, liquidator) as work:
            _require_positive(debt_to_cover, "debt to cover")
            self._require_party(liquidator, "liquidator")
            self._require_party(target_user, "target")
            self.registry.require_supported(asset)
            staged = work.staged

            starting = _health_factor(staged, self.registry, target_user, cfg)
            if starting >= cfg.min_health_factor:
                raise HealthFactorAlreadyOk(target_user, starting)

            base = usd_to_asset_amount(self.registry, asset, debt_to_cover)
            bonus = base * cfg.liquidation_bonus // cfg.liquidation_precision
            seized = base + bonus

            if seized:
                staged.debit_collateral(target_user, asset, seized, "liquidation seize")
            # collect the liquidator's payment before paying out collateral
            self._stage_burn(work, target_user, debt_to_cover, liquidator, check_health=False)
            if seized:
                self._queue_push(work, asset, liquidator, seized)

            ending = _health_factor(staged, self.registry, target_user, cfg)
            if ending <= starting:
                raise LiquidationDidNotImprovePosition(target_user, starting, ending)

            assert_healthy(staged, self.registry, liquidator, cfg)
        return work.transaction

    # ========================================================================
    # STAGING STEPS
    # ========================================================================

    def _stage_deposit(self, work: _UnitOfWork, user: UserId, asset: AssetId, amount: int) -> None:
        _require_positive(amount, "collateral amount")
        self._require_party(user, "user")
        self.registry.require_supported(asset)
        work.staged.credit_collateral(user, asset, amount, "deposit")

        custody = self.custody_id
        work.queue(_Interaction(
            description=f"pull {amount} {asset} {user} -> {custody}",
            perform=lambda: self.transfers.pull(asset, user, custody, amount),
            undo=lambda: self.transfers.push(asset, user, amount),
        ))

    def _stage_redeem(self, work: _UnitOfWork, user: UserId, asset: AssetId,
                      amount: int, recipient: UserId) -> None:
        _require_positive(amount, "collateral amount")
        self._require_party(user, "user")
        self._require_party(recipient, "recipient")
        self.registry.require_supported(asset)
        work.staged.debit_collateral(user, asset, amount, "redeem")
        assert_healthy(work.staged, self.registry, user, self.config)
        self._queue_push(work, asset, recipient, amount)

    def _stage_mint(self, work: _UnitOfWork, user: UserId, amount: int) -> None:
        _require_positive(amount, "mint amount")
        self._require_party(user, "user")
        work.staged.increase_debt(user, amount, "mint")
        assert_healthy(work.staged, self.registry, user, self.config)

        stable = self.stable_token
        custody = self.custody_id

        def undo() -> bool:
            if not stable.transfer_from(user, custody, amount):
                return False
            stable.burn(amount)
            return True

        work.queue(_Interaction(
            description=f"mint {amount} -> {user}",
            perform=lambda: stable.mint(user, amount),
            undo=undo,
            error=IssuanceFailure,
        ))

    def _stage_burn(self, work: _UnitOfWork, user: UserId, amount: int,
                    payer: UserId, check_health: bool) -> None:
        _require_positive(amount, "burn amount")
        self._require_party(user, "user")
        self._require_party(payer, "payer")
        work.staged.decrease_debt(user, amount, "burn")

        stable = self.stable_token
        custody = self.custody_id
        work.queue(_Interaction(
            description=f"transfer_from {amount} {payer} -> {custody}",
            perform=lambda: stable.transfer_from(payer, custody, amount),
            undo=lambda: stable.transfer_from(custody, payer, amount),
        ))
        work.queue(_Interaction(
            description=f"burn {amount}",
            perform=lambda: stable.burn(amount),
            undo=lambda: stable.mint(custody, amount),
            checks_result=False,
        ))
        if check_health:
            assert_healthy(work.staged, self.registry, user, self.config)

    def _require_party(self, identity: UserId, role: str) -> None:
        if identity == self.custody_id:
            raise ReservedIdentityError(
                f"{role} {identity!r} is the custody identity of engine {self.name}"
            )

    def _queue_push(self, work: _UnitOfWork, asset: AssetId, recipient: UserId, amount: int) -> None:
        custody = self.custody_id
        work.queue(_Interaction(
            description=f"push {amount} {asset} {custody} -> {recipient}",
            perform=lambda: self.transfers.push(asset, recipient, amount),
            undo=lambda: self.transfers.pull(asset, recipient, custody, amount),
        ))

    # ========================================================================
    # UNIT OF WORK
    # ========================================================================

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        """Hold the engine lock, rejecting re-entry from the running thread."""
        me = threading.get_ident()
        if self._running_thread == me:
            raise ReentrantCallError(
                f"engine {self.name} is already running an operation on this thread"
            )
        with self._lock:
            self._running_thread = me
            try:
                yield
            finally:
                self._running_thread = None

    @contextmanager
    def _unit_of_work(self, operation: OperationType, actor: UserId) -> Iterator[_UnitOfWork]:
        """
        Run the body's staging and checks, then interact and commit.

        Any exception from the body discards the staged changes before a
        single collaborator has been called.
        """
        try:
            with self._exclusive():
                work = _UnitOfWork(operation, actor, self._ledger.stage())
                yield work
                work.transaction = self._complete(work)
        except EngineError as exc:
            logger.warning("REJECTED %s by %s: %s: %s",
                           operation.value, actor, type(exc).__name__, exc)
            raise

    def _complete(self, work: _UnitOfWork) -> Transaction:
        issued: List[_Interaction] = []
        for interaction in work.interactions:
            try:
                result = interaction.perform()
            except Exception as exc:
                raise self._compensate(issued, interaction) from exc
            if interaction.checks_result and not result:
                raise self._compensate(issued, interaction)
            issued.append(interaction)

        self._ledger.commit(work.staged)

        sequence = self._next_sequence
        self._next_sequence += 1
        tx = Transaction(
            operation=work.operation,
            actor=work.actor,
            changes=tuple(work.staged.changes),
            interactions=tuple(i.description for i in work.interactions),
            exec_id=self._generate_exec_id(sequence),
            engine_name=self.name,
            sequence_number=sequence,
            executed_at=self._clock(),
        )
        self.transaction_log.append(tx)

        logger.info("APPLIED %s %s by %s (%d changes, %d interactions)",
                    tx.exec_id, tx.operation.value, tx.actor,
                    len(tx.changes), len(tx.interactions))
        logger.debug("%r", tx)
        return tx

    def _compensate(self, issued: List[_Interaction], failed: _Interaction) -> TransferFailure:
        """
        Undo issued interactions in reverse order.

        Returns the error to raise for `failed`: RollbackIncomplete if any
        compensation was refused or raised, failed.error otherwise.
        """
        not_undone = []
        for interaction in reversed(issued):
            try:
                undone = interaction.undo()
            except Exception as exc:
                logger.error("compensation for '%s' raised: %s", interaction.description, exc)
                not_undone.append(interaction.description)
                continue
            if not undone:
                logger.error("compensation for '%s' was refused", interaction.description)
                not_undone.append(interaction.description)

        if not_undone:
            return RollbackIncomplete(
                f"'{failed.description}' failed and {len(not_undone)} earlier "
                f"interaction(s) could not be undone: {not_undone}",
                tuple(not_undone),
            )
        return failed.error(f"'{failed.description}' failed")

    def _generate_exec_id(self, sequence: int) -> str:
        """Format: exec:{engine_name}:{sequence:012d}"""
        return f"exec:{self.name}:{sequence:012d}"

    # ========================================================================
    # READ-ONLY SURFACE
    # ========================================================================

    def snapshot(self) -> LedgerSnapshot:
        """The last committed state; safe to read from any thread."""
        return self._ledger.snapshot()

    def health_factor(self, user: UserId) -> int:
        return _health_factor(self._ledger.snapshot(), self.registry, user, self.config)

    def account_collateral_value_usd(self, user: UserId) -> int:
        return total_collateral_usd(self.registry, self._ledger.snapshot(), user)

    def account_info(self, user: UserId) -> AccountInfo:
        """Debt and collateral value, both read from the same snapshot."""
        snap = self._ledger.snapshot()
        return AccountInfo(
            total_debt=snap.get_debt(user),
            collateral_value_usd=total_collateral_usd(self.registry, snap, user),
        )

    def usd_value(self, asset: AssetId, amount: int) -> int:
        return _usd_value(self.registry, asset, amount)

    def asset_amount_from_usd(self, asset: AssetId, usd_amount: int) -> int:
        return usd_to_asset_amount(self.registry, asset, usd_amount)

    def calculate_health_factor(self, total_debt: int, collateral_value_usd: int) -> int:
        return _calculate_health_factor(total_debt, collateral_value_usd, self.config)

    def collateral_balance(self, user: UserId, asset: AssetId) -> int:
        return self._ledger.get_collateral(user, asset)

    def debt_of(self, user: UserId) -> int:
        return self._ledger.get_debt(user)

    def position(self, user: UserId) -> Position:
        return self._ledger.get_position(user)

    def list_users(self) -> List[UserId]:
        return self._ledger.list_users()

    @property
    def collateral_assets(self) -> Tuple[AssetId, ...]:
        return self.registry.asset_ids

    def oracle_for(self, asset: AssetId) -> PriceOracle:
        return self.registry.oracle_for(asset)

    @property
    def liquidation_threshold(self) -> int:
        return self.config.liquidation_threshold

    @property
    def liquidation_bonus(self) -> int:
        return self.config.liquidation_bonus

    @property
    def liquidation_precision(self) -> int:
        return self.config.liquidation_precision

    @property
    def min_health_factor(self) -> int:
        return self.config.min_health_factor

    @property
    def precision(self) -> int:
        return PRECISION

    def is_insolvent(self, user: UserId) -> bool:
        """
        True if no liquidation of `user` can improve their health factor.

        Seizing d of debt costs d * (1 + bonus) of collateral value, so once
        collateral value <= (1 + bonus) * debt every liquidation leaves the
        position at the same or a worse ratio.
        """
        snap = self._ledger.snapshot()
        debt = snap.get_debt(user)
        if debt == 0:
            return False
        collateral = total_collateral_usd(self.registry, snap, user)
        cfg = self.config
        return (collateral * cfg.liquidation_precision
                <= debt * (cfg.liquidation_precision + cfg.liquidation_bonus))

    def total_debt(self) -> int:
        return self._ledger.total_debt()

    def total_collateral(self, asset: AssetId) -> int:
        self.registry.require_supported(asset)
        return self._ledger.total_collateral(asset)

    def verify_custody(self, include_stable: bool = True) -> Dict[str, Any]:
        """
        Compare recorded positions with what the collaborators hold.

        Requires a transfer collaborator exposing balance_of(asset, wallet).
        With include_stable, the stable unit's total_supply must also equal
        the total recorded debt.

        Returns:
            Dict with 'valid', 'totals' and 'discrepancies' (see
            PositionLedger.verify_conservation)
        """
        balance_of = getattr(self.transfers, 'balance_of', None)
        if balance_of is None:
            raise TypeError(
                f"{type(self.transfers).__name__} does not expose balance_of()"
            )
        with self._exclusive():
            custody = {
                asset: balance_of(asset, self.custody_id)
                for asset in self.registry.asset_ids
            }
            supply = None
            if include_stable:
                supply = getattr(self.stable_token, 'total_supply', None)
                if callable(supply):
                    supply = supply()
            result = self._ledger.verify_conservation(custody, supply)

        if not result['valid']:
            logger.warning("custody mismatch on %s: %s", self.name, result['discrepancies'])
        return result

    def __repr__(self) -> str:
        return (f"StableEngine({self.name}, assets={list(self.registry.asset_ids)}, "
                f"positions={len(self._ledger.list_users())}, txs={len(self.transaction_log)})")
