"""
assets.py - In-memory reference collaborators

Simulation-grade implementations of the two external ledgers the engine
talks to:

- TokenLedger: multi-asset balances with pull/push transfers
  (FungibleAssetTransfer) for collateral assets
- StableToken: the pegged stable unit (MintableBurnableAsset)

Both keep integer balances per wallet, refuse transfers that would
overdraw a wallet, support frozen wallets, and can call a per-wallet
receive hook after crediting it. A hook that raises reverts the transfer
and propagates, the way a reverting token callback would.
"""

from __future__ import annotations
from collections import defaultdict
from typing import Callable, Dict, Optional, Set

from .core import AssetId, UserId, DEFAULT_CUSTODY_ID


# hook(asset, source, dest, amount)
ReceiveHook = Callable[[str, UserId, UserId, int], None]


def _check_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise TypeError(f"amount must be int, got {type(amount).__name__}")
    if amount <= 0:
        raise ValueError(f"amount must be positive, got {amount}")


class TokenLedger:
    """
    Balances of several fungible assets across wallets.

    Example:
        tokens = TokenLedger(custody_id="engine")
        tokens.mint_to("alice", "WETH", 10 * 10**18)
        tokens.pull("WETH", "alice", "engine", 10**18)   # True
        tokens.push("WETH", "bob", 10**18)               # True, from custody
    """

    def __init__(self, custody_id: str = DEFAULT_CUSTODY_ID):
        self.custody_id = custody_id
        self.balances: Dict[UserId, Dict[AssetId, int]] = defaultdict(lambda: defaultdict(int))
        self.frozen_wallets: Set[UserId] = set()
        self.hooks: Dict[UserId, ReceiveHook] = {}

    def balance_of(self, asset: AssetId, wallet: UserId) -> int:
        return self.balances.get(wallet, {}).get(asset, 0)

    def total_supply(self, asset: AssetId) -> int:
        return sum(self.balances[w].get(asset, 0) for w in sorted(self.balances))

    def mint_to(self, wallet: UserId, asset: AssetId, amount: int) -> None:
        """Credit a wallet out of thin air (faucet / initial funding)."""
        _check_amount(amount)
        self.balances[wallet][asset] += amount

    def freeze(self, wallet: UserId) -> None:
        """Reject every transfer into or out of `wallet`."""
        self.frozen_wallets.add(wallet)

    def unfreeze(self, wallet: UserId) -> None:
        self.frozen_wallets.discard(wallet)

    def set_hook(self, wallet: UserId, hook: Optional[ReceiveHook]) -> None:
        if hook is None:
            self.hooks.pop(wallet, None)
        else:
            self.hooks[wallet] = hook

    def transfer(self, asset: AssetId, source: UserId, dest: UserId, amount: int) -> bool:
        """
        Move `amount` of `asset` from `source` to `dest`.

        Returns False if either wallet is frozen or the source is short.
        """
        _check_amount(amount)
        if source in self.frozen_wallets or dest in self.frozen_wallets:
            return False
        if self.balance_of(asset, source) < amount:
            return False

        self.balances[source][asset] -= amount
        self.balances[dest][asset] += amount

        hook = self.hooks.get(dest)
        if hook is not None:
            try:
                hook(asset, source, dest, amount)
            except Exception:
                self.balances[dest][asset] -= amount
                self.balances[source][asset] += amount
                raise
        return True

    # FungibleAssetTransfer

    def pull(self, asset: AssetId, source: UserId, dest: UserId, amount: int) -> bool:
        return self.transfer(asset, source, dest, amount)

    def push(self, asset: AssetId, dest: UserId, amount: int) -> bool:
        return self.transfer(asset, self.custody_id, dest, amount)

    def __repr__(self) -> str:
        return f"TokenLedger({len(self.balances)} wallets, custody={self.custody_id})"


class StableToken:
    """
    The pegged stable unit.

    The minter is the engine's custody identity. mint() does not check who
    is calling; access control belongs to whoever holds the token. burn()
    destroys units held by the minter. An optional max_supply makes mint()
    return False once the cap would be exceeded.
    """

    def __init__(self, symbol: str = "USDX", minter: str = DEFAULT_CUSTODY_ID,
                 max_supply: Optional[int] = None):
        self.symbol = symbol
        self.minter = minter
        self.max_supply = max_supply
        self.balances: Dict[UserId, int] = defaultdict(int)
        self.total_supply = 0
        self.frozen_wallets: Set[UserId] = set()
        self.hooks: Dict[UserId, ReceiveHook] = {}

    def balance_of(self, wallet: UserId) -> int:
        return self.balances.get(wallet, 0)

    def freeze(self, wallet: UserId) -> None:
        self.frozen_wallets.add(wallet)

    def unfreeze(self, wallet: UserId) -> None:
        self.frozen_wallets.discard(wallet)

    def set_hook(self, wallet: UserId, hook: Optional[ReceiveHook]) -> None:
        if hook is None:
            self.hooks.pop(wallet, None)
        else:
            self.hooks[wallet] = hook

    # MintableBurnableAsset

    def mint(self, to: UserId, amount: int) -> bool:
        _check_amount(amount)
        if to in self.frozen_wallets:
            return False
        if self.max_supply is not None and self.total_supply + amount > self.max_supply:
            return False
        self.balances[to] += amount
        self.total_supply += amount
        hook = self.hooks.get(to)
        if hook is not None:
            try:
                hook(self.symbol, self.minter, to, amount)
            except Exception:
                self.balances[to] -= amount
                self.total_supply -= amount
                raise
        return True

    def burn(self, amount: int) -> None:
        _check_amount(amount)
        held = self.balances.get(self.minter, 0)
        if held < amount:
            raise ValueError(f"{self.minter} holds {held} {self.symbol}, cannot burn {amount}")
        self.balances[self.minter] = held - amount
        self.total_supply -= amount

    def transfer_from(self, source: UserId, dest: UserId, amount: int) -> bool:
        return self.transfer(source, dest, amount)

    def transfer(self, source: UserId, dest: UserId, amount: int) -> bool:
        """Move units between wallets; False if frozen or short."""
        _check_amount(amount)
        if source in self.frozen_wallets or dest in self.frozen_wallets:
            return False
        if self.balances.get(source, 0) < amount:
            return False
        self.balances[source] -= amount
        self.balances[dest] += amount
        hook = self.hooks.get(dest)
        if hook is not None:
            try:
                hook(self.symbol, source, dest, amount)
            except Exception:
                self.balances[dest] -= amount
                self.balances[source] += amount
                raise
        return True

    def __repr__(self) -> str:
        return f"StableToken({self.symbol}, supply={self.total_supply})"
