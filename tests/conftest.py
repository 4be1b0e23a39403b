"""
conftest.py - Shared pytest fixtures for engine tests

Provides common fixtures used across unit and functional tests:
- A funded two-asset engine (WETH at $1000, WBTC at $20000)
- The same engine over scripted collaborators for failure injection
- A single-asset engine matching the reference liquidation scenarios
"""

import pytest

from cdp_ledger import EngineConfig, to_wad

from tests.fakes import build_engine


@pytest.fixture
def setup():
    """(engine, oracle, tokens, stable) with every user holding 100 WETH and 10 WBTC."""
    return build_engine()


@pytest.fixture
def engine(setup):
    return setup[0]


@pytest.fixture
def oracle(setup):
    return setup[1]


@pytest.fixture
def tokens(setup):
    return setup[2]


@pytest.fixture
def stable(setup):
    return setup[3]


@pytest.fixture
def scripted():
    """(engine, oracle, tokens, stable) over ScriptedTokenLedger/ScriptedStableToken."""
    return build_engine(scripted=True)


@pytest.fixture
def alice_at_minimum(setup):
    """
    alice: 1 WETH at $1000 with 500 minted => health factor exactly 1.0.
    bob: 10 WETH with 1000 minted, enough stable units to liquidate.
    """
    engine, oracle, tokens, stable = setup
    engine.deposit_and_mint("alice", "WETH", to_wad(1), to_wad(500))
    engine.deposit_and_mint("bob", "WETH", to_wad(10), to_wad(1000))
    return setup


@pytest.fixture
def zero_bonus_config():
    return EngineConfig(liquidation_bonus=0)
