"""
Solvency Conformance Tests

INVARIANT: A committed operation never leaves its actor below the minimum.

    ∀ committed O ∈ {redeem, mint, burn, deposit_and_mint, redeem_and_burn}:
        debt(actor) > 0 ⟹ health_factor(actor) ≥ min_health_factor

    ∀ committed liquidation L of target by liquidator:
        health_factor(target) after L > health_factor(target) before L
        health_factor(liquidator) ≥ min_health_factor

With prices held fixed, no operation sequence ever produces an indebted
position below the minimum. Valuation and the health factor are monotone
in price, amount, collateral and debt.
"""

from hypothesis import given, settings, assume
from hypothesis import strategies as st

from cdp_ledger import (
    CollateralRegistry, StaticPriceOracle, OperationType, EngineError,
    calculate_health_factor, usd_value, to_wad,
)

from tests.fakes import ACTIONS, USERS, build_engine, run_operation


@st.composite
def engine_operation(draw):
    return (
        draw(st.sampled_from(ACTIONS)),
        draw(st.sampled_from(USERS)),
        draw(st.sampled_from(['WETH', 'WBTC'])),
        draw(st.integers(min_value=1, max_value=5)),
        draw(st.sampled_from(USERS)),
    )


wad_amounts = st.integers(min_value=0, max_value=10 ** 30)


class TestHealthInvariant:
    """Property-based health factor invariants over operation sequences."""

    @given(st.lists(engine_operation(), min_size=1, max_size=30))
    @settings(max_examples=80, deadline=None)
    def test_fixed_prices_keep_everyone_healthy(self, sequence):
        """
        PROPERTY: Without price moves, every indebted position is at or
        above the minimum after every operation.
        """
        engine, oracle, tokens, stable = build_engine()
        for step in sequence:
            run_operation(engine, *step)
            for user in engine.list_users():
                if engine.debt_of(user):
                    assert engine.health_factor(user) >= engine.min_health_factor

    @given(
        st.lists(st.tuples(engine_operation(), st.integers(min_value=200, max_value=2000)),
                 min_size=1, max_size=25)
    )
    @settings(max_examples=80, deadline=None)
    def test_committed_operations_respect_minimum(self, sequence):
        """
        PROPERTY: Under moving prices, a committed operation leaves its
        actor healthy; a committed liquidation strictly improves its target.
        """
        engine, oracle, tokens, stable = build_engine()
        for step, price in sequence:
            oracle.update_price('WETH', price)
            action, user, asset, units, other = step
            starting = engine.health_factor(other)

            tx = run_operation(engine, *step)
            if tx is None:
                continue

            if tx.operation is OperationType.LIQUIDATE:
                assert engine.health_factor(other) > starting
                assert engine.health_factor(user) >= engine.min_health_factor
            elif tx.operation is not OperationType.DEPOSIT:
                assert engine.health_factor(user) >= engine.min_health_factor


class TestLiquidationProperties:
    """Property-based liquidation tests."""

    @given(
        price=st.integers(min_value=100, max_value=999),
        cover=st.integers(min_value=1, max_value=500),
    )
    @settings(max_examples=100, deadline=None)
    def test_liquidation_commits_only_if_it_helps(self, price, cover):
        """
        PROPERTY: Liquidating an unhealthy position either commits with a
        strictly better health factor, or changes nothing.
        """
        engine, oracle, tokens, stable = build_engine()
        engine.deposit_and_mint("alice", "WETH", to_wad(1), to_wad(500))
        engine.deposit_and_mint("bob", "WBTC", to_wad(1), to_wad(1000))
        oracle.update_price('WETH', price)

        starting = engine.health_factor("alice")
        position = engine.position("alice")
        try:
            tx = engine.liquidate("bob", "alice", "WETH", to_wad(cover))
        except EngineError:
            tx = None

        if tx is None:
            assert engine.position("alice") == position
        else:
            assert engine.health_factor("alice") > starting

    @given(price=st.integers(min_value=1000, max_value=5000))
    @settings(max_examples=30, deadline=None)
    def test_healthy_positions_cannot_be_liquidated(self, price):
        """
        PROPERTY: Positions at or above the minimum are never liquidated.
        """
        engine, oracle, tokens, stable = build_engine()
        engine.deposit_and_mint("alice", "WETH", to_wad(1), to_wad(500))
        engine.deposit_and_mint("bob", "WBTC", to_wad(1), to_wad(1000))
        oracle.update_price('WETH', price)
        assert run_operation(engine, "liquidate", "bob", "WETH", 1, "alice") is None


class TestMonotonicity:
    """Valuation and health factor are monotone in their inputs."""

    @given(wad_amounts, wad_amounts, wad_amounts)
    def test_health_factor_monotone_in_collateral(self, debt, c1, c2):
        assume(debt > 0)
        low, high = sorted((c1, c2))
        assert calculate_health_factor(debt, low) <= calculate_health_factor(debt, high)

    @given(wad_amounts, wad_amounts, wad_amounts)
    def test_health_factor_antitone_in_debt(self, collateral, d1, d2):
        assume(d1 > 0 and d2 > 0)
        low, high = sorted((d1, d2))
        assert calculate_health_factor(low, collateral) >= calculate_health_factor(high, collateral)

    @given(st.integers(min_value=1, max_value=10 ** 6), st.integers(min_value=1, max_value=10 ** 6),
           wad_amounts)
    def test_usd_value_monotone_in_price(self, p1, p2, amount):
        low, high = sorted((p1, p2))
        registry_low = CollateralRegistry(['X'], [StaticPriceOracle({'X': low})])
        registry_high = CollateralRegistry(['X'], [StaticPriceOracle({'X': high})])
        assert usd_value(registry_low, 'X', amount) <= usd_value(registry_high, 'X', amount)

    @given(wad_amounts, wad_amounts)
    def test_usd_value_monotone_in_amount(self, a1, a2):
        low, high = sorted((a1, a2))
        registry = CollateralRegistry(['X'], [StaticPriceOracle({'X': "1234.5678"})])
        assert usd_value(registry, 'X', low) <= usd_value(registry, 'X', high)


class TestRoundTrip:
    """Deposit followed by redeem restores everything."""

    @given(
        asset=st.sampled_from(['WETH', 'WBTC']),
        amount=st.integers(min_value=1, max_value=to_wad(10)),
    )
    @settings(max_examples=50, deadline=None)
    def test_deposit_then_redeem(self, asset, amount):
        engine, oracle, tokens, stable = build_engine()
        wallet = tokens.balance_of(asset, "alice")

        engine.deposit("alice", asset, amount)
        engine.redeem("alice", asset, amount)

        assert tokens.balance_of(asset, "alice") == wallet
        assert tokens.balance_of(asset, engine.custody_id) == 0
        assert engine.position("alice").is_empty()
