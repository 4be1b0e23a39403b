"""
Concurrency Conformance Tests

INVARIANT: Mutating operations are serialized.

    ∀ operations O1, O2 on one engine:
        O1 and O2 never interleave; the result equals some serial order

INVARIANT: Readers never observe a partially applied operation.

    ∀ read R concurrent with operation O:
        R sees the state entirely before O or entirely after O

INVARIANT: An operation cannot be re-entered from inside one of its own
collaborator calls. The nested call fails with ReentrantCallError and the
outer operation is rolled back.
"""

import threading

import pytest

from cdp_ledger import (
    TransferFailure, ReentrantCallError, PRECISION, to_wad,
)

from tests.fakes import build_engine, state_of


JOIN_TIMEOUT = 10


class TestSerializedWriters:
    """Concurrent writers produce the same totals as a serial run."""

    def test_threaded_deposits(self):
        engine, oracle, tokens, stable = build_engine()
        workers = [f"user{i}" for i in range(8)]
        for user in workers:
            tokens.mint_to(user, "WETH", to_wad(1))

        def deposit_many(user):
            for _ in range(25):
                engine.deposit(user, "WETH", 10 ** 15)

        threads = [threading.Thread(target=deposit_many, args=(u,)) for u in workers]
        for t in threads:
            t.start()
        for t in threads:
            t.join(JOIN_TIMEOUT)

        assert engine.total_collateral("WETH") == 8 * 25 * 10 ** 15
        for user in workers:
            assert engine.collateral_balance(user, "WETH") == 25 * 10 ** 15
        assert len(engine.transaction_log) == 200
        sequences = sorted(tx.sequence_number for tx in engine.transaction_log)
        assert sequences == list(range(200))
        assert engine.verify_custody()['valid']

    def test_second_writer_waits_for_first(self):
        engine, oracle, tokens, stable = build_engine()
        entered = threading.Event()
        release = threading.Event()
        pulls = []

        def slow_custody(asset, source, dest, amount):
            pulls.append(source)
            if len(pulls) == 1:
                entered.set()
                release.wait(JOIN_TIMEOUT)

        tokens.set_hook(engine.custody_id, slow_custody)

        first = threading.Thread(target=engine.deposit, args=("alice", "WETH", to_wad(1)))
        second = threading.Thread(target=engine.deposit, args=("bob", "WETH", to_wad(1)))
        first.start()
        assert entered.wait(JOIN_TIMEOUT)

        second.start()
        second.join(0.2)
        assert second.is_alive()
        assert pulls == ["alice"]

        release.set()
        first.join(JOIN_TIMEOUT)
        second.join(JOIN_TIMEOUT)

        assert pulls == ["alice", "bob"]
        assert engine.total_collateral("WETH") == to_wad(2)


class TestConsistentReaders:
    """Readers see whole operations, never half of one."""

    def test_account_info_never_torn(self):
        engine, oracle, tokens, stable = build_engine()
        stop = threading.Event()
        torn = []

        def read_loop():
            while not stop.is_set():
                info = engine.account_info("alice")
                # every step adds 1 WETH ($1000) and 500 of debt together
                if info.collateral_value_usd != 2 * info.total_debt:
                    torn.append(info)

        readers = [threading.Thread(target=read_loop) for _ in range(4)]
        for t in readers:
            t.start()
        try:
            for _ in range(50):
                engine.deposit_and_mint("alice", "WETH", to_wad(1), to_wad(500))
        finally:
            stop.set()
            for t in readers:
                t.join(JOIN_TIMEOUT)

        assert torn == []
        assert engine.debt_of("alice") == to_wad(25000)

    def test_snapshot_is_stable_across_later_writes(self):
        engine, oracle, tokens, stable = build_engine()
        engine.deposit("alice", "WETH", to_wad(1))
        snap = engine.snapshot()
        engine.deposit("alice", "WETH", to_wad(1))
        assert snap.get_collateral("alice", "WETH") == to_wad(1)
        assert engine.collateral_balance("alice", "WETH") == to_wad(2)


class TestReentrancy:
    """Collaborator callbacks cannot re-enter a running operation."""

    def test_nested_operation_rolls_back_outer(self, setup):
        engine, oracle, tokens, stable = setup
        before = state_of(engine, tokens, stable)
        nested = []

        def reenter(asset, source, dest, amount):
            nested.append(source)
            engine.deposit(source, asset, amount)

        tokens.set_hook(engine.custody_id, reenter)

        with pytest.raises(TransferFailure) as exc_info:
            engine.deposit("alice", "WETH", to_wad(1))

        assert isinstance(exc_info.value.__cause__, ReentrantCallError)
        assert nested == ["alice"]
        assert state_of(engine, tokens, stable) == before
        assert engine.transaction_log == []

    def test_engine_usable_after_rejected_reentry(self, setup):
        engine, oracle, tokens, stable = setup

        def reenter(asset, source, dest, amount):
            engine.mint(source, 1)

        tokens.set_hook(engine.custody_id, reenter)
        with pytest.raises(TransferFailure):
            engine.deposit("alice", "WETH", to_wad(1))

        tokens.set_hook(engine.custody_id, None)
        tx = engine.deposit("alice", "WETH", to_wad(1))
        assert tx.sequence_number == 0

    def test_reads_allowed_inside_callbacks(self, setup):
        engine, oracle, tokens, stable = setup
        engine.deposit_and_mint("alice", "WETH", to_wad(2), to_wad(500))
        seen = []

        def observe(asset, source, dest, amount):
            # the redeem is not committed yet
            seen.append((engine.collateral_balance("alice", "WETH"),
                         engine.health_factor("alice")))

        tokens.set_hook("alice", observe)
        engine.redeem("alice", "WETH", to_wad(1))

        assert seen == [(to_wad(2), 2 * PRECISION)]
        assert engine.collateral_balance("alice", "WETH") == to_wad(1)
