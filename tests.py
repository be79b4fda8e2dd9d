#!/usr/bin/env python3
"""
GEMMINES - Unit & Integration Test Suite

Run: python tests.py
     python tests.py -v                  # verbose
     python tests.py TestGameEngine      # run specific class

Test categories:
  TestMultiplierTable  - ladder values, rounding, clamping, lookups
  TestHazardGenerator  - seed parsing, commitment, deterministic layout
  TestGameRecord       - public view hides the layout while active
  TestGameEngine       - start / reveal / cash out / forfeit / abandon
  TestSettlement       - exact payouts, exactly-once, re-entrancy, rollback,
                         two engines on one database, refund on failed start
  TestEventsAndQueries - event log, subscribers, stats, verification
  TestAuditCli         - table / verify / game commands
"""

import hashlib
import os
import shutil
import sqlite3
import sys
import tempfile
import unittest
from pathlib import Path

# ── Ensure project root is on sys.path ──
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from config.settings import GameConfig
from game_engine import GameEngine, GameRecord, GameState, GameStore, MultiplierTable
from game_engine import events as ev
from game_engine.errors import (
    AbandonTooEarly, CellAlreadyRevealed, CellOutOfRange, ClaimSettlementDisabled,
    GameNotActive, GameNotFound, InsufficientAuthorization, InsufficientFunds,
    InvalidClaim, InvalidConfiguration, NothingToCashOut, NotOwner, SeedNotRevealed,
    StaleRecord,
)
from game_engine.hazards import (
    commit, derive, derive_ordered, parse_seed, verify_commitment, verify_layout,
)
from game_engine.multipliers import build_ladder
from tools.ledger import SQLiteLedger

CREDIT = GameConfig.CREDIT
SCALE = GameConfig.MULTIPLIER_SCALE
ENGINE_SEED = bytes(range(32))
PLAYER_SEED = b"player-seed-0001"


class _Config(GameConfig):
    """Pinned values so a local .env cannot change test outcomes."""
    ABANDON_TIMEOUT_S = 3600
    ALLOW_CLAIM_SETTLEMENT = True


class _NoClaimConfig(_Config):
    ALLOW_CLAIM_SETTLEMENT = False


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


def _table(hazard_counts=range(1, 11)):
    return MultiplierTable(hazard_counts=hazard_counts, house_edge="0.95")


class EngineTestCase(unittest.TestCase):
    """Engine over temp SQLite files, with alice funded and approved."""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.store = GameStore(os.path.join(self.tmpdir, "mines.db"))
        self.ledger = SQLiteLedger(os.path.join(self.tmpdir, "ledger.db"))
        self.clock = FakeClock()
        self.engine = self.make_engine()
        self.ledger.mint("alice", 20_000 * CREDIT)
        self.ledger.approve("alice", 20_000 * CREDIT)

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def make_engine(self, ledger=None, config=_Config, table=None, store=None):
        return GameEngine(
            store or self.store, ledger or self.ledger,
            table=table or _table(), clock=self.clock, config=config,
            seed_source=lambda: ENGINE_SEED,
        )

    def start(self, stake=100 * CREDIT, hazards=3, player="alice"):
        return self.engine.start(player, stake, hazards, PLAYER_SEED)

    def layout(self, hazards=3):
        return derive(ENGINE_SEED, PLAYER_SEED, hazards, GameConfig.GRID_SIZE)

    def safe_cells(self, hazards=3):
        return sorted(set(range(GameConfig.GRID_SIZE)) - self.layout(hazards))

    def credits_to(self, player):
        return [t for t in self.ledger.transactions(player) if t["kind"] == "credit"]


# ============================================================
# Multiplier Table
# ============================================================

class TestMultiplierTable(unittest.TestCase):

    def setUp(self):
        self.table = _table()

    def test_identity_at_zero(self):
        for h in range(1, 11):
            self.assertEqual(self.table.multiplier(h, 0), SCALE)

    def test_ladder_length(self):
        for h in range(1, 11):
            self.assertEqual(len(self.table.ladder(h)), 25 - h + 1)

    def test_three_hazards_first_reveal(self):
        """25/22 * 0.95 = 1.0795... rounds to 1.08x."""
        self.assertEqual(self.table.multiplier(3, 1), 108 * SCALE // 100)

    def test_three_hazards_second_reveal(self):
        self.assertEqual(self.table.multiplier(3, 2), 123 * SCALE // 100)

    def test_three_hazards_top(self):
        """Clearing the board: C(25,3) * 0.95 = 2185x."""
        self.assertEqual(self.table.max_multiplier(3), 2185 * SCALE)

    def test_non_decreasing(self):
        for h in range(1, 11):
            ladder = self.table.ladder(h)
            for a, b in zip(ladder, ladder[1:]):
                self.assertLessEqual(a, b, f"ladder for {h} hazards decreases")

    def test_single_hazard_clamped_to_identity(self):
        """0.95 * 25/24 < 1, so the first step is held at 1.00x."""
        self.assertEqual(self.table.multiplier(1, 1), SCALE)
        self.assertEqual(self.table.multiplier(1, 2), 103 * SCALE // 100)

    def test_entries_are_whole_hundredths(self):
        for h in range(1, 11):
            for m in self.table.ladder(h):
                self.assertEqual(m % (SCALE // 100), 0)

    def test_unpopulated_count_rejected(self):
        table = _table([3, 5])
        self.assertTrue(table.supports(5))
        self.assertFalse(table.supports(4))
        with self.assertRaises(InvalidConfiguration):
            table.multiplier(4, 1)

    def test_safe_found_out_of_range(self):
        with self.assertRaises(InvalidConfiguration):
            self.table.multiplier(3, 23)
        with self.assertRaises(InvalidConfiguration):
            self.table.multiplier(3, -1)

    def test_to_display(self):
        self.assertEqual(str(self.table.to_display(self.table.multiplier(3, 1))), "1.08")

    def test_bad_edge(self):
        with self.assertRaises(ValueError):
            MultiplierTable(hazard_counts=[3], house_edge="1.5")
        with self.assertRaises(ValueError):
            MultiplierTable(hazard_counts=[3], house_edge="0")

    def test_build_ladder_rejects_full_grid(self):
        from fractions import Fraction
        with self.assertRaises(ValueError):
            build_ladder(25, 25, Fraction(1), SCALE)
        with self.assertRaises(ValueError):
            build_ladder(25, 0, Fraction(1), SCALE)


# ============================================================
# Seed & Hazard Generator
# ============================================================

class TestHazardGenerator(unittest.TestCase):

    def test_count_distinct_in_range(self):
        for h in range(0, 25):
            positions = derive(ENGINE_SEED, PLAYER_SEED, h, 25)
            self.assertEqual(len(positions), h)
            self.assertTrue(all(0 <= p < 25 for p in positions))

    def test_deterministic(self):
        a = derive(ENGINE_SEED, PLAYER_SEED, 5, 25)
        b = derive(ENGINE_SEED, PLAYER_SEED, 5, 25)
        self.assertEqual(a, b)

    def test_first_draw_rehashes_combined_seed(self):
        combined = hashlib.sha256(ENGINE_SEED + PLAYER_SEED).digest()
        first = hashlib.sha256(combined).digest()
        expected = int.from_bytes(first, "big") % 25
        self.assertEqual(derive_ordered(ENGINE_SEED, PLAYER_SEED, 3, 25)[0], expected)

    def test_player_seed_matters(self):
        layouts = {derive(ENGINE_SEED, bytes([i]) * 16, 5, 25) for i in range(20)}
        self.assertGreater(len(layouts), 1)

    def test_full_grid_rejected(self):
        with self.assertRaises(ValueError):
            derive(ENGINE_SEED, PLAYER_SEED, 25, 25)
        with self.assertRaises(ValueError):
            derive(ENGINE_SEED, PLAYER_SEED, -1, 25)

    def test_commitment(self):
        self.assertEqual(commit(ENGINE_SEED), hashlib.sha256(ENGINE_SEED).hexdigest())
        self.assertTrue(verify_commitment(ENGINE_SEED, commit(ENGINE_SEED).upper()))
        self.assertFalse(verify_commitment(b"\x00" * 32, commit(ENGINE_SEED)))

    def test_verify_layout(self):
        positions = derive(ENGINE_SEED, PLAYER_SEED, 4, 25)
        self.assertTrue(verify_layout(ENGINE_SEED, PLAYER_SEED, 4, 25, sorted(positions)))
        other = sorted(set(range(25)) - positions)[:4]
        self.assertFalse(verify_layout(ENGINE_SEED, PLAYER_SEED, 4, 25, other))

    def test_parse_seed(self):
        self.assertEqual(parse_seed("0xdeadbeef"), bytes.fromhex("deadbeef"))
        self.assertEqual(parse_seed("DEADBEEF"), bytes.fromhex("deadbeef"))
        self.assertEqual(parse_seed(b"raw"), b"raw")
        with self.assertRaises(ValueError):
            parse_seed("not-hex")
        with self.assertRaises(TypeError):
            parse_seed(1234)


# ============================================================
# Game Record
# ============================================================

class TestGameRecord(unittest.TestCase):

    def _record(self, **kw):
        fields = dict(
            player="alice", stake=5 * CREDIT, hazard_count=3, grid_size=25,
            hazard_positions=frozenset([1, 2, 3]), engine_seed=ENGINE_SEED,
            player_seed=PLAYER_SEED, engine_seed_hash=commit(ENGINE_SEED),
            current_multiplier=SCALE, created_at=1.0, id=7,
        )
        fields.update(kw)
        return GameRecord(**fields)

    def test_public_view_hides_layout_while_active(self):
        view = self._record().public_view()
        self.assertNotIn("hazard_positions", view)
        self.assertNotIn("engine_seed", view)
        self.assertEqual(view["engine_seed_hash"], commit(ENGINE_SEED))
        self.assertEqual(view["state"], "active")

    def test_public_view_discloses_when_terminal(self):
        view = self._record(state=GameState.COMPLETED).public_view()
        self.assertEqual(view["hazard_positions"], [1, 2, 3])
        self.assertEqual(view["engine_seed"], ENGINE_SEED.hex())

    def test_row_keeps_large_amounts(self):
        rec = self._record(stake=10_000 * CREDIT, payout=21_850_000 * CREDIT,
                           state=GameState.COMPLETED, won=True, revealed=[4, 9])
        back = GameRecord.from_row(rec.to_row())
        self.assertEqual(back, rec)

    def test_snapshot_is_independent(self):
        rec = self._record(revealed=[4])
        snap = rec.snapshot()
        rec.revealed.append(5)
        self.assertEqual(snap.revealed, [4])

    def test_terminal_states(self):
        self.assertFalse(GameState.ACTIVE.is_terminal)
        self.assertTrue(GameState.COMPLETED.is_terminal)
        self.assertTrue(GameState.ABANDONED.is_terminal)


# ============================================================
# Game Engine
# ============================================================

class TestGameEngine(EngineTestCase):

    def test_start_escrows_stake(self):
        gid = self.start()
        game = self.engine.get_game(gid)
        self.assertEqual(game["state"], "active")
        self.assertEqual(game["safe_found"], 0)
        self.assertEqual(game["current_multiplier"], SCALE)
        self.assertEqual(game["engine_seed_hash"], commit(ENGINE_SEED))
        self.assertEqual(self.ledger.balance_of("alice"), 19_900 * CREDIT)
        self.assertEqual(self.ledger.escrow_balance(), 100 * CREDIT)

    def test_reveal_safe_then_cash_out(self):
        gid = self.start()
        result = self.engine.reveal(gid, self.safe_cells()[0], "alice")
        self.assertFalse(result["is_hazard"])
        self.assertEqual(result["safe_found"], 1)
        self.assertEqual(result["current_multiplier"], 108 * SCALE // 100)

        payout = self.engine.cash_out(gid, "alice")
        self.assertEqual(payout, 108 * CREDIT)
        self.assertEqual(self.ledger.balance_of("alice"), (19_900 + 108) * CREDIT)
        game = self.engine.get_game(gid)
        self.assertEqual(game["state"], "completed")
        self.assertTrue(game["won"])
        self.assertEqual(game["payout"], 108 * CREDIT)

    def test_reveal_hazard_keeps_stake(self):
        gid = self.start()
        hazard = min(self.layout())
        result = self.engine.reveal(gid, hazard, "alice")
        self.assertTrue(result["is_hazard"])
        self.assertEqual(result["state"], "completed")
        self.assertEqual(result["payout"], 0)

        game = self.engine.get_game(gid)
        self.assertFalse(game["won"])
        self.assertEqual(game["payout"], 0)
        self.assertEqual(game["hazard_positions"], sorted(self.layout()))
        self.assertEqual(self.ledger.escrow_balance(), 100 * CREDIT)
        self.assertEqual(self.ledger.balance_of("alice"), 19_900 * CREDIT)
        self.assertEqual(self.credits_to("alice"), [])

    def test_too_many_hazards_no_debit(self):
        with self.assertRaises(InvalidConfiguration):
            self.start(hazards=11)
        with self.assertRaises(InvalidConfiguration):
            self.start(hazards=0)
        self.assertEqual(self.ledger.balance_of("alice"), 20_000 * CREDIT)
        self.assertEqual(self.ledger.escrow_balance(), 0)
        kinds = [t["kind"] for t in self.ledger.transactions("alice")]
        self.assertNotIn("debit", kinds)

    def test_untabulated_hazard_count(self):
        self.engine = self.make_engine(table=_table([3, 5]))
        with self.assertRaises(InvalidConfiguration):
            self.start(hazards=4)
        self.assertEqual(self.ledger.escrow_balance(), 0)

    def test_stake_bounds(self):
        with self.assertRaises(InvalidConfiguration):
            self.start(stake=CREDIT - 1)
        with self.assertRaises(InvalidConfiguration):
            self.start(stake=10_000 * CREDIT + 1)
        with self.assertRaises(InvalidConfiguration):
            self.start(stake=1.5)
        self.start(stake=CREDIT)
        self.start(stake=10_000 * CREDIT)

    def test_bad_player_seed_no_debit(self):
        with self.assertRaises(InvalidConfiguration):
            self.engine.start("alice", 100 * CREDIT, 3, "zz")
        self.assertEqual(self.ledger.escrow_balance(), 0)

    def test_player_seed_generated_when_missing(self):
        gid = self.engine.start("alice", 100 * CREDIT, 3)
        self.assertEqual(len(self.engine.get_game(gid)["player_seed"]), 32)

    def test_insufficient_funds(self):
        with self.assertRaises(InsufficientFunds):
            self.start(player="bob")
        self.assertEqual(self.engine.get_player_stats("bob")["total_games"], 0)

    def test_insufficient_authorization(self):
        self.ledger.mint("bob", 500 * CREDIT)
        self.ledger.approve("bob", 50 * CREDIT)
        with self.assertRaises(InsufficientAuthorization):
            self.start(player="bob")
        self.assertEqual(self.ledger.balance_of("bob"), 500 * CREDIT)

    def test_reveal_errors_do_not_mutate(self):
        gid = self.start()
        safe = self.safe_cells()[0]
        self.engine.reveal(gid, safe, "alice")
        before = self.engine.get_game(gid)

        with self.assertRaises(NotOwner):
            self.engine.reveal(gid, self.safe_cells()[1], "mallory")
        with self.assertRaises(CellOutOfRange):
            self.engine.reveal(gid, 25, "alice")
        with self.assertRaises(CellOutOfRange):
            self.engine.reveal(gid, -1, "alice")
        with self.assertRaises(CellAlreadyRevealed):
            self.engine.reveal(gid, safe, "alice")
        self.assertEqual(self.engine.get_game(gid), before)

    def test_unknown_game(self):
        with self.assertRaises(GameNotFound):
            self.engine.reveal(999, 0, "alice")
        with self.assertRaises(GameNotFound):
            self.engine.get_game(999)

    def test_cash_out_requires_progress(self):
        gid = self.start()
        with self.assertRaises(NothingToCashOut):
            self.engine.cash_out(gid, "alice")
        self.assertEqual(self.engine.get_game(gid)["state"], "active")

    def test_cash_out_not_owner(self):
        gid = self.start()
        self.engine.reveal(gid, self.safe_cells()[0], "alice")
        with self.assertRaises(NotOwner):
            self.engine.cash_out(gid, "mallory")

    def test_forfeit(self):
        gid = self.start()
        self.engine.reveal(gid, self.safe_cells()[0], "alice")
        self.engine.forfeit(gid, "alice")
        game = self.engine.get_game(gid)
        self.assertEqual(game["state"], "completed")
        self.assertEqual(game["payout"], 0)
        self.assertEqual(self.ledger.escrow_balance(), 100 * CREDIT)
        with self.assertRaises(GameNotActive):
            self.engine.forfeit(gid, "alice")

    def test_abandon_after_timeout(self):
        gid = self.start()
        with self.assertRaises(AbandonTooEarly):
            self.engine.abandon(gid, "alice")
        self.clock.now += 3599
        with self.assertRaises(AbandonTooEarly):
            self.engine.abandon(gid, "alice")
        self.assertEqual(self.engine.get_game(gid)["state"], "active")

        self.clock.now += 1
        self.engine.abandon(gid, "alice")
        game = self.engine.get_game(gid)
        self.assertEqual(game["state"], "abandoned")
        self.assertEqual(game["payout"], 0)
        self.assertEqual(self.credits_to("alice"), [])

    def test_abandon_not_owner(self):
        gid = self.start()
        self.clock.now += 7200
        with self.assertRaises(NotOwner):
            self.engine.abandon(gid, "mallory")

    def test_clearing_board_auto_settles_at_max(self):
        gid = self.start(stake=CREDIT)
        safe = self.safe_cells()
        for cell in safe[:-1]:
            self.assertEqual(self.engine.reveal(gid, cell, "alice")["state"], "active")
        last = self.engine.reveal(gid, safe[-1], "alice")
        self.assertEqual(last["state"], "completed")
        self.assertEqual(last["safe_found"], 22)
        self.assertEqual(last["payout"], 2185 * CREDIT)
        with self.assertRaises(GameNotActive):
            self.engine.reveal(gid, min(self.layout()), "alice")

    def test_claim_settlement(self):
        gid = self.start()
        payout = self.engine.cash_out_with_claim(gid, "alice", 2)
        self.assertEqual(payout, 123 * CREDIT)
        game = self.engine.get_game(gid)
        self.assertTrue(game["claimed"])
        self.assertEqual(game["safe_found"], 2)
        self.assertEqual(game["revealed_cells"], [])

    def test_claim_bounds(self):
        gid = self.start()
        with self.assertRaises(InvalidClaim):
            self.engine.cash_out_with_claim(gid, "alice", 0)
        with self.assertRaises(InvalidClaim):
            self.engine.cash_out_with_claim(gid, "alice", 23)
        self.assertEqual(self.engine.cash_out_with_claim(gid, "alice", 22), 218_500 * CREDIT)

    def test_claim_disabled(self):
        self.engine = self.make_engine(config=_NoClaimConfig)
        gid = self.start()
        with self.assertRaises(ClaimSettlementDisabled):
            self.engine.cash_out_with_claim(gid, "alice", 1)
        self.assertEqual(self.engine.get_game(gid)["state"], "active")


# ============================================================
# Settlement
# ============================================================

class _ReentrantLedger(SQLiteLedger):
    """Calls back into the engine from inside credit()."""
    engine = None
    game_id = None

    def __init__(self, *a, **kw):
        super().__init__(*a, **kw)
        self.reentry_errors = []

    def credit(self, player, amount):
        try:
            self.engine.cash_out(self.game_id, player)
        except GameNotActive as e:
            self.reentry_errors.append(e)
        super().credit(player, amount)


class _FailingLedger(SQLiteLedger):
    def credit(self, player, amount):
        raise RuntimeError("mint paused")


class _RacingStore(GameStore):
    """Runs `on_load` once, after a record is read and before the engine acts on it."""
    on_load = None

    def load(self, game_id):
        record = super().load(game_id)
        hook, self.on_load = self.on_load, None
        if hook:
            hook()
        return record


class _BrokenInsertStore(GameStore):
    def insert(self, record):
        raise sqlite3.OperationalError("database is locked")


class _NoEventLogStore(GameStore):
    def append_events(self, events):
        raise sqlite3.OperationalError("disk I/O error")


class TestSettlement(EngineTestCase):

    def _cash_out_after_one_reveal(self, stake):
        gid = self.start(stake=stake)
        self.engine.reveal(gid, self.safe_cells()[0], "alice")
        return self.engine.cash_out(gid, "alice")

    def test_payout_truncates(self):
        """(10**18 + 1) * 1.08 = 1.08e18 + 1.08, floored."""
        self.assertEqual(self._cash_out_after_one_reveal(CREDIT + 1),
                         1_080_000_000_000_000_001)

    def test_payout_truncates_larger_remainder(self):
        """(3e18 + 7) * 1.08 = 3.24e18 + 7.56, floored."""
        self.assertEqual(self._cash_out_after_one_reveal(3 * CREDIT + 7),
                         3_240_000_000_000_000_007)

    def test_payout_formula(self):
        stake = 1234 * CREDIT + 987_654_321
        gid = self.start(stake=stake, hazards=7)
        for cell in self.safe_cells(7)[:5]:
            self.engine.reveal(gid, cell, "alice")
        mult = self.engine.get_game(gid)["current_multiplier"]
        self.assertEqual(self.engine.cash_out(gid, "alice"), stake * mult // SCALE)

    def test_no_double_settlement(self):
        gid = self.start()
        self.engine.reveal(gid, self.safe_cells()[0], "alice")
        self.engine.cash_out(gid, "alice")
        self.clock.now += 10_000

        for call in (
            lambda: self.engine.reveal(gid, self.safe_cells()[1], "alice"),
            lambda: self.engine.cash_out(gid, "alice"),
            lambda: self.engine.cash_out_with_claim(gid, "alice", 3),
            lambda: self.engine.forfeit(gid, "alice"),
            lambda: self.engine.abandon(gid, "alice"),
        ):
            with self.assertRaises(GameNotActive):
                call()
        self.assertEqual(len(self.credits_to("alice")), 1)

    def test_reentrant_credit_rejected(self):
        ledger = _ReentrantLedger(self.ledger.db_path)
        engine = self.make_engine(ledger=ledger)
        ledger.engine = engine
        self.engine = engine

        gid = self.start()
        ledger.game_id = gid
        self.engine.reveal(gid, self.safe_cells()[0], "alice")
        self.assertEqual(self.engine.cash_out(gid, "alice"), 108 * CREDIT)
        self.assertEqual(len(ledger.reentry_errors), 1)
        self.assertEqual(len(self.credits_to("alice")), 1)

    def test_failed_credit_rolls_back(self):
        gid = self.start()
        self.engine.reveal(gid, self.safe_cells()[0], "alice")
        before = self.engine.get_game(gid)

        failing = self.make_engine(ledger=_FailingLedger(self.ledger.db_path))
        with self.assertRaises(RuntimeError):
            failing.cash_out(gid, "alice")
        self.assertEqual(self.engine.get_game(gid), before)
        types = [e.type for e in self.store.events_for(gid)]
        self.assertNotIn(ev.GAME_COMPLETED, types)

        self.assertEqual(self.engine.cash_out(gid, "alice"), 108 * CREDIT)

    def test_second_engine_cannot_settle_again(self):
        gid = self.start()
        self.engine.reveal(gid, self.safe_cells()[0], "alice")
        racing = _RacingStore(self.store.db_path)
        other = self.make_engine(store=racing)

        # The first engine settles between the second one's load and save.
        racing.on_load = lambda: self.engine.cash_out(gid, "alice")
        with self.assertRaises(GameNotActive):
            other.cash_out(gid, "alice")
        self.assertEqual(len(self.credits_to("alice")), 1)
        self.assertEqual(self.engine.get_game(gid)["payout"], 108 * CREDIT)

    def test_second_engine_reveal_does_not_overwrite(self):
        gid = self.start()
        first, second = self.safe_cells()[:2]
        racing = _RacingStore(self.store.db_path)
        other = self.make_engine(store=racing)

        racing.on_load = lambda: self.engine.reveal(gid, first, "alice")
        with self.assertRaises(StaleRecord):
            other.reveal(gid, second, "alice")
        game = self.engine.get_game(gid)
        self.assertEqual(game["revealed_cells"], [first])
        self.assertEqual(game["safe_found"], 1)

    def test_failed_insert_refunds_stake(self):
        engine = self.make_engine(store=_BrokenInsertStore(self.store.db_path))
        with self.assertRaises(sqlite3.OperationalError):
            engine.start("alice", 100 * CREDIT, 3, PLAYER_SEED)

        self.assertEqual(self.ledger.balance_of("alice"), 20_000 * CREDIT)
        self.assertEqual(self.ledger.allowance("alice"), 20_000 * CREDIT)
        self.assertEqual(self.ledger.escrow_balance(), 0)
        self.assertEqual(self.engine.get_player_stats("alice")["total_games"], 0)
        kinds = [t["kind"] for t in self.ledger.transactions("alice")]
        self.assertEqual(kinds[-2:], ["debit", "refund"])

    def test_seed_failure_takes_no_stake(self):
        def no_entropy():
            raise OSError("entropy source unavailable")
        engine = GameEngine(self.store, self.ledger, table=_table(), clock=self.clock,
                            config=_Config, seed_source=no_entropy)
        with self.assertRaises(OSError):
            engine.start("alice", 100 * CREDIT, 3, PLAYER_SEED)
        self.assertEqual(self.ledger.balance_of("alice"), 20_000 * CREDIT)
        self.assertEqual(self.ledger.escrow_balance(), 0)
        self.assertNotIn("debit", [t["kind"] for t in self.ledger.transactions("alice")])


# ============================================================
# Events & Queries
# ============================================================

class TestEventsAndQueries(EngineTestCase):

    def test_event_sequence(self):
        seen = []
        self.engine.subscribe(seen.append)
        gid = self.start()
        self.engine.reveal(gid, self.safe_cells()[0], "alice")
        self.engine.cash_out(gid, "alice")

        expected = [ev.GAME_STARTED, ev.CELL_REVEALED, ev.GAME_COMPLETED]
        self.assertEqual([e.type for e in seen], expected)
        self.assertEqual([e.type for e in self.store.events_for(gid)], expected)
        done = seen[-1].payload
        self.assertEqual(done["payout"], 108 * CREDIT)
        self.assertTrue(done["won"])
        self.assertEqual(done["reason"], "cash_out")

    def test_hazard_events(self):
        seen = []
        self.engine.subscribe(seen.append)
        gid = self.start()
        self.engine.reveal(gid, min(self.layout()), "alice")
        self.assertEqual([e.type for e in seen[1:]], [ev.CELL_REVEALED, ev.GAME_COMPLETED])
        self.assertTrue(seen[1].payload["is_hazard"])
        self.assertEqual(seen[1].payload["multiplier"], 0)
        self.assertFalse(seen[2].payload["won"])

    def test_abandon_event(self):
        gid = self.start()
        self.clock.now += 3600
        self.engine.abandon(gid, "alice")
        self.assertEqual(self.store.events_for(gid)[-1].type, ev.GAME_ABANDONED)

    def test_failing_listener_does_not_break_play(self):
        def boom(event):
            raise RuntimeError("listener down")
        self.engine.subscribe(boom)
        gid = self.start()
        self.assertEqual(self.engine.get_game(gid)["state"], "active")

    def test_event_log_failure_does_not_undo_settlement(self):
        self.engine = self.make_engine(store=_NoEventLogStore(self.store.db_path))
        seen = []
        self.engine.subscribe(seen.append)
        gid = self.start()
        self.engine.reveal(gid, self.safe_cells()[0], "alice")

        self.assertEqual(self.engine.cash_out(gid, "alice"), 108 * CREDIT)
        self.assertEqual(self.engine.get_game(gid)["state"], "completed")
        self.assertEqual(len(self.credits_to("alice")), 1)
        self.assertEqual(len(seen), 3)
        self.assertEqual(self.store.events_for(gid), [])

    def test_player_stats(self):
        win = self.start()
        self.engine.reveal(win, self.safe_cells()[0], "alice")
        self.engine.cash_out(win, "alice")
        loss = self.start()
        self.engine.reveal(loss, min(self.layout()), "alice")
        self.start()

        stats = self.engine.get_player_stats("alice")
        self.assertEqual(stats["total_games"], 3)
        self.assertEqual(stats["total_wins"], 1)
        self.assertEqual(stats["game_ids"], sorted(stats["game_ids"]))
        self.assertEqual(stats["game_ids"][:2], [win, loss])
        self.assertLess(win, loss)

    def test_verify_game(self):
        gid = self.start()
        with self.assertRaises(SeedNotRevealed):
            self.engine.verify_game(gid)
        self.engine.forfeit(gid, "alice")

        bundle = self.engine.verify_game(gid)
        self.assertTrue(bundle["verified"])
        self.assertEqual(bundle["engine_seed"], ENGINE_SEED.hex())
        self.assertEqual(bundle["engine_seed_hash"], commit(ENGINE_SEED))
        self.assertEqual(bundle["hazard_positions"], sorted(self.layout()))

    def test_state_counts(self):
        self.start()
        gid = self.start()
        self.engine.forfeit(gid, "alice")
        counts = self.store.count_by_state()
        self.assertEqual(counts, {"active": 1, "completed": 1, "abandoned": 0})


# ============================================================
# Audit CLI
# ============================================================

class TestAuditCli(EngineTestCase):

    def test_table(self):
        from tools.mines_cli import main
        self.assertEqual(main(["table", "--hazards", "3"]), 0)

    def test_verify_with_commitment(self):
        from tools.mines_cli import main
        args = ["verify", "--engine-seed", ENGINE_SEED.hex(),
                "--player-seed", PLAYER_SEED.hex(), "--hazards", "3"]
        self.assertEqual(main(args + ["--commitment", commit(ENGINE_SEED)]), 0)
        self.assertEqual(main(args + ["--commitment", "00" * 32]), 1)

    def test_verify_bad_seed(self):
        from tools.mines_cli import main
        self.assertEqual(main(["verify", "--engine-seed", "xyz",
                               "--player-seed", "00", "--hazards", "3"]), 2)

    def test_game(self):
        from tools.mines_cli import main
        gid = self.start()
        self.assertEqual(main(["game", str(gid), "--db", self.store.db_path]), 1)
        self.engine.forfeit(gid, "alice")
        self.assertEqual(main(["game", str(gid), "--db", self.store.db_path]), 0)


# ============================================================
# Main
# ============================================================

if __name__ == "__main__":
    # Configure logging to suppress noise during tests
    import logging
    logging.disable(logging.WARNING)

    unittest.main(verbosity=2)
