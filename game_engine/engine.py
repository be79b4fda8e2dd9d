"""
GEMMINES - Game Engine

The settlement state machine. Every operation runs under one re-entrant lock,
loads the record fresh from the store, checks preconditions, commits the new
record, and only then touches the ledger and publishes events.

  ACTIVE ──reveal(safe)──> ACTIVE
  ACTIVE ──reveal(hazard) / forfeit──> COMPLETED  (payout 0)
  ACTIVE ──cash_out / claim / last safe cell──> COMPLETED  (payout = stake * mult // SCALE)
  ACTIVE ──abandon (after timeout)──> ABANDONED  (payout 0)

Usage:
    from game_engine import GameEngine, GameStore
    from tools.ledger import SQLiteLedger

    engine = GameEngine(GameStore("mines.db"), SQLiteLedger("ledger.db"))
    game_id = engine.start("alice", 100 * CREDIT, hazard_count=3, player_seed="ab12")
    engine.reveal(game_id, 7, caller="alice")
    payout = engine.cash_out(game_id, caller="alice")
"""

import logging
import threading
import time
from typing import Callable, Optional

from config.settings import GameConfig
from game_engine import events as ev
from game_engine.errors import (
    AbandonTooEarly, CellAlreadyRevealed, CellOutOfRange, ClaimSettlementDisabled,
    GameNotActive, InvalidClaim, InvalidConfiguration, NotOwner, NothingToCashOut,
    SeedNotRevealed,
)
from game_engine.hazards import (
    audit_bundle, commit, derive, new_engine_seed, new_player_seed, parse_seed,
    verify_commitment,
)
from game_engine.multipliers import MultiplierTable, default_table
from game_engine.record import GameRecord, GameState
from game_engine.store import GameStore

logger = logging.getLogger("gemmines.engine")


class GameEngine:
    """Mines settlement engine over a GameStore and a Ledger."""

    def __init__(
        self,
        store: GameStore,
        ledger,
        table: Optional[MultiplierTable] = None,
        clock: Callable[[], float] = time.time,
        config=GameConfig,
        seed_source: Callable[[], bytes] = new_engine_seed,
    ):
        self.store = store
        self.ledger = ledger
        self.table = table or default_table()
        self.config = config
        self._clock = clock
        self._seed_source = seed_source
        self._lock = threading.RLock()
        self._listeners = []

        if self.table.grid_size != config.GRID_SIZE:
            raise InvalidConfiguration(
                f"Multiplier table is for a {self.table.grid_size}-cell grid, "
                f"engine expects {config.GRID_SIZE}")

    def subscribe(self, listener: Callable[[ev.GameEvent], None]):
        """Register a callable that receives every published GameEvent."""
        self._listeners.append(listener)

    # ─── Lifecycle ────────────────────────────────────────────

    def start(self, player: str, stake: int, hazard_count: int,
              player_seed=None) -> int:
        """Escrow the stake and open a new game. Returns the game id."""
        cfg = self.config
        if not isinstance(player, str) or not player:
            raise InvalidConfiguration("player must be a non-empty string")
        if isinstance(hazard_count, bool) or not isinstance(hazard_count, int):
            raise InvalidConfiguration(f"hazard_count must be an int, got {hazard_count!r}")
        if not cfg.MIN_HAZARDS <= hazard_count <= cfg.MAX_HAZARDS:
            raise InvalidConfiguration(
                f"hazard_count must be in [{cfg.MIN_HAZARDS}, {cfg.MAX_HAZARDS}], "
                f"got {hazard_count}")
        if not self.table.supports(hazard_count):
            raise InvalidConfiguration(f"No multiplier table for {hazard_count} hazards")
        if isinstance(stake, bool) or not isinstance(stake, int):
            raise InvalidConfiguration(f"stake must be an int in base units, got {stake!r}")
        if not cfg.MIN_BET <= stake <= cfg.MAX_BET:
            raise InvalidConfiguration(
                f"stake must be in [{cfg.MIN_BET}, {cfg.MAX_BET}] base units, got {stake}")

        if player_seed is None:
            seed = new_player_seed()
        else:
            try:
                seed = parse_seed(player_seed)
            except (TypeError, ValueError) as e:
                raise InvalidConfiguration(str(e)) from None

        with self._lock:
            # Drawn only after the player seed is fixed.
            engine_seed = self._seed_source()
            record = GameRecord(
                player=player,
                stake=stake,
                hazard_count=hazard_count,
                grid_size=cfg.GRID_SIZE,
                hazard_positions=derive(engine_seed, seed, hazard_count, cfg.GRID_SIZE),
                engine_seed=engine_seed,
                player_seed=seed,
                engine_seed_hash=commit(engine_seed),
                current_multiplier=self.table.multiplier(hazard_count, 0),
                created_at=self._clock(),
            )

            self.ledger.debit(player, stake)
            try:
                game_id = self.store.insert(record)
            except Exception:
                self.ledger.refund(player, stake)
                logger.error(f"Game for {player} could not be stored, stake {stake} refunded")
                raise
            logger.info(f"Game {game_id} started: {player} staked {stake} on {hazard_count} hazards")
            self._publish([ev.game_started(
                game_id, player, stake, hazard_count,
                record.engine_seed_hash, seed.hex(),
            )])
            return game_id

    def reveal(self, game_id: int, cell_index: int, caller: str) -> dict:
        """Reveal one cell. Returns the outcome of the reveal."""
        with self._lock:
            record = self._load_active(game_id, caller)
            if isinstance(cell_index, bool) or not isinstance(cell_index, int) \
                    or not 0 <= cell_index < record.grid_size:
                raise CellOutOfRange(
                    f"cell_index must be in [0, {record.grid_size}), got {cell_index!r}")
            if cell_index in record.revealed:
                raise CellAlreadyRevealed(f"Cell {cell_index} already revealed in game {game_id}")

            before = record.snapshot()
            record.revealed.append(cell_index)
            hit = record.is_hazard(cell_index)

            if hit:
                self._finish(record, GameState.COMPLETED)
                self.store.save(record, before)
                logger.info(f"Game {game_id}: hazard at {cell_index}, stake kept in escrow")
                self._publish([
                    ev.cell_revealed(game_id, record.player, cell_index, True, 0,
                                     record.safe_found),
                    ev.game_completed(game_id, record.player, 0, False,
                                      record.current_multiplier, "hazard"),
                ])
            else:
                record.safe_found += 1
                record.current_multiplier = self.table.multiplier(
                    record.hazard_count, record.safe_found)
                revealed = ev.cell_revealed(game_id, record.player, cell_index, False,
                                            record.current_multiplier, record.safe_found)
                if record.safe_found == record.safe_cells:
                    self._settle_win(record, before, "cleared", leading=[revealed])
                else:
                    self.store.save(record, before)
                    self._publish([revealed])

            return {
                "game_id": game_id,
                "cell_index": cell_index,
                "is_hazard": hit,
                "safe_found": record.safe_found,
                "current_multiplier": record.current_multiplier,
                "state": record.state.value,
                "payout": record.payout,
            }

    def cash_out(self, game_id: int, caller: str) -> int:
        """Settle at the current multiplier. Returns the payout."""
        with self._lock:
            record = self._load_active(game_id, caller)
            if record.safe_found == 0:
                raise NothingToCashOut(f"Game {game_id} has no safe reveals to cash out")
            self._settle_win(record, record.snapshot(), "cash_out")
            return record.payout

    def cash_out_with_claim(self, game_id: int, caller: str,
                            claimed_safe_found: int) -> int:
        """Settle in one step at the caller's claimed reveal count.

        The claim is NOT checked against the hazard layout. Deployments that
        cannot trust the caller disable this with ALLOW_CLAIM_SETTLEMENT=false
        and settle through reveal() / cash_out() instead.
        """
        with self._lock:
            if not self.config.ALLOW_CLAIM_SETTLEMENT:
                raise ClaimSettlementDisabled("Claim settlement is disabled")
            record = self._load_active(game_id, caller)
            if isinstance(claimed_safe_found, bool) or not isinstance(claimed_safe_found, int) \
                    or not 0 < claimed_safe_found <= record.safe_cells:
                raise InvalidClaim(
                    f"claimed_safe_found must be in [1, {record.safe_cells}], "
                    f"got {claimed_safe_found!r}")

            before = record.snapshot()
            record.safe_found = claimed_safe_found
            record.current_multiplier = self.table.multiplier(
                record.hazard_count, claimed_safe_found)
            record.claimed = True
            logger.warning(f"Game {game_id}: unverified claim of {claimed_safe_found} safe cells")
            self._settle_win(record, before, "claim")
            return record.payout

    def forfeit(self, game_id: int, caller: str):
        """Give up the game. The stake stays in escrow."""
        with self._lock:
            record = self._load_active(game_id, caller)
            before = record.snapshot()
            self._finish(record, GameState.COMPLETED)
            self.store.save(record, before)
            logger.info(f"Game {game_id} forfeited by {caller}")
            self._publish([ev.game_completed(
                game_id, record.player, 0, False, record.current_multiplier, "forfeit")])

    def abandon(self, game_id: int, caller: str):
        """Close a stale game once ABANDON_TIMEOUT_S has passed since start."""
        with self._lock:
            record = self._load_active(game_id, caller)
            elapsed = self._clock() - record.created_at
            if elapsed < self.config.ABANDON_TIMEOUT_S:
                raise AbandonTooEarly(
                    f"Game {game_id} can be abandoned in "
                    f"{self.config.ABANDON_TIMEOUT_S - elapsed:.0f}s")
            before = record.snapshot()
            self._finish(record, GameState.ABANDONED)
            self.store.save(record, before)
            logger.info(f"Game {game_id} abandoned after {elapsed:.0f}s")
            self._publish([ev.game_abandoned(game_id, record.player, elapsed)])

    # ─── Queries ──────────────────────────────────────────────

    def get_game(self, game_id: int) -> dict:
        return self.store.load(game_id).public_view()

    def get_player_stats(self, player: str) -> dict:
        return self.store.player_stats(player)

    def verify_game(self, game_id: int) -> dict:
        """Re-derive a finished game's layout from its disclosed seeds."""
        record = self.store.load(game_id)
        if record.is_active:
            raise SeedNotRevealed(f"Game {game_id} is still active; engine seed not disclosed")

        bundle = audit_bundle(record.engine_seed, record.player_seed,
                              record.hazard_count, record.grid_size)
        commitment_ok = verify_commitment(record.engine_seed, record.engine_seed_hash)
        layout_ok = frozenset(bundle["hazard_positions"]) == record.hazard_positions
        bundle.update({
            "game_id": game_id,
            "recorded_positions": sorted(record.hazard_positions),
            "commitment_valid": commitment_ok,
            "layout_matches": layout_ok,
            "verified": commitment_ok and layout_ok,
        })
        return bundle

    # ─── Internals ────────────────────────────────────────────

    def _load_active(self, game_id: int, caller: str) -> GameRecord:
        record = self.store.load(game_id)
        if not record.is_active:
            raise GameNotActive(f"Game {game_id} is {record.state.value}")
        if caller != record.player:
            raise NotOwner(f"Game {game_id} does not belong to {caller}")
        return record

    def _finish(self, record: GameRecord, state: GameState, payout: int = 0):
        record.state = state
        record.payout = payout
        record.won = payout > 0
        record.settled_at = self._clock()

    def _settle_win(self, record: GameRecord, before: GameRecord, reason: str,
                    leading: Optional[list] = None):
        """Pay stake * multiplier // SCALE exactly once.

        The terminal record is committed, as a compare-and-set against
        `before`, before the ledger is called. A re-entrant call, or another
        engine on the same database, sees the game closed. If the credit fails,
        the pre-settlement record is written back and the error propagates.
        """
        payout = record.stake * record.current_multiplier // self.table.scale
        self._finish(record, GameState.COMPLETED, payout)
        self.store.save(record, before)
        try:
            self.ledger.credit(record.player, payout)
        except Exception:
            self.store.save(before, record)
            logger.error(f"Game {record.id}: credit of {payout} failed, settlement rolled back")
            raise

        logger.info(f"Game {record.id} settled ({reason}): {payout} to {record.player} "
                    f"at {self.table.to_display(record.current_multiplier)}x")
        self._publish((leading or []) + [ev.game_completed(
            record.id, record.player, payout, record.won, record.current_multiplier, reason)])

    def _publish(self, events: list):
        for event in events:
            logger.debug(f"event {event.type} game={event.game_id} {event.payload}")
        try:
            self.store.append_events(events)
        except Exception as e:
            logger.error(f"Event log write failed for {[event.type for event in events]}: {e}")
        for listener in list(self._listeners):
            for event in events:
                try:
                    listener(event)
                except Exception as e:
                    logger.warning(f"Event listener failed on {event.type}: {e}")
