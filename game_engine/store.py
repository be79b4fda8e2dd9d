"""
GEMMINES - Game Store

SQLite persistence for game records and the append-only event log.

Usage:
    from game_engine.store import GameStore
    store = GameStore(db_path="mines.db")
    game_id = store.insert(record)
    record = store.load(game_id)
"""

import json
import logging

from config.database import init_schema, open_db
from config.settings import GameConfig
from game_engine.errors import GameNotActive, GameNotFound, StaleRecord
from game_engine.events import GameEvent
from game_engine.record import GameRecord, GameState

logger = logging.getLogger("gemmines.store")


# ═══════════════════════════════════════════════════════════════
# Database Schema
# ═══════════════════════════════════════════════════════════════

# Amounts are TEXT: an 18-decimal stake times a multiplier overflows INTEGER.
SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS games (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    player TEXT NOT NULL,
    stake TEXT NOT NULL,
    hazard_count INTEGER NOT NULL,
    grid_size INTEGER NOT NULL,
    hazard_positions TEXT NOT NULL,
    engine_seed TEXT NOT NULL,
    player_seed TEXT NOT NULL,
    engine_seed_hash TEXT NOT NULL,
    revealed TEXT NOT NULL DEFAULT '[]',
    safe_found INTEGER NOT NULL DEFAULT 0,
    current_multiplier TEXT NOT NULL,
    state TEXT NOT NULL DEFAULT 'active',
    payout TEXT NOT NULL DEFAULT '0',
    won INTEGER NOT NULL DEFAULT 0,
    claimed INTEGER NOT NULL DEFAULT 0,
    created_at REAL NOT NULL,
    settled_at REAL
);

CREATE TABLE IF NOT EXISTS game_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_type TEXT NOT NULL,
    game_id INTEGER NOT NULL,
    player TEXT,
    data_json TEXT DEFAULT '{}',
    created_at REAL NOT NULL,
    FOREIGN KEY (game_id) REFERENCES games(id)
);

CREATE INDEX IF NOT EXISTS idx_games_player ON games(player);
CREATE INDEX IF NOT EXISTS idx_games_state ON games(state);
CREATE INDEX IF NOT EXISTS idx_events_game ON game_events(game_id);
CREATE INDEX IF NOT EXISTS idx_events_type ON game_events(event_type);
"""

_MUTABLE_COLUMNS = (
    "revealed", "safe_found", "current_multiplier", "state",
    "payout", "won", "claimed", "settled_at",
)


class GameStore:
    """Game records keyed by an auto-incremented id, plus their event log."""

    def __init__(self, db_path: str = None):
        self.db_path = db_path or GameConfig.DB_PATH
        init_schema(self.db_path, SCHEMA_SQL)

    # ─── Records ──────────────────────────────────────────────

    def insert(self, record: GameRecord) -> int:
        """Persist a new record and assign its id."""
        row = record.to_row()
        row.pop("id")
        cols = ", ".join(row)
        marks = ", ".join("?" for _ in row)
        with open_db(self.db_path) as db:
            db.execute(f"INSERT INTO games ({cols}) VALUES ({marks})", list(row.values()))
            record.id = db.lastrowid
        logger.debug(f"Inserted game {record.id} for {record.player}")
        return record.id

    def save(self, record: GameRecord, expected: GameRecord):
        """Write back the fields that change during play.

        Compare-and-set: the row is only updated while it still holds
        `expected`'s state, reveals and safe count, so two engines on one
        database cannot both move the same game forward.
        """
        if record.id is None:
            raise ValueError("Cannot save a record that was never inserted")
        row = record.to_row()
        prior = expected.to_row()
        assignments = ", ".join(f"{c}=?" for c in _MUTABLE_COLUMNS)
        params = [row[c] for c in _MUTABLE_COLUMNS] + [
            record.id, prior["state"], prior["revealed"], prior["safe_found"]]
        with open_db(self.db_path) as db:
            db.execute(
                f"UPDATE games SET {assignments} "
                f"WHERE id=? AND state=? AND revealed=? AND safe_found=?",
                params,
            )
            if db.rowcount:
                return
            current = db.execute(
                "SELECT state FROM games WHERE id=?", [record.id]).fetchone()
        if not current:
            raise GameNotFound(f"Game not found: {record.id}")
        if current["state"] != GameState.ACTIVE.value:
            raise GameNotActive(f"Game {record.id} is {current['state']}")
        raise StaleRecord(f"Game {record.id} was changed by another request")

    def load(self, game_id: int) -> GameRecord:
        with open_db(self.db_path) as db:
            row = db.execute("SELECT * FROM games WHERE id=?", [game_id]).fetchone()
        if not row:
            raise GameNotFound(f"Game not found: {game_id}")
        return GameRecord.from_row(row)

    def player_stats(self, player: str) -> dict:
        """Aggregated stats for a player: games played, games won, game ids."""
        with open_db(self.db_path) as db:
            totals = db.execute(
                """SELECT COUNT(*) AS n, SUM(won) AS wins
                   FROM games WHERE player=?""",
                [player],
            ).fetchone()
            rows = db.execute(
                "SELECT id FROM games WHERE player=? ORDER BY id", [player],
            ).fetchall()
        return {
            "player": player,
            "total_games": totals["n"] or 0,
            "total_wins": totals["wins"] or 0,
            "game_ids": [r["id"] for r in rows],
        }

    def count_by_state(self) -> dict:
        with open_db(self.db_path) as db:
            rows = db.execute(
                "SELECT state, COUNT(*) AS n FROM games GROUP BY state",
            ).fetchall()
        counts = {s.value: 0 for s in GameState}
        counts.update({r["state"]: r["n"] for r in rows})
        return counts

    # ─── Event log ────────────────────────────────────────────

    def append_events(self, events: list):
        if not events:
            return
        with open_db(self.db_path) as db:
            for ev in events:
                db.execute(
                    """INSERT INTO game_events
                       (event_type, game_id, player, data_json, created_at)
                       VALUES (?, ?, ?, ?, ?)""",
                    [ev.type, ev.game_id, ev.payload.get("player"),
                     json.dumps(ev.payload), ev.timestamp],
                )

    def events_for(self, game_id: int) -> list:
        """Event log of one game, oldest first."""
        with open_db(self.db_path) as db:
            rows = db.execute(
                """SELECT event_type, game_id, data_json, created_at
                   FROM game_events WHERE game_id=? ORDER BY id""",
                [game_id],
            ).fetchall()
        return [
            GameEvent(type=r["event_type"], game_id=r["game_id"],
                      payload=json.loads(r["data_json"]), timestamp=r["created_at"])
            for r in rows
        ]
