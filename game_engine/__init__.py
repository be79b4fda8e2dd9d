"""
GEMMINES - Mines Settlement Engine

Provably fair mines: stake escrow, seeded hazard layout, multiplier ladder,
exactly-once settlement.

Usage:
    from game_engine import GameEngine, GameStore
    engine = GameEngine(GameStore("mines.db"), ledger)
"""

from game_engine.engine import GameEngine
from game_engine.errors import MinesError
from game_engine.events import GameEvent
from game_engine.multipliers import MultiplierTable, default_table
from game_engine.record import GameRecord, GameState
from game_engine.store import GameStore

__all__ = [
    "GameEngine", "GameEvent", "GameRecord", "GameState", "GameStore",
    "MinesError", "MultiplierTable", "default_table",
]
