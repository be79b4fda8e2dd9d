"""
GEMMINES - Game Events

Events describe what an operation did. They are published only after the
operation has fully committed: logged, appended to the store's event log
and handed to subscribers.
"""

import time
from dataclasses import dataclass
from typing import Any


@dataclass
class GameEvent:
    """Base event. All events have a type, the game they belong to and a payload."""
    type: str
    game_id: int
    payload: dict[str, Any]
    timestamp: float = 0

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = time.time()

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "game_id": self.game_id,
            "payload": self.payload,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GameEvent":
        return cls(
            type=data["type"],
            game_id=data["game_id"],
            payload=data["payload"],
            timestamp=data.get("timestamp", 0),
        )


# ===== Event Type Constants =====

GAME_STARTED = "game_started"
CELL_REVEALED = "cell_revealed"
GAME_COMPLETED = "game_completed"
GAME_ABANDONED = "game_abandoned"


# ===== Event Factory Functions =====

def game_started(game_id: int, player: str, stake: int, hazard_count: int,
                 engine_seed_hash: str, player_seed: str) -> GameEvent:
    return GameEvent(GAME_STARTED, game_id, {
        "player": player,
        "stake": stake,
        "hazard_count": hazard_count,
        "engine_seed_hash": engine_seed_hash,
        "player_seed": player_seed,
    })


def cell_revealed(game_id: int, player: str, cell_index: int,
                  is_hazard: bool, multiplier: int, safe_found: int) -> GameEvent:
    return GameEvent(CELL_REVEALED, game_id, {
        "player": player,
        "cell_index": cell_index,
        "is_hazard": is_hazard,
        "multiplier": multiplier,   # multiplier after this reveal, 0 on a hazard
        "safe_found": safe_found,
    })


def game_completed(game_id: int, player: str, payout: int, won: bool,
                   multiplier: int, reason: str) -> GameEvent:
    """reason: "cash_out", "claim", "cleared", "hazard" or "forfeit"."""
    return GameEvent(GAME_COMPLETED, game_id, {
        "player": player,
        "payout": payout,
        "won": won,
        "multiplier": multiplier,
        "reason": reason,
    })


def game_abandoned(game_id: int, player: str, elapsed_s: float) -> GameEvent:
    return GameEvent(GAME_ABANDONED, game_id, {
        "player": player,
        "elapsed_s": round(elapsed_s, 3),
    })
