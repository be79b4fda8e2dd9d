"""
GEMMINES - Game Record

One record per game session. Frozen once it leaves ACTIVE; kept forever as
the audit trail.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional


class GameState(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self is not GameState.ACTIVE


@dataclass
class GameRecord:
    player: str
    stake: int                      # base units, escrowed at start
    hazard_count: int
    grid_size: int
    hazard_positions: frozenset     # never exposed while ACTIVE
    engine_seed: bytes              # disclosed only once terminal
    player_seed: bytes
    engine_seed_hash: str           # commitment published at start
    current_multiplier: int
    created_at: float
    id: Optional[int] = None        # assigned by the store
    revealed: list = field(default_factory=list)
    safe_found: int = 0
    state: GameState = GameState.ACTIVE
    payout: int = 0
    won: bool = False
    claimed: bool = False           # settled through cash_out_with_claim
    settled_at: Optional[float] = None

    @property
    def is_active(self) -> bool:
        return self.state is GameState.ACTIVE

    @property
    def safe_cells(self) -> int:
        return self.grid_size - self.hazard_count

    def is_hazard(self, cell_index: int) -> bool:
        return cell_index in self.hazard_positions

    def snapshot(self) -> "GameRecord":
        """Independent copy, used to stage a change and to roll it back."""
        return replace(self, revealed=list(self.revealed))

    # ── Views ──

    def public_view(self) -> dict:
        """What the query surface returns. Hides the layout while ACTIVE."""
        view = {
            "id": self.id,
            "player": self.player,
            "stake": self.stake,
            "hazard_count": self.hazard_count,
            "grid_size": self.grid_size,
            "safe_found": self.safe_found,
            "current_multiplier": self.current_multiplier,
            "state": self.state.value,
            "revealed_cells": list(self.revealed),
            "engine_seed_hash": self.engine_seed_hash,
            "player_seed": self.player_seed.hex(),
            "created_at": self.created_at,
        }
        if self.state.is_terminal:
            view.update({
                "hazard_positions": sorted(self.hazard_positions),
                "engine_seed": self.engine_seed.hex(),
                "payout": self.payout,
                "won": self.won,
                "claimed": self.claimed,
                "settled_at": self.settled_at,
            })
        return view

    # ── Storage ──

    def to_row(self) -> dict:
        return {
            "id": self.id,
            "player": self.player,
            "stake": str(self.stake),
            "hazard_count": self.hazard_count,
            "grid_size": self.grid_size,
            "hazard_positions": json.dumps(sorted(self.hazard_positions)),
            "engine_seed": self.engine_seed.hex(),
            "player_seed": self.player_seed.hex(),
            "engine_seed_hash": self.engine_seed_hash,
            "revealed": json.dumps(self.revealed),
            "safe_found": self.safe_found,
            "current_multiplier": str(self.current_multiplier),
            "state": self.state.value,
            "payout": str(self.payout),
            "won": int(self.won),
            "claimed": int(self.claimed),
            "created_at": self.created_at,
            "settled_at": self.settled_at,
        }

    @classmethod
    def from_row(cls, row: dict) -> "GameRecord":
        return cls(
            id=row["id"],
            player=row["player"],
            stake=int(row["stake"]),
            hazard_count=row["hazard_count"],
            grid_size=row["grid_size"],
            hazard_positions=frozenset(json.loads(row["hazard_positions"])),
            engine_seed=bytes.fromhex(row["engine_seed"]),
            player_seed=bytes.fromhex(row["player_seed"]),
            engine_seed_hash=row["engine_seed_hash"],
            revealed=list(json.loads(row["revealed"])),
            safe_found=row["safe_found"],
            current_multiplier=int(row["current_multiplier"]),
            state=GameState(row["state"]),
            payout=int(row["payout"]),
            won=bool(row["won"]),
            claimed=bool(row["claimed"]),
            created_at=row["created_at"],
            settled_at=row.get("settled_at"),
        )
