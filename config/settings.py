"""
GEMMINES - Engine Configuration

Every tunable of the settlement engine lives here. Values come from the
environment (a local .env file is honoured) and fall back to the audited
production constants.

  - Grid is fixed at 25 cells (5x5)
  - Hazard count bounds [1, 10]
  - Stake bounds [1, 10000] credits, held in 18-decimal base units
  - Abandonment timeout: one hour
  - Multiplier fixed point: 1.0x == 10**18
"""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).parent.parent


def _int_list(raw: str) -> tuple:
    """Parse "1,3,5" or "1-10" (or a mix) into a sorted tuple of ints."""
    values = set()
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            lo, hi = part.split("-", 1)
            values.update(range(int(lo), int(hi) + 1))
        else:
            values.add(int(part))
    return tuple(sorted(values))


def _flag(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


class GameConfig:

    # --- Board ---
    GRID_SIZE = 25
    GRID_COLS = 5

    # --- Hazards ---
    MIN_HAZARDS = 1
    MAX_HAZARDS = 10
    # Hazard counts with a multiplier ladder. Anything else is rejected at start.
    POPULATED_HAZARD_COUNTS = _int_list(os.getenv("MINES_POPULATED_HAZARDS", "1-10"))

    # --- Money ---
    # Base units per credit (18 fractional digits, same as the GEM token)
    CREDIT_DECIMALS = 18
    CREDIT = 10 ** CREDIT_DECIMALS
    MIN_BET = 1 * CREDIT
    MAX_BET = 10_000 * CREDIT

    # --- Multipliers ---
    MULTIPLIER_SCALE = 10 ** 18
    # Fraction of the fair odds paid out. Kept as a string so it stays exact.
    HOUSE_EDGE_FACTOR = os.getenv("MINES_HOUSE_EDGE", "0.95")

    # --- Lifecycle ---
    ABANDON_TIMEOUT_S = int(os.getenv("MINES_ABANDON_TIMEOUT", "3600"))
    # Trust-based single-step settlement (see GameEngine.cash_out_with_claim)
    ALLOW_CLAIM_SETTLEMENT = _flag(os.getenv("MINES_ALLOW_CLAIM", "true"))

    # --- Storage ---
    DB_PATH = os.getenv("MINES_DB_PATH", str(BASE_DIR / "data" / "mines.db"))
    LEDGER_DB_PATH = os.getenv("MINES_LEDGER_DB_PATH", str(BASE_DIR / "data" / "ledger.db"))

    # --- Logging ---
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def safe_cells(cls, hazard_count: int) -> int:
        return cls.GRID_SIZE - hazard_count

    @classmethod
    def credits(cls, amount) -> int:
        """Whole credits to base units."""
        return int(amount) * cls.CREDIT
