"""
GEMMINES - Multiplier Table

Static lookup (hazard_count, safe_found) -> payout multiplier, fixed point
with 1.0x == 10**18.

For n safe reveals on a grid of G cells with H hazards:
  P(survive n) = Π (G-H-i)/(G-i)           for i = 0..n-1
  mult(n)      = edge / P(survive n)

Ladders are built once with exact rational arithmetic, rounded half-up to
0.01x and clamped so a later reveal never pays less than an earlier one.
Entry 0 is always the identity.
"""

import math
from decimal import Decimal
from fractions import Fraction
from typing import Iterable, Optional

from config.settings import GameConfig
from game_engine.errors import InvalidConfiguration


def build_ladder(grid_size: int, hazard_count: int,
                 house_edge: Fraction, scale: int) -> tuple:
    """Compute the full multiplier ladder for one hazard count.

    Returns a tuple of grid_size - hazard_count + 1 fixed-point ints.
    """
    if not 0 < hazard_count < grid_size:
        raise ValueError(f"hazard_count must be in (0, {grid_size}), got {hazard_count}")
    if scale % 100:
        raise ValueError("scale must be a multiple of 100")

    safe = grid_size - hazard_count
    ladder = [scale]
    fair = Fraction(1)
    for n in range(1, safe + 1):
        i = n - 1
        fair *= Fraction(grid_size - i, safe - i)
        hundredths = math.floor(house_edge * fair * 100 + Fraction(1, 2))
        value = hundredths * (scale // 100)
        ladder.append(max(value, ladder[-1]))
    return tuple(ladder)


class MultiplierTable:
    """Precomputed multiplier ladders for the supported hazard counts."""

    def __init__(
        self,
        hazard_counts: Optional[Iterable[int]] = None,
        grid_size: int = GameConfig.GRID_SIZE,
        house_edge=GameConfig.HOUSE_EDGE_FACTOR,
        scale: int = GameConfig.MULTIPLIER_SCALE,
    ):
        if hazard_counts is None:
            hazard_counts = GameConfig.POPULATED_HAZARD_COUNTS
        edge = Fraction(str(house_edge))
        if not 0 < edge <= 1:
            raise ValueError(f"house_edge must be in (0, 1], got {house_edge}")

        self.grid_size = grid_size
        self.house_edge = edge
        self.scale = scale
        self._ladders = {
            h: build_ladder(grid_size, h, edge, scale)
            for h in sorted(set(hazard_counts))
        }

    @property
    def hazard_counts(self) -> tuple:
        return tuple(self._ladders)

    def supports(self, hazard_count: int) -> bool:
        return hazard_count in self._ladders

    def ladder(self, hazard_count: int) -> tuple:
        try:
            return self._ladders[hazard_count]
        except KeyError:
            raise InvalidConfiguration(
                f"No multiplier table for {hazard_count} hazards. "
                f"Available: {list(self._ladders)}"
            ) from None

    def multiplier(self, hazard_count: int, safe_found: int) -> int:
        """Multiplier to apply if the player cashes out after `safe_found` reveals."""
        ladder = self.ladder(hazard_count)
        if not 0 <= safe_found < len(ladder):
            raise InvalidConfiguration(
                f"safe_found={safe_found} outside [0, {len(ladder) - 1}] "
                f"for {hazard_count} hazards"
            )
        return ladder[safe_found]

    def max_multiplier(self, hazard_count: int) -> int:
        return self.ladder(hazard_count)[-1]

    def to_display(self, value: int) -> Decimal:
        """Fixed-point multiplier as a Decimal (1080000000000000000 -> 1.08)."""
        return Decimal(value) / Decimal(self.scale)


_default_table = None


def default_table() -> MultiplierTable:
    """Shared table built from GameConfig on first use."""
    global _default_table
    if _default_table is None:
        _default_table = MultiplierTable()
    return _default_table
