#!/usr/bin/env python3
"""
GEMMINES - Audit CLI

Usage:
    python -m tools.mines_cli table --hazards 3
    python -m tools.mines_cli verify --engine-seed <hex> --player-seed <hex> --hazards 3
    python -m tools.mines_cli verify --engine-seed <hex> --player-seed <hex> --hazards 3 \\
        --commitment <sha256 hex>
    python -m tools.mines_cli game 42 --db data/mines.db
"""

import argparse
from fractions import Fraction

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config.settings import GameConfig
from game_engine.hazards import audit_bundle, parse_seed, verify_commitment
from game_engine.multipliers import MultiplierTable

console = Console()


def _grid(positions, revealed=(), grid_size=GameConfig.GRID_SIZE,
          cols=GameConfig.GRID_COLS) -> str:
    """5x5 picture of a layout: X hazard, o revealed safe, . hidden safe."""
    hazards = set(positions)
    lines = []
    for row in range(0, grid_size, cols):
        cells = []
        for i in range(row, min(row + cols, grid_size)):
            if i in hazards:
                cells.append("[red]X[/red]")
            elif i in revealed:
                cells.append("[green]o[/green]")
            else:
                cells.append(".")
        lines.append(" ".join(cells))
    return "\n".join(lines)


def cmd_table(args) -> int:
    table = MultiplierTable(hazard_counts=[args.hazards], house_edge=args.edge)
    ladder = table.ladder(args.hazards)
    grid = table.grid_size

    out = Table(title=f"{args.hazards} hazards, edge {args.edge}")
    out.add_column("Safe found", justify="right")
    out.add_column("Multiplier", justify="right")
    out.add_column("P(survive)", justify="right")
    out.add_column("Return", justify="right")

    survive = Fraction(1)
    for n, mult in enumerate(ladder):
        if n:
            i = n - 1
            survive *= Fraction(grid - args.hazards - i, grid - i)
        value = table.to_display(mult)
        out.add_row(str(n), f"{value:.2f}x", f"{float(survive):.6f}",
                    f"{float(survive) * float(value) * 100:.2f}%")
    console.print(out)
    return 0


def cmd_verify(args) -> int:
    engine_seed = parse_seed(args.engine_seed)
    player_seed = parse_seed(args.player_seed)
    bundle = audit_bundle(engine_seed, player_seed, args.hazards, GameConfig.GRID_SIZE)

    body = [
        f"[bold]Engine seed hash:[/bold] {bundle['engine_seed_hash']}",
        f"[bold]Combined seed:[/bold]    {bundle['combined_seed']}",
        f"[bold]Draw order:[/bold]       {bundle['draw_order']}",
        f"[bold]Hazards:[/bold]          {bundle['hazard_positions']}",
        "",
        _grid(bundle["hazard_positions"]),
    ]
    ok = True
    if args.commitment:
        ok = verify_commitment(engine_seed, args.commitment)
        mark = "[green]matches[/green]" if ok else "[red]DOES NOT MATCH[/red]"
        body.insert(0, f"[bold]Commitment:[/bold] {mark}")

    console.print(Panel("\n".join(body), title="Layout verification", expand=False))
    return 0 if ok else 1


def cmd_game(args) -> int:
    from game_engine.engine import GameEngine
    from game_engine.store import GameStore

    store = GameStore(args.db)
    record = store.load(args.game_id)
    if record.is_active:
        console.print(f"[yellow]Game {args.game_id} is still active; "
                      f"engine seed not disclosed yet.[/yellow]")
        console.print(f"Commitment: {record.engine_seed_hash}")
        return 1

    # Ledger is never touched by verify_game.
    bundle = GameEngine(store, ledger=None).verify_game(args.game_id)
    status = "[green]VERIFIED[/green]" if bundle["verified"] else "[red]MISMATCH[/red]"
    console.print(Panel(
        f"[bold]Player:[/bold] {record.player}   [bold]State:[/bold] {record.state.value}   "
        f"[bold]Payout:[/bold] {record.payout}\n"
        f"[bold]Engine seed:[/bold] {bundle['engine_seed']}\n"
        f"[bold]Player seed:[/bold] {bundle['player_seed']}\n"
        f"[bold]Commitment valid:[/bold] {bundle['commitment_valid']}   "
        f"[bold]Layout matches:[/bold] {bundle['layout_matches']}\n\n"
        + _grid(record.hazard_positions, record.revealed, record.grid_size),
        title=f"Game {args.game_id}: {status}", expand=False,
    ))
    return 0 if bundle["verified"] else 1


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Audit mines multipliers and layouts")
    sub = parser.add_subparsers(dest="command", required=True)

    p_table = sub.add_parser("table", help="Print the multiplier ladder")
    p_table.add_argument("--hazards", type=int, default=3)
    p_table.add_argument("--edge", type=str, default=GameConfig.HOUSE_EDGE_FACTOR)
    p_table.set_defaults(func=cmd_table)

    p_verify = sub.add_parser("verify", help="Re-derive a layout from seeds")
    p_verify.add_argument("--engine-seed", required=True)
    p_verify.add_argument("--player-seed", required=True)
    p_verify.add_argument("--hazards", type=int, required=True)
    p_verify.add_argument("--commitment", help="SHA-256 hex published at game start")
    p_verify.set_defaults(func=cmd_verify)

    p_game = sub.add_parser("game", help="Verify a finished game from the store")
    p_game.add_argument("game_id", type=int)
    p_game.add_argument("--db", default=GameConfig.DB_PATH)
    p_game.set_defaults(func=cmd_game)

    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except (ValueError, TypeError) as e:
        console.print(f"[red]Error:[/red] {e}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
