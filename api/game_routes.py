"""
GEMMINES - Game API

Flask blueprint: /api/*
JSON over the GameEngine. The caller is identified by the X-Player header.
Amounts (stake, multiplier, payout) travel as decimal strings of base units
so clients without big integers do not lose precision.

  POST /api/games                      start a game
  POST /api/games/<id>/reveal          {"cell_index": 7}
  POST /api/games/<id>/cashout
  POST /api/games/<id>/claim           {"safe_found": 4}
  POST /api/games/<id>/forfeit
  POST /api/games/<id>/abandon
  GET  /api/games/<id>
  GET  /api/games/<id>/verify
  GET  /api/players/<player>/stats
  GET  /api/multipliers/<hazard_count>
  GET  /api/health
"""

import logging
from typing import Optional

from flask import Blueprint, current_app, jsonify, request
from pydantic import BaseModel, Field, ValidationError, field_validator

from game_engine.errors import MinesError

logger = logging.getLogger("gemmines.api")

games_bp = Blueprint("games", __name__, url_prefix="/api")

_AMOUNT_KEYS = ("stake", "current_multiplier", "payout", "multiplier")


# ═══════════════════════════════════════════════
# Request bodies
# ═══════════════════════════════════════════════

class StartGameRequest(BaseModel):
    """stake is in base units (1 credit == 10**18), as a JSON int or digit string."""
    stake: str = Field(pattern=r"^[0-9]+$", max_length=40)
    hazard_count: int
    player_seed: Optional[str] = None

    @field_validator("stake", mode="before")
    @classmethod
    def _stake_as_text(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class RevealRequest(BaseModel):
    cell_index: int


class ClaimRequest(BaseModel):
    safe_found: int


# ═══════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════

class _MissingPlayer(MinesError):
    code = "missing_player"
    http_status = 401


def _engine():
    return current_app.extensions["gemmines"]


def _caller() -> str:
    player = (request.headers.get("X-Player") or "").strip()
    if not player:
        raise _MissingPlayer("X-Player header required")
    return player


def _body(model):
    return model.model_validate(request.get_json(silent=True) or {})


def _wire(data: dict) -> dict:
    """Amounts to strings, recursively for nested views."""
    out = {}
    for key, value in data.items():
        if isinstance(value, dict):
            out[key] = _wire(value)
        elif key in _AMOUNT_KEYS and isinstance(value, int) and not isinstance(value, bool):
            out[key] = str(value)
        else:
            out[key] = value
    return out


# ═══════════════════════════════════════════════
# Error mapping
# ═══════════════════════════════════════════════

@games_bp.errorhandler(MinesError)
def _mines_error(e):
    logger.info(f"{request.method} {request.path} -> {e.code}: {e}")
    return jsonify(e.to_dict()), e.http_status


@games_bp.errorhandler(ValidationError)
def _bad_body(e):
    details = [{"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
               for err in e.errors()]
    return jsonify({"error": "validation_error", "message": "Invalid request body",
                    "details": details}), 400


# ═══════════════════════════════════════════════
# Game lifecycle
# ═══════════════════════════════════════════════

@games_bp.route("/games", methods=["POST"])
def start_game():
    player = _caller()
    body = _body(StartGameRequest)
    engine = _engine()
    game_id = engine.start(player, int(body.stake), body.hazard_count, body.player_seed)
    return jsonify(_wire(engine.get_game(game_id))), 201


@games_bp.route("/games/<int:game_id>/reveal", methods=["POST"])
def reveal_cell(game_id):
    player = _caller()
    body = _body(RevealRequest)
    result = _engine().reveal(game_id, body.cell_index, player)
    return jsonify(_wire(result))


@games_bp.route("/games/<int:game_id>/cashout", methods=["POST"])
def cash_out(game_id):
    engine = _engine()
    payout = engine.cash_out(game_id, _caller())
    return jsonify(_wire({"payout": payout, "game": engine.get_game(game_id)}))


@games_bp.route("/games/<int:game_id>/claim", methods=["POST"])
def cash_out_with_claim(game_id):
    player = _caller()
    body = _body(ClaimRequest)
    engine = _engine()
    payout = engine.cash_out_with_claim(game_id, player, body.safe_found)
    return jsonify(_wire({"payout": payout, "game": engine.get_game(game_id)}))


@games_bp.route("/games/<int:game_id>/forfeit", methods=["POST"])
def forfeit(game_id):
    engine = _engine()
    engine.forfeit(game_id, _caller())
    return jsonify(_wire(engine.get_game(game_id)))


@games_bp.route("/games/<int:game_id>/abandon", methods=["POST"])
def abandon(game_id):
    engine = _engine()
    engine.abandon(game_id, _caller())
    return jsonify(_wire(engine.get_game(game_id)))


# ═══════════════════════════════════════════════
# Queries
# ═══════════════════════════════════════════════

@games_bp.route("/games/<int:game_id>")
def get_game(game_id):
    return jsonify(_wire(_engine().get_game(game_id)))


@games_bp.route("/games/<int:game_id>/verify")
def verify_game(game_id):
    return jsonify(_engine().verify_game(game_id))


@games_bp.route("/players/<player>/stats")
def player_stats(player):
    return jsonify(_engine().get_player_stats(player))


@games_bp.route("/multipliers/<int:hazard_count>")
def multipliers(hazard_count):
    table = _engine().table
    ladder = table.ladder(hazard_count)
    return jsonify({
        "hazard_count": hazard_count,
        "scale": str(table.scale),
        "ladder": [str(m) for m in ladder],
        "display": [f"{table.to_display(m):.2f}" for m in ladder],
    })


@games_bp.route("/health")
def health():
    return jsonify({"status": "ok", "games": _engine().store.count_by_state()})
