#!/usr/bin/env python3
"""
Tests for the game API blueprint (api/game_routes.py)

Run: python tests_api_routes.py
"""

import os
import shutil
import sys
import tempfile
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from config.settings import GameConfig
from game_engine import GameEngine, GameStore, MultiplierTable
from game_engine.hazards import commit, derive
from tools.ledger import SQLiteLedger

CREDIT = GameConfig.CREDIT
ENGINE_SEED = bytes(range(32))
PLAYER_SEED = b"player-seed-0001"


class _Config(GameConfig):
    ABANDON_TIMEOUT_S = 3600
    ALLOW_CLAIM_SETTLEMENT = True


class TestGameRoutes(unittest.TestCase):
    """JSON API over a real engine on temp SQLite files."""

    def setUp(self):
        from web_app import create_app

        self.tmpdir = tempfile.mkdtemp()
        self.ledger = SQLiteLedger(os.path.join(self.tmpdir, "ledger.db"))
        self.engine = GameEngine(
            GameStore(os.path.join(self.tmpdir, "mines.db")), self.ledger,
            table=MultiplierTable(hazard_counts=range(1, 11), house_edge="0.95"),
            config=_Config, seed_source=lambda: ENGINE_SEED,
        )
        self.ledger.mint("alice", 1_000 * CREDIT)
        self.ledger.approve("alice", 1_000 * CREDIT)

        self.app = create_app(self.engine)
        self.app.config["TESTING"] = True
        self.client = self.app.test_client()

        hazards = derive(ENGINE_SEED, PLAYER_SEED, 3, 25)
        self.hazard = min(hazards)
        self.safe = sorted(set(range(25)) - hazards)

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def _post(self, path, body=None, player="alice"):
        headers = {"X-Player": player} if player else {}
        return self.client.post(path, json=body or {}, headers=headers)

    def _start(self, stake=None, hazard_count=3, player="alice"):
        resp = self._post("/api/games", {
            "stake": stake if stake is not None else str(100 * CREDIT),
            "hazard_count": hazard_count,
            "player_seed": PLAYER_SEED.hex(),
        }, player=player)
        return resp

    # ── Lifecycle ──

    def test_start_game(self):
        resp = self._start()
        self.assertEqual(resp.status_code, 201)
        data = resp.get_json()
        self.assertEqual(data["state"], "active")
        self.assertEqual(data["stake"], str(100 * CREDIT))
        self.assertEqual(data["current_multiplier"], str(GameConfig.MULTIPLIER_SCALE))
        self.assertEqual(data["engine_seed_hash"], commit(ENGINE_SEED))
        self.assertNotIn("hazard_positions", data)
        self.assertNotIn("engine_seed", data)

    def test_start_accepts_int_stake(self):
        resp = self._start(stake=5 * CREDIT)
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.get_json()["stake"], str(5 * CREDIT))

    def test_reveal_and_cash_out(self):
        gid = self._start().get_json()["id"]
        resp = self._post(f"/api/games/{gid}/reveal", {"cell_index": self.safe[0]})
        self.assertEqual(resp.status_code, 200)
        self.assertFalse(resp.get_json()["is_hazard"])
        self.assertEqual(resp.get_json()["current_multiplier"], "1080000000000000000")

        resp = self._post(f"/api/games/{gid}/cashout")
        self.assertEqual(resp.status_code, 200)
        data = resp.get_json()
        self.assertEqual(data["payout"], str(108 * CREDIT))
        self.assertEqual(data["game"]["state"], "completed")
        self.assertEqual(data["game"]["payout"], str(108 * CREDIT))
        self.assertEqual(self.ledger.balance_of("alice"), 1_008 * CREDIT)

    def test_reveal_hazard(self):
        gid = self._start().get_json()["id"]
        resp = self._post(f"/api/games/{gid}/reveal", {"cell_index": self.hazard})
        data = resp.get_json()
        self.assertTrue(data["is_hazard"])
        self.assertEqual(data["state"], "completed")
        self.assertEqual(data["payout"], "0")

    def test_claim(self):
        gid = self._start().get_json()["id"]
        resp = self._post(f"/api/games/{gid}/claim", {"safe_found": 2})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["payout"], str(123 * CREDIT))
        self.assertTrue(resp.get_json()["game"]["claimed"])

    def test_forfeit_then_verify(self):
        gid = self._start().get_json()["id"]
        resp = self.client.get(f"/api/games/{gid}/verify")
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.get_json()["error"], "seed_not_revealed")

        resp = self._post(f"/api/games/{gid}/forfeit")
        self.assertEqual(resp.get_json()["state"], "completed")

        resp = self.client.get(f"/api/games/{gid}/verify")
        self.assertEqual(resp.status_code, 200)
        data = resp.get_json()
        self.assertTrue(data["verified"])
        self.assertEqual(data["engine_seed"], ENGINE_SEED.hex())

    def test_abandon_too_early(self):
        gid = self._start().get_json()["id"]
        resp = self._post(f"/api/games/{gid}/abandon")
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.get_json()["error"], "abandon_too_early")

    # ── Error mapping ──

    def test_missing_player_header(self):
        resp = self._start(player=None)
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.get_json()["error"], "missing_player")

    def test_bad_body(self):
        resp = self._post("/api/games", {"stake": "12abc", "hazard_count": 3})
        self.assertEqual(resp.status_code, 400)
        data = resp.get_json()
        self.assertEqual(data["error"], "validation_error")
        self.assertEqual(data["details"][0]["field"], "stake")

    def test_oversized_stake(self):
        resp = self._start(stake="1" * 5000)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()["error"], "validation_error")
        self.assertEqual(self.ledger.escrow_balance(), 0)

    def test_too_many_hazards(self):
        resp = self._start(hazard_count=11)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()["error"], "invalid_configuration")
        self.assertEqual(self.ledger.escrow_balance(), 0)

    def test_insufficient_funds(self):
        resp = self._start(player="bob")
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.get_json()["error"], "insufficient_funds")

    def test_not_owner(self):
        gid = self._start().get_json()["id"]
        resp = self._post(f"/api/games/{gid}/reveal", {"cell_index": 0}, player="mallory")
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.get_json()["error"], "not_owner")

    def test_unknown_game(self):
        resp = self.client.get("/api/games/424242")
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.get_json()["error"], "game_not_found")

    def test_double_cash_out(self):
        gid = self._start().get_json()["id"]
        self._post(f"/api/games/{gid}/reveal", {"cell_index": self.safe[0]})
        self.assertEqual(self._post(f"/api/games/{gid}/cashout").status_code, 200)
        resp = self._post(f"/api/games/{gid}/cashout")
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.get_json()["error"], "game_not_active")

    def test_unknown_route(self):
        resp = self.client.get("/api/nope")
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.get_json()["error"], "not_found")

    # ── Queries ──

    def test_get_game(self):
        gid = self._start().get_json()["id"]
        resp = self.client.get(f"/api/games/{gid}")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["player"], "alice")

    def test_player_stats(self):
        self._start()
        self._start()
        data = self.client.get("/api/players/alice/stats").get_json()
        self.assertEqual(data["total_games"], 2)
        self.assertEqual(data["total_wins"], 0)
        self.assertEqual(len(data["game_ids"]), 2)

    def test_multipliers(self):
        data = self.client.get("/api/multipliers/3").get_json()
        self.assertEqual(len(data["ladder"]), 23)
        self.assertEqual(data["display"][0], "1.00")
        self.assertEqual(data["display"][1], "1.08")
        self.assertEqual(data["display"][-1], "2185.00")
        self.assertEqual(self.client.get("/api/multipliers/11").status_code, 400)

    def test_health(self):
        self._start()
        data = self.client.get("/api/health").get_json()
        self.assertEqual(data["status"], "ok")
        self.assertEqual(data["games"]["active"], 1)


if __name__ == "__main__":
    import logging
    logging.disable(logging.WARNING)

    unittest.main(verbosity=2)
