"""
GEMMINES - Provably fair mines engine, HTTP entry point

Run locally:
    python web_app.py
Under gunicorn:
    gunicorn "web_app:create_app()"
"""
import logging
import os

from flask import Flask, jsonify, request
from dotenv import load_dotenv

from config.settings import GameConfig

load_dotenv()

# ── Structured logging ──
logging.basicConfig(
    level=getattr(logging, GameConfig.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("gemmines")


def create_app(engine=None) -> Flask:
    """Build the Flask app around a GameEngine (a SQLite-backed one by default)."""
    if engine is None:
        from game_engine import GameEngine, GameStore
        from tools.ledger import SQLiteLedger
        engine = GameEngine(GameStore(GameConfig.DB_PATH),
                            SQLiteLedger(GameConfig.LEDGER_DB_PATH))

    app = Flask(__name__)
    app.extensions["gemmines"] = engine

    from api.game_routes import games_bp
    app.register_blueprint(games_bp)
    logger.info("Registered game API blueprint at /api/")

    @app.errorhandler(404)
    def error_404(e):
        return jsonify({"error": "not_found", "message": f"No route for {request.path}"}), 404

    @app.errorhandler(500)
    def error_500(e):
        logger.error(f"500 error: {e}", exc_info=True)
        return jsonify({"error": "internal_error", "message": "Internal server error"}), 500

    return app


if __name__ == "__main__":
    port = int(os.getenv("PORT", 5000))
    logger.info(f"GEMMINES - http://localhost:{port}")
    create_app().run(debug=os.getenv("FLASK_DEBUG", "false").lower() == "true",
                     host="0.0.0.0", port=port)
