from flask import Flask, request, jsonify, session
from flask_compress import Compress
from web3 import Web3
from datetime import timedelta
import os
import logging

from config import LOG_LEVEL, SECRET_KEY
from quiz_engine import init_quiz_engine
from quiz_engine.models import mask_wallet_address
from score_store import init_score_store

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Reduce werkzeug logging for health checks
logging.getLogger('werkzeug').setLevel(logging.ERROR)
logging.getLogger('httpx').setLevel(logging.ERROR)
logging.getLogger('urllib3').setLevel(logging.WARNING)


def create_app(config_overrides=None, engine=None):
    """Build the Flask app with the quiz engine and score store registered"""
    app = Flask(__name__)
    app.secret_key = SECRET_KEY

    # Enable gzip compression
    Compress().init_app(app)

    app.permanent_session_lifetime = timedelta(hours=24)
    app.config['SESSION_COOKIE_HTTPONLY'] = True
    app.config['SESSION_COOKIE_SAMESITE'] = 'Lax'
    app.config['JSON_SORT_KEYS'] = False
    if config_overrides:
        app.config.update(config_overrides)

    if not init_quiz_engine(app, engine):
        logger.error("❌ Quiz engine initialization failed")
    if not init_score_store(app):
        logger.error("❌ Score store initialization failed")

    @app.route("/")
    @app.route("/health")
    def health_check():
        """Health check endpoint for deployment"""
        return jsonify({
            "status": "healthy",
            "service": "CryptoQuest Quiz Engine",
            "version": "0.1.0"
        }), 200

    @app.route("/connect-wallet", methods=["POST"])
    def connect_wallet():
        data = request.get_json(silent=True) or {}
        wallet = data.get("wallet")
        if not wallet:
            return jsonify({"success": False, "error": "⚠️ Wallet address required"}), 400
        if not Web3.is_address(wallet):
            return jsonify({"success": False, "error": "❌ Invalid wallet address format"}), 400

        wallet = Web3.to_checksum_address(wallet)
        session["wallet"] = wallet
        session["user_id"] = data.get("user_id") or wallet
        session.permanent = True
        logger.info(f"🔐 Wallet connected: {mask_wallet_address(wallet)}")
        return jsonify({"success": True, "wallet": wallet, "user_id": session["user_id"]})

    @app.route("/logout", methods=["POST"])
    def logout():
        session.clear()
        return jsonify({"success": True})

    return app


if __name__ == "__main__":
    logger.info("🚀 Starting CryptoQuest quiz engine...")
    app = create_app()
    port = int(os.environ.get("PORT", 5000))
    logger.info(f"🌐 Starting Flask server on http://0.0.0.0:{port}")

    # Start Flask with threaded mode for better concurrent request handling
    app.run(host="0.0.0.0", port=port, debug=False, threaded=True, use_reloader=False)
