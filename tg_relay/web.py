import hmac
import logging

from flask import Flask, abort, jsonify, request

logger = logging.getLogger(__name__)


def _same(given, expected):
    if not given or not expected:
        return False
    return hmac.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))


def create_app(settings, ledger, submit_update):
    """Flask app for webhook delivery, health checks and the admin snapshot.

    ``submit_update`` receives the raw update JSON and must return without
    waiting for the update to be processed.
    """
    app = Flask(__name__)

    @app.route("/", methods=["GET"])
    def index():
        return "✅ Bot is running."

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify(status="ok")

    @app.route(f"/{settings.telegram_token}", methods=["POST"])
    def webhook():
        if settings.webhook_secret:
            given = request.headers.get("X-Telegram-Bot-Api-Secret-Token")
            if not _same(given, settings.webhook_secret):
                abort(403)
        payload = request.get_json(force=True, silent=True)
        if not isinstance(payload, dict):
            abort(400)
        submit_update(payload)
        return "ok"

    @app.route("/stats", methods=["GET"])
    def stats():
        given = request.headers.get("X-Admin-Token") or request.args.get("token")
        if not _same(given, settings.admin_token):
            logger.info("refused /stats from %s", request.remote_addr)
            return jsonify(error="forbidden"), 403
        return jsonify(ledger.snapshot())

    return app
