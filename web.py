import logging
import threading

from flask import Flask, jsonify

logger = logging.getLogger(__name__)


def create_web_app(monitor) -> Flask:
    app_web = Flask(__name__)

    @app_web.get("/")
    def home():
        return "buy bot alive", 200

    @app_web.get("/health")
    def health():
        stats = monitor.stats()
        return jsonify(stats), (200 if stats.get("running") else 503)

    return app_web


def start_web_server(monitor, port: int) -> threading.Thread:
    app_web = create_web_app(monitor)

    def run_web():
        app_web.run(host="0.0.0.0", port=port, debug=False, use_reloader=False)

    t = threading.Thread(target=run_web, name="web", daemon=True)
    t.start()
    logger.info("Health server listening on :%d", port)
    return t
