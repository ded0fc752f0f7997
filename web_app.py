"""
Plinko Lounge - Storage Server

Flask app hosting the Plinko storage API. Documents live as JSON files in
PLINKO_DATA_DIR unless a store is passed to create_app().

Usage:
    python web_app.py                     # http://localhost:5000/api/plinko/paths
    gunicorn "web_app:create_app()"
"""

import logging
import os

from flask import Flask, jsonify, request

from config.settings import DATA_DIR, configure_logging
from tools.blob_store import FileBlobStore

logger = logging.getLogger("plinko.api")


def create_app(store=None) -> Flask:
    app = Flask(__name__)
    app.config["PLINKO_STORE"] = store if store is not None else FileBlobStore(DATA_DIR)

    from api.plinko_routes import plinko_bp
    app.register_blueprint(plinko_bp)
    logger.info("Registered Plinko storage blueprint at /api/plinko/")

    @app.errorhandler(404)
    def error_404(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def error_405(e):
        return jsonify({"error": f"Method {request.method} not allowed"}), 405

    @app.errorhandler(500)
    def error_500(e):
        logger.error(f"500 error: {e}", exc_info=True)
        return jsonify({"error": "Internal server error"}), 500

    return app


if __name__ == "__main__":
    configure_logging()
    port = int(os.getenv("PORT", 5000))
    logger.info(f"Plinko storage - http://localhost:{port}/api/plinko")
    create_app().run(debug=os.getenv("FLASK_DEBUG", "false").lower() == "true",
                     host="0.0.0.0", port=port)
