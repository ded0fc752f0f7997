"""
Plinko Lounge - Storage API

Blueprint serving the two blob-store documents over HTTP so that boards on
other machines (HttpBlobStore) share one path library and one probability
table.

    GET  /api/plinko/paths           stored library, or the empty skeleton
    POST /api/plinko/paths           replace the library wholesale
    GET  /api/plinko/probabilities   stored table, or the defaults
    POST /api/plinko/probabilities   replace the table wholesale
    GET  /api/plinko/health

The backing store is read from app.config["PLINKO_STORE"].
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from tools.blob_store import PATHS_KEY, PROBABILITIES_KEY, StoreError, default_document

logger = logging.getLogger("plinko.api")

plinko_bp = Blueprint("plinko", __name__, url_prefix="/api/plinko")


def _store():
    return current_app.config["PLINKO_STORE"]


def _read(key: str):
    try:
        data = _store().get(key)
    except StoreError as e:
        logger.error(f"Error reading {key}: {e}")
        return jsonify({"error": f"Failed to read {key}"}), 500
    if data is None:
        data = default_document(key)
    return jsonify(data)


def _write(key: str):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Invalid JSON"}), 400
    try:
        _store().put(key, data)
    except StoreError as e:
        logger.error(f"Error writing {key}: {e}")
        return jsonify({"error": f"Failed to save {key}"}), 500
    logger.info(f"Saved {key} ({len(data)} row counts)")
    return jsonify({"success": True})


@plinko_bp.route("/paths", methods=["GET"])
def get_paths():
    return _read(PATHS_KEY)


@plinko_bp.route("/paths", methods=["POST"])
def save_paths():
    return _write(PATHS_KEY)


@plinko_bp.route("/probabilities", methods=["GET"])
def get_probabilities():
    return _read(PROBABILITIES_KEY)


@plinko_bp.route("/probabilities", methods=["POST"])
def save_probabilities():
    return _write(PROBABILITIES_KEY)


@plinko_bp.route("/health")
def health_check():
    """Verifies the backing store is readable."""
    try:
        _store().get(PROBABILITIES_KEY)
        return jsonify({"status": "ok"}), 200
    except StoreError as e:
        return jsonify({"status": "error", "detail": str(e)}), 503
