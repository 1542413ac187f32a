"""Monitoring routes: health probe and screenshot evidence."""

import logging
from datetime import datetime, timezone

from flask import Blueprint, abort, current_app, jsonify, send_from_directory

from services.document_store import IMPOSTORS, MONITORED_DOMAINS, Filter, StoreUnavailableError
from services.object_storage import StorageError
from src.components.impostor_monitoring.config import JOB_STATUS_COLLECTION

logger = logging.getLogger(__name__)

monitoring_bp = Blueprint('monitoring', __name__)


def _uptime(start: datetime, now: datetime) -> str:
    seconds = int((now - start).total_seconds())
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m"


@monitoring_bp.route("/healthz")
def healthz():
    """Lightweight health probe for load balancers / monitoring.

    Reports 503 when the document store cannot be read.
    """
    now = datetime.now(timezone.utc)
    start = current_app.config['SERVER_START_TIME']
    health = {
        "status": "ok",
        "timestamp": now.isoformat(),
        "uptime": _uptime(start, now),
    }
    store = current_app.config['DOCUMENT_STORE']
    try:
        health["monitored_domains"] = len(store.query(MONITORED_DOMAINS))
        health["screenshot_queue"] = len(store.query(IMPOSTORS, [Filter("needs_evidence", "==", True)]))
        health["jobs"] = {key: doc for key, doc in store.query(JOB_STATUS_COLLECTION)}
    except StoreUnavailableError as exc:
        logger.error(f"Health check could not read the document store: {exc}")
        health["status"] = "degraded"
        health["error"] = str(exc)
        return jsonify(health), 503
    return jsonify(health), 200


@monitoring_bp.route("/evidence/<path:object_name>")
def evidence(object_name):
    """Serve a stored screenshot by object name."""
    storage = current_app.config['EVIDENCE_STORAGE']
    try:
        path = storage.resolve(object_name)
    except StorageError:
        abort(404)
    if not path.is_file():
        abort(404)
    return send_from_directory(path.parent, path.name, mimetype="image/png")
