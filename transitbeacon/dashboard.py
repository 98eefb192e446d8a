"""
Transit Beacon Relay status API

Provides read-only API endpoints for a running relay:
- Duty cycle phase and counters
- Active notifications with remaining time-to-live
"""

import logging

from flask import Blueprint, Flask, current_app, jsonify

log = logging.getLogger('beacon-dashboard')

relay_bp = Blueprint('relay', __name__, url_prefix='/api/relay')


def _node():
    return current_app.extensions['transitbeacon.relay']


@relay_bp.route('/status', methods=['GET'])
def api_get_status():
    """Get relay status, counters and active notifications."""
    return jsonify(_node().get_status())


@relay_bp.route('/notifications', methods=['GET'])
def api_get_notifications():
    """Get active notifications."""
    notifications = _node().get_notifications()
    return jsonify({
        "notifications": notifications,
        "count": len(notifications)
    })


@relay_bp.route('/notifications/<notification_id>', methods=['GET'])
def api_get_notification(notification_id: str):
    """Get a single active notification by its hex id."""
    try:
        nid = bytes.fromhex(notification_id)
    except ValueError:
        return jsonify({"error": "notification id must be hex"}), 400

    node = _node()
    entry = node.store.get(nid)
    if entry is None:
        return jsonify({"error": "not found"}), 404
    return jsonify(entry.to_dict(node.clock()))


def create_app(node) -> Flask:
    """Build a Flask app serving the status API for ``node``."""
    app = Flask(__name__)
    app.extensions['transitbeacon.relay'] = node
    app.register_blueprint(relay_bp)
    return app
