"""Health and tunnel status routes."""

from flask import jsonify

from api import api_bp
from api.helpers import get_connection_manager
from webhook_store import utc_timestamp


@api_bp.route('/health', methods=['GET'])
def health():
    return jsonify({'status': 'ok', 'timestamp': utc_timestamp()})


@api_bp.route('/api/tunnel', methods=['GET'])
def tunnel_status():
    """
    Current tunnel connection snapshot.

    Returns:
        JSON with phase, connected, url, retry_attempt and reconnecting
    """
    manager = get_connection_manager()
    if manager is None:
        return jsonify({
            'phase': 'idle',
            'connected': False,
            'url': None,
            'retry_attempt': 0,
            'reconnecting': False,
        })
    return jsonify(manager.status())
