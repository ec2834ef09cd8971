"""Webhook routes - receive callbacks through the tunnel and list them for the viewer."""

import json

from flask import request, jsonify, current_app

from api import api_bp
from api.helpers import build_webhook_record, get_webhook_store


@api_bp.route('/webhook', methods=['POST'])
def receive_webhook():
    """
    Receive a webhook. Always answers 200 so senders never see our problems.
    """
    record = build_webhook_record(request)
    current_app.logger.info(f"Received webhook at {record['timestamp']}")

    if record['body'] is None:
        current_app.logger.info("No payload received")
    else:
        current_app.logger.info(f"Payload: {json.dumps(record['body'], indent=2)}")

    try:
        get_webhook_store().append(record)
    except Exception:
        current_app.logger.exception("Failed to store webhook")

    return jsonify({'message': 'Webhook received'}), 200


@api_bp.route('/api/webhooks', methods=['GET'])
def list_webhooks():
    """Most recent stored webhooks, newest first."""
    return jsonify(get_webhook_store().recent())
