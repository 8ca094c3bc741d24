import logging

from flask import Blueprint, jsonify, request

from ..errors import WebhookSignatureError
from ..payments import get_billing

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint('webhooks', __name__)


@webhooks_bp.route('/publication', methods=['POST'])
def publication_webhook():
    payload = request.get_data()
    signature = request.headers.get('Stripe-Signature', '')
    try:
        result = get_billing().process_webhook(payload, signature)
    except WebhookSignatureError as exc:
        return jsonify({'error': exc.message}), 400
    except Exception:
        # A failed mutation must not be acknowledged; Stripe will redeliver.
        logger.exception('Publication webhook handler failed.')
        return jsonify({'error': 'Webhook handler failed'}), 500

    logger.info(
        'Webhook %s (%s): %s',
        result.get('event_id'),
        result.get('event_type'),
        result.get('action'),
    )
    return jsonify({'received': True})
