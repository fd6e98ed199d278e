"""
Webhooks Blueprint for payment provider notifications.
A completed checkout records a deposit or a full payment on its quote.
"""

import hashlib
import hmac
import logging

import stripe
from flask import Blueprint, current_app, jsonify, request

from app.database import get_session
from app.exceptions import QuotePipelineError
from app.models import PaymentMode
from app.services.quote_service import mark_quote_paid

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint('webhooks', __name__, url_prefix='/webhooks')


def _checkout_provider():
    return current_app.extensions['quote_pipeline'].payment_issuer.provider


def _field(obj, key):
    """Subscript lookup; Stripe objects are not dicts on every SDK release."""
    if obj is None or key not in obj:
        return None
    return obj[key]


def _parse_reference(reference):
    """`quote:{id}:{mode}` idempotency key used as the MP external_reference -> (id, mode)."""
    parts = (reference or '').split(':')
    if len(parts) == 3 and parts[0] == 'quote' and parts[1].isdigit():
        return int(parts[1]), parts[2]
    return None, None


def _mark_paid(quote_id, session_id, mode):
    """Record the payment; lifecycle conflicts are acknowledged so the provider stops retrying."""
    session = get_session()
    try:
        quote = mark_quote_paid(session, quote_id, session_id=session_id, mode=mode)
    except QuotePipelineError as e:
        logger.warning(f"[PAYMENT] Payment for quote {quote_id} not applied: {e.message}")
        return jsonify({'status': 'ignored', 'reason': e.message}), 200
    return jsonify({'status': 'processed', 'quote_id': quote.id, 'quote_status': quote.status}), 200


@webhooks_bp.route('/stripe', methods=['POST'])
def stripe_webhook():
    """Handle Stripe events; only checkout.session.completed changes state."""
    secret = current_app.config.get('STRIPE_WEBHOOK_SECRET')
    if not secret:
        logger.warning("[PAYMENT] Stripe webhook received but STRIPE_WEBHOOK_SECRET is not set")
        return jsonify({'error': 'Webhook not configured'}), 400

    payload = request.get_data()
    signature = request.headers.get('Stripe-Signature', '')
    try:
        event = stripe.Webhook.construct_event(payload, signature, secret)
    except ValueError:
        logger.warning("[PAYMENT] Invalid Stripe webhook payload")
        return jsonify({'error': 'Invalid payload'}), 400
    except stripe.SignatureVerificationError:
        logger.warning("[PAYMENT] Invalid Stripe webhook signature")
        return jsonify({'error': 'Invalid signature'}), 400

    event_type = event['type']
    logger.info(f"[PAYMENT] Received Stripe webhook: type={event_type}")
    if event_type != 'checkout.session.completed':
        return jsonify({'status': 'ignored', 'type': event_type}), 200

    checkout = event['data']['object']
    session_id = _field(checkout, 'id')
    metadata = _field(checkout, 'metadata')
    quote_id = _field(metadata, 'quoteId')
    if not quote_id or not str(quote_id).isdigit():
        logger.warning(f"[PAYMENT] Stripe session {session_id} has no quoteId metadata")
        return jsonify({'status': 'ignored', 'reason': 'missing quoteId'}), 200
    payment_status = _field(checkout, 'payment_status')
    if payment_status != 'paid':
        logger.info(f"[PAYMENT] Stripe session {session_id} completed unpaid ({payment_status})")
        return jsonify({'status': 'ignored', 'reason': 'not paid'}), 200

    return _mark_paid(int(quote_id), session_id, _field(metadata, 'paymentMode') or PaymentMode.FULL.value)


def verify_mp_signature(request_data: bytes, signature: str) -> bool:
    """
    Verify Mercado Pago webhook signature.
    """
    secret = current_app.config.get('MP_WEBHOOK_SECRET')

    if not secret:
        if current_app.debug or current_app.testing:
            logger.info("Skipping MP webhook signature verification (no MP_WEBHOOK_SECRET in dev/test)")
            return True
        logger.warning("MP_WEBHOOK_SECRET is not set; rejecting MP webhook")
        return False

    if not signature:
        logger.warning("Missing X-Signature header in MP webhook")
        return False

    expected_signature = hmac.new(
        secret.encode('utf-8'),
        request_data,
        hashlib.sha256
    ).hexdigest()

    is_valid = hmac.compare_digest(signature, expected_signature)
    if not is_valid:
        logger.warning("Invalid MP webhook signature")
    return is_valid


@webhooks_bp.route('/mercadopago', methods=['POST'])
def mercadopago_webhook():
    """
    Handle Mercado Pago payment notifications.

    The payload only names the payment; its status and external_reference
    are fetched from the API before anything is recorded.
    """
    signature = request.headers.get('X-Signature', '')
    if not verify_mp_signature(request.get_data(), signature):
        return jsonify({'error': 'Invalid signature'}), 401

    data = request.get_json(silent=True)
    if not data:
        logger.warning("Empty webhook payload")
        return jsonify({'error': 'Empty payload'}), 400

    event_type = data.get('type')
    logger.info(f"[PAYMENT] Received MP webhook: type={event_type}, action={data.get('action')}")
    if event_type != 'payment':
        return jsonify({'status': 'ignored', 'type': event_type}), 200

    payment_id = (data.get('data') or {}).get('id')
    if not payment_id:
        logger.warning("Missing payment_id in payment webhook")
        return jsonify({'error': 'Missing payment_id'}), 400

    provider = _checkout_provider()
    if not hasattr(provider, 'get_payment'):
        logger.warning(f"[PAYMENT] MP webhook received but active provider is {provider.name}")
        return jsonify({'status': 'ignored', 'reason': 'provider not active'}), 200

    try:
        payment = provider.get_payment(payment_id)
    except QuotePipelineError as e:
        # Non-2xx makes MP redeliver later
        logger.warning(f"[PAYMENT] Could not fetch MP payment {payment_id}: {e.message}")
        return jsonify({'error': 'Payment lookup failed'}), 502

    if payment.get('status') != 'approved':
        logger.info(f"[PAYMENT] MP payment {payment_id} status={payment.get('status')}; nothing to record")
        return jsonify({'status': 'acknowledged'}), 200

    quote_id, mode = _parse_reference(payment.get('external_reference'))
    if quote_id is None:
        logger.warning(f"[PAYMENT] MP payment {payment_id} has unknown reference "
                       f"{payment.get('external_reference')!r}")
        return jsonify({'status': 'ignored', 'reason': 'unknown reference'}), 200

    return _mark_paid(quote_id, None, mode)
