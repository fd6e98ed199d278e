"""Quotes blueprint: send, download and customer decision endpoints (JSON)."""
import logging
from io import BytesIO

from flask import Blueprint, current_app, jsonify, request, send_file

from app.database import get_session
from app.services.quote_service import accept_quote, reject_quote

logger = logging.getLogger(__name__)

quotes_bp = Blueprint('quotes', __name__, url_prefix='/quotes')


def _pipeline():
    return current_app.extensions['quote_pipeline']


def _quote_summary(quote):
    return {
        'id': quote.id,
        'quote_number': quote.quote_number,
        'status': quote.status,
        'accepted_at': quote.accepted_at.isoformat() if quote.accepted_at else None,
        'rejected_at': quote.rejected_at.isoformat() if quote.rejected_at else None,
        'deposit_paid_at': quote.deposit_paid_at.isoformat() if quote.deposit_paid_at else None,
    }


@quotes_bp.route('/<int:quote_id>/send', methods=['POST'])
def send_quote(quote_id):
    """
    Email the quote with its payment link and PDF.

    Body: {"payment_mode": "deposit" | "full"} (defaults to full).
    """
    data = request.get_json(silent=True) or {}
    payment_mode = data.get('payment_mode', 'full')

    result = _pipeline().send_quote(get_session(), quote_id, payment_mode)
    return jsonify(result.to_dict()), 200


@quotes_bp.route('/<int:quote_id>/pdf', methods=['GET'])
def download_pdf(quote_id):
    """Current quote as a PDF (fallback layout if the full render fails)."""
    document = _pipeline().render_quote_document(get_session(), quote_id)
    return send_file(
        BytesIO(document.content),
        mimetype=document.content_type,
        as_attachment=request.args.get('download') == '1',
        download_name=document.filename,
    )


@quotes_bp.route('/<int:quote_id>/accept', methods=['POST'])
def accept(quote_id):
    quote = accept_quote(get_session(), quote_id)
    return jsonify({'status': 'ok', 'quote': _quote_summary(quote)}), 200


@quotes_bp.route('/<int:quote_id>/reject', methods=['POST'])
def reject(quote_id):
    quote = reject_quote(get_session(), quote_id)
    return jsonify({'status': 'ok', 'quote': _quote_summary(quote)}), 200


@quotes_bp.route('/success', methods=['GET'])
def checkout_success():
    """
    Checkout return page. Payment is only recorded by the webhook; this just
    reports what the provider says about the session.
    """
    quote_id = request.args.get('quoteId', type=int)
    session_id = request.args.get('session_id')
    paid = False
    if session_id:
        try:
            paid = _pipeline().payment_issuer.is_session_paid(session_id)
        except Exception as e:
            logger.warning(f"[PAYMENT] Could not check session {session_id} for quote {quote_id}: {e}")
    return jsonify({'status': 'ok', 'quote_id': quote_id, 'session_id': session_id, 'paid': paid}), 200


@quotes_bp.route('/cancel', methods=['GET'])
def checkout_cancel():
    quote_id = request.args.get('quoteId', type=int)
    return jsonify({
        'status': 'canceled',
        'quote_id': quote_id,
        'contact_url': _pipeline().contact_url(quote_id),
    }), 200
