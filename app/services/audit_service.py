"""
Notification audit trail: append-only NotificationAttempt rows.
"""
import logging
from datetime import datetime
from typing import List

from app.models.notification_attempt import NotificationAttempt, NotificationStatus

logger = logging.getLogger(__name__)


def record_dispatch(
    session,
    quote_id: int,
    recipient: str,
    result,
    pdf_generated: bool,
    payment_link_created: bool,
) -> List[NotificationAttempt]:
    """
    Add one NotificationAttempt per provider attempt in `result`.

    With no provider configured a single FAILED row with provider=None is
    written so the failed send still leaves a trace.

    Args:
        session: Database session
        quote_id: Quote the message was about
        recipient: Customer email
        result: DispatchResult from NotificationDispatcher
        pdf_generated: Whether a document was attached
        payment_link_created: Whether a real checkout link was included

    Returns:
        The added (not yet committed) rows. Caller commits.
    """
    now = datetime.utcnow()
    attempts = list(result.attempts)
    rows = []

    if not attempts:
        rows.append(NotificationAttempt(
            quote_id=quote_id,
            recipient=recipient,
            provider=None,
            status=NotificationStatus.FAILED.value,
            error='No email provider configured',
            attempt_number=1,
            pdf_generated=pdf_generated,
            payment_link_created=payment_link_created,
            created_at=now,
        ))
    else:
        for attempt in attempts:
            rows.append(NotificationAttempt(
                quote_id=quote_id,
                recipient=recipient,
                provider=attempt.provider,
                status=(NotificationStatus.SENT if attempt.sent else NotificationStatus.FAILED).value,
                error=attempt.error,
                attempt_number=attempt.attempt_number,
                pdf_generated=pdf_generated,
                payment_link_created=payment_link_created,
                created_at=now,
            ))

    session.add_all(rows)
    logger.info(f"[QUOTE] Audit: {len(rows)} notification attempt(s) recorded for quote {quote_id}")
    return rows


def list_attempts(session, quote_id: int) -> List[NotificationAttempt]:
    return (
        session.query(NotificationAttempt)
        .filter(NotificationAttempt.quote_id == quote_id)
        .order_by(NotificationAttempt.id)
        .all()
    )
