"""Models package - exports all SQLAlchemy models."""
from app.models.customer import Customer
from app.models.quote import (
    Quote, QuoteStatus, DepositType, PaymentMode,
    ALLOWED_TRANSITIONS, can_transition
)
from app.models.quote_line import QuoteLineItem
from app.models.notification_attempt import NotificationAttempt, NotificationStatus

__all__ = [
    'Customer',
    'Quote', 'QuoteStatus', 'DepositType', 'PaymentMode',
    'ALLOWED_TRANSITIONS', 'can_transition',
    'QuoteLineItem',
    'NotificationAttempt', 'NotificationStatus',
]
