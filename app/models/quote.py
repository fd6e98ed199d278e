"""Quote model for catering / food-truck / mobile-bar service quotes."""
import enum
from datetime import date

from sqlalchemy import (
    Column, BigInteger, String, Numeric, DateTime, Date, Text, Integer,
    ForeignKey, CheckConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.database import Base, BigIntegerType


class QuoteStatus(enum.Enum):
    """Quote status enum."""
    DRAFT = "DRAFT"
    SENT = "SENT"
    ACCEPTED = "ACCEPTED"
    PAID = "PAID"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class DepositType(enum.Enum):
    """How the quote's deposit is expressed."""
    NONE = "NONE"
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


class PaymentMode(enum.Enum):
    """What a checkout session collects."""
    DEPOSIT = "deposit"
    FULL = "full"


# Forward-only lifecycle. SENT -> SENT is a re-send.
ALLOWED_TRANSITIONS = {
    QuoteStatus.DRAFT: {QuoteStatus.SENT},
    QuoteStatus.SENT: {QuoteStatus.SENT, QuoteStatus.ACCEPTED, QuoteStatus.REJECTED, QuoteStatus.EXPIRED},
    QuoteStatus.ACCEPTED: {QuoteStatus.PAID},
    QuoteStatus.PAID: set(),
    QuoteStatus.REJECTED: set(),
    QuoteStatus.EXPIRED: set(),
}


def can_transition(current, target) -> bool:
    """Check a lifecycle move; accepts enum members or their string values."""
    current = QuoteStatus(current)
    target = QuoteStatus(target)
    return target in ALLOWED_TRANSITIONS[current]


class Quote(Base):
    """
    Quote sent to a customer for an event service.

    Monetary columns are fixed-point. `deposit_value` keeps the deposit as
    entered (percentage or currency amount); `deposit_amount` is the stored
    straight deposit, without the checkout minimum.
    """

    __tablename__ = 'quote'
    __table_args__ = (
        CheckConstraint('amount >= 0', name='ck_quote_amount_non_negative'),
        CheckConstraint('tax_rate_pct >= 0', name='ck_quote_tax_rate_non_negative'),
        CheckConstraint('gratuity_rate_pct >= 0', name='ck_quote_gratuity_rate_non_negative'),
        CheckConstraint('deposit_amount >= 0', name='ck_quote_deposit_non_negative'),
    )

    id = Column(BigIntegerType, primary_key=True, autoincrement=True)
    quote_number = Column(String(32), nullable=False, unique=True)
    customer_id = Column(BigInteger, ForeignKey('customer.id'), nullable=False)
    status = Column(String(20), nullable=False, default=QuoteStatus.DRAFT.value)

    # Money
    amount = Column(Numeric(12, 2), nullable=False, default=0)
    tax_rate_pct = Column(Numeric(5, 2), nullable=False, default=0)
    gratuity_rate_pct = Column(Numeric(5, 2), nullable=False, default=0)
    deposit_type = Column(String(20), nullable=False, default=DepositType.NONE.value)
    deposit_value = Column(Numeric(12, 2), nullable=True)
    deposit_amount = Column(Numeric(12, 2), nullable=False, default=0)
    balance_due = Column(Numeric(12, 2), nullable=False, default=0)

    # Event / service details
    service_type = Column(String(32), nullable=True)  # CATERING, FOOD_TRUCK, MOBILE_BAR
    event_date = Column(Date, nullable=True)
    event_time = Column(String(32), nullable=True)
    event_location = Column(String(255), nullable=True)
    guest_count = Column(Integer, nullable=True)
    terms = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    # Lifecycle
    valid_until = Column(Date, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    deposit_paid_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    # External references
    payment_session_id = Column(String(255), nullable=True)
    payment_link = Column(Text, nullable=True)
    payment_mode = Column(String(16), nullable=True)
    payment_amount = Column(Numeric(12, 2), nullable=True)
    pdf_url = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    customer = relationship('Customer', back_populates='quotes')
    items = relationship(
        'QuoteLineItem',
        back_populates='quote',
        cascade='all, delete-orphan',
        order_by='QuoteLineItem.position'
    )
    notification_attempts = relationship(
        'NotificationAttempt',
        back_populates='quote',
        order_by='NotificationAttempt.id'
    )

    def __repr__(self):
        return f"<Quote(id={self.id}, number='{self.quote_number}', status='{self.status}', amount={self.amount})>"

    def is_overdue(self, today: date) -> bool:
        """A SENT quote past valid_until (same rule as expire_overdue_quotes)."""
        return (
            self.status == QuoteStatus.SENT.value
            and self.valid_until is not None
            and today > self.valid_until
        )

    def can_transition_to(self, target) -> bool:
        return can_transition(self.status, target)
