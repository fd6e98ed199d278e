"""
Notification attempt log: one row per provider dispatch attempt for a quote.
Append-only; rows are never updated after insert.
"""
import enum
from datetime import datetime

from sqlalchemy import Column, BigInteger, Integer, String, Text, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship

from app.database import Base, BigIntegerType


class NotificationStatus(enum.Enum):
    """Outcome of a single dispatch attempt."""
    SENT = "SENT"
    FAILED = "FAILED"


class NotificationAttempt(Base):
    """
    Audit row for a quote notification attempt.

    `provider` is None when no provider was configured at all.
    """
    __tablename__ = 'notification_attempt'

    id = Column(BigIntegerType, primary_key=True, autoincrement=True)
    quote_id = Column(BigInteger, ForeignKey('quote.id'), nullable=False, index=True)
    recipient = Column(String(255), nullable=False)
    provider = Column(String(50), nullable=True)
    status = Column(String(10), nullable=False)
    error = Column(Text, nullable=True)
    attempt_number = Column(Integer, nullable=False, default=1)
    pdf_generated = Column(Boolean, nullable=False, default=False)
    payment_link_created = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    # Relationships
    quote = relationship('Quote', back_populates='notification_attempts')

    def __repr__(self):
        return f"<NotificationAttempt {self.status} via {self.provider} for quote {self.quote_id} at {self.created_at}>"
