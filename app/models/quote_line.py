"""QuoteLineItem model for quote line items."""
from sqlalchemy import Column, BigInteger, String, Numeric, Integer, Text, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from app.database import Base, BigIntegerType


class QuoteLineItem(Base):
    """
    Quote line item.

    `total` is stored as quantity x unit_price at creation time so the
    document and the email show the same figures the customer agreed to.
    """

    __tablename__ = 'quote_line_item'
    __table_args__ = (
        CheckConstraint('quantity > 0', name='ck_quote_line_quantity_positive'),
        CheckConstraint('unit_price >= 0', name='ck_quote_line_unit_price_non_negative'),
    )

    id = Column(BigIntegerType, primary_key=True, autoincrement=True)
    quote_id = Column(BigInteger, ForeignKey('quote.id'), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    description = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(12, 2), nullable=False)
    total = Column(Numeric(12, 2), nullable=False)
    notes = Column(Text, nullable=True)

    # Relationships
    quote = relationship('Quote', back_populates='items')

    def __repr__(self):
        return f"<QuoteLineItem(id={self.id}, quote_id={self.quote_id}, description='{self.description}', qty={self.quantity}, total={self.total})>"
