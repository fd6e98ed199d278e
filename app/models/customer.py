"""Customer model."""
from sqlalchemy import Column, String, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, BigIntegerType


class Customer(Base):
    """Customer (inquiry contact). Owned by the CRM domain; read-only for quoting."""

    __tablename__ = 'customer'

    id = Column(BigIntegerType, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    company_name = Column(String(200), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    quotes = relationship('Quote', back_populates='customer')

    def __repr__(self):
        return f"<Customer(id={self.id}, name='{self.name}', email='{self.email}')>"
