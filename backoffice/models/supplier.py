"""Supplier model."""
from sqlalchemy import Column, String, Text, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backoffice.database import Base, BigIntegerPK


class Supplier(Base):
    """Supplier (produce farm or wholesaler)."""

    __tablename__ = 'supplier'

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)
    company_name = Column(String(200), nullable=False)
    contact_person = Column(String(100), nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)
    payment_terms = Column(String(100), nullable=True)
    delivery_conditions = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    purchases = relationship('Purchase', back_populates='supplier')

    def to_dict(self):
        return {
            'id': self.id,
            'company_name': self.company_name,
            'contact_person': self.contact_person,
            'phone': self.phone,
            'address': self.address,
            'payment_terms': self.payment_terms,
            'delivery_conditions': self.delivery_conditions,
            'notes': self.notes,
        }

    def __repr__(self):
        return f"<Supplier(id={self.id}, company_name='{self.company_name}')>"
