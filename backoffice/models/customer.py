"""Customer model."""
from sqlalchemy import Column, BigInteger, String, Text, Integer, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backoffice.database import Base, BigIntegerPK

BILLING_CYCLES = ('monthly', 'weekly', 'immediate')
PAYMENT_TERMS = ('immediate', '7days', '15days', '30days', '60days', 'endofmonth')


class Customer(Base):
    """Customer (restaurant, shop) receiving deliveries.

    A customer may point at another customer as its billing party
    (``billing_customer``); invoices are then addressed to that party.
    """

    __tablename__ = 'customer'

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)
    company_name = Column(String(200), nullable=False)
    contact_person = Column(String(100), nullable=True)
    phone = Column(String(50), nullable=True)
    delivery_address = Column(Text, nullable=True)
    billing_address = Column(Text, nullable=True)
    billing_cycle = Column(String(20), nullable=False, default='monthly')
    billing_day = Column(Integer, nullable=False, default=31)
    payment_terms = Column(String(20), nullable=False, default='30days')
    invoice_registration_number = Column(String(20), nullable=True)
    invoice_notes = Column(Text, nullable=True)
    billing_customer_id = Column(BigInteger, ForeignKey('customer.id', ondelete='SET NULL'), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint('billing_day >= 1 AND billing_day <= 31', name='ck_customer_billing_day'),
    )

    # Relationships
    billing_customer = relationship('Customer', remote_side=[id])
    deliveries = relationship('Delivery', back_populates='customer')
    invoices = relationship('Invoice', back_populates='customer')

    @property
    def bill_to(self):
        """Party invoices are addressed to."""
        return self.billing_customer or self

    def to_dict(self):
        return {
            'id': self.id,
            'company_name': self.company_name,
            'contact_person': self.contact_person,
            'phone': self.phone,
            'delivery_address': self.delivery_address,
            'billing_address': self.billing_address,
            'billing_cycle': self.billing_cycle,
            'billing_day': self.billing_day,
            'payment_terms': self.payment_terms,
            'invoice_registration_number': self.invoice_registration_number,
            'invoice_notes': self.invoice_notes,
            'billing_customer_id': self.billing_customer_id,
        }

    def __repr__(self):
        return f"<Customer(id={self.id}, company_name='{self.company_name}')>"
