"""Invoice model - monthly bill for one customer."""
from sqlalchemy import (
    Column, BigInteger, String, Text, Integer, Numeric, Date, DateTime, Enum,
    ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backoffice.database import Base, BigIntegerPK
import enum


class InvoiceStatus(enum.Enum):
    """Invoice status enum."""
    DRAFT = "DRAFT"
    ISSUED = "ISSUED"


def format_invoice_number(customer_id: int, year: int, month: int) -> str:
    return f"INV-{year:04d}{month:02d}-{customer_id:04d}"


class Invoice(Base):
    """Invoice aggregating one customer's delivered deliveries for a month."""

    __tablename__ = 'invoice'

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)
    invoice_number = Column(String(30), nullable=False, unique=True)
    customer_id = Column(BigInteger, ForeignKey('customer.id'), nullable=False)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    total_amount = Column(Numeric(14, 2), nullable=False)
    subtotal_8 = Column(Numeric(14, 2), nullable=False, default=0)
    tax_8 = Column(Numeric(14, 2), nullable=False, default=0)
    subtotal_10 = Column(Numeric(14, 2), nullable=False, default=0)
    tax_10 = Column(Numeric(14, 2), nullable=False, default=0)
    total_tax = Column(Numeric(14, 2), nullable=False, default=0)
    status = Column(Enum(InvoiceStatus, name='invoice_status'), nullable=False, default=InvoiceStatus.DRAFT)

    # Exported invoice document
    google_sheet_id = Column(String(100), nullable=True)
    google_sheet_url = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('customer_id', 'year', 'month', name='uq_invoice_customer_period'),
    )

    # Relationships
    customer = relationship('Customer', back_populates='invoices')
    deliveries = relationship('Delivery', back_populates='invoice', order_by='Delivery.delivery_date')

    @property
    def delivery_ids(self):
        return [d.id for d in self.deliveries]

    @property
    def total_with_tax(self):
        return (self.total_amount or 0) + (self.total_tax or 0)

    def to_dict(self, include_deliveries=False):
        data = {
            'id': self.id,
            'invoice_number': self.invoice_number,
            'customer_id': self.customer_id,
            'customer_name': self.customer.company_name if self.customer else None,
            'year': self.year,
            'month': self.month,
            'issue_date': self.issue_date.isoformat() if self.issue_date else None,
            'due_date': self.due_date.isoformat() if self.due_date else None,
            'total_amount': float(self.total_amount),
            'subtotal_8': float(self.subtotal_8),
            'tax_8': float(self.tax_8),
            'subtotal_10': float(self.subtotal_10),
            'tax_10': float(self.tax_10),
            'total_tax': float(self.total_tax),
            'total_with_tax': float(self.total_with_tax),
            'status': self.status.value,
            'google_sheet_id': self.google_sheet_id,
            'google_sheet_url': self.google_sheet_url,
            'delivery_ids': self.delivery_ids,
        }
        if include_deliveries:
            data['deliveries'] = [d.to_dict(include_items=False) for d in self.deliveries]
        return data

    def __repr__(self):
        return f"<Invoice(id={self.id}, invoice_number='{self.invoice_number}', status={self.status.value})>"
