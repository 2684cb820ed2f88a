"""Delivery model."""
from sqlalchemy import Column, BigInteger, String, Text, Numeric, Date, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backoffice.database import Base, BigIntegerPK
import enum


class DeliveryStatus(enum.Enum):
    """Delivery lifecycle status."""
    PENDING = "PENDING"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    ERROR = "ERROR"
    INVOICED = "INVOICED"


class DeliveryType(enum.Enum):
    """Outbound delivery or customer return."""
    NORMAL = "NORMAL"
    RETURN = "RETURN"


class InputMode(enum.Enum):
    """How items were entered: against purchase lots, or free-form."""
    NORMAL = "NORMAL"
    DIRECT = "DIRECT"


class PurchaseLinkStatus(enum.Enum):
    LINKED = "LINKED"
    UNLINKED = "UNLINKED"


def format_delivery_number(delivery_id: int) -> str:
    return f"DEL-{delivery_id:08d}"


class Delivery(Base):
    """Delivery slip to a customer (or a return from one)."""

    __tablename__ = 'delivery'

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)
    delivery_number = Column(String(20), nullable=True, unique=True)
    customer_id = Column(BigInteger, ForeignKey('customer.id'), nullable=False)
    delivery_date = Column(Date, nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(Enum(DeliveryStatus, name='delivery_status'), nullable=False, default=DeliveryStatus.PENDING)
    type = Column(Enum(DeliveryType, name='delivery_type'), nullable=False, default=DeliveryType.NORMAL)
    input_mode = Column(Enum(InputMode, name='delivery_input_mode'), nullable=False, default=InputMode.NORMAL)
    purchase_link_status = Column(
        Enum(PurchaseLinkStatus, name='purchase_link_status'),
        nullable=False, default=PurchaseLinkStatus.LINKED
    )

    # Returns
    return_reason = Column(Text, nullable=True)
    original_delivery_id = Column(BigInteger, ForeignKey('delivery.id', ondelete='SET NULL'), nullable=True)

    # A delivery belongs to at most one invoice
    invoice_id = Column(BigInteger, ForeignKey('invoice.id', ondelete='SET NULL'), nullable=True, index=True)

    # Exported delivery slip
    google_sheet_id = Column(String(100), nullable=True)
    google_sheet_url = Column(Text, nullable=True)

    # Legacy accounting integration ids (read-only)
    freee_delivery_slip_id = Column(BigInteger, nullable=True)
    freee_invoice_id = Column(BigInteger, nullable=True)

    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    customer = relationship('Customer', back_populates='deliveries')
    invoice = relationship('Invoice', back_populates='deliveries')
    original_delivery = relationship('Delivery', remote_side=[id])
    items = relationship(
        'DeliveryItem', back_populates='delivery',
        cascade='all, delete-orphan', order_by='DeliveryItem.id'
    )

    @property
    def is_return(self):
        return self.type == DeliveryType.RETURN

    @property
    def is_invoiced(self):
        """True when the delivery is claimed by an invoice (current or legacy)."""
        return (
            self.invoice_id is not None
            or self.status == DeliveryStatus.INVOICED
            or self.freee_invoice_id is not None
        )

    @property
    def signed_amount(self):
        """Total amount with returns counted negatively."""
        return -self.total_amount if self.is_return else self.total_amount

    def to_dict(self, include_items=True):
        data = {
            'id': self.id,
            'delivery_number': self.delivery_number,
            'customer_id': self.customer_id,
            'customer_name': self.customer.company_name if self.customer else None,
            'delivery_date': self.delivery_date.isoformat() if self.delivery_date else None,
            'total_amount': float(self.total_amount or 0),
            'status': self.status.value,
            'type': self.type.value,
            'input_mode': self.input_mode.value,
            'purchase_link_status': self.purchase_link_status.value,
            'return_reason': self.return_reason,
            'original_delivery_id': self.original_delivery_id,
            'invoice_id': self.invoice_id,
            'google_sheet_id': self.google_sheet_id,
            'google_sheet_url': self.google_sheet_url,
            'notes': self.notes,
        }
        if include_items:
            data['items'] = [item.to_dict() for item in self.items]
        return data

    def __repr__(self):
        return f"<Delivery(id={self.id}, number='{self.delivery_number}', status={self.status.value})>"
