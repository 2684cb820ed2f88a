"""Purchase model - a lot of produce bought from a supplier."""
from decimal import Decimal
from sqlalchemy import (
    Column, BigInteger, String, Text, Numeric, Date, DateTime, Boolean,
    ForeignKey, CheckConstraint, case
)
from sqlalchemy.orm import relationship
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.sql import func
from backoffice.database import Base, BigIntegerPK
import enum


class PurchaseStatus(str, enum.Enum):
    """Usage status of a lot, derived from remaining vs. bought quantity."""
    UNUSED = 'UNUSED'
    PARTIAL = 'PARTIAL'
    USED = 'USED'


def derive_status(remaining_quantity, quantity) -> PurchaseStatus:
    """
    Derive lot status from its remaining quantity.

    USED when nothing remains, UNUSED when nothing was consumed,
    PARTIAL otherwise. Defined for every 0 <= remaining <= quantity.
    """
    remaining = Decimal(remaining_quantity or 0)
    if remaining == 0:
        return PurchaseStatus.USED
    if remaining == Decimal(quantity or 0):
        return PurchaseStatus.UNUSED
    return PurchaseStatus.PARTIAL


class Purchase(Base):
    """Purchase lot (one product bought from one supplier on one date)."""

    __tablename__ = 'purchase'

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)
    product_name = Column(String(200), nullable=False)
    category_id = Column(BigInteger, ForeignKey('category.id'), nullable=True)
    product_prefix_id = Column(BigInteger, ForeignKey('product_prefix.id'), nullable=True)
    supplier_id = Column(BigInteger, ForeignKey('supplier.id'), nullable=False)
    quantity = Column(Numeric(12, 2), nullable=False)
    unit = Column(String(20), nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    purchase_date = Column(Date, nullable=False)
    expiry_date = Column(Date, nullable=True)
    remaining_quantity = Column(Numeric(12, 2), nullable=False)

    # Set when an edit had to clamp remaining_quantity into [0, quantity]
    needs_review = Column(Boolean, nullable=False, default=False)
    review_note = Column(Text, nullable=True)

    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint('quantity > 0', name='ck_purchase_quantity_positive'),
        CheckConstraint('unit_price >= 0', name='ck_purchase_unit_price'),
        CheckConstraint(
            'remaining_quantity >= 0 AND remaining_quantity <= quantity',
            name='ck_purchase_remaining_range'
        ),
    )

    # Relationships
    supplier = relationship('Supplier', back_populates='purchases')
    category = relationship('Category', back_populates='purchases')
    product_prefix = relationship('ProductPrefix', back_populates='purchases')
    delivery_items = relationship('DeliveryItem', back_populates='purchase')

    @hybrid_property
    def status(self):
        """Derived usage status (never stored)."""
        return derive_status(self.remaining_quantity, self.quantity)

    @status.expression
    def status(cls):
        return case(
            (cls.remaining_quantity == 0, PurchaseStatus.USED.value),
            (cls.remaining_quantity == cls.quantity, PurchaseStatus.UNUSED.value),
            else_=PurchaseStatus.PARTIAL.value
        )

    @property
    def consumed_quantity(self):
        return Decimal(self.quantity or 0) - Decimal(self.remaining_quantity or 0)

    def to_dict(self):
        return {
            'id': self.id,
            'product_name': self.product_name,
            'category_id': self.category_id,
            'category_name': self.category.name if self.category else None,
            'product_prefix_id': self.product_prefix_id,
            'product_prefix': self.product_prefix.name if self.product_prefix else None,
            'supplier_id': self.supplier_id,
            'supplier_name': self.supplier.company_name if self.supplier else None,
            'quantity': float(self.quantity),
            'unit': self.unit,
            'unit_price': float(self.unit_price),
            'price': float(self.price),
            'purchase_date': self.purchase_date.isoformat() if self.purchase_date else None,
            'expiry_date': self.expiry_date.isoformat() if self.expiry_date else None,
            'remaining_quantity': float(self.remaining_quantity),
            'status': self.status.value,
            'needs_review': bool(self.needs_review),
            'review_note': self.review_note,
            'notes': self.notes,
        }

    def __repr__(self):
        return (
            f"<Purchase(id={self.id}, product='{self.product_name}', "
            f"remaining={self.remaining_quantity}/{self.quantity})>"
        )
