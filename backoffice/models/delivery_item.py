"""Delivery item model."""
from sqlalchemy import Column, BigInteger, String, Integer, Numeric, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from backoffice.database import Base, BigIntegerPK


class DeliveryItem(Base):
    """Line of a delivery; either drawn from a purchase lot or free-form."""

    __tablename__ = 'delivery_item'

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)
    delivery_id = Column(BigInteger, ForeignKey('delivery.id', ondelete='CASCADE'), nullable=False, index=True)
    purchase_id = Column(BigInteger, ForeignKey('purchase.id'), nullable=True, index=True)
    product_name = Column(String(200), nullable=True)
    category_id = Column(BigInteger, ForeignKey('category.id'), nullable=True)
    unit = Column(String(20), nullable=True)
    quantity = Column(Numeric(12, 2), nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    tax_rate = Column(Integer, nullable=False, default=8)

    __table_args__ = (
        CheckConstraint('quantity > 0', name='ck_delivery_item_quantity_positive'),
        CheckConstraint('tax_rate IN (8, 10)', name='ck_delivery_item_tax_rate'),
    )

    # Relationships
    delivery = relationship('Delivery', back_populates='items')
    purchase = relationship('Purchase', back_populates='delivery_items')
    category = relationship('Category')

    @property
    def display_name(self):
        if self.product_name:
            return self.product_name
        return self.purchase.product_name if self.purchase else ''

    @property
    def display_unit(self):
        if self.unit:
            return self.unit
        return self.purchase.unit if self.purchase else ''

    def to_dict(self):
        return {
            'id': self.id,
            'purchase_id': self.purchase_id,
            'product_name': self.display_name,
            'category_id': self.category_id,
            'unit': self.display_unit,
            'quantity': float(self.quantity),
            'unit_price': float(self.unit_price),
            'amount': float(self.amount),
            'tax_rate': self.tax_rate,
        }

    def __repr__(self):
        return f"<DeliveryItem(id={self.id}, delivery_id={self.delivery_id}, qty={self.quantity})>"
