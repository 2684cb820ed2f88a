"""Models package - exports all SQLAlchemy models."""
# Master data
from backoffice.models.supplier import Supplier
from backoffice.models.customer import Customer, BILLING_CYCLES, PAYMENT_TERMS
from backoffice.models.category import Category
from backoffice.models.product_prefix import ProductPrefix

# Inventory
from backoffice.models.purchase import Purchase, PurchaseStatus, derive_status

# Deliveries & invoicing
from backoffice.models.delivery import (
    Delivery, DeliveryStatus, DeliveryType, InputMode, PurchaseLinkStatus,
    format_delivery_number
)
from backoffice.models.delivery_item import DeliveryItem
from backoffice.models.invoice import Invoice, InvoiceStatus, format_invoice_number

# Access
from backoffice.models.user import User, UserRole

__all__ = [
    'Supplier', 'Customer', 'BILLING_CYCLES', 'PAYMENT_TERMS', 'Category', 'ProductPrefix',
    'Purchase', 'PurchaseStatus', 'derive_status',
    'Delivery', 'DeliveryStatus', 'DeliveryType', 'InputMode', 'PurchaseLinkStatus',
    'format_delivery_number', 'DeliveryItem',
    'Invoice', 'InvoiceStatus', 'format_invoice_number',
    'User', 'UserRole',
]
