"""Inventory view over purchase lots with stock left."""
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import or_, func
from sqlalchemy.orm import joinedload

from backoffice.models import Purchase, Supplier
from backoffice.services.ledger_service import expiry_health, HEALTH_URGENT, HEALTH_WARNING, HEALTH_EXPIRED

HEALTH_FILTERS = ('expired', 'urgent', 'warning', 'good')


def list_inventory(session, search: Optional[str] = None, category_id: Optional[int] = None,
                   health: Optional[str] = None, today: Optional[date] = None) -> dict:
    """
    List lots with remaining stock, soonest expiry first.

    Args:
        session: SQLAlchemy session
        search: substring of product or supplier name
        category_id: restrict to one category
        health: one of expired/urgent/warning/good
        today: reference date for expiry health (defaults to today)

    Returns:
        dict with 'items' (one row per lot) and 'stats'
        (total_items, total_value, warning_items)
    """
    today = today or date.today()

    query = session.query(Purchase).options(
        joinedload(Purchase.supplier), joinedload(Purchase.category)
    ).filter(Purchase.remaining_quantity > 0)

    if search:
        term = f'%{search.strip().lower()}%'
        query = query.outerjoin(Supplier, Purchase.supplier_id == Supplier.id).filter(or_(
            func.lower(Purchase.product_name).like(term),
            func.lower(Supplier.company_name).like(term),
        ))

    if category_id:
        query = query.filter(Purchase.category_id == category_id)

    # NULL expiry dates sort last
    lots = query.order_by(
        Purchase.expiry_date.is_(None), Purchase.expiry_date, Purchase.product_name, Purchase.id
    ).all()

    items = []
    total_value = Decimal('0')
    warning_items = 0
    for lot in lots:
        label = expiry_health(lot.expiry_date, today)
        if health and label != health:
            continue

        remaining = Decimal(lot.remaining_quantity)
        unit_price = Decimal(lot.unit_price)
        value = (remaining * unit_price).quantize(Decimal('0.01'))
        total_value += value
        if label in (HEALTH_EXPIRED, HEALTH_URGENT, HEALTH_WARNING):
            warning_items += 1

        items.append({
            'purchase_id': lot.id,
            'product_name': lot.product_name,
            'category_id': lot.category_id,
            'category_name': lot.category.name if lot.category else None,
            'supplier_name': lot.supplier.company_name if lot.supplier else None,
            'unit': lot.unit,
            'quantity': lot.quantity,
            'remaining_quantity': remaining,
            'unit_price': unit_price,
            'stock_value': value,
            'purchase_date': lot.purchase_date,
            'expiry_date': lot.expiry_date,
            'days_until_expiry': (lot.expiry_date - today).days if lot.expiry_date else None,
            'health': label,
            'status': lot.status.value,
        })

    return {
        'items': items,
        'stats': {
            'total_items': len(items),
            'total_value': total_value,
            'warning_items': warning_items,
        }
    }
