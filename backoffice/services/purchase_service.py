"""Purchase lot service: registration, edits and deletion."""
import logging
from decimal import Decimal

from sqlalchemy import or_, func
from sqlalchemy.orm import joinedload

from backoffice.exceptions import BusinessLogicError, NotFoundError, ValidationError
from backoffice.models import Purchase, Supplier, Category, DeliveryItem, ProductPrefix, PurchaseStatus
from backoffice.services import ledger_service
from backoffice.services.cache_service import invalidate_reports
from backoffice.utils.number_format import parse_decimal, parse_date, parse_int

logger = logging.getLogger(__name__)


def _check_refs(session, supplier_id, category_id):
    if session.get(Supplier, supplier_id) is None:
        raise ValidationError(f'Supplier #{supplier_id} does not exist', payload={'field': 'supplier_id'})
    if category_id is not None and session.get(Category, category_id) is None:
        raise ValidationError(f'Category #{category_id} does not exist', payload={'field': 'category_id'})


def _parse_prefix(session, value):
    prefix_id = parse_int(value, 'product_prefix_id', allow_none=True)
    if prefix_id is not None and session.get(ProductPrefix, prefix_id) is None:
        raise ValidationError(f'Product prefix #{prefix_id} does not exist', payload={'field': 'product_prefix_id'})
    return prefix_id


def create_purchase(session, data: dict) -> Purchase:
    """
    Register a new lot; remaining_quantity starts equal to quantity.

    Raises:
        ValidationError: missing/invalid fields or unknown supplier/category
    """
    product_name = (data.get('product_name') or '').strip()
    if not product_name:
        raise ValidationError('product_name is required', payload={'field': 'product_name'})
    unit = (data.get('unit') or '').strip()
    if not unit:
        raise ValidationError('unit is required', payload={'field': 'unit'})

    quantity = parse_decimal(data.get('quantity'), 'quantity', positive=True)
    unit_price = parse_decimal(data.get('unit_price'), 'unit_price')
    supplier_id = parse_int(data.get('supplier_id'), 'supplier_id')
    category_id = parse_int(data.get('category_id'), 'category_id', allow_none=True)
    purchase_date = parse_date(data.get('purchase_date'), 'purchase_date')
    expiry_date = parse_date(data.get('expiry_date'), 'expiry_date', allow_none=True)
    if expiry_date and expiry_date < purchase_date:
        raise ValidationError('expiry_date cannot be before purchase_date', payload={'field': 'expiry_date'})

    _check_refs(session, supplier_id, category_id)
    product_prefix_id = _parse_prefix(session, data.get('product_prefix_id'))

    purchase = Purchase(
        product_name=product_name,
        category_id=category_id,
        product_prefix_id=product_prefix_id,
        supplier_id=supplier_id,
        quantity=quantity,
        unit=unit,
        unit_price=unit_price,
        price=(quantity * unit_price).quantize(Decimal('0.01')),
        purchase_date=purchase_date,
        expiry_date=expiry_date,
        remaining_quantity=quantity,
        needs_review=False,
        notes=(data.get('notes') or '').strip() or None,
    )
    try:
        session.add(purchase)
        session.commit()
    except Exception:
        session.rollback()
        raise

    invalidate_reports()
    logger.info(f"[PURCHASE] Created purchase {purchase.id} ({purchase.product_name} x {quantity})")
    return purchase


def update_purchase(session, purchase_id: int, data: dict) -> Purchase:
    """
    Edit a lot. A quantity change keeps the already-consumed amount
    (see ledger_service.reconcile_quantity); unit price changes re-price
    the lot but not existing delivery items.
    """
    # Lock the row and reload it so a concurrent consume cannot be overwritten
    purchase = session.query(Purchase).filter(Purchase.id == purchase_id) \
        .with_for_update().populate_existing().one_or_none()
    if purchase is None:
        raise NotFoundError(f'Purchase #{purchase_id} not found')

    try:
        if 'product_name' in data:
            name = (data.get('product_name') or '').strip()
            if not name:
                raise ValidationError('product_name is required', payload={'field': 'product_name'})
            purchase.product_name = name
        if 'unit' in data:
            unit = (data.get('unit') or '').strip()
            if not unit:
                raise ValidationError('unit is required', payload={'field': 'unit'})
            purchase.unit = unit
        if 'supplier_id' in data or 'category_id' in data:
            supplier_id = parse_int(data.get('supplier_id', purchase.supplier_id), 'supplier_id')
            category_id = parse_int(data.get('category_id', purchase.category_id), 'category_id', allow_none=True)
            _check_refs(session, supplier_id, category_id)
            purchase.supplier_id = supplier_id
            purchase.category_id = category_id
        if 'product_prefix_id' in data:
            purchase.product_prefix_id = _parse_prefix(session, data['product_prefix_id'])
        if 'purchase_date' in data:
            purchase.purchase_date = parse_date(data['purchase_date'], 'purchase_date')
        if 'expiry_date' in data:
            purchase.expiry_date = parse_date(data['expiry_date'], 'expiry_date', allow_none=True)
        if 'notes' in data:
            purchase.notes = (data.get('notes') or '').strip() or None
        if 'unit_price' in data:
            purchase.unit_price = parse_decimal(data['unit_price'], 'unit_price')

        if 'quantity' in data:
            new_quantity = parse_decimal(data['quantity'], 'quantity', positive=True)
            ledger_service.reconcile_quantity(purchase, new_quantity)
        else:
            purchase.price = (Decimal(purchase.quantity) * Decimal(purchase.unit_price)).quantize(Decimal('0.01'))

        if data.get('clear_review'):
            purchase.needs_review = False
            purchase.review_note = None

        session.commit()
    except Exception:
        session.rollback()
        raise

    invalidate_reports()
    return purchase


def delete_purchase(session, purchase_id: int) -> None:
    """Delete a lot that no delivery item references."""
    purchase = session.get(Purchase, purchase_id)
    if purchase is None:
        raise NotFoundError(f'Purchase #{purchase_id} not found')

    in_use = session.query(func.count(DeliveryItem.id)).filter(
        DeliveryItem.purchase_id == purchase_id
    ).scalar()
    if in_use:
        raise BusinessLogicError(
            f'Purchase #{purchase_id} is referenced by {in_use} delivery item(s) and cannot be deleted',
            status_code=409
        )

    try:
        session.delete(purchase)
        session.commit()
    except Exception:
        session.rollback()
        raise
    invalidate_reports()


def list_purchases(session, search=None, supplier_id=None, category_id=None, status=None,
                   date_from=None, date_to=None, needs_review=None):
    """Filtered purchase list, newest first."""
    query = session.query(Purchase).options(
        joinedload(Purchase.supplier), joinedload(Purchase.category)
    )

    if search:
        term = f'%{search.strip().lower()}%'
        query = query.outerjoin(Supplier, Purchase.supplier_id == Supplier.id).filter(or_(
            func.lower(Purchase.product_name).like(term),
            func.lower(Supplier.company_name).like(term),
        ))
    if supplier_id:
        query = query.filter(Purchase.supplier_id == supplier_id)
    if category_id:
        query = query.filter(Purchase.category_id == category_id)
    if status:
        try:
            wanted = PurchaseStatus(status.upper())
        except ValueError:
            raise ValidationError(f'Unknown purchase status: {status}', payload={'field': 'status'})
        query = query.filter(Purchase.status == wanted.value)
    if date_from:
        query = query.filter(Purchase.purchase_date >= date_from)
    if date_to:
        query = query.filter(Purchase.purchase_date <= date_to)
    if needs_review is not None:
        query = query.filter(Purchase.needs_review == needs_review)

    return query.order_by(Purchase.purchase_date.desc(), Purchase.id.desc()).all()
