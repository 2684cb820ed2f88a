"""
Delivery service - create, edit and delete deliveries with stock movements.

Input modes:
    NORMAL  items reference purchase lots; their quantities are consumed
            from the ledger in the same transaction.
    DIRECT  free-form items (no lot); the delivery starts UNLINKED and
            items can be linked to lots afterwards.
    RETURN  free-form items recorded as a customer return. Returned goods
            are not put back into stock.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, List, Union

from flask import current_app, has_app_context
from sqlalchemy import or_, func, extract
from sqlalchemy.orm import joinedload, selectinload

from backoffice.exceptions import (
    BusinessLogicError, NotFoundError, ValidationError, InvoicedDeliveryError
)
from backoffice.models import (
    Customer, Category, Purchase, Delivery, DeliveryItem,
    DeliveryStatus, DeliveryType, InputMode, PurchaseLinkStatus, format_delivery_number
)
from backoffice.services import ledger_service
from backoffice.services.cache_service import invalidate_reports
from backoffice.utils.number_format import parse_decimal, parse_date, parse_int, parse_month

logger = logging.getLogger(__name__)

MODE_NORMAL = 'NORMAL'
MODE_DIRECT = 'DIRECT'
MODE_RETURN = 'RETURN'
MODES = (MODE_NORMAL, MODE_DIRECT, MODE_RETURN)

TAX_RATES = (8, 10)

# Statuses a user may set by hand; INVOICED belongs to invoicing, ERROR to export
PATCHABLE_STATUSES = (DeliveryStatus.PENDING, DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED)

TWO_PLACES = Decimal('0.01')


@dataclass(frozen=True)
class LinkedItem:
    """Item drawn from a purchase lot."""
    purchase_id: int
    quantity: Decimal
    unit_price: Decimal
    tax_rate: int = 8

    @property
    def amount(self) -> Decimal:
        return (self.quantity * self.unit_price).quantize(TWO_PLACES)


@dataclass(frozen=True)
class FreeformItem:
    """Item typed in by hand; `purchase_id` is traceability only (returns)."""
    product_name: str
    quantity: Decimal
    unit_price: Decimal
    tax_rate: int = 8
    category_id: Optional[int] = None
    unit: Optional[str] = None
    purchase_id: Optional[int] = None

    @property
    def amount(self) -> Decimal:
        return (self.quantity * self.unit_price).quantize(TWO_PLACES)


DeliveryLine = Union[LinkedItem, FreeformItem]


def _default_tax_rate() -> int:
    if has_app_context():
        return int(current_app.config.get('DEFAULT_TAX_RATE', 8))
    return 8


def parse_mode(value) -> str:
    mode = (value or MODE_NORMAL).strip().upper()
    if mode not in MODES:
        raise ValidationError(f'Unknown delivery mode: {value}', payload={'field': 'mode'})
    return mode


def _parse_tax_rate(value, index: int) -> int:
    if value is None or value == '':
        return _default_tax_rate()
    rate = parse_int(value, f'items[{index}].tax_rate')
    if rate not in TAX_RATES:
        raise ValidationError(
            f'items[{index}].tax_rate must be 8 or 10', payload={'field': f'items[{index}].tax_rate'}
        )
    return rate


def parse_items(mode: str, raw_items) -> List[DeliveryLine]:
    """
    Build typed delivery lines from a JSON payload.

    NORMAL mode yields LinkedItem (purchase_id required); DIRECT and RETURN
    yield FreeformItem (product_name required). Quantities must be > 0 and
    unit prices >= 0.

    Raises:
        ValidationError: empty list or any malformed item
    """
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError('At least one item is required', payload={'field': 'items'})

    items = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f'items[{index}] must be an object', payload={'field': f'items[{index}]'})

        quantity = parse_decimal(raw.get('quantity'), f'items[{index}].quantity', positive=True)
        unit_price = parse_decimal(raw.get('unit_price'), f'items[{index}].unit_price')
        tax_rate = _parse_tax_rate(raw.get('tax_rate'), index)

        if mode == MODE_NORMAL:
            purchase_id = parse_int(raw.get('purchase_id'), f'items[{index}].purchase_id')
            items.append(LinkedItem(purchase_id, quantity, unit_price, tax_rate))
            continue

        product_name = (raw.get('product_name') or '').strip()
        if not product_name:
            raise ValidationError(
                f'items[{index}].product_name is required', payload={'field': f'items[{index}].product_name'}
            )
        purchase_id = parse_int(raw.get('purchase_id'), f'items[{index}].purchase_id', allow_none=True)
        if purchase_id is not None and mode == MODE_DIRECT:
            raise ValidationError(
                f'items[{index}]: direct items are linked to a purchase after creation',
                payload={'field': f'items[{index}].purchase_id'}
            )
        items.append(FreeformItem(
            product_name=product_name,
            quantity=quantity,
            unit_price=unit_price,
            tax_rate=tax_rate,
            category_id=parse_int(raw.get('category_id'), f'items[{index}].category_id', allow_none=True),
            unit=(raw.get('unit') or '').strip() or None,
            purchase_id=purchase_id,
        ))
    return items


def _parse_status(value) -> DeliveryStatus:
    try:
        status = DeliveryStatus((value or '').upper())
    except ValueError:
        raise ValidationError(f'Unknown delivery status: {value}', payload={'field': 'status'})
    if status not in PATCHABLE_STATUSES:
        raise ValidationError(
            f'Status {status.value} cannot be set directly', payload={'field': 'status'}
        )
    return status


def _require_customer(session, customer_id) -> Customer:
    customer = session.get(Customer, customer_id)
    if customer is None:
        raise ValidationError(f'Customer #{customer_id} does not exist', payload={'field': 'customer_id'})
    return customer


def _mode_of(delivery: Delivery) -> str:
    if delivery.type == DeliveryType.RETURN:
        return MODE_RETURN
    return delivery.input_mode.value


def _consumed_stock(delivery: Delivery, item: DeliveryItem) -> bool:
    """Whether this item drew its quantity from a lot."""
    return delivery.type == DeliveryType.NORMAL and item.purchase_id is not None


def _materialize(session, items: List[DeliveryLine]) -> List[DeliveryItem]:
    """
    Turn parsed lines into DeliveryItem rows, consuming stock for lot items.
    Must run inside the caller's transaction.
    """
    rows = []
    for item in items:
        if isinstance(item, LinkedItem):
            purchase = session.get(Purchase, item.purchase_id)
            if purchase is None:
                raise ValidationError(
                    f'Purchase #{item.purchase_id} does not exist', payload={'field': 'purchase_id'}
                )
            ledger_service.consume(session, item.purchase_id, item.quantity)
            rows.append(DeliveryItem(
                purchase_id=item.purchase_id,
                product_name=purchase.product_name,
                category_id=purchase.category_id,
                unit=purchase.unit,
                quantity=item.quantity,
                unit_price=item.unit_price,
                amount=item.amount,
                tax_rate=item.tax_rate,
            ))
        else:
            if item.category_id is not None and session.get(Category, item.category_id) is None:
                raise ValidationError(
                    f'Category #{item.category_id} does not exist', payload={'field': 'category_id'}
                )
            if item.purchase_id is not None and session.get(Purchase, item.purchase_id) is None:
                raise ValidationError(
                    f'Purchase #{item.purchase_id} does not exist', payload={'field': 'purchase_id'}
                )
            rows.append(DeliveryItem(
                purchase_id=item.purchase_id,
                product_name=item.product_name,
                category_id=item.category_id,
                unit=item.unit,
                quantity=item.quantity,
                unit_price=item.unit_price,
                amount=item.amount,
                tax_rate=item.tax_rate,
            ))
    return rows


def create_delivery(session, payload: dict) -> Delivery:
    """
    Create a delivery with its items.

    Args:
        payload: dict with
            - customer_id: int
            - delivery_date: YYYY-MM-DD
            - mode: NORMAL | DIRECT | RETURN (default NORMAL)
            - items: list of item objects (see parse_items)
            - notes: str | None
            - return_reason: str (RETURN only, required)
            - original_delivery_id: int | None (RETURN only)

    Returns:
        The committed Delivery (status PENDING).

    Raises:
        ValidationError: bad input
        InsufficientStockError: a lot cannot cover an item; nothing is saved
    """
    mode = parse_mode(payload.get('mode') or payload.get('input_mode'))
    customer_id = parse_int(payload.get('customer_id'), 'customer_id')
    delivery_date = parse_date(payload.get('delivery_date'), 'delivery_date')
    items = parse_items(mode, payload.get('items'))

    return_reason = (payload.get('return_reason') or '').strip() or None
    original_delivery_id = parse_int(payload.get('original_delivery_id'), 'original_delivery_id', allow_none=True)
    if mode == MODE_RETURN and not return_reason:
        raise ValidationError('return_reason is required for returns', payload={'field': 'return_reason'})

    try:
        _require_customer(session, customer_id)
        if mode == MODE_RETURN and original_delivery_id is not None:
            original = session.get(Delivery, original_delivery_id)
            if original is None or original.type != DeliveryType.NORMAL:
                raise ValidationError(
                    f'Delivery #{original_delivery_id} is not a delivery that can be returned',
                    payload={'field': 'original_delivery_id'}
                )

        rows = _materialize(session, items)

        delivery = Delivery(
            customer_id=customer_id,
            delivery_date=delivery_date,
            status=DeliveryStatus.PENDING,
            type=DeliveryType.RETURN if mode == MODE_RETURN else DeliveryType.NORMAL,
            input_mode=InputMode.NORMAL if mode == MODE_NORMAL else InputMode.DIRECT,
            purchase_link_status=(
                PurchaseLinkStatus.UNLINKED if mode == MODE_DIRECT else PurchaseLinkStatus.LINKED
            ),
            return_reason=return_reason if mode == MODE_RETURN else None,
            original_delivery_id=original_delivery_id if mode == MODE_RETURN else None,
            total_amount=sum((row.amount for row in rows), Decimal('0')),
            notes=(payload.get('notes') or '').strip() or None,
            items=rows,
        )
        session.add(delivery)
        session.flush()
        delivery.delivery_number = format_delivery_number(delivery.id)
        session.commit()
    except Exception:
        session.rollback()
        raise

    invalidate_reports()
    logger.info(
        f"[DELIVERY] Created {delivery.delivery_number} ({mode}, {len(items)} items, "
        f"total {delivery.total_amount})"
    )
    return delivery


def get_delivery(session, delivery_id: int) -> Delivery:
    delivery = session.query(Delivery).options(
        joinedload(Delivery.customer), selectinload(Delivery.items)
    ).filter(Delivery.id == delivery_id).first()
    if delivery is None:
        raise NotFoundError(f'Delivery #{delivery_id} not found')
    return delivery


def update_delivery(session, delivery_id: int, patch: dict) -> Delivery:
    """
    Edit a delivery's header and, when `items` is present, replace its items.

    Replacing items restores what the old lot items consumed and consumes
    the new ones in one transaction; any failure leaves the delivery and
    the ledger untouched.

    Raises:
        InvoicedDeliveryError: the delivery is already on an invoice
    """
    delivery = get_delivery(session, delivery_id)
    if delivery.is_invoiced:
        raise InvoicedDeliveryError(delivery_id)

    mode = _mode_of(delivery)
    new_items = parse_items(mode, patch['items']) if 'items' in patch else None

    try:
        if 'customer_id' in patch:
            customer_id = parse_int(patch.get('customer_id'), 'customer_id')
            _require_customer(session, customer_id)
            delivery.customer_id = customer_id
        if 'delivery_date' in patch:
            delivery.delivery_date = parse_date(patch.get('delivery_date'), 'delivery_date')
        if 'status' in patch:
            delivery.status = _parse_status(patch.get('status'))
        if 'notes' in patch:
            delivery.notes = (patch.get('notes') or '').strip() or None
        if 'return_reason' in patch and mode == MODE_RETURN:
            reason = (patch.get('return_reason') or '').strip()
            if not reason:
                raise ValidationError('return_reason is required for returns', payload={'field': 'return_reason'})
            delivery.return_reason = reason

        if new_items is not None:
            for old in delivery.items:
                if _consumed_stock(delivery, old):
                    ledger_service.restore(session, old.purchase_id, old.quantity)

            rows = _materialize(session, new_items)
            delivery.items.clear()
            session.flush()
            delivery.items.extend(rows)
            delivery.total_amount = sum((row.amount for row in rows), Decimal('0'))
            if mode == MODE_DIRECT:
                delivery.purchase_link_status = PurchaseLinkStatus.UNLINKED

        session.commit()
    except Exception:
        session.rollback()
        raise

    invalidate_reports()
    logger.info(f"[DELIVERY] Updated {delivery.delivery_number}")
    return delivery


def delete_delivery(session, delivery_id: int) -> dict:
    """
    Delete a delivery and give lot quantities back to the ledger.

    Raises:
        InvoicedDeliveryError: the delivery is already on an invoice
    """
    delivery = get_delivery(session, delivery_id)
    if delivery.is_invoiced:
        raise InvoicedDeliveryError(delivery_id)

    restored = []
    try:
        for item in delivery.items:
            if _consumed_stock(delivery, item):
                ledger_service.restore(session, item.purchase_id, item.quantity)
                restored.append({'purchase_id': item.purchase_id, 'quantity': item.quantity})
        number = delivery.delivery_number
        session.delete(delivery)
        session.commit()
    except Exception:
        session.rollback()
        raise

    invalidate_reports()
    logger.info(f"[DELIVERY] Deleted {number}, restored {len(restored)} lot item(s)")
    return {'delivery_id': delivery_id, 'delivery_number': number, 'restored': restored}


def link_item_to_purchase(session, item_id: int, purchase_id: int) -> DeliveryItem:
    """
    Attach a purchase lot to a free-form item of a DIRECT delivery and
    consume its quantity. The delivery becomes LINKED once every item is.
    """
    item = session.get(DeliveryItem, item_id)
    if item is None:
        raise NotFoundError(f'Delivery item #{item_id} not found')
    delivery = item.delivery
    if delivery.type == DeliveryType.RETURN:
        raise BusinessLogicError('Return items cannot be linked to a purchase')
    if delivery.is_invoiced:
        raise InvoicedDeliveryError(delivery.id)
    if item.purchase_id is not None:
        raise BusinessLogicError(f'Delivery item #{item_id} is already linked to purchase #{item.purchase_id}')

    purchase = session.get(Purchase, purchase_id)
    if purchase is None:
        raise NotFoundError(f'Purchase #{purchase_id} not found')

    try:
        ledger_service.consume(session, purchase_id, item.quantity)
        item.purchase_id = purchase_id
        if item.category_id is None:
            item.category_id = purchase.category_id
        if not item.unit:
            item.unit = purchase.unit
        if all(i.purchase_id is not None for i in delivery.items):
            delivery.purchase_link_status = PurchaseLinkStatus.LINKED
        session.commit()
    except Exception:
        session.rollback()
        raise

    invalidate_reports()
    logger.info(f"[DELIVERY] Linked item {item_id} of {delivery.delivery_number} to purchase {purchase_id}")
    return item


def _filtered_query(session, customer_id=None, month=None, status=None, type=None, search=None):
    query = session.query(Delivery).options(joinedload(Delivery.customer))

    if customer_id:
        query = query.filter(Delivery.customer_id == customer_id)
    if month:
        year, month_number = parse_month(month)
        query = query.filter(
            extract('year', Delivery.delivery_date) == year,
            extract('month', Delivery.delivery_date) == month_number,
        )
    if status:
        try:
            query = query.filter(Delivery.status == DeliveryStatus(status.upper()))
        except ValueError:
            raise ValidationError(f'Unknown delivery status: {status}', payload={'field': 'status'})
    if type:
        try:
            query = query.filter(Delivery.type == DeliveryType(type.upper()))
        except ValueError:
            raise ValidationError(f'Unknown delivery type: {type}', payload={'field': 'type'})
    if search:
        term = f'%{search.strip().lower()}%'
        query = query.join(Customer, Delivery.customer_id == Customer.id).filter(or_(
            func.lower(Delivery.delivery_number).like(term),
            func.lower(Customer.company_name).like(term),
            func.lower(Delivery.notes).like(term),
        ))
    return query


def _paginate(query, page: int, limit: int) -> dict:
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or 50), 1), 200)
    total = query.count()
    rows = query.order_by(Delivery.delivery_date.desc(), Delivery.id.desc()) \
        .offset((page - 1) * limit).limit(limit).all()
    return {
        'items': rows,
        'total': total,
        'page': page,
        'limit': limit,
        'pages': (total + limit - 1) // limit,
    }


def list_deliveries(session, customer_id=None, month=None, status=None, type=None,
                    search=None, page=1, limit=50) -> dict:
    """Paginated delivery list, newest first."""
    query = _filtered_query(session, customer_id, month, status, type, search)
    return _paginate(query, page, limit)


def list_unlinked_deliveries(session, customer_id=None, month=None, page=1, limit=50) -> dict:
    """DIRECT deliveries that still have items without a purchase lot."""
    query = _filtered_query(session, customer_id, month).filter(
        Delivery.purchase_link_status == PurchaseLinkStatus.UNLINKED,
        Delivery.type == DeliveryType.NORMAL,
    )
    return _paginate(query, page, limit)
