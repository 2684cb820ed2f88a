"""
Dashboard figures: this month's totals, stock value and a recent
activity feed across purchases, deliveries and invoices.
"""
import logging
import math
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import joinedload, selectinload

from backoffice.exceptions import ValidationError
from backoffice.models import Delivery, DeliveryItem, DeliveryStatus, Invoice, InvoiceStatus, Purchase
from backoffice.services.inventory_service import list_inventory
from backoffice.services.report_service import monthly_report
from backoffice.utils.formatters import month_bounds

logger = logging.getLogger(__name__)

INVOICE_ACTIVITY_DAYS = 7
MAX_ACTIVITY_LIMIT = 100

ACTIVITY_STATUS = {
    DeliveryStatus.PENDING: 'pending',
    DeliveryStatus.DELIVERED: 'success',
    DeliveryStatus.INVOICED: 'success',
    DeliveryStatus.ERROR: 'error',
    DeliveryStatus.CANCELLED: 'cancelled',
}


def get_stats(session, today: Optional[date] = None) -> dict:
    """
    Figures for the current calendar month plus the current stock.

    Sales follow the report rules (DELIVERED and INVOICED deliveries,
    returns negative) so the dashboard agrees with the monthly report.
    """
    today = today or date.today()
    start, end = month_bounds(today.year, today.month)

    month = monthly_report(session, start, end)['monthly_data'][0]
    inventory = list_inventory(session, today=today)['stats']

    logger.info(
        f"[DASHBOARD] {today.year}-{today.month:02d}: purchase={month['purchase']} "
        f"delivery={month['delivery']} stock={inventory['total_items']} lots"
    )
    return {
        'monthly_purchase_amount': month['purchase'],
        'monthly_purchase_count': month['purchase_count'],
        'monthly_delivery_amount': month['delivery'],
        'monthly_delivery_count': month['delivery_count'],
        'monthly_profit': month['profit'],
        'monthly_profit_rate': month['profit_rate'],
        'total_inventory_value': inventory['total_value'],
        'total_inventory_items': inventory['total_items'],
        'warning_items': inventory['warning_items'],
        'period': {'year': today.year, 'month': today.month, 'start': start, 'end': end},
    }


def _purchase_activity(purchase):
    supplier = purchase.supplier.company_name if purchase.supplier else 'unknown supplier'
    return {
        'id': f'purchase-{purchase.id}',
        'type': 'purchase',
        'description': f'Bought {purchase.product_name} {purchase.quantity}{purchase.unit} from {supplier}',
        'amount': purchase.price,
        'timestamp': purchase.created_at,
        'status': 'success',
        'related_id': purchase.id,
    }


def _delivery_activity(delivery):
    customer = delivery.customer.company_name if delivery.customer else 'unknown customer'
    verb = 'Return from' if delivery.is_return else 'Delivered to'
    if len(delivery.items) == 1:
        item = delivery.items[0]
        what = f'{item.display_name} {item.quantity}{item.display_unit or ""}'
    else:
        what = f'{len(delivery.items)} items'
    return {
        'id': f'delivery-{delivery.id}',
        'type': 'delivery',
        'description': f'{verb} {customer}: {what}',
        'amount': delivery.signed_amount,
        'timestamp': delivery.created_at,
        'status': ACTIVITY_STATUS.get(delivery.status, 'success'),
        'related_id': delivery.id,
    }


def _invoice_activity(invoice):
    customer = invoice.customer.company_name if invoice.customer else 'unknown customer'
    issued = invoice.status == InvoiceStatus.ISSUED
    return {
        'id': f'invoice-{invoice.id}',
        'type': 'invoice',
        'description': f"Invoice {invoice.invoice_number} for {customer} {'issued' if issued else 'drafted'}",
        'amount': invoice.total_with_tax,
        'timestamp': invoice.updated_at,
        'status': 'success' if issued else 'pending',
        'related_id': invoice.id,
    }


def _sort_key(activity):
    # SQLite hands back naive UTC timestamps
    stamp = activity['timestamp']
    if stamp is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp


def recent_activities(session, limit: int = 10, now: Optional[datetime] = None) -> dict:
    """
    Newest purchases, deliveries and invoice updates merged into one feed.

    Each source contributes at most ceil(limit / 3) entries; invoices only
    count when touched in the last INVOICE_ACTIVITY_DAYS days.

    Raises:
        ValidationError: limit outside 1..MAX_ACTIVITY_LIMIT
    """
    if not 1 <= limit <= MAX_ACTIVITY_LIMIT:
        raise ValidationError(f'limit must be between 1 and {MAX_ACTIVITY_LIMIT}', payload={'field': 'limit'})
    per_source = math.ceil(limit / 3)
    now = now or datetime.now(timezone.utc)

    purchases = session.query(Purchase).options(joinedload(Purchase.supplier)).order_by(
        Purchase.created_at.desc(), Purchase.id.desc()
    ).limit(per_source).all()

    deliveries = session.query(Delivery).options(
        joinedload(Delivery.customer),
        selectinload(Delivery.items).joinedload(DeliveryItem.purchase),
    ).order_by(Delivery.created_at.desc(), Delivery.id.desc()).limit(per_source).all()

    invoices = session.query(Invoice).options(joinedload(Invoice.customer)).filter(
        Invoice.updated_at >= now - timedelta(days=INVOICE_ACTIVITY_DAYS)
    ).order_by(Invoice.updated_at.desc(), Invoice.id.desc()).limit(per_source).all()

    activities = [_purchase_activity(p) for p in purchases]
    activities += [_delivery_activity(d) for d in deliveries]
    activities += [_invoice_activity(i) for i in invoices]
    activities.sort(key=_sort_key, reverse=True)
    activities = activities[:limit]

    return {
        'activities': activities,
        'counts': {
            'purchases': len(purchases),
            'deliveries': len(deliveries),
            'invoices': len(invoices),
            'total': len(activities),
        },
    }
