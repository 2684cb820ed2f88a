"""
Reporting service - read-only rollups over purchases and deliveries.

Sales are the totals of DELIVERED (and later INVOICED) deliveries; RETURN
deliveries count negatively. Rollups are cached in Redis and dropped on any
purchase/delivery/invoice write.
"""
import csv
import io
import logging
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional, Sequence, Tuple

from flask import current_app, has_app_context
from sqlalchemy.orm import joinedload, selectinload

from backoffice.exceptions import ValidationError
from backoffice.models import (
    Purchase, Category, Supplier, Delivery, DeliveryItem, DeliveryStatus, DeliveryType
)
from backoffice.services import cache_service
from backoffice.services.inventory_service import list_inventory
from backoffice.utils.formatters import month_label

logger = logging.getLogger(__name__)

SALES_STATUSES = (DeliveryStatus.DELIVERED, DeliveryStatus.INVOICED)

REPORT_TYPES = ('monthly', 'category', 'supplier', 'profit')
CSV_REPORT_TYPES = ('monthly', 'purchases', 'deliveries', 'inventory')

ZERO = Decimal('0')


def _rate(numerator: Decimal, denominator: Decimal) -> Decimal:
    """Percentage with two decimals; 0 when the denominator is not positive."""
    if denominator <= 0:
        return ZERO
    return (numerator / denominator * 100).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def _check_range(start: date, end: date):
    if start is None or end is None:
        raise ValidationError('start and end dates are required')
    if start > end:
        raise ValidationError('start date must not be after end date', payload={'field': 'start'})


def _months(start: date, end: date):
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month):
        yield year, month
        month += 1
        if month > 12:
            year, month = year + 1, 1


def _cached(kind: str, start: date, end: date, loader):
    try:
        cache = cache_service.get_cache()
    except RuntimeError:
        return loader()
    ttl = current_app.config.get('CACHE_REPORTS_TTL', 120) if has_app_context() else None
    return cache.memoize(cache_service.REPORTS_MODULE, f'{kind}:{start}:{end}', loader, ttl)


def _sales_deliveries(session, start: date, end: date):
    return session.query(Delivery).filter(
        Delivery.status.in_(SALES_STATUSES),
        Delivery.delivery_date >= start,
        Delivery.delivery_date <= end,
    ).all()


def _monthly_rows(session, start: date, end: date) -> List[dict]:
    purchases = session.query(Purchase.purchase_date, Purchase.price).filter(
        Purchase.purchase_date >= start, Purchase.purchase_date <= end
    ).all()
    deliveries = _sales_deliveries(session, start, end)

    buckets = {
        key: {'purchase': ZERO, 'delivery': ZERO, 'purchase_count': 0, 'delivery_count': 0}
        for key in _months(start, end)
    }
    for purchase_date, price in purchases:
        bucket = buckets[(purchase_date.year, purchase_date.month)]
        bucket['purchase'] += Decimal(price)
        bucket['purchase_count'] += 1
    for delivery in deliveries:
        bucket = buckets[(delivery.delivery_date.year, delivery.delivery_date.month)]
        bucket['delivery'] += Decimal(delivery.signed_amount)
        bucket['delivery_count'] += 1

    rows = []
    for (year, month), bucket in buckets.items():
        profit = bucket['delivery'] - bucket['purchase']
        rows.append({
            'month': month_label(year, month),
            'year': year,
            'month_number': month,
            'purchase': bucket['purchase'],
            'delivery': bucket['delivery'],
            'profit': profit,
            'purchase_count': bucket['purchase_count'],
            'delivery_count': bucket['delivery_count'],
            'profit_rate': _rate(profit, bucket['delivery']),
        })
    return rows


def monthly_report(session, start: date, end: date) -> dict:
    """Per-month purchase amount, sales, profit and profit rate, plus a summary."""
    _check_range(start, end)

    def load():
        rows = _monthly_rows(session, start, end)
        total_purchase = sum((r['purchase'] for r in rows), ZERO)
        total_delivery = sum((r['delivery'] for r in rows), ZERO)
        total_profit = total_delivery - total_purchase
        return {
            'monthly_data': rows,
            'summary': {
                'total_purchase': total_purchase,
                'total_delivery': total_delivery,
                'total_profit': total_profit,
                'avg_profit_rate': _rate(total_profit, total_delivery),
                'month_count': len(rows),
            }
        }

    return _cached('monthly', start, end, load)


def category_report(session, start: date, end: date) -> dict:
    """Purchase amount per category and its share of the total."""
    _check_range(start, end)

    def load():
        rows = session.query(Purchase.category_id, Purchase.price).filter(
            Purchase.purchase_date >= start, Purchase.purchase_date <= end
        ).all()
        totals = {}
        for category_id, price in rows:
            entry = totals.setdefault(category_id, {'amount': ZERO, 'count': 0})
            entry['amount'] += Decimal(price)
            entry['count'] += 1

        names = {c.id: c.name for c in session.query(Category).all()}
        total_value = sum((e['amount'] for e in totals.values()), ZERO)
        data = []
        for category_id, entry in totals.items():
            if entry['amount'] <= 0:
                continue
            data.append({
                'id': category_id,
                'name': names.get(category_id, '未分類'),
                'purchase_amount': entry['amount'],
                'count': entry['count'],
                'percentage': _rate(entry['amount'], total_value),
            })
        data.sort(key=lambda r: r['purchase_amount'], reverse=True)
        return {'category_data': data, 'total_value': total_value, 'category_count': len(data)}

    return _cached('category', start, end, load)


def supplier_report(session, start: date, end: date) -> dict:
    """
    Per supplier: purchases in range, and sales of items drawn from those
    lots delivered in range. Sorted by sales, highest first.
    """
    _check_range(start, end)

    def load():
        purchases = session.query(Purchase.supplier_id, Purchase.price).filter(
            Purchase.purchase_date >= start, Purchase.purchase_date <= end
        ).all()
        totals = {}
        for supplier_id, price in purchases:
            entry = totals.setdefault(supplier_id, {'purchase': ZERO, 'delivery': ZERO, 'count': 0})
            entry['purchase'] += Decimal(price)
            entry['count'] += 1

        items = session.query(DeliveryItem.amount, Delivery.type, Purchase.supplier_id) \
            .join(Delivery, DeliveryItem.delivery_id == Delivery.id) \
            .join(Purchase, DeliveryItem.purchase_id == Purchase.id) \
            .filter(
                Delivery.status.in_(SALES_STATUSES),
                Delivery.delivery_date >= start,
                Delivery.delivery_date <= end,
                Purchase.purchase_date >= start,
                Purchase.purchase_date <= end,
            ).all()
        for amount, delivery_type, supplier_id in items:
            if supplier_id not in totals:
                continue
            sign = -1 if delivery_type == DeliveryType.RETURN else 1
            totals[supplier_id]['delivery'] += sign * Decimal(amount)

        names = {s.id: s.company_name for s in session.query(Supplier).all()}
        data = []
        for supplier_id, entry in totals.items():
            if entry['purchase'] <= 0:
                continue
            profit = entry['delivery'] - entry['purchase']
            data.append({
                'id': supplier_id,
                'name': names.get(supplier_id),
                'purchase': entry['purchase'],
                'delivery': entry['delivery'],
                'profit': profit,
                'purchase_count': entry['count'],
                'profit_rate': _rate(profit, entry['delivery']),
            })
        data.sort(key=lambda r: r['delivery'], reverse=True)
        return {'supplier_data': data, 'supplier_count': len(data)}

    return _cached('supplier', start, end, load)


def profit_report(session, start: date, end: date) -> dict:
    """Averages and extremes of the monthly sales and profit figures."""
    _check_range(start, end)

    def load():
        rows = _monthly_rows(session, start, end)
        count = Decimal(len(rows))
        sales = [r['delivery'] for r in rows]
        profits = [r['profit'] for r in rows]
        return {
            'monthly_profit_rates': [{'month': r['month'], 'profit_rate': r['profit_rate']} for r in rows],
            'avg_profit_rate': (sum((r['profit_rate'] for r in rows), ZERO) / count).quantize(Decimal('0.01')),
            'avg_monthly_sales': (sum(sales, ZERO) / count).quantize(Decimal('0.01')),
            'avg_monthly_profit': (sum(profits, ZERO) / count).quantize(Decimal('0.01')),
            'max_monthly_sales': max(sales),
            'min_monthly_sales': min(sales),
            'max_monthly_profit': max(profits),
            'min_monthly_profit': min(profits),
        }

    return _cached('profit', start, end, load)


REPORTS = {
    'monthly': monthly_report,
    'category': category_report,
    'supplier': supplier_report,
    'profit': profit_report,
}


def build_report(session, report_type: str, start: date, end: date) -> dict:
    builder = REPORTS.get(report_type)
    if builder is None:
        raise ValidationError(f'Invalid report type: {report_type}', payload={'field': 'type'})
    return builder(session, start, end)


# ----------------------------------------------------------------------
# CSV
# ----------------------------------------------------------------------

def export_csv(rows: Iterable[dict], columns: Sequence[Tuple[str, str]]) -> str:
    """
    Render rows as CSV text.

    Args:
        rows: dicts keyed by column key
        columns: (key, header) pairs, in output order

    Fields containing the delimiter, quotes or line breaks are quoted, with
    embedded quotes doubled.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator='\n')
    writer.writerow([header for _, header in columns])
    for row in rows:
        writer.writerow([_csv_value(row.get(key)) for key, _ in columns])
    return buffer.getvalue()


def _csv_value(value):
    if value is None:
        return ''
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return str(int(value))
        return format(value.normalize(), "f")
    if isinstance(value, date):
        return value.isoformat()
    return value


MONTHLY_COLUMNS = (
    ('month', '月'), ('purchase', '仕入金額'), ('delivery', '売上金額'), ('profit', '利益'),
    ('purchase_count', '仕入件数'), ('delivery_count', '納品件数'), ('profit_rate', '利益率(%)'),
)
PURCHASE_COLUMNS = (
    ('purchase_date', '仕入日'), ('product_name', '商品名'), ('category', 'カテゴリ'),
    ('supplier', '仕入先'), ('quantity', '数量'), ('unit', '単位'), ('unit_price', '単価'),
    ('price', '金額'), ('remaining_quantity', '残数量'), ('status', '状態'),
)
DELIVERY_COLUMNS = (
    ('delivery_date', '納品日'), ('delivery_number', '納品番号'), ('type', '種別'),
    ('customer', '納品先'), ('product_name', '商品名'), ('quantity', '数量'),
    ('unit_price', '単価'), ('amount', '金額'), ('status', '状態'),
)
INVENTORY_COLUMNS = (
    ('product_name', '商品名'), ('category_name', 'カテゴリ'), ('supplier_name', '仕入先'),
    ('remaining_quantity', '残数量'), ('unit', '単位'), ('unit_price', '単価'),
    ('stock_value', '在庫金額'), ('purchase_date', '仕入日'), ('expiry_date', '賞味期限'),
    ('health', '状態'),
)


def _purchase_rows(session, start, end):
    purchases = session.query(Purchase).options(
        joinedload(Purchase.supplier), joinedload(Purchase.category)
    ).filter(
        Purchase.purchase_date >= start, Purchase.purchase_date <= end
    ).order_by(Purchase.purchase_date.desc(), Purchase.id.desc()).all()
    return [{
        'purchase_date': p.purchase_date,
        'product_name': p.product_name,
        'category': p.category.name if p.category else '',
        'supplier': p.supplier.company_name if p.supplier else '',
        'quantity': p.quantity,
        'unit': p.unit,
        'unit_price': p.unit_price,
        'price': p.price,
        'remaining_quantity': p.remaining_quantity,
        'status': p.status.value,
    } for p in purchases]


def _delivery_rows(session, start, end):
    deliveries = session.query(Delivery).options(
        joinedload(Delivery.customer), selectinload(Delivery.items)
    ).filter(
        Delivery.delivery_date >= start, Delivery.delivery_date <= end
    ).order_by(Delivery.delivery_date.desc(), Delivery.id.desc()).all()
    rows = []
    for delivery in deliveries:
        sign = -1 if delivery.is_return else 1
        for item in delivery.items:
            rows.append({
                'delivery_date': delivery.delivery_date,
                'delivery_number': delivery.delivery_number,
                'type': delivery.type.value,
                'customer': delivery.customer.company_name,
                'product_name': item.display_name,
                'quantity': sign * Decimal(item.quantity),
                'unit_price': item.unit_price,
                'amount': sign * Decimal(item.amount),
                'status': delivery.status.value,
            })
    return rows


def csv_report(session, report_type: str, start: Optional[date], end: Optional[date],
               today: Optional[date] = None) -> Tuple[str, str]:
    """
    Build a CSV report.

    Returns:
        (filename, csv text)
    """
    if report_type not in CSV_REPORT_TYPES:
        raise ValidationError(f'Invalid report type: {report_type}', payload={'field': 'type'})

    if report_type == 'inventory':
        rows = list_inventory(session, today=today)['items']
        stamp = (today or date.today()).isoformat()
        return f'inventory_{stamp}.csv', export_csv(rows, INVENTORY_COLUMNS)

    _check_range(start, end)
    if report_type == 'monthly':
        rows, columns = _monthly_rows(session, start, end), MONTHLY_COLUMNS
    elif report_type == 'purchases':
        rows, columns = _purchase_rows(session, start, end), PURCHASE_COLUMNS
    else:
        rows, columns = _delivery_rows(session, start, end), DELIVERY_COLUMNS

    logger.info(f"[REPORT] CSV {report_type} {start}..{end}: {len(rows)} rows")
    return f'{report_type}_{start}_{end}.csv', export_csv(rows, columns)


def default_range(today: Optional[date] = None) -> Tuple[date, date]:
    """January 1st of this year through today."""
    today = today or date.today()
    return date(today.year, 1, 1), today
