"""
Monthly invoice service.

A customer's DELIVERED deliveries of one calendar month are summarized
(returns counted negatively, consumption tax split by rate) and claimed by
a single Invoice. A delivery can only ever be claimed once: the claim is a
guarded UPDATE on `status = DELIVERED AND invoice_id IS NULL` and the
(customer, year, month) pair is unique.
"""
import calendar
import logging
from datetime import date, timedelta
from decimal import Decimal, ROUND_DOWN
from typing import Optional

from flask import current_app, has_app_context
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import joinedload, selectinload

from backoffice.exceptions import (
    AlreadyInvoicedError, NoPendingDeliveriesError, NotFoundError, ValidationError, BusinessLogicError
)
from backoffice.models import (
    Customer, Delivery, DeliveryStatus, Invoice, InvoiceStatus, format_invoice_number
)
from backoffice.services.cache_service import invalidate_reports
from backoffice.utils.formatters import month_bounds

logger = logging.getLogger(__name__)

DEFAULT_PAYMENT_TERMS_DAYS = {
    'immediate': 0,
    '7days': 7,
    '15days': 15,
    '30days': 30,
    '60days': 60,
}

ZERO = Decimal('0')


def _config(name, default):
    if has_app_context():
        return current_app.config.get(name, default)
    return default


def _validate_period(year, month):
    try:
        year, month = int(year), int(month)
    except (TypeError, ValueError):
        raise ValidationError('year and month must be integers')
    if not 1 <= month <= 12:
        raise ValidationError('month must be between 1 and 12', payload={'field': 'month'})
    if not 2000 <= year <= 2100:
        raise ValidationError('year is out of range', payload={'field': 'year'})
    return year, month


def truncate_yen(amount: Decimal) -> Decimal:
    """Drop fractional yen, rounding toward zero."""
    return Decimal(amount).quantize(Decimal('1'), rounding=ROUND_DOWN)


def split_tax(deliveries) -> dict:
    """
    Per-rate subtotals and consumption tax for a set of deliveries.

    Return deliveries count negatively. Tax for each rate is the subtotal
    times the rate, truncated to whole yen.
    """
    subtotals = {8: ZERO, 10: ZERO}
    for delivery in deliveries:
        sign = -1 if delivery.is_return else 1
        for item in delivery.items:
            rate = item.tax_rate if item.tax_rate in subtotals else 8
            subtotals[rate] += sign * Decimal(item.amount)

    tax_8 = truncate_yen(subtotals[8] * Decimal('0.08'))
    tax_10 = truncate_yen(subtotals[10] * Decimal('0.10'))
    total_tax = tax_8 + tax_10
    total_amount = subtotals[8] + subtotals[10]
    return {
        'subtotal_8': subtotals[8],
        'tax_8': tax_8,
        'subtotal_10': subtotals[10],
        'tax_10': tax_10,
        'total_tax': total_tax,
        'total_with_tax': total_amount + total_tax,
    }


def calculate_due_date(issue_date: date, payment_terms: Optional[str], policy: Optional[dict] = None) -> date:
    """
    Due date for an invoice issued on `issue_date`.

    immediate/7days/15days/30days/60days add that many days; endofmonth is
    the last day of the month END_OF_MONTH_OFFSET_MONTHS after issuance
    (next month's end by default); anything else is DEFAULT_PAYMENT_DAYS.

    Args:
        policy: optional overrides with keys 'days' (terms -> days),
            'end_of_month_offset' and 'default_days'
    """
    policy = policy or {}
    days_table = policy.get('days') or _config('PAYMENT_TERMS_DAYS', DEFAULT_PAYMENT_TERMS_DAYS)
    offset = int(policy.get('end_of_month_offset', _config('END_OF_MONTH_OFFSET_MONTHS', 1)))
    default_days = int(policy.get('default_days', _config('DEFAULT_PAYMENT_DAYS', 30)))

    if payment_terms == 'endofmonth':
        month_index = issue_date.month - 1 + offset
        year = issue_date.year + month_index // 12
        month = month_index % 12 + 1
        return date(year, month, calendar.monthrange(year, month)[1])

    if payment_terms in days_table:
        return issue_date + timedelta(days=int(days_table[payment_terms]))

    return issue_date + timedelta(days=default_days)


def _pending_deliveries(session, year, month, customer_id=None):
    start, end = month_bounds(year, month)
    query = session.query(Delivery).options(
        joinedload(Delivery.customer), selectinload(Delivery.items)
    ).filter(
        Delivery.status == DeliveryStatus.DELIVERED,
        Delivery.invoice_id.is_(None),
        Delivery.delivery_date >= start,
        Delivery.delivery_date <= end,
    )
    if customer_id is not None:
        query = query.filter(Delivery.customer_id == customer_id)
    return query.order_by(Delivery.customer_id, Delivery.delivery_date, Delivery.id).all()


def _customer_summary(customer: Customer, deliveries, invoice: Optional[Invoice], today: date) -> dict:
    taxes = split_tax(deliveries)
    total_amount = sum((d.signed_amount for d in deliveries), ZERO)
    return {
        'customer_id': customer.id,
        'customer_name': customer.company_name,
        'billing_cycle': customer.billing_cycle,
        'billing_day': customer.billing_day,
        'payment_terms': customer.payment_terms,
        'delivery_count': len(deliveries),
        'total_amount': total_amount,
        **taxes,
        'has_invoice': invoice is not None,
        'invoice_id': invoice.id if invoice else None,
        'delivery_ids': [d.id for d in deliveries],
        'due_date': calculate_due_date(today, customer.payment_terms),
    }


def summarize_month(session, year: int, month: int, customer_id: Optional[int] = None,
                    today: Optional[date] = None) -> dict:
    """
    Summarize a month's DELIVERED, not yet invoiced deliveries per customer.

    Returns:
        dict with 'customers' (ordered by customer id) and month totals
        'total_customers', 'total_amount', 'total_deliveries'. With a
        customer filter, a customer that is already invoiced but has nothing
        pending still gets a zero row with has_invoice=True.
    """
    year, month = _validate_period(year, month)
    today = today or date.today()

    deliveries = _pending_deliveries(session, year, month, customer_id)

    invoice_query = session.query(Invoice).filter(Invoice.year == year, Invoice.month == month)
    if customer_id is not None:
        invoice_query = invoice_query.filter(Invoice.customer_id == customer_id)
    invoices = {inv.customer_id: inv for inv in invoice_query.all()}

    grouped = {}
    for delivery in deliveries:
        grouped.setdefault(delivery.customer_id, []).append(delivery)

    summaries = []
    for cid in sorted(grouped):
        customer = grouped[cid][0].customer
        summaries.append(_customer_summary(customer, grouped[cid], invoices.get(cid), today))

    if customer_id is not None and not summaries and customer_id in invoices:
        customer = session.get(Customer, customer_id)
        summaries.append(_customer_summary(customer, [], invoices[customer_id], today))

    return {
        'year': year,
        'month': month,
        'period_start': month_bounds(year, month)[0],
        'period_end': month_bounds(year, month)[1],
        'customers': summaries,
        'total_customers': len(summaries),
        'total_amount': sum((s['total_amount'] for s in summaries), ZERO),
        'total_deliveries': sum(s['delivery_count'] for s in summaries),
    }


def generate_invoice(session, customer_id: int, year: int, month: int,
                     issue_date: Optional[date] = None) -> Invoice:
    """
    Create the invoice for (customer, year, month) and claim its deliveries.

    Steps:
    1. Reject if an invoice already exists for the period
    2. Summarize pending deliveries (reject if none)
    3. Insert the invoice with totals and tax split
    4. Claim deliveries with a guarded UPDATE; roll back if any was taken
    5. Commit

    Raises:
        NotFoundError: unknown customer
        AlreadyInvoicedError: invoice exists for the period
        NoPendingDeliveriesError: nothing to invoice
    """
    year, month = _validate_period(year, month)
    issue_date = issue_date or date.today()

    customer = session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f'Customer #{customer_id} not found')

    existing = session.query(Invoice).filter(
        Invoice.customer_id == customer_id, Invoice.year == year, Invoice.month == month
    ).first()
    if existing is not None:
        raise AlreadyInvoicedError(customer_id, year, month, invoice_id=existing.id)

    deliveries = _pending_deliveries(session, year, month, customer_id)
    if not deliveries:
        raise NoPendingDeliveriesError(customer_id, year, month)

    summary = _customer_summary(customer, deliveries, None, issue_date)
    delivery_ids = summary['delivery_ids']

    try:
        invoice = Invoice(
            invoice_number=format_invoice_number(customer_id, year, month),
            customer_id=customer_id,
            year=year,
            month=month,
            issue_date=issue_date,
            due_date=calculate_due_date(issue_date, customer.payment_terms),
            total_amount=summary['total_amount'],
            subtotal_8=summary['subtotal_8'],
            tax_8=summary['tax_8'],
            subtotal_10=summary['subtotal_10'],
            tax_10=summary['tax_10'],
            total_tax=summary['total_tax'],
            status=InvoiceStatus.DRAFT,
        )
        session.add(invoice)
        session.flush()

        result = session.execute(
            update(Delivery)
            .where(
                Delivery.id.in_(delivery_ids),
                Delivery.status == DeliveryStatus.DELIVERED,
                Delivery.invoice_id.is_(None),
            )
            .values(invoice_id=invoice.id, status=DeliveryStatus.INVOICED)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != len(delivery_ids):
            raise BusinessLogicError(
                'Some deliveries changed while the invoice was being created; please retry',
                status_code=409
            )

        session.commit()
    except IntegrityError:
        # Lost the race on uq_invoice_customer_period
        session.rollback()
        raise AlreadyInvoicedError(customer_id, year, month)
    except Exception:
        session.rollback()
        raise

    invalidate_reports()
    logger.info(
        f"[INVOICE] Generated {invoice.invoice_number}: {len(delivery_ids)} deliveries, "
        f"total {summary['total_amount']} + tax {summary['total_tax']}"
    )
    return invoice


def get_invoice(session, invoice_id: int) -> Invoice:
    invoice = session.query(Invoice).options(
        joinedload(Invoice.customer), selectinload(Invoice.deliveries)
    ).filter(Invoice.id == invoice_id).first()
    if invoice is None:
        raise NotFoundError(f'Invoice #{invoice_id} not found')
    return invoice


def list_invoices(session, customer_id=None, year=None, month=None, status=None):
    """Invoices, newest period first."""
    query = session.query(Invoice).options(
        joinedload(Invoice.customer), selectinload(Invoice.deliveries)
    )
    if customer_id:
        query = query.filter(Invoice.customer_id == customer_id)
    if year:
        query = query.filter(Invoice.year == int(year))
    if month:
        query = query.filter(Invoice.month == int(month))
    if status:
        try:
            query = query.filter(Invoice.status == InvoiceStatus(status.upper()))
        except ValueError:
            raise ValidationError(f'Unknown invoice status: {status}', payload={'field': 'status'})
    return query.order_by(Invoice.year.desc(), Invoice.month.desc(), Invoice.customer_id).all()
