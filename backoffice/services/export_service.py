"""Export deliveries and invoices as spreadsheet documents."""
import logging
from collections import OrderedDict
from decimal import Decimal

from flask import current_app, has_app_context

from backoffice.exceptions import BusinessLogicError, ExternalServiceError
from backoffice.models import DeliveryStatus, InvoiceStatus
from backoffice.services.cache_service import invalidate_reports
from backoffice.services.delivery_service import get_delivery
from backoffice.services.invoice_service import get_invoice, split_tax, truncate_yen
from backoffice.services.sheets_client import KIND_DELIVERY, KIND_INVOICE
from backoffice.utils.formatters import date_ja

logger = logging.getLogger(__name__)


def get_exporter():
    """Exporter registered by create_app (None when not configured)."""
    return current_app.extensions.get('document_exporter')


def _template(name, explicit):
    if explicit:
        return explicit
    if has_app_context():
        return current_app.config.get(name)
    return None


def _require_exporter(exporter):
    if exporter is None:
        raise ExternalServiceError(
            'Document export is not configured (missing Google Sheets credentials)',
            code=ExternalServiceError.AUTHENTICATION_FAILED
        )


def _line(amount: Decimal, tax_rate: int):
    tax = truncate_yen(amount * Decimal(tax_rate) / Decimal(100))
    return tax, amount + tax


def build_delivery_fields(delivery) -> dict:
    """Field map for a delivery slip; returns are written with negative amounts."""
    sign = -1 if delivery.is_return else 1
    customer = delivery.customer
    items = []
    for item in delivery.items:
        subtotal = sign * Decimal(item.amount)
        tax, total = _line(subtotal, item.tax_rate)
        items.append({
            'product_name': item.display_name,
            'delivery_date': delivery.delivery_date,
            'quantity': item.quantity,
            'unit': item.display_unit,
            'unit_price': item.unit_price,
            'tax_rate': item.tax_rate,
            'subtotal': subtotal,
            'tax_amount': tax,
            'amount': total,
        })

    taxes = split_tax([delivery])
    notes = delivery.notes
    if delivery.is_return:
        notes = f'返品理由: {delivery.return_reason}' + (f' / {notes}' if notes else '')

    return {
        'title': f'納品書_{delivery.delivery_number}_{customer.company_name}',
        'delivery_number': delivery.delivery_number,
        'delivery_date': date_ja(delivery.delivery_date),
        'customer_name': customer.company_name,
        'customer_address': customer.delivery_address,
        'invoice_registration_number': customer.invoice_registration_number,
        'invoice_notes': customer.invoice_notes,
        'items': items,
        'subtotal_8': taxes['subtotal_8'],
        'tax_8': taxes['tax_8'],
        'subtotal_10': taxes['subtotal_10'],
        'tax_10': taxes['tax_10'],
        'total_tax': taxes['total_tax'],
        'total_amount': taxes['total_with_tax'],
        'notes': notes,
    }


def export_delivery(session, delivery_id: int, exporter, template_id=None):
    """
    Render a delivery slip.

    On success the sheet id/URL are stored and the delivery becomes
    DELIVERED. On an export failure the delivery is marked ERROR with a
    note and the error is re-raised.
    """
    _require_exporter(exporter)
    delivery = get_delivery(session, delivery_id)
    if delivery.status == DeliveryStatus.CANCELLED:
        raise BusinessLogicError(f'Delivery {delivery.delivery_number} is cancelled and cannot be exported')

    template_id = _template('GOOGLE_SHEETS_DELIVERY_TEMPLATE_ID', template_id)
    fields = build_delivery_fields(delivery)

    try:
        sheets_session = exporter.authorize()
        document = exporter.create_document(sheets_session, template_id, fields, KIND_DELIVERY)
    except ExternalServiceError as e:
        logger.error(f"[EXPORT] Delivery {delivery.delivery_number} export failed: {e.code} {e.message}")
        try:
            if not delivery.is_invoiced:
                delivery.status = DeliveryStatus.ERROR
            note = f'[export {e.code}] {e.message}'
            delivery.notes = f'{delivery.notes}\n{note}' if delivery.notes else note
            session.commit()
        except Exception:
            session.rollback()
            raise
        invalidate_reports()
        raise

    try:
        delivery.google_sheet_id = document.document_id
        delivery.google_sheet_url = document.url
        if not delivery.is_invoiced:
            delivery.status = DeliveryStatus.DELIVERED
        session.commit()
    except Exception:
        session.rollback()
        raise
    invalidate_reports()

    logger.info(f"[EXPORT] Delivery {delivery.delivery_number} exported to {document.url}")
    return document


def _aggregate_invoice_items(invoice):
    """Merge lines across the invoice's deliveries by (product, unit price, tax rate)."""
    merged = OrderedDict()
    for delivery in invoice.deliveries:
        sign = -1 if delivery.is_return else 1
        for item in delivery.items:
            key = (item.display_name, Decimal(item.unit_price), item.tax_rate)
            row = merged.setdefault(key, {'quantity': Decimal('0'), 'subtotal': Decimal('0')})
            row['quantity'] += sign * Decimal(item.quantity)
            row['subtotal'] += sign * Decimal(item.amount)

    items = []
    for (name, unit_price, tax_rate), row in merged.items():
        tax, total = _line(row['subtotal'], tax_rate)
        items.append({
            'description': name,
            'quantity': row['quantity'],
            'unit_price': unit_price,
            'tax_rate': tax_rate,
            'subtotal': row['subtotal'],
            'tax_amount': tax,
            'amount': total,
        })
    return items


def build_invoice_fields(invoice) -> dict:
    """Field map for an invoice; addressed to the customer's billing party when set."""
    customer = invoice.customer
    bill_to = customer.bill_to
    return {
        'title': f'請求書_{invoice.invoice_number}_{bill_to.company_name}',
        'invoice_number': invoice.invoice_number,
        'invoice_date': date_ja(invoice.issue_date),
        'due_date': date_ja(invoice.due_date),
        'customer_name': bill_to.company_name,
        'customer_address': bill_to.billing_address or bill_to.delivery_address,
        'billing_address': bill_to.billing_address,
        'invoice_registration_number': bill_to.invoice_registration_number,
        'billing_cycle': bill_to.billing_cycle,
        'billing_day': bill_to.billing_day,
        'payment_terms': bill_to.payment_terms,
        'invoice_notes': bill_to.invoice_notes,
        'items': _aggregate_invoice_items(invoice),
        'subtotal_8': invoice.subtotal_8,
        'tax_8': invoice.tax_8,
        'subtotal_10': invoice.subtotal_10,
        'tax_10': invoice.tax_10,
        'subtotal': invoice.total_amount,
        'total_tax': invoice.total_tax,
        'total_amount': invoice.total_with_tax,
        'notes': None if bill_to is customer else f'納品先: {customer.company_name}',
    }


def export_invoice(session, invoice_id: int, exporter, template_id=None):
    """Render an invoice; on success store the sheet and mark it ISSUED."""
    _require_exporter(exporter)
    invoice = get_invoice(session, invoice_id)
    template_id = _template('GOOGLE_SHEETS_INVOICE_TEMPLATE_ID', template_id)
    fields = build_invoice_fields(invoice)

    try:
        sheets_session = exporter.authorize()
        document = exporter.create_document(sheets_session, template_id, fields, KIND_INVOICE)
    except ExternalServiceError as e:
        logger.error(f"[EXPORT] Invoice {invoice.invoice_number} export failed: {e.code} {e.message}")
        raise

    try:
        invoice.google_sheet_id = document.document_id
        invoice.google_sheet_url = document.url
        invoice.status = InvoiceStatus.ISSUED
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"[EXPORT] Invoice {invoice.invoice_number} exported to {document.url}")
    return document
