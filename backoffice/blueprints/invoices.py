"""Invoices blueprint - monthly summaries and invoice generation."""
from datetime import date
from flask import Blueprint, request, jsonify
from backoffice.database import get_session
from backoffice.exceptions import ValidationError
from backoffice.middleware import require_login
from backoffice.services import invoice_service, export_service
from backoffice.utils.http import json_body, query_int
from backoffice.utils.number_format import parse_int, parse_date

invoices_bp = Blueprint('invoices', __name__, url_prefix='/api/invoices')


@invoices_bp.route('/monthly', methods=['GET'])
@require_login
def monthly_summary():
    """Query params: year, month (default: current month), customer_id."""
    today = date.today()
    summary = invoice_service.summarize_month(
        get_session(),
        query_int('year') or today.year,
        query_int('month') or today.month,
        customer_id=query_int('customer_id'),
    )
    return jsonify({'status': 'success', **summary})


@invoices_bp.route('', methods=['POST'])
@require_login
def generate_invoice():
    """Body: {"customer_id", "year", "month", "issue_date"?}"""
    data = json_body()
    for field in ('customer_id', 'year', 'month'):
        if data.get(field) in (None, ''):
            raise ValidationError(f'{field} is required', payload={'field': field})

    invoice = invoice_service.generate_invoice(
        get_session(),
        parse_int(data.get('customer_id'), 'customer_id'),
        parse_int(data.get('year'), 'year'),
        parse_int(data.get('month'), 'month'),
        issue_date=parse_date(data.get('issue_date'), 'issue_date', allow_none=True),
    )
    return jsonify({'status': 'success', 'invoice': invoice.to_dict(include_deliveries=True)}), 201


@invoices_bp.route('', methods=['GET'])
@require_login
def list_invoices():
    invoices = invoice_service.list_invoices(
        get_session(),
        customer_id=query_int('customer_id'),
        year=query_int('year'),
        month=query_int('month'),
        status=request.args.get('status') or None,
    )
    return jsonify({'status': 'success', 'invoices': [i.to_dict() for i in invoices]})


@invoices_bp.route('/<int:invoice_id>', methods=['GET'])
@require_login
def get_invoice(invoice_id):
    invoice = invoice_service.get_invoice(get_session(), invoice_id)
    return jsonify({'status': 'success', 'invoice': invoice.to_dict(include_deliveries=True)})


@invoices_bp.route('/<int:invoice_id>/export', methods=['POST'])
@require_login
def export_invoice(invoice_id):
    document = export_service.export_invoice(
        get_session(), invoice_id, export_service.get_exporter(),
        template_id=json_body().get('template_id'),
    )
    return jsonify({'status': 'success', 'sheet_id': document.document_id, 'url': document.url})
