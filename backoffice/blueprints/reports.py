"""Reports blueprint - sales/profit rollups and CSV downloads."""
from flask import Blueprint, Response, request, jsonify
from backoffice.database import get_session
from backoffice.middleware import require_login
from backoffice.services import report_service
from backoffice.utils.http import query_date

reports_bp = Blueprint('reports', __name__, url_prefix='/api/reports')


def _range():
    default_start, default_end = report_service.default_range()
    return query_date('start') or default_start, query_date('end') or default_end


@reports_bp.route('', methods=['GET'])
@require_login
def report():
    """Query params: type (monthly/category/supplier/profit), start, end."""
    start, end = _range()
    data = report_service.build_report(get_session(), request.args.get('type', 'monthly'), start, end)
    return jsonify({'status': 'success', 'type': request.args.get('type', 'monthly'), **data})


@reports_bp.route('/csv', methods=['GET'])
@require_login
def report_csv():
    """Download a CSV (monthly/purchases/deliveries/inventory) with a BOM for Excel."""
    start, end = _range()
    filename, text = report_service.csv_report(
        get_session(), request.args.get('type', 'monthly'), start, end
    )
    return Response(
        text.encode('utf-8-sig'),
        mimetype='text/csv; charset=utf-8',
        headers={'Content-Disposition': f'attachment; filename="{filename}"'}
    )
