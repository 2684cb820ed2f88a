"""Deliveries blueprint - NORMAL, DIRECT and RETURN deliveries."""
from flask import Blueprint, request, jsonify
from backoffice.database import get_session
from backoffice.middleware import require_login
from backoffice.services import delivery_service, export_service
from backoffice.utils.http import json_body, query_int
from backoffice.utils.number_format import parse_int

deliveries_bp = Blueprint('deliveries', __name__, url_prefix='/api/deliveries')


def _page(result):
    return {
        'status': 'success',
        'deliveries': [d.to_dict(include_items=False) for d in result['items']],
        'total': result['total'],
        'page': result['page'],
        'limit': result['limit'],
        'pages': result['pages'],
    }


@deliveries_bp.route('', methods=['GET'])
@require_login
def list_deliveries():
    """Query params: customer_id, month (YYYY-MM), status, type, q, page, limit."""
    result = delivery_service.list_deliveries(
        get_session(),
        customer_id=query_int('customer_id'),
        month=request.args.get('month') or None,
        status=request.args.get('status') or None,
        type=request.args.get('type') or None,
        search=request.args.get('q', '').strip() or None,
        page=query_int('page') or 1,
        limit=query_int('limit') or 50,
    )
    return jsonify(_page(result))


@deliveries_bp.route('/unlinked', methods=['GET'])
@require_login
def list_unlinked():
    result = delivery_service.list_unlinked_deliveries(
        get_session(),
        customer_id=query_int('customer_id'),
        month=request.args.get('month') or None,
        page=query_int('page') or 1,
        limit=query_int('limit') or 50,
    )
    return jsonify(_page(result))


@deliveries_bp.route('', methods=['POST'])
@require_login
def create_delivery():
    delivery = delivery_service.create_delivery(get_session(), json_body())
    return jsonify({'status': 'success', 'delivery': delivery.to_dict()}), 201


@deliveries_bp.route('/<int:delivery_id>', methods=['GET'])
@require_login
def get_delivery(delivery_id):
    delivery = delivery_service.get_delivery(get_session(), delivery_id)
    return jsonify({'status': 'success', 'delivery': delivery.to_dict()})


@deliveries_bp.route('/<int:delivery_id>', methods=['PUT'])
@require_login
def update_delivery(delivery_id):
    delivery = delivery_service.update_delivery(get_session(), delivery_id, json_body())
    return jsonify({'status': 'success', 'delivery': delivery.to_dict()})


@deliveries_bp.route('/<int:delivery_id>', methods=['DELETE'])
@require_login
def delete_delivery(delivery_id):
    result = delivery_service.delete_delivery(get_session(), delivery_id)
    return jsonify({'status': 'success', **result})


@deliveries_bp.route('/link-purchase', methods=['POST'])
@require_login
def link_purchase():
    """Body: {"item_id": int, "purchase_id": int}"""
    data = json_body()
    item = delivery_service.link_item_to_purchase(
        get_session(),
        parse_int(data.get('item_id'), 'item_id'),
        parse_int(data.get('purchase_id'), 'purchase_id'),
    )
    return jsonify({
        'status': 'success',
        'item': item.to_dict(),
        'purchase_link_status': item.delivery.purchase_link_status.value,
    })


@deliveries_bp.route('/<int:delivery_id>/export', methods=['POST'])
@require_login
def export_delivery(delivery_id):
    """Render the delivery slip to Google Sheets."""
    document = export_service.export_delivery(
        get_session(), delivery_id, export_service.get_exporter(),
        template_id=json_body().get('template_id'),
    )
    return jsonify({'status': 'success', 'sheet_id': document.document_id, 'url': document.url})
