"""Purchases blueprint - lot registration and editing."""
from flask import Blueprint, request, jsonify
from backoffice.database import get_session
from backoffice.exceptions import NotFoundError
from backoffice.middleware import require_login
from backoffice.models import Purchase
from backoffice.services import purchase_service
from backoffice.utils.http import json_body, query_int, query_date, query_bool

purchases_bp = Blueprint('purchases', __name__, url_prefix='/api/purchases')


@purchases_bp.route('', methods=['GET'])
@require_login
def list_purchases():
    """
    List purchase lots.

    Query params: q, supplier_id, category_id, status, date_from, date_to,
    needs_review
    """
    purchases = purchase_service.list_purchases(
        get_session(),
        search=request.args.get('q', '').strip() or None,
        supplier_id=query_int('supplier_id'),
        category_id=query_int('category_id'),
        status=request.args.get('status') or None,
        date_from=query_date('date_from'),
        date_to=query_date('date_to'),
        needs_review=query_bool('needs_review'),
    )
    return jsonify({'status': 'success', 'purchases': [p.to_dict() for p in purchases]})


@purchases_bp.route('/available', methods=['GET'])
@require_login
def list_available():
    """Lots with remaining stock, for picking delivery items."""
    purchases = [
        p for p in purchase_service.list_purchases(
            get_session(),
            search=request.args.get('q', '').strip() or None,
            category_id=query_int('category_id'),
        )
        if p.remaining_quantity > 0
    ]
    return jsonify({'status': 'success', 'purchases': [p.to_dict() for p in purchases]})


@purchases_bp.route('', methods=['POST'])
@require_login
def create_purchase():
    purchase = purchase_service.create_purchase(get_session(), json_body())
    return jsonify({'status': 'success', 'purchase': purchase.to_dict()}), 201


@purchases_bp.route('/<int:purchase_id>', methods=['GET'])
@require_login
def get_purchase(purchase_id):
    purchase = get_session().get(Purchase, purchase_id)
    if purchase is None:
        raise NotFoundError(f'Purchase #{purchase_id} not found')
    return jsonify({'status': 'success', 'purchase': purchase.to_dict()})


@purchases_bp.route('/<int:purchase_id>', methods=['PUT'])
@require_login
def update_purchase(purchase_id):
    purchase = purchase_service.update_purchase(get_session(), purchase_id, json_body())
    return jsonify({'status': 'success', 'purchase': purchase.to_dict()})


@purchases_bp.route('/<int:purchase_id>', methods=['DELETE'])
@require_login
def delete_purchase(purchase_id):
    purchase_service.delete_purchase(get_session(), purchase_id)
    return jsonify({'status': 'success', 'message': f'Purchase #{purchase_id} deleted'})
