"""Inventory blueprint - remaining stock by lot with expiry health."""
from flask import Blueprint, request, jsonify
from backoffice.database import get_session
from backoffice.exceptions import ValidationError
from backoffice.middleware import require_login
from backoffice.services.inventory_service import HEALTH_FILTERS, list_inventory
from backoffice.utils.http import query_int

inventory_bp = Blueprint('inventory', __name__, url_prefix='/api/inventory')


@inventory_bp.route('', methods=['GET'])
@require_login
def inventory():
    """Query params: q, category_id, health (expired/urgent/warning/good)."""
    health = request.args.get('health') or None
    if health and health not in HEALTH_FILTERS:
        raise ValidationError(f'Unknown health filter: {health}', payload={'field': 'health'})

    result = list_inventory(
        get_session(),
        search=request.args.get('q', '').strip() or None,
        category_id=query_int('category_id'),
        health=health,
    )
    return jsonify({'status': 'success', **result})
