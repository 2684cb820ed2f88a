"""Dashboard blueprint - monthly figures and recent activity."""
from flask import Blueprint, jsonify
from backoffice.database import get_session
from backoffice.middleware import require_login
from backoffice.services import dashboard_service
from backoffice.utils.http import query_int

dashboard_bp = Blueprint('dashboard', __name__, url_prefix='/api/dashboard')


@dashboard_bp.route('/stats', methods=['GET'])
@require_login
def stats():
    return jsonify({'status': 'success', 'data': dashboard_service.get_stats(get_session())})


@dashboard_bp.route('/activities', methods=['GET'])
@require_login
def activities():
    """Query params: limit (default 10)."""
    limit = query_int('limit')
    result = dashboard_service.recent_activities(get_session(), limit=10 if limit is None else limit)
    return jsonify({'status': 'success', 'data': result})
