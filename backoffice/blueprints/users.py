"""Users blueprint - ADMIN-only account management."""
from flask import Blueprint, jsonify, g
from backoffice.database import get_session
from backoffice.middleware import require_login, require_role
from backoffice.services import user_service
from backoffice.utils.http import json_body

users_bp = Blueprint('users', __name__, url_prefix='/api/users')


@users_bp.route('', methods=['GET'])
@require_login
@require_role('ADMIN')
def list_users():
    users = user_service.list_users(get_session())
    return jsonify({'status': 'success', 'users': [u.to_dict() for u in users]})


@users_bp.route('', methods=['POST'])
@require_login
@require_role('ADMIN')
def create_user():
    user = user_service.create_user(get_session(), json_body())
    return jsonify({'status': 'success', 'user': user.to_dict()}), 201


@users_bp.route('/<int:user_id>', methods=['PUT'])
@require_login
@require_role('ADMIN')
def update_user(user_id):
    user = user_service.update_user(get_session(), user_id, json_body())
    return jsonify({'status': 'success', 'user': user.to_dict()})


@users_bp.route('/<int:user_id>', methods=['DELETE'])
@require_login
@require_role('ADMIN')
def delete_user(user_id):
    user_service.delete_user(get_session(), user_id, acting_user_id=g.user.id)
    return jsonify({'status': 'success', 'message': f'User #{user_id} deleted'})
