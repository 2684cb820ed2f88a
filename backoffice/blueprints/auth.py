"""Authentication blueprint - password login issuing bearer tokens."""
from flask import Blueprint, jsonify, g
from backoffice.database import get_session
from backoffice.middleware import require_login
from backoffice.services import user_service
from backoffice.utils.http import json_body

auth_bp = Blueprint('auth', __name__, url_prefix='/api/auth')


@auth_bp.route('/login', methods=['POST'])
def login():
    """Exchange email/password for a bearer token."""
    data = json_body()
    user = user_service.authenticate(get_session(), data.get('email'), data.get('password'))
    token = user_service.issue_token(user)
    return jsonify({'status': 'success', 'token': token, 'user': user.to_dict()})


@auth_bp.route('/me')
@require_login
def me():
    return jsonify({'status': 'success', 'user': g.user.to_dict()})
