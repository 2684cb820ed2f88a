"""Middleware for bearer-token authentication."""
from functools import wraps
from flask import g, request, current_app
from backoffice.database import get_session
from backoffice.exceptions import UnauthorizedError, ForbiddenError
from backoffice.models import User, UserRole


def _bearer_token():
    header = request.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


def load_user():
    """
    Load the current user into g (Flask's per-request global).

    Called before each request. Sets g.user when the request carries a
    valid `Authorization: Bearer <token>` header; a bad token leaves g.user
    as None and the route decorators answer 401.
    """
    g.user = None
    g.auth_error = None

    token = _bearer_token()
    if not token:
        return

    from backoffice.services.user_service import decode_token
    try:
        claims = decode_token(token)
    except UnauthorizedError as e:
        g.auth_error = e.message
        return

    try:
        user_id = int(claims.get('sub'))
    except (TypeError, ValueError):
        g.auth_error = 'Invalid token'
        return

    user = get_session().get(User, user_id)
    if user is None:
        current_app.logger.info(f"[AUTH] Token for missing user {user_id}")
        g.auth_error = 'Invalid token'
        return
    g.user = user


def require_login(f):
    """Decorator: require an authenticated user (401 otherwise)."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get('user') is None:
            raise UnauthorizedError(g.get('auth_error') or 'Authentication required')
        return f(*args, **kwargs)
    return decorated_function


def require_role(role='ADMIN'):
    """
    Decorator: require a role (403 otherwise).

    Must be used AFTER require_login.
    """
    wanted = UserRole(role)

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if g.get('user') is None:
                raise UnauthorizedError(g.get('auth_error') or 'Authentication required')
            if g.user.role != wanted:
                raise ForbiddenError(f'{wanted.value} role required')
            return f(*args, **kwargs)
        return decorated_function
    return decorator
