"""User accounts, password login and bearer tokens."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from flask import current_app
from sqlalchemy.exc import IntegrityError

from backoffice.exceptions import (
    AdminFloorViolationError, BusinessLogicError, NotFoundError, UnauthorizedError, ValidationError
)
from backoffice.models import User, UserRole

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def _normalize_email(email) -> str:
    return (email or '').strip().lower()


def _parse_role(value) -> UserRole:
    try:
        return UserRole((value or 'USER').upper())
    except ValueError:
        raise ValidationError(f'Unknown role: {value}', payload={'field': 'role'})


def _validate_password(password):
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f'Password must be at least {MIN_PASSWORD_LENGTH} characters', payload={'field': 'password'}
        )


def _admin_count(session) -> int:
    # Row locks keep two concurrent demotions from both passing the check
    return len(session.query(User.id).filter(User.role == UserRole.ADMIN).with_for_update().all())


def authenticate(session, email: str, password: str) -> User:
    """
    Check email/password.

    Raises:
        UnauthorizedError: unknown email or wrong password (same message for both)
    """
    user = session.query(User).filter(User.email == _normalize_email(email)).first()
    if user is None or not user.check_password(password or ''):
        logger.info(f"[AUTH] Failed login for {email!r}")
        raise UnauthorizedError('Invalid email or password')
    return user


def issue_token(user: User) -> str:
    """Signed HS256 bearer token for `user`."""
    now = datetime.now(timezone.utc)
    payload = {
        'sub': str(user.id),
        'email': user.email,
        'role': user.role.value,
        'iat': now,
        'exp': now + timedelta(seconds=current_app.config.get('TOKEN_TTL_SECONDS', 86400)),
    }
    return jwt.encode(
        payload, current_app.config['SECRET_KEY'],
        algorithm=current_app.config.get('TOKEN_ALGORITHM', 'HS256')
    )


def decode_token(token: str) -> dict:
    """
    Verify a bearer token and return its claims.

    Raises:
        UnauthorizedError: expired or invalid token
    """
    try:
        return jwt.decode(
            token, current_app.config['SECRET_KEY'],
            algorithms=[current_app.config.get('TOKEN_ALGORITHM', 'HS256')]
        )
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError('Token expired')
    except jwt.InvalidTokenError:
        raise UnauthorizedError('Invalid token')


def create_user(session, data: dict) -> User:
    name = (data.get('name') or '').strip()
    if not name:
        raise ValidationError('name is required', payload={'field': 'name'})
    email = _normalize_email(data.get('email'))
    if not email or '@' not in email:
        raise ValidationError('A valid email is required', payload={'field': 'email'})
    password = data.get('password')
    _validate_password(password)

    if session.query(User).filter(User.email == email).first() is not None:
        raise BusinessLogicError(f'A user with email {email} already exists', status_code=409)

    user = User(name=name, email=email, role=_parse_role(data.get('role')))
    user.set_password(password)
    try:
        session.add(user)
        session.commit()
    except IntegrityError:
        session.rollback()
        raise BusinessLogicError(f'A user with email {email} already exists', status_code=409)
    except Exception:
        session.rollback()
        raise

    logger.info(f"[USERS] Created user {user.email} ({user.role.value})")
    return user


def update_user(session, user_id: int, data: dict) -> User:
    """
    Edit name, email, role or password.

    Raises:
        AdminFloorViolationError: demoting the last ADMIN
    """
    user = session.get(User, user_id)
    if user is None:
        raise NotFoundError(f'User #{user_id} not found')

    try:
        if 'role' in data:
            new_role = _parse_role(data.get('role'))
            if user.role == UserRole.ADMIN and new_role != UserRole.ADMIN and _admin_count(session) <= 1:
                raise AdminFloorViolationError('Cannot demote the last administrator')
            user.role = new_role

        if 'name' in data:
            name = (data.get('name') or '').strip()
            if not name:
                raise ValidationError('name is required', payload={'field': 'name'})
            user.name = name

        if 'email' in data:
            email = _normalize_email(data.get('email'))
            if not email or '@' not in email:
                raise ValidationError('A valid email is required', payload={'field': 'email'})
            clash = session.query(User).filter(User.email == email, User.id != user_id).first()
            if clash is not None:
                raise BusinessLogicError(f'A user with email {email} already exists', status_code=409)
            user.email = email

        if data.get('password'):
            _validate_password(data['password'])
            user.set_password(data['password'])

        session.commit()
    except Exception:
        session.rollback()
        raise
    return user


def delete_user(session, user_id: int, acting_user_id: Optional[int] = None) -> None:
    """
    Delete a user.

    Raises:
        BusinessLogicError: deleting your own account
        AdminFloorViolationError: deleting the last ADMIN
    """
    user = session.get(User, user_id)
    if user is None:
        raise NotFoundError(f'User #{user_id} not found')
    if acting_user_id is not None and user.id == acting_user_id:
        raise BusinessLogicError('You cannot delete your own account')
    if user.role == UserRole.ADMIN and _admin_count(session) <= 1:
        raise AdminFloorViolationError('Cannot delete the last administrator')

    try:
        session.delete(user)
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info(f"[USERS] Deleted user {user_id}")


def list_users(session):
    return session.query(User).order_by(User.id).all()
