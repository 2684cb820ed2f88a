"""
Unit tests for user accounts, tokens and the last-admin rule.
"""
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from backoffice.exceptions import (
    AdminFloorViolationError, BusinessLogicError, NotFoundError, UnauthorizedError, ValidationError
)
from backoffice.models import User, UserRole
from backoffice.services import user_service


class TestAuthentication:

    def test_authenticate(self, session, admin_user):
        user = user_service.authenticate(session, 'Admin@Example.com ', 'password123')
        assert user.id == admin_user.id

    @pytest.mark.parametrize('email, password', [
        ('admin@example.com', 'wrong-password'),
        ('nobody@example.com', 'password123'),
        ('admin@example.com', None),
    ])
    def test_bad_credentials(self, session, admin_user, email, password):
        with pytest.raises(UnauthorizedError) as exc:
            user_service.authenticate(session, email, password)
        assert exc.value.message == 'Invalid email or password'

    def test_token_round_trip(self, admin_user):
        claims = user_service.decode_token(user_service.issue_token(admin_user))
        assert claims['sub'] == str(admin_user.id)
        assert claims['role'] == 'ADMIN'

    def test_expired_token(self, app, admin_user):
        past = datetime.now(timezone.utc) - timedelta(hours=2)
        token = jwt.encode(
            {'sub': str(admin_user.id), 'iat': past, 'exp': past + timedelta(hours=1)},
            app.config['SECRET_KEY'], algorithm='HS256'
        )
        with pytest.raises(UnauthorizedError, match='expired'):
            user_service.decode_token(token)

    def test_token_signed_with_other_key(self, admin_user):
        token = jwt.encode({'sub': str(admin_user.id)}, 'not-the-secret', algorithm='HS256')
        with pytest.raises(UnauthorizedError, match='Invalid token'):
            user_service.decode_token(token)


class TestCreateUser:
    """Tests for user_service.create_user."""

    def test_create(self, session):
        user = user_service.create_user(session, {
            'name': 'Suzuki', 'email': 'Suzuki@Example.com', 'password': 'longenough', 'role': 'user',
        })
        assert user.email == 'suzuki@example.com'
        assert user.role == UserRole.USER
        assert user.check_password('longenough')

    def test_short_password(self, session):
        with pytest.raises(ValidationError):
            user_service.create_user(session, {'name': 'A', 'email': 'a@example.com', 'password': 'short'})

    def test_duplicate_email(self, session, admin_user):
        with pytest.raises(BusinessLogicError) as exc:
            user_service.create_user(session, {
                'name': 'Copy', 'email': 'admin@example.com', 'password': 'password123',
            })
        assert exc.value.status_code == 409

    def test_unknown_role(self, session):
        with pytest.raises(ValidationError):
            user_service.create_user(session, {
                'name': 'X', 'email': 'x@example.com', 'password': 'password123', 'role': 'OWNER',
            })


class TestAdminFloor:
    """At least one ADMIN must always exist."""

    def test_cannot_demote_last_admin(self, session, admin_user):
        with pytest.raises(AdminFloorViolationError):
            user_service.update_user(session, admin_user.id, {'role': 'USER', 'name': 'Renamed'})

        user = session.get(User, admin_user.id)
        assert user.role == UserRole.ADMIN
        assert user.name == 'admin'

    def test_cannot_delete_last_admin(self, session, admin_user):
        with pytest.raises(AdminFloorViolationError):
            user_service.delete_user(session, admin_user.id)

    def test_demote_when_another_admin_exists(self, session, admin_user):
        second = user_service.create_user(session, {
            'name': 'Second', 'email': 'second@example.com', 'password': 'password123', 'role': 'ADMIN',
        })
        user_service.update_user(session, admin_user.id, {'role': 'USER'})

        assert session.get(User, admin_user.id).role == UserRole.USER
        with pytest.raises(AdminFloorViolationError):
            user_service.delete_user(session, second.id)

    def test_cannot_delete_self(self, session, admin_user):
        user_service.create_user(session, {
            'name': 'Second', 'email': 'second@example.com', 'password': 'password123', 'role': 'ADMIN',
        })
        with pytest.raises(BusinessLogicError):
            user_service.delete_user(session, admin_user.id, acting_user_id=admin_user.id)

    def test_delete_regular_user(self, session, admin_user, staff_user):
        staff_id = staff_user.id
        user_service.delete_user(session, staff_id, acting_user_id=admin_user.id)

        assert session.get(User, staff_id) is None
        with pytest.raises(NotFoundError):
            user_service.delete_user(session, staff_id)

    def test_email_clash_on_update(self, session, admin_user, staff_user):
        with pytest.raises(BusinessLogicError):
            user_service.update_user(session, staff_user.id, {'email': 'admin@example.com'})
