import os
import tempfile
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

# Test configuration must be in the environment before config.py is imported
_db_fd, _db_path = tempfile.mkstemp(prefix='backoffice-test-', suffix='.db')
os.close(_db_fd)
os.environ['DATABASE_URL'] = f'sqlite:///{_db_path}'
os.environ['CACHE_ENABLED'] = 'false'
os.environ['SECRET_KEY'] = 'test-secret-key'
os.environ['FLASK_ENV'] = 'testing'
os.environ.pop('GOOGLE_SHEETS_CLIENT_EMAIL', None)
os.environ.pop('GOOGLE_SHEETS_PRIVATE_KEY', None)

from backoffice import create_app
from backoffice import database
from backoffice.database import Base, create_schema
from backoffice.exceptions import ExternalServiceError
from backoffice.models import (
    Supplier, Category, Customer, Purchase, User, UserRole
)
from backoffice.services.sheets_client import ExportedDocument, SheetsSession


class FakeExporter:
    """Stands in for SheetsExporter; records every document it is asked to create."""

    def __init__(self):
        self.documents = []
        self.fail_with = None

    def authorize(self):
        return SheetsSession('fake-token', datetime.now(timezone.utc) + timedelta(hours=1))

    def refresh(self, sheets_session):
        return sheets_session

    def create_document(self, sheets_session, template_id, field_map, kind):
        if self.fail_with:
            raise ExternalServiceError('Template missing', code=self.fail_with)
        document_id = f'sheet-{kind}-{len(self.documents) + 1}'
        self.documents.append({'kind': kind, 'template_id': template_id, 'fields': field_map})
        return ExportedDocument(document_id, f'https://docs.google.com/spreadsheets/d/{document_id}')


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing."""
    app = create_app('config.Config')
    app.config['TESTING'] = True
    with app.app_context():
        create_schema()
    yield app
    database.engine.dispose()
    os.remove(_db_path)


@pytest.fixture(autouse=True)
def app_context(app):
    """Run each test inside an app context and leave the tables empty afterwards."""
    exporter = FakeExporter()
    app.extensions['document_exporter'] = exporter
    ctx = app.app_context()
    ctx.push()
    yield ctx
    database.db_session.remove()
    ctx.pop()
    with database.engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def exporter(app):
    return app.extensions['document_exporter']


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def session():
    """Create database session for testing."""
    return database.get_session()


def _save(session, obj):
    session.add(obj)
    session.commit()
    session.refresh(obj)
    return obj


@pytest.fixture
def supplier(session):
    return _save(session, Supplier(company_name='Tanaka Farm', contact_person='Tanaka'))


@pytest.fixture
def category(session):
    return _save(session, Category(name='Leafy greens', display_order=1))


@pytest.fixture
def customer(session):
    return _save(session, Customer(
        company_name='Bistro Aoi',
        delivery_address='1-2-3 Shibuya',
        billing_cycle='monthly',
        billing_day=31,
        payment_terms='30days',
    ))


@pytest.fixture
def make_purchase(session, supplier, category):
    """Factory for purchase lots (remaining starts at quantity unless given)."""
    def _make(product_name='Spinach', quantity='10', unit_price='300', remaining=None,
              purchase_date=date(2024, 5, 1), expiry_date=None, category_id=None):
        quantity = Decimal(quantity)
        unit_price = Decimal(unit_price)
        return _save(session, Purchase(
            product_name=product_name,
            supplier_id=supplier.id,
            category_id=category_id or category.id,
            quantity=quantity,
            unit='kg',
            unit_price=unit_price,
            price=quantity * unit_price,
            purchase_date=purchase_date,
            expiry_date=expiry_date,
            remaining_quantity=Decimal(remaining) if remaining is not None else quantity,
            needs_review=False,
        ))
    return _make


@pytest.fixture
def purchase(make_purchase):
    """10 kg of spinach at 300 yen."""
    return make_purchase()


def _user(session, email, role):
    user = User(name=email.split('@')[0], email=email, role=role)
    user.set_password('password123')
    return _save(session, user)


@pytest.fixture
def admin_user(session):
    return _user(session, 'admin@example.com', UserRole.ADMIN)


@pytest.fixture
def staff_user(session):
    return _user(session, 'staff@example.com', UserRole.USER)


@pytest.fixture
def auth_headers(admin_user):
    """Bearer header for the admin user."""
    from backoffice.services.user_service import issue_token
    return {'Authorization': f'Bearer {issue_token(admin_user)}'}


@pytest.fixture
def staff_headers(staff_user):
    from backoffice.services.user_service import issue_token
    return {'Authorization': f'Bearer {issue_token(staff_user)}'}
