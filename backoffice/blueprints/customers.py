"""Customers blueprint for CRUD operations."""
from flask import Blueprint, request, jsonify
from sqlalchemy import or_, func
from sqlalchemy.exc import IntegrityError
from backoffice.database import get_session
from backoffice.exceptions import BusinessLogicError, NotFoundError, ValidationError
from backoffice.middleware import require_login
from backoffice.models import Customer
from backoffice.models.customer import BILLING_CYCLES, PAYMENT_TERMS
from backoffice.utils.http import json_body
from backoffice.utils.number_format import parse_int

customers_bp = Blueprint('customers', __name__, url_prefix='/api/customers')

TEXT_FIELDS = ('company_name', 'contact_person', 'phone', 'delivery_address', 'billing_address',
               'invoice_registration_number', 'invoice_notes')


def _get_or_404(session, customer_id):
    customer = session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f'Customer #{customer_id} not found')
    return customer


def _apply(session, customer, data):
    """Copy and validate JSON fields onto a customer."""
    for field in TEXT_FIELDS:
        if field in data:
            value = data.get(field)
            setattr(customer, field, (str(value).strip() or None) if value is not None else None)
    if not customer.company_name:
        raise ValidationError('company_name is required', payload={'field': 'company_name'})

    if 'billing_cycle' in data:
        if data['billing_cycle'] not in BILLING_CYCLES:
            raise ValidationError(f"billing_cycle must be one of {', '.join(BILLING_CYCLES)}",
                                  payload={'field': 'billing_cycle'})
        customer.billing_cycle = data['billing_cycle']

    if 'billing_day' in data:
        day = parse_int(data.get('billing_day'), 'billing_day')
        if not 1 <= day <= 31:
            raise ValidationError('billing_day must be between 1 and 31', payload={'field': 'billing_day'})
        customer.billing_day = day

    if 'payment_terms' in data:
        if data['payment_terms'] not in PAYMENT_TERMS:
            raise ValidationError(f"payment_terms must be one of {', '.join(PAYMENT_TERMS)}",
                                  payload={'field': 'payment_terms'})
        customer.payment_terms = data['payment_terms']

    if 'billing_customer_id' in data:
        billing_id = parse_int(data.get('billing_customer_id'), 'billing_customer_id', allow_none=True)
        if billing_id is not None:
            if customer.id is not None and billing_id == customer.id:
                raise ValidationError('A customer cannot bill itself through billing_customer_id',
                                      payload={'field': 'billing_customer_id'})
            billing_party = session.get(Customer, billing_id)
            if billing_party is None:
                raise ValidationError(f'Customer #{billing_id} does not exist',
                                      payload={'field': 'billing_customer_id'})
            # bill_to resolves a single hop
            if billing_party.billing_customer_id is not None:
                raise ValidationError(
                    f'Customer #{billing_id} is billed through another customer and cannot be a billing party',
                    payload={'field': 'billing_customer_id'}
                )
            if customer.id is not None and session.query(Customer.id).filter(
                    Customer.billing_customer_id == customer.id).first() is not None:
                raise ValidationError(
                    f'Customer #{customer.id} is a billing party for other customers',
                    payload={'field': 'billing_customer_id'}
                )
        customer.billing_customer_id = billing_id


@customers_bp.route('', methods=['GET'])
@require_login
def list_customers():
    """List customers, optionally filtered by `q`."""
    session = get_session()
    search_query = request.args.get('q', '').strip()

    query = session.query(Customer)
    if search_query:
        term = f'%{search_query.lower()}%'
        query = query.filter(or_(
            func.lower(Customer.company_name).like(term),
            func.lower(Customer.contact_person).like(term),
            func.lower(Customer.phone).like(term),
        ))

    customers = query.order_by(Customer.company_name).all()
    return jsonify({'status': 'success', 'customers': [c.to_dict() for c in customers]})


@customers_bp.route('', methods=['POST'])
@require_login
def create_customer():
    session = get_session()
    customer = Customer(billing_cycle='monthly', billing_day=31, payment_terms='30days')
    _apply(session, customer, json_body())
    try:
        session.add(customer)
        session.commit()
    except Exception:
        session.rollback()
        raise
    return jsonify({'status': 'success', 'customer': customer.to_dict()}), 201


@customers_bp.route('/<int:customer_id>', methods=['GET'])
@require_login
def get_customer(customer_id):
    customer = _get_or_404(get_session(), customer_id)
    return jsonify({'status': 'success', 'customer': customer.to_dict()})


@customers_bp.route('/<int:customer_id>', methods=['PUT'])
@require_login
def update_customer(customer_id):
    session = get_session()
    customer = _get_or_404(session, customer_id)
    try:
        _apply(session, customer, json_body())
        session.commit()
    except Exception:
        session.rollback()
        raise
    return jsonify({'status': 'success', 'customer': customer.to_dict()})


@customers_bp.route('/<int:customer_id>', methods=['DELETE'])
@require_login
def delete_customer(customer_id):
    """Delete a customer (409 while deliveries or invoices reference it)."""
    session = get_session()
    customer = _get_or_404(session, customer_id)
    if customer.deliveries or customer.invoices:
        raise BusinessLogicError(
            f'Customer "{customer.company_name}" has deliveries or invoices and cannot be deleted',
            status_code=409
        )
    try:
        session.delete(customer)
        session.commit()
    except IntegrityError:
        session.rollback()
        raise BusinessLogicError('Customer is referenced by other records', status_code=409)
    except Exception:
        session.rollback()
        raise
    return jsonify({'status': 'success', 'message': f'Customer #{customer_id} deleted'})
