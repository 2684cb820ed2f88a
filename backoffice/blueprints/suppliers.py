"""Suppliers blueprint for CRUD operations."""
from flask import Blueprint, request, jsonify
from sqlalchemy import or_, func
from sqlalchemy.exc import IntegrityError
from backoffice.database import get_session
from backoffice.exceptions import BusinessLogicError, NotFoundError, ValidationError
from backoffice.middleware import require_login
from backoffice.models import Supplier
from backoffice.services.cache_service import invalidate_reports
from backoffice.utils.http import json_body

suppliers_bp = Blueprint('suppliers', __name__, url_prefix='/api/suppliers')

FIELDS = ('company_name', 'contact_person', 'phone', 'address', 'payment_terms',
          'delivery_conditions', 'notes')


def _get_or_404(session, supplier_id):
    supplier = session.get(Supplier, supplier_id)
    if supplier is None:
        raise NotFoundError(f'Supplier #{supplier_id} not found')
    return supplier


def _apply(supplier, data):
    for field in FIELDS:
        if field in data:
            value = data.get(field)
            setattr(supplier, field, (str(value).strip() or None) if value is not None else None)
    if not supplier.company_name:
        raise ValidationError('company_name is required', payload={'field': 'company_name'})


@suppliers_bp.route('', methods=['GET'])
@require_login
def list_suppliers():
    """List suppliers, optionally filtered by `q`."""
    session = get_session()
    search_query = request.args.get('q', '').strip()

    query = session.query(Supplier)
    if search_query:
        term = f'%{search_query.lower()}%'
        query = query.filter(or_(
            func.lower(Supplier.company_name).like(term),
            func.lower(Supplier.contact_person).like(term),
            func.lower(Supplier.phone).like(term),
        ))

    suppliers = query.order_by(Supplier.company_name).all()
    return jsonify({'status': 'success', 'suppliers': [s.to_dict() for s in suppliers]})


@suppliers_bp.route('', methods=['POST'])
@require_login
def create_supplier():
    session = get_session()
    supplier = Supplier()
    _apply(supplier, json_body())
    try:
        session.add(supplier)
        session.commit()
    except Exception:
        session.rollback()
        raise
    invalidate_reports()
    return jsonify({'status': 'success', 'supplier': supplier.to_dict()}), 201


@suppliers_bp.route('/<int:supplier_id>', methods=['GET'])
@require_login
def get_supplier(supplier_id):
    supplier = _get_or_404(get_session(), supplier_id)
    return jsonify({'status': 'success', 'supplier': supplier.to_dict()})


@suppliers_bp.route('/<int:supplier_id>', methods=['PUT'])
@require_login
def update_supplier(supplier_id):
    session = get_session()
    supplier = _get_or_404(session, supplier_id)
    try:
        _apply(supplier, json_body())
        session.commit()
    except Exception:
        session.rollback()
        raise
    invalidate_reports()
    return jsonify({'status': 'success', 'supplier': supplier.to_dict()})


@suppliers_bp.route('/<int:supplier_id>', methods=['DELETE'])
@require_login
def delete_supplier(supplier_id):
    """Delete a supplier (409 while purchases reference it)."""
    session = get_session()
    supplier = _get_or_404(session, supplier_id)
    if supplier.purchases:
        raise BusinessLogicError(
            f'Supplier "{supplier.company_name}" has purchases and cannot be deleted', status_code=409
        )
    try:
        session.delete(supplier)
        session.commit()
    except IntegrityError:
        session.rollback()
        raise BusinessLogicError('Supplier is referenced by other records', status_code=409)
    except Exception:
        session.rollback()
        raise
    invalidate_reports()
    return jsonify({'status': 'success', 'message': f'Supplier #{supplier_id} deleted'})
