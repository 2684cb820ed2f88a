"""Product prefixes blueprint for CRUD operations."""
from flask import Blueprint, jsonify
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from backoffice.database import get_session
from backoffice.exceptions import BusinessLogicError, NotFoundError, ValidationError
from backoffice.middleware import require_login
from backoffice.models import ProductPrefix, Purchase
from backoffice.utils.http import json_body

product_prefixes_bp = Blueprint('product_prefixes', __name__, url_prefix='/api/product-prefixes')


def _get_or_404(session, prefix_id):
    prefix = session.get(ProductPrefix, prefix_id)
    if prefix is None:
        raise NotFoundError(f'Product prefix #{prefix_id} not found')
    return prefix


def _clean_name(session, data, prefix_id=None):
    name = (data.get('name') or '').strip()
    if not name:
        raise ValidationError('name is required', payload={'field': 'name'})

    query = session.query(ProductPrefix.id).filter(ProductPrefix.name == name)
    if prefix_id is not None:
        query = query.filter(ProductPrefix.id != prefix_id)
    if query.first() is not None:
        raise BusinessLogicError(f'Product prefix "{name}" already exists', status_code=409)
    return name


def _save(session, prefix):
    try:
        session.add(prefix)
        session.commit()
    except IntegrityError:
        # Lost a race with a concurrent insert of the same name
        session.rollback()
        raise BusinessLogicError(f'Product prefix "{prefix.name}" already exists', status_code=409)
    except Exception:
        session.rollback()
        raise


@product_prefixes_bp.route('', methods=['GET'])
@require_login
def list_prefixes():
    prefixes = get_session().query(ProductPrefix).order_by(ProductPrefix.name).all()
    return jsonify({'status': 'success', 'product_prefixes': [p.to_dict() for p in prefixes]})


@product_prefixes_bp.route('', methods=['POST'])
@require_login
def create_prefix():
    session = get_session()
    prefix = ProductPrefix(name=_clean_name(session, json_body()))
    _save(session, prefix)
    return jsonify({'status': 'success', 'product_prefix': prefix.to_dict()}), 201


@product_prefixes_bp.route('/<int:prefix_id>', methods=['GET'])
@require_login
def get_prefix(prefix_id):
    prefix = _get_or_404(get_session(), prefix_id)
    return jsonify({'status': 'success', 'product_prefix': prefix.to_dict()})


@product_prefixes_bp.route('/<int:prefix_id>', methods=['PUT'])
@require_login
def update_prefix(prefix_id):
    session = get_session()
    prefix = _get_or_404(session, prefix_id)
    prefix.name = _clean_name(session, json_body(), prefix_id)
    _save(session, prefix)
    return jsonify({'status': 'success', 'product_prefix': prefix.to_dict()})


@product_prefixes_bp.route('/<int:prefix_id>', methods=['DELETE'])
@require_login
def delete_prefix(prefix_id):
    """Delete a prefix (409 while purchases use it)."""
    session = get_session()
    prefix = _get_or_404(session, prefix_id)
    in_use = session.query(func.count(Purchase.id)).filter(Purchase.product_prefix_id == prefix_id).scalar()
    if in_use:
        raise BusinessLogicError(
            f'Product prefix "{prefix.name}" is used by {in_use} purchase(s) and cannot be deleted',
            status_code=409
        )
    try:
        session.delete(prefix)
        session.commit()
    except Exception:
        session.rollback()
        raise
    return jsonify({'status': 'success', 'message': f'Product prefix #{prefix_id} deleted'})
