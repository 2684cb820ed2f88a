"""Categories blueprint for CRUD operations."""
from flask import Blueprint, jsonify
from sqlalchemy.exc import IntegrityError
from backoffice.database import get_session
from backoffice.exceptions import BusinessLogicError, NotFoundError, ValidationError
from backoffice.middleware import require_login
from backoffice.models import Category
from backoffice.services.cache_service import invalidate_reports
from backoffice.utils.http import json_body
from backoffice.utils.number_format import parse_int

categories_bp = Blueprint('categories', __name__, url_prefix='/api/categories')


def _get_or_404(session, category_id):
    category = session.get(Category, category_id)
    if category is None:
        raise NotFoundError(f'Category #{category_id} not found')
    return category


def _apply(category, data):
    if 'name' in data:
        category.name = (data.get('name') or '').strip()
    if not category.name:
        raise ValidationError('name is required', payload={'field': 'name'})
    if 'description' in data:
        category.description = (data.get('description') or '').strip() or None
    if 'display_order' in data:
        category.display_order = parse_int(data.get('display_order'), 'display_order', allow_none=True) or 0


def _save(session, category):
    try:
        session.add(category)
        session.commit()
    except IntegrityError:
        session.rollback()
        raise BusinessLogicError(f'Category "{category.name}" already exists', status_code=409)
    except Exception:
        session.rollback()
        raise
    invalidate_reports()


@categories_bp.route('', methods=['GET'])
@require_login
def list_categories():
    categories = get_session().query(Category).order_by(Category.display_order, Category.name).all()
    return jsonify({'status': 'success', 'categories': [c.to_dict() for c in categories]})


@categories_bp.route('', methods=['POST'])
@require_login
def create_category():
    session = get_session()
    category = Category()
    _apply(category, json_body())
    _save(session, category)
    return jsonify({'status': 'success', 'category': category.to_dict()}), 201


@categories_bp.route('/<int:category_id>', methods=['PUT'])
@require_login
def update_category(category_id):
    session = get_session()
    category = _get_or_404(session, category_id)
    try:
        _apply(category, json_body())
    except Exception:
        session.rollback()
        raise
    _save(session, category)
    return jsonify({'status': 'success', 'category': category.to_dict()})


@categories_bp.route('/<int:category_id>', methods=['DELETE'])
@require_login
def delete_category(category_id):
    """Delete a category; purchases keep working without one."""
    session = get_session()
    category = _get_or_404(session, category_id)
    try:
        for purchase in category.purchases:
            purchase.category_id = None
        session.delete(category)
        session.commit()
    except IntegrityError:
        session.rollback()
        raise BusinessLogicError('Category is referenced by other records', status_code=409)
    except Exception:
        session.rollback()
        raise
    invalidate_reports()
    return jsonify({'status': 'success', 'message': f'Category #{category_id} deleted'})
