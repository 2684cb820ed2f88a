"""
Inventory remaining-quantity ledger.

Every change to Purchase.remaining_quantity goes through this module.
Consumption is a single conditional UPDATE so two concurrent requests can
never both draw the same units; callers own the transaction (nothing here
commits).
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from flask import current_app, has_app_context
from sqlalchemy import update, func

from backoffice.exceptions import InsufficientStockError, NotFoundError, ValidationError
from backoffice.models import Purchase, PurchaseStatus, derive_status

logger = logging.getLogger(__name__)

__all__ = [
    'consume', 'restore', 'derive_status', 'expiry_health', 'reconcile_quantity',
    'PurchaseStatus',
]

HEALTH_EXPIRED = 'expired'
HEALTH_URGENT = 'urgent'
HEALTH_WARNING = 'warning'
HEALTH_GOOD = 'good'


def _to_decimal(quantity) -> Decimal:
    value = quantity if isinstance(quantity, Decimal) else Decimal(str(quantity))
    if value <= 0:
        raise ValidationError('quantity must be greater than 0', payload={'field': 'quantity'})
    return value


def consume(session, purchase_id: int, quantity) -> None:
    """
    Draw `quantity` units from a purchase lot.

    Issues `UPDATE purchase SET remaining_quantity = remaining_quantity - q
    WHERE id = :id AND remaining_quantity >= q`; a zero row count means the
    lot is missing or short.

    Raises:
        InsufficientStockError: remaining_quantity < quantity
        NotFoundError: no such purchase
    """
    qty = _to_decimal(quantity)

    result = session.execute(
        update(Purchase)
        .where(Purchase.id == purchase_id, Purchase.remaining_quantity >= qty)
        .values(remaining_quantity=Purchase.remaining_quantity - qty)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount == 0:
        purchase = session.get(Purchase, purchase_id, populate_existing=True)
        if purchase is None:
            raise NotFoundError(f'Purchase #{purchase_id} not found')
        logger.info(
            f"[LEDGER] Rejected consume of {qty} from purchase {purchase_id} "
            f"(remaining {purchase.remaining_quantity})"
        )
        raise InsufficientStockError(
            purchase.product_name, qty, purchase.remaining_quantity, purchase_id=purchase_id
        )

    _expire_cached(session, purchase_id)
    logger.debug(f"[LEDGER] Consumed {qty} from purchase {purchase_id}")


def restore(session, purchase_id: int, quantity) -> None:
    """
    Give `quantity` units back to a lot, capped at the bought quantity.

    remaining_quantity = min(quantity, remaining_quantity + q)
    """
    qty = _to_decimal(quantity)
    # SQLite spells LEAST as the two-argument min()
    least = func.min if _is_sqlite(session) else func.least

    result = session.execute(
        update(Purchase)
        .where(Purchase.id == purchase_id)
        .values(remaining_quantity=least(Purchase.quantity, Purchase.remaining_quantity + qty))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError(f'Purchase #{purchase_id} not found')

    _expire_cached(session, purchase_id)
    logger.debug(f"[LEDGER] Restored {qty} to purchase {purchase_id}")


def _is_sqlite(session) -> bool:
    return session.get_bind().dialect.name == 'sqlite'


def _expire_cached(session, purchase_id: int) -> None:
    """Drop the stale in-memory copy of a lot after a bulk UPDATE."""
    for obj in list(session.identity_map.values()):
        if isinstance(obj, Purchase) and obj.id == purchase_id:
            session.expire(obj, ['remaining_quantity'])


def _threshold(name: str, default: int) -> int:
    if has_app_context():
        return int(current_app.config.get(name, default))
    return default


def expiry_health(expiry_date: Optional[date], today: Optional[date] = None,
                  urgent_days: Optional[int] = None, warning_days: Optional[int] = None) -> str:
    """
    Classify a lot by days until expiry.

    expired (<= 0 days), urgent (<= EXPIRY_URGENT_DAYS), warning
    (<= EXPIRY_WARNING_DAYS), otherwise good. Lots without an expiry date
    are good. Display only; nothing blocks on it.
    """
    if expiry_date is None:
        return HEALTH_GOOD

    today = today or date.today()
    urgent_days = urgent_days if urgent_days is not None else _threshold('EXPIRY_URGENT_DAYS', 3)
    warning_days = warning_days if warning_days is not None else _threshold('EXPIRY_WARNING_DAYS', 7)

    days_until = (expiry_date - today).days
    if days_until <= 0:
        return HEALTH_EXPIRED
    if days_until <= urgent_days:
        return HEALTH_URGENT
    if days_until <= warning_days:
        return HEALTH_WARNING
    return HEALTH_GOOD


def reconcile_quantity(purchase: Purchase, new_quantity) -> bool:
    """
    Apply an edited bought quantity to a lot, keeping what was consumed.

    remaining = new_quantity - consumed, clamped into [0, new_quantity].
    When the clamp changes the value (the lot was edited below what has
    already been delivered) the lot is flagged `needs_review`.

    Returns:
        True if the lot was flagged.
    """
    new_quantity = _to_decimal(new_quantity)
    consumed = Decimal(purchase.quantity) - Decimal(purchase.remaining_quantity)
    wanted = new_quantity - consumed
    remaining = min(max(wanted, Decimal('0')), new_quantity)

    purchase.quantity = new_quantity
    purchase.remaining_quantity = remaining
    purchase.price = (new_quantity * Decimal(purchase.unit_price)).quantize(Decimal('0.01'))

    if remaining != wanted:
        purchase.needs_review = True
        purchase.review_note = (
            f'Quantity set to {new_quantity} but {consumed} was already delivered; '
            f'remaining clamped to {remaining}'
        )
        logger.warning(f"[LEDGER] Purchase {purchase.id} flagged for review: {purchase.review_note}")
        return True
    return False
