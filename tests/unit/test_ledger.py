"""
Unit tests for the remaining-quantity ledger.
"""
import threading
from datetime import date
from decimal import Decimal

import pytest

from backoffice import database
from backoffice.exceptions import InsufficientStockError, NotFoundError, ValidationError
from backoffice.models import Purchase, PurchaseStatus
from backoffice.services import ledger_service


class TestConsume:
    """Tests for ledger_service.consume."""

    def test_consume_decrements_remaining(self, session, purchase):
        ledger_service.consume(session, purchase.id, Decimal('4'))
        session.commit()

        lot = session.get(Purchase, purchase.id)
        assert lot.remaining_quantity == Decimal('6')
        assert lot.status == PurchaseStatus.PARTIAL

    def test_consume_everything_marks_used(self, session, purchase):
        ledger_service.consume(session, purchase.id, '10')
        session.commit()

        lot = session.get(Purchase, purchase.id)
        assert lot.remaining_quantity == 0
        assert lot.status == PurchaseStatus.USED

    def test_consume_more_than_remaining_is_rejected(self, session, purchase):
        with pytest.raises(InsufficientStockError) as exc:
            ledger_service.consume(session, purchase.id, Decimal('10.5'))

        assert exc.value.status_code == 409
        assert exc.value.purchase_id == purchase.id
        assert 'Spinach' in exc.value.message
        session.rollback()
        assert session.get(Purchase, purchase.id).remaining_quantity == Decimal('10')

    def test_consume_unknown_purchase(self, session):
        with pytest.raises(NotFoundError):
            ledger_service.consume(session, 999999, Decimal('1'))

    @pytest.mark.parametrize('quantity', ['0', '-1'])
    def test_consume_requires_positive_quantity(self, session, purchase, quantity):
        with pytest.raises(ValidationError):
            ledger_service.consume(session, purchase.id, Decimal(quantity))

    def test_concurrent_consumers_cannot_oversell(self, session, purchase):
        """Two 6 kg orders against a 10 kg lot: exactly one wins."""
        purchase_id = purchase.id
        session.commit()
        database.db_session.remove()

        barrier = threading.Barrier(2)
        outcomes = []
        lock = threading.Lock()

        def worker():
            local = database.new_session()
            try:
                barrier.wait()
                ledger_service.consume(local, purchase_id, Decimal('6'))
                local.commit()
                result = 'ok'
            except InsufficientStockError:
                local.rollback()
                result = 'insufficient'
            finally:
                local.close()
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        assert sorted(outcomes) == ['insufficient', 'ok']
        lot = database.get_session().get(Purchase, purchase_id)
        assert lot.remaining_quantity == Decimal('4')


class TestRestore:
    """Tests for ledger_service.restore."""

    def test_restore_adds_back(self, session, make_purchase):
        lot = make_purchase(remaining='3')
        ledger_service.restore(session, lot.id, Decimal('5'))
        session.commit()

        assert session.get(Purchase, lot.id).remaining_quantity == Decimal('8')

    def test_restore_is_capped_at_quantity(self, session, make_purchase):
        lot = make_purchase(remaining='9')
        ledger_service.restore(session, lot.id, Decimal('5'))
        session.commit()

        restored = session.get(Purchase, lot.id)
        assert restored.remaining_quantity == Decimal('10')
        assert restored.status == PurchaseStatus.UNUSED

    def test_restore_unknown_purchase(self, session):
        with pytest.raises(NotFoundError):
            ledger_service.restore(session, 424242, Decimal('1'))

    @pytest.mark.parametrize('remaining,quantity', [
        ('10', '4'), ('10', '10'), ('6.5', '0.25'), ('3', '3'),
    ])
    def test_restore_undoes_consume(self, session, make_purchase, remaining, quantity):
        lot = make_purchase(remaining=remaining)
        lot_id = lot.id

        ledger_service.consume(session, lot_id, Decimal(quantity))
        session.commit()
        ledger_service.restore(session, lot_id, Decimal(quantity))
        session.commit()

        assert session.get(Purchase, lot_id).remaining_quantity == Decimal(remaining)


class TestDeriveStatus:

    @pytest.mark.parametrize('remaining, quantity, expected', [
        ('10', '10', PurchaseStatus.UNUSED),
        ('0', '10', PurchaseStatus.USED),
        ('0.5', '10', PurchaseStatus.PARTIAL),
        ('9.99', '10', PurchaseStatus.PARTIAL),
    ])
    def test_derive_status(self, remaining, quantity, expected):
        assert ledger_service.derive_status(Decimal(remaining), Decimal(quantity)) == expected

    def test_status_filter_in_sql(self, session, make_purchase):
        unused = make_purchase(product_name='Kale')
        partial = make_purchase(product_name='Leek', remaining='4')
        used = make_purchase(product_name='Turnip', remaining='0')

        def ids(status):
            return {p.id for p in session.query(Purchase).filter(Purchase.status == status.value)}

        assert ids(PurchaseStatus.UNUSED) == {unused.id}
        assert ids(PurchaseStatus.PARTIAL) == {partial.id}
        assert ids(PurchaseStatus.USED) == {used.id}


class TestExpiryHealth:
    """Tests for expiry_health thresholds (urgent 3 days, warning 7 days)."""

    TODAY = date(2024, 5, 10)

    @pytest.mark.parametrize('expiry, expected', [
        (date(2024, 5, 9), 'expired'),
        (date(2024, 5, 10), 'expired'),
        (date(2024, 5, 11), 'urgent'),
        (date(2024, 5, 13), 'urgent'),
        (date(2024, 5, 14), 'warning'),
        (date(2024, 5, 17), 'warning'),
        (date(2024, 5, 18), 'good'),
        (None, 'good'),
    ])
    def test_expiry_health(self, expiry, expected):
        assert ledger_service.expiry_health(expiry, today=self.TODAY) == expected

    def test_thresholds_can_be_overridden(self):
        assert ledger_service.expiry_health(
            date(2024, 5, 14), today=self.TODAY, urgent_days=5, warning_days=10
        ) == 'urgent'


class TestReconcileQuantity:
    """Editing the bought quantity keeps what has already been delivered."""

    def test_increase_keeps_consumed(self, session, make_purchase):
        lot = make_purchase(remaining='6')  # 4 consumed
        flagged = ledger_service.reconcile_quantity(lot, Decimal('15'))

        assert flagged is False
        assert lot.quantity == Decimal('15')
        assert lot.remaining_quantity == Decimal('11')
        assert lot.price == Decimal('4500.00')

    def test_decrease_below_consumed_clamps_and_flags(self, session, make_purchase):
        lot = make_purchase(remaining='2')  # 8 consumed
        flagged = ledger_service.reconcile_quantity(lot, Decimal('5'))

        assert flagged is True
        assert lot.remaining_quantity == 0
        assert lot.needs_review is True
        assert 'already delivered' in lot.review_note

    def test_reconciled_lot_passes_check_constraint(self, session, make_purchase):
        lot = make_purchase(remaining='2')
        ledger_service.reconcile_quantity(lot, Decimal('5'))
        session.commit()

        stored = session.get(Purchase, lot.id)
        assert stored.quantity == Decimal('5')
        assert stored.remaining_quantity == 0
        assert stored.status == PurchaseStatus.USED
