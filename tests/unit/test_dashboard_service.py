"""
Unit tests for the dashboard figures and activity feed.
"""
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from backoffice.exceptions import ValidationError
from backoffice.models import DeliveryStatus
from backoffice.services import dashboard_service, delivery_service, invoice_service


def _delivered(session, customer, purchase_id, quantity, day='2024-05-10'):
    delivery = delivery_service.create_delivery(session, {
        'customer_id': customer.id,
        'delivery_date': day,
        'items': [{'purchase_id': purchase_id, 'quantity': quantity, 'unit_price': 500}],
    })
    delivery.status = DeliveryStatus.DELIVERED
    session.commit()
    return delivery


class TestStats:
    """Tests for dashboard_service.get_stats."""

    def test_current_month_and_stock(self, session, customer, make_purchase):
        may = make_purchase()
        make_purchase(product_name='Kale', quantity='2', unit_price='400', purchase_date=date(2024, 4, 20))
        _delivered(session, customer, may.id, 4)

        stats = dashboard_service.get_stats(session, today=date(2024, 5, 15))

        assert stats['monthly_purchase_amount'] == Decimal('3000')
        assert stats['monthly_purchase_count'] == 1
        assert stats['monthly_delivery_amount'] == Decimal('2000')
        assert stats['monthly_profit'] == Decimal('-1000')
        # Stock spans every month: 6 kg spinach + 2 kg kale
        assert stats['total_inventory_items'] == 2
        assert stats['total_inventory_value'] == Decimal('2600.00')
        assert stats['period'] == {'year': 2024, 'month': 5, 'start': date(2024, 5, 1), 'end': date(2024, 5, 31)}

    def test_pending_deliveries_are_not_sales(self, session, customer, purchase):
        delivery_service.create_delivery(session, {
            'customer_id': customer.id, 'delivery_date': '2024-05-10',
            'items': [{'purchase_id': purchase.id, 'quantity': 1, 'unit_price': 500}],
        })

        stats = dashboard_service.get_stats(session, today=date(2024, 5, 31))

        assert stats['monthly_delivery_amount'] == 0
        assert stats['monthly_delivery_count'] == 0

    def test_empty_month(self, session):
        stats = dashboard_service.get_stats(session, today=date(2024, 2, 10))

        assert stats['monthly_purchase_amount'] == 0
        assert stats['total_inventory_items'] == 0
        assert stats['period']['end'] == date(2024, 2, 29)


class TestRecentActivities:
    """Tests for dashboard_service.recent_activities."""

    def test_merges_sources(self, session, customer, purchase):
        delivery = _delivered(session, customer, purchase.id, 4)
        invoice = invoice_service.generate_invoice(session, customer.id, 2024, 5)

        feed = dashboard_service.recent_activities(session, limit=9)

        by_id = {a['id']: a for a in feed['activities']}
        assert by_id[f'purchase-{purchase.id}']['description'].startswith('Bought Spinach 10')
        assert by_id[f'purchase-{purchase.id}']['description'].endswith('kg from Tanaka Farm')
        assert by_id[f'delivery-{delivery.id}']['status'] == 'success'
        assert by_id[f'delivery-{delivery.id}']['description'].startswith('Delivered to Bistro Aoi: Spinach 4')
        assert by_id[f'invoice-{invoice.id}']['status'] == 'pending'
        assert by_id[f'invoice-{invoice.id}']['amount'] == Decimal('2160')
        assert feed['counts'] == {'purchases': 1, 'deliveries': 1, 'invoices': 1, 'total': 3}

    def test_old_invoices_drop_out(self, session, customer, purchase):
        _delivered(session, customer, purchase.id, 4)
        invoice_service.generate_invoice(session, customer.id, 2024, 5)
        later = datetime.now(timezone.utc) + timedelta(days=dashboard_service.INVOICE_ACTIVITY_DAYS + 1)

        feed = dashboard_service.recent_activities(session, limit=9, now=later)

        assert feed['counts']['invoices'] == 0

    def test_each_source_is_capped(self, session, make_purchase):
        for name in ('Spinach', 'Kale', 'Mizuna', 'Leek'):
            make_purchase(product_name=name)

        feed = dashboard_service.recent_activities(session, limit=4)

        # ceil(4 / 3) per source
        assert feed['counts']['purchases'] == 2
        assert len(feed['activities']) == 2

    def test_return_is_negative(self, session, customer):
        returned = delivery_service.create_delivery(session, {
            'customer_id': customer.id, 'delivery_date': '2024-05-11', 'mode': 'RETURN',
            'return_reason': 'Wilted', 'items': [{'product_name': 'Spinach', 'quantity': 1, 'unit_price': 500}],
        })

        activity = dashboard_service.recent_activities(session)['activities'][0]

        assert activity['id'] == f'delivery-{returned.id}'
        assert activity['amount'] == Decimal('-500')
        assert activity['status'] == 'pending'
        assert activity['description'].startswith('Return from Bistro Aoi')

    @pytest.mark.parametrize('limit', [0, -1, 101])
    def test_limit_bounds(self, session, limit):
        with pytest.raises(ValidationError):
            dashboard_service.recent_activities(session, limit=limit)
