"""
Unit tests for monthly invoicing: tax split, due dates and generation.
"""
from datetime import date
from decimal import Decimal

import pytest

from backoffice.exceptions import (
    AlreadyInvoicedError, InvoicedDeliveryError, NoPendingDeliveriesError, NotFoundError, ValidationError
)
from backoffice.models import Delivery, DeliveryStatus, InvoiceStatus
from backoffice.services import delivery_service, invoice_service


def _deliver(session, payload):
    delivery = delivery_service.create_delivery(session, payload)
    delivery.status = DeliveryStatus.DELIVERED
    session.commit()
    return delivery


@pytest.fixture
def may_deliveries(session, customer, purchase):
    """
    May 2024 for one customer:
    - 4 kg spinach at 500 (8%) + 1 gift box at 1000 (10%), delivered
    - return of 1 kg spinach at 500 (8%), delivered
    - one pending delivery and one June delivery (both excluded)
    """
    sale = _deliver(session, {
        'customer_id': customer.id, 'delivery_date': '2024-05-10', 'mode': 'NORMAL',
        'items': [{'purchase_id': purchase.id, 'quantity': 4, 'unit_price': 500, 'tax_rate': 8}],
    })
    gift = delivery_service.create_delivery(session, {
        'customer_id': customer.id, 'delivery_date': '2024-05-10', 'mode': 'DIRECT',
        'items': [{'product_name': 'Gift box', 'quantity': 1, 'unit_price': 1000, 'tax_rate': 10}],
    })
    gift.status = DeliveryStatus.DELIVERED
    returned = _deliver(session, {
        'customer_id': customer.id, 'delivery_date': '2024-05-20', 'mode': 'RETURN',
        'return_reason': 'Wilted', 'original_delivery_id': sale.id,
        'items': [{'product_name': 'Spinach', 'quantity': 1, 'unit_price': 500}],
    })
    pending = delivery_service.create_delivery(session, {
        'customer_id': customer.id, 'delivery_date': '2024-05-25', 'mode': 'DIRECT',
        'items': [{'product_name': 'Leek', 'quantity': 1, 'unit_price': 300}],
    })
    june = _deliver(session, {
        'customer_id': customer.id, 'delivery_date': '2024-06-01', 'mode': 'DIRECT',
        'items': [{'product_name': 'Leek', 'quantity': 1, 'unit_price': 300}],
    })
    return {
        'included': sorted([sale.id, gift.id, returned.id]),
        'pending': pending.id,
        'june': june.id,
    }


class TestTaxHelpers:

    @pytest.mark.parametrize('amount, expected', [
        ('98.72', '98'),
        ('0.99', '0'),
        ('-98.72', '-98'),
        ('120', '120'),
    ])
    def test_truncate_yen(self, amount, expected):
        assert invoice_service.truncate_yen(Decimal(amount)) == Decimal(expected)

    def test_split_tax_counts_returns_negatively(self, session, may_deliveries):
        deliveries = session.query(Delivery).filter(Delivery.id.in_(may_deliveries['included'])).all()
        taxes = invoice_service.split_tax(deliveries)

        assert taxes['subtotal_8'] == Decimal('1500')
        assert taxes['tax_8'] == Decimal('120')
        assert taxes['subtotal_10'] == Decimal('1000')
        assert taxes['tax_10'] == Decimal('100')
        assert taxes['total_tax'] == Decimal('220')
        assert taxes['total_with_tax'] == Decimal('2720')


class TestCalculateDueDate:
    """Tests for payment-term due dates."""

    @pytest.mark.parametrize('issued, terms, expected', [
        (date(2024, 5, 31), 'immediate', date(2024, 5, 31)),
        (date(2024, 5, 31), '7days', date(2024, 6, 7)),
        (date(2024, 5, 31), '15days', date(2024, 6, 15)),
        (date(2024, 5, 31), '30days', date(2024, 6, 30)),
        (date(2024, 5, 31), '60days', date(2024, 7, 30)),
        (date(2024, 1, 31), 'endofmonth', date(2024, 2, 29)),
        (date(2024, 12, 15), 'endofmonth', date(2025, 1, 31)),
        (date(2024, 5, 31), 'net45', date(2024, 6, 30)),
        (date(2024, 5, 31), None, date(2024, 6, 30)),
    ])
    def test_due_date(self, issued, terms, expected):
        assert invoice_service.calculate_due_date(issued, terms) == expected

    def test_policy_override(self):
        policy = {'end_of_month_offset': 0, 'default_days': 10, 'days': {'30days': 31}}
        assert invoice_service.calculate_due_date(date(2024, 12, 15), 'endofmonth', policy) == date(2024, 12, 31)
        assert invoice_service.calculate_due_date(date(2024, 12, 15), 'other', policy) == date(2024, 12, 25)
        assert invoice_service.calculate_due_date(date(2024, 12, 15), '30days', policy) == date(2025, 1, 15)


class TestSummarizeMonth:

    def test_summary(self, session, customer, may_deliveries):
        summary = invoice_service.summarize_month(session, 2024, 5, today=date(2024, 6, 1))

        assert summary['total_customers'] == 1
        assert summary['total_deliveries'] == 3
        assert summary['total_amount'] == Decimal('2500')
        row = summary['customers'][0]
        assert row['customer_id'] == customer.id
        assert sorted(row['delivery_ids']) == may_deliveries['included']
        assert row['total_with_tax'] == Decimal('2720')
        assert row['has_invoice'] is False
        assert row['due_date'] == date(2024, 7, 1)

    def test_invalid_month(self, session):
        with pytest.raises(ValidationError):
            invoice_service.summarize_month(session, 2024, 13)

    def test_invoiced_customer_keeps_zero_row(self, session, customer, may_deliveries):
        invoice = invoice_service.generate_invoice(session, customer.id, 2024, 5, issue_date=date(2024, 6, 1))

        summary = invoice_service.summarize_month(session, 2024, 5, customer_id=customer.id)
        row = summary['customers'][0]
        assert row['has_invoice'] is True
        assert row['invoice_id'] == invoice.id
        assert row['delivery_count'] == 0


class TestGenerateInvoice:
    """Tests for invoice_service.generate_invoice."""

    def test_generate(self, session, customer, may_deliveries):
        invoice = invoice_service.generate_invoice(session, customer.id, 2024, 5, issue_date=date(2024, 6, 1))

        assert invoice.invoice_number == f'INV-202405-{customer.id:04d}'
        assert invoice.status == InvoiceStatus.DRAFT
        assert invoice.total_amount == Decimal('2500')
        assert invoice.subtotal_8 == Decimal('1500')
        assert invoice.tax_8 == Decimal('120')
        assert invoice.subtotal_10 == Decimal('1000')
        assert invoice.tax_10 == Decimal('100')
        assert invoice.total_tax == Decimal('220')
        assert invoice.due_date == date(2024, 7, 1)
        assert sorted(invoice.delivery_ids) == may_deliveries['included']

        for delivery_id in may_deliveries['included']:
            delivery = session.get(Delivery, delivery_id)
            assert delivery.status == DeliveryStatus.INVOICED
            assert delivery.invoice_id == invoice.id

        assert session.get(Delivery, may_deliveries['pending']).invoice_id is None
        assert session.get(Delivery, may_deliveries['june']).status == DeliveryStatus.DELIVERED

    def test_second_invoice_for_period_rejected(self, session, customer, may_deliveries):
        invoice = invoice_service.generate_invoice(session, customer.id, 2024, 5)

        with pytest.raises(AlreadyInvoicedError) as exc:
            invoice_service.generate_invoice(session, customer.id, 2024, 5)
        assert exc.value.status_code == 409
        assert exc.value.payload == {'invoice_id': invoice.id}

    def test_nothing_to_invoice(self, session, customer):
        with pytest.raises(NoPendingDeliveriesError):
            invoice_service.generate_invoice(session, customer.id, 2024, 4)

    def test_unknown_customer(self, session):
        with pytest.raises(NotFoundError):
            invoice_service.generate_invoice(session, 4040, 2024, 5)

    def test_invoiced_deliveries_are_frozen(self, session, customer, may_deliveries):
        invoice_service.generate_invoice(session, customer.id, 2024, 5)
        delivery_id = may_deliveries['included'][0]

        with pytest.raises(InvoicedDeliveryError):
            delivery_service.delete_delivery(session, delivery_id)
        with pytest.raises(InvoicedDeliveryError):
            delivery_service.update_delivery(session, delivery_id, {'notes': 'edited'})

    def test_list_and_get(self, session, customer, may_deliveries):
        invoice = invoice_service.generate_invoice(session, customer.id, 2024, 5)

        assert [i.id for i in invoice_service.list_invoices(session, year=2024, month=5)] == [invoice.id]
        assert invoice_service.list_invoices(session, status='issued') == []
        assert invoice_service.get_invoice(session, invoice.id).customer_id == customer.id
        with pytest.raises(NotFoundError):
            invoice_service.get_invoice(session, 987654)
