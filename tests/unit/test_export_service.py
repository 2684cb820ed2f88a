"""
Unit tests for delivery slip and invoice export.
"""
from datetime import date
from decimal import Decimal

import pytest

from backoffice.exceptions import BusinessLogicError, ExternalServiceError
from backoffice.models import Customer, Delivery, DeliveryStatus, InvoiceStatus
from backoffice.services import delivery_service, export_service, invoice_service


@pytest.fixture
def delivery(session, customer, purchase):
    return delivery_service.create_delivery(session, {
        'customer_id': customer.id,
        'delivery_date': '2024-05-10',
        'items': [
            {'purchase_id': purchase.id, 'quantity': 4, 'unit_price': 500, 'tax_rate': 8},
        ],
        'notes': 'Back door',
    })


class TestDeliveryFields:

    def test_fields(self, delivery):
        fields = export_service.build_delivery_fields(delivery)

        assert fields['delivery_number'] == delivery.delivery_number
        assert fields['delivery_date'] == '2024年5月10日'
        assert fields['customer_name'] == 'Bistro Aoi'
        item = fields['items'][0]
        assert item['subtotal'] == Decimal('2000')
        assert item['tax_amount'] == Decimal('160')
        assert item['amount'] == Decimal('2160')
        assert fields['total_amount'] == Decimal('2160')

    def test_return_amounts_are_negative(self, session, customer):
        returned = delivery_service.create_delivery(session, {
            'customer_id': customer.id, 'delivery_date': '2024-05-11', 'mode': 'RETURN',
            'return_reason': 'Frozen', 'items': [{'product_name': 'Spinach', 'quantity': 1, 'unit_price': 500}],
        })
        fields = export_service.build_delivery_fields(returned)

        assert fields['items'][0]['subtotal'] == Decimal('-500')
        assert fields['items'][0]['tax_amount'] == Decimal('-40')
        assert fields['total_amount'] == Decimal('-540')
        assert fields['notes'].startswith('返品理由: Frozen')


class TestExportDelivery:
    """Tests for export_service.export_delivery."""

    def test_success_marks_delivered(self, session, delivery, exporter):
        document = export_service.export_delivery(session, delivery.id, exporter)

        exported = session.get(Delivery, delivery.id)
        assert exported.status == DeliveryStatus.DELIVERED
        assert exported.google_sheet_id == document.document_id
        assert exported.google_sheet_url == document.url
        assert exporter.documents[0]['kind'] == 'delivery'

    def test_failure_marks_error(self, session, delivery, exporter):
        exporter.fail_with = ExternalServiceError.TEMPLATE_NOT_FOUND

        with pytest.raises(ExternalServiceError) as exc:
            export_service.export_delivery(session, delivery.id, exporter)
        assert exc.value.code == ExternalServiceError.TEMPLATE_NOT_FOUND

        failed = session.get(Delivery, delivery.id)
        assert failed.status == DeliveryStatus.ERROR
        assert 'TEMPLATE_NOT_FOUND' in failed.notes
        assert failed.notes.startswith('Back door')

    def test_missing_exporter(self, session, delivery):
        with pytest.raises(ExternalServiceError) as exc:
            export_service.export_delivery(session, delivery.id, None)

        assert exc.value.code == ExternalServiceError.AUTHENTICATION_FAILED
        assert session.get(Delivery, delivery.id).status == DeliveryStatus.PENDING

    def test_cancelled_delivery(self, session, delivery, exporter):
        delivery_service.update_delivery(session, delivery.id, {'status': 'CANCELLED'})

        with pytest.raises(BusinessLogicError):
            export_service.export_delivery(session, delivery.id, exporter)
        assert exporter.documents == []

    def test_reexport_keeps_invoiced_status(self, session, customer, delivery, exporter):
        delivery.status = DeliveryStatus.DELIVERED
        session.commit()
        invoice_service.generate_invoice(session, customer.id, 2024, 5)

        exporter.fail_with = ExternalServiceError.QUOTA_EXCEEDED
        with pytest.raises(ExternalServiceError):
            export_service.export_delivery(session, delivery.id, exporter)
        assert session.get(Delivery, delivery.id).status == DeliveryStatus.INVOICED

        exporter.fail_with = None
        export_service.export_delivery(session, delivery.id, exporter)
        assert session.get(Delivery, delivery.id).status == DeliveryStatus.INVOICED


class TestExportInvoice:
    """Tests for export_service.export_invoice."""

    @pytest.fixture
    def invoice(self, session, customer, purchase):
        for day, quantity in (('2024-05-10', 2), ('2024-05-17', 3)):
            d = delivery_service.create_delivery(session, {
                'customer_id': customer.id, 'delivery_date': day,
                'items': [{'purchase_id': purchase.id, 'quantity': quantity, 'unit_price': 500}],
            })
            d.status = DeliveryStatus.DELIVERED
            session.commit()
        return invoice_service.generate_invoice(session, customer.id, 2024, 5, issue_date=date(2024, 6, 1))

    def test_items_are_aggregated(self, invoice):
        fields = export_service.build_invoice_fields(invoice)

        assert len(fields['items']) == 1
        item = fields['items'][0]
        assert item['description'] == 'Spinach'
        assert item['quantity'] == Decimal('5')
        assert item['subtotal'] == Decimal('2500')
        assert fields['invoice_date'] == '2024年6月1日'
        assert fields['total_amount'] == Decimal('2700')

    def test_addressed_to_billing_customer(self, session, customer, invoice):
        head_office = Customer(company_name='Aoi Holdings', billing_address='Head office',
                               billing_cycle='monthly', billing_day=31, payment_terms='30days')
        session.add(head_office)
        session.flush()
        customer.billing_customer_id = head_office.id
        session.commit()

        fields = export_service.build_invoice_fields(invoice)
        assert fields['customer_name'] == 'Aoi Holdings'
        assert fields['customer_address'] == 'Head office'
        assert fields['notes'] == '納品先: Bistro Aoi'

    def test_export_marks_issued(self, session, invoice, exporter):
        document = export_service.export_invoice(session, invoice.id, exporter)

        assert invoice.status == InvoiceStatus.ISSUED
        assert invoice.google_sheet_url == document.url
        assert exporter.documents[0]['kind'] == 'invoice'

    def test_failed_export_stays_draft(self, session, invoice, exporter):
        exporter.fail_with = ExternalServiceError.PERMISSION_DENIED

        with pytest.raises(ExternalServiceError):
            export_service.export_invoice(session, invoice.id, exporter)
        assert invoice_service.get_invoice(session, invoice.id).status == InvoiceStatus.DRAFT


class TestReportCacheInvalidation:
    """Exporting changes which deliveries count as sales."""

    @pytest.fixture
    def invalidations(self, monkeypatch):
        calls = []
        monkeypatch.setattr(export_service, 'invalidate_reports', lambda: calls.append('reports'))
        return calls

    def test_success_invalidates(self, session, delivery, exporter, invalidations):
        export_service.export_delivery(session, delivery.id, exporter)
        assert invalidations == ['reports']

    def test_failure_invalidates(self, session, delivery, exporter, invalidations):
        exporter.fail_with = ExternalServiceError.NETWORK_ERROR

        with pytest.raises(ExternalServiceError):
            export_service.export_delivery(session, delivery.id, exporter)
        assert invalidations == ['reports']

    def test_missing_exporter_changes_nothing(self, session, delivery, invalidations):
        with pytest.raises(ExternalServiceError):
            export_service.export_delivery(session, delivery.id, None)
        assert invalidations == []
