from __future__ import annotations

import unittest
from decimal import Decimal

from db_support import DatabaseTestCase
from printflow.errors import InvalidTransitionError, NotFoundError, ValidationError
from printflow.models import InvoiceStatus, JobStatus, NotificationType
from printflow.schemas import VendorPoWebhookIn
from printflow.services.auto_po_service import run_auto_po_creation
from printflow.services.invoice_service import (
    complete_job_and_generate_invoices,
    create_invoice_for_job,
    create_invoice_manual,
    list_invoices,
    mark_invoice_paid,
    mark_invoice_sent,
    trigger_vendor_invoice_chain,
)
from printflow.services.job_service import transition_job
from printflow.services.notification_service import EmailOutbox, list_notifications
from printflow.services.webhook_service import process_vendor_po_webhook


class InvoiceServiceTests(DatabaseTestCase):
    def _job_with_chain(self, *, second_hop: bool = True):
        job = self.make_job('100.00')
        run_auto_po_creation(self.db, job.id)
        if second_hop:
            payload = VendorPoWebhookIn.model_validate(
                {'componentId': 'CMP-1', 'jobNumber': job.job_no, 'pricing': {'total': '60.00'}}
            )
            process_vendor_po_webhook(self.db, payload)
            self.db.commit()
        return job

    def _pairs(self, invoices) -> list[tuple[str, str, Decimal]]:
        return [(i.from_company_id, i.to_company_id, i.amount) for i in invoices]

    def test_chain_bills_each_hop_upstream(self) -> None:
        job = self._job_with_chain()

        created = trigger_vendor_invoice_chain(self.db, job.id)

        self.assertEqual(
            self._pairs(created),
            [('bradford', 'impact-direct', Decimal('80.00')), ('jd-graphic', 'bradford', Decimal('60.00'))],
        )
        self.assertTrue(all(i.invoice_no.startswith('INV-') for i in created))
        self.assertTrue(all(i.status == InvoiceStatus.DRAFT for i in created))

    def test_chain_is_idempotent(self) -> None:
        job = self._job_with_chain()
        trigger_vendor_invoice_chain(self.db, job.id)
        self.assertEqual(trigger_vendor_invoice_chain(self.db, job.id), [])
        self.assertEqual(len(list_invoices(self.db, job_id=job.id)), 2)

    def test_chain_skipped_without_first_hop(self) -> None:
        job = self.make_job('100.00')
        self.assertEqual(trigger_vendor_invoice_chain(self.db, job.id), [])

    def test_chain_bills_only_existing_hops(self) -> None:
        job = self._job_with_chain(second_hop=False)
        created = trigger_vendor_invoice_chain(self.db, job.id)
        self.assertEqual(self._pairs(created), [('bradford', 'impact-direct', Decimal('80.00'))])

    def test_customer_invoice_triggers_chain_and_advances_job(self) -> None:
        job = self._job_with_chain()
        transition_job(self.db, job, JobStatus.SHIPPED)

        creation = create_invoice_for_job(
            self.db, job_id=job.id, from_company_id='impact-direct', to_company_id='jjsa'
        )

        self.assertEqual(creation.invoice.amount, Decimal('100.00'))
        self.assertEqual(len(creation.chained), 2)
        self.assertEqual(job.status, JobStatus.INVOICED)

    def test_vendor_invoice_does_not_trigger_chain(self) -> None:
        job = self._job_with_chain()
        creation = create_invoice_for_job(
            self.db, job_id=job.id, from_company_id='bradford', to_company_id='impact-direct'
        )
        self.assertEqual(creation.invoice.amount, Decimal('80.00'))
        self.assertEqual(creation.chained, [])

    def test_manual_invoice_requires_distinct_companies(self) -> None:
        with self.assertRaises(ValidationError):
            create_invoice_manual(
                self.db, from_company_id='jjsa', to_company_id='jjsa', amount=Decimal('10.00')
            )
        creation = create_invoice_manual(
            self.db, from_company_id='impact-direct', to_company_id='ballantine', amount=Decimal('10.00')
        )
        self.assertIsNone(creation.invoice.job_id)
        self.assertEqual(creation.chained, [])

    def test_complete_job_generates_three_invoices(self) -> None:
        job = self._job_with_chain()

        invoices = complete_job_and_generate_invoices(self.db, job.id)

        self.assertEqual(
            self._pairs(invoices),
            [
                ('jd-graphic', 'bradford', Decimal('60.00')),
                ('bradford', 'impact-direct', Decimal('80.00')),
                ('impact-direct', 'jjsa', Decimal('100.00')),
            ],
        )
        self.assertEqual(job.status, JobStatus.INVOICED)
        with self.assertRaises(ValidationError):
            complete_job_and_generate_invoices(self.db, job.id)

    def test_complete_job_requires_both_hops(self) -> None:
        job = self._job_with_chain(second_hop=False)
        with self.assertRaises(NotFoundError):
            complete_job_and_generate_invoices(self.db, job.id)
        self.assertEqual(list_invoices(self.db, job_id=job.id), [])

    def test_send_emails_billing_contacts_once(self) -> None:
        job = self._job_with_chain()
        invoice = create_invoice_for_job(
            self.db, job_id=job.id, from_company_id='impact-direct', to_company_id='jjsa'
        ).invoice
        outbox = EmailOutbox()

        mark_invoice_sent(self.db, outbox, invoice.id)

        self.assertEqual(invoice.status, InvoiceStatus.SENT)
        self.assertEqual(len(outbox), 1)
        recipients = [
            n['recipient']
            for n in list_notifications(self.db, job_id=job.id)
            if n['type'] == NotificationType.INVOICE_SENT.value
        ]
        self.assertEqual(recipients, ['ap@jjsa.example.com'])
        with self.assertRaises(InvalidTransitionError):
            mark_invoice_sent(self.db, outbox, invoice.id)

    def test_paying_customer_invoice_marks_job_paid(self) -> None:
        job = self._job_with_chain()
        invoices = complete_job_and_generate_invoices(self.db, job.id)

        mark_invoice_paid(self.db, invoices[0].id)
        self.assertEqual(job.status, JobStatus.INVOICED)

        paid = mark_invoice_paid(self.db, invoices[-1].id)
        self.assertEqual(paid.status, InvoiceStatus.PAID)
        self.assertIsNotNone(paid.paid_at)
        self.assertEqual(job.status, JobStatus.PAID)


if __name__ == '__main__':
    unittest.main()
