from __future__ import annotations

import unittest
from decimal import Decimal
from unittest.mock import patch

from db_support import DatabaseTestCase, MemoryStorage, StaticExtractor
from printflow.errors import ValidationError
from printflow.models import Job, NotificationType
from printflow.services.auto_po_service import (
    chain_totals,
    create_second_hop_from_document,
    run_auto_po_creation,
)
from printflow.services.notification_service import EmailOutbox, list_notifications
from printflow.services.purchase_order_service import list_by_job


class AutoPoServiceTests(DatabaseTestCase):
    def test_first_hop_splits_customer_total(self) -> None:
        job = self.make_job('100.00')

        result = run_auto_po_creation(self.db, job.id)

        self.assertTrue(result.created)
        self.assertIsNone(result.error)
        po = result.purchase_order
        self.assertEqual(po.origin_company_id, 'impact-direct')
        self.assertEqual(po.target_company_id, 'bradford')
        self.assertEqual(po.original_amount, Decimal('100.00'))
        self.assertEqual(po.vendor_amount, Decimal('80.00'))
        self.assertEqual(po.margin_amount, Decimal('20.00'))
        self.assertEqual(po.reference_po_number, 'CUST-PO-1')

    def test_first_hop_is_idempotent(self) -> None:
        job = self.make_job('250.00')
        first = run_auto_po_creation(self.db, job.id)
        second = run_auto_po_creation(self.db, job.id)

        self.assertTrue(first.created)
        self.assertFalse(second.created)
        self.assertEqual(first.purchase_order.id, second.purchase_order.id)
        self.assertEqual(len(list_by_job(self.db, job.id)), 1)

    @patch('printflow.services.auto_po_service.create_purchase_order')
    def test_failure_is_reported_and_job_survives(self, create_po_mock) -> None:
        create_po_mock.side_effect = ValidationError('vendor numbering unavailable')
        job = self.make_job('100.00')

        result = run_auto_po_creation(self.db, job.id)

        self.assertFalse(result.created)
        self.assertIsNone(result.purchase_order)
        self.assertIn('vendor numbering unavailable', result.error)
        self.assertIsNotNone(self.db.get(Job, job.id))
        self.assertEqual(list_by_job(self.db, job.id), [])

    def test_second_hop_from_document(self) -> None:
        job = self.make_job('100.00')
        run_auto_po_creation(self.db, job.id)
        storage = MemoryStorage()
        extractor = StaticExtractor(
            {'po_number': '1227880', 'total': '80.00', 'vendor_total': '60.00', 'customer_code': 'JJSG'}
        )
        outbox = EmailOutbox()

        result = create_second_hop_from_document(
            self.db,
            outbox,
            job_id=job.id,
            pdf_bytes=b'%PDF-1.4',
            filename='bradford-po.pdf',
            text='PO Number: 1227880',
            storage=storage,
            extractor=extractor,
        )

        po = result.purchase_order
        self.assertTrue(result.created)
        self.assertEqual(result.warnings, [])
        self.assertEqual(po.po_number, '002-001')
        self.assertEqual(po.external_ref, '1227880')
        self.assertEqual(po.original_amount, Decimal('80.00'))
        self.assertEqual(po.vendor_amount, Decimal('60.00'))
        self.assertEqual(po.margin_amount, Decimal('20.00'))
        self.assertIn(po.pdf_file_key, storage.objects)
        self.assertEqual(len(outbox), 1)
        notifications = list_notifications(self.db, job_id=job.id)
        self.assertEqual(notifications[0]['type'], NotificationType.PO_CREATED.value)
        self.assertEqual(notifications[0]['recipient'], 'production@jd.example.com')

    def test_second_hop_document_without_vendor_total_uses_split(self) -> None:
        job = self.make_job('100.00')
        extractor = StaticExtractor({'po_number': '555', 'total': '80.00'})

        result = create_second_hop_from_document(
            self.db,
            None,
            job_id=job.id,
            pdf_bytes=b'%PDF',
            filename='po.pdf',
            text='',
            storage=MemoryStorage(),
            extractor=extractor,
        )

        self.assertEqual(result.purchase_order.vendor_amount, Decimal('64.00'))

    def test_second_hop_document_storage_failure_is_a_warning(self) -> None:
        job = self.make_job('100.00')
        extractor = StaticExtractor({'po_number': '777', 'total': '80.00', 'vendor_total': '60.00'})

        result = create_second_hop_from_document(
            self.db,
            None,
            job_id=job.id,
            pdf_bytes=b'%PDF',
            filename='po.pdf',
            text='',
            storage=MemoryStorage(fail=True),
            extractor=extractor,
        )

        self.assertTrue(result.created)
        self.assertIsNone(result.purchase_order.pdf_file_key)
        self.assertTrue(any('Storage failed' in w for w in result.warnings))

    def test_second_hop_document_repeat_is_ignored(self) -> None:
        job = self.make_job('100.00')
        extractor = StaticExtractor({'po_number': '888', 'total': '80.00', 'vendor_total': '60.00'})
        kwargs = {
            'job_id': job.id,
            'pdf_bytes': b'%PDF',
            'filename': 'po.pdf',
            'text': '',
            'storage': MemoryStorage(),
            'extractor': extractor,
        }
        first = create_second_hop_from_document(self.db, None, **kwargs)
        second = create_second_hop_from_document(self.db, None, **kwargs)

        self.assertFalse(second.created)
        self.assertEqual(first.purchase_order.id, second.purchase_order.id)

    def test_document_for_another_customer_rejected(self) -> None:
        job = self.make_job('100.00')
        for code in ('BALSG', 'ZZZZ'):
            extractor = StaticExtractor({'po_number': '901', 'total': '80.00', 'customer_code': code})
            with self.assertRaises(ValidationError) as ctx:
                create_second_hop_from_document(
                    self.db,
                    None,
                    job_id=job.id,
                    pdf_bytes=b'%PDF',
                    filename='po.pdf',
                    text='',
                    storage=MemoryStorage(),
                    extractor=extractor,
                )
            self.assertEqual(ctx.exception.details[0]['field'], 'customer_code')
        self.assertEqual(list_by_job(self.db, job.id), [])

    def test_document_customer_code_matches_ballantine_job(self) -> None:
        job = self.make_job('100.00', customer_id='ballantine')
        extractor = StaticExtractor({'po_number': '902', 'total': '80.00', 'customer_code': 'balsg'})

        result = create_second_hop_from_document(
            self.db,
            None,
            job_id=job.id,
            pdf_bytes=b'%PDF',
            filename='po.pdf',
            text='',
            storage=MemoryStorage(),
            extractor=extractor,
        )

        self.assertTrue(result.created)
        self.assertEqual(result.purchase_order.external_ref, '902')

    def test_unreadable_document_rejected(self) -> None:
        job = self.make_job('100.00')
        with self.assertRaises(ValidationError) as ctx:
            create_second_hop_from_document(
                self.db,
                None,
                job_id=job.id,
                pdf_bytes=b'%PDF',
                filename='po.pdf',
                text='',
                storage=MemoryStorage(),
                extractor=StaticExtractor({'po_number': '1'}),
            )
        self.assertEqual(ctx.exception.details[0]['field'], 'total')

    def test_chain_totals(self) -> None:
        job = self.make_job('100.00')
        run_auto_po_creation(self.db, job.id)
        totals = chain_totals(list_by_job(self.db, job.id))
        self.assertEqual(totals['vendor_amount'], Decimal('80.00'))
        self.assertEqual(totals['margin_amount'], Decimal('20.00'))


if __name__ == '__main__':
    unittest.main()
