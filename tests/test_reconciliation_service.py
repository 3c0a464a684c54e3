from __future__ import annotations

import unittest
from decimal import Decimal

from db_support import DatabaseTestCase
from printflow.errors import ValidationError
from printflow.models import JobStatus
from printflow.schemas import VendorPoWebhookIn
from printflow.services.auto_po_service import run_auto_po_creation
from printflow.services.invoice_service import (
    complete_job_and_generate_invoices,
    create_invoice_manual,
    list_invoices,
    mark_invoice_paid,
    trigger_vendor_invoice_chain,
)
from printflow.services.job_service import transition_job
from printflow.services.purchase_order_service import create_purchase_order, list_by_job
from printflow.services.reconciliation_service import (
    audit_job,
    find_jobs_with_issues,
    fix_missing_invoices,
    fix_missing_purchase_orders,
    serialize_audit,
    validate_amounts,
)
from printflow.services.revenue_service import get_revenue_metrics
from printflow.services.webhook_service import process_vendor_po_webhook


class ReconciliationServiceTests(DatabaseTestCase):
    def _second_hop(self, job, total: str = '60.00') -> None:
        payload = VendorPoWebhookIn.model_validate(
            {'componentId': f'CMP-{job.id}', 'jobNumber': job.job_no, 'pricing': {'total': total}}
        )
        process_vendor_po_webhook(self.db, payload)
        self.db.commit()

    def _full_chain(self, total: str = '100.00'):
        job = self.make_job(total)
        run_auto_po_creation(self.db, job.id)
        self._second_hop(job)
        return job

    def test_complete_chain_is_clean(self) -> None:
        job = self._full_chain()
        complete_job_and_generate_invoices(self.db, job.id)
        self.db.commit()

        audit = audit_job(self.db, job.id)

        self.assertFalse(audit.has_issues, audit.issues)
        self.assertTrue(audit.chain_balanced)
        self.assertEqual(audit.first_hop.number, '001-001')
        self.assertEqual(audit.second_hop.number, '002-001')
        self.assertEqual(
            {key: check.amount for key, check in audit.invoices.items()},
            {
                'tier2_to_tier1': Decimal('60.00'),
                'tier1_to_broker': Decimal('80.00'),
                'broker_to_customer': Decimal('100.00'),
            },
        )
        self.assertEqual(validate_amounts(self.db, job.id), [])

    def test_missing_first_hop_flagged_and_recreated(self) -> None:
        job = self.make_job('100.00')

        audit = audit_job(self.db, job.id)
        self.assertEqual(audit.issues, ['Missing first hop purchase order'])
        self.assertFalse(audit.first_hop.ok)

        self.assertEqual(fix_missing_purchase_orders(self.db, job.id), ['001-001'])
        self.assertFalse(audit_job(self.db, job.id).has_issues)
        self.assertEqual(fix_missing_purchase_orders(self.db, job.id), [])
        self.assertEqual(len(list_by_job(self.db, job.id)), 1)

    def test_second_hop_only_required_once_in_production(self) -> None:
        job = self.make_job('100.00')
        run_auto_po_creation(self.db, job.id)
        self.assertFalse(audit_job(self.db, job.id).has_issues)

        transition_job(self.db, job, JobStatus.IN_PRODUCTION)
        self.db.commit()

        audit = audit_job(self.db, job.id)
        self.assertEqual(audit.issues, ['Missing second hop purchase order'])
        self.assertIsNone(audit.chain_balanced)

    def test_hop_amount_mismatch_flagged(self) -> None:
        job = self.make_job('100.00')
        create_purchase_order(
            self.db,
            origin_company_id='impact-direct',
            target_company_id='bradford',
            job_id=job.id,
            original_amount=Decimal('100.00'),
            vendor_amount=Decimal('75.00'),
        )
        self.db.commit()

        mismatches = validate_amounts(self.db, job.id)

        self.assertEqual(len(mismatches), 1)
        self.assertEqual(mismatches[0].field, 'first_hop.vendor_amount')
        self.assertEqual(mismatches[0].expected, Decimal('80.00'))
        self.assertEqual(mismatches[0].difference, Decimal('5.00'))
        self.assertIn('First hop 001-001 amount mismatch', audit_job(self.db, job.id).issues)

    def test_second_hop_priced_off_wrong_upstream_flagged(self) -> None:
        job = self.make_job('100.00')
        run_auto_po_creation(self.db, job.id)
        create_purchase_order(
            self.db,
            origin_company_id='bradford',
            target_company_id='jd-graphic',
            job_id=job.id,
            original_amount=Decimal('90.00'),
            vendor_amount=Decimal('60.00'),
        )
        self.db.commit()

        audit = audit_job(self.db, job.id)

        self.assertEqual(
            [m.field for m in audit.mismatches], ['second_hop.original_amount', 'chain_total']
        )
        self.assertFalse(audit.chain_balanced)
        self.assertEqual(serialize_audit(audit)['mismatches'][1]['actual'], '110.00')

    def test_missing_invoices_on_invoiced_job_are_issued(self) -> None:
        job = self._full_chain()
        transition_job(self.db, job, JobStatus.INVOICED)
        self.db.commit()
        self.assertEqual(
            sorted(audit_job(self.db, job.id).issues),
            ['Missing broker_to_customer invoice', 'Missing tier1_to_broker invoice', 'Missing tier2_to_tier1 invoice'],
        )

        created = fix_missing_invoices(self.db, job.id)
        self.db.commit()

        self.assertEqual(len(created), 3)
        self.assertFalse(audit_job(self.db, job.id).has_issues)

    def test_missing_customer_invoice_added_to_partial_chain(self) -> None:
        job = self._full_chain()
        transition_job(self.db, job, JobStatus.SHIPPED)
        trigger_vendor_invoice_chain(self.db, job.id)
        self.db.commit()

        created = fix_missing_invoices(self.db, job.id)
        self.db.commit()

        self.assertEqual(len(created), 1)
        self.assertEqual(len(list_invoices(self.db, job_id=job.id)), 3)
        self.assertEqual(audit_job(self.db, job.id).status, JobStatus.INVOICED)

    def test_invoice_fix_refused_before_shipping(self) -> None:
        job = self._full_chain()
        with self.assertRaises(ValidationError):
            fix_missing_invoices(self.db, job.id)
        self.assertEqual(list_invoices(self.db, job_id=job.id), [])

    def test_report_summarises_flagged_jobs(self) -> None:
        clean = self._full_chain()
        self.make_job('50.00')
        stalled = self.make_job('40.00')
        run_auto_po_creation(self.db, stalled.id)
        transition_job(self.db, stalled, JobStatus.IN_PRODUCTION)
        cancelled = self.make_job('30.00')
        transition_job(self.db, cancelled, JobStatus.CANCELLED)
        self.db.commit()

        report = find_jobs_with_issues(self.db)

        self.assertEqual(report['total'], 4)
        self.assertEqual(report['with_issues'], 2)
        self.assertNotIn(clean.id, [audit.job_id for audit in report['jobs']])
        self.assertEqual(
            report['summary'],
            {'missing_first_hop': 1, 'missing_second_hop': 1, 'missing_invoices': 0, 'amount_mismatches': 0},
        )


class RevenueMetricsTests(DatabaseTestCase):
    def test_metrics_after_paid_chain(self) -> None:
        job = self.make_job('100.00')
        run_auto_po_creation(self.db, job.id)
        payload = VendorPoWebhookIn.model_validate(
            {'componentId': 'CMP-1', 'jobNumber': job.job_no, 'pricing': {'total': '60.00'}}
        )
        process_vendor_po_webhook(self.db, payload)
        invoices = complete_job_and_generate_invoices(self.db, job.id)
        self.db.commit()
        mark_invoice_paid(self.db, invoices[-1].id)
        self.db.commit()

        metrics = get_revenue_metrics(self.db)

        self.assertEqual(metrics['purchase_orders']['total'], 2)
        self.assertEqual(metrics['purchase_orders']['by_hop']['first_hop'], {'count': 1, 'total': '80.00'})
        self.assertEqual(metrics['purchase_orders']['by_hop']['second_hop'], {'count': 1, 'total': '60.00'})
        self.assertEqual(metrics['invoices']['total'], 3)
        self.assertEqual(metrics['invoices']['total_amount'], '240.00')
        self.assertEqual(metrics['invoices']['paid'], 1)
        self.assertEqual(metrics['invoices']['unpaid_amount'], '140.00')
        self.assertEqual(
            metrics['invoices']['by_customer']['jjsa'],
            {'count': 1, 'total': '100.00', 'paid': '100.00', 'unpaid': '0.00'},
        )
        self.assertEqual(metrics['invoices']['by_customer']['ballantine']['count'], 0)
        self.assertEqual(
            metrics['profit_margins'],
            {'total_revenue': '100.00', 'total_costs': '80.00', 'gross_profit': '20.00', 'profit_margin': '20.00'},
        )

    def test_margin_is_zero_without_customer_revenue(self) -> None:
        create_invoice_manual(self.db, from_company_id='bradford', to_company_id='impact-direct', amount=Decimal('5'))
        self.db.commit()

        margins = get_revenue_metrics(self.db)['profit_margins']

        self.assertEqual(margins['total_revenue'], '0.00')
        self.assertEqual(margins['profit_margin'], '0.00')
        self.assertEqual(margins['gross_profit'], '-5.00')


if __name__ == '__main__':
    unittest.main()
