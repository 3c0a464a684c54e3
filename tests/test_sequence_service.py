from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy.exc import IntegrityError

from db_support import DatabaseTestCase
from printflow.errors import NumberAllocationConflictError, SequenceExhaustedError, ValidationError
from printflow.models import Job, JobStatus, PurchaseOrder, PurchaseOrderStatus
from printflow.services.job_service import create_job
from printflow.services.sequence_service import (
    allocate_unique,
    next_invoice_number,
    next_job_number,
    next_vendor_po_number,
    number_exists,
    validate_vendor_code,
)


def _job(number: str, total: str = '10.00') -> Job:
    return Job(job_no=number, customer_id='jjsa', customer_total=Decimal(total), status=JobStatus.INTAKE, specs={})


class SequenceServiceTests(DatabaseTestCase):
    def test_first_job_number_of_year(self) -> None:
        self.assertEqual(next_job_number(self.db, date(2025, 3, 1)), 'J-2025-000001')

    def test_job_number_increments_from_highest(self) -> None:
        self.db.add_all([_job('J-2025-000001'), _job('J-2025-000041')])
        self.db.flush()
        self.assertEqual(next_job_number(self.db, date(2025, 6, 1)), 'J-2025-000042')

    def test_job_numbers_restart_each_year(self) -> None:
        self.db.add(_job('J-2025-000310'))
        self.db.flush()
        self.assertEqual(next_job_number(self.db, date(2026, 1, 2)), 'J-2026-000001')

    def test_invoice_numbers_use_their_own_prefix(self) -> None:
        self.db.add(_job('J-2025-000007'))
        self.db.flush()
        self.assertEqual(next_invoice_number(self.db, date(2025, 1, 1)), 'INV-2025-000001')

    def test_first_vendor_po_number(self) -> None:
        self.assertEqual(next_vendor_po_number(self.db, '001'), '001-001')

    def test_vendor_po_numbers_are_scoped_per_vendor(self) -> None:
        job = _job('J-2025-000001')
        self.db.add(job)
        self.db.flush()
        self.db.add(
            PurchaseOrder(
                po_number='001-014',
                origin_company_id='impact-direct',
                target_company_id='bradford',
                job_id=job.id,
                original_amount=Decimal('10.00'),
                vendor_amount=Decimal('8.00'),
                margin_amount=Decimal('2.00'),
                status=PurchaseOrderStatus.CREATED,
            )
        )
        self.db.flush()
        self.assertEqual(next_vendor_po_number(self.db, '001'), '001-015')
        self.assertEqual(next_vendor_po_number(self.db, '002'), '002-001')

    def test_vendor_scope_exhausted_at_999(self) -> None:
        job = _job('J-2025-000001')
        self.db.add(job)
        self.db.flush()
        self.db.add(
            PurchaseOrder(
                po_number='001-999',
                origin_company_id='impact-direct',
                target_company_id='bradford',
                job_id=job.id,
                original_amount=Decimal('10.00'),
                vendor_amount=Decimal('8.00'),
                margin_amount=Decimal('2.00'),
                status=PurchaseOrderStatus.CREATED,
            )
        )
        self.db.flush()
        with self.assertRaises(SequenceExhaustedError) as ctx:
            next_vendor_po_number(self.db, '001')
        self.assertEqual(ctx.exception.message, 'Vendor 001 has reached maximum PO count (999)')

    def test_vendor_code_must_be_three_digits(self) -> None:
        self.assertEqual(validate_vendor_code('042'), '042')
        for bad in ('42', '0042', 'ABC', '', None):
            with self.assertRaises(ValidationError):
                validate_vendor_code(bad)

    def test_allocate_retries_when_number_taken(self) -> None:
        self.db.add(_job('J-2025-000001'))
        self.db.flush()
        numbers = iter(['J-2025-000001', 'J-2025-000002'])

        job = allocate_unique(
            self.db,
            generate=lambda: next(numbers),
            build=_job,
            number_taken=lambda number: number_exists(self.db, Job.job_no, number),
            scope='job',
        )

        self.assertEqual(job.job_no, 'J-2025-000002')
        self.assertIsNotNone(job.id)

    def test_allocate_recovers_from_number_committed_by_another_session(self) -> None:
        today = date(2025, 5, 1)
        self.db.add(_job('J-2025-000001'))
        self.db.commit()

        stale = next_job_number(self.db, today)
        self.db.commit()

        other = self.session_factory()
        try:
            winner = create_job(other, customer_id='jjsa', customer_total=Decimal('25.00'), today=today)
            other.commit()
        finally:
            other.close()

        pending = [stale]
        job = allocate_unique(
            self.db,
            generate=lambda: pending.pop() if pending else next_job_number(self.db, today),
            build=_job,
            number_taken=lambda number: number_exists(self.db, Job.job_no, number),
            scope='job',
        )
        self.db.commit()

        self.assertEqual(stale, 'J-2025-000002')
        self.assertEqual(winner.job_no, 'J-2025-000002')
        self.assertEqual(job.job_no, 'J-2025-000003')

    @patch('printflow.services.sequence_service.settings')
    def test_allocate_gives_up_after_configured_attempts(self, settings_mock) -> None:
        settings_mock.number_allocation_attempts = 2
        self.db.add(_job('J-2025-000001'))
        self.db.flush()
        calls = []

        def generate() -> str:
            calls.append(1)
            return 'J-2025-000001'

        with self.assertRaises(NumberAllocationConflictError):
            allocate_unique(
                self.db,
                generate=generate,
                build=_job,
                number_taken=lambda number: number_exists(self.db, Job.job_no, number),
                scope='job',
            )
        self.assertEqual(len(calls), 2)

    def test_allocate_propagates_other_constraint_violations(self) -> None:
        with self.assertRaises(IntegrityError):
            allocate_unique(
                self.db,
                generate=lambda: 'J-2025-000001',
                build=lambda number: _job(number, total='-5.00'),
                number_taken=lambda number: number_exists(self.db, Job.job_no, number),
                scope='job',
            )
        self.assertFalse(number_exists(self.db, Job.job_no, 'J-2025-000001'))


if __name__ == '__main__':
    unittest.main()
