from __future__ import annotations

import io
import tempfile
import unittest
from decimal import Decimal
from pathlib import Path

from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from printflow.models import Base, CompanyContact, ContactPurpose, JobStatus
from printflow.services.company_service import BROKER_ID, TIER2_VENDOR_ID, ensure_default_companies, get_company
from printflow.services.email_service import SentEmail
from printflow.services.job_service import create_job
from printflow.services.provider_factory import Collaborators
from printflow.services.storage_service import StoredObject


def make_engine(path: Path):
    engine = create_engine(f'sqlite:///{path}', connect_args={'check_same_thread': False})

    # pysqlite manages BEGIN itself and breaks SAVEPOINT unless told not to.
    @event.listens_for(engine, 'connect')
    def _disable_driver_transactions(dbapi_connection, _record):
        dbapi_connection.isolation_level = None
        dbapi_connection.execute('PRAGMA journal_mode=WAL')

    @event.listens_for(engine, 'begin')
    def _emit_begin(connection):
        connection.exec_driver_sql('BEGIN')

    Base.metadata.create_all(engine)
    return engine


def make_pdf(lines: list[str]) -> bytes:
    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=letter, pageCompression=1)
    y = 720
    for line in lines:
        pdf.drawString(72, y, line)
        y -= 18
    pdf.showPage()
    pdf.save()
    return buffer.getvalue()


class RecordingEmailDispatcher:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[dict] = []

    def send(self, *, to, subject, html, attachments=None) -> SentEmail:
        if self.fail:
            raise ConnectionError('smtp unavailable')
        self.sent.append({'to': to, 'subject': subject, 'html': html})
        return SentEmail(message_id=f'test-{len(self.sent)}')


class MemoryStorage:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.objects: dict[str, bytes] = {}

    def put(self, data: bytes, metadata=None) -> StoredObject:
        if self.fail:
            raise OSError('disk full')
        key = f'00/{len(self.objects):064d}.pdf'
        self.objects[key] = data
        return StoredObject(key=key, size=len(data), checksum='x')

    def get(self, key: str) -> bytes:
        return self.objects[key]

    def get_signed_url(self, key: str) -> str:
        return f'https://files.test/{key}?signature=abc'

    def verify_signature(self, key: str, expires: int, signature: str) -> bool:
        return signature == 'abc'


class StaticExtractor:
    def __init__(self, fields: dict) -> None:
        self.fields = fields
        self.calls: list[str] = []

    def extract(self, text: str, prompt_spec: str, output_schema: dict) -> dict:
        self.calls.append(text)
        return dict(self.fields)


def fake_collaborators(*, email=None, storage=None, extractor=None) -> Collaborators:
    return Collaborators(
        storage=storage or MemoryStorage(),
        email=email or RecordingEmailDispatcher(),
        extractor=extractor or StaticExtractor({}),
    )


class DatabaseTestCase(unittest.TestCase):
    """Fresh SQLite database file with the brokerage's companies seeded."""

    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.engine = make_engine(Path(self._tmpdir.name) / 'printflow.db')
        self.session_factory = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        self.db = self.session_factory()
        ensure_default_companies(self.db)
        get_company(self.db, BROKER_ID).email = 'broker@example.com'
        get_company(self.db, 'jjsa').email = 'orders@jjsa.example.com'
        self.db.add(
            CompanyContact(
                company_id=TIER2_VENDOR_ID,
                email_to='production@jd.example.com',
                purpose=ContactPurpose.PRODUCTION,
                active=True,
            )
        )
        self.db.add(
            CompanyContact(
                company_id='jjsa',
                email_to='ap@jjsa.example.com',
                purpose=ContactPurpose.BILLING,
                active=True,
            )
        )
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()
        self._tmpdir.cleanup()

    def make_job(self, total: str = '100.00', *, customer_id: str = 'jjsa', status: JobStatus = JobStatus.APPROVED):
        job = create_job(
            self.db,
            customer_id=customer_id,
            customer_total=Decimal(total),
            customer_po_number='CUST-PO-1',
            status=status,
        )
        self.db.commit()
        return job
