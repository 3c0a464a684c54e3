from __future__ import annotations

import tempfile
import unittest
from decimal import Decimal
from urllib.parse import parse_qs, urlsplit

from db_support import make_pdf
from printflow.errors import NotFoundError, ValidationError
from printflow.services.document_extraction_service import (
    VENDOR_PO_PROMPT,
    VENDOR_PO_SCHEMA,
    RegexDocumentExtractor,
    extract_pdf_text,
)
from printflow.services.storage_service import LocalObjectStorage


class LocalObjectStorageTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.storage = LocalObjectStorage(
            self._tmpdir.name, signing_key='k3y', base_url='https://portal.example.com/', ttl_seconds=60
        )

    def tearDown(self) -> None:
        self._tmpdir.cleanup()

    def test_put_is_content_addressed(self) -> None:
        first = self.storage.put(b'%PDF-1.4 proof', {'filename': 'Proof.PDF'})
        second = self.storage.put(b'%PDF-1.4 proof', {'filename': 'other.pdf'})

        self.assertEqual(first.key, second.key)
        self.assertTrue(first.key.endswith('.pdf'))
        self.assertEqual(first.key[:2], first.checksum[:2])
        self.assertEqual(self.storage.get(first.key), b'%PDF-1.4 proof')

    def test_unsafe_keys_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            self.storage.get('../etc/passwd')
        with self.assertRaises(NotFoundError):
            self.storage.get('ab/' + 'a' * 64)

    def test_signed_url_round_trip(self) -> None:
        stored = self.storage.put(b'data', {'filename': 'po.pdf'})
        url = self.storage.get_signed_url(stored.key, now=1_000)
        parts = urlsplit(url)
        query = parse_qs(parts.query)

        self.assertEqual(parts.path, f'/api/files/{stored.key}')
        expires = int(query['expires'][0])
        self.assertEqual(expires, 1_060)
        self.assertTrue(self.storage.verify_signature(stored.key, expires, query['signature'][0], now=1_030))
        self.assertFalse(self.storage.verify_signature(stored.key, expires, query['signature'][0], now=1_061))
        self.assertFalse(self.storage.verify_signature(stored.key, expires, 'forged', now=1_030))


class RegexDocumentExtractorTests(unittest.TestCase):
    def test_extracts_vendor_po_fields(self) -> None:
        text = (
            'BRADFORD GRAPHICS\n'
            'Purchase Order Number: 1227880\n'
            'Customer: JJSG\n'
            'Printing 10,000 pcs    $1,234.56\n'
            'Freight                $45.00\n'
            'JD Total: $925.92\n'
        )

        fields = RegexDocumentExtractor().extract(text, VENDOR_PO_PROMPT, VENDOR_PO_SCHEMA)

        self.assertEqual(fields['po_number'], '1227880')
        self.assertEqual(Decimal(fields['total']), Decimal('1234.56'))
        self.assertEqual(Decimal(fields['vendor_total']), Decimal('925.92'))
        self.assertEqual(fields['customer_code'], 'JJSG')

    def test_only_schema_fields_returned(self) -> None:
        schema = {'properties': {'po_number': {'type': 'string'}}, 'required': ['po_number']}
        fields = RegexDocumentExtractor().extract('PO# 42  total $10.00', VENDOR_PO_PROMPT, schema)
        self.assertEqual(fields, {'po_number': '42'})

    def test_missing_fields_omitted(self) -> None:
        self.assertEqual(RegexDocumentExtractor().extract('nothing here', VENDOR_PO_PROMPT, VENDOR_PO_SCHEMA), {})


class PdfTextTests(unittest.TestCase):
    def test_reads_compressed_text_layer(self) -> None:
        pdf = make_pdf(['Purchase Order Number: 1227880', 'Customer: JJSG', 'Total: $80.00'])
        self.assertNotIn(b'1227880', pdf)

        text = extract_pdf_text(pdf)

        self.assertIn('Purchase Order Number: 1227880', text)
        fields = RegexDocumentExtractor().extract(text, VENDOR_PO_PROMPT, VENDOR_PO_SCHEMA)
        self.assertEqual(fields, {'po_number': '1227880', 'total': '80.00', 'customer_code': 'JJSG'})

    def test_empty_or_garbage_upload_rejected(self) -> None:
        for data in (b'', b'plain text, not a pdf'):
            with self.assertRaises(ValidationError) as ctx:
                extract_pdf_text(data)
            self.assertEqual(ctx.exception.details[0]['field'], 'file')


if __name__ == '__main__':
    unittest.main()
