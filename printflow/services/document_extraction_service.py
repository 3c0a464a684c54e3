from __future__ import annotations

import io
import re
from decimal import Decimal, InvalidOperation
from typing import Protocol

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from printflow.errors import ValidationError

VENDOR_PO_PROMPT = (
    'Extract the purchase order number, the order total and, when printed, '
    'the amount payable to the sub-vendor from this vendor purchase order.'
)

VENDOR_PO_SCHEMA = {
    'type': 'object',
    'properties': {
        'po_number': {'type': 'string'},
        'total': {'type': 'string'},
        'vendor_total': {'type': 'string'},
        'customer_code': {'type': 'string'},
    },
    'required': ['po_number', 'total'],
}

PO_NUMBER_PATTERNS = (
    re.compile(r'Purchase Order\s*(?:Number|No\.?)?[\s#:]*(\d+)', re.IGNORECASE),
    re.compile(r'P\.O\.[\s#:]*(\d+)', re.IGNORECASE),
    re.compile(r'\bPO\s*(?:Number|No\.?)?[\s#:]*(\d+)', re.IGNORECASE),
    re.compile(r'\bOrder[\s#:]*(\d+)', re.IGNORECASE),
)
AMOUNT_RE = re.compile(r'\$\s*(\d{1,3}(?:,\d{3})+(?:\.\d{2})?|\d+(?:\.\d{2})?)')
VENDOR_TOTAL_RE = re.compile(r'(?:JD|Vendor|Sub-?vendor)\s+Total[\s:]*\$?\s*([\d,]+(?:\.\d{2})?)', re.IGNORECASE)
CUSTOMER_CODE_RE = re.compile(r'\b(JJSG|BALSG)\b', re.IGNORECASE)


def extract_pdf_text(data: bytes) -> str:
    """Text layer of every page, joined by newlines. Scanned PDFs yield an empty string."""
    if not data:
        raise ValidationError.for_field('file', 'Uploaded document is empty')
    try:
        reader = PdfReader(io.BytesIO(data))
        pages = [page.extract_text() or '' for page in reader.pages]
    except PdfReadError as exc:
        raise ValidationError.for_field('file', f'Uploaded document is not a readable PDF: {exc}') from exc
    return '\n'.join(text for text in pages if text)


class DocumentExtractor(Protocol):
    def extract(self, text: str, prompt_spec: str, output_schema: dict) -> dict: ...


def _parse_amount(raw: str) -> Decimal | None:
    try:
        return Decimal(raw.replace(',', ''))
    except InvalidOperation:
        return None


class RegexDocumentExtractor:
    """Pattern based field extraction for vendor PO documents.

    The prompt is ignored; only fields named in the output schema are returned.
    """

    def extract(self, text: str, prompt_spec: str, output_schema: dict) -> dict:
        wanted = set((output_schema or {}).get('properties', {}))
        found: dict = {}

        for pattern in PO_NUMBER_PATTERNS:
            match = pattern.search(text)
            if match:
                found['po_number'] = match.group(1)
                break

        amounts = [amount for amount in (_parse_amount(m) for m in AMOUNT_RE.findall(text)) if amount is not None]
        if amounts:
            # The largest dollar figure on a PO is its total.
            found['total'] = str(max(amounts))

        vendor_match = VENDOR_TOTAL_RE.search(text)
        if vendor_match:
            vendor_total = _parse_amount(vendor_match.group(1))
            if vendor_total is not None:
                found['vendor_total'] = str(vendor_total)

        code_match = CUSTOMER_CODE_RE.search(text)
        if code_match:
            found['customer_code'] = code_match.group(1).upper()

        return {key: value for key, value in found.items() if key in wanted}
