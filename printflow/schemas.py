from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator

from printflow.models import JobStatus, PaperTransactionType, PurchaseOrderStatus


def _blank_to_none(value):
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


OptionalText = Annotated[str | None, BeforeValidator(_blank_to_none)]


class WebhookPricing(BaseModel):
    subtotal: Decimal | None = Field(default=None, ge=0)
    tax: Decimal | None = Field(default=None, ge=0)
    total: Decimal | None = Field(default=None, ge=0)

    @property
    def payable(self) -> Decimal | None:
        return self.total if self.total is not None else self.subtotal


class VendorPoWebhookIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='allow')

    component_id: OptionalText = Field(default=None, alias='componentId')
    estimate_number: OptionalText = Field(default=None, alias='estimateNumber')
    job_number: str = Field(alias='jobNumber', min_length=1)
    status: str | None = None
    pricing: WebhookPricing
    delivery: dict | None = None
    pdf_url: OptionalText = Field(default=None, alias='pdfUrl')

    @model_validator(mode='after')
    def _check_correlation(self) -> VendorPoWebhookIn:
        if not self.component_id and not self.estimate_number:
            raise ValueError('componentId or estimateNumber is required')
        if self.pricing.payable is None:
            raise ValueError('pricing.total or pricing.subtotal is required')
        return self

    @property
    def correlation_key(self) -> str:
        return self.component_id or self.estimate_number


class JobCreateIn(BaseModel):
    customer_id: str = Field(min_length=1)
    customer_total: Decimal | None = Field(default=None, ge=0)
    customer_po_number: OptionalText = None
    size: str | None = None
    quantity: int | None = Field(default=None, gt=0)
    specs: dict = Field(default_factory=dict)


class JobFromQuoteIn(BaseModel):
    quote_id: int
    customer_po_number: str = Field(min_length=1)


class JobStatusIn(BaseModel):
    status: JobStatus


class PurchaseOrderCreateIn(BaseModel):
    origin_company_id: str = Field(min_length=1)
    target_company_id: str = Field(min_length=1)
    job_id: int
    original_amount: Decimal = Field(ge=0)
    vendor_amount: Decimal = Field(ge=0)
    external_ref: OptionalText = None

    @model_validator(mode='after')
    def _check_amounts(self) -> PurchaseOrderCreateIn:
        if self.vendor_amount > self.original_amount:
            raise ValueError('vendor_amount cannot exceed original_amount')
        return self


class PurchaseOrderStatusIn(BaseModel):
    status: PurchaseOrderStatus


class InvoiceCreateIn(BaseModel):
    job_id: int | None = None
    from_company_id: str = Field(min_length=1)
    to_company_id: str = Field(min_length=1)
    amount: Decimal | None = Field(default=None, ge=0)
    notes: str | None = None


class QuoteRequestIn(BaseModel):
    customer_id: str = Field(min_length=1)
    specs: dict = Field(default_factory=dict)
    notes: str | None = None


class QuoteLineIn(BaseModel):
    description: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0)


class QuoteIn(BaseModel):
    quote_request_id: int
    lines: list[QuoteLineIn] = Field(min_length=1)
    tax: Decimal = Field(default=Decimal('0'), ge=0)
    valid_until: date | None = None
    notes: str | None = None


class ProofDecisionIn(BaseModel):
    comments: str | None = None
    decided_by: str | None = None


class ShipmentRecipientIn(BaseModel):
    name: str = Field(min_length=1)
    email: str | None = None
    address: str | None = None


class ShipmentIn(BaseModel):
    job_id: int
    carrier: str = Field(min_length=1)
    scheduled_for: date | None = None
    recipients: list[ShipmentRecipientIn] = Field(default_factory=list)


class ShipmentShippedIn(BaseModel):
    tracking_no: str | None = None


class InventoryAdjustIn(BaseModel):
    company_id: str = Field(min_length=1)
    roll_type: str = Field(min_length=1)
    quantity: int
    type: PaperTransactionType = PaperTransactionType.ADJUST
    job_id: int | None = None
    notes: str | None = None

    @model_validator(mode='after')
    def _check_quantity(self) -> InventoryAdjustIn:
        if self.quantity == 0:
            raise ValueError('quantity must be non-zero')
        return self


class InventoryDeductIn(BaseModel):
    company_id: str = Field(min_length=1)
    roll_type: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    job_id: int
    notes: str | None = None
