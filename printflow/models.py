from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY.
BigId = BigInteger().with_variant(Integer, 'sqlite')
Money = Numeric(14, 2)


class Base(DeclarativeBase):
    pass


class CompanyRole(str, Enum):
    CUSTOMER = 'CUSTOMER'
    BROKER = 'BROKER'
    VENDOR = 'VENDOR'


class ContactPurpose(str, Enum):
    PRODUCTION = 'PRODUCTION'
    BILLING = 'BILLING'


class JobStatus(str, Enum):
    INTAKE = 'INTAKE'
    QUOTED = 'QUOTED'
    APPROVED = 'APPROVED'
    PENDING_PROOF = 'PENDING_PROOF'
    IN_PRODUCTION = 'IN_PRODUCTION'
    SHIPPED = 'SHIPPED'
    INVOICED = 'INVOICED'
    PAID = 'PAID'
    CANCELLED = 'CANCELLED'


class PurchaseOrderStatus(str, Enum):
    CREATED = 'CREATED'
    SENT = 'SENT'
    ACKNOWLEDGED = 'ACKNOWLEDGED'
    FULFILLED = 'FULFILLED'


class InvoiceStatus(str, Enum):
    DRAFT = 'DRAFT'
    SENT = 'SENT'
    PAID = 'PAID'


class QuoteRequestStatus(str, Enum):
    PENDING = 'PENDING'
    QUOTED = 'QUOTED'
    APPROVED = 'APPROVED'
    REJECTED = 'REJECTED'


class QuoteStatus(str, Enum):
    PENDING = 'PENDING'
    APPROVED = 'APPROVED'
    REJECTED = 'REJECTED'


class ProofStatus(str, Enum):
    PENDING = 'PENDING'
    APPROVED = 'APPROVED'
    CHANGES_REQUESTED = 'CHANGES_REQUESTED'


class ShipmentStatus(str, Enum):
    SCHEDULED = 'SCHEDULED'
    SHIPPED = 'SHIPPED'
    DELIVERED = 'DELIVERED'


class PaperTransactionType(str, Enum):
    ADD = 'ADD'
    REMOVE = 'REMOVE'
    ADJUST = 'ADJUST'
    JOB_USAGE = 'JOB_USAGE'


class NotificationType(str, Enum):
    QUOTE_READY = 'QUOTE_READY'
    PROOF_READY = 'PROOF_READY'
    PROOF_APPROVED = 'PROOF_APPROVED'
    PROOF_CHANGES_REQUESTED = 'PROOF_CHANGES_REQUESTED'
    SHIPMENT_SCHEDULED = 'SHIPMENT_SCHEDULED'
    SHIPMENT_SHIPPED = 'SHIPMENT_SHIPPED'
    INVOICE_SENT = 'INVOICE_SENT'
    PO_CREATED = 'PO_CREATED'


class WebhookSource(str, Enum):
    BRADFORD = 'BRADFORD'


class Company(Base):
    __tablename__ = 'companies'

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[CompanyRole] = mapped_column(SQLEnum(CompanyRole, name='company_role'), nullable=False)
    tier: Mapped[int | None] = mapped_column(Integer)
    vendor_code: Mapped[str | None] = mapped_column(String(3), unique=True)
    email: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class CompanyContact(Base):
    __tablename__ = 'company_contacts'

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    company_id: Mapped[str] = mapped_column(String(64), ForeignKey('companies.id'), nullable=False)
    contact_name: Mapped[str | None] = mapped_column(Text)
    email_to: Mapped[str] = mapped_column(Text, nullable=False)
    purpose: Mapped[ContactPurpose] = mapped_column(
        SQLEnum(ContactPurpose, name='contact_purpose'),
        nullable=False,
        default=ContactPurpose.PRODUCTION,
        server_default='PRODUCTION',
    )
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class QuoteRequest(Base):
    __tablename__ = 'quote_requests'

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    customer_id: Mapped[str] = mapped_column(String(64), ForeignKey('companies.id'), nullable=False)
    specs: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    notes: Mapped[str | None] = mapped_column(Text)
    status: Mapped[QuoteRequestStatus] = mapped_column(
        SQLEnum(QuoteRequestStatus, name='quote_request_status'),
        nullable=False,
        default=QuoteRequestStatus.PENDING,
        server_default='PENDING',
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Quote(Base):
    __tablename__ = 'quotes'

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    quote_request_id: Mapped[int] = mapped_column(BigId, ForeignKey('quote_requests.id'), nullable=False)
    lines: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    subtotal: Mapped[Decimal] = mapped_column(Money, nullable=False)
    tax: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0.00'), server_default='0')
    total: Mapped[Decimal] = mapped_column(Money, nullable=False)
    valid_until: Mapped[date | None] = mapped_column(Date)
    notes: Mapped[str | None] = mapped_column(Text)
    status: Mapped[QuoteStatus] = mapped_column(
        SQLEnum(QuoteStatus, name='quote_status'),
        nullable=False,
        default=QuoteStatus.PENDING,
        server_default='PENDING',
    )
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Job(Base):
    __tablename__ = 'jobs'
    __table_args__ = (
        UniqueConstraint('job_no', name='jobs_job_no_key'),
        CheckConstraint('customer_total >= 0', name='jobs_customer_total_non_negative_ck'),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    job_no: Mapped[str] = mapped_column(String(32), nullable=False)
    customer_id: Mapped[str] = mapped_column(String(64), ForeignKey('companies.id'), nullable=False)
    quote_id: Mapped[int | None] = mapped_column(BigId, ForeignKey('quotes.id'))
    customer_total: Mapped[Decimal] = mapped_column(Money, nullable=False)
    status: Mapped[JobStatus] = mapped_column(
        SQLEnum(JobStatus, name='job_status'),
        nullable=False,
        default=JobStatus.INTAKE,
        server_default='INTAKE',
    )
    customer_po_number: Mapped[str | None] = mapped_column(Text)
    customer_po_file_key: Mapped[str | None] = mapped_column(Text)
    specs: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PurchaseOrder(Base):
    __tablename__ = 'purchase_orders'
    __table_args__ = (
        UniqueConstraint('po_number', name='purchase_orders_po_number_key'),
        UniqueConstraint(
            'job_id', 'origin_company_id', 'target_company_id', name='purchase_orders_job_hop_uniq'
        ),
        UniqueConstraint('job_id', 'external_ref', name='purchase_orders_job_external_ref_uniq'),
        CheckConstraint(
            'vendor_amount >= 0 AND margin_amount >= 0', name='purchase_orders_amounts_non_negative_ck'
        ),
        CheckConstraint(
            'ROUND(vendor_amount + margin_amount, 2) = ROUND(original_amount, 2)',
            name='purchase_orders_amounts_balance_ck',
        ),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    po_number: Mapped[str] = mapped_column(String(16), nullable=False)
    origin_company_id: Mapped[str] = mapped_column(String(64), ForeignKey('companies.id'), nullable=False)
    target_company_id: Mapped[str] = mapped_column(String(64), ForeignKey('companies.id'), nullable=False)
    job_id: Mapped[int] = mapped_column(BigId, ForeignKey('jobs.id'), nullable=False)
    original_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    vendor_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    margin_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    external_ref: Mapped[str | None] = mapped_column(Text)
    reference_po_number: Mapped[str | None] = mapped_column(Text)
    status: Mapped[PurchaseOrderStatus] = mapped_column(
        SQLEnum(PurchaseOrderStatus, name='purchase_order_status'),
        nullable=False,
        default=PurchaseOrderStatus.CREATED,
        server_default='CREATED',
    )
    pdf_file_key: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Invoice(Base):
    __tablename__ = 'invoices'
    __table_args__ = (
        UniqueConstraint('invoice_no', name='invoices_invoice_no_key'),
        CheckConstraint('amount >= 0', name='invoices_amount_non_negative_ck'),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    invoice_no: Mapped[str] = mapped_column(String(32), nullable=False)
    job_id: Mapped[int | None] = mapped_column(BigId, ForeignKey('jobs.id'))
    from_company_id: Mapped[str] = mapped_column(String(64), ForeignKey('companies.id'), nullable=False)
    to_company_id: Mapped[str] = mapped_column(String(64), ForeignKey('companies.id'), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    status: Mapped[InvoiceStatus] = mapped_column(
        SQLEnum(InvoiceStatus, name='invoice_status'),
        nullable=False,
        default=InvoiceStatus.DRAFT,
        server_default='DRAFT',
    )
    notes: Mapped[str | None] = mapped_column(Text)
    issued_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    due_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Proof(Base):
    __tablename__ = 'proofs'
    __table_args__ = (
        UniqueConstraint('job_id', 'version', name='proofs_job_version_uniq'),
        UniqueConstraint('share_token', name='proofs_share_token_key'),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    job_id: Mapped[int] = mapped_column(BigId, ForeignKey('jobs.id'), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    file_key: Mapped[str] = mapped_column(Text, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    share_token: Mapped[str] = mapped_column(String(64), nullable=False)
    share_expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[ProofStatus] = mapped_column(
        SQLEnum(ProofStatus, name='proof_status'),
        nullable=False,
        default=ProofStatus.PENDING,
        server_default='PENDING',
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ProofApproval(Base):
    __tablename__ = 'proof_approvals'

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    proof_id: Mapped[int] = mapped_column(BigId, ForeignKey('proofs.id'), nullable=False)
    approved: Mapped[bool] = mapped_column(Boolean, nullable=False)
    comments: Mapped[str | None] = mapped_column(Text)
    decided_by: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Shipment(Base):
    __tablename__ = 'shipments'

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    job_id: Mapped[int] = mapped_column(BigId, ForeignKey('jobs.id'), nullable=False)
    carrier: Mapped[str] = mapped_column(Text, nullable=False)
    tracking_no: Mapped[str | None] = mapped_column(Text)
    scheduled_for: Mapped[date | None] = mapped_column(Date)
    status: Mapped[ShipmentStatus] = mapped_column(
        SQLEnum(ShipmentStatus, name='shipment_status'),
        nullable=False,
        default=ShipmentStatus.SCHEDULED,
        server_default='SCHEDULED',
    )
    shipped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ShipmentRecipient(Base):
    __tablename__ = 'shipment_recipients'

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    shipment_id: Mapped[int] = mapped_column(BigId, ForeignKey('shipments.id'), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str | None] = mapped_column(Text)
    address: Mapped[str | None] = mapped_column(Text)


class PaperInventory(Base):
    __tablename__ = 'paper_inventory'
    __table_args__ = (
        UniqueConstraint('company_id', 'roll_type', name='paper_inventory_company_roll_uniq'),
        CheckConstraint('quantity >= 0', name='paper_inventory_quantity_non_negative_ck'),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    company_id: Mapped[str] = mapped_column(String(64), ForeignKey('companies.id'), nullable=False)
    roll_type: Mapped[str] = mapped_column(String(32), nullable=False)
    roll_width: Mapped[int] = mapped_column(Integer, nullable=False)
    paper_point: Mapped[int] = mapped_column(Integer, nullable=False)
    paper_type: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    reorder_point: Mapped[int] = mapped_column(Integer, nullable=False, default=2, server_default='2')
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PaperTransaction(Base):
    __tablename__ = 'paper_transactions'

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    inventory_id: Mapped[int] = mapped_column(BigId, ForeignKey('paper_inventory.id'), nullable=False)
    type: Mapped[PaperTransactionType] = mapped_column(
        SQLEnum(PaperTransactionType, name='paper_transaction_type'), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    job_id: Mapped[int | None] = mapped_column(BigId, ForeignKey('jobs.id'))
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Notification(Base):
    __tablename__ = 'notifications'

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    type: Mapped[NotificationType] = mapped_column(SQLEnum(NotificationType, name='notification_type'), nullable=False)
    recipient: Mapped[str] = mapped_column(Text, nullable=False)
    subject: Mapped[str] = mapped_column(Text, nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    job_id: Mapped[int | None] = mapped_column(BigId, ForeignKey('jobs.id'))
    message_id: Mapped[str | None] = mapped_column(Text)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    error: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class WebhookEvent(Base):
    __tablename__ = 'webhook_events'

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    source: Mapped[WebhookSource] = mapped_column(SQLEnum(WebhookSource, name='webhook_source'), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    error: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    job_id: Mapped[int | None] = mapped_column(BigId, ForeignKey('jobs.id'))
    ip: Mapped[str | None] = mapped_column(Text)
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
