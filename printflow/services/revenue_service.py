from __future__ import annotations

from decimal import Decimal

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from printflow.models import Invoice, InvoiceStatus, PurchaseOrder
from printflow.services.company_service import BROKER_ID, CUSTOMER_CODE_TO_ID, TIER1_VENDOR_ID, TIER2_VENDOR_ID
from printflow.services.purchase_order_math_service import to_money

ZERO = Decimal('0.00')
CUSTOMER_IDS = sorted(set(CUSTOMER_CODE_TO_ID.values()))


def _money(value) -> str:
    return str(to_money(value if value is not None else ZERO))


def _hop_totals(db: Session, origin: str, target: str) -> dict:
    count, total = db.execute(
        select(func.count(PurchaseOrder.id), func.sum(PurchaseOrder.vendor_amount)).where(
            PurchaseOrder.origin_company_id == origin,
            PurchaseOrder.target_company_id == target,
        )
    ).one()
    return {'count': count, 'total': _money(total)}


def _invoice_sum(db: Session, *conditions) -> Decimal:
    total = db.execute(select(func.sum(Invoice.amount)).where(*conditions)).scalar_one()
    return to_money(total if total is not None else ZERO)


def get_revenue_metrics(db: Session) -> dict:
    """Broker-side totals across every purchase order and invoice."""
    paid = Invoice.status == InvoiceStatus.PAID
    invoice_count, invoice_total, paid_count, paid_total = db.execute(
        select(
            func.count(Invoice.id),
            func.sum(Invoice.amount),
            func.sum(case((paid, 1), else_=0)),
            func.sum(case((paid, Invoice.amount), else_=0)),
        )
    ).one()
    invoice_total = to_money(invoice_total if invoice_total is not None else ZERO)
    paid_total = to_money(paid_total if paid_total is not None else ZERO)
    paid_count = paid_count or 0

    by_customer = {}
    for customer_id in CUSTOMER_IDS:
        count, total, customer_paid = db.execute(
            select(
                func.count(Invoice.id),
                func.sum(Invoice.amount),
                func.sum(case((paid, Invoice.amount), else_=0)),
            ).where(Invoice.from_company_id == BROKER_ID, Invoice.to_company_id == customer_id)
        ).one()
        total = to_money(total if total is not None else ZERO)
        customer_paid = to_money(customer_paid if customer_paid is not None else ZERO)
        by_customer[customer_id] = {
            'count': count,
            'total': str(total),
            'paid': str(customer_paid),
            'unpaid': str(total - customer_paid),
        }

    revenue = _invoice_sum(db, Invoice.from_company_id == BROKER_ID, Invoice.to_company_id.in_(CUSTOMER_IDS))
    costs = _invoice_sum(db, Invoice.from_company_id == TIER1_VENDOR_ID, Invoice.to_company_id == BROKER_ID)
    gross_profit = revenue - costs
    margin_percent = (gross_profit / revenue * 100).quantize(Decimal('0.01')) if revenue else ZERO

    first_hop = _hop_totals(db, BROKER_ID, TIER1_VENDOR_ID)
    second_hop = _hop_totals(db, TIER1_VENDOR_ID, TIER2_VENDOR_ID)
    return {
        'purchase_orders': {
            'total': db.execute(select(func.count(PurchaseOrder.id))).scalar_one(),
            'by_hop': {'first_hop': first_hop, 'second_hop': second_hop},
        },
        'invoices': {
            'total': invoice_count,
            'total_amount': str(invoice_total),
            'paid': paid_count,
            'paid_amount': str(paid_total),
            'unpaid': invoice_count - paid_count,
            'unpaid_amount': str(invoice_total - paid_total),
            'by_customer': by_customer,
        },
        'profit_margins': {
            'total_revenue': str(revenue),
            'total_costs': str(costs),
            'gross_profit': str(gross_profit),
            'profit_margin': str(margin_percent),
        },
    }
