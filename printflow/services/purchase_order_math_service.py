from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from printflow.config import settings
from printflow.errors import ValidationError

CENT = Decimal('0.01')


@dataclass(frozen=True)
class MoneySplit:
    total: Decimal
    vendor_amount: Decimal
    margin_amount: Decimal


def round2(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_money(value: Decimal | int | float | str, *, field: str = 'amount') -> Decimal:
    try:
        # str() keeps float inputs from dragging binary noise into the cents.
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError.for_field(field, f'{field} must be a decimal amount') from exc
    if not amount.is_finite():
        raise ValidationError.for_field(field, f'{field} must be a finite amount')
    return round2(amount)


def _validate_rate(margin_rate: Decimal) -> None:
    if margin_rate < 0 or margin_rate > 1:
        raise ValidationError.for_field('margin_rate', 'Margin rate must be between 0 and 1')


def split_customer_total(total: Decimal | int | float | str, margin_rate: Decimal | None = None) -> MoneySplit:
    """Split one hop's incoming amount into the onward vendor payout and the retained margin.

    The vendor side is rounded half-up; the margin is the complement, so residual
    cents stay with the margin and the two parts always add back to the total.
    """
    rate = settings.margin_rate if margin_rate is None else margin_rate
    _validate_rate(rate)
    amount = to_money(total, field='total')
    if amount < 0:
        raise ValidationError.for_field('total', 'Total cannot be negative')

    vendor_amount = round2(amount * (Decimal('1') - rate))
    return MoneySplit(total=amount, vendor_amount=vendor_amount, margin_amount=amount - vendor_amount)


def derive_margin(original_amount: Decimal, vendor_amount: Decimal) -> Decimal:
    original = to_money(original_amount, field='original_amount')
    vendor = to_money(vendor_amount, field='vendor_amount')
    errors = []
    if original < 0:
        errors.append({'field': 'original_amount', 'message': 'Original amount cannot be negative'})
    if vendor < 0:
        errors.append({'field': 'vendor_amount', 'message': 'Vendor amount cannot be negative'})
    if not errors and vendor > original:
        errors.append({'field': 'vendor_amount', 'message': 'Vendor amount cannot exceed original amount'})
    if errors:
        raise ValidationError(errors[0]['message'], details=errors)
    return original - vendor
