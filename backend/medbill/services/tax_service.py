# Overview: Pure GST calculations for bill lines and bill totals; no database access.

"""
Tax Calculator

All monetary arithmetic of the billing core happens here, on Decimal
currency units (rupees). Every output is rounded to 2 places half-up at
the point it is produced; bill totals are sums of already-rounded line
values. Callers convert to and from integer cents with to_cents/from_cents.

Pricing modes:
- EXCLUSIVE: taxable = price * qty - discount, tax added on top
- INCLUSIVE: taxable = (price * qty - discount) * 100 / (100 + rate),
  tax is the remainder

GST is split into two equal components (CGST + SGST). When the tax total
has an odd paisa, CGST takes the rounded half and SGST the remainder so
the components always add up to the tax total.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from ..models.inventory import PRICING_INCLUSIVE, PRICING_MODES


DISCOUNT_PERCENTAGE = "PERCENTAGE"
DISCOUNT_FLAT = "FLAT"
DISCOUNT_TYPES = (DISCOUNT_PERCENTAGE, DISCOUNT_FLAT)

ZERO = Decimal("0")
HUNDRED = Decimal("100")
TWO_PLACES = Decimal("0.01")
UNIT = Decimal("1")


def _dec(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps floats like 0.1 from dragging binary noise in
    return Decimal(str(value))


def round2(value) -> Decimal:
    return _dec(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def round_to_unit(value) -> Decimal:
    """Nearest whole currency unit, half-up."""
    return _dec(value).quantize(UNIT, rounding=ROUND_HALF_UP)


def to_cents(amount) -> int:
    """Exact conversion of a 2-place amount to integer cents."""
    amount = _dec(amount)
    cents = amount * HUNDRED
    if cents != cents.to_integral_value():
        raise ValueError(f"amount {amount} has more than 2 decimal places")
    return int(cents)


def from_cents(cents: int) -> Decimal:
    return (Decimal(int(cents)) / HUNDRED).quantize(TWO_PLACES)


def bps_to_rate(bps: int) -> Decimal:
    """1200 -> Decimal('12')"""
    return Decimal(int(bps)) / HUNDRED


@dataclass(frozen=True)
class LineResult:
    gross_amount: Decimal
    discount_amount: Decimal
    taxable_value: Decimal
    cgst: Decimal
    sgst: Decimal
    total_tax: Decimal
    total: Decimal


@dataclass(frozen=True)
class LineInput:
    unit_price: Decimal
    quantity: int
    tax_rate: Decimal
    pricing_mode: str
    discount_type: Optional[str] = None
    discount_value: Decimal = ZERO


@dataclass(frozen=True)
class BillResult:
    lines: tuple
    subtotal: Decimal
    item_discount_total: Decimal
    taxable_total: Decimal
    cgst_total: Decimal
    sgst_total: Decimal
    total_tax: Decimal
    items_total: Decimal
    bill_discount: Decimal
    grand_total: Decimal
    round_off: Decimal
    final_amount: Decimal


def _split_tax(total_tax: Decimal) -> tuple[Decimal, Decimal]:
    cgst = round2(total_tax / 2)
    return cgst, total_tax - cgst


def calculate_line(
    unit_price,
    quantity: int,
    tax_rate,
    pricing_mode: str,
    discount_amount=ZERO,
) -> LineResult:
    """
    Tax breakdown for one line. quantity must already be validated > 0.

    A discount larger than the gross amount clamps the line to zero.
    """
    if pricing_mode not in PRICING_MODES:
        raise ValueError(f"unknown pricing mode: {pricing_mode}")

    unit_price = _dec(unit_price)
    tax_rate = _dec(tax_rate)
    discount_amount = _dec(discount_amount)

    gross = unit_price * quantity
    discount_amount = min(max(discount_amount, ZERO), gross)
    net = gross - discount_amount

    if tax_rate == 0:
        taxable = round2(net)
        return LineResult(
            gross_amount=round2(gross),
            discount_amount=round2(discount_amount),
            taxable_value=taxable,
            cgst=ZERO,
            sgst=ZERO,
            total_tax=ZERO,
            total=taxable,
        )

    if pricing_mode == PRICING_INCLUSIVE:
        total = round2(net)
        taxable = round2(net * HUNDRED / (HUNDRED + tax_rate))
        total_tax = total - taxable
    else:
        taxable = round2(net)
        total_tax = round2(net * tax_rate / HUNDRED)
        total = taxable + total_tax

    cgst, sgst = _split_tax(total_tax)
    return LineResult(
        gross_amount=round2(gross),
        discount_amount=round2(discount_amount),
        taxable_value=taxable,
        cgst=cgst,
        sgst=sgst,
        total_tax=total_tax,
        total=total,
    )


def calculate_discount(amount, discount_type: Optional[str], value) -> Decimal:
    """
    PERCENTAGE: round2(amount * value / 100)
    FLAT: round2(min(value, amount))
    No type or a non-positive value yields zero.
    """
    if not discount_type:
        return ZERO
    amount = _dec(amount)
    value = _dec(value or 0)
    if value <= 0:
        return ZERO

    if discount_type == DISCOUNT_PERCENTAGE:
        return round2(min(amount * value / HUNDRED, max(amount, ZERO)))
    if discount_type == DISCOUNT_FLAT:
        return round2(max(min(value, amount), ZERO))
    raise ValueError(f"unknown discount type: {discount_type}")


def calculate_line_item(
    unit_price,
    quantity: int,
    tax_rate,
    pricing_mode: str,
    discount_type: Optional[str] = None,
    discount_value=ZERO,
) -> LineResult:
    gross = round2(_dec(unit_price) * quantity)
    discount = calculate_discount(gross, discount_type, discount_value)
    return calculate_line(unit_price, quantity, tax_rate, pricing_mode, discount)


def calculate_bill(
    lines: Iterable[LineInput],
    bill_discount_type: Optional[str] = None,
    bill_discount_value=ZERO,
) -> BillResult:
    """
    Totals for a whole bill.

    The bill-level discount applies to the sum of line totals (which already
    include line discounts and tax). The payable amount is the grand total
    rounded to a whole unit; final_amount == grand_total + round_off.
    """
    results = tuple(
        calculate_line_item(
            line.unit_price,
            line.quantity,
            line.tax_rate,
            line.pricing_mode,
            line.discount_type,
            line.discount_value,
        )
        for line in lines
    )

    subtotal = sum((r.gross_amount for r in results), ZERO)
    item_discount_total = sum((r.discount_amount for r in results), ZERO)
    taxable_total = sum((r.taxable_value for r in results), ZERO)
    cgst_total = sum((r.cgst for r in results), ZERO)
    sgst_total = sum((r.sgst for r in results), ZERO)
    total_tax = sum((r.total_tax for r in results), ZERO)
    items_total = sum((r.total for r in results), ZERO)

    bill_discount = calculate_discount(items_total, bill_discount_type, bill_discount_value)
    grand_total = round2(max(ZERO, items_total - bill_discount))
    final_amount = round_to_unit(grand_total)
    round_off = final_amount - grand_total

    return BillResult(
        lines=results,
        subtotal=round2(subtotal),
        item_discount_total=round2(item_discount_total),
        taxable_total=round2(taxable_total),
        cgst_total=round2(cgst_total),
        sgst_total=round2(sgst_total),
        total_tax=round2(total_tax),
        items_total=round2(items_total),
        bill_discount=bill_discount,
        grand_total=grand_total,
        round_off=round2(round_off),
        final_amount=final_amount,
    )


def group_by_tax_rate(lines: Iterable[tuple]) -> dict:
    """
    Sum (tax_rate, LineResult) pairs per rate, for the GST summary.

    Returns {rate: {"taxable_value", "cgst", "sgst", "total_tax"}}.
    """
    grouped: dict = {}
    for rate, result in lines:
        bucket = grouped.setdefault(
            _dec(rate),
            {"taxable_value": ZERO, "cgst": ZERO, "sgst": ZERO, "total_tax": ZERO},
        )
        bucket["taxable_value"] = round2(bucket["taxable_value"] + result.taxable_value)
        bucket["cgst"] = round2(bucket["cgst"] + result.cgst)
        bucket["sgst"] = round2(bucket["sgst"] + result.sgst)
        bucket["total_tax"] = round2(bucket["total_tax"] + result.total_tax)
    return grouped


def is_valid_tax_rate(rate, allowed: Iterable[int]) -> bool:
    return _dec(rate) in {Decimal(a) for a in allowed}


def default_hsn_code(rate) -> str:
    """Common pharma HSN codes by GST slab."""
    rate = _dec(rate)
    if rate == 0:
        return "3002"
    if rate == 18:
        return "2106"
    return "3004"
