"""Line and header totals shared by sales invoices, credit notes and purchase orders."""

from decimal import Decimal
from typing import Dict, Iterable, Any

from ledgerbook.services.journal_posting import money, to_decimal, ZERO


def line_amounts(quantity, unit_price, discount_amount=0, tax_rate=0) -> Dict[str, Decimal]:
    """
    line_subtotal = qty * price
    tax = (line_subtotal - discount) * rate / 100
    line_total = line_subtotal - discount + tax
    """
    subtotal = money(to_decimal(quantity) * to_decimal(unit_price))
    discount = money(discount_amount)
    if discount < 0:
        raise ValueError("Discount cannot be negative")
    if discount > subtotal:
        raise ValueError("Discount cannot exceed the line amount")
    tax = money((subtotal - discount) * to_decimal(tax_rate) / Decimal("100"))
    return {
        "line_subtotal": subtotal,
        "discount_amount": discount,
        "tax_amount": tax,
        "line_total": subtotal - discount + tax,
    }


def document_totals(lines: Iterable[Dict[str, Any]]) -> Dict[str, Decimal]:
    subtotal = discount = tax = ZERO
    for line in lines:
        subtotal += line["line_subtotal"]
        discount += line["discount_amount"]
        tax += line["tax_amount"]
    return {
        "subtotal": subtotal,
        "discount_amount": discount,
        "tax_amount": tax,
        "total_amount": subtotal - discount + tax,
    }
