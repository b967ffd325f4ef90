"""Applying payments and credits to open sales invoices and supplier bills."""

from decimal import Decimal

from ledgerbook.models import SalesInvoice, SupplierInvoice
from ledgerbook.services.journal_posting import money, to_decimal, ZERO


def refresh_invoice_status(invoice: SalesInvoice):
    if invoice.status in ("DRAFT", "CANCELLED"):
        return
    settled = to_decimal(invoice.amount_paid) + to_decimal(invoice.amount_credited)
    if invoice.amount_due <= ZERO:
        invoice.status = "PAID"
    elif settled > ZERO:
        invoice.status = "PARTIAL"
    else:
        invoice.status = "ISSUED"


def apply_invoice_payment(invoice: SalesInvoice, amount: Decimal):
    """Add (or with a negative amount, remove) a payment on the invoice"""
    amount = money(amount)
    if amount > invoice.amount_due:
        raise ValueError(
            f"Amount {amount} exceeds the amount due {invoice.amount_due} on invoice {invoice.invoice_number}"
        )
    invoice.amount_paid = money(to_decimal(invoice.amount_paid) + amount)
    if to_decimal(invoice.amount_paid) < ZERO:
        raise ValueError(f"Invoice {invoice.invoice_number} cannot have a negative amount paid")
    refresh_invoice_status(invoice)


def apply_invoice_credit(invoice: SalesInvoice, amount: Decimal):
    amount = money(amount)
    if amount > invoice.amount_due:
        raise ValueError(
            f"Credit {amount} exceeds the amount due {invoice.amount_due} on invoice {invoice.invoice_number}"
        )
    invoice.amount_credited = money(to_decimal(invoice.amount_credited) + amount)
    refresh_invoice_status(invoice)


def remove_invoice_credit(invoice: SalesInvoice, amount: Decimal):
    amount = money(amount)
    credited = to_decimal(invoice.amount_credited)
    if amount > credited:
        raise ValueError(f"Invoice {invoice.invoice_number} carries only {credited} of credits")
    invoice.amount_credited = money(credited - amount)
    refresh_invoice_status(invoice)


def apply_bill_payment(bill: SupplierInvoice, amount: Decimal):
    """Add a payment to a supplier bill and move it through unpaid / partially_paid / paid"""
    amount = money(amount)
    if amount > bill.amount_due:
        raise ValueError(
            f"Amount {amount} exceeds the amount due {bill.amount_due} on bill {bill.bill_number}"
        )
    bill.amount_paid = money(to_decimal(bill.amount_paid) + amount)
    refresh_bill_status(bill)


def remove_bill_payment(bill: SupplierInvoice, amount: Decimal):
    """Take a payment back off a supplier bill when its payment voucher is reversed"""
    amount = money(amount)
    paid = to_decimal(bill.amount_paid)
    if amount > paid:
        raise ValueError(f"Bill {bill.bill_number} carries only {paid} of payments")
    bill.amount_paid = money(paid - amount)
    refresh_bill_status(bill)


def refresh_bill_status(bill: SupplierInvoice):
    if bill.amount_due <= ZERO:
        bill.status = "paid"
    elif to_decimal(bill.amount_paid) > ZERO:
        bill.status = "partially_paid"
    else:
        bill.status = "unpaid"
