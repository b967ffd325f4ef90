from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, ForeignKey, Date, Numeric, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from decimal import Decimal
from ledgerbook.database import Base


# ============================================================================
# Company & Users
# ============================================================================

class Company(Base):
    """Company/Organization keeping its books in the system"""
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    code = Column(String, unique=True, nullable=False, index=True)
    email = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    address = Column(Text, nullable=True)
    city = Column(String, nullable=True)
    country = Column(String, nullable=True)
    tax_number = Column(String, nullable=True)
    registration_number = Column(String, nullable=True)

    # Accounting settings
    base_currency = Column(String(3), default="NGN")
    fiscal_year_start_month = Column(Integer, default=1)
    invoice_terms_days = Column(Integer, default=30)
    lock_date = Column(Date, nullable=True)  # Nothing may be posted on or before this date
    transactions_locked = Column(Boolean, default=False)  # Global lock on receipt/payment/expense forms

    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    users = relationship("User", back_populates="company")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    name = Column(String, nullable=True)
    hashed_password = Column(String)
    is_active = Column(Boolean, default=True)

    company_id = Column(Integer, ForeignKey("companies.id"), nullable=True)
    role = Column(String, default="admin")  # admin, accountant, clerk, viewer
    phone = Column(String, nullable=True)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    company = relationship("Company", back_populates="users")
    permissions = relationship("UserPermission", cascade="all, delete-orphan")


class UserPermission(Base):
    """A grant on top of the user's role defaults"""
    __tablename__ = "user_permissions"
    __table_args__ = (
        UniqueConstraint('user_id', 'module', 'action', name='uq_user_permission'),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    module = Column(String(50), nullable=False)
    action = Column(String(50), nullable=False)
    created_at = Column(DateTime, default=func.now())


# ============================================================================
# Chart of Accounts & General Ledger
# ============================================================================

class AccountType(Base):
    """Account classification: ASSET, LIABILITY, EQUITY, REVENUE, COGS, EXPENSE"""
    __tablename__ = "account_types"
    __table_args__ = (
        UniqueConstraint('company_id', 'code', name='uq_account_type_company_code'),
    )

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    code = Column(String(20), nullable=False)
    name = Column(String, nullable=False)
    normal_balance = Column(String(10), nullable=False)  # debit or credit
    display_order = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())

    accounts = relationship("Account", back_populates="account_type")


class Account(Base):
    """General ledger account"""
    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint('company_id', 'code', name='uq_account_company_code'),
        UniqueConstraint('company_id', 'system_role', name='uq_account_company_role'),
    )

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    code = Column(String(20), nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    account_type_id = Column(Integer, ForeignKey("account_types.id"), nullable=False)
    parent_id = Column(Integer, ForeignKey("accounts.id"), nullable=True)
    system_role = Column(String(50), nullable=True)  # e.g. ACCOUNTS_RECEIVABLE, VAT_PAYABLE
    is_header = Column(Boolean, default=False)  # Header accounts cannot receive postings
    is_bank_account = Column(Boolean, default=False)
    is_control_account = Column(Boolean, default=False)
    is_active = Column(Boolean, default=True)
    is_system = Column(Boolean, default=False)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    account_type = relationship("AccountType", back_populates="accounts")
    parent = relationship("Account", remote_side=[id])


class FiscalPeriod(Base):
    __tablename__ = "fiscal_periods"
    __table_args__ = (
        UniqueConstraint('company_id', 'fiscal_year', 'period_number', name='uq_fiscal_period'),
    )

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    fiscal_year = Column(Integer, nullable=False)
    period_number = Column(Integer, nullable=False)
    period_name = Column(String, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    status = Column(String, default="open")  # open, closed
    closed_at = Column(DateTime, nullable=True)
    closed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=func.now())


class JournalVoucher(Base):
    """Double-entry journal voucher. Total debits always equal total credits."""
    __tablename__ = "journal_vouchers"
    __table_args__ = (
        UniqueConstraint('company_id', 'voucher_number', name='uq_voucher_company_number'),
    )

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    voucher_number = Column(String(30), nullable=False, index=True)
    entry_date = Column(Date, nullable=False, index=True)
    narration = Column(Text, nullable=True)

    # Source document: Journal, Sales, Receipt, CreditNote, Purchase, Payment,
    # Expense, Production, Inventory, OpeningBalance, Reversal
    source_type = Column(String(30), default="Journal")
    reference_type = Column(String(50), nullable=True)
    reference_id = Column(Integer, nullable=True)
    reference_number = Column(String, nullable=True)

    fiscal_period_id = Column(Integer, ForeignKey("fiscal_periods.id"), nullable=True)
    status = Column(String(20), default="draft")  # draft, posted, reversed
    total_debit = Column(Numeric(18, 2), default=0)
    total_credit = Column(Numeric(18, 2), default=0)

    is_reversal = Column(Boolean, default=False)
    reversal_of_id = Column(Integer, ForeignKey("journal_vouchers.id"), nullable=True)
    reversed_by_id = Column(Integer, ForeignKey("journal_vouchers.id"), nullable=True)

    posted_at = Column(DateTime, nullable=True)
    posted_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    lines = relationship(
        "JournalVoucherLine",
        back_populates="voucher",
        cascade="all, delete-orphan",
        order_by="JournalVoucherLine.line_number"
    )


class JournalVoucherLine(Base):
    __tablename__ = "journal_voucher_lines"

    id = Column(Integer, primary_key=True, index=True)
    voucher_id = Column(Integer, ForeignKey("journal_vouchers.id", ondelete="CASCADE"), nullable=False, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    debit = Column(Numeric(18, 2), default=0)
    credit = Column(Numeric(18, 2), default=0)
    description = Column(Text, nullable=True)
    payee_type = Column(String(20), nullable=True)  # customer, supplier
    payee_id = Column(Integer, nullable=True)
    line_number = Column(Integer, default=1)
    created_at = Column(DateTime, default=func.now())

    voucher = relationship("JournalVoucher", back_populates="lines")
    account = relationship("Account")


class AccountBalance(Base):
    """Per-period running totals, maintained on posting"""
    __tablename__ = "account_balances"
    __table_args__ = (
        UniqueConstraint('company_id', 'account_id', 'fiscal_period_id', name='uq_account_balance_period'),
    )

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    fiscal_period_id = Column(Integer, ForeignKey("fiscal_periods.id"), nullable=False)
    period_debit = Column(Numeric(18, 2), default=0)
    period_credit = Column(Numeric(18, 2), default=0)
    opening_balance = Column(Numeric(18, 2), default=0)
    closing_balance = Column(Numeric(18, 2), default=0)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class TaxConfig(Base):
    __tablename__ = "tax_configs"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    tax_type = Column(String(10), nullable=False)  # VAT, WHT
    rate = Column(Numeric(7, 4), nullable=False)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())

    account = relationship("Account")


# ============================================================================
# Customers & Sales
# ============================================================================

class Customer(Base):
    __tablename__ = "customers"
    __table_args__ = (
        UniqueConstraint('company_id', 'customer_code', name='uq_customer_company_code'),
    )

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    customer_code = Column(String(20), nullable=False)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    address = Column(Text, nullable=True)
    tax_number = Column(String, nullable=True)
    credit_limit = Column(Numeric(18, 2), default=0)
    payment_terms_days = Column(Integer, nullable=True)
    opening_balance = Column(Numeric(18, 2), default=0)
    opening_balance_voucher_id = Column(Integer, ForeignKey("journal_vouchers.id"), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class SalesInvoice(Base):
    __tablename__ = "sales_invoices"
    __table_args__ = (
        UniqueConstraint('company_id', 'invoice_number', name='uq_invoice_company_number'),
    )

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    invoice_number = Column(String(30), nullable=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False)
    invoice_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    status = Column(String(20), default="DRAFT")  # DRAFT, ISSUED, PARTIAL, PAID, OVERDUE, CANCELLED
    subtotal = Column(Numeric(18, 2), default=0)
    discount_amount = Column(Numeric(18, 2), default=0)
    tax_amount = Column(Numeric(18, 2), default=0)
    total_amount = Column(Numeric(18, 2), default=0)
    amount_paid = Column(Numeric(18, 2), default=0)
    amount_credited = Column(Numeric(18, 2), default=0)
    notes = Column(Text, nullable=True)
    voucher_id = Column(Integer, ForeignKey("journal_vouchers.id"), nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    customer = relationship("Customer")
    items = relationship(
        "SalesInvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="SalesInvoiceItem.line_number"
    )

    @property
    def amount_due(self) -> Decimal:
        return (
            Decimal(str(self.total_amount or 0))
            - Decimal(str(self.amount_paid or 0))
            - Decimal(str(self.amount_credited or 0))
        )


class SalesInvoiceItem(Base):
    __tablename__ = "sales_invoice_items"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("sales_invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    item_id = Column(Integer, ForeignKey("items.id"), nullable=True)
    description = Column(String, nullable=True)
    quantity = Column(Numeric(18, 4), nullable=False)
    unit_price = Column(Numeric(18, 2), nullable=False)
    discount_amount = Column(Numeric(18, 2), default=0)
    tax_rate = Column(Numeric(7, 4), default=0)
    line_subtotal = Column(Numeric(18, 2), default=0)
    tax_amount = Column(Numeric(18, 2), default=0)
    line_total = Column(Numeric(18, 2), default=0)
    unit_cost = Column(Numeric(18, 4), nullable=True)  # Average cost at issue
    line_number = Column(Integer, default=1)

    invoice = relationship("SalesInvoice", back_populates="items")
    item = relationship("Item")


class Receipt(Base):
    __tablename__ = "receipts"
    __table_args__ = (
        UniqueConstraint('company_id', 'receipt_number', name='uq_receipt_company_number'),
    )

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    receipt_number = Column(String(30), nullable=False, index=True)
    receipt_date = Column(Date, nullable=False)
    receipt_type = Column(String(30), default="customer_receipt")  # customer_receipt, advance_payment, refund, other
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)  # Bank/cash account received into
    amount = Column(Numeric(18, 2), nullable=False)
    payment_method = Column(String(30), nullable=True)
    reference = Column(String, nullable=True)
    narration = Column(Text, nullable=True)
    status = Column(String(20), default="draft")  # draft, posted, reversed
    voucher_id = Column(Integer, ForeignKey("journal_vouchers.id"), nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    customer = relationship("Customer")
    account = relationship("Account")
    allocations = relationship("ReceiptAllocation", back_populates="receipt", cascade="all, delete-orphan")


class ReceiptAllocation(Base):
    __tablename__ = "receipt_allocations"

    id = Column(Integer, primary_key=True, index=True)
    receipt_id = Column(Integer, ForeignKey("receipts.id", ondelete="CASCADE"), nullable=False, index=True)
    invoice_id = Column(Integer, ForeignKey("sales_invoices.id"), nullable=False)
    amount = Column(Numeric(18, 2), nullable=False)

    receipt = relationship("Receipt", back_populates="allocations")
    invoice = relationship("SalesInvoice")


class CreditNote(Base):
    __tablename__ = "credit_notes"
    __table_args__ = (
        UniqueConstraint('company_id', 'credit_note_number', name='uq_credit_note_company_number'),
    )

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    credit_note_number = Column(String(30), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False)
    invoice_id = Column(Integer, ForeignKey("sales_invoices.id"), nullable=True)
    credit_date = Column(Date, nullable=False)
    reason = Column(Text, nullable=True)
    restock = Column(Boolean, default=False)
    status = Column(String(20), default="draft")  # draft, posted, reversed
    subtotal = Column(Numeric(18, 2), default=0)
    discount_amount = Column(Numeric(18, 2), default=0)
    tax_amount = Column(Numeric(18, 2), default=0)
    total_amount = Column(Numeric(18, 2), default=0)
    voucher_id = Column(Integer, ForeignKey("journal_vouchers.id"), nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    customer = relationship("Customer")
    invoice = relationship("SalesInvoice")
    items = relationship(
        "CreditNoteItem",
        back_populates="credit_note",
        cascade="all, delete-orphan",
        order_by="CreditNoteItem.line_number"
    )


class CreditNoteItem(Base):
    __tablename__ = "credit_note_items"

    id = Column(Integer, primary_key=True, index=True)
    credit_note_id = Column(Integer, ForeignKey("credit_notes.id", ondelete="CASCADE"), nullable=False, index=True)
    item_id = Column(Integer, ForeignKey("items.id"), nullable=True)
    invoice_item_id = Column(Integer, ForeignKey("sales_invoice_items.id"), nullable=True)
    description = Column(String, nullable=True)
    quantity = Column(Numeric(18, 4), nullable=False)
    unit_price = Column(Numeric(18, 2), nullable=False)
    discount_amount = Column(Numeric(18, 2), default=0)
    tax_rate = Column(Numeric(7, 4), default=0)
    line_subtotal = Column(Numeric(18, 2), default=0)
    tax_amount = Column(Numeric(18, 2), default=0)
    line_total = Column(Numeric(18, 2), default=0)
    line_number = Column(Integer, default=1)

    credit_note = relationship("CreditNote", back_populates="items")
    item = relationship("Item")


# ============================================================================
# Suppliers & Procurement
# ============================================================================

class Supplier(Base):
    __tablename__ = "suppliers"
    __table_args__ = (
        UniqueConstraint('company_id', 'supplier_code', name='uq_supplier_company_code'),
    )

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    supplier_code = Column(String(20), nullable=False)
    name = Column(String, nullable=False)
    contact_person = Column(String, nullable=True)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    address = Column(Text, nullable=True)
    tax_number = Column(String, nullable=True)
    bank_name = Column(String, nullable=True)
    bank_account_number = Column(String, nullable=True)
    payment_terms_days = Column(Integer, nullable=True)
    opening_balance = Column(Numeric(18, 2), default=0)
    opening_balance_voucher_id = Column(Integer, ForeignKey("journal_vouchers.id"), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"
    __table_args__ = (
        UniqueConstraint('company_id', 'po_number', name='uq_po_company_number'),
    )

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    po_number = Column(String(30), nullable=False, index=True)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=False)
    order_date = Column(Date, nullable=False)
    expected_date = Column(Date, nullable=True)
    # Pending Approval, Approved, Rejected, Partially Received, Completed, Cancelled
    status = Column(String(30), default="Pending Approval")
    subtotal = Column(Numeric(18, 2), default=0)
    tax_amount = Column(Numeric(18, 2), default=0)
    total_amount = Column(Numeric(18, 2), default=0)
    notes = Column(Text, nullable=True)
    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    supplier = relationship("Supplier")
    lines = relationship(
        "PurchaseOrderLine",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderLine.line_number"
    )


class PurchaseOrderLine(Base):
    __tablename__ = "purchase_order_lines"

    id = Column(Integer, primary_key=True, index=True)
    purchase_order_id = Column(Integer, ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    item_id = Column(Integer, ForeignKey("items.id"), nullable=False)
    description = Column(String, nullable=True)
    quantity_ordered = Column(Numeric(18, 4), nullable=False)
    quantity_received = Column(Numeric(18, 4), default=0)
    unit_price = Column(Numeric(18, 2), nullable=False)
    tax_rate = Column(Numeric(7, 4), default=0)
    line_total = Column(Numeric(18, 2), default=0)
    line_number = Column(Integer, default=1)

    purchase_order = relationship("PurchaseOrder", back_populates="lines")
    item = relationship("Item")

    @property
    def quantity_outstanding(self) -> Decimal:
        return Decimal(str(self.quantity_ordered or 0)) - Decimal(str(self.quantity_received or 0))


class GoodsReceipt(Base):
    __tablename__ = "goods_receipts"
    __table_args__ = (
        UniqueConstraint('company_id', 'grn_number', name='uq_grn_company_number'),
    )

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    grn_number = Column(String(30), nullable=False, index=True)
    purchase_order_id = Column(Integer, ForeignKey("purchase_orders.id"), nullable=False)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=False)
    receipt_date = Column(Date, nullable=False)
    status = Column(String(20), default="received")  # received, billed
    total_value = Column(Numeric(18, 2), default=0)
    notes = Column(Text, nullable=True)
    voucher_id = Column(Integer, ForeignKey("journal_vouchers.id"), nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=func.now())

    purchase_order = relationship("PurchaseOrder")
    supplier = relationship("Supplier")
    lines = relationship("GoodsReceiptLine", back_populates="goods_receipt", cascade="all, delete-orphan")


class GoodsReceiptLine(Base):
    __tablename__ = "goods_receipt_lines"

    id = Column(Integer, primary_key=True, index=True)
    goods_receipt_id = Column(Integer, ForeignKey("goods_receipts.id", ondelete="CASCADE"), nullable=False, index=True)
    po_line_id = Column(Integer, ForeignKey("purchase_order_lines.id"), nullable=False)
    item_id = Column(Integer, ForeignKey("items.id"), nullable=False)
    quantity_received = Column(Numeric(18, 4), nullable=False)
    unit_cost = Column(Numeric(18, 4), nullable=False)
    line_total = Column(Numeric(18, 2), default=0)

    goods_receipt = relationship("GoodsReceipt", back_populates="lines")
    po_line = relationship("PurchaseOrderLine")
    item = relationship("Item")


class SupplierInvoice(Base):
    """Supplier bill, raised from a goods receipt or from manual expense lines"""
    __tablename__ = "supplier_invoices"
    __table_args__ = (
        UniqueConstraint('company_id', 'bill_number', name='uq_bill_company_number'),
    )

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    bill_number = Column(String(30), nullable=False, index=True)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=False)
    goods_receipt_id = Column(Integer, ForeignKey("goods_receipts.id"), nullable=True)
    supplier_reference = Column(String, nullable=True)
    bill_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    status = Column(String(20), default="unpaid")  # unpaid, partially_paid, paid
    subtotal = Column(Numeric(18, 2), default=0)
    tax_amount = Column(Numeric(18, 2), default=0)
    total_amount = Column(Numeric(18, 2), default=0)
    amount_paid = Column(Numeric(18, 2), default=0)
    notes = Column(Text, nullable=True)
    voucher_id = Column(Integer, ForeignKey("journal_vouchers.id"), nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    supplier = relationship("Supplier")
    lines = relationship(
        "SupplierInvoiceLine",
        back_populates="supplier_invoice",
        cascade="all, delete-orphan",
        order_by="SupplierInvoiceLine.line_number"
    )

    @property
    def amount_due(self) -> Decimal:
        return Decimal(str(self.total_amount or 0)) - Decimal(str(self.amount_paid or 0))


class SupplierInvoiceLine(Base):
    __tablename__ = "supplier_invoice_lines"

    id = Column(Integer, primary_key=True, index=True)
    supplier_invoice_id = Column(Integer, ForeignKey("supplier_invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    item_id = Column(Integer, ForeignKey("items.id"), nullable=True)
    description = Column(String, nullable=True)
    amount = Column(Numeric(18, 2), nullable=False)
    tax_rate = Column(Numeric(7, 4), default=0)
    tax_amount = Column(Numeric(18, 2), default=0)
    line_number = Column(Integer, default=1)

    supplier_invoice = relationship("SupplierInvoice", back_populates="lines")
    account = relationship("Account")


class PaymentVoucher(Base):
    __tablename__ = "payment_vouchers"
    __table_args__ = (
        UniqueConstraint('company_id', 'pv_number', name='uq_pv_company_number'),
    )

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    pv_number = Column(String(30), nullable=False, index=True)
    payment_date = Column(Date, nullable=False)
    payee_type = Column(String(20), default="supplier")  # supplier, employee, other
    payee_name = Column(String, nullable=False)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=True)
    bank_account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    payment_mode = Column(String(30), default="bank_transfer")  # bank_transfer, cheque, cash
    narration = Column(Text, nullable=True)
    gross_amount = Column(Numeric(18, 2), default=0)
    vat_amount = Column(Numeric(18, 2), default=0)
    wht_amount = Column(Numeric(18, 2), default=0)
    net_payable = Column(Numeric(18, 2), default=0)
    status = Column(String(20), default="Submitted")  # Submitted, Approved, Rejected, Reversed
    voucher_id = Column(Integer, ForeignKey("journal_vouchers.id"), nullable=True)
    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    supplier = relationship("Supplier")
    bank_account = relationship("Account")
    lines = relationship(
        "PaymentVoucherLine",
        back_populates="payment_voucher",
        cascade="all, delete-orphan",
        order_by="PaymentVoucherLine.line_number"
    )
    allocations = relationship("PaymentAllocation", back_populates="payment_voucher", cascade="all, delete-orphan")


class PaymentVoucherLine(Base):
    __tablename__ = "payment_voucher_lines"

    id = Column(Integer, primary_key=True, index=True)
    payment_voucher_id = Column(Integer, ForeignKey("payment_vouchers.id", ondelete="CASCADE"), nullable=False, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    description = Column(String, nullable=True)
    amount = Column(Numeric(18, 2), nullable=False)
    vat_rate = Column(Numeric(7, 4), default=0)
    vat_amount = Column(Numeric(18, 2), default=0)
    wht_rate = Column(Numeric(7, 4), default=0)
    wht_amount = Column(Numeric(18, 2), default=0)
    line_number = Column(Integer, default=1)

    payment_voucher = relationship("PaymentVoucher", back_populates="lines")
    account = relationship("Account")


class PaymentAllocation(Base):
    __tablename__ = "payment_allocations"

    id = Column(Integer, primary_key=True, index=True)
    payment_voucher_id = Column(Integer, ForeignKey("payment_vouchers.id", ondelete="CASCADE"), nullable=False, index=True)
    supplier_invoice_id = Column(Integer, ForeignKey("supplier_invoices.id"), nullable=False)
    amount = Column(Numeric(18, 2), nullable=False)

    payment_voucher = relationship("PaymentVoucher", back_populates="allocations")
    supplier_invoice = relationship("SupplierInvoice")


class Expense(Base):
    __tablename__ = "expenses"
    __table_args__ = (
        UniqueConstraint('company_id', 'expense_number', name='uq_expense_company_number'),
    )

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    expense_number = Column(String(30), nullable=False, index=True)
    expense_date = Column(Date, nullable=False)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    paid_from_account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=True)
    payee = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    amount = Column(Numeric(18, 2), nullable=False)  # Net of tax
    tax_rate = Column(Numeric(7, 4), default=0)
    tax_amount = Column(Numeric(18, 2), default=0)
    total_amount = Column(Numeric(18, 2), default=0)
    voucher_id = Column(Integer, ForeignKey("journal_vouchers.id"), nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=func.now())

    account = relationship("Account", foreign_keys=[account_id])
    paid_from_account = relationship("Account", foreign_keys=[paid_from_account_id])


# ============================================================================
# Inventory
# ============================================================================

class Item(Base):
    __tablename__ = "items"
    __table_args__ = (
        UniqueConstraint('company_id', 'item_code', name='uq_item_company_code'),
    )

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    item_code = Column(String(50), nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    item_type = Column(String(20), default="product")  # product, raw_material, service
    unit_of_measure = Column(String(20), default="EA")
    selling_price = Column(Numeric(18, 2), default=0)
    reorder_level = Column(Numeric(18, 4), default=0)
    vat_rate = Column(Numeric(7, 4), default=0)
    quantity_on_hand = Column(Numeric(18, 4), default=0)
    average_unit_cost = Column(Numeric(18, 4), default=0)
    opening_stock_voucher_id = Column(Integer, ForeignKey("journal_vouchers.id"), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    price_tiers = relationship(
        "ItemPriceTier",
        back_populates="item",
        cascade="all, delete-orphan",
        order_by="ItemPriceTier.min_quantity"
    )

    @property
    def is_stocked(self) -> bool:
        return self.item_type != "service"


class ItemPriceTier(Base):
    __tablename__ = "item_price_tiers"
    __table_args__ = (
        UniqueConstraint('item_id', 'min_quantity', name='uq_price_tier_item_qty'),
    )

    id = Column(Integer, primary_key=True, index=True)
    item_id = Column(Integer, ForeignKey("items.id", ondelete="CASCADE"), nullable=False, index=True)
    tier_name = Column(String, nullable=False)
    min_quantity = Column(Numeric(18, 4), nullable=False)
    price = Column(Numeric(18, 2), nullable=False)

    item = relationship("Item", back_populates="price_tiers")


class ItemLedger(Base):
    """Stock movement history. Quantity is signed: positive in, negative out."""
    __tablename__ = "item_ledger"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    item_id = Column(Integer, ForeignKey("items.id"), nullable=False, index=True)
    transaction_date = Column(Date, nullable=False)
    # OPENING, RECEIVE_PO, SALE, SALE_RETURN, SALE_RETURN_REVERSED, PRODUCTION_ISSUE, PRODUCTION_RECEIPT,
    # ADJUSTMENT_PLUS, ADJUSTMENT_MINUS, MATERIAL_ISSUE, MATERIAL_RETURN
    transaction_type = Column(String(30), nullable=False)
    quantity = Column(Numeric(18, 4), nullable=False)
    unit_cost = Column(Numeric(18, 4), default=0)
    total_cost = Column(Numeric(18, 2), default=0)
    balance_after = Column(Numeric(18, 4), default=0)
    average_cost_after = Column(Numeric(18, 4), default=0)
    reference_type = Column(String(50), nullable=True)
    reference_id = Column(Integer, nullable=True)
    reference_number = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=func.now())


class MaterialIssue(Base):
    """Stock consumed outside production, charged to an expense account at average cost"""
    __tablename__ = "material_issues"
    __table_args__ = (
        UniqueConstraint('company_id', 'issue_number', name='uq_material_issue_company_number'),
    )

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    issue_number = Column(String(30), nullable=False, index=True)
    issue_date = Column(Date, nullable=False)
    item_id = Column(Integer, ForeignKey("items.id"), nullable=False, index=True)
    quantity = Column(Numeric(18, 4), nullable=False)
    unit_cost = Column(Numeric(18, 4), default=0)
    total_cost = Column(Numeric(18, 2), default=0)
    expense_account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    reference = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    status = Column(String(20), default="issued")  # issued, cancelled
    voucher_id = Column(Integer, ForeignKey("journal_vouchers.id"), nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    item = relationship("Item")
    expense_account = relationship("Account")


# ============================================================================
# Production
# ============================================================================

class BillOfMaterials(Base):
    __tablename__ = "bills_of_materials"
    __table_args__ = (
        UniqueConstraint('company_id', 'bom_code', name='uq_bom_company_code'),
    )

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    bom_code = Column(String(50), nullable=False)
    finished_item_id = Column(Integer, ForeignKey("items.id"), nullable=False)
    version = Column(String(20), default="1.0")
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=func.now())

    finished_item = relationship("Item")
    components = relationship("BomComponent", back_populates="bom", cascade="all, delete-orphan")
    overheads = relationship("BomOverhead", back_populates="bom", cascade="all, delete-orphan")


class BomComponent(Base):
    __tablename__ = "bom_components"

    id = Column(Integer, primary_key=True, index=True)
    bom_id = Column(Integer, ForeignKey("bills_of_materials.id", ondelete="CASCADE"), nullable=False, index=True)
    item_id = Column(Integer, ForeignKey("items.id"), nullable=False)
    quantity = Column(Numeric(18, 4), nullable=False)  # Per finished unit

    bom = relationship("BillOfMaterials", back_populates="components")
    item = relationship("Item")


class BomOverhead(Base):
    __tablename__ = "bom_overheads"

    id = Column(Integer, primary_key=True, index=True)
    bom_id = Column(Integer, ForeignKey("bills_of_materials.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    cost_method = Column(String(30), nullable=False)  # per_unit, per_batch, percentage_of_material
    cost = Column(Numeric(18, 4), nullable=False)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)

    bom = relationship("BillOfMaterials", back_populates="overheads")
    account = relationship("Account")


class ProductionOrder(Base):
    __tablename__ = "production_orders"
    __table_args__ = (
        UniqueConstraint('company_id', 'order_number', name='uq_production_company_number'),
    )

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    order_number = Column(String(30), nullable=False, index=True)
    bom_id = Column(Integer, ForeignKey("bills_of_materials.id"), nullable=False)
    finished_item_id = Column(Integer, ForeignKey("items.id"), nullable=False)
    quantity_to_produce = Column(Numeric(18, 4), nullable=False)
    status = Column(String(20), default="Pending")  # Pending, In Progress, Completed, Cancelled
    material_cost = Column(Numeric(18, 2), default=0)
    overhead_cost = Column(Numeric(18, 2), default=0)
    total_cost = Column(Numeric(18, 2), default=0)
    unit_cost = Column(Numeric(18, 4), default=0)
    start_voucher_id = Column(Integer, ForeignKey("journal_vouchers.id"), nullable=True)
    completion_voucher_id = Column(Integer, ForeignKey("journal_vouchers.id"), nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=func.now())

    bom = relationship("BillOfMaterials")
    finished_item = relationship("Item")
    consumptions = relationship("ProductionConsumption", back_populates="production_order", cascade="all, delete-orphan")
    overhead_costs = relationship("ProductionOverheadCost", back_populates="production_order", cascade="all, delete-orphan")


class ProductionConsumption(Base):
    __tablename__ = "production_consumptions"

    id = Column(Integer, primary_key=True, index=True)
    production_order_id = Column(Integer, ForeignKey("production_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    item_id = Column(Integer, ForeignKey("items.id"), nullable=False)
    quantity = Column(Numeric(18, 4), nullable=False)
    unit_cost = Column(Numeric(18, 4), nullable=False)
    total_cost = Column(Numeric(18, 2), nullable=False)

    production_order = relationship("ProductionOrder", back_populates="consumptions")
    item = relationship("Item")


class ProductionOverheadCost(Base):
    __tablename__ = "production_overhead_costs"

    id = Column(Integer, primary_key=True, index=True)
    production_order_id = Column(Integer, ForeignKey("production_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    amount = Column(Numeric(18, 2), nullable=False)

    production_order = relationship("ProductionOrder", back_populates="overhead_costs")


# ============================================================================
# Bank Reconciliation
# ============================================================================

class BankReconciliation(Base):
    __tablename__ = "bank_reconciliations"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    statement_date = Column(Date, nullable=False)
    statement_balance = Column(Numeric(18, 2), nullable=False)
    cleared_balance = Column(Numeric(18, 2), default=0)
    difference = Column(Numeric(18, 2), default=0)
    status = Column(String(20), default="draft")  # draft, completed
    notes = Column(Text, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    completed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=func.now())

    account = relationship("Account")
    cleared_lines = relationship("ReconciliationLine", back_populates="reconciliation", cascade="all, delete-orphan")


class ReconciliationLine(Base):
    __tablename__ = "reconciliation_lines"
    __table_args__ = (
        UniqueConstraint('reconciliation_id', 'voucher_line_id', name='uq_reconciliation_line'),
    )

    id = Column(Integer, primary_key=True, index=True)
    reconciliation_id = Column(Integer, ForeignKey("bank_reconciliations.id", ondelete="CASCADE"), nullable=False, index=True)
    voucher_line_id = Column(Integer, ForeignKey("journal_voucher_lines.id"), nullable=False)

    reconciliation = relationship("BankReconciliation", back_populates="cleared_lines")
    voucher_line = relationship("JournalVoucherLine")
